# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (c) 2025 Signaller
#
# This file is part of Signaller.
#
# Signaller is free software: you can redistribute it and/or modify it
# under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# Signaller is distributed in the hope that it will be useful, but WITHOUT
# ANY WARRANTY; without even the implied warranty of MERCHANTABILITY
# or FITNESS FOR A PARTICULAR PURPOSE. See the GNU Affero General
# Public License for more details.

"""Tests for relay server settings."""

import pytest
from pydantic import ValidationError

from signaller.relay.core.config import Settings


def test_defaults() -> None:
    """Test default limits."""
    settings = Settings()

    assert settings.port == 8080
    assert settings.origin_re == ""
    assert settings.listen_deadline == 60
    assert settings.pipe_deadline == 10
    assert settings.max_message_size == 1024
    assert settings.max_messages == 8


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that SIGNALLER_* environment variables override defaults."""
    monkeypatch.setenv("SIGNALLER_MAX_MESSAGES", "3")
    monkeypatch.setenv("SIGNALLER_LISTEN_DEADLINE", "30")

    settings = Settings()

    assert settings.max_messages == 3
    assert settings.listen_deadline == 30


@pytest.mark.parametrize(
    "overrides",
    [
        {"listen_deadline": 0},
        {"pipe_deadline": 0},
        {"max_message_size": 0},
        {"max_messages": -1},
        {"origin_re": "(unclosed"},
    ],
)
def test_invalid_settings(overrides: dict[str, object]) -> None:
    """Test that invalid limits fail at startup."""
    with pytest.raises(ValidationError):
        Settings(**overrides)


def test_origin_allowed_without_regex() -> None:
    """Test that the Origin host must equal the Host header by default."""
    settings = Settings()

    assert settings.origin_allowed(None, "relay.example.com")
    assert settings.origin_allowed("https://relay.example.com", "relay.example.com")
    assert settings.origin_allowed("http://localhost:8080", "LOCALHOST:8080")
    assert not settings.origin_allowed("https://evil.example.com", "relay.example.com")


def test_origin_allowed_with_regex() -> None:
    """Test that origin_re is searched in the Origin header."""
    settings = Settings(origin_re=r"example\.com$")

    assert settings.origin_allowed(None, "relay.example.com")
    assert settings.origin_allowed("https://app.example.com", "relay.example.com")
    assert not settings.origin_allowed("https://example.com.evil.net", "relay.example.com")

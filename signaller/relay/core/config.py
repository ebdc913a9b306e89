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

"""Configuration settings for the relay server."""

import re
from urllib.parse import urlsplit

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="SIGNALLER_", env_file=".env", env_file_encoding="utf-8"
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8080

    # Regular expression for the Origin request header, empty to require
    # the Origin host to match the Host header
    origin_re: str = ""

    # Deadlines (seconds)
    listen_deadline: int = 60  # Before a listening WebSocket is closed
    pipe_deadline: int = 10  # Before a whole pipe is closed

    # Limits per peer
    max_message_size: int = 1024  # Bytes
    max_messages: int = 8

    @field_validator("listen_deadline", "pipe_deadline")
    @classmethod
    def _check_deadline(cls, value: int) -> int:
        if value < 1:
            raise ValueError("deadline cannot be less than 1 second")
        return value

    @field_validator("max_message_size", "max_messages")
    @classmethod
    def _check_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("origin_re")
    @classmethod
    def _check_origin_re(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"could not parse origin regex: {e}") from e
        return value

    def origin_allowed(self, origin: str | None, host: str | None) -> bool:
        """Check an Origin request header.

        Requests without an Origin header (non-browser clients) are allowed.
        Without ``origin_re`` the Origin host must equal the Host header.
        """
        if origin is None:
            return True
        if self.origin_re:
            return re.search(self.origin_re, origin) is not None
        return urlsplit(origin).netloc.lower() == (host or "").lower()


settings = Settings()

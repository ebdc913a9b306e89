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

"""Health check endpoint."""

from fastapi import APIRouter

from ..core.rendezvous import rendezvous

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict[str, str | int]:
    """Health check endpoint.

    Returns:
        Health status and number of handles waiting for a connector.
    """
    return {
        "status": "healthy",
        "service": "signaller-relay",
        "pending_handles": rendezvous.get_pending_count(),
    }

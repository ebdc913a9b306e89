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

"""Main FastAPI application for the relay server."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from .api import health, rendezvous
from .core.config import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Log relay configuration on startup and shutdown."""
    if not settings.origin_re:
        logger.info(
            "origin_re is empty, WebSocket handshakes fail if the Origin header is "
            "present and its host is not equal to the Host header"
        )
    logger.info(
        f"Relay server started: listen_deadline={settings.listen_deadline}s, "
        f"pipe_deadline={settings.pipe_deadline}s, "
        f"max_message_size={settings.max_message_size}B, "
        f"max_messages={settings.max_messages}"
    )
    yield
    logger.info("Relay server shutting down")


# Create FastAPI app
app = FastAPI(
    title="Signaller Relay Server",
    description="Rendezvous relay for exchanging WebRTC signaling messages",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(health.router)
app.include_router(rendezvous.router)


def main() -> None:
    """Run the relay server with uvicorn."""
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()

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

"""WebSocket listen/connect endpoints."""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, status

from ..core.config import settings
from ..core.pipe import INTERNAL_ERROR, LISTEN_TIMEOUT, Pipe, close_websocket
from ..core.rendezvous import HandleInUseError, is_valid_handle, rendezvous

logger = logging.getLogger(__name__)

router = APIRouter(tags=["rendezvous"])


async def _reject(websocket: WebSocket, handle: str, reason: str) -> None:
    """Refuse the WebSocket handshake."""
    logger.warning(f"Handle {handle}: rejected, {reason}")
    await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=reason)


def _check_request(websocket: WebSocket, handle: str) -> str | None:
    """Validate handle syntax and Origin header.

    Returns:
        Rejection reason, or None if the request is acceptable.
    """
    if not is_valid_handle(handle):
        return "Invalid Handle"
    if not settings.origin_allowed(
        websocket.headers.get("origin"), websocket.headers.get("host")
    ):
        return "Origin Not Allowed"
    return None


@router.websocket("/listen/{handle}")
async def listen(websocket: WebSocket, handle: str) -> None:
    """Wait on a handle for a connecting peer.

    The listener stays pending for ``listen_deadline`` seconds, after which
    it is closed with 4000 "Listen Timeout". Once a connector claims the
    handle, the connector's endpoint runs the pipe and this one waits for it
    to finish.

    Args:
        websocket: WebSocket connection.
        handle: Handle to listen on.
    """
    reason = _check_request(websocket, handle)
    if reason is not None:
        await _reject(websocket, handle, reason)
        return

    try:
        listener = rendezvous.add_listener(handle, websocket)
    except HandleInUseError:
        await _reject(websocket, handle, "Handle In Use")
        return

    try:
        await websocket.accept()
    except (RuntimeError, OSError) as e:
        logger.info(f"Handle {handle}: listener handshake failed: {e!r}")
        rendezvous.release(listener)
        return

    try:
        try:
            await asyncio.wait_for(listener.claimed.wait(), timeout=settings.listen_deadline)
        except TimeoutError:
            if rendezvous.release(listener):
                logger.info(f"Handle {handle}: no connector within {settings.listen_deadline}s")
                await close_websocket(websocket, LISTEN_TIMEOUT)
                return

        await listener.finished.wait()
    finally:
        # Still pending if the handler was cancelled before pairing
        rendezvous.release(listener)


@router.websocket("/connect/{handle}")
async def connect(websocket: WebSocket, handle: str) -> None:
    """Connect to the peer listening on a handle and pipe messages between them.

    Args:
        websocket: WebSocket connection.
        handle: Handle to connect to.
    """
    reason = _check_request(websocket, handle)
    if reason is not None:
        await _reject(websocket, handle, reason)
        return

    listener = rendezvous.claim(handle)
    if listener is None:
        await _reject(websocket, handle, "No Listener")
        return

    try:
        try:
            await websocket.accept()
        except (RuntimeError, OSError) as e:
            logger.info(f"Handle {handle}: connector handshake failed: {e!r}")
            await close_websocket(listener.websocket, INTERNAL_ERROR)
            return

        pipe = Pipe(
            handle,
            listener.websocket,
            websocket,
            deadline=settings.pipe_deadline,
            max_messages=settings.max_messages,
            max_message_size=settings.max_message_size,
        )
        await pipe.run()

    except Exception as e:
        logger.error(f"Handle {handle}: error in pipe: {e}", exc_info=True)
        await close_websocket(listener.websocket, INTERNAL_ERROR)
        await close_websocket(websocket, INTERNAL_ERROR)
    finally:
        listener.finished.set()

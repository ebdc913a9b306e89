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

"""Bidirectional message pipe between a paired listener and connector."""

import asyncio
import logging

from fastapi import WebSocket
from fastapi.websockets import WebSocketDisconnect, WebSocketState

logger = logging.getLogger(__name__)

# Close codes
NORMAL_CLOSURE = 1000
INTERNAL_ERROR = 1011
LISTEN_TIMEOUT = 4000
PIPE_TIMEOUT = 4001
TOO_MANY_MESSAGES = 4002

CLOSE_REASONS = {
    NORMAL_CLOSURE: "Normal Closure",
    INTERNAL_ERROR: "Internal Error",
    LISTEN_TIMEOUT: "Listen Timeout",
    PIPE_TIMEOUT: "Pipe Timeout",
    TOO_MANY_MESSAGES: "Too Many Messages",
}


async def close_websocket(websocket: WebSocket, code: int) -> None:
    """Close a WebSocket unless either side already closed it.

    Args:
        websocket: WebSocket to close.
        code: Close code, sent with its standard reason.
    """
    if (
        websocket.client_state == WebSocketState.DISCONNECTED
        or websocket.application_state == WebSocketState.DISCONNECTED
    ):
        return

    try:
        await websocket.close(code=code, reason=CLOSE_REASONS.get(code, ""))
    except (WebSocketDisconnect, RuntimeError, OSError) as e:
        logger.debug(f"Error closing WebSocket: {e}")


class Pipe:
    """Forwards messages between two WebSockets until either side stops.

    Both directions share one deadline. Each direction forwards at most
    ``max_messages`` messages of at most ``max_message_size`` bytes.
    """

    def __init__(
        self,
        handle: str,
        listener_ws: WebSocket,
        connector_ws: WebSocket,
        deadline: float,
        max_messages: int,
        max_message_size: int,
    ) -> None:
        """Initialize pipe.

        Args:
            handle: Handle the two peers met on.
            listener_ws: Listener's WebSocket.
            connector_ws: Connector's WebSocket.
            deadline: Seconds from now until the whole pipe is closed.
            max_messages: Message budget per direction.
            max_message_size: Largest message forwarded, in bytes.
        """
        self.handle = handle
        self.listener_ws = listener_ws
        self.connector_ws = connector_ws
        self.max_messages = max_messages
        self.max_message_size = max_message_size
        self._loop = asyncio.get_running_loop()
        self.deadline = self._loop.time() + deadline
        self.messages_forwarded: dict[str, int] = {}

    async def run(self) -> int:
        """Pipe both directions and close both WebSockets when one ends.

        Returns:
            Close code the pipe ended with.
        """
        logger.info(f"Handle {self.handle}: starting pipe")

        tasks = [
            asyncio.create_task(
                self._forward(self.listener_ws, self.connector_ws, "listener->connector")
            ),
            asyncio.create_task(
                self._forward(self.connector_ws, self.listener_ws, "connector->listener")
            ),
        ]

        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)

        for task in pending:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        code = next(iter(done)).result()

        await close_websocket(self.listener_ws, code)
        await close_websocket(self.connector_ws, code)

        logger.info(
            f"Handle {self.handle}: pipe closed with code {code} "
            f"({CLOSE_REASONS[code]}), forwarded {self.messages_forwarded}"
        )
        return code

    async def _forward(self, source: WebSocket, dest: WebSocket, direction: str) -> int:
        """Forward messages from source to destination.

        Args:
            source: Source WebSocket.
            dest: Destination WebSocket.
            direction: Human-readable direction for logging.

        Returns:
            Close code for both WebSockets.
        """
        count = 0
        self.messages_forwarded[direction] = 0

        while count < self.max_messages:
            remaining = self.deadline - self._loop.time()
            if remaining <= 0:
                break

            try:
                message = await asyncio.wait_for(source.receive(), timeout=remaining)
            except TimeoutError:
                break

            if message["type"] == "websocket.disconnect":
                if message.get("code") == NORMAL_CLOSURE:
                    return NORMAL_CLOSURE
                logger.info(
                    f"Handle {self.handle}: {direction} source disconnected "
                    f"with code {message.get('code')}"
                )
                break

            text = message.get("text")
            data = text.encode() if text is not None else message.get("bytes") or b""
            if len(data) > self.max_message_size:
                logger.warning(
                    f"Handle {self.handle}: {direction} message of {len(data)} bytes "
                    f"exceeds limit of {self.max_message_size}"
                )
                break

            try:
                if text is not None:
                    await dest.send_text(text)
                else:
                    await dest.send_bytes(data)
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                logger.info(f"Handle {self.handle}: {direction} send failed: {e!r}")
                break

            count += 1
            self.messages_forwarded[direction] = count

        if self._loop.time() >= self.deadline:
            return PIPE_TIMEOUT
        if count >= self.max_messages:
            return TOO_MANY_MESSAGES
        return INTERNAL_ERROR

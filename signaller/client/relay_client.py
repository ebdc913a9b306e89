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

"""WebSocket relay client for exchanging signaling messages.

This module implements the client side of the signaller: it opens one
WebSocket to the relay server, either as a listener or as a connector on a
shared handle, and exchanges opaque signal payloads (SDP offers/answers) with
the peer on the other side of the relay.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from enum import Enum

import aiohttp

logger = logging.getLogger(__name__)

# WebSocket close codes (RFC 6455)
NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006


class SignallerState(str, Enum):
    """Relay connection states, mirroring the WebSocket ready states."""

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class InvalidStateError(RuntimeError):
    """Raised when the client is used in a state that does not allow it."""


class RelayClient:
    """Signaling client for a relay server.

    Signal payloads handed to :meth:`signal` while the WebSocket is still
    connecting are queued and flushed in order once it opens, so callers
    don't have to track readiness themselves.
    """

    def __init__(self, server_address: str, handle: str) -> None:
        """Initialize the relay client.

        No connection is opened until :meth:`listen` or :meth:`connect`.

        Args:
            server_address: Base URL of relay server (e.g., ws://localhost:8080)
            handle: Session handle shared out-of-band with the peer
        """
        self.server_address = server_address
        self.handle = handle

        # Connection state, None until listen() or connect()
        self.state: SignallerState | None = None

        # Payloads signalled before the WebSocket opened
        self.pending: deque[str] = deque()

        # Callbacks
        self.on_signal: Callable[[str], None] | None = None
        self.on_close: Callable[[int, str], None] | None = None

        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._task: asyncio.Task[None] | None = None
        self._local_close: asyncio.Event = asyncio.Event()
        self._close_notified: bool = False

    def listen(self) -> None:
        """Open the relay connection as the listening peer.

        Raises:
            InvalidStateError: If listen() or connect() was already called
        """
        self._open(f"{self.server_address}/listen/{self.handle}")

    def connect(self) -> None:
        """Open the relay connection as the connecting peer.

        Raises:
            InvalidStateError: If listen() or connect() was already called
        """
        self._open(f"{self.server_address}/connect/{self.handle}")

    async def signal(self, payload: str) -> None:
        """Send a signal payload to the peer.

        Args:
            payload: Opaque signaling message

        Raises:
            InvalidStateError: If the connection was never opened, or is
                closing or closed
        """
        if self.state is None:
            raise InvalidStateError("Attempted to signal() before listen() or connect()")

        if self.state == SignallerState.CONNECTING:
            self.pending.append(payload)
            logger.debug(f"Signaller: queued signal ({len(self.pending)} pending)")
        elif self.state == SignallerState.OPEN:
            if self._ws is None:
                raise RuntimeError("WebSocket not connected")
            await self._ws.send_str(payload)
            logger.debug(f"Signaller: sent signal ({len(payload)} chars)")
        elif self.state == SignallerState.CLOSING:
            raise InvalidStateError("Attempted to signal() a CLOSING WebSocket")
        else:
            raise InvalidStateError("Attempted to signal() a CLOSED WebSocket")

    async def close(self) -> None:
        """Close the relay connection with a normal closure code.

        Queued payloads that were never sent are discarded. Does nothing if
        the connection is not connecting or open.
        """
        if self.state not in (SignallerState.CONNECTING, SignallerState.OPEN):
            return

        self._set_state(SignallerState.CLOSING)
        self.pending.clear()

        # Still connecting: the connection task closes the socket once it opens
        if self._ws is None:
            return

        try:
            await self._ws.close(code=NORMAL_CLOSURE)
        finally:
            self._local_close.set()

    async def wait_closed(self) -> None:
        """Wait until the connection is closed and on_close has been called."""
        if self._task is not None:
            await self._task

    def _open(self, url: str) -> None:
        if self.state is not None:
            raise InvalidStateError("listen() or connect() may only be called once")

        self._set_state(SignallerState.CONNECTING)
        self._task = asyncio.create_task(self._run(url))

    async def _run(self, url: str) -> None:
        """Own the WebSocket from the handshake until it is closed.

        Args:
            url: Full WebSocket URL of the listen/connect endpoint
        """
        code, reason = ABNORMAL_CLOSURE, ""
        session = aiohttp.ClientSession()

        try:
            try:
                ws = await session.ws_connect(url)
            except (aiohttp.ClientError, OSError) as e:
                logger.error(f"Signaller: failed to connect to {url}: {e}")
                return

            self._ws = ws
            logger.info(f"Signaller: connected to {url}")

            if self.state == SignallerState.CLOSING:
                # close() was called during the handshake
                await ws.close(code=NORMAL_CLOSURE)
                self._local_close.set()
            else:
                try:
                    await self._flush(ws)
                except (aiohttp.ClientError, ConnectionError) as e:
                    # The socket did open, later signals fail loudly on send
                    logger.error(f"Signaller: WebSocket error while flushing: {e}")
                    self.pending.clear()
                    self._set_state(SignallerState.OPEN)

            code, reason = await self._receive(ws)

        finally:
            await session.close()
            self._handle_closed(code, reason)

    async def _flush(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        """Send queued payloads in order, then mark the connection open.

        Payloads signalled while the flush is running join the tail of the
        queue, so they still go out after everything queued before them.
        """
        while self.pending and self.state == SignallerState.CONNECTING:
            await ws.send_str(self.pending.popleft())

        if self.state == SignallerState.CONNECTING:
            self._set_state(SignallerState.OPEN)

    async def _receive(self, ws: aiohttp.ClientWebSocketResponse) -> tuple[int, str]:
        """Deliver inbound messages until the WebSocket closes.

        Returns:
            Close code and reason
        """
        while True:
            msg = await ws.receive()

            if msg.type == aiohttp.WSMsgType.TEXT:
                self._deliver(msg.data)

            elif msg.type == aiohttp.WSMsgType.BINARY:
                self._deliver(msg.data.decode("utf-8", errors="replace"))

            elif msg.type == aiohttp.WSMsgType.CLOSE:
                # Closed by the relay, aiohttp has already answered the close frame
                if self.state != SignallerState.CLOSING:
                    self._set_state(SignallerState.CLOSING)
                return msg.data, msg.extra or ""

            elif msg.type == aiohttp.WSMsgType.ERROR:
                # Errors are only logged, the close that follows decides the outcome
                logger.error(f"Signaller: WebSocket error: {msg.data!r}")

            elif msg.type in (aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                break

        if self.state == SignallerState.CLOSING:
            # Local close() owns the closing handshake, wait for it to finish
            await self._local_close.wait()

        code = ws.close_code if ws.close_code is not None else ABNORMAL_CLOSURE
        return code, ""

    def _deliver(self, payload: str) -> None:
        if self.on_signal is None:
            logger.debug("Signaller: dropped signal, no on_signal handler")
            return

        try:
            self.on_signal(payload)
        except Exception:
            logger.exception("Signaller: on_signal handler failed")

    def _handle_closed(self, code: int, reason: str) -> None:
        self.pending.clear()
        self._set_state(SignallerState.CLOSED)
        logger.info(f"Signaller: closed with code {code} ({reason})")

        if self._close_notified or self.on_close is None:
            return

        self._close_notified = True
        self.on_close(code, reason)

    def _set_state(self, state: SignallerState) -> None:
        if self.state != state:
            old_state = self.state
            self.state = state
            logger.debug(f"Signaller state change: {old_state} → {state}")

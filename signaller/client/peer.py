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

"""WebRTC peer that negotiates its connection through the relay client.

The connecting peer creates a DataChannel and an SDP offer, the listening
peer answers. Session descriptions travel as JSON signal payloads over the
relay; once the DataChannel opens the signaller is no longer needed and is
closed.
"""

import asyncio
import json
import logging
import random
import string
from collections.abc import Callable
from typing import Any, Literal

from aiortc import (
    RTCConfiguration,
    RTCDataChannel,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)

from .relay_client import RelayClient, SignallerState

logger = logging.getLogger(__name__)

Role = Literal["listen", "connect"]

DEFAULT_ICE_SERVERS: list[dict[str, Any]] = [
    {"urls": "stun:stun.l.google.com:19302"},
    {"urls": "stun:global.stun.twilio.com:3478?transport=udp"},
]


def random_handle(length: int = 10) -> str:
    """Generate a handle the relay server accepts, e.g. ``random_qwhkzpmxta``."""
    return "random_" + "".join(random.choices(string.ascii_lowercase, k=length))


def encode_description(description: RTCSessionDescription) -> str:
    """Serialize a session description into a signal payload."""
    return json.dumps({"type": description.type, "sdp": description.sdp})


def decode_description(payload: str) -> RTCSessionDescription:
    """Parse a signal payload back into a session description.

    Raises:
        ValueError: If the payload is not a JSON session description
    """
    data = json.loads(payload)
    if not isinstance(data, dict) or "type" not in data or "sdp" not in data:
        raise ValueError("Signal is not a session description")
    return RTCSessionDescription(sdp=data["sdp"], type=data["type"])


class PeerSession:
    """Peer-to-peer chat session negotiated over the relay.

    Manages the RelayClient, the RTCPeerConnection and the chat DataChannel.
    """

    def __init__(
        self,
        server_address: str,
        handle: str,
        role: Role,
        ice_servers: list[dict[str, Any]] | None = None,
    ) -> None:
        """Initialize the peer session.

        Args:
            server_address: Base URL of relay server
            handle: Session handle shared with the other peer
            role: "connect" for the offering peer, "listen" for the answering one
            ice_servers: ICE servers configuration (STUN/TURN)
        """
        self.role = role
        self.signaller = RelayClient(server_address, handle)

        if ice_servers is None:
            ice_servers = DEFAULT_ICE_SERVERS

        ice_server_configs = [
            RTCIceServer(urls=server["urls"])
            if "username" not in server
            else RTCIceServer(
                urls=server["urls"],
                username=server.get("username", ""),
                credential=server.get("credential", ""),
            )
            for server in ice_servers
        ]
        self.pc = RTCPeerConnection(configuration=RTCConfiguration(iceServers=ice_server_configs))
        self.channel: RTCDataChannel | None = None

        # Callbacks
        self.on_open: Callable[[], None] | None = None
        self.on_message: Callable[[str], None] | None = None
        self.on_close: Callable[[], None] | None = None

        self._tasks: set[asyncio.Task[None]] = set()
        self._closed: bool = False

    async def start(self) -> None:
        """Open the signaller and, for the connecting peer, send the offer."""
        self.signaller.on_signal = self._on_signal
        self.signaller.on_close = self._on_signaller_close

        @self.pc.on("datachannel")
        def on_datachannel(channel: RTCDataChannel) -> None:
            """Handle the DataChannel announced by the offering peer."""
            logger.info(f"DataChannel received: {channel.label}")
            self._setup_channel(channel)

        @self.pc.on("connectionstatechange")
        async def on_connectionstatechange() -> None:
            """Tear down the session when the peer connection fails."""
            logger.info(f"Peer connection state: {self.pc.connectionState}")
            if self.pc.connectionState in ("failed", "closed"):
                await self.close()

        if self.role == "listen":
            self.signaller.listen()
            logger.info(f"Signaller is listening on {self.signaller.handle}")
            return

        self.signaller.connect()
        logger.info(f"Signaller is connecting to {self.signaller.handle}")

        self._setup_channel(self.pc.createDataChannel("chat"))
        offer = await self.pc.createOffer()
        await self.pc.setLocalDescription(offer)
        await self._send_description()

    async def send(self, text: str) -> None:
        """Send a chat message to the peer.

        Raises:
            RuntimeError: If the DataChannel is not open
        """
        if self.channel is None or self.channel.readyState != "open":
            raise RuntimeError("DataChannel not open")

        self.channel.send(text)

    async def close(self) -> None:
        """Close the signaller and the peer connection."""
        if self._closed:
            return

        self._closed = True
        await self.signaller.close()
        await self.pc.close()
        logger.info("Peer session closed")

        if self.on_close:
            self.on_close()

    def _setup_channel(self, channel: RTCDataChannel) -> None:
        self.channel = channel

        @channel.on("open")
        def on_open() -> None:
            """Signalling is done once the DataChannel is up."""
            logger.info(f"DataChannel '{channel.label}' opened")
            self._spawn(self.signaller.close())
            if self.on_open:
                self.on_open()

        @channel.on("message")
        def on_message(message: str | bytes) -> None:
            if isinstance(message, bytes):
                message = message.decode("utf-8", errors="replace")
            if self.on_message:
                self.on_message(message)

    def _on_signal(self, payload: str) -> None:
        logger.info("Signaller received signal")
        self._spawn(self._handle_signal(payload))

    async def _handle_signal(self, payload: str) -> None:
        """Apply a session description received from the peer.

        Args:
            payload: JSON-encoded session description
        """
        try:
            description = decode_description(payload)
        except ValueError as e:
            logger.warning(f"Ignoring malformed signal: {e}")
            return

        await self.pc.setRemoteDescription(description)
        logger.info(f"Set remote description: {description.type}")

        if description.type == "offer":
            answer = await self.pc.createAnswer()
            await self.pc.setLocalDescription(answer)
            await self._send_description()

    async def _send_description(self) -> None:
        # The signaller may have failed (and closed) in the meantime
        if self.signaller.state in (SignallerState.CLOSING, SignallerState.CLOSED):
            logger.warning("Signaller closed before the handshake completed")
            await self.close()
            return

        await self.signaller.signal(encode_description(self.pc.localDescription))
        logger.info(f"Sent {self.pc.localDescription.type} over signaller")

    def _on_signaller_close(self, code: int, reason: str) -> None:
        logger.info(f"Signaller closed with code {code} ({reason})")

        # Nothing more can arrive from the other peer
        if self.pc.remoteDescription is None:
            self._spawn(self.close())

    def _spawn(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

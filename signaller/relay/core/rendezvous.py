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

"""Pending listeners waiting for a connector on their handle."""

import asyncio
import logging
import re

from fastapi import WebSocket

logger = logging.getLogger(__name__)

# A handle
#   - must begin with a lowercase character, followed by lowercase characters,
#     digits or underscores
#   - must be at least 3 and at most 32 characters long
#   - cannot contain consecutive underscores
HANDLE_RE = re.compile(r"[a-z](?:_?[a-z0-9]){2,31}")


def is_valid_handle(handle: str) -> bool:
    """Check whether a handle has the accepted syntax."""
    return HANDLE_RE.fullmatch(handle) is not None


class HandleInUseError(Exception):
    """Raised when a listener is already pending on the handle."""


class PendingListener:
    """A listening WebSocket waiting to be paired."""

    def __init__(self, handle: str, websocket: WebSocket) -> None:
        """Initialize pending listener.

        Args:
            handle: Handle the listener waits on.
            websocket: Listener's WebSocket.
        """
        self.handle = handle
        self.websocket = websocket
        self.claimed = asyncio.Event()
        self.finished = asyncio.Event()


class Rendezvous:
    """Pairs listeners and connectors by handle.

    All methods run on the event loop without awaiting, so each lookup and
    update of the pending set happens in one step.
    """

    def __init__(self) -> None:
        """Initialize rendezvous."""
        self._pending: dict[str, PendingListener] = {}

    def add_listener(self, handle: str, websocket: WebSocket) -> PendingListener:
        """Register a listener on a handle.

        Args:
            handle: Handle to listen on.
            websocket: Listener's WebSocket.

        Returns:
            The registered PendingListener.

        Raises:
            HandleInUseError: If another listener is pending on the handle.
        """
        if handle in self._pending:
            raise HandleInUseError(handle)

        listener = PendingListener(handle, websocket)
        self._pending[handle] = listener
        logger.info(f"Handle {handle}: listener pending")
        return listener

    def claim(self, handle: str) -> PendingListener | None:
        """Take the listener pending on a handle, if any.

        The handle is released immediately so that another connector cannot
        claim it while this one is being set up.

        Args:
            handle: Handle to connect to.

        Returns:
            The claimed PendingListener, or None if nobody listens on the handle.
        """
        listener = self._pending.pop(handle, None)
        if listener is not None:
            listener.claimed.set()
            logger.info(f"Handle {handle}: listener claimed")
        return listener

    def release(self, listener: PendingListener) -> bool:
        """Remove a listener that is still pending.

        Args:
            listener: Listener to remove.

        Returns:
            True if the listener was pending, False if it was already claimed.
        """
        if self._pending.get(listener.handle) is not listener:
            return False

        del self._pending[listener.handle]
        logger.info(f"Handle {listener.handle}: listener released")
        return True

    def get_pending_count(self) -> int:
        """Get the number of pending listeners.

        Returns:
            Number of handles waiting for a connector.
        """
        return len(self._pending)


# Global rendezvous instance
rendezvous = Rendezvous()

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

"""Example peer-to-peer chat negotiated through the signaller.

Run the relay server (``signaller-relay``), then start one side with
``listen`` and the other with ``connect`` on the same handle. Lines typed on
stdin are sent over the WebRTC DataChannel once it opens.
"""

import argparse
import asyncio
import logging
import sys

from signaller.client.peer import PeerSession, random_handle

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


async def main() -> None:
    """Run one side of the chat."""
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("role", choices=["listen", "connect"])
    parser.add_argument("handle", nargs="?", default=None)
    parser.add_argument("--server", default="ws://127.0.0.1:8080", help="relay server address")
    args = parser.parse_args()

    handle = args.handle or random_handle()
    print(f"Handle: {handle}")

    session = PeerSession(args.server, handle, args.role)
    opened = asyncio.Event()
    closed = asyncio.Event()

    session.on_open = opened.set
    session.on_message = lambda text: print(f"> {text}")
    session.on_close = closed.set

    loop = asyncio.get_running_loop()

    try:
        await session.start()

        # Wait for the DataChannel, or for the session to fail
        waiters = [asyncio.ensure_future(opened.wait()), asyncio.ensure_future(closed.wait())]
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        for waiter in waiters:
            waiter.cancel()

        if closed.is_set():
            print("Session closed before the DataChannel opened.")
            return

        print("DataChannel open, type messages and press enter.")
        while not closed.is_set():
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            await session.send(line.rstrip("\n"))
            print(f"< {line.rstrip()}")

    except KeyboardInterrupt:
        print("\nShutting down...")
    finally:
        await session.close()


if __name__ == "__main__":
    asyncio.run(main())

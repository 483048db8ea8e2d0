"""In-memory transport for call bridge tests."""

import asyncio
import json
from typing import Callable, Optional

from voice_bridge.core.errors import TransportDisconnect


class FakeRequest:
    """Stand-in for the WebSocket handshake request."""

    def __init__(self, path: str) -> None:
        self.path = path


class FakeTransport:
    """In-memory telephony media stream connection."""

    def __init__(self, path: str = "/ws/media") -> None:
        self.request = FakeRequest(path)
        self.sent: list[dict] = []
        self.pings = 0
        self.pong_waiters: list[asyncio.Future] = []
        self.closed = False
        self.close_code: Optional[int] = None
        self._incoming: asyncio.Queue[Optional[str]] = asyncio.Queue()

    def feed(self, message: str) -> None:
        """Queue a raw inbound message."""
        self._incoming.put_nowait(message)

    def disconnect(self) -> None:
        """End the inbound stream as a remote hangup would."""
        self._incoming.put_nowait(None)

    def __aiter__(self) -> "FakeTransport":
        return self

    async def __anext__(self) -> str:
        message = await self._incoming.get()
        if message is None:
            raise StopAsyncIteration
        return message

    async def send(self, message: str) -> None:
        if self.closed:
            raise TransportDisconnect("transport closed")
        self.sent.append(json.loads(message))

    async def ping(self) -> asyncio.Future:
        """Return a pong waiter, resolved by the test if at all."""
        if self.closed:
            raise TransportDisconnect("transport closed")
        self.pings += 1
        pong_waiter = asyncio.get_running_loop().create_future()
        self.pong_waiters.append(pong_waiter)
        return pong_waiter

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if not self.closed:
            self.closed = True
            self.close_code = code
            self._incoming.put_nowait(None)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until predicate() is true or fail the test."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)

import asyncio
import json
from typing import List

import pytest

from erp.realtime.exceptions import TransportClosed, TransportError
from erp.realtime.transport import Transport


class FakeTransport(Transport):
    """In-memory transport; answers pings by itself unless auto_pong is off"""

    def __init__(self, auto_pong: bool = True):
        self.auto_pong = auto_pong
        self.fail_sends = False
        self.fail_close = False
        self.sent: List[dict] = []
        self.close_calls: List[tuple] = []
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    async def send(self, text: str) -> None:
        if not self._open or self.fail_sends:
            raise TransportError("closed")
        message = json.loads(text)
        self.sent.append(message)
        if self.auto_pong and message["type"] == "ping":
            self.push({"type": "pong", "payload": {"id": message["payload"]["id"]}})

    async def receive(self) -> str:
        item = await self._inbox.get()
        if isinstance(item, TransportClosed):
            self._open = False
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_calls.append((code, reason))
        if self.fail_close:
            raise TransportError("close handshake failed")
        if self._open:
            self._open = False
            self._inbox.put_nowait(TransportClosed(code, reason, was_clean=True))

    def push(self, message: dict) -> None:
        self._inbox.put_nowait(json.dumps(message))

    def push_raw(self, text: str) -> None:
        self._inbox.put_nowait(text)

    def push_failure(self, exc: Exception) -> None:
        """Make the next receive raise an arbitrary exception"""
        self._inbox.put_nowait(exc)

    def drop(self, code: int = 1006) -> None:
        """Simulate the network going away"""
        self._open = False
        self._inbox.put_nowait(TransportClosed(code, "", was_clean=False))

    def server_close(self) -> None:
        """Simulate a clean close initiated by the server"""
        self._open = False
        self._inbox.put_nowait(TransportClosed(1000, "bye", was_clean=True))

    def sent_types(self) -> List[str]:
        return [message["type"] for message in self.sent]


class FakeServer:
    """Transport factory handing out FakeTransports, optionally refusing connections"""

    def __init__(self):
        self.transports: List[FakeTransport] = []
        self.failures = 0
        self.auto_pong = True
        self.calls = 0

    async def factory(self, url: str) -> Transport:
        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise TransportError(f"refused: {url}")
        transport = FakeTransport(auto_pong=self.auto_pong)
        self.transports.append(transport)
        return transport

    @property
    def latest(self) -> FakeTransport:
        return self.transports[-1]


@pytest.fixture
def server():
    return FakeServer()


import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, InvalidHandshake, InvalidURI
from websockets.protocol import State

from erp.realtime.exceptions import TransportClosed, TransportError

logger = logging.getLogger(__name__)


class Transport(ABC):
    """A bidirectional text-frame pipe"""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        ...

    @abstractmethod
    async def send(self, text: str) -> None:
        ...

    @abstractmethod
    async def receive(self) -> str:
        """Next text frame; raises TransportClosed once the pipe is gone"""

    @abstractmethod
    async def close(self, code: int = 1000, reason: str = "") -> None:
        ...


TransportFactory = Callable[[str], Awaitable[Transport]]


class WebSocketTransport(Transport):
    def __init__(self, websocket: ClientConnection):
        self._websocket = websocket

    @property
    def is_open(self) -> bool:
        return self._websocket.state is State.OPEN

    async def send(self, text: str) -> None:
        try:
            await self._websocket.send(text)
        except ConnectionClosed as exc:
            raise TransportError(f"Send failed: {exc}") from exc

    async def receive(self) -> str:
        try:
            data = await self._websocket.recv()
        except ConnectionClosed as exc:
            code = exc.rcvd.code if exc.rcvd is not None else 1006
            reason = exc.rcvd.reason if exc.rcvd is not None else ""
            raise TransportClosed(code, reason, was_clean=isinstance(exc, ConnectionClosedOK)) from exc
        if isinstance(data, bytes):
            # Undecodable frames surface as malformed messages to the reader
            return data.decode("utf-8", errors="replace")
        return data

    async def close(self, code: int = 1000, reason: str = "") -> None:
        await self._websocket.close(code=code, reason=reason)


async def websocket_transport(url: str) -> Transport:
    """Open a WebSocket; keepalive is left to the connection heartbeat"""
    try:
        websocket = await connect(url, ping_interval=None)
    except (OSError, TimeoutError, InvalidURI, InvalidHandshake) as exc:
        raise TransportError(f"Could not connect to {url}: {exc}") from exc
    logger.debug(f"WebSocket opened to {url}")
    return WebSocketTransport(websocket)

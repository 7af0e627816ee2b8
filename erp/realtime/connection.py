import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from erp.realtime.exceptions import (
    PingCancelledError,
    PingTimeoutError,
    TransportClosed,
    TransportError,
)
from erp.realtime.message import RealtimeMessage, generate_message_id, now_ms
from erp.realtime.options import RealtimeOptions
from erp.realtime.transport import Transport, TransportFactory, websocket_transport

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006
HEARTBEAT_TIMEOUT_CLOSURE = 4000


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    GIVEN_UP = "given_up"


class ConnectionEvent(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"
    GIVEN_UP = "given_up"
    ERROR = "error"
    SENT = "sent"


@dataclass
class ConnectionInfo:
    state: ConnectionState
    is_connected: bool
    reconnect_attempts: int
    last_ping: Optional[int]
    latency_ms: Optional[float]


class RealtimeConnection:
    """
    One logical session to the push server over a replaceable transport.

    A reader task dispatches inbound messages in arrival order, a writer
    task drains the outbound queue so ``send`` never suspends, and a
    heartbeat task pings the server while connected. Unclean closes are
    retried with exponential backoff until ``max_reconnect_attempts``.
    """

    def __init__(
        self,
        url: str,
        options: Optional[RealtimeOptions] = None,
        transport_factory: TransportFactory = websocket_transport,
        on_message: Optional[Callable[[RealtimeMessage], None]] = None,
    ):
        self.url = url
        self.options = options or RealtimeOptions()
        self.state = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0
        self.last_ping: Optional[int] = None
        self.latency_ms: Optional[float] = None

        self._transport_factory = transport_factory
        self._on_message = on_message
        self._transport: Optional[Transport] = None
        self._outbox: "asyncio.Queue[RealtimeMessage]" = asyncio.Queue()
        self._reader_task: Optional[asyncio.Task] = None
        self._writer_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._pending_pings: Dict[str, asyncio.Future] = {}
        self._listeners: Dict[ConnectionEvent, List[Callable[[Any], None]]] = {}
        self._closing = False
        self._forced_close = False

    # --- Properties -------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return (
            self.state is ConnectionState.CONNECTED
            and self._transport is not None
            and self._transport.is_open
            and self._writer_task is not None
            and not self._writer_task.done()
        )

    def connection_info(self) -> ConnectionInfo:
        return ConnectionInfo(
            state=self.state,
            is_connected=self.is_connected,
            reconnect_attempts=self.reconnect_attempts,
            last_ping=self.last_ping,
            latency_ms=self.latency_ms,
        )

    def update_options(self, **changes) -> RealtimeOptions:
        self.options = RealtimeOptions(**{**self.options.model_dump(), **changes})
        return self.options

    def set_message_handler(self, handler: Optional[Callable[[RealtimeMessage], None]]) -> None:
        self._on_message = handler

    # --- Events -----------------------------------------------------------

    def add_listener(self, event: ConnectionEvent, callback: Callable[[Any], None]) -> Callable[[], None]:
        callbacks = self._listeners.setdefault(ConnectionEvent(event), [])
        callbacks.append(callback)

        def remove() -> None:
            if callback in callbacks:
                callbacks.remove(callback)

        return remove

    def _emit(self, event: ConnectionEvent, data: Any = None) -> None:
        for callback in list(self._listeners.get(event, ())):
            try:
                callback(data)
            except Exception:
                logger.exception(f"Listener for '{event.value}' failed")

    # --- Lifecycle --------------------------------------------------------

    async def connect(self) -> None:
        """Open the transport; raises TransportError if it cannot be opened"""
        if self.is_connected:
            return
        self._closing = False
        self._cancel_reconnect()
        await self._open()

    async def disconnect(self) -> None:
        """Close deliberately; never followed by an automatic reconnect"""
        self._closing = True
        self._cancel_reconnect()
        transport = self._transport
        self._teardown()
        previous_state = self.state
        self.state = ConnectionState.DISCONNECTED
        if transport is not None:
            if transport.is_open:
                try:
                    await transport.close(NORMAL_CLOSURE, "Client disconnect")
                except TransportError as exc:
                    logger.warning(f"Error while closing transport: {exc}")
            logger.info(f"Disconnected from {self.url}")
            self._emit(ConnectionEvent.DISCONNECTED, {"code": NORMAL_CLOSURE, "was_clean": True})
        elif previous_state is not ConnectionState.DISCONNECTED:
            logger.info(f"Reconnection to {self.url} stopped")

    async def _open(self) -> None:
        self.state = ConnectionState.CONNECTING
        try:
            transport = await self._transport_factory(self.url)
        except TransportError as exc:
            self.state = ConnectionState.DISCONNECTED
            self._emit(ConnectionEvent.ERROR, exc)
            raise
        except OSError as exc:
            self.state = ConnectionState.DISCONNECTED
            error = TransportError(f"Could not connect to {self.url}: {exc}")
            self._emit(ConnectionEvent.ERROR, error)
            raise error from exc

        self._transport = transport
        self._outbox = asyncio.Queue()
        self._forced_close = False
        self.reconnect_attempts = 0
        self.state = ConnectionState.CONNECTED
        self._reader_task = asyncio.create_task(self._read_loop(transport))
        self._writer_task = asyncio.create_task(self._write_loop(transport, self._outbox))
        if self.options.heartbeat_interval > 0:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        logger.info(f"Connected to {self.url}")
        self._emit(ConnectionEvent.CONNECTED, self.connection_info())

    def _teardown(self) -> None:
        current = asyncio.current_task()
        for task in (self._reader_task, self._writer_task, self._heartbeat_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._reader_task = self._writer_task = self._heartbeat_task = None
        self._transport = None

        for future in self._pending_pings.values():
            if not future.done():
                future.set_exception(PingCancelledError("Connection closed before pong arrived"))
        self._pending_pings.clear()

    # --- Reconnection -----------------------------------------------------

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    def _schedule_reconnect(self) -> None:
        if self.reconnect_attempts >= self.options.max_reconnect_attempts:
            self.state = ConnectionState.GIVEN_UP
            logger.error(f"Giving up on {self.url} after {self.reconnect_attempts} reconnect attempts")
            self._emit(ConnectionEvent.GIVEN_UP, {"attempts": self.reconnect_attempts})
            return

        delay = self.options.backoff_delay(self.reconnect_attempts)
        self.state = ConnectionState.RECONNECTING
        logger.info(f"Reconnecting to {self.url} in {delay} ms")
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay_ms: int) -> None:
        await asyncio.sleep(delay_ms / 1000)
        self.reconnect_attempts += 1
        self._emit(ConnectionEvent.RECONNECTING, {"attempt": self.reconnect_attempts, "delay_ms": delay_ms})
        try:
            await self._open()
        except TransportError as exc:
            logger.warning(f"Reconnect attempt {self.reconnect_attempts} failed: {exc}")
            if not self._closing:
                self._schedule_reconnect()

    async def _handle_closed(self, transport: Transport, code: int, was_clean: bool) -> None:
        if transport is not self._transport:
            return
        clean = was_clean and not self._forced_close
        self._forced_close = False
        self._teardown()
        self.state = ConnectionState.DISCONNECTED
        logger.info(f"Connection to {self.url} closed (code={code}, clean={clean})")
        self._emit(ConnectionEvent.DISCONNECTED, {"code": code, "was_clean": clean})

        if not clean and not self._closing and self.options.auto_reconnect:
            self._schedule_reconnect()

    async def _force_close(self, reason: str) -> None:
        """Close a transport that can no longer be trusted; always treated as unclean"""
        transport = self._transport
        if transport is None:
            return
        self._forced_close = True
        try:
            await transport.close(HEARTBEAT_TIMEOUT_CLOSURE, reason)
        except TransportError as exc:
            logger.warning(f"Error while force-closing transport: {exc}")

    # --- Background tasks -------------------------------------------------

    async def _read_loop(self, transport: Transport) -> None:
        while True:
            try:
                text = await transport.receive()
            except TransportClosed as exc:
                await self._handle_closed(transport, exc.code, exc.was_clean)
                return
            except TransportError as exc:
                self._emit(ConnectionEvent.ERROR, exc)
                await self._handle_closed(transport, ABNORMAL_CLOSURE, False)
                return
            except Exception as exc:
                logger.exception(f"Unexpected receive failure on {self.url}")
                self._emit(ConnectionEvent.ERROR, exc)
                await self._abandon(transport, "Receive failed")
                return

            try:
                message = RealtimeMessage.from_json(text)
            except ValueError as exc:
                logger.warning(f"Dropping malformed message: {exc}")
                self._emit(ConnectionEvent.ERROR, exc)
                continue

            try:
                self._handle_message(message)
            except Exception as exc:
                logger.exception(f"Failed to handle '{message.type}' message")
                self._emit(ConnectionEvent.ERROR, exc)

    async def _write_loop(self, transport: Transport, outbox: "asyncio.Queue[RealtimeMessage]") -> None:
        while True:
            message = await outbox.get()
            try:
                await transport.send(message.to_json())
            except TransportError as exc:
                logger.warning(f"Failed to send '{message.type}': {exc}")
                self._emit(ConnectionEvent.ERROR, exc)
                await self._abandon(transport, "Send failed")
                return
            self._emit(ConnectionEvent.SENT, message)

    async def _abandon(self, transport: Transport, reason: str) -> None:
        """Force-close a broken transport and take the unclean-close path without waiting for the peer"""
        await self._force_close(reason)
        await self._handle_closed(transport, ABNORMAL_CLOSURE, False)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.options.heartbeat_interval / 1000)
            try:
                await self.ping()
            except PingTimeoutError:
                logger.warning(f"Heartbeat to {self.url} timed out, forcing reconnect")
                await self._force_close("Heartbeat timeout")
                return
            except (PingCancelledError, TransportError):
                return

    def _handle_message(self, message: RealtimeMessage) -> None:
        if message.type == "pong" and isinstance(message.payload, dict):
            ping_id = message.payload.get("id")
            future = self._pending_pings.get(ping_id) if isinstance(ping_id, str) else None
            if future is not None and not future.done():
                future.set_result(message)

        if self._on_message is None:
            return
        try:
            self._on_message(message)
        except Exception:
            logger.exception(f"Message handler failed for '{message.type}'")

    # --- Messaging --------------------------------------------------------

    def send(self, type: str, payload: Any = None) -> bool:
        """Queue a message; False when the transport is not open"""
        if not self.is_connected:
            logger.debug(f"Not connected, dropping '{type}'")
            return False
        self._outbox.put_nowait(RealtimeMessage(type=type, payload=payload))
        return True

    async def ping(self) -> float:
        """Round-trip a ping and return the latency in milliseconds"""
        if not self.is_connected:
            raise TransportError("Not connected")

        ping_id = generate_message_id()
        future = asyncio.get_running_loop().create_future()
        self._pending_pings[ping_id] = future
        started = time.perf_counter()
        try:
            self.send("ping", {"id": ping_id})
            await asyncio.wait_for(future, timeout=self.options.ping_timeout / 1000)
        except asyncio.TimeoutError:
            raise PingTimeoutError(f"No pong within {self.options.ping_timeout} ms") from None
        finally:
            self._pending_pings.pop(ping_id, None)

        self.latency_ms = (time.perf_counter() - started) * 1000
        self.last_ping = now_ms()
        return self.latency_ms

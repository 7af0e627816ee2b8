import logging
from typing import Any, Callable, Optional
from urllib.parse import urlencode

from erp.realtime.connection import ConnectionEvent, ConnectionInfo, RealtimeConnection
from erp.realtime.dispatcher import Callback, MessageDispatcher, Remover
from erp.realtime.message import MessageKind
from erp.realtime.options import RealtimeOptions
from erp.realtime.transport import TransportFactory, websocket_transport

logger = logging.getLogger(__name__)


class RealtimeClient:
    """
    Channel subscriptions multiplexed over one RealtimeConnection.

    Owned by whoever builds it: call ``init()`` to connect and ``dispose()``
    to tear everything down. Active channels are subscribed again every
    time the connection (re)opens.
    """

    def __init__(
        self,
        url: str,
        options: Optional[RealtimeOptions] = None,
        transport_factory: TransportFactory = websocket_transport,
    ):
        self.dispatcher = MessageDispatcher()
        self.connection = RealtimeConnection(
            url,
            options=options,
            transport_factory=transport_factory,
            on_message=self.dispatcher.dispatch,
        )
        self._remove_resubscribe: Optional[Remover] = None

    @classmethod
    def from_settings(
        cls,
        settings,
        token: Optional[str] = None,
        transport_factory: TransportFactory = websocket_transport,
    ) -> "RealtimeClient":
        url = settings.REALTIME_URL
        if token:
            url = f"{url}?{urlencode({'token': token})}"
        return cls(url, RealtimeOptions.from_settings(settings), transport_factory)

    # --- Lifecycle --------------------------------------------------------

    async def init(self) -> None:
        if self._remove_resubscribe is None:
            self._remove_resubscribe = self.connection.add_listener(ConnectionEvent.CONNECTED, self._resubscribe)
        await self.connection.connect()

    async def dispose(self) -> None:
        if self._remove_resubscribe is not None:
            self._remove_resubscribe()
            self._remove_resubscribe = None
        await self.connection.disconnect()
        self.dispatcher.clear()

    def _resubscribe(self, _info: Any) -> None:
        for channel in self.dispatcher.channels:
            self.connection.send("subscribe", {"channel": channel})
        if self.dispatcher.channels:
            logger.info(f"Resubscribed to {len(self.dispatcher.channels)} channel(s)")

    # --- Channels ---------------------------------------------------------

    def subscribe(self, channel: str, callback: Callback) -> Remover:
        """Listen on a channel; the returned function removes this one registration"""
        remove = self.dispatcher.add_channel_callback(channel, callback)
        self.connection.send("subscribe", {"channel": channel})
        removed = False

        def unsubscribe() -> None:
            nonlocal removed
            if removed:
                return
            removed = True
            remove()
            if self.dispatcher.listener_count(channel) == 0:
                self.connection.send("unsubscribe", {"channel": channel})

        return unsubscribe

    def unsubscribe(self, channel: str) -> None:
        """Drop every local callback of a channel"""
        self.dispatcher.clear_channel(channel)
        self.connection.send("unsubscribe", {"channel": channel})

    # --- System messages --------------------------------------------------

    def on_notification(self, callback: Callback) -> Remover:
        return self.dispatcher.handler(MessageKind.NOTIFICATION).add_callback(callback)

    def on_update(self, callback: Callback) -> Remover:
        return self.dispatcher.handler(MessageKind.UPDATE).add_callback(callback)

    def on_error(self, callback: Callback) -> Remover:
        return self.dispatcher.handler(MessageKind.ERROR).add_callback(callback)

    def on_message(self, callback: Callback) -> Remover:
        """Catch-all for message types that are neither system nor channel tags"""
        return self.dispatcher.add_catch_all(callback)

    def on_connection_event(self, event: ConnectionEvent, callback: Callable[[Any], None]) -> Remover:
        return self.connection.add_listener(event, callback)

    # --- Passthrough ------------------------------------------------------

    def send(self, type: str, payload: Any = None) -> bool:
        return self.connection.send(type, payload)

    async def ping(self) -> float:
        return await self.connection.ping()

    @property
    def is_connected(self) -> bool:
        return self.connection.is_connected

    def connection_info(self) -> ConnectionInfo:
        return self.connection.connection_info()

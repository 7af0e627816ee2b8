from erp.realtime.client import RealtimeClient
from erp.realtime.connection import ConnectionEvent, ConnectionInfo, ConnectionState, RealtimeConnection
from erp.realtime.dispatcher import MessageDispatcher, MessageHandler
from erp.realtime.exceptions import (
    PingCancelledError,
    PingTimeoutError,
    RealtimeError,
    TransportClosed,
    TransportError,
)
from erp.realtime.message import MessageKind, RealtimeMessage
from erp.realtime.options import RealtimeOptions
from erp.realtime.transport import Transport, websocket_transport

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

from erp.realtime.message import MessageKind, RealtimeMessage, channel_name, classify

logger = logging.getLogger(__name__)

Callback = Callable[[Any], None]
Remover = Callable[[], None]


def _invoke(callback: Callback, argument: Any, label: str) -> None:
    try:
        callback(argument)
    except Exception:
        logger.exception(f"Callback for {label} failed")


class _Registrations:
    """Ordered callbacks where each add() can be undone exactly once"""

    def __init__(self):
        self._entries: List[Tuple[object, Callback]] = []

    def add(self, callback: Callback) -> Remover:
        token = object()
        self._entries.append((token, callback))

        def remove() -> None:
            self._entries = [entry for entry in self._entries if entry[0] is not token]

        return remove

    def clear(self) -> int:
        removed = len(self._entries)
        self._entries = []
        return removed

    def callbacks(self) -> List[Callback]:
        return [callback for _, callback in self._entries]

    def __len__(self) -> int:
        return len(self._entries)


class MessageHandler(ABC):
    """Fixed handler for one system message kind"""

    kind: MessageKind

    def __init__(self):
        self._registrations = _Registrations()

    def add_callback(self, callback: Callback) -> Remover:
        return self._registrations.add(callback)

    def clear(self) -> None:
        self._registrations.clear()

    def notify(self, payload: Any) -> None:
        for callback in self._registrations.callbacks():
            _invoke(callback, payload, self.kind.value)

    @abstractmethod
    def handle(self, message: RealtimeMessage) -> None:
        ...


class PongHandler(MessageHandler):
    kind = MessageKind.PONG

    def handle(self, message: RealtimeMessage) -> None:
        # Ping futures are resolved by the connection before dispatch
        logger.debug(f"Pong received: {message.payload}")
        self.notify(message.payload)


class ErrorHandler(MessageHandler):
    kind = MessageKind.ERROR

    def handle(self, message: RealtimeMessage) -> None:
        logger.warning(f"Server reported error: {message.payload}")
        self.notify(message.payload)


class NotificationHandler(MessageHandler):
    kind = MessageKind.NOTIFICATION

    def handle(self, message: RealtimeMessage) -> None:
        self.notify(message.payload)


class UpdateHandler(MessageHandler):
    kind = MessageKind.UPDATE

    def handle(self, message: RealtimeMessage) -> None:
        self.notify(message.payload)


def default_handlers() -> Dict[MessageKind, MessageHandler]:
    handlers = [PongHandler(), ErrorHandler(), NotificationHandler(), UpdateHandler()]
    return {handler.kind: handler for handler in handlers}


class MessageDispatcher:
    """
    Routes inbound messages by kind.

    System kinds go to their MessageHandler, ``channel:<name>`` messages go
    to every callback of that channel (with the payload) and anything else
    goes to the catch-all callbacks (with the whole message).
    """

    def __init__(self, handlers: Optional[Dict[MessageKind, MessageHandler]] = None):
        self.handlers = handlers or default_handlers()
        missing = {MessageKind.PONG, MessageKind.ERROR, MessageKind.NOTIFICATION, MessageKind.UPDATE} - set(self.handlers)
        if missing:
            raise ValueError(f"Missing handlers for: {sorted(kind.value for kind in missing)}")
        self._channels: Dict[str, _Registrations] = {}
        self._catch_all = _Registrations()

    def handler(self, kind: MessageKind) -> MessageHandler:
        return self.handlers[kind]

    def add_channel_callback(self, channel: str, callback: Callback) -> Remover:
        registrations = self._channels.setdefault(channel, _Registrations())
        remove = registrations.add(callback)

        def remove_and_prune() -> None:
            remove()
            if not registrations and self._channels.get(channel) is registrations:
                del self._channels[channel]

        return remove_and_prune

    def clear_channel(self, channel: str) -> int:
        registrations = self._channels.pop(channel, None)
        return registrations.clear() if registrations else 0

    def listener_count(self, channel: str) -> int:
        registrations = self._channels.get(channel)
        return len(registrations) if registrations else 0

    @property
    def channels(self) -> List[str]:
        return list(self._channels)

    def add_catch_all(self, callback: Callback) -> Remover:
        return self._catch_all.add(callback)

    def clear(self) -> None:
        self._channels.clear()
        self._catch_all.clear()
        for handler in self.handlers.values():
            handler.clear()

    def dispatch(self, message: RealtimeMessage) -> None:
        kind = classify(message.type)
        if kind is MessageKind.CHANNEL:
            channel = channel_name(message.type)
            registrations = self._channels.get(channel)
            if registrations is None:
                logger.debug(f"No listeners for channel '{channel}'")
                return
            for callback in registrations.callbacks():
                _invoke(callback, message.payload, message.type)
        elif kind is MessageKind.OTHER:
            for callback in self._catch_all.callbacks():
                _invoke(callback, message, message.type)
        else:
            self.handlers[kind].handle(message)

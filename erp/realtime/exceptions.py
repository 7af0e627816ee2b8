class RealtimeError(Exception):
    """Base class for realtime channel failures"""


class TransportError(RealtimeError):
    """The underlying transport could not be opened or used"""


class TransportClosed(TransportError):
    def __init__(self, code: int = 1006, reason: str = "", was_clean: bool = False):
        super().__init__(f"Transport closed (code={code}, reason={reason!r}, clean={was_clean})")
        self.code = code
        self.reason = reason
        self.was_clean = was_clean


class PingTimeoutError(RealtimeError, TimeoutError):
    """No matching pong arrived within the ping timeout"""


class PingCancelledError(RealtimeError):
    """The connection was torn down while a ping was in flight"""

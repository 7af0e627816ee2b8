from pydantic import BaseModel, Field


class RealtimeOptions(BaseModel):
    """Connection tuning; every duration is in milliseconds"""

    auto_reconnect: bool = True
    max_reconnect_attempts: int = Field(default=10, ge=0)
    reconnect_delay: int = Field(default=1000, ge=0)
    heartbeat_interval: int = Field(default=30000, ge=0)  # 0 disables the heartbeat
    ping_timeout: int = Field(default=5000, gt=0)

    def backoff_delay(self, attempts: int) -> int:
        return self.reconnect_delay * (2 ** attempts)

    @classmethod
    def from_settings(cls, settings) -> "RealtimeOptions":
        return cls(
            auto_reconnect=settings.REALTIME_AUTO_RECONNECT,
            max_reconnect_attempts=settings.REALTIME_MAX_RECONNECT_ATTEMPTS,
            reconnect_delay=settings.REALTIME_RECONNECT_DELAY_MS,
            heartbeat_interval=settings.REALTIME_HEARTBEAT_INTERVAL_MS,
            ping_timeout=settings.REALTIME_PING_TIMEOUT_MS,
        )

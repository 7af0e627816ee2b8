import json
import time
import uuid
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

CHANNEL_PREFIX = "channel:"


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_message_id() -> str:
    return f"{now_ms()}-{uuid.uuid4().hex[:9]}"


class RealtimeMessage(BaseModel):
    """Wire envelope shared by the client and the channel hub"""

    type: str
    payload: Any = None
    timestamp: int = Field(default_factory=now_ms)
    id: str = Field(default_factory=generate_message_id)

    def to_json(self) -> str:
        return json.dumps(self.model_dump(), default=str)

    @classmethod
    def from_json(cls, text: str) -> "RealtimeMessage":
        return cls.model_validate_json(text)


class MessageKind(str, Enum):
    PONG = "pong"
    ERROR = "error"
    NOTIFICATION = "notification"
    UPDATE = "update"
    CHANNEL = "channel"
    OTHER = "other"


_SYSTEM_KINDS = {
    "pong": MessageKind.PONG,
    "error": MessageKind.ERROR,
    "notification": MessageKind.NOTIFICATION,
    "update": MessageKind.UPDATE,
}


def classify(message_type: str) -> MessageKind:
    if message_type in _SYSTEM_KINDS:
        return _SYSTEM_KINDS[message_type]
    if message_type.startswith(CHANNEL_PREFIX) and len(message_type) > len(CHANNEL_PREFIX):
        return MessageKind.CHANNEL
    return MessageKind.OTHER


def channel_tag(channel: str) -> str:
    return f"{CHANNEL_PREFIX}{channel}"


def channel_name(message_type: str) -> Optional[str]:
    if classify(message_type) is not MessageKind.CHANNEL:
        return None
    return message_type[len(CHANNEL_PREFIX):]

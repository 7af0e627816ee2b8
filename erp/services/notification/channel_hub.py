import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect

from erp.realtime.message import RealtimeMessage, channel_tag

logger = logging.getLogger(__name__)

NOTIFICATIONS_CHANNEL = "notifications"


@dataclass
class ClientInfo:
    id: str
    user_id: int
    websocket: WebSocket
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_activity: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    subscriptions: Set[str] = field(default_factory=set)


class ChannelHub:
    """Server side of the realtime channel: connected sockets and their channel subscriptions"""

    def __init__(self):
        self._clients: Dict[str, ClientInfo] = {}
        self._channels: Dict[str, Set[str]] = {}  # channel: {client_id}
        self.total_connections = 0
        self.total_messages = 0
        self.total_errors = 0

    async def connect(self, websocket: WebSocket, user_id: int) -> ClientInfo:
        """Register an accepted websocket and greet it"""
        client = ClientInfo(id=uuid.uuid4().hex, user_id=user_id, websocket=websocket)
        self._clients[client.id] = client
        self.total_connections += 1
        logger.info(f"Client {client.id} connected for user {user_id}")

        await self._send(client, RealtimeMessage(
            type="connected",
            payload={
                "client_id": client.id,
                "message": "Connected to ERP realtime server",
            },
        ))
        return client

    def disconnect(self, client_id: str) -> None:
        client = self._clients.pop(client_id, None)
        if client is None:
            return
        for channel in client.subscriptions:
            members = self._channels.get(channel)
            if members is None:
                continue
            members.discard(client_id)
            if not members:
                del self._channels[channel]
        logger.info(f"Client {client_id} disconnected (user {client.user_id})")

    async def handle_text(self, client_id: str, text: str) -> None:
        client = self._clients.get(client_id)
        if client is None:
            return
        client.last_activity = datetime.now(timezone.utc)
        self.total_messages += 1

        try:
            message = RealtimeMessage.from_json(text)
        except ValueError as exc:
            self.total_errors += 1
            logger.warning(f"Invalid message from client {client_id}: {exc}")
            await self._send(client, RealtimeMessage(
                type="error",
                payload={"message": "Invalid message format", "error": str(exc)},
            ))
            return

        payload = message.payload if isinstance(message.payload, dict) else {}

        if message.type == "ping":
            await self._send(client, RealtimeMessage(
                type="pong",
                payload={"id": payload.get("id"), "timestamp": message.timestamp},
            ))
        elif message.type in ("subscribe", "unsubscribe"):
            channel = payload.get("channel")
            if not channel:
                await self._send(client, RealtimeMessage(type="error", payload={"message": "Channel is required"}))
                return
            if message.type == "subscribe":
                self._subscribe(client, channel)
            else:
                self._unsubscribe(client, channel)
            await self._send(client, RealtimeMessage(
                type=f"{message.type}d",
                payload={"channel": channel},
            ))
        elif message.type == "notification":
            logger.info(f"Notification from user {client.user_id}: {payload}")
            await self.broadcast_to_channel(
                NOTIFICATIONS_CHANNEL,
                {**payload, "from": client.user_id},
                message_type="notification",
            )
        else:
            logger.debug(f"Ignoring message type '{message.type}' from client {client_id}")

    def _subscribe(self, client: ClientInfo, channel: str) -> None:
        self._channels.setdefault(channel, set()).add(client.id)
        client.subscriptions.add(channel)
        logger.info(f"Client {client.id} subscribed to '{channel}'")

    def _unsubscribe(self, client: ClientInfo, channel: str) -> None:
        members = self._channels.get(channel)
        if members is not None:
            members.discard(client.id)
            if not members:
                del self._channels[channel]
        client.subscriptions.discard(channel)
        logger.info(f"Client {client.id} unsubscribed from '{channel}'")

    async def _send(self, client: ClientInfo, message: RealtimeMessage) -> bool:
        try:
            await client.websocket.send_text(message.to_json())
            return True
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            self.total_errors += 1
            logger.warning(f"Failed to send '{message.type}' to client {client.id}: {exc}")
            # Remove disconnected websocket
            self.disconnect(client.id)
            return False

    async def broadcast_to_channel(
        self,
        channel: str,
        payload: Any,
        message_type: Optional[str] = None,
    ) -> int:
        """Send to every subscriber of a channel; returns the number of recipients"""
        members = list(self._channels.get(channel, ()))
        if not members:
            return 0
        message = RealtimeMessage(type=message_type or channel_tag(channel), payload=payload)
        delivered = 0
        for client_id in members:
            client = self._clients.get(client_id)
            if client is not None and await self._send(client, message):
                delivered += 1
        return delivered

    async def publish(self, channel: str, payload: Any) -> int:
        return await self.broadcast_to_channel(channel, payload)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "total_connections": self.total_connections,
            "current_connections": len(self._clients),
            "total_messages": self.total_messages,
            "total_errors": self.total_errors,
            "channels": {channel: len(members) for channel, members in self._channels.items()},
        }

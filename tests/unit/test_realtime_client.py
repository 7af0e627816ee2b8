import pytest

from erp.realtime.client import RealtimeClient
from erp.realtime.connection import ConnectionEvent
from erp.realtime.options import RealtimeOptions


@pytest.fixture
async def client(server):
    client = RealtimeClient(
        "ws://test/api/v1/realtime/ws",
        RealtimeOptions(heartbeat_interval=0, reconnect_delay=1),
        transport_factory=server.factory,
    )
    await client.init()
    yield client
    await client.dispose()


def subscriptions(transport):
    return [(m["type"], m["payload"]["channel"]) for m in transport.sent if m["type"] in ("subscribe", "unsubscribe")]


@pytest.mark.asyncio
class TestSubscriptions:
    """subscribe / unsubscribe wire traffic and local registrations"""

    async def test_subscribe_sends_every_time(self, client, server, wait_until):
        client.subscribe("inventory", lambda payload: None)
        client.subscribe("inventory", lambda payload: None)
        await wait_until(lambda: len(server.latest.sent) == 2)

        assert subscriptions(server.latest) == [("subscribe", "inventory"), ("subscribe", "inventory")]

    async def test_unsubscribe_sent_only_when_last_listener_leaves(self, client, server, wait_until):
        first = client.subscribe("inventory", lambda payload: None)
        second = client.subscribe("inventory", lambda payload: None)

        first()
        first()
        await wait_until(lambda: len(server.latest.sent) == 2)
        assert client.dispatcher.listener_count("inventory") == 1

        second()
        await wait_until(lambda: len(server.latest.sent) == 3)

        assert subscriptions(server.latest)[-1] == ("unsubscribe", "inventory")
        assert client.dispatcher.channels == []

    async def test_unsubscribe_drops_all_callbacks(self, client, server, wait_until):
        received = []
        client.subscribe("inventory", received.append)
        client.subscribe("inventory", received.append)

        client.unsubscribe("inventory")
        server.latest.push({"type": "channel:inventory", "payload": {"n": 1}})
        await wait_until(lambda: len(server.latest.sent) == 3)

        assert received == []
        assert subscriptions(server.latest)[-1] == ("unsubscribe", "inventory")

    async def test_channel_payload_delivered(self, client, server, wait_until):
        received = []
        client.subscribe("stock-alerts", received.append)

        server.latest.push({"type": "channel:stock-alerts", "payload": {"product_id": 7}})
        await wait_until(lambda: received)

        assert received == [{"product_id": 7}]

    async def test_subscribe_before_init_is_sent_on_connect(self, server, wait_until):
        client = RealtimeClient(
            "ws://test/ws",
            RealtimeOptions(heartbeat_interval=0),
            transport_factory=server.factory,
        )
        assert client.send("notification", {}) is False
        client.subscribe("inventory", lambda payload: None)

        await client.init()
        await wait_until(lambda: server.latest.sent)

        assert subscriptions(server.latest) == [("subscribe", "inventory")]
        await client.dispose()

    async def test_resubscribes_after_reconnect(self, client, server, wait_until):
        client.subscribe("inventory", lambda payload: None)
        client.subscribe("stock-alerts", lambda payload: None)
        first = server.latest

        first.drop()
        await wait_until(lambda: len(server.transports) == 2 and len(server.latest.sent) == 2)

        assert sorted(subscriptions(server.latest)) == [
            ("subscribe", "inventory"),
            ("subscribe", "stock-alerts"),
        ]


@pytest.mark.asyncio
class TestHandlers:
    """System message handlers and the catch-all"""

    async def test_system_handlers(self, client, server, wait_until):
        notifications, updates, errors = [], [], []
        client.on_notification(notifications.append)
        client.on_update(updates.append)
        client.on_error(errors.append)

        server.latest.push({"type": "notification", "payload": {"title": "Low stock"}})
        server.latest.push({"type": "update", "payload": {"id": 3}})
        server.latest.push({"type": "error", "payload": {"message": "Channel is required"}})
        await wait_until(lambda: errors)

        assert notifications == [{"title": "Low stock"}]
        assert updates == [{"id": 3}]
        assert errors == [{"message": "Channel is required"}]

    async def test_catch_all_gets_unknown_types(self, client, server, wait_until):
        messages = []
        client.on_message(messages.append)

        server.latest.push({"type": "subscribed", "payload": {"channel": "inventory"}})
        await wait_until(lambda: messages)

        assert messages[0].type == "subscribed"
        assert messages[0].payload == {"channel": "inventory"}

    async def test_handler_remover(self, client, server, wait_until):
        notifications, updates = [], []
        remove = client.on_notification(notifications.append)
        client.on_update(updates.append)
        remove()

        server.latest.push({"type": "notification", "payload": 1})
        server.latest.push({"type": "update", "payload": 2})
        await wait_until(lambda: updates)

        assert notifications == []

    async def test_failing_callback_isolated(self, client, server, wait_until):
        received = []

        def broken(payload):
            raise ValueError("bad callback")

        client.subscribe("inventory", broken)
        client.subscribe("inventory", received.append)

        server.latest.push({"type": "channel:inventory", "payload": 1})
        server.latest.push({"type": "channel:inventory", "payload": 2})
        await wait_until(lambda: len(received) == 2)

        assert received == [1, 2]
        assert client.is_connected

    async def test_ping_passthrough(self, client):
        latency = await client.ping()
        assert latency >= 0
        assert client.connection_info().last_ping is not None

    async def test_connection_events(self, client, server, wait_until):
        events = []
        client.on_connection_event(ConnectionEvent.DISCONNECTED, events.append)

        server.latest.server_close()
        await wait_until(lambda: events)

        assert events[0]["was_clean"] is True


@pytest.mark.asyncio
class TestDispose:
    async def test_dispose_clears_everything(self, server):
        client = RealtimeClient(
            "ws://test/ws",
            RealtimeOptions(heartbeat_interval=0),
            transport_factory=server.factory,
        )
        received = []
        client.subscribe("inventory", received.append)
        client.on_notification(received.append)
        await client.init()

        await client.dispose()

        assert not client.is_connected
        assert client.dispatcher.channels == []
        assert client.send("notification", {}) is False
        assert server.latest.close_calls == [(1000, "Client disconnect")]

    async def test_from_settings_appends_token(self):
        class FakeSettings:
            REALTIME_URL = "ws://localhost:8000/api/v1/realtime/ws"
            REALTIME_AUTO_RECONNECT = True
            REALTIME_MAX_RECONNECT_ATTEMPTS = 2
            REALTIME_RECONNECT_DELAY_MS = 10
            REALTIME_HEARTBEAT_INTERVAL_MS = 0
            REALTIME_PING_TIMEOUT_MS = 100

        client = RealtimeClient.from_settings(FakeSettings, token="abc")

        assert client.connection.url == "ws://localhost:8000/api/v1/realtime/ws?token=abc"
        assert client.connection.options.max_reconnect_attempts == 2

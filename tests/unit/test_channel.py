"""
Unit tests for the real-time push channel.
"""

import asyncio

import pytest

from clinicbook.services.channel import RealtimeChannel
from clinicbook.stomp import Frame

SLOTS = "/topic/slots"


async def settle(rounds: int = 20) -> None:
    """Let queued frames and handler coroutines run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
async def channel(connector):
    channel = RealtimeChannel("ws://broker.test/ws/websocket", reconnect_delay=0, connector=connector)
    yield channel
    await channel.disconnect()


async def connected(channel: RealtimeChannel) -> None:
    channel.connect()
    await channel.wait_connected(timeout=1)
    await settle()


class TestConnect:
    """Test connection handling."""

    @pytest.mark.asyncio
    async def test_connect_is_idempotent(self, channel, connector):
        """Repeated connect calls share one connection."""
        first = channel.connect()
        second = channel.connect()
        await channel.wait_connected(timeout=1)
        assert first is second
        assert len(connector.sockets) == 1
        assert connector.socket.commands("CONNECT")[0].header("host") == "broker.test"

    @pytest.mark.asyncio
    async def test_stomp_subprotocols_requested(self, channel, connector):
        await connected(channel)
        url, kwargs = connector.calls[0]
        assert url == "ws://broker.test/ws/websocket"
        assert "v12.stomp" in kwargs["subprotocols"]

    @pytest.mark.asyncio
    async def test_disconnect_when_never_connected(self, connector):
        """Disconnecting an unused channel is a no-op."""
        channel = RealtimeChannel("ws://broker.test/ws", connector=connector)
        await channel.disconnect()
        await channel.disconnect()
        assert connector.sockets == []

    @pytest.mark.asyncio
    async def test_disconnect_clears_subscriptions(self, channel, connector):
        subscription = channel.subscribe(SLOTS, lambda payload: None)
        await connected(channel)
        await channel.disconnect()

        assert not channel.is_connected
        assert channel.subscriptions == []
        assert connector.socket.commands("DISCONNECT")
        assert connector.socket.closed
        subscription.unsubscribe()


class TestSubscriptionQueueing:
    """Test subscriptions requested before the channel is up."""

    @pytest.mark.asyncio
    async def test_pending_subscription_materialised_once(self, channel, connector):
        """A subscription made before connecting is sent exactly once."""
        received = []
        subscription = channel.subscribe(SLOTS, received.append)
        assert not subscription.live

        await connected(channel)
        subscribes = connector.socket.commands("SUBSCRIBE")
        assert len(subscribes) == 1
        assert subscribes[0].header("destination") == SLOTS
        assert subscription.live

        connector.socket.deliver(subscription.id, SLOTS, '{"action": "REMOVE"}')
        await settle()
        assert received == [{"action": "REMOVE"}]

    @pytest.mark.asyncio
    async def test_subscribe_when_connected(self, channel, connector):
        await connected(channel)
        channel.subscribe(SLOTS, lambda payload: None)
        await settle()
        assert len(connector.socket.commands("SUBSCRIBE")) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe_before_connect(self, channel, connector):
        """A pending subscription cancelled before connecting is never sent."""
        subscription = channel.subscribe(SLOTS, lambda payload: None)
        subscription.unsubscribe()
        await connected(channel)
        assert connector.socket.commands("SUBSCRIBE") == []

    @pytest.mark.asyncio
    async def test_unsubscribe_is_idempotent(self, channel, connector):
        subscription = channel.subscribe(SLOTS, lambda payload: None)
        await connected(channel)

        subscription.unsubscribe()
        subscription.unsubscribe()
        await settle()

        assert len(connector.socket.commands("UNSUBSCRIBE")) == 1
        assert channel.subscriptions == []

    @pytest.mark.asyncio
    async def test_resubscribe_after_reconnect(self, channel, connector):
        """Subscriptions are restored on a new connection, once each."""
        received = []
        subscription = channel.subscribe(SLOTS, received.append)
        await connected(channel)

        connector.socket.drop()
        await settle(50)
        await channel.wait_connected(timeout=1)
        await settle()

        assert len(connector.sockets) == 2
        assert len(connector.sockets[0].commands("SUBSCRIBE")) == 1
        assert len(connector.sockets[1].commands("SUBSCRIBE")) == 1

        connector.socket.deliver(subscription.id, SLOTS, '{"n": 1}')
        await settle()
        assert received == [{"n": 1}]


class TestDelivery:
    """Test message dispatch."""

    @pytest.mark.asyncio
    async def test_malformed_json_does_not_block(self, channel, connector):
        received = []
        subscription = channel.subscribe(SLOTS, received.append)
        await connected(channel)

        connector.socket.deliver(subscription.id, SLOTS, "not json")
        connector.socket.deliver(subscription.id, SLOTS, '{"n": 2}')
        await settle()
        assert received == [{"n": 2}]

    @pytest.mark.asyncio
    async def test_handler_error_does_not_block(self, channel, connector):
        received = []

        def handler(payload):
            if payload["n"] == 1:
                raise RuntimeError("boom")
            received.append(payload)

        subscription = channel.subscribe(SLOTS, handler)
        await connected(channel)
        connector.socket.deliver(subscription.id, SLOTS, '{"n": 1}')
        connector.socket.deliver(subscription.id, SLOTS, '{"n": 2}')
        await settle()
        assert received == [{"n": 2}]

    @pytest.mark.asyncio
    async def test_async_handlers_keep_order(self, channel, connector):
        received = []

        async def handler(payload):
            await settle(2)
            received.append(payload["n"])

        subscription = channel.subscribe(SLOTS, handler)
        await connected(channel)
        for n in range(5):
            connector.socket.deliver(subscription.id, SLOTS, f'{{"n": {n}}}')
        await settle(50)
        assert received == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_broker_error_is_not_fatal(self, channel, connector):
        received = []
        subscription = channel.subscribe(SLOTS, received.append)
        await connected(channel)

        connector.socket.deliver_frame(Frame(command="ERROR", headers={"message": "quota"}))
        connector.socket.deliver(subscription.id, SLOTS, '{"n": 3}')
        await settle()
        assert received == [{"n": 3}]
        assert channel.is_connected

    @pytest.mark.asyncio
    async def test_no_delivery_after_unsubscribe(self, channel, connector):
        received = []
        subscription = channel.subscribe(SLOTS, received.append)
        await connected(channel)
        subscription.unsubscribe()

        connector.socket.deliver(subscription.id, SLOTS, '{"n": 4}')
        await settle()
        assert received == []

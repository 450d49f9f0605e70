"""Tests for ConnectionManager."""

import asyncio
import json
import random
from unittest.mock import Mock

import pytest

from livesync.config import ConnectionSettings
from livesync.connection import ConnectionManager
from livesync.models import BusMessage, ConnectionStatus, SseMessage, Topic


def collect(event_bus, topic):
    seen = []

    async def handler(msg: BusMessage):
        seen.append(msg.payload)

    event_bus.subscribe(topic, handler)
    return seen


class TestConnect:
    """Tests for connect()."""

    @pytest.mark.asyncio
    async def test_connect_opens_transport_with_token(self, connection, transport):
        """Test that connect opens the transport with the current token."""
        connection.connect()

        assert transport.opened_with == ["tok-1"]
        assert connection.status == ConnectionStatus.CONNECTING

    @pytest.mark.asyncio
    async def test_open_marks_status_open(self, connection, transport, event_bus):
        """Test that the open callback marks the connection open."""
        statuses = collect(event_bus, Topic.STATUS)

        connection.connect()
        transport.fire_open()
        await connection.drain()

        assert connection.connected
        assert statuses == [ConnectionStatus.CONNECTING, ConnectionStatus.OPEN]

    @pytest.mark.asyncio
    async def test_missing_token_schedules_retry(self, connection, transport, token):
        """Test that no token means no network attempt, only a retry."""
        token["value"] = None

        connection.connect()

        assert transport.opened_with == []
        assert connection.status == ConnectionStatus.DISCONNECTED
        assert connection.retry_pending

    @pytest.mark.asyncio
    async def test_repeated_connect_without_token_keeps_one_timer(self, connection, token):
        """Test that rescheduling cancels the previous retry timer."""
        token["value"] = None

        connection.connect()
        first = connection._retry_handle
        connection.connect()

        assert first.cancelled()
        assert connection._retry_handle is not first
        assert connection.retry_pending

    @pytest.mark.asyncio
    async def test_reconnect_replaces_transport(self, connection, transport):
        """Test that a second connect closes the previous stream first."""
        connection.connect()
        closes = transport.close_calls
        connection.connect()

        assert transport.close_calls > closes
        assert transport.opened_with == ["tok-1", "tok-1"]


class TestErrorAndRetry:
    """Tests for error handling and reconnect scheduling."""

    @pytest.mark.asyncio
    async def test_error_disconnects_and_schedules_retry(self, connection, transport):
        """Test that a transport error leads to DISCONNECTED plus one retry."""
        connection.connect()
        transport.fire_open()
        transport.fire_error()

        assert connection.status == ConnectionStatus.DISCONNECTED
        assert connection.retry_pending
        assert not transport.is_open

    @pytest.mark.asyncio
    async def test_manual_connect_during_pending_retry(self, connection, transport):
        """Test that a manual connect does not leave a second retry timer."""
        connection.connect()
        transport.fire_open()
        transport.fire_error()
        pending = connection._retry_handle

        connection.connect()

        assert pending.cancelled()
        assert not connection.retry_pending
        assert len(transport.opened_with) == 2

    @pytest.mark.asyncio
    async def test_retry_fires_and_reconnects(self, transport, channel_api, event_bus):
        """Test that the retry timer opens a new transport."""
        cm = ConnectionManager(
            transport,
            channel_api,
            event_bus,
            lambda: "tok",
            settings=ConnectionSettings(retry_base_delay=0.01, retry_jitter=0.0),
        )
        try:
            cm.connect()
            transport.fire_error()
            await asyncio.sleep(0.05)

            assert len(transport.opened_with) == 2
            assert cm.status == ConnectionStatus.RETRYING
            assert not cm.retry_pending
        finally:
            await cm.stop()

    @pytest.mark.asyncio
    async def test_open_resets_attempts(self, connection, transport):
        """Test that a successful open cancels the retry and resets backoff."""
        connection.connect()
        transport.fire_error()
        transport.fire_error()
        assert connection._attempt == 2

        connection.connect()
        transport.fire_open()

        assert connection._attempt == 0
        assert not connection.retry_pending

    def test_backoff_is_exponential_and_capped(self, transport, channel_api, event_bus):
        """Test the backoff delay sequence without jitter."""
        cm = ConnectionManager(
            transport,
            channel_api,
            event_bus,
            lambda: "tok",
            settings=ConnectionSettings(
                retry_base_delay=1.0, retry_factor=2.0, retry_max_delay=30.0, retry_jitter=0.0
            ),
        )

        assert [cm._backoff_delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]
        assert cm._backoff_delay(20) == 30.0

    def test_backoff_jitter_is_bounded(self, transport, channel_api, event_bus):
        """Test that jitter only ever adds up to the configured fraction."""
        cm = ConnectionManager(
            transport,
            channel_api,
            event_bus,
            lambda: "tok",
            settings=ConnectionSettings(retry_base_delay=4.0, retry_jitter=0.25),
            rng=random.Random(1),
        )

        for _ in range(50):
            assert 4.0 <= cm._backoff_delay(1) <= 5.0


class TestMessages:
    """Tests for message parsing and fan-out."""

    @pytest.mark.asyncio
    async def test_message_is_parsed_and_published(self, connection, transport, event_bus):
        """Test that a JSON message reaches MESSAGE subscribers."""
        messages = collect(event_bus, Topic.MESSAGE)
        connection.connect()
        transport.fire_open()

        transport.fire_message(
            json.dumps({"event": "jobprogress", "channel": "u1", "data": {"job_id": "J1"}})
        )
        await connection.drain()

        assert len(messages) == 1
        assert isinstance(messages[0], SseMessage)
        assert messages[0].event == "jobprogress"
        assert messages[0].data == {"job_id": "J1"}
        assert connection.last_message is messages[0]

    @pytest.mark.asyncio
    async def test_malformed_message_is_dropped(self, connection, transport, event_bus):
        """Test that unparseable payloads are dropped without side effects."""
        messages = collect(event_bus, Topic.MESSAGE)
        connection.connect()
        transport.fire_open()

        transport.fire_message("{not json")
        transport.fire_message("[1, 2]")
        await connection.drain()

        assert messages == []
        assert connection.last_message is None
        assert connection.connected

    @pytest.mark.asyncio
    async def test_messages_keep_arrival_order(self, connection, transport, event_bus):
        """Test that fan-out preserves arrival order."""
        messages = collect(event_bus, Topic.MESSAGE)
        connection.connect()
        transport.fire_open()

        for i in range(5):
            transport.fire_message(json.dumps({"event": f"e{i}", "channel": "u1"}))
        await connection.drain()

        assert [m.event for m in messages] == ["e0", "e1", "e2", "e3", "e4"]

    @pytest.mark.asyncio
    async def test_recent_messages_ring(self, transport, channel_api, event_bus):
        """Test that only the most recent messages are retained."""
        cm = ConnectionManager(
            transport,
            channel_api,
            event_bus,
            lambda: "tok",
            settings=ConnectionSettings(recent_messages=3),
        )
        try:
            cm.connect()
            for i in range(5):
                transport.fire_message(json.dumps({"event": f"e{i}", "channel": "c"}))

            assert [m.event for m in cm.messages] == ["e2", "e3", "e4"]
        finally:
            await cm.stop()


class TestChannels:
    """Tests for subscribe/unsubscribe bookkeeping."""

    @pytest.mark.asyncio
    async def test_subscribe_when_not_connected_fails(self, connection, channel_api):
        """Test that subscribing while disconnected fails without a call."""
        assert await connection.subscribe("u1") is False
        channel_api.subscribe_channel.assert_not_called()
        assert connection.subscribed_channels == frozenset()

    @pytest.mark.asyncio
    async def test_subscribe_is_idempotent(self, connection, transport, channel_api):
        """Test that subscribing twice makes one network call."""
        connection.connect()
        transport.fire_open()

        assert await connection.subscribe("u1") is True
        assert await connection.subscribe(" u1 ") is True

        channel_api.subscribe_channel.assert_awaited_once_with("u1")
        assert connection.subscribed_channels == frozenset({"u1"})

    @pytest.mark.asyncio
    async def test_unsubscribe_not_joined_is_noop(self, connection, transport, channel_api):
        """Test that leaving a channel never joined makes no call."""
        connection.connect()
        transport.fire_open()

        assert await connection.unsubscribe("u1") is True
        channel_api.unsubscribe_channel.assert_not_called()

    @pytest.mark.asyncio
    async def test_unsubscribe_removes_membership(self, connection, transport, channel_api):
        """Test a normal subscribe/unsubscribe cycle."""
        connection.connect()
        transport.fire_open()
        await connection.subscribe("u1")

        assert await connection.unsubscribe("u1") is True
        channel_api.unsubscribe_channel.assert_awaited_once_with("u1")
        assert connection.subscribed_channels == frozenset()

    @pytest.mark.asyncio
    async def test_subscribe_remote_failure(self, connection, transport, channel_api):
        """Test that a failing remote call leaves membership unchanged."""
        channel_api.subscribe_channel.side_effect = RuntimeError("503")
        connection.connect()
        transport.fire_open()

        assert await connection.subscribe("u1") is False
        assert connection.subscribed_channels == frozenset()

    @pytest.mark.asyncio
    async def test_unsubscribe_remote_failure(self, connection, transport, channel_api):
        """Test that a failing unsubscribe keeps the channel."""
        connection.connect()
        transport.fire_open()
        await connection.subscribe("u1")
        channel_api.unsubscribe_channel.side_effect = RuntimeError("503")

        assert await connection.unsubscribe("u1") is False
        assert connection.subscribed_channels == frozenset({"u1"})

    @pytest.mark.asyncio
    async def test_error_clears_membership(self, connection, transport):
        """Test that channels must be rejoined after the stream drops."""
        connection.connect()
        transport.fire_open()
        await connection.subscribe("u1")

        transport.fire_error()

        assert connection.subscribed_channels == frozenset()

    @pytest.mark.asyncio
    async def test_manual_reconnect_requires_rejoin(self, connection, transport, channel_api):
        """Test that a connect over an open stream forgets membership."""
        connection.connect()
        transport.fire_open()
        await connection.subscribe("u1")

        connection.connect()
        assert connection.subscribed_channels == frozenset()
        transport.fire_open()
        assert await connection.subscribe("u1") is True

        assert channel_api.subscribe_channel.await_count == 2
        assert connection.subscribed_channels == frozenset({"u1"})


class TestClose:
    """Tests for close()."""

    @pytest.mark.asyncio
    async def test_close_cancels_retry_and_clears_state(self, connection, transport):
        """Test that close leaves nothing scheduled or remembered."""
        connection.connect()
        transport.fire_open()
        transport.fire_message(json.dumps({"event": "x", "channel": "u1"}))
        transport.fire_error()

        connection.close()

        assert not connection.retry_pending
        assert connection.status == ConnectionStatus.DISCONNECTED
        assert connection.last_message is None
        assert connection.messages == []


class TestTelemetry:
    """Tests for connection telemetry."""

    @pytest.mark.asyncio
    async def test_lifecycle_is_recorded(self, transport, channel_api, event_bus):
        """Test that attempts, opens, errors and retries are queued."""
        telemetry = Mock()
        telemetry.queue = Mock(return_value=True)
        cm = ConnectionManager(
            transport, channel_api, event_bus, lambda: "tok", telemetry=telemetry
        )
        try:
            cm.connect()
            transport.fire_open()
            transport.fire_error()

            types = [call.args[0].type for call in telemetry.queue.call_args_list]
            assert types == ["sse_connect_attempt", "sse_open", "sse_error", "sse_retry"]
            assert "connect_ms" in telemetry.queue.call_args_list[1].args[0].data
        finally:
            await cm.stop()

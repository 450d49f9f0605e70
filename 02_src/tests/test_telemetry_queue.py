"""Tests for TelemetryQueue."""

import asyncio
from datetime import datetime, timezone

import pytest
import pytest_asyncio

from livesync.config import TelemetrySettings
from livesync.models import TelemetryEvent
from livesync.telemetry import TelemetryQueue, compute_logical_id


def scroll(bucket: int, path_id: str = "p1") -> TelemetryEvent:
    return TelemetryEvent(type="scroll_depth", path_id=path_id, data={"depth_bucket": bucket})


def make_queue(event_api, clock, storage=None, **overrides) -> TelemetryQueue:
    settings = TelemetrySettings(flush_delay=60.0, flush_threshold=1000, **overrides)
    return TelemetryQueue(event_api, storage=storage, settings=settings, clock=clock)


@pytest_asyncio.fixture
async def telemetry(event_api, clock):
    """TelemetryQueue that only flushes when told to."""
    q = make_queue(event_api, clock)
    yield q
    await q.close()


class TestDedupe:
    """Tests for logical-id deduplication."""

    @pytest.mark.asyncio
    async def test_duplicate_within_ttl_is_dropped(self, telemetry):
        """Test that the same logical event inside the window is kept once."""
        assert telemetry.queue(scroll(30)) is True
        assert telemetry.queue(scroll(30)) is False

        assert len(telemetry.pending) == 1

    @pytest.mark.asyncio
    async def test_duplicate_after_ttl_is_kept(self, telemetry, clock):
        """Test that the window expires."""
        telemetry.queue(scroll(30))
        clock.advance(31)
        assert telemetry.queue(scroll(30)) is True

        assert len(telemetry.pending) == 2

    @pytest.mark.asyncio
    async def test_significant_fields_distinguish(self, telemetry):
        """Test that a different bucket or path is a different event."""
        telemetry.queue(scroll(30))
        telemetry.queue(scroll(40))
        telemetry.queue(scroll(30, path_id="p2"))

        assert len(telemetry.pending) == 3

    @pytest.mark.asyncio
    async def test_other_types_are_never_deduped(self, telemetry):
        """Test that ordinary events get random ids and are all kept."""
        telemetry.queue(TelemetryEvent(type="page_view"))
        telemetry.queue(TelemetryEvent(type="page_view"))

        pending = telemetry.pending
        assert len(pending) == 2
        assert pending[0].logical_id is None
        assert pending[0].client_event_id != pending[1].client_event_id

    @pytest.mark.asyncio
    async def test_idempotency_id_is_deterministic(self, event_api, clock):
        """Test that two sessions derive the same id for the same window."""
        q1 = make_queue(event_api, clock)
        q2 = make_queue(event_api, clock)
        try:
            q1.queue(scroll(50))
            q2.queue(scroll(50))

            id1 = q1.pending[0].client_event_id
            assert id1.startswith("lg-")
            assert id1 == q2.pending[0].client_event_id
        finally:
            await q1.close()
            await q2.close()

    def test_logical_id_ignores_insignificant_data(self):
        """Test that only significant data keys feed the logical id."""
        a = TelemetryEvent(type="block_read", data={"block_id": "b1", "ms": 10})
        b = TelemetryEvent(type="block_read", data={"block_id": "b1", "ms": 99})

        assert compute_logical_id(a) == compute_logical_id(b)
        assert compute_logical_id(TelemetryEvent(type="page_view")) is None


class TestNormalization:
    """Tests for event normalization."""

    @pytest.mark.asyncio
    async def test_blank_type_is_rejected(self, telemetry):
        """Test that events without a type are dropped."""
        assert telemetry.queue(TelemetryEvent(type="   ")) is False
        assert telemetry.pending == []

    @pytest.mark.asyncio
    async def test_defaults_are_filled(self, telemetry, clock):
        """Test that type is trimmed and occurred_at defaulted."""
        telemetry.queue(TelemetryEvent(type=" page_view "))

        event = telemetry.pending[0]
        assert event.type == "page_view"
        expected = datetime.fromtimestamp(clock.now, timezone.utc).isoformat()
        assert event.occurred_at == expected


class TestFlush:
    """Tests for batched delivery."""

    @pytest.mark.asyncio
    async def test_flush_sends_in_bounded_batches(self, event_api, clock):
        """Test that the buffer is split by max_batch_size."""
        q = make_queue(event_api, clock, max_batch_size=2)
        try:
            for i in range(5):
                q.queue(TelemetryEvent(type=f"e{i}"))

            await q.flush()

            sizes = [len(call.args[0]) for call in event_api.ingest_events.await_args_list]
            assert sizes == [2, 2, 1]
            assert q.pending == []
        finally:
            await q.close()

    @pytest.mark.asyncio
    async def test_failed_batch_is_restored_in_order(self, event_api, clock):
        """Test that a failing batch goes back to the front of the buffer."""
        delivered = []

        async def ingest(events):
            if len(delivered) >= 1:
                raise RuntimeError("network down")
            delivered.append([e.type for e in events])
            return {"ok": True, "ingested": len(events)}

        event_api.ingest_events.side_effect = ingest
        q = make_queue(event_api, clock, max_batch_size=2)
        try:
            for i in range(5):
                q.queue(TelemetryEvent(type=f"e{i}"))

            with pytest.raises(RuntimeError):
                await q.flush()

            assert delivered == [["e0", "e1"]]
            assert [e.type for e in q.pending] == ["e2", "e3", "e4"]
        finally:
            await q.close()

    @pytest.mark.asyncio
    async def test_rejected_batch_counts_as_failure(self, event_api, telemetry):
        """Test that ok=False from the backend keeps the batch."""
        event_api.ingest_events.side_effect = None
        event_api.ingest_events.return_value = {"ok": False, "ingested": 0}
        telemetry.queue(TelemetryEvent(type="page_view"))

        with pytest.raises(RuntimeError):
            await telemetry.flush()

        assert len(telemetry.pending) == 1

    @pytest.mark.asyncio
    async def test_flush_empty_buffer_makes_no_call(self, event_api, telemetry):
        """Test that flushing nothing does not hit the backend."""
        await telemetry.flush()
        event_api.ingest_events.assert_not_called()


class TestScheduling:
    """Tests for debounce and threshold flushing."""

    @pytest.mark.asyncio
    async def test_debounce_collapses_bursts(self, event_api, clock):
        """Test that a burst of queues produces one delivery."""
        q = TelemetryQueue(
            event_api,
            settings=TelemetrySettings(flush_delay=0.05, flush_threshold=1000),
            clock=clock,
        )
        try:
            q.queue(TelemetryEvent(type="a"))
            first = q._flush_handle
            q.queue(TelemetryEvent(type="b"))

            assert first.cancelled()
            assert q.flush_scheduled

            await asyncio.sleep(0.1)
            await asyncio.gather(q._flush_task)

            event_api.ingest_events.assert_awaited_once()
            assert q.pending == []
        finally:
            await q.close()

    @pytest.mark.asyncio
    async def test_threshold_flushes_immediately(self, event_api, clock):
        """Test that reaching the threshold bypasses the debounce."""
        q = TelemetryQueue(
            event_api,
            settings=TelemetrySettings(flush_delay=60.0, flush_threshold=3),
            clock=clock,
        )
        try:
            for i in range(3):
                q.queue(TelemetryEvent(type=f"e{i}"))

            assert not q.flush_scheduled
            await q._flush_task

            assert q.pending == []
            event_api.ingest_events.assert_awaited_once()
        finally:
            await q.close()

    @pytest.mark.asyncio
    async def test_manual_flush_cancels_timer(self, telemetry):
        """Test that flush() cancels the pending debounce."""
        telemetry.queue(TelemetryEvent(type="a"))
        assert telemetry.flush_scheduled

        await telemetry.flush()

        assert not telemetry.flush_scheduled

    @pytest.mark.asyncio
    async def test_lifecycle_hooks_flush_without_blocking(self, event_api, telemetry):
        """Test that teardown starts a flush and returns immediately."""
        telemetry.queue(TelemetryEvent(type="a"))

        assert telemetry.on_teardown() is None
        await telemetry._flush_task

        event_api.ingest_events.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_background_flush_failure_is_swallowed(self, event_api, telemetry):
        """Test that a failed best-effort flush keeps events and does not raise."""
        event_api.ingest_events.side_effect = RuntimeError("offline")
        telemetry.queue(TelemetryEvent(type="a"))

        telemetry.on_visibility_hidden()
        await telemetry._flush_task

        assert len(telemetry.pending) == 1

    @pytest.mark.asyncio
    async def test_online_retries_delivery(self, event_api, telemetry):
        """Test that regaining connectivity resends events kept after a failure."""
        event_api.ingest_events.side_effect = RuntimeError("offline")
        telemetry.queue(TelemetryEvent(type="a"))
        telemetry.on_visibility_hidden()
        await telemetry._flush_task
        assert len(telemetry.pending) == 1

        event_api.ingest_events.side_effect = None
        event_api.ingest_events.return_value = {"ok": True, "ingested": 1}
        telemetry.on_online()
        await telemetry._flush_task

        assert telemetry.pending == []
        assert event_api.ingest_events.await_count == 2


class TestPersistence:
    """Tests for the durable buffer."""

    @pytest.mark.asyncio
    async def test_buffer_survives_restart(self, event_api, clock, storage):
        """Test that queued events are reloaded by a new queue."""
        q1 = make_queue(event_api, clock, storage=storage)
        await q1.start()
        q1.queue(TelemetryEvent(type="a"))
        q1.queue(TelemetryEvent(type="b"))
        await q1.close()

        q2 = make_queue(event_api, clock, storage=storage)
        try:
            await q2.start()
            assert [e.type for e in q2.pending] == ["a", "b"]
        finally:
            await q2.close()

    @pytest.mark.asyncio
    async def test_restored_events_go_first(self, event_api, clock, storage):
        """Test that persisted events are merged ahead of new ones."""
        q1 = make_queue(event_api, clock, storage=storage)
        await q1.start()
        q1.queue(TelemetryEvent(type="old"))
        await q1.close()

        q2 = make_queue(event_api, clock, storage=storage)
        try:
            q2.queue(TelemetryEvent(type="new"))
            await q2.start()
            assert [e.type for e in q2.pending] == ["old", "new"]
        finally:
            await q2.close()

    @pytest.mark.asyncio
    async def test_old_events_are_trimmed(self, event_api, clock, storage):
        """Test that entries older than max_age are not restored."""
        stale = datetime.fromtimestamp(clock.now - 2 * 86400, timezone.utc).isoformat()
        fresh = datetime.fromtimestamp(clock.now - 60, timezone.utc).isoformat()
        await storage.set_value(
            "telemetry_buffer",
            [
                {"type": "stale", "occurred_at": stale, "client_event_id": "s"},
                {"type": "fresh", "occurred_at": fresh, "client_event_id": "f"},
                {"type": "", "client_event_id": "blank"},
                "garbage",
            ],
        )

        q = make_queue(event_api, clock, storage=storage)
        try:
            await q.start()
            assert [e.type for e in q.pending] == ["fresh"]
        finally:
            await q.close()

    @pytest.mark.asyncio
    async def test_restored_events_seed_dedupe(self, event_api, clock, storage):
        """Test that a reload still deduplicates against restored events."""
        q1 = make_queue(event_api, clock, storage=storage)
        await q1.start()
        q1.queue(scroll(30))
        await q1.close()

        clock.advance(5)
        q2 = make_queue(event_api, clock, storage=storage)
        try:
            await q2.start()
            assert q2.queue(scroll(30)) is False
        finally:
            await q2.close()

    @pytest.mark.asyncio
    async def test_delivered_events_are_removed(self, event_api, clock, storage):
        """Test that the persisted buffer shrinks after delivery."""
        q = make_queue(event_api, clock, storage=storage)
        try:
            await q.start()
            q.queue(TelemetryEvent(type="a"))
            await q.flush()
            await q.wait_persisted()

            assert await storage.get_value("telemetry_buffer") == []
        finally:
            await q.close()

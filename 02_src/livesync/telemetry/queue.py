"""TelemetryQueue: durable, deduplicating, batching event delivery."""

import asyncio
import hashlib
import json
import time
import uuid
from dataclasses import asdict, fields, replace
from datetime import datetime, timezone
from typing import Callable, Protocol

from ..backend import IEventApi
from ..config import TelemetrySettings
from ..logging_config import get_logger
from ..models import TelemetryEvent
from ..storage import IStorage

logger = get_logger(__name__)

# High-frequency, low-information signals collapsed within the dedupe TTL
DEDUPE_EVENT_TYPES = frozenset(
    {"scroll_depth", "block_read", "block_view", "reading_progress"}
)
SIGNIFICANT_DATA_KEYS = ("block_id", "block_index", "depth_bucket", "percent_bucket")

_EVENT_FIELDS = frozenset(f.name for f in fields(TelemetryEvent))


class ITelemetryQueue(Protocol):
    """Fire-and-forget analytics sink."""

    def queue(self, event: TelemetryEvent) -> bool:
        """Accept an event; False if it was dropped."""
        ...

    async def flush(self) -> None:
        """Deliver everything buffered; raises on delivery failure."""
        ...


def compute_logical_id(event: TelemetryEvent) -> str | None:
    """Stable hash of the fields that make two occurrences equivalent."""
    if event.type not in DEDUPE_EVENT_TYPES:
        return None
    data = event.data or {}
    key = {
        "type": event.type,
        "path_id": event.path_id,
        "path_node_id": event.path_node_id,
        "activity_id": event.activity_id,
        "data": {k: data[k] for k in SIGNIFICANT_DATA_KEYS if data.get(k) is not None},
    }
    encoded = json.dumps(key, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def normalize_event(
    event: TelemetryEvent, settings: TelemetrySettings, now: float
) -> TelemetryEvent | None:
    """Trim/validate the type and fill timestamps and ids; None if unusable."""
    event_type = event.type.strip() if isinstance(event.type, str) else ""
    if not event_type:
        return None

    normalized = replace(
        event,
        type=event_type,
        occurred_at=event.occurred_at
        or datetime.fromtimestamp(now, timezone.utc).isoformat(),
        data=dict(event.data or {}),
        schema_version=settings.schema_version,
    )
    if normalized.logical_id is None:
        normalized.logical_id = compute_logical_id(normalized)

    if not normalized.client_event_id:
        if normalized.logical_id:
            window = int(now // settings.dedupe_ttl) if settings.dedupe_ttl > 0 else 0
            digest = hashlib.sha256(
                f"{normalized.logical_id}:{window}".encode("utf-8")
            ).hexdigest()
            normalized.client_event_id = f"lg-{digest[:32]}"
        else:
            normalized.client_event_id = str(uuid.uuid4())

    return normalized


def _occurred_ts(event: TelemetryEvent) -> float | None:
    if not event.occurred_at:
        return None
    try:
        dt = datetime.fromisoformat(event.occurred_at.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


class TelemetryQueue:
    """Buffers events, drops near-duplicates, persists, flushes in batches."""

    def __init__(
        self,
        event_api: IEventApi,
        storage: IStorage | None = None,
        settings: TelemetrySettings | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._event_api = event_api
        self._storage = storage
        self._settings = settings or TelemetrySettings()
        self._clock = clock

        self._buffer: list[TelemetryEvent] = []
        self._inflight: list[TelemetryEvent] = []
        self._seen: dict[str, float] = {}  # logical id -> queued at

        self._flush_handle: asyncio.TimerHandle | None = None
        self._flush_task: asyncio.Task | None = None
        self._flushing = False

        self._persist_task: asyncio.Task | None = None
        self._persist_dirty = False
        # Writing before the stored buffer is loaded would clobber it
        self._restored = storage is None

    @property
    def pending(self) -> list[TelemetryEvent]:
        """Buffered events not yet handed to delivery."""
        return list(self._buffer)

    @property
    def flush_scheduled(self) -> bool:
        return self._flush_handle is not None

    async def start(self) -> None:
        """Load the persisted buffer and merge it ahead of in-memory events."""
        if not self._storage or self._restored:
            return

        raw = await self._storage.get_value(self._settings.storage_key)
        now = self._clock()
        restored: list[TelemetryEvent] = []
        for item in raw if isinstance(raw, list) else []:
            if not isinstance(item, dict):
                continue
            try:
                event = TelemetryEvent(
                    **{k: v for k, v in item.items() if k in _EVENT_FIELDS}
                )
            except TypeError:
                continue
            if not isinstance(event.type, str) or not event.type.strip():
                continue
            ts = _occurred_ts(event)
            if ts is not None and now - ts > self._settings.max_age:
                continue
            restored.append(event)
            if event.logical_id and ts is not None and now - ts < self._settings.dedupe_ttl:
                self._seen[event.logical_id] = max(ts, self._seen.get(event.logical_id, ts))

        restored = restored[-self._settings.max_persisted :]
        known = {e.client_event_id for e in restored}
        self._buffer = restored + [
            e for e in self._buffer if e.client_event_id not in known
        ]
        logger.info("Restored %s telemetry events", len(restored))
        self._restored = True

        self._persist_soon()
        if self._buffer:
            self._schedule_flush()

    async def close(self) -> None:
        """Stop timers and wait for in-progress work."""
        self._cancel_timer()
        if self._flush_task:
            await asyncio.gather(self._flush_task, return_exceptions=True)
        await self.wait_persisted()

    async def wait_persisted(self) -> None:
        if self._persist_task:
            await asyncio.gather(self._persist_task, return_exceptions=True)

    # Queueing

    def queue(self, event: TelemetryEvent) -> bool:
        """Accept an event; False if invalid or a duplicate within the TTL."""
        now = self._clock()
        normalized = normalize_event(event, self._settings, now)
        if normalized is None:
            return False

        self._prune_seen(now)
        logical_id = normalized.logical_id
        if logical_id:
            last = self._seen.get(logical_id)
            if last is not None and now - last < self._settings.dedupe_ttl:
                logger.debug("Dropping duplicate %s event", normalized.type)
                return False
            self._seen[logical_id] = now

        self._buffer.append(normalized)
        overflow = len(self._buffer) - self._settings.max_persisted
        if overflow > 0:
            logger.warning("Telemetry buffer full, dropping %s oldest events", overflow)
            del self._buffer[:overflow]
        self._persist_soon()

        if len(self._buffer) >= self._settings.flush_threshold:
            self._cancel_timer()
            self._spawn_flush("threshold")
        else:
            self._schedule_flush()
        return True

    def _prune_seen(self, now: float) -> None:
        ttl = self._settings.dedupe_ttl
        expired = [k for k, ts in self._seen.items() if now - ts >= ttl]
        for key in expired:
            del self._seen[key]

    # Flushing

    async def flush(self) -> None:
        """Deliver everything buffered now; raises on delivery failure."""
        self._cancel_timer()
        await self._flush_internal()

    async def _flush_internal(self) -> None:
        if self._flushing or not self._buffer:
            return
        self._flushing = True
        try:
            while self._buffer:
                batch = self._buffer[: self._settings.max_batch_size]
                self._buffer = self._buffer[len(batch) :]
                self._inflight = batch
                try:
                    result = await self._event_api.ingest_events(batch)
                    if isinstance(result, dict) and result.get("ok") is False:
                        raise RuntimeError("Event ingest rejected batch")
                except Exception:
                    # Restore to the front, keeping order
                    self._buffer = batch + self._buffer
                    raise
                finally:
                    self._inflight = []
                    self._persist_soon()
                logger.debug("Delivered %s telemetry events", len(batch))
        finally:
            self._flushing = False

    def _schedule_flush(self) -> None:
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._flush_handle = loop.call_later(self._settings.flush_delay, self._on_timer)

    def _cancel_timer(self) -> None:
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None

    def _on_timer(self) -> None:
        self._flush_handle = None
        self._spawn_flush("timer")

    def _spawn_flush(self, reason: str) -> None:
        if self._flush_task and not self._flush_task.done():
            return
        self._flush_task = asyncio.create_task(self._flush_quietly(reason))

    async def _flush_quietly(self, reason: str) -> None:
        try:
            await self._flush_internal()
        except Exception as e:
            logger.warning("Telemetry flush (%s) failed, will retry: %s", reason, e)

    # Lifecycle hooks

    def on_visibility_hidden(self) -> None:
        """Page hidden: best-effort flush."""
        self._spawn_flush("visibility")

    def on_teardown(self) -> None:
        """Page teardown: best-effort flush, never blocks."""
        self._cancel_timer()
        self._spawn_flush("teardown")

    def on_online(self) -> None:
        """Connectivity restored: retry delivery."""
        self._spawn_flush("online")

    # Persistence

    def _persist_soon(self) -> None:
        if not self._storage:
            return
        self._persist_dirty = True
        if not self._restored:
            return
        if self._persist_task is None or self._persist_task.done():
            self._persist_task = asyncio.create_task(self._persist_loop())

    async def _persist_loop(self) -> None:
        while self._persist_dirty:
            self._persist_dirty = False
            snapshot = (self._inflight + self._buffer)[-self._settings.max_persisted :]
            try:
                await self._storage.set_value(
                    self._settings.storage_key, [asdict(e) for e in snapshot]
                )
            except Exception as e:
                logger.error("Failed to persist telemetry buffer: %s", e)
                return

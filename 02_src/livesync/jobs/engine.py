"""JobReconciliationEngine: push events + pull snapshots -> one view per job."""

import asyncio
from typing import Any, Protocol

from ..backend import IJobApi
from ..config import JobSettings
from ..event_bus import IEventBus
from ..logging_config import get_logger
from ..models import (
    ActivityItem,
    BusMessage,
    ConnectionStatus,
    JobRecord,
    JobStatus,
    JobUpdate,
    SseMessage,
    Topic,
    placeholder_id,
)
from .activity import build_activity_items, feed_entry
from .collection import PathCollection
from .projection import make_placeholder
from .stages import normalize_stage, progress_bucket
from .state import (
    JOB_CREATED,
    JOB_RESTARTED,
    extract_path_id,
    merge,
    parse_job_event,
    update_from_job,
)

UPLOADING_MESSAGE = "Uploading materials…"


class IJobEngine(Protocol):
    """Reconciles job state for one user session."""

    def get(self, job_id: str) -> JobRecord | None:
        """Current record for a job id."""
        ...

    async def activate(self, job_id: str) -> JobRecord | None:
        """Snapshot the job now and poll it until terminal."""
        ...

    def deactivate(self, job_id: str) -> None:
        """Stop polling a job."""
        ...


class JobReconciliationEngine:
    """Merges push events and pull snapshots into per-job records.

    Records live in a registry keyed by job id. Push events only touch the
    record named by their own job id, and only once that job is known
    (created by an event, a local action or a snapshot). Each record is
    projected onto a placeholder path until the job succeeds, at which
    point the placeholder is swapped for the canonical path.
    """

    def __init__(
        self,
        event_bus: IEventBus,
        job_api: IJobApi,
        paths: PathCollection,
        user_id: str | None = None,
        settings: JobSettings | None = None,
    ):
        self._event_bus = event_bus
        self._job_api = job_api
        self._paths = paths
        self._user_id = user_id
        self._settings = settings or JobSettings()
        self._log = get_logger(__name__, user_id=user_id)

        self._records: dict[str, JobRecord] = {}
        self._feeds: dict[str, list[ActivityItem]] = {}
        self._feed_keys: dict[str, tuple[str, int, JobStatus]] = {}
        self._path_hints: dict[str, str] = {}
        self._resolved: set[str] = set()

        self._active: set[str] = set()
        self._polls: dict[str, asyncio.Task] = {}
        self._tasks: set[asyncio.Task] = set()
        self._started = False

    # Lifecycle

    def start(self) -> None:
        if self._started:
            return
        self._event_bus.subscribe(Topic.MESSAGE, self._on_message)
        self._event_bus.subscribe(Topic.STATUS, self._on_status)
        self._started = True
        self._log.info("Job engine started for user %s", self._user_id)

    async def stop(self) -> None:
        """Unsubscribe, cancel polls and wait for background work."""
        if self._started:
            self._event_bus.unsubscribe(Topic.MESSAGE, self._on_message)
            self._event_bus.unsubscribe(Topic.STATUS, self._on_status)
            self._started = False

        polls = list(self._polls.values())
        self._polls.clear()
        self._active.clear()
        pending = polls + list(self._tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()

    async def wait_idle(self) -> None:
        """Wait for spawned swap/convergence tasks (not polls)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # Queries

    def get(self, job_id: str) -> JobRecord | None:
        return self._records.get(job_id)

    @property
    def jobs(self) -> list[JobRecord]:
        return list(self._records.values())

    @property
    def active_ids(self) -> frozenset[str]:
        return frozenset(self._active)

    def is_polling(self, job_id: str) -> bool:
        return job_id in self._polls

    def is_resolved(self, job_id: str) -> bool:
        return job_id in self._resolved

    def feed(self, job_id: str) -> list[ActivityItem]:
        return list(self._feeds.get(job_id, []))

    def activity(self, job_id: str) -> list[ActivityItem]:
        record = self._records.get(job_id)
        if record is None:
            return []
        return build_activity_items(record)

    # Push input

    async def _on_message(self, message: BusMessage) -> None:
        if isinstance(message.payload, SseMessage):
            self.handle_message(message.payload)

    def handle_message(self, message: SseMessage) -> JobRecord | None:
        """Apply one push message; returns the record it touched, if any."""
        if self._user_id and message.channel != self._user_id:
            return None

        event = parse_job_event(message.event, message.data)
        if event is None:
            return None
        if event.job_type and event.job_type != self._settings.job_type:
            return None
        if event.job_id in self._resolved:
            self._log.debug("Ignoring %s for resolved job %s", event.kind, event.job_id)
            return None
        if event.job_id not in self._records and event.kind not in (
            JOB_CREATED,
            JOB_RESTARTED,
        ):
            self._log.debug("Ignoring %s for untracked job %s", event.kind, event.job_id)
            return None

        if event.path_id:
            self._path_hints[event.job_id] = event.path_id
        return self._apply(event.job_id, event.update)

    async def _on_status(self, message: BusMessage) -> None:
        if message.payload == ConnectionStatus.OPEN:
            self._spawn(self._converge(), "converge")

    async def _converge(self) -> None:
        """Catch up on whatever was missed while disconnected."""
        pending = [
            job_id
            for job_id, record in self._records.items()
            if not record.status.is_terminal and job_id not in self._resolved
        ]
        for job_id in sorted(set(pending) | self._active):
            await self.refresh(job_id)
            record = self._records.get(job_id)
            if job_id in self._active and record and not record.status.is_terminal:
                self._ensure_poll(job_id)
        await self._paths.reload()

    # Local actions

    def track_job(self, job_id: str, material_set_id: str | None = None) -> JobRecord:
        """Register a job started by a local action and show its placeholder."""
        self._resolved.discard(job_id)
        record = self._apply(
            job_id,
            JobUpdate(
                job_id=job_id,
                job_type=self._settings.job_type,
                status=JobStatus.QUEUED,
                stage="queued",
                progress=0.0,
                message=UPLOADING_MESSAGE,
            ),
        )
        if material_set_id:
            placeholder = self._paths.get(placeholder_id(job_id))
            if placeholder:
                placeholder.material_set_id = material_set_id
        self._active.add(job_id)
        if not record.status.is_terminal:
            self._ensure_poll(job_id)
        return record

    async def activate(self, job_id: str) -> JobRecord | None:
        """Snapshot the job now, then poll it until it is terminal."""
        self._active.add(job_id)
        record = await self.refresh(job_id)
        if job_id not in self._active:
            return record
        if record is not None and not record.status.is_terminal:
            self._ensure_poll(job_id)
        return record

    def deactivate(self, job_id: str) -> None:
        self._active.discard(job_id)
        self._stop_poll(job_id)

    async def refresh(self, job_id: str) -> JobRecord | None:
        """Fetch a snapshot and fold it in; errors leave the record as is."""
        if job_id in self._resolved:
            return self._records.get(job_id)
        try:
            job = await self._job_api.get_job(job_id)
        except Exception as e:
            self._log.warning("Snapshot fetch for job %s failed: %s", job_id, e)
            return self._records.get(job_id)
        return self._apply_snapshot(job_id, job)

    async def cancel(self, job_id: str) -> JobRecord | None:
        """Cancel on the server and fold the returned snapshot in."""
        job = await self._job_api.cancel_job(job_id)
        if job is None:
            return self._apply(job_id, JobUpdate(job_id=job_id, status=JobStatus.CANCELED))
        return self._apply_snapshot(job_id, job)

    async def restart(self, job_id: str) -> JobRecord | None:
        """Restart on the server; the only way out of a terminal state."""
        job = await self._job_api.restart_job(job_id)
        self._resolved.discard(job_id)
        update = update_from_job({**(job or {}), "id": job_id})
        if update is None:
            return self._records.get(job_id)
        update.restart = True
        update.message = update.message or "Restarting…"
        record = self._apply(job_id, update)
        if job_id in self._active and not record.status.is_terminal:
            self._ensure_poll(job_id)
        return record

    # Merge + projection

    def _apply_snapshot(self, job_id: str, job: dict[str, Any] | None) -> JobRecord | None:
        if job is None:
            return self._records.get(job_id)
        update = update_from_job({**job, "id": job_id})
        if update is None:
            return self._records.get(job_id)
        if job_id in self._resolved:
            return self._records.get(job_id)
        return self._apply(job_id, update)

    def _apply(self, job_id: str, update: JobUpdate) -> JobRecord:
        prev = self._records.get(job_id)
        record = merge(prev, update, self._settings.job_type)
        if record is prev:
            return record

        self._records[job_id] = record
        self._append_feed(record)
        self._project(record)

        if record.status.is_terminal:
            self._stop_poll(job_id)
            if record.status is JobStatus.SUCCEEDED and (
                prev is None or prev.status is not JobStatus.SUCCEEDED
            ):
                self._spawn(self._materialize(job_id), f"materialize {job_id}")
        elif job_id in self._active:
            self._ensure_poll(job_id)
        return record

    def _append_feed(self, record: JobRecord) -> None:
        key = (
            normalize_stage(record.stage),
            progress_bucket(record.progress, self._settings.progress_bucket),
            record.status,
        )
        if self._feed_keys.get(record.id) == key:
            return
        self._feed_keys[record.id] = key
        feed = self._feeds.setdefault(record.id, [])
        feed.append(feed_entry(record, len(feed)))

    def _project(self, record: JobRecord) -> None:
        pid = placeholder_id(record.id)
        placeholder = make_placeholder(record, self._paths.get(pid), self._user_id)
        self._paths.upsert(placeholder, replace_existing=True)

    async def _materialize(self, job_id: str) -> None:
        """Swap the placeholder for the canonical path, or reload on failure."""
        record = self._records.get(job_id)
        path_id = self._path_hints.get(job_id) or (
            extract_path_id(record.result) if record else None
        )

        fresh = None
        if path_id:
            try:
                fresh = await self._paths.fetch(path_id)
            except Exception as e:
                self._log.warning("Fetching path %s after job %s failed: %s", path_id, job_id, e)

        # A restart while fetching reopens the job
        current = self._records.get(job_id)
        if current is None or current.status is not JobStatus.SUCCEEDED:
            return

        self._resolved.add(job_id)
        self._active.discard(job_id)
        if fresh is not None and fresh.id:
            self._paths.replace_job(job_id, fresh)
            self._log.info(
                "Job %s materialized as path %s",
                job_id,
                fresh.id,
                extra={"context": {"job_id": job_id, "path_id": fresh.id}},
            )
        else:
            self._paths.remove_job(job_id)
            await self._paths.reload()
        if job_id in self._resolved:
            self._forget(job_id)

    def _forget(self, job_id: str) -> None:
        """Drop everything kept for a resolved job except the resolved mark."""
        self._records.pop(job_id, None)
        self._feeds.pop(job_id, None)
        self._feed_keys.pop(job_id, None)
        self._path_hints.pop(job_id, None)

    # Polling

    def _ensure_poll(self, job_id: str) -> None:
        if job_id in self._polls:
            return
        self._polls[job_id] = asyncio.create_task(self._poll_loop(job_id))

    def _stop_poll(self, job_id: str) -> None:
        # Registry entry goes first so the loop's guard sees it
        task = self._polls.pop(job_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _poll_loop(self, job_id: str) -> None:
        me = asyncio.current_task()
        while True:
            await asyncio.sleep(self._settings.poll_interval)
            if self._polls.get(job_id) is not me:
                return
            try:
                job = await self._job_api.get_job(job_id)
            except Exception as e:
                self._log.warning(
                    "Poll for job %s failed, retrying: %s",
                    job_id,
                    e,
                    extra={"context": {"job_id": job_id}},
                )
                continue
            if self._polls.get(job_id) is not me:
                return
            record = self._apply_snapshot(job_id, job)
            if record is not None and record.status.is_terminal:
                self._polls.pop(job_id, None)
                return

    # Background work

    def _spawn(self, coro, name: str) -> None:
        task = asyncio.create_task(self._run_quietly(coro, name))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_quietly(self, coro, name: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._log.error("Job engine task %s failed: %s", name, e, exc_info=True)

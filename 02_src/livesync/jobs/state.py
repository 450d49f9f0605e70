"""Job state merge: one function for push events and pull snapshots.

State is terminal-sticky rather than last-write-wins: once a job is
succeeded/failed/canceled no input changes its status again (only an
explicit restart does), while message/error text stays updatable.
Non-terminal status only moves forward (queued -> running).
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

from ..backend import safe_parse_json
from ..models import JobRecord, JobStatus, JobUpdate
from .stages import clamp_progress

JOB_CREATED = "jobcreated"
JOB_PROGRESS = "jobprogress"
JOB_DONE = "jobdone"
JOB_FAILED = "jobfailed"
JOB_CANCELED = "jobcanceled"
JOB_RESTARTED = "jobrestarted"

JOB_EVENTS = frozenset(
    {JOB_CREATED, JOB_PROGRESS, JOB_DONE, JOB_FAILED, JOB_CANCELED, JOB_RESTARTED}
)


@dataclass
class JobEvent:
    """A push message recognised as a job event."""

    kind: str
    job_id: str
    job_type: str
    update: JobUpdate
    path_id: str | None = None


def _text(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _first(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def extract_path_id(result: Any) -> str | None:
    """Canonical entity id carried in a finished job's result payload."""
    obj = safe_parse_json(result)
    if not obj:
        return None
    value = _first(obj.get("path_id"), obj.get("pathId"))
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def update_from_job(job: dict[str, Any]) -> JobUpdate | None:
    """Build an update from a job snapshot row."""
    if not isinstance(job, dict) or job.get("id") is None:
        return None
    progress = job.get("progress")
    return JobUpdate(
        job_id=str(job["id"]),
        job_type=_text(_first(job.get("job_type"), job.get("jobType"))),
        status=JobStatus.parse(job.get("status")),
        stage=_text(job.get("stage")),
        progress=clamp_progress(progress) if progress is not None else None,
        message=_text(job.get("message")),
        error=_text(job.get("error")),
        result=_first(job.get("result"), job.get("Result")),
        payload=_first(job.get("payload"), job.get("Payload")),
    )


def parse_job_event(event: str, data: dict[str, Any] | None) -> JobEvent | None:
    """Recognise a job push message; None if it is not one."""
    kind = (event or "").strip().lower()
    if kind not in JOB_EVENTS or not isinstance(data, dict):
        return None

    job = data.get("job") if isinstance(data.get("job"), dict) else {}
    job_id = _first(data.get("job_id"), data.get("jobId"), job.get("id"))
    if job_id is None or not str(job_id).strip():
        return None
    job_id = str(job_id).strip()
    job_type = str(
        _first(data.get("job_type"), data.get("jobType"), job.get("job_type"), job.get("jobType"))
        or ""
    ).lower()

    update = update_from_job({**job, "id": job_id}) or JobUpdate(job_id=job_id)
    update.job_type = job_type or update.job_type

    # Event-level fields win over the embedded job row
    if data.get("stage") is not None:
        update.stage = str(data["stage"])
    if data.get("progress") is not None:
        update.progress = clamp_progress(data["progress"])
    if data.get("message") is not None:
        update.message = str(data["message"])
    if data.get("error") is not None:
        update.error = str(data["error"])
    if data.get("result") is not None:
        update.result = data["result"]

    if kind == JOB_CREATED:
        update.status = update.status or JobStatus.QUEUED
    elif kind == JOB_PROGRESS:
        if update.status is None or update.status.is_terminal:
            update.status = JobStatus.RUNNING
    elif kind == JOB_DONE:
        update.status = JobStatus.SUCCEEDED
    elif kind == JOB_FAILED:
        update.status = JobStatus.FAILED
    elif kind == JOB_CANCELED:
        update.status = JobStatus.CANCELED
    elif kind == JOB_RESTARTED:
        update.restart = True
        if update.status is None or update.status.is_terminal:
            update.status = JobStatus.QUEUED

    path_id = _first(data.get("path_id"), data.get("pathId"))
    return JobEvent(
        kind=kind,
        job_id=job_id,
        job_type=job_type,
        update=update,
        path_id=str(path_id) if path_id else None,
    )


def merge(record: JobRecord | None, update: JobUpdate, job_type: str) -> JobRecord:
    """Apply an update to a record, returning the new record.

    Returns the same object when nothing changed.
    """
    if record is None:
        record = JobRecord(id=update.job_id, job_type=update.job_type or job_type)
        if update.status is None:
            update = replace(update, status=JobStatus.QUEUED)

    nxt = replace(record)

    if update.restart:
        nxt.status = update.status or JobStatus.QUEUED
        nxt.stage = update.stage if update.stage is not None else "queued"
        nxt.progress = update.progress if update.progress is not None else 0.0
        nxt.error = update.error or ""
        nxt.result = update.result
        if update.message is not None:
            nxt.message = update.message
    elif record.status.is_terminal:
        # Terminal-sticky: only display text (and a missing result) may change
        if update.message is not None:
            nxt.message = update.message
        if update.error is not None:
            nxt.error = update.error
        if nxt.result is None and update.result is not None and update.status == record.status:
            nxt.result = update.result
    else:
        if update.status is not None and update.status.rank >= record.status.rank:
            nxt.status = update.status
        if update.stage is not None:
            nxt.stage = update.stage
        if update.progress is not None:
            nxt.progress = clamp_progress(update.progress)
        if update.message is not None:
            nxt.message = update.message
        if update.error is not None:
            nxt.error = update.error
        if update.result is not None:
            nxt.result = update.result
        if nxt.status is JobStatus.SUCCEEDED:
            nxt.progress = 100.0

    if update.job_type and not nxt.job_type:
        nxt.job_type = update.job_type
    if update.payload is not None:
        nxt.payload = update.payload

    if nxt == record:
        return record
    nxt.updated_at = datetime.now(timezone.utc)
    return nxt

"""Placeholder path entities derived from job records."""

from dataclasses import replace
from datetime import datetime, timezone

from ..models import JobRecord, JobStatus, Path, placeholder_id
from .stages import clamp_progress

RUNNING_TITLE = "Generating path…"
RUNNING_DESCRIPTION = "We’re analyzing your materials and building a learning path."
FAILED_TITLE = "Path generation failed"
CANCELED_TITLE = "Path generation canceled"
READY_MESSAGE = "Path ready"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def attach_job_fields(path: Path, record: JobRecord) -> Path:
    """Copy the record's display state onto the path's job_* fields."""
    status = record.status
    stage = record.stage or "queued"
    progress = clamp_progress(record.progress)
    message = record.message

    if status is JobStatus.SUCCEEDED:
        stage, progress, message = "done", 100.0, READY_MESSAGE
    elif status is JobStatus.FAILED:
        message = record.error or "Generation failed"
    elif status is JobStatus.CANCELED:
        message = record.message or "Canceled"

    return replace(
        path,
        job_id=record.id,
        job_type=record.job_type,
        job_status=status.value,
        job_stage=stage,
        job_progress=progress,
        job_message=message,
        updated_at=_now(),
    )


def make_placeholder(
    record: JobRecord, base: Path | None = None, user_id: str | None = None
) -> Path:
    """Build or refresh the provisional entity for a job."""
    if base is None:
        base = Path(
            id=placeholder_id(record.id),
            user_id=user_id,
            title=RUNNING_TITLE,
            description=RUNNING_DESCRIPTION,
            status="draft",
            created_at=_now(),
        )

    if record.status is JobStatus.FAILED:
        base = replace(base, title=FAILED_TITLE)
    elif record.status is JobStatus.CANCELED:
        base = replace(base, title=CANCELED_TITLE)
    elif base.title in (FAILED_TITLE, CANCELED_TITLE):
        # Restarted after a terminal state
        base = replace(base, title=RUNNING_TITLE, description=RUNNING_DESCRIPTION)

    return attach_job_fields(base, record)

"""Job-related data models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    """Server-side job status."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELED)

    @property
    def rank(self) -> int:
        """Position on the way to a terminal state."""
        if self is JobStatus.QUEUED:
            return 0
        if self is JobStatus.RUNNING:
            return 1
        return 2

    @classmethod
    def parse(cls, value: Any) -> "JobStatus | None":
        """Map a raw status string, tolerating case and unknown values."""
        raw = str(value or "").strip().lower()
        if raw == "cancelled":
            raw = "canceled"
        try:
            return cls(raw)
        except ValueError:
            return None


@dataclass
class JobRecord:
    """Canonical client-side view of one server job."""

    id: str
    job_type: str
    status: JobStatus = JobStatus.QUEUED
    stage: str = ""
    progress: float = 0.0  # always within [0, 100]
    message: str = ""
    error: str = ""
    result: Any = None
    payload: Any = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class JobUpdate:
    """A partial job observation from a push event or a pull snapshot.

    Fields left as None carry no information and never overwrite state.
    """

    job_id: str
    job_type: str | None = None
    status: JobStatus | None = None
    stage: str | None = None
    progress: float | None = None
    message: str | None = None
    error: str | None = None
    result: Any = None
    payload: Any = None
    restart: bool = False  # explicit server-side restart


@dataclass
class ActivityItem:
    """One entry in a job's progress feed."""

    id: str
    title: str
    content: str
    progress: float | None = None

"""Learning path entity model."""

from dataclasses import dataclass
from typing import Any

PLACEHOLDER_PREFIX = "job:"


def placeholder_id(job_id: str) -> str:
    """Provisional entity id for an in-flight job."""
    return f"{PLACEHOLDER_PREFIX}{job_id}"


@dataclass
class Path:
    """A learning path, canonical or placeholder."""

    id: str
    user_id: str | None = None
    title: str = ""
    description: str = ""
    status: str = "draft"
    job_id: str | None = None
    job_type: str | None = None
    job_status: str | None = None
    job_stage: str | None = None
    job_progress: float | None = None
    job_message: str | None = None
    material_set_id: str | None = None
    avatar_url: str | None = None
    metadata: Any = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_placeholder(self) -> bool:
        return self.id.startswith(PLACEHOLDER_PREFIX)

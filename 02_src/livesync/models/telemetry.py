"""Telemetry data models."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class TelemetryEvent:
    """A single analytics occurrence queued for delivery."""

    type: str
    occurred_at: str | None = None  # ISO-8601, UTC
    client_event_id: str | None = None  # idempotency id
    logical_id: str | None = None  # dedupe key for high-frequency types
    path_id: str | None = None
    path_node_id: str | None = None
    activity_id: str | None = None
    activity_variant: str | None = None
    modality: str | None = None
    concept_ids: list[str] | None = None
    data: dict[str, Any] = field(default_factory=dict)
    schema_version: int = 1
    event_version: int = 1

"""Mapping between backend JSON rows and client models."""

import json
from typing import Any

from ..models import Path, TelemetryEvent


def safe_parse_json(value: Any) -> dict[str, Any] | None:
    """Return value as a dict, decoding JSON strings; None for anything else."""
    if not value:
        return None
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return None
        return parsed if isinstance(parsed, dict) else None
    return None


def _pick(row: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if row.get(key) is not None:
            return row[key]
    return default


def _number_or_none(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def map_path(raw: dict[str, Any] | None) -> Path | None:
    """Build a Path from a backend row (snake_case or camelCase keys)."""
    if not raw or raw.get("id") is None:
        return None
    return Path(
        id=str(raw["id"]),
        user_id=_pick(raw, "user_id", "userId"),
        title=raw.get("title") or "",
        description=raw.get("description") or "",
        status=raw.get("status") or "",
        job_id=_pick(raw, "job_id", "jobId"),
        job_type=_pick(raw, "job_type", "jobType"),
        job_status=_pick(raw, "job_status", "jobStatus"),
        job_stage=_pick(raw, "job_stage", "jobStage"),
        job_progress=_number_or_none(_pick(raw, "job_progress", "jobProgress")),
        job_message=_pick(raw, "job_message", "jobMessage"),
        material_set_id=_pick(raw, "material_set_id", "materialSetId"),
        avatar_url=_pick(raw, "avatar_url", "avatarUrl"),
        metadata=raw.get("metadata"),
        created_at=_pick(raw, "created_at", "createdAt"),
        updated_at=_pick(raw, "updated_at", "updatedAt"),
    )


def event_to_backend(event: TelemetryEvent) -> dict[str, Any]:
    """Serialize a telemetry event into the ingest wire format."""
    out: dict[str, Any] = {"type": event.type}
    if event.client_event_id:
        out["client_event_id"] = event.client_event_id
    if event.occurred_at:
        out["occurred_at"] = event.occurred_at
    if event.path_id:
        out["path_id"] = event.path_id
    if event.path_node_id:
        out["path_node_id"] = event.path_node_id
    if event.activity_id:
        out["activity_id"] = event.activity_id

    data = dict(event.data or {})
    if event.activity_variant:
        data.setdefault("activity_variant", event.activity_variant)
    if event.modality:
        data.setdefault("modality", event.modality)
    if event.concept_ids:
        data.setdefault("concept_ids", list(event.concept_ids))
    data.setdefault("schema_version", event.schema_version)
    data.setdefault("event_version", event.event_version)
    out["data"] = data
    return out

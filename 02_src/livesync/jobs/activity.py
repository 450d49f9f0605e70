"""Progress feed entries and per-stage activity items for a job."""

from typing import Any

from ..backend import safe_parse_json
from ..models import ActivityItem, JobRecord, JobStatus
from .stages import STAGE_ORDER, clamp_progress, normalize_stage, stage_label

DEFAULT_RUNNING_CONTENT = "We’re analyzing your materials and building a learning path."


def job_title(record: JobRecord) -> str:
    if record.status is JobStatus.SUCCEEDED:
        return "Path ready"
    if record.status is JobStatus.FAILED:
        return "Generation failed"
    if record.status is JobStatus.CANCELED:
        return "Generation canceled"
    return stage_label(record.stage) or "Generating path…"


def job_content(record: JobRecord) -> str:
    if record.status is JobStatus.FAILED:
        return record.error.strip() or "Unknown error"
    if record.status is JobStatus.CANCELED:
        return "Generation paused. You can regenerate or keep chatting."
    if record.status is JobStatus.SUCCEEDED:
        return "Done"
    return record.message.strip() or DEFAULT_RUNNING_CONTENT


def feed_entry(record: JobRecord, seq: int) -> ActivityItem:
    """One progress-feed entry for the record's current state."""
    return ActivityItem(
        id=f"progress:{record.id}:{seq}",
        title=job_title(record),
        content=job_content(record),
        progress=clamp_progress(record.progress),
    )


def _stage_content(
    snapshot: dict[str, Any], status: JobStatus, is_current: bool
) -> str:
    ss_status = str(snapshot.get("status") or "").lower()
    child_status = str(snapshot.get("child_job_status") or "").lower()
    child_message = str(snapshot.get("child_message") or "").strip()

    if ss_status == "succeeded":
        return "Completed"
    if ss_status == "failed":
        return str(snapshot.get("last_error") or "Failed")
    if ss_status == "stale":
        return "Stalled"
    if ss_status == "timeout":
        return "Timed out"
    if status is JobStatus.CANCELED and is_current:
        return "Canceled"
    if ss_status == "waiting_child":
        return child_message or (f"Running ({child_status})" if child_status else "Running…")
    if is_current and not status.is_terminal:
        return "In progress…"
    return ""


def build_activity_items(record: JobRecord) -> list[ActivityItem]:
    """Per-stage items from result.stages plus a trailing summary item.

    Stages that have not started yet are not shown.
    """
    current = normalize_stage(record.stage).lower()
    result = safe_parse_json(record.result) or {}
    stages = result.get("stages") if isinstance(result.get("stages"), dict) else {}

    items: list[ActivityItem] = []
    for name in STAGE_ORDER:
        snapshot = (
            stages.get(name)
            or stages.get(f"stale_{name}")
            or stages.get(f"timeout_{name}")
            or stages.get(f"waiting_child_{name}")
        )
        if not isinstance(snapshot, dict):
            continue

        is_current = current == name
        started = bool(
            snapshot.get("started_at")
            or snapshot.get("finished_at")
            or snapshot.get("child_job_id")
        )
        if not started and not is_current:
            continue
        ss_status = str(snapshot.get("status") or "").lower()
        if ss_status == "pending" and not (record.status is JobStatus.CANCELED and is_current):
            continue

        item = ActivityItem(
            id=f"stage:{record.id}:{name}",
            title=stage_label(name) or name,
            content=_stage_content(snapshot, record.status, is_current),
        )
        child_progress = snapshot.get("child_progress")
        if ss_status == "waiting_child" and child_progress is not None:
            item.progress = clamp_progress(child_progress)
        items.append(item)

    items.append(
        ActivityItem(
            id=f"summary:{record.id}",
            title=job_title(record),
            content=job_content(record),
            progress=clamp_progress(record.progress),
        )
    )
    return items

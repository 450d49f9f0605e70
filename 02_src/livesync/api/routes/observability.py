"""Observability API routes."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel
from fastapi import APIRouter, HTTPException, Query

from ...app import Application
from ...models import ActivityItem, JobRecord, Path, SseMessage


class MessageResponse(BaseModel):
    """Response model for a push message."""

    event: str
    channel: str
    data: dict[str, Any] | None = None
    received_at: datetime


class ConnectionResponse(BaseModel):
    """Response model for connection state."""

    status: str
    connected: bool
    retry_pending: bool
    channels: list[str]
    last_message: MessageResponse | None = None
    recent_messages: list[MessageResponse] = []


class ActivityItemResponse(BaseModel):
    """Response model for a progress-feed entry."""

    id: str
    title: str
    content: str
    progress: float | None = None


class JobResponse(BaseModel):
    """Response model for a job record."""

    id: str
    job_type: str
    status: str
    stage: str
    progress: float
    message: str
    error: str
    updated_at: datetime
    polling: bool
    resolved: bool
    feed: list[ActivityItemResponse]
    activity: list[ActivityItemResponse]


class PathResponse(BaseModel):
    """Response model for a path entity."""

    id: str
    title: str
    description: str
    status: str
    placeholder: bool
    job_id: str | None = None
    job_status: str | None = None
    job_stage: str | None = None
    job_progress: float | None = None
    job_message: str | None = None


class TelemetryResponse(BaseModel):
    """Response model for telemetry queue state."""

    pending: int
    flush_scheduled: bool


def _message(m: SseMessage) -> dict:
    return {
        "event": m.event,
        "channel": m.channel,
        "data": m.data,
        "received_at": m.received_at,
    }


def _item(item: ActivityItem) -> dict:
    return {
        "id": item.id,
        "title": item.title,
        "content": item.content,
        "progress": item.progress,
    }


def _job(app: Application, record: JobRecord) -> dict:
    engine = app.engine
    return {
        "id": record.id,
        "job_type": record.job_type,
        "status": record.status.value,
        "stage": record.stage,
        "progress": record.progress,
        "message": record.message,
        "error": record.error,
        "updated_at": record.updated_at,
        "polling": engine.is_polling(record.id),
        "resolved": engine.is_resolved(record.id),
        "feed": [_item(i) for i in engine.feed(record.id)],
        "activity": [_item(i) for i in engine.activity(record.id)],
    }


def _path(p: Path) -> dict:
    return {
        "id": p.id,
        "title": p.title,
        "description": p.description,
        "status": p.status,
        "placeholder": p.is_placeholder,
        "job_id": p.job_id,
        "job_status": p.job_status,
        "job_stage": p.job_stage,
        "job_progress": p.job_progress,
        "job_message": p.job_message,
    }


def create_observability_router(app: Application) -> APIRouter:
    """Create observability router."""
    router = APIRouter(prefix="/api/sync", tags=["observability"])

    @router.get("/connection", response_model=ConnectionResponse)
    async def get_connection() -> dict:
        """Connection status, joined channels and recent messages."""
        try:
            connection = app.connection
        except RuntimeError as e:
            raise HTTPException(status_code=503, detail=str(e))
        last = connection.last_message
        return {
            "status": connection.status.value,
            "connected": connection.connected,
            "retry_pending": connection.retry_pending,
            "channels": sorted(connection.subscribed_channels),
            "last_message": _message(last) if last else None,
            "recent_messages": [_message(m) for m in connection.messages],
        }

    @router.get("/jobs", response_model=list[JobResponse])
    async def get_jobs(
        status: str | None = Query(None, description="Filter by job status"),
    ) -> list[dict]:
        """Job records with their progress feeds."""
        try:
            records = app.engine.jobs
        except RuntimeError as e:
            raise HTTPException(status_code=503, detail=str(e))
        if status:
            records = [r for r in records if r.status.value == status.lower()]
        return [_job(app, r) for r in records]

    @router.get("/jobs/{job_id}", response_model=JobResponse)
    async def get_job(job_id: str) -> dict:
        """One job record."""
        try:
            record = app.engine.get(job_id)
        except RuntimeError as e:
            raise HTTPException(status_code=503, detail=str(e))
        if record is None:
            raise HTTPException(status_code=404, detail=f"Unknown job {job_id}")
        return _job(app, record)

    @router.get("/paths", response_model=list[PathResponse])
    async def get_paths() -> list[dict]:
        """Current path collection, placeholders first."""
        try:
            items = app.paths.items
        except RuntimeError as e:
            raise HTTPException(status_code=503, detail=str(e))
        return [_path(p) for p in items]

    @router.get("/telemetry", response_model=TelemetryResponse)
    async def get_telemetry() -> dict:
        """Telemetry buffer size."""
        try:
            queue = app.telemetry
        except RuntimeError as e:
            raise HTTPException(status_code=503, detail=str(e))
        return {"pending": len(queue.pending), "flush_scheduled": queue.flush_scheduled}

    return router

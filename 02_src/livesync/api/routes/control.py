"""Control API routes."""

import httpx
from pydantic import BaseModel
from fastapi import APIRouter, HTTPException

from ...app import Application


class StatusResponse(BaseModel):
    """Response model for status."""

    status: str


class JobStatusResponse(BaseModel):
    """Response model for a job action."""

    status: str
    job_id: str
    job_status: str | None = None


def create_control_router(app: Application) -> APIRouter:
    """Create control router."""
    router = APIRouter(prefix="/api/control", tags=["control"])

    @router.post("/jobs/{job_id}/activate", response_model=JobStatusResponse)
    async def activate_job(job_id: str) -> dict:
        """Snapshot a job now and poll it until terminal."""
        try:
            record = await app.engine.activate(job_id)
            return {
                "status": "ok",
                "job_id": job_id,
                "job_status": record.status.value if record else None,
            }
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.post("/jobs/{job_id}/deactivate", response_model=JobStatusResponse)
    async def deactivate_job(job_id: str) -> dict:
        """Stop polling a job."""
        try:
            app.engine.deactivate(job_id)
            record = app.engine.get(job_id)
            return {
                "status": "ok",
                "job_id": job_id,
                "job_status": record.status.value if record else None,
            }
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.post("/jobs/{job_id}/cancel", response_model=JobStatusResponse)
    async def cancel_job(job_id: str) -> dict:
        """Cancel a job on the server."""
        try:
            record = await app.engine.cancel(job_id)
            return {
                "status": "ok",
                "job_id": job_id,
                "job_status": record.status.value if record else None,
            }
        except httpx.HTTPStatusError as e:
            raise HTTPException(status_code=e.response.status_code, detail=str(e))
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.post("/jobs/{job_id}/restart", response_model=JobStatusResponse)
    async def restart_job(job_id: str) -> dict:
        """Restart a job on the server."""
        try:
            record = await app.engine.restart(job_id)
            return {
                "status": "ok",
                "job_id": job_id,
                "job_status": record.status.value if record else None,
            }
        except httpx.HTTPStatusError as e:
            raise HTTPException(status_code=e.response.status_code, detail=str(e))
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.post("/telemetry/flush", response_model=StatusResponse)
    async def flush_telemetry() -> dict:
        """Deliver buffered telemetry now."""
        try:
            await app.telemetry.flush()
            return {"status": "ok"}
        except Exception as e:
            raise HTTPException(status_code=502, detail=str(e))

    @router.post("/reconnect", response_model=StatusResponse)
    async def reconnect() -> dict:
        """Open a fresh push connection."""
        try:
            app.connection.connect()
            return {"status": app.connection.status.value}
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    return router

"""HTTP collaborators of the sync layer, backed by httpx."""

from typing import Any, Protocol

import httpx

from ..auth import TokenProvider, env_token_provider
from ..config import DEFAULT_REQUEST_TIMEOUT, resolve_api_base_url
from ..logging_config import get_logger
from ..models import Path, TelemetryEvent
from .mapping import event_to_backend, map_path

logger = get_logger(__name__)


class IJobApi(Protocol):
    """Job snapshot pull and job actions."""

    async def get_job(self, job_id: str) -> dict[str, Any] | None:
        """Fetch the current snapshot of a job."""
        ...

    async def cancel_job(self, job_id: str) -> dict[str, Any] | None:
        """Request cancellation, returning the updated snapshot."""
        ...

    async def restart_job(self, job_id: str) -> dict[str, Any] | None:
        """Request a restart, returning the updated snapshot."""
        ...


class IPathApi(Protocol):
    """Canonical entity fetch/list."""

    async def get_path(self, path_id: str) -> Path | None:
        """Fetch one path by id."""
        ...

    async def list_paths(self) -> list[Path]:
        """List all paths of the current user."""
        ...


class IChannelApi(Protocol):
    """Server-side channel membership of the push stream."""

    async def subscribe_channel(self, channel: str) -> None:
        """Join a channel."""
        ...

    async def unsubscribe_channel(self, channel: str) -> None:
        """Leave a channel."""
        ...


class IEventApi(Protocol):
    """Telemetry delivery."""

    async def ingest_events(self, events: list[TelemetryEvent]) -> dict[str, Any]:
        """Deliver one batch; raises if the batch was not accepted."""
        ...


class BackendClient:
    """REST client for jobs, paths, channels and event ingest."""

    def __init__(
        self,
        base_url: str | None = None,
        token_provider: TokenProvider | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = resolve_api_base_url(base_url)
        self._token_provider = token_provider or env_token_provider
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def http(self) -> httpx.AsyncClient:
        """Underlying client, shared with the push transport."""
        return self._client

    async def close(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        token = self._token_provider()
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def _request(
        self, method: str, url: str, json: Any = None
    ) -> dict[str, Any]:
        response = await self._client.request(
            method, url, json=json, headers=self._headers()
        )
        response.raise_for_status()
        if not response.content:
            return {}
        body = response.json()
        return body if isinstance(body, dict) else {}

    # Jobs
    async def get_job(self, job_id: str) -> dict[str, Any] | None:
        if not job_id:
            raise ValueError("get_job: missing job_id")
        body = await self._request("GET", f"/jobs/{job_id}")
        return body.get("job")

    async def cancel_job(self, job_id: str) -> dict[str, Any] | None:
        if not job_id:
            raise ValueError("cancel_job: missing job_id")
        body = await self._request("POST", f"/jobs/{job_id}/cancel")
        return body.get("job")

    async def restart_job(self, job_id: str) -> dict[str, Any] | None:
        if not job_id:
            raise ValueError("restart_job: missing job_id")
        body = await self._request("POST", f"/jobs/{job_id}/restart")
        return body.get("job")

    # Paths
    async def get_path(self, path_id: str) -> Path | None:
        if not path_id:
            raise ValueError("get_path: missing path_id")
        body = await self._request("GET", f"/paths/{path_id}")
        return map_path(body.get("path"))

    async def list_paths(self) -> list[Path]:
        body = await self._request("GET", "/paths")
        rows = body.get("paths") or []
        return [p for p in (map_path(row) for row in rows) if p is not None]

    # Channels
    async def subscribe_channel(self, channel: str) -> None:
        await self._request("POST", "/sse/subscribe", json={"channel": channel})
        logger.debug("Subscribed to channel %s", channel)

    async def unsubscribe_channel(self, channel: str) -> None:
        await self._request("POST", "/sse/unsubscribe", json={"channel": channel})
        logger.debug("Unsubscribed from channel %s", channel)

    # Events
    async def ingest_events(self, events: list[TelemetryEvent]) -> dict[str, Any]:
        if not events:
            return {"ok": True, "ingested": 0}
        body = await self._request(
            "POST",
            "/events",
            json={"events": [event_to_backend(e) for e in events]},
        )
        ingested = body.get("ingested")
        return {
            "ok": bool(body.get("ok", True)),
            "ingested": ingested if isinstance(ingested, int) else len(events),
        }

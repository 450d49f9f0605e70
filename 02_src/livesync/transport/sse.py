"""Server-sent-events push transport."""

import asyncio
from typing import Callable, Protocol

import httpx
from httpx_sse import aconnect_sse

from ..logging_config import get_logger

logger = get_logger(__name__)

OpenCallback = Callable[[], None]
MessageCallback = Callable[[str], None]
ErrorCallback = Callable[[BaseException], None]


class IPushTransport(Protocol):
    """One long-lived server-to-client stream with single-slot callbacks."""

    @property
    def is_open(self) -> bool:
        """True once the stream is accepted and until it drops."""
        ...

    def on_open(self, callback: OpenCallback) -> None:
        """Replace the open callback."""
        ...

    def on_message(self, callback: MessageCallback) -> None:
        """Replace the raw-message callback."""
        ...

    def on_error(self, callback: ErrorCallback) -> None:
        """Replace the error callback."""
        ...

    def open(self, token: str) -> None:
        """Start streaming, tearing down any previous stream first."""
        ...

    def close(self) -> None:
        """Stop streaming."""
        ...


class SseTransport:
    """Reads `GET /sse/stream?token=...` with httpx-sse in a background task."""

    def __init__(self, client: httpx.AsyncClient, stream_path: str = "/sse/stream"):
        self._client = client
        self._stream_path = stream_path
        self._task: asyncio.Task | None = None
        self._open = False
        self._on_open: OpenCallback | None = None
        self._on_message: MessageCallback | None = None
        self._on_error: ErrorCallback | None = None

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def active(self) -> bool:
        """True while a reader task exists."""
        return self._task is not None and not self._task.done()

    def on_open(self, callback: OpenCallback) -> None:
        self._on_open = callback

    def on_message(self, callback: MessageCallback) -> None:
        self._on_message = callback

    def on_error(self, callback: ErrorCallback) -> None:
        self._on_error = callback

    def open(self, token: str) -> None:
        self.close()
        logger.debug("Opening push stream %s", self._stream_path)
        self._task = asyncio.create_task(self._run(token))

    def close(self) -> None:
        task = self._task
        self._task = None
        self._open = False
        # Called from inside our own error callback: the task is finishing anyway
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _run(self, token: str) -> None:
        current = asyncio.current_task()
        try:
            async with aconnect_sse(
                self._client,
                "GET",
                self._stream_path,
                params={"token": token},
                timeout=httpx.Timeout(10.0, read=None),
            ) as event_source:
                event_source.response.raise_for_status()
                self._open = True
                if self._on_open:
                    self._on_open()
                async for sse in event_source.aiter_sse():
                    if self._on_message:
                        self._on_message(sse.data)
            raise ConnectionError("push stream closed by server")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._task is current:
                self._open = False
                if self._on_error:
                    self._on_error(e)
        finally:
            if self._task is current:
                self._open = False

"""ConnectionManager: the single push-channel connection of a session."""

import asyncio
import json
import random
import time
from collections import deque
from typing import Any, Protocol

from ..auth import TokenProvider
from ..backend import IChannelApi
from ..config import ConnectionSettings
from ..event_bus import IEventBus
from ..logging_config import get_logger
from ..models import ConnectionStatus, SseMessage, TelemetryEvent, Topic
from ..telemetry import ITelemetryQueue
from ..transport import IPushTransport


class IConnectionManager(Protocol):
    """Owns one push-channel connection and its channel membership."""

    @property
    def status(self) -> ConnectionStatus:
        """Current connection status."""
        ...

    @property
    def connected(self) -> bool:
        """True while the stream is open."""
        ...

    @property
    def last_message(self) -> SseMessage | None:
        """Most recent parsed message."""
        ...

    def connect(self) -> None:
        """Open a new transport, or schedule a retry if not authenticated."""
        ...

    def close(self) -> None:
        """Tear down the connection (logout/unmount)."""
        ...

    async def subscribe(self, channel: str) -> bool:
        """Join a channel; False on failure."""
        ...

    async def unsubscribe(self, channel: str) -> bool:
        """Leave a channel; False on failure."""
        ...


class ConnectionManager:
    """Auth-gated connect, retry with backoff, message fan-out, channel bookkeeping.

    Parsed messages and status changes are published on the EventBus in
    arrival order by a single dispatcher task, so any number of consumers
    can observe the stream.
    """

    def __init__(
        self,
        transport: IPushTransport,
        channel_api: IChannelApi,
        event_bus: IEventBus,
        token_provider: TokenProvider,
        settings: ConnectionSettings | None = None,
        telemetry: ITelemetryQueue | None = None,
        rng: random.Random | None = None,
    ):
        self._transport = transport
        self._channel_api = channel_api
        self._event_bus = event_bus
        self._token_provider = token_provider
        self._settings = settings or ConnectionSettings()
        self._telemetry = telemetry
        self._rng = rng or random.Random()
        self._log = get_logger(
            __name__,
            status=lambda: self._status.value,
            attempt=lambda: self._attempt,
        )

        self._status = ConnectionStatus.DISCONNECTED
        self._last_message: SseMessage | None = None
        self._messages: deque[SseMessage] = deque(
            maxlen=self._settings.recent_messages
        )
        self._channels: set[str] = set()

        self._retry_handle: asyncio.TimerHandle | None = None
        self._attempt = 0

        self._connect_started_at: float | None = None
        self._opened_at: float | None = None
        self._last_message_at: float | None = None

        self._outbox: asyncio.Queue[tuple[Topic, Any]] = asyncio.Queue()
        self._dispatcher: asyncio.Task | None = None

    # State

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def connected(self) -> bool:
        return self._status == ConnectionStatus.OPEN

    @property
    def last_message(self) -> SseMessage | None:
        return self._last_message

    @property
    def messages(self) -> list[SseMessage]:
        return list(self._messages)

    @property
    def subscribed_channels(self) -> frozenset[str]:
        return frozenset(self._channels)

    @property
    def retry_pending(self) -> bool:
        return self._retry_handle is not None

    # Lifecycle

    def connect(self) -> None:
        """Open a new transport, or schedule a retry if not authenticated."""
        token = self._token_provider()
        if not token:
            self._log.warning("No access token found, will retry")
            self._set_status(ConnectionStatus.DISCONNECTED)
            self._schedule_retry(self._settings.missing_token_delay)
            return

        # An explicit connect supersedes any pending retry
        self._cancel_retry()

        self._set_status(
            ConnectionStatus.RETRYING if self._attempt > 0 else ConnectionStatus.CONNECTING
        )
        self._connect_started_at = time.monotonic()
        self._record("sse_connect_attempt", {"attempt": self._attempt})

        # Membership belongs to the stream being replaced
        self._channels.clear()
        self._opened_at = None
        self._transport.close()
        self._transport.on_open(self._handle_open)
        self._transport.on_message(self._handle_message)
        self._transport.on_error(self._handle_error)
        self._transport.open(token)

    def close(self) -> None:
        """Tear down the connection (logout/unmount)."""
        self._log.info("Closing push connection")
        self._cancel_retry()

        if self._opened_at is not None:
            self._record("sse_close", {"since_open_ms": self._ms_since(self._opened_at)})
        else:
            self._record("sse_close", {})

        self._transport.close()
        self._last_message = None
        self._messages.clear()
        self._channels.clear()
        self._attempt = 0
        self._opened_at = None
        self._set_status(ConnectionStatus.DISCONNECTED)

    async def stop(self) -> None:
        """Close, deliver pending fan-out, stop the dispatcher."""
        self.close()
        await self.drain()
        if self._dispatcher:
            self._dispatcher.cancel()
            try:
                await self._dispatcher
            except asyncio.CancelledError:
                pass
            self._dispatcher = None

    async def drain(self) -> None:
        """Wait until every queued message/status has been published."""
        await self._outbox.join()

    # Channels

    async def subscribe(self, channel: str) -> bool:
        """Join a channel; no-op when already joined, False on failure."""
        name = (channel or "").strip()
        if not name:
            self._log.warning("subscribe called with empty channel")
            return False
        if name in self._channels:
            return True
        if not self.connected:
            self._log.warning("Not connected yet, cannot subscribe to %s", name)
            return False

        try:
            await self._channel_api.subscribe_channel(name)
        except Exception as e:
            self._log.error("Failed to subscribe %s: %s", name, e)
            return False

        self._channels.add(name)
        self._log.info("Subscribed to channel %s", name)
        return True

    async def unsubscribe(self, channel: str) -> bool:
        """Leave a channel; no-op when not joined, False on failure."""
        name = (channel or "").strip()
        if name not in self._channels:
            return True
        if not self.connected:
            self._log.warning("Not connected, cannot unsubscribe from %s", name)
            return False

        try:
            await self._channel_api.unsubscribe_channel(name)
        except Exception as e:
            self._log.error("Failed to unsubscribe %s: %s", name, e)
            return False

        self._channels.discard(name)
        self._log.info("Unsubscribed from channel %s", name)
        return True

    # Transport callbacks

    def _handle_open(self) -> None:
        self._cancel_retry()
        self._attempt = 0
        now = time.monotonic()
        connect_ms = (
            self._ms_since(self._connect_started_at)
            if self._connect_started_at is not None
            else None
        )
        self._opened_at = now
        self._last_message_at = now
        self._log.info("Push connection open")
        self._set_status(ConnectionStatus.OPEN)
        self._record("sse_open", {"connect_ms": connect_ms} if connect_ms is not None else {})

    def _handle_message(self, raw: str) -> None:
        self._last_message_at = time.monotonic()
        try:
            parsed = json.loads(raw)
        except (TypeError, ValueError) as e:
            self._log.warning("Failed to parse push message %r: %s", raw[:200], e)
            return
        if not isinstance(parsed, dict):
            self._log.warning("Dropping non-object push message: %r", raw[:200])
            return

        data = parsed.get("data")
        message = SseMessage(
            event=str(parsed.get("event") or ""),
            channel=str(parsed.get("channel") or ""),
            data=data if isinstance(data, dict) else None,
        )
        self._log.debug("Push message %s on %s", message.event, message.channel)

        self._last_message = message
        self._messages.append(message)
        self._enqueue(Topic.MESSAGE, message)

    def _handle_error(self, error: BaseException) -> None:
        self._log.error("Push connection error: %s", error)
        self._record(
            "sse_error",
            {
                "since_open_ms": self._ms_since(self._opened_at),
                "since_message_ms": self._ms_since(self._last_message_at),
            },
        )
        # Server-side membership does not survive the stream
        self._channels.clear()
        self._opened_at = None
        self._transport.close()
        self._set_status(ConnectionStatus.DISCONNECTED)

        self._attempt += 1
        self._schedule_retry(self._backoff_delay(self._attempt))

    # Retry

    def _backoff_delay(self, attempt: int) -> float:
        """Exponential delay for attempt n (1-based), capped, plus jitter."""
        s = self._settings
        delay = min(s.retry_base_delay * (s.retry_factor ** (attempt - 1)), s.retry_max_delay)
        return delay + delay * s.retry_jitter * self._rng.random()

    def _schedule_retry(self, delay: float) -> None:
        self._cancel_retry()
        loop = asyncio.get_running_loop()
        self._retry_handle = loop.call_later(delay, self._fire_retry)
        self._log.info("Reconnect scheduled in %.2fs", delay)
        self._record("sse_retry", {"delay_ms": round(delay * 1000)})

    def _cancel_retry(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    def _fire_retry(self) -> None:
        self._retry_handle = None
        self.connect()

    # Fan-out

    def _set_status(self, status: ConnectionStatus) -> None:
        if status == self._status:
            return
        self._status = status
        self._enqueue(Topic.STATUS, status)

    def _enqueue(self, topic: Topic, payload: Any) -> None:
        self._outbox.put_nowait((topic, payload))
        if self._dispatcher is None or self._dispatcher.done():
            self._dispatcher = asyncio.create_task(self._dispatch())

    async def _dispatch(self) -> None:
        while True:
            topic, payload = await self._outbox.get()
            try:
                await self._event_bus.emit(topic, payload, source="connection_manager")
            except Exception as e:
                self._log.error("Fan-out of %s failed: %s", topic.value, e, exc_info=True)
            finally:
                self._outbox.task_done()

    # Telemetry

    def _record(self, event_type: str, data: dict[str, Any]) -> None:
        if not self._telemetry:
            return
        self._telemetry.queue(TelemetryEvent(type=event_type, data=data))

    @staticmethod
    def _ms_since(started: float | None) -> int | None:
        if started is None:
            return None
        return round(max(0.0, time.monotonic() - started) * 1000)

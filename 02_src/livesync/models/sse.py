"""Push-channel data models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ConnectionStatus(str, Enum):
    """Lifecycle of the push-channel connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    RETRYING = "retrying"


@dataclass
class SseMessage:
    """One server-sent message: {event, channel, data}."""

    event: str
    channel: str
    data: dict[str, Any] | None = None
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

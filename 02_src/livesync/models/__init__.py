"""Core data models for livesync."""

from .bus import BusMessage, Topic
from .jobs import ActivityItem, JobRecord, JobStatus, JobUpdate
from .paths import PLACEHOLDER_PREFIX, Path, placeholder_id
from .profile import UserProfile
from .sse import ConnectionStatus, SseMessage
from .telemetry import TelemetryEvent

__all__ = [
    # Bus
    "BusMessage",
    "Topic",
    # Push channel
    "ConnectionStatus",
    "SseMessage",
    # Jobs
    "JobStatus",
    "JobRecord",
    "JobUpdate",
    "ActivityItem",
    # Paths
    "Path",
    "PLACEHOLDER_PREFIX",
    "placeholder_id",
    # Profile
    "UserProfile",
    # Telemetry
    "TelemetryEvent",
]

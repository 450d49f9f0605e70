"""livesync module."""

from .app import Application, IApplication
from .auth import TokenProvider, TokenStore, env_token_provider
from .backend import BackendClient, IChannelApi, IEventApi, IJobApi, IPathApi
from .config import SyncSettings
from .connection import ConnectionManager, IConnectionManager
from .event_bus import EventBus, IEventBus
from .jobs import IJobEngine, IPathCollection, JobReconciliationEngine, PathCollection
from .models import (
    ActivityItem,
    BusMessage,
    ConnectionStatus,
    JobRecord,
    JobStatus,
    JobUpdate,
    Path,
    SseMessage,
    TelemetryEvent,
    Topic,
    UserProfile,
)
from .profile import UserProfileSync
from .storage import IStorage, Storage
from .telemetry import ITelemetryQueue, TelemetryQueue
from .transport import IPushTransport, SseTransport

__all__ = [
    # Application
    "Application",
    "IApplication",
    "SyncSettings",
    # Auth
    "TokenProvider",
    "TokenStore",
    "env_token_provider",
    # Models
    "ActivityItem",
    "BusMessage",
    "ConnectionStatus",
    "JobRecord",
    "JobStatus",
    "JobUpdate",
    "Path",
    "SseMessage",
    "TelemetryEvent",
    "Topic",
    "UserProfile",
    # Components
    "IStorage",
    "Storage",
    "IEventBus",
    "EventBus",
    "BackendClient",
    "IChannelApi",
    "IEventApi",
    "IJobApi",
    "IPathApi",
    "IPushTransport",
    "SseTransport",
    "IConnectionManager",
    "ConnectionManager",
    "ITelemetryQueue",
    "TelemetryQueue",
    "IPathCollection",
    "PathCollection",
    "IJobEngine",
    "JobReconciliationEngine",
    "UserProfileSync",
]

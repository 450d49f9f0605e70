"""Backend REST collaborators."""

from .client import BackendClient, IChannelApi, IEventApi, IJobApi, IPathApi
from .mapping import event_to_backend, map_path, safe_parse_json

__all__ = [
    "BackendClient",
    "IChannelApi",
    "IEventApi",
    "IJobApi",
    "IPathApi",
    "event_to_backend",
    "map_path",
    "safe_parse_json",
]

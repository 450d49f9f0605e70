"""Push transport module."""

from .sse import (
    ErrorCallback,
    IPushTransport,
    MessageCallback,
    OpenCallback,
    SseTransport,
)

__all__ = [
    "ErrorCallback",
    "IPushTransport",
    "MessageCallback",
    "OpenCallback",
    "SseTransport",
]

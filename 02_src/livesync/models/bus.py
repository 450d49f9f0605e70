"""In-process fan-out data models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class Topic(str, Enum):
    """EventBus topics."""

    MESSAGE = "message"  # parsed push-channel message
    STATUS = "status"  # connection status change


@dataclass
class BusMessage:
    """A message exchanged through EventBus."""

    id: str
    topic: Topic
    payload: Any  # SseMessage for MESSAGE, ConnectionStatus for STATUS
    source: str  # component that published
    timestamp: datetime

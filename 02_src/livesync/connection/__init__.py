"""Connection module."""

from .manager import ConnectionManager, IConnectionManager

__all__ = ["ConnectionManager", "IConnectionManager"]

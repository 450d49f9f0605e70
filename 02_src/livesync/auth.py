"""Access-token lookup used to gate push-channel connects."""

import os
from typing import Callable

TokenProvider = Callable[[], str | None]


def env_token_provider() -> str | None:
    """Read the access token from ACCESS_TOKEN; blank counts as absent."""
    token = os.getenv("ACCESS_TOKEN", "").strip()
    return token or None


class TokenStore:
    """In-memory token holder the host application writes on login."""

    def __init__(self, access_token: str | None = None):
        self._access_token = access_token

    def set_token(self, access_token: str) -> None:
        self._access_token = access_token

    def clear(self) -> None:
        self._access_token = None

    def get_token(self) -> str | None:
        token = (self._access_token or "").strip()
        return token or None

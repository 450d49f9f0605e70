"""User profile model."""

from dataclasses import dataclass


@dataclass
class UserProfile:
    """The signed-in user's profile as shown by the client."""

    id: str
    first_name: str = ""
    last_name: str = ""
    avatar_url: str | None = None
    avatar_color: str | None = None
    preferred_theme: str | None = None
    preferred_ui_theme: str | None = None

"""Live user profile updates."""

from .sync import UI_THEMES, UserProfileSync, apply_profile_event

__all__ = ["UI_THEMES", "UserProfileSync", "apply_profile_event"]

"""UserProfileSync: live profile field updates from the push channel."""

from dataclasses import replace

from ..event_bus import IEventBus
from ..logging_config import get_logger
from ..models import BusMessage, SseMessage, Topic, UserProfile

logger = get_logger(__name__)

UI_THEMES = frozenset(
    {"classic", "slate", "dune", "sage", "aurora", "ink", "linen", "ember", "harbor", "moss"}
)


def apply_profile_event(profile: UserProfile, message: SseMessage) -> UserProfile:
    """Return the profile with the message applied; unchanged if irrelevant."""
    if message.channel != profile.id or not isinstance(message.data, dict):
        return profile
    data = message.data

    if message.event == "UserNameChanged":
        return replace(
            profile,
            first_name=data.get("first_name", profile.first_name) or profile.first_name,
            last_name=data.get("last_name", profile.last_name) or profile.last_name,
            avatar_url=data.get("avatar_url") or profile.avatar_url,
        )

    if message.event == "UserThemeChanged":
        ui_theme = data.get("preferred_ui_theme")
        return replace(
            profile,
            preferred_theme=data.get("preferred_theme") or profile.preferred_theme,
            preferred_ui_theme=ui_theme if ui_theme in UI_THEMES else profile.preferred_ui_theme,
        )

    if message.event == "UserAvatarChanged":
        return replace(
            profile,
            avatar_url=data.get("avatar_url") or profile.avatar_url,
            avatar_color=data.get("avatar_color") or profile.avatar_color,
        )

    return profile


class UserProfileSync:
    """Keeps a UserProfile current from messages on the user's channel."""

    def __init__(self, event_bus: IEventBus, profile: UserProfile):
        self._event_bus = event_bus
        self._profile = profile
        self._started = False

    @property
    def profile(self) -> UserProfile:
        return self._profile

    def start(self) -> None:
        if not self._started:
            self._event_bus.subscribe(Topic.MESSAGE, self._on_message)
            self._started = True

    def stop(self) -> None:
        if self._started:
            self._event_bus.unsubscribe(Topic.MESSAGE, self._on_message)
            self._started = False

    async def _on_message(self, message: BusMessage) -> None:
        if not isinstance(message.payload, SseMessage):
            return
        updated = apply_profile_event(self._profile, message.payload)
        if updated is not self._profile:
            logger.info("Profile updated from %s", message.payload.event)
            self._profile = updated

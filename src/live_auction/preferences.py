"""
Notification preferences owned by the hosting application.

The tracker only ever reads a snapshot of these; the models are frozen so
a live edit cannot change a decision that is already in flight.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .. import config


class NotifyScope(str, Enum):
    ALL = 'all'
    TARGETS_ONLY = 'targetsOnly'


class NotificationPreference(BaseModel):
    """User preferences for live auction notifications."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(config.DEFAULT_NOTIFICATIONS_ENABLED, description="Master switch")
    sound_enabled: bool = Field(config.DEFAULT_SOUND_ENABLED, description="Attach a sound to notifications")
    notify_scope: NotifyScope = Field(
        NotifyScope(config.DEFAULT_NOTIFY_SCOPE),
        description="Notify for all bids or only for watchlisted players"
    )
    min_amount_threshold: int = Field(
        config.DEFAULT_MIN_AMOUNT_THRESHOLD, ge=0,
        description="Only notify for bids >= this amount"
    )
    max_per_minute: int = Field(
        config.DEFAULT_MAX_PER_MINUTE, ge=0,
        description="Notifications admitted per rolling minute"
    )

    @property
    def notify_all(self) -> bool:
        return self.notify_scope == NotifyScope.ALL

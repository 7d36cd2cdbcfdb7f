"""Per-user notification preferences, as read by the engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import time

from .delivery import Channel

DEFAULT_MAX_PER_DAY = 10


@dataclass(frozen=True)
class ChannelContact:
    """Enabled flag plus contact identifier for one channel."""

    enabled: bool = False
    identifier: str | None = None

    @property
    def usable(self) -> bool:
        return self.enabled and bool(self.identifier and self.identifier.strip())


@dataclass(frozen=True)
class UserNotificationPreference:
    """Read-only preference snapshot for one user.

    ``daily_sent_count`` is maintained by the store; the engine never
    increments it in memory.
    """

    user_id: str
    contacts: dict[Channel, ChannelContact] = field(default_factory=dict)
    quiet_hours_start: time | None = None
    quiet_hours_end: time | None = None
    timezone: str | None = None
    max_notifications_per_day: int = DEFAULT_MAX_PER_DAY
    daily_sent_count: int = 0
    daily_digest: bool = False

    def contact_for(self, channel: Channel) -> ChannelContact:
        return self.contacts.get(channel, ChannelContact())

    def recipient_for(self, channel: Channel) -> str | None:
        contact = self.contact_for(channel)
        return contact.identifier if contact.usable else None

    @property
    def has_quiet_hours(self) -> bool:
        return self.quiet_hours_start is not None and self.quiet_hours_end is not None

"""Eligibility filter: may this work item be sent right now?

Everything here is pure: no I/O, no clock reads, no logging. The caller
passes ``now``.
"""

from __future__ import annotations

from datetime import datetime, time, timezone, tzinfo
from enum import Enum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .preferences import UserNotificationPreference
from .work_item import WorkItem

DEFAULT_TIMEZONE = "UTC"


class EligibilityVerdict(Enum):
    """Why an item was kept or dropped for this cycle."""

    ELIGIBLE = "eligible"
    CHANNEL_NOT_CONFIGURED = "channel_not_configured"
    QUIET_HOURS = "quiet_hours"
    DAILY_CAP_REACHED = "daily_cap_reached"


def resolve_timezone(name: str | None, default: str = DEFAULT_TIMEZONE) -> tzinfo:
    """Return the zone for ``name``, falling back to ``default`` then UTC."""
    for candidate in (name, default):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            continue
    return timezone.utc


def in_window(t: time, start: time, end: time) -> bool:
    """Whether local clock time ``t`` falls inside ``[start, end)``.

    A window with ``start > end`` wraps midnight.
    """
    t = t.replace(second=0, microsecond=0, tzinfo=None)
    if start > end:
        return t >= start or t < end
    return start <= t < end


def is_in_quiet_hours(
    preference: UserNotificationPreference,
    now: datetime,
    default_timezone: str = DEFAULT_TIMEZONE,
) -> bool:
    if preference.quiet_hours_start is None or preference.quiet_hours_end is None:
        return False
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local = now.astimezone(resolve_timezone(preference.timezone, default_timezone))
    return in_window(
        local.time(), preference.quiet_hours_start, preference.quiet_hours_end
    )


def is_channel_configured(item: WorkItem, preference: UserNotificationPreference) -> bool:
    return preference.contact_for(item.channel).usable


def is_under_daily_cap(preference: UserNotificationPreference) -> bool:
    return preference.daily_sent_count < preference.max_notifications_per_day


def evaluate(
    item: WorkItem,
    preference: UserNotificationPreference,
    now: datetime,
    default_timezone: str = DEFAULT_TIMEZONE,
) -> EligibilityVerdict:
    if not is_channel_configured(item, preference):
        return EligibilityVerdict.CHANNEL_NOT_CONFIGURED
    if is_in_quiet_hours(preference, now, default_timezone):
        return EligibilityVerdict.QUIET_HOURS
    if not is_under_daily_cap(preference):
        return EligibilityVerdict.DAILY_CAP_REACHED
    return EligibilityVerdict.ELIGIBLE


def is_eligible(
    item: WorkItem,
    preference: UserNotificationPreference,
    now: datetime,
    default_timezone: str = DEFAULT_TIMEZONE,
) -> bool:
    """Keep/drop decision for ``item`` at ``now``."""
    return evaluate(item, preference, now, default_timezone) is EligibilityVerdict.ELIGIBLE

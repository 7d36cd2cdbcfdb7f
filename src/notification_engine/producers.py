"""Trigger actions that feed the queue or maintain it.

Producers only enqueue through :class:`NotificationService`; they never
send anything themselves.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from .delivery import Channel
from .eligibility import resolve_timezone
from .work_item import NotificationRequest

if TYPE_CHECKING:
    from collections.abc import Callable

    from .metrics import EngineMetrics
    from .ports.producers import IAlertSource, IMetricsSink
    from .ports.store import INotificationStore
    from .preferences import UserNotificationPreference
    from .service import NotificationService

logger = logging.getLogger(__name__)

DIGEST_KIND = "daily_digest"
DIGEST_CHANNELS = (Channel.EMAIL, Channel.CHAT_PUSH)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SourceConditionScan:
    """Polls an alert source and enqueues whatever it reports."""

    def __init__(self, source: IAlertSource, service: NotificationService) -> None:
        self._source = source
        self._service = service

    async def __call__(self) -> int:
        requests = await self._source.collect()
        for request in requests:
            await self._service.queue_notification(request)
        if requests:
            logger.info("Source scan queued %d notifications", len(requests))
        return len(requests)


class DailyDigestProducer:
    """Enqueues one digest per subscribed user who had activity today.

    "Today" starts at local midnight in the digest timezone. Users with no
    history since then get nothing.
    """

    def __init__(
        self,
        store: INotificationStore,
        service: NotificationService,
        *,
        tz: str = "UTC",
        base_priority: int = 3,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._service = service
        self._tz = tz
        self._base_priority = base_priority
        self._clock = clock

    def start_of_day(self, now: datetime) -> datetime:
        zone = resolve_timezone(self._tz)
        local = now.astimezone(zone)
        midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
        return midnight.astimezone(timezone.utc)

    @staticmethod
    def digest_channel(preference: UserNotificationPreference) -> Channel | None:
        for channel in DIGEST_CHANNELS:
            if preference.contact_for(channel).usable:
                return channel
        return None

    async def __call__(self) -> int:
        since = self.start_of_day(self._clock())
        queued = 0
        for preference in await self._store.fetch_digest_subscribers():
            if not preference.daily_digest:
                continue
            channel = self.digest_channel(preference)
            if channel is None:
                continue
            count = await self._store.count_history_since(preference.user_id, since)
            if count <= 0:
                continue
            await self._service.queue_notification(
                NotificationRequest(
                    user_id=preference.user_id,
                    channel=channel,
                    payload={"notification_count": count},
                    base_priority=self._base_priority,
                    kind=DIGEST_KIND,
                )
            )
            queued += 1
        logger.info("Daily digest queued for %d users", queued)
        return queued


class RetentionCleanup:
    """Purges terminal work items and history past the retention horizon."""

    def __init__(
        self,
        store: INotificationStore,
        retention_days: int = 90,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if retention_days < 1:
            raise ValueError("retention_days must be >= 1")
        self._store = store
        self._retention = timedelta(days=retention_days)
        self._clock = clock

    async def __call__(self) -> int:
        horizon = self._clock() - self._retention
        removed = await self._store.purge_terminal(horizon)
        logger.info("Retention cleanup removed %d rows older than %s", removed, horizon)
        return removed


class MetricsSnapshotPublisher:
    def __init__(self, metrics: EngineMetrics, sink: IMetricsSink) -> None:
        self._metrics = metrics
        self._sink = sink

    async def __call__(self) -> None:
        await self._sink.write(self._metrics.snapshot())

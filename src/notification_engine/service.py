"""Producer-facing enqueue API."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from .priority import score
from .work_item import NotificationRequest, WorkItem

if TYPE_CHECKING:
    from collections.abc import Callable

    from .ports.store import INotificationStore

logger = logging.getLogger(__name__)

PAYLOAD_TYPE_KEY = "type"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationService:
    """Turns :class:`NotificationRequest` objects into queued work items.

    The priority score is computed here, once; the drain loop only ever
    sorts on the stored value.
    """

    def __init__(
        self,
        store: INotificationStore,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._clock = clock

    def build_work_item(self, request: NotificationRequest) -> WorkItem:
        now = self._clock()
        payload = dict(request.payload)
        if request.kind is not None:
            payload.setdefault(PAYLOAD_TYPE_KEY, request.kind)
        return WorkItem(
            user_id=request.user_id,
            channel=request.channel,
            priority_score=score(request.base_priority, payload),
            payload=payload,
            scheduled_for=request.scheduled_for or now,
            created_at=now,
        )

    async def queue_notification(self, request: NotificationRequest) -> str:
        """Enqueue ``request`` and return the new work item id."""
        item = self.build_work_item(request)
        work_item_id = await self._store.enqueue(item)
        logger.debug(
            "Queued %s notification %s for user %s (score=%d)",
            item.channel.value,
            work_item_id,
            item.user_id,
            item.priority_score,
        )
        return work_item_id

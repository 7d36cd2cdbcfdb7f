"""Notification store port."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from contextlib import AbstractAsyncContextManager
    from datetime import datetime

    from ..delivery import HistoryRecord, WorkItemStatus
    from ..preferences import UserNotificationPreference
    from ..work_item import WorkItem


@runtime_checkable
class INotificationStore(Protocol):
    """Port for the durable work-item table and per-user facts.

    The store is the single owner of work-item state. ``record_outcome``
    only transitions items that are still ``queued`` and reports whether it
    did, so concurrent drains resolve each item exactly once.
    """

    async def fetch_eligible(self, limit: int) -> list[WorkItem]:
        """Queued items with ``scheduled_for <= now``, in priority order."""
        ...

    async def fetch_preference(self, user_id: str) -> UserNotificationPreference | None:
        ...

    def atomic(self) -> AbstractAsyncContextManager[None]:
        """Scope in which outcome writes for a single item commit together."""
        ...

    async def record_outcome(
        self,
        work_item_id: str,
        status: WorkItemStatus,
        error: str | None = None,
    ) -> bool:
        """Move a queued item to a terminal status and bump ``attempts``.

        Returns False when the item was no longer queued.
        """
        ...

    async def append_history(self, record: HistoryRecord) -> None:
        ...

    async def increment_daily_count(self, user_id: str) -> None:
        """Atomically add one to the user's sent-today counter."""
        ...

    async def enqueue(self, item: WorkItem) -> str:
        """Persist a new work item; used by producers only."""
        ...

    async def fetch_digest_subscribers(self) -> list[UserNotificationPreference]:
        ...

    async def count_history_since(self, user_id: str, since: datetime) -> int:
        """Count ``sent`` history rows for ``user_id`` with ``sent_at >= since``."""
        ...

    async def purge_terminal(self, before: datetime) -> int:
        """Delete terminal items and history older than ``before``."""
        ...

    async def ping(self) -> bool:
        ...

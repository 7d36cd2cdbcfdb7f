"""Dict-backed notification store for unit tests and local runs."""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING

from ..delivery import HistoryRecord, WorkItemStatus
from ..priority import order_batch

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from ..preferences import UserNotificationPreference
    from ..work_item import WorkItem


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryNotificationStore:
    """In-memory implementation of ``INotificationStore``.

    ``atomic()`` snapshots all state and restores it if the block raises,
    so a failed outcome write leaves nothing behind. Daily counters are
    keyed by UTC date.

    Setting ``fetch_error`` or ``preference_error`` makes the matching
    read raise; work item ids in ``history_errors`` make
    ``append_history`` raise for that item.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._items: dict[str, WorkItem] = {}
        self._errors: dict[str, str | None] = {}
        self._processed_at: dict[str, datetime] = {}
        self._preferences: dict[str, UserNotificationPreference] = {}
        self._daily_counts: dict[tuple[str, date], int] = {}
        self._history: list[tuple[datetime, HistoryRecord]] = []
        self._lock = asyncio.Lock()

        self.available = True
        self.fetch_error: Exception | None = None
        self.preference_error: Exception | None = None
        self.history_errors: set[str] = set()
        self.fetch_calls = 0

    def _today(self) -> date:
        return self._clock().date()

    # ── reads ─────────────────────────────────────────────────────────

    async def fetch_eligible(self, limit: int) -> list[WorkItem]:
        self.fetch_calls += 1
        if self.fetch_error is not None:
            raise self.fetch_error
        now = self._clock()
        due = [item for item in self._items.values() if item.is_due(now)]
        return order_batch(due)[:limit]

    async def fetch_preference(self, user_id: str) -> UserNotificationPreference | None:
        if self.preference_error is not None:
            raise self.preference_error
        preference = self._preferences.get(user_id)
        if preference is None:
            return None
        return dataclasses.replace(
            preference, daily_sent_count=self.daily_count(user_id)
        )

    async def fetch_digest_subscribers(self) -> list[UserNotificationPreference]:
        return [p for p in self._preferences.values() if p.daily_digest]

    async def count_history_since(self, user_id: str, since: datetime) -> int:
        return sum(
            1
            for _, record in self._history
            if record.user_id == user_id
            and record.status is WorkItemStatus.SENT
            and record.sent_at is not None
            and record.sent_at >= since
        )

    async def ping(self) -> bool:
        return self.available

    # ── writes ────────────────────────────────────────────────────────

    @contextlib.asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        async with self._lock:
            snapshot = (
                dict(self._items),
                dict(self._errors),
                dict(self._processed_at),
                dict(self._daily_counts),
                list(self._history),
            )
            try:
                yield
            except BaseException:
                (
                    self._items,
                    self._errors,
                    self._processed_at,
                    self._daily_counts,
                    self._history,
                ) = snapshot
                raise

    async def record_outcome(
        self,
        work_item_id: str,
        status: WorkItemStatus,
        error: str | None = None,
    ) -> bool:
        item = self._items.get(work_item_id)
        if item is None or item.status is not WorkItemStatus.QUEUED:
            return False
        self._items[work_item_id] = dataclasses.replace(
            item, status=status, attempts=item.attempts + 1
        )
        self._errors[work_item_id] = error
        self._processed_at[work_item_id] = self._clock()
        return True

    async def append_history(self, record: HistoryRecord) -> None:
        if record.work_item_id in self.history_errors:
            raise RuntimeError(f"history write failed for {record.work_item_id}")
        self._history.append((self._clock(), record))

    async def increment_daily_count(self, user_id: str) -> None:
        key = (user_id, self._today())
        self._daily_counts[key] = self._daily_counts.get(key, 0) + 1

    async def enqueue(self, item: WorkItem) -> str:
        self._items[item.id] = item
        return item.id

    async def purge_terminal(self, before: datetime) -> int:
        stale = [
            item_id
            for item_id, item in self._items.items()
            if item.status.is_terminal
            and self._processed_at.get(item_id, item.created_at) < before
        ]
        for item_id in stale:
            del self._items[item_id]
            self._errors.pop(item_id, None)
            self._processed_at.pop(item_id, None)
        kept = [(at, record) for at, record in self._history if at >= before]
        removed = len(stale) + len(self._history) - len(kept)
        self._history = kept
        return removed

    # ── test helpers ──────────────────────────────────────────────────

    def add_preference(self, preference: UserNotificationPreference) -> None:
        """Store a preference; its ``daily_sent_count`` seeds today's counter."""
        self._preferences[preference.user_id] = preference
        self._daily_counts[(preference.user_id, self._today())] = (
            preference.daily_sent_count
        )

    def get(self, work_item_id: str) -> WorkItem | None:
        return self._items.get(work_item_id)

    def error_for(self, work_item_id: str) -> str | None:
        return self._errors.get(work_item_id)

    def daily_count(self, user_id: str) -> int:
        return self._daily_counts.get((user_id, self._today()), 0)

    @property
    def items(self) -> list[WorkItem]:
        return list(self._items.values())

    @property
    def history(self) -> list[HistoryRecord]:
        return [record for _, record in self._history]

    def clear(self) -> None:
        self._items.clear()
        self._errors.clear()
        self._processed_at.clear()
        self._preferences.clear()
        self._daily_counts.clear()
        self._history.clear()

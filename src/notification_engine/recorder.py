"""OutcomeRecorder — writes delivery outcomes back to the store."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .delivery import HistoryRecord

if TYPE_CHECKING:
    from .delivery import DeliveryOutcome
    from .metrics import EngineMetrics
    from .ports.store import INotificationStore

logger = logging.getLogger(__name__)


@dataclass
class RecordSummary:
    recorded: int = 0
    already_resolved: int = 0
    errors: int = 0


class OutcomeRecorder:
    """
    Resolves each outcome inside its own store transaction.

    Status update, history append and (on success) the daily-counter
    increment commit together or not at all. A failed transaction leaves
    the item ``queued`` for the next cycle. Items another drain already
    resolved are left untouched.
    """

    def __init__(
        self,
        store: INotificationStore,
        metrics: EngineMetrics | None = None,
    ) -> None:
        self._store = store
        self._metrics = metrics

    async def record(self, outcomes: list[DeliveryOutcome]) -> RecordSummary:
        summary = RecordSummary()
        for outcome in outcomes:
            try:
                resolved = await self._record_one(outcome)
            except Exception:
                logger.exception(
                    "Failed to record %s outcome for work item %s; will retry",
                    outcome.status.value,
                    outcome.work_item_id,
                )
                summary.errors += 1
                continue

            if not resolved:
                logger.debug(
                    "Work item %s already resolved by another drain",
                    outcome.work_item_id,
                )
                summary.already_resolved += 1
                continue

            summary.recorded += 1
            if self._metrics is not None:
                self._metrics.record_outcome(outcome)
        return summary

    async def _record_one(self, outcome: DeliveryOutcome) -> bool:
        async with self._store.atomic():
            transitioned = await self._store.record_outcome(
                outcome.work_item_id, outcome.status, outcome.error
            )
            if not transitioned:
                return False
            await self._store.append_history(HistoryRecord.from_outcome(outcome))
            if outcome.succeeded:
                await self._store.increment_daily_count(outcome.user_id)
        return True

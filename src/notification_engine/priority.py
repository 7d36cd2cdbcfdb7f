"""Priority scoring at enqueue time and batch ordering at drain time.

Scoring is additive and order-independent; every rule fires at most once:

==============================  =====
rule                            bonus
==============================  =====
base                            base_priority * 10
high-value flag                 +20
discount > 30 (and <= 50)       +15
discount > 50                   +25 (replaces the +15)
urgency level >= 8              +30
expires in < 120 minutes        +20
==============================  =====

The sum is clamped to ``[0, 200]``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from .work_item import MAX_PRIORITY_SCORE, MIN_PRIORITY_SCORE, WorkItem

HIGH_VALUE = "is_high_value"
DISCOUNT_PERCENTAGE = "discount_percentage"
URGENCY_LEVEL = "urgency_level"
EXPIRES_IN_MINUTES = "expires_in_minutes"

HIGH_VALUE_BONUS = 20
DISCOUNT_BONUS = 15
DEEP_DISCOUNT_BONUS = 25
URGENCY_BONUS = 30
EXPIRY_BONUS = 20

DISCOUNT_THRESHOLD = 30
DEEP_DISCOUNT_THRESHOLD = 50
URGENCY_THRESHOLD = 8
EXPIRY_THRESHOLD_MINUTES = 120


def _as_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def score(base_priority: int, attributes: Mapping[str, Any] | None = None) -> int:
    """Compute the bounded priority score for a new work item."""
    attrs = attributes or {}
    total = base_priority * 10

    if attrs.get(HIGH_VALUE):
        total += HIGH_VALUE_BONUS

    discount = _as_number(attrs.get(DISCOUNT_PERCENTAGE))
    if discount is not None:
        if discount > DEEP_DISCOUNT_THRESHOLD:
            total += DEEP_DISCOUNT_BONUS
        elif discount > DISCOUNT_THRESHOLD:
            total += DISCOUNT_BONUS

    urgency = _as_number(attrs.get(URGENCY_LEVEL))
    if urgency is not None and urgency >= URGENCY_THRESHOLD:
        total += URGENCY_BONUS

    expires_in = _as_number(attrs.get(EXPIRES_IN_MINUTES))
    if expires_in is not None and expires_in < EXPIRY_THRESHOLD_MINUTES:
        total += EXPIRY_BONUS

    return max(MIN_PRIORITY_SCORE, min(int(total), MAX_PRIORITY_SCORE))


def ordering_key(item: WorkItem) -> tuple[int, float]:
    """Sort key: score descending, then oldest first."""
    return (-item.priority_score, item.created_at.timestamp())


def order_batch(items: Iterable[WorkItem]) -> list[WorkItem]:
    """Return ``items`` in drain order. The sort is stable."""
    return sorted(items, key=ordering_key)

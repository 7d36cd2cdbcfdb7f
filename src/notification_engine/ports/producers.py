"""Ports for the collaborators periodic triggers call into."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..work_item import NotificationRequest


@runtime_checkable
class IAlertSource(Protocol):
    """Finds newly qualifying source events and turns them into requests."""

    async def collect(self) -> list[NotificationRequest]:
        ...


@runtime_checkable
class IMetricsSink(Protocol):
    """Destination for periodic aggregate-counter snapshots."""

    async def write(self, snapshot: dict[str, Any]) -> None:
        ...

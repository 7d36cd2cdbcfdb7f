"""Notification store implementations."""

from __future__ import annotations

from .memory import InMemoryNotificationStore
from .sqlalchemy_store import SQLAlchemyNotificationStore

__all__ = ["InMemoryNotificationStore", "SQLAlchemyNotificationStore"]

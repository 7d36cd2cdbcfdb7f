"""Async SQLAlchemy implementation of the notification store."""

from __future__ import annotations

import contextlib
import contextvars
import logging
from datetime import date, datetime, time, timezone
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, delete, func, or_, select, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from ..delivery import Channel, WorkItemStatus
from ..preferences import ChannelContact, UserNotificationPreference
from ..work_item import WorkItem
from .models import (
    Base,
    NotificationDailyCounterModel,
    NotificationHistoryModel,
    NotificationPreferenceModel,
    NotificationWorkItemModel,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

    from ..delivery import HistoryRecord

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = (WorkItemStatus.SENT.value, WorkItemStatus.FAILED.value)

# Preference columns per channel: (enabled flag, identifier)
CONTACT_COLUMNS: dict[Channel, tuple[str, str]] = {
    Channel.EMAIL: ("email_enabled", "email_address"),
    Channel.CHAT_PUSH: ("chat_enabled", "chat_user_id"),
    Channel.SMS: ("sms_enabled", "phone_number"),
    Channel.MOBILE_PUSH: ("push_enabled", "push_token"),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_clock(value: str | None) -> time | None:
    if not value:
        return None
    try:
        return time.fromisoformat(value)
    except ValueError:
        logger.warning("Ignoring malformed quiet-hours value %r", value)
        return None


def _format_clock(value: time | None) -> str | None:
    return value.strftime("%H:%M") if value is not None else None


def work_item_from_model(model: NotificationWorkItemModel) -> WorkItem:
    return WorkItem(
        id=model.id,
        user_id=model.user_id,
        channel=Channel(model.channel),
        priority_score=model.priority_score,
        payload=dict(model.payload or {}),
        status=WorkItemStatus(model.status),
        scheduled_for=_utc(model.scheduled_for),
        created_at=_utc(model.created_at),
        attempts=model.attempts,
    )


def preference_from_model(
    model: NotificationPreferenceModel, daily_sent_count: int = 0
) -> UserNotificationPreference:
    contacts = {
        channel: ChannelContact(
            enabled=bool(getattr(model, flag)), identifier=getattr(model, identifier)
        )
        for channel, (flag, identifier) in CONTACT_COLUMNS.items()
    }
    return UserNotificationPreference(
        user_id=model.user_id,
        contacts=contacts,
        quiet_hours_start=_parse_clock(model.quiet_hours_start),
        quiet_hours_end=_parse_clock(model.quiet_hours_end),
        timezone=model.timezone,
        max_notifications_per_day=model.max_notifications_per_day,
        daily_sent_count=daily_sent_count,
        daily_digest=bool(model.daily_digest),
    )


def preference_columns(preference: UserNotificationPreference) -> dict[str, Any]:
    values: dict[str, Any] = {
        "quiet_hours_start": _format_clock(preference.quiet_hours_start),
        "quiet_hours_end": _format_clock(preference.quiet_hours_end),
        "timezone": preference.timezone,
        "max_notifications_per_day": preference.max_notifications_per_day,
        "daily_digest": preference.daily_digest,
    }
    for channel, (flag, identifier) in CONTACT_COLUMNS.items():
        contact = preference.contact_for(channel)
        values[flag] = contact.enabled
        values[identifier] = contact.identifier
    return values


class SQLAlchemyNotificationStore:
    """
    ``INotificationStore`` over an async SQLAlchemy engine.

    Each call runs in its own transaction unless it happens inside
    :meth:`atomic`, in which case it joins that transaction. The active
    session is tracked per task, so concurrent drains and producers never
    share one.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._engine = engine
        self._session_factory = async_sessionmaker(engine, expire_on_commit=False)
        self._clock = clock
        self._current: contextvars.ContextVar[AsyncSession | None] = (
            contextvars.ContextVar(f"notification_store_session_{id(self)}", default=None)
        )

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        clock: Callable[[], datetime] = _utcnow,
        **engine_kwargs: Any,
    ) -> SQLAlchemyNotificationStore:
        return cls(create_async_engine(url, **engine_kwargs), clock=clock)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_schema(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def aclose(self) -> None:
        await self._engine.dispose()

    # ── transactions ──────────────────────────────────────────────────

    @contextlib.asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        if self._current.get() is not None:
            yield
            return
        async with self._session_factory() as session, session.begin():
            token = self._current.set(session)
            try:
                yield
            finally:
                self._current.reset(token)

    @contextlib.asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        current = self._current.get()
        if current is not None:
            yield current
            return
        async with self._session_factory() as session, session.begin():
            yield session

    # ── reads ─────────────────────────────────────────────────────────

    async def fetch_eligible(self, limit: int) -> list[WorkItem]:
        now = _utc(self._clock())
        stmt = (
            select(NotificationWorkItemModel)
            .where(
                NotificationWorkItemModel.status == WorkItemStatus.QUEUED.value,
                NotificationWorkItemModel.scheduled_for <= now,
            )
            .order_by(
                NotificationWorkItemModel.priority_score.desc(),
                NotificationWorkItemModel.created_at.asc(),
            )
            .limit(limit)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            models = result.scalars().all()

        items: list[WorkItem] = []
        for model in models:
            try:
                items.append(work_item_from_model(model))
            except ValueError as e:
                logger.warning("Skipping unreadable work item %s: %s", model.id, e)
        return items

    async def fetch_preference(self, user_id: str) -> UserNotificationPreference | None:
        async with self._session() as session:
            model = await session.get(NotificationPreferenceModel, user_id)
            if model is None:
                return None
            count = await session.scalar(
                select(NotificationDailyCounterModel.sent_count).where(
                    NotificationDailyCounterModel.user_id == user_id,
                    NotificationDailyCounterModel.day == self._today(),
                )
            )
            return preference_from_model(model, count or 0)

    async def fetch_digest_subscribers(self) -> list[UserNotificationPreference]:
        stmt = select(NotificationPreferenceModel).where(
            NotificationPreferenceModel.daily_digest.is_(True)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            return [preference_from_model(m) for m in result.scalars().all()]

    async def count_history_since(self, user_id: str, since: datetime) -> int:
        stmt = select(func.count(NotificationHistoryModel.id)).where(
            NotificationHistoryModel.user_id == user_id,
            NotificationHistoryModel.status == WorkItemStatus.SENT.value,
            NotificationHistoryModel.sent_at >= _utc(since),
        )
        async with self._session() as session:
            return int(await session.scalar(stmt) or 0)

    async def ping(self) -> bool:
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as e:  # noqa: BLE001
            logger.warning("Store ping failed: %s", e)
            return False
        return True

    # ── writes ────────────────────────────────────────────────────────

    async def record_outcome(
        self,
        work_item_id: str,
        status: WorkItemStatus,
        error: str | None = None,
    ) -> bool:
        stmt = (
            update(NotificationWorkItemModel)
            .where(
                NotificationWorkItemModel.id == work_item_id,
                NotificationWorkItemModel.status == WorkItemStatus.QUEUED.value,
            )
            .values(
                status=status.value,
                attempts=NotificationWorkItemModel.attempts + 1,
                processed_at=_utc(self._clock()),
                error_details=error,
            )
            .execution_options(synchronize_session=False)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def append_history(self, record: HistoryRecord) -> None:
        async with self._session() as session:
            session.add(
                NotificationHistoryModel(
                    work_item_id=record.work_item_id,
                    user_id=record.user_id,
                    channel=record.channel.value,
                    status=record.status.value,
                    sent_at=_utc(record.sent_at) if record.sent_at else None,
                    error_message=record.error_message,
                    created_at=_utc(self._clock()),
                )
            )
            await session.flush()

    async def increment_daily_count(self, user_id: str) -> None:
        async with self._session() as session:
            dialect = self._engine.dialect.name
            values = {"user_id": user_id, "day": self._today(), "sent_count": 1}
            increment = {"sent_count": NotificationDailyCounterModel.sent_count + 1}
            if dialect == "postgresql":
                stmt = postgresql.insert(NotificationDailyCounterModel).values(**values)
                await session.execute(
                    stmt.on_conflict_do_update(
                        index_elements=["user_id", "day"], set_=increment
                    )
                )
                return
            if dialect == "sqlite":
                stmt = sqlite.insert(NotificationDailyCounterModel).values(**values)
                await session.execute(
                    stmt.on_conflict_do_update(
                        index_elements=["user_id", "day"], set_=increment
                    )
                )
                return

            result = await session.execute(
                update(NotificationDailyCounterModel)
                .where(
                    NotificationDailyCounterModel.user_id == user_id,
                    NotificationDailyCounterModel.day == values["day"],
                )
                .values(**increment)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                session.add(NotificationDailyCounterModel(**values))
                await session.flush()

    async def enqueue(self, item: WorkItem) -> str:
        async with self._session() as session:
            session.add(
                NotificationWorkItemModel(
                    id=item.id,
                    user_id=item.user_id,
                    channel=item.channel.value,
                    priority_score=item.priority_score,
                    payload=dict(item.payload),
                    status=item.status.value,
                    scheduled_for=_utc(item.scheduled_for),
                    created_at=_utc(item.created_at),
                    attempts=item.attempts,
                )
            )
            await session.flush()
        return item.id

    async def purge_terminal(self, before: datetime) -> int:
        horizon = _utc(before)
        items = delete(NotificationWorkItemModel).where(
            NotificationWorkItemModel.status.in_(TERMINAL_STATUSES),
            or_(
                NotificationWorkItemModel.processed_at < horizon,
                and_(
                    NotificationWorkItemModel.processed_at.is_(None),
                    NotificationWorkItemModel.created_at < horizon,
                ),
            ),
        ).execution_options(synchronize_session=False)
        history = delete(NotificationHistoryModel).where(
            NotificationHistoryModel.created_at < horizon
        ).execution_options(synchronize_session=False)
        counters = delete(NotificationDailyCounterModel).where(
            NotificationDailyCounterModel.day < horizon.date()
        ).execution_options(synchronize_session=False)
        async with self._session() as session:
            removed_items = (await session.execute(items)).rowcount
            removed_history = (await session.execute(history)).rowcount
            await session.execute(counters)
        return int(removed_items or 0) + int(removed_history or 0)

    async def save_preference(self, preference: UserNotificationPreference) -> None:
        """Insert or replace a user's preference row."""
        async with self._session() as session:
            model = await session.get(NotificationPreferenceModel, preference.user_id)
            if model is None:
                model = NotificationPreferenceModel(user_id=preference.user_id)
                session.add(model)
            for column, value in preference_columns(preference).items():
                setattr(model, column, value)
            await session.flush()

    async def get(self, work_item_id: str) -> WorkItem | None:
        async with self._session() as session:
            model = await session.get(NotificationWorkItemModel, work_item_id)
            return work_item_from_model(model) if model is not None else None

    def _today(self) -> date:
        return _utc(self._clock()).date()

"""Preference, alert rule, and notification history stores.

Each store wraps the injected Database and converts rows to the pydantic
models in core.models. Every user-facing mutation is scoped to the owning
user; a record owned by someone else is reported as NotFound. Database
failures surface as StorageError.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import AsyncIterator, Iterator, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

from .core.models import (
    NotificationRecord,
    NotificationType,
    SpaceAlertInput,
    SpaceAlertRule,
    UserPreferences,
    WeatherAlertInput,
    WeatherAlertRule,
    utcnow,
)
from .db import Database
from .errors import NotFound, StorageError
from .sqlmodels import NotificationHistoryRow, SpaceAlertRow, UserPreferencesRow, WeatherAlertRow

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50
PREFERENCE_FIELDS = ("saved_cities", "notifications_enabled", "email_notifications", "default_city")


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Storage failure while trying to %s: %s", action, exc)
        raise StorageError(f"Could not {action}") from exc


# ─── Preferences ─────────────────────────────────────────────────────────────


def _prefs_from_row(row: UserPreferencesRow) -> UserPreferences:
    return UserPreferences(
        user_id=row.user_id,
        saved_cities=list(row.saved_cities or []),
        notifications_enabled=row.notifications_enabled,
        email_notifications=row.email_notifications,
        default_city=row.default_city,
        updated_at=row.updated_at,
    )


class PreferenceStore:
    """Per-user settings."""

    def __init__(self, db: Database):
        self.db = db

    async def get(self, user_id: str) -> UserPreferences:
        with _storage_errors("load preferences"):
            async with self.db.session() as session:
                result = await session.execute(
                    select(UserPreferencesRow).where(UserPreferencesRow.user_id == user_id)
                )
                row = result.scalar_one_or_none()
        if row is None:
            raise NotFound(f"No preferences for user {user_id}")
        return _prefs_from_row(row)

    async def get_or_create(self, user_id: str) -> UserPreferences:
        """Return the user's preferences, creating defaults on first login."""
        try:
            return await self.get(user_id)
        except NotFound:
            logger.info("Creating default preferences for user %s", user_id)
            return await self.upsert(user_id)

    async def upsert(self, user_id: str, **fields) -> UserPreferences:
        """Create or update preferences. Unknown field names are rejected."""
        unknown = set(fields) - set(PREFERENCE_FIELDS)
        if unknown:
            raise StorageError(f"Unknown preference fields: {', '.join(sorted(unknown))}")

        with _storage_errors("save preferences"):
            async with self.db.session() as session:
                result = await session.execute(
                    select(UserPreferencesRow).where(UserPreferencesRow.user_id == user_id)
                )
                row = result.scalar_one_or_none()
                if row is None:
                    row = UserPreferencesRow(
                        user_id=user_id,
                        saved_cities=[],
                        notifications_enabled=True,
                        email_notifications=True,
                        default_city="London",
                        created_at=utcnow(),
                    )
                    session.add(row)
                for name, value in fields.items():
                    if value is not None:
                        setattr(row, name, list(value) if name == "saved_cities" else value)
                row.updated_at = utcnow()
                await session.commit()
                return _prefs_from_row(row)

    async def update_cities(self, user_id: str, cities: list[str]) -> UserPreferences:
        cleaned: list[str] = []
        for city in cities:
            city = city.strip()
            if city and city not in cleaned:
                cleaned.append(city)
        return await self.upsert(user_id, saved_cities=cleaned)

    async def list_notifiable(self) -> list[UserPreferences]:
        """All users with notifications enabled."""
        with _storage_errors("list users"):
            async with self.db.session() as session:
                result = await session.execute(
                    select(UserPreferencesRow)
                    .where(UserPreferencesRow.notifications_enabled.is_(True))
                    .order_by(UserPreferencesRow.id)
                )
                rows = result.scalars().all()
        return [_prefs_from_row(r) for r in rows]


# ─── Alert rules ─────────────────────────────────────────────────────────────


def _weather_from_row(row: WeatherAlertRow) -> WeatherAlertRule:
    return WeatherAlertRule(
        id=row.id,
        user_id=row.user_id,
        city=row.city,
        alert_type=row.alert_type,
        condition=row.condition,
        threshold=row.threshold,
        enabled=row.enabled,
        created_at=row.created_at,
    )


def _space_from_row(row: SpaceAlertRow) -> SpaceAlertRule:
    return SpaceAlertRule(
        id=row.id,
        user_id=row.user_id,
        alert_types=list(row.alert_types or []),
        min_severity=row.min_severity,
        enabled=row.enabled,
    )


class AlertRuleStore:
    """Weather and space weather alert rules."""

    def __init__(self, db: Database):
        self.db = db

    async def _owned_weather_row(self, session, user_id: str, rule_id: int) -> WeatherAlertRow:
        result = await session.execute(
            select(WeatherAlertRow).where(
                WeatherAlertRow.id == rule_id,
                WeatherAlertRow.user_id == user_id,
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise NotFound(f"Weather alert {rule_id} not found")
        return row

    async def create_weather(self, user_id: str, rule: WeatherAlertInput) -> WeatherAlertRule:
        with _storage_errors("create weather alert"):
            async with self.db.session() as session:
                row = WeatherAlertRow(
                    user_id=user_id,
                    city=rule.city,
                    alert_type=rule.alert_type.value,
                    condition=rule.condition.value,
                    threshold=rule.threshold,
                    enabled=rule.enabled,
                    created_at=utcnow(),
                )
                session.add(row)
                await session.commit()
                logger.info("User %s created %s alert %d for %s", user_id, row.alert_type, row.id, row.city)
                return _weather_from_row(row)

    async def update_weather(self, user_id: str, rule_id: int, rule: WeatherAlertInput) -> WeatherAlertRule:
        with _storage_errors("update weather alert"):
            async with self.db.session() as session:
                row = await self._owned_weather_row(session, user_id, rule_id)
                row.city = rule.city
                row.alert_type = rule.alert_type.value
                row.condition = rule.condition.value
                row.threshold = rule.threshold
                row.enabled = rule.enabled
                await session.commit()
                return _weather_from_row(row)

    async def toggle_weather(self, user_id: str, rule_id: int, enabled: bool) -> WeatherAlertRule:
        with _storage_errors("toggle weather alert"):
            async with self.db.session() as session:
                row = await self._owned_weather_row(session, user_id, rule_id)
                row.enabled = enabled
                await session.commit()
                return _weather_from_row(row)

    async def delete_weather(self, user_id: str, rule_id: int) -> None:
        with _storage_errors("delete weather alert"):
            async with self.db.session() as session:
                row = await self._owned_weather_row(session, user_id, rule_id)
                await session.delete(row)
                await session.commit()
        logger.info("User %s deleted weather alert %d", user_id, rule_id)

    async def list_weather_for_user(self, user_id: str) -> list[WeatherAlertRule]:
        with _storage_errors("list weather alerts"):
            async with self.db.session() as session:
                result = await session.execute(
                    select(WeatherAlertRow)
                    .where(WeatherAlertRow.user_id == user_id)
                    .order_by(WeatherAlertRow.id)
                )
                rows = result.scalars().all()
        return [_weather_from_row(r) for r in rows]

    async def list_enabled_weather(
        self,
        city: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> list[WeatherAlertRule]:
        """Enabled weather rules, optionally for one city (case-insensitive) or one user."""
        query = select(WeatherAlertRow).where(WeatherAlertRow.enabled.is_(True))
        if city is not None:
            query = query.where(func.lower(WeatherAlertRow.city) == city.strip().lower())
        if user_id is not None:
            query = query.where(WeatherAlertRow.user_id == user_id)

        with _storage_errors("list enabled weather alerts"):
            async with self.db.session() as session:
                result = await session.execute(query.order_by(WeatherAlertRow.id))
                rows = result.scalars().all()
        return [_weather_from_row(r) for r in rows]

    async def upsert_space(self, user_id: str, settings: SpaceAlertInput) -> SpaceAlertRule:
        with _storage_errors("save space weather alerts"):
            async with self.db.session() as session:
                result = await session.execute(
                    select(SpaceAlertRow).where(SpaceAlertRow.user_id == user_id)
                )
                row = result.scalar_one_or_none()
                if row is None:
                    row = SpaceAlertRow(user_id=user_id, enabled=True)
                    session.add(row)
                row.alert_types = list(settings.alert_types)
                row.min_severity = settings.min_severity
                row.enabled = settings.enabled
                row.updated_at = utcnow()
                await session.commit()
                return _space_from_row(row)

    async def get_space(self, user_id: str) -> SpaceAlertRule:
        with _storage_errors("load space weather alerts"):
            async with self.db.session() as session:
                result = await session.execute(
                    select(SpaceAlertRow).where(SpaceAlertRow.user_id == user_id)
                )
                row = result.scalar_one_or_none()
        if row is None:
            raise NotFound(f"No space weather alerts for user {user_id}")
        return _space_from_row(row)

    async def list_enabled_space(self) -> list[SpaceAlertRule]:
        with _storage_errors("list enabled space weather alerts"):
            async with self.db.session() as session:
                result = await session.execute(
                    select(SpaceAlertRow)
                    .where(SpaceAlertRow.enabled.is_(True))
                    .order_by(SpaceAlertRow.id)
                )
                rows = result.scalars().all()
        return [_space_from_row(r) for r in rows]


# ─── Notification history ────────────────────────────────────────────────────


def _record_from_row(row: NotificationHistoryRow) -> NotificationRecord:
    return NotificationRecord(
        id=row.id,
        user_id=row.user_id,
        notification_type=NotificationType(row.notification_type),
        title=row.title,
        message=row.message,
        data=dict(row.data or {}),
        rule_key=row.rule_key,
        email_sent=row.email_sent,
        sent_at=row.sent_at,
        read_at=row.read_at,
    )


class HistorySubscription:
    """A live feed of newly appended notification records.

    Use as an async context manager and iterate; iteration ends once the
    subscription is closed:

        async with history.subscribe(user_id) as feed:
            async for record in feed:
                ...
    """

    def __init__(self, store: "HistoryStore", user_id: Optional[str] = None, maxsize: int = 100):
        self._store = store
        self.user_id = user_id
        self.closed = False
        self._queue: asyncio.Queue[Optional[NotificationRecord]] = asyncio.Queue(maxsize=maxsize)

    def _offer(self, record: NotificationRecord) -> None:
        if self.closed or (self.user_id is not None and record.user_id != self.user_id):
            return
        try:
            self._queue.put_nowait(record)
        except asyncio.QueueFull:
            logger.warning("History subscriber for %s is full, dropping record %s", self.user_id or "*", record.id)

    async def get(self) -> Optional[NotificationRecord]:
        """Next record, or None once the subscription is closed and drained."""
        if self.closed and self._queue.empty():
            return None
        return await self._queue.get()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._store._unsubscribe(self)
        # end-of-stream marker; make room by dropping the oldest pending record
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    async def __aenter__(self) -> "HistorySubscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()

    def __aiter__(self) -> AsyncIterator[NotificationRecord]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[NotificationRecord]:
        while True:
            record = await self.get()
            if record is None:
                return
            yield record


class HistoryStore:
    """Append-only notification log with read-state tracking."""

    def __init__(self, db: Database):
        self.db = db
        self._subscribers: list[HistorySubscription] = []

    def subscribe(self, user_id: Optional[str] = None) -> HistorySubscription:
        """Register for records appended after this call."""
        subscription = HistorySubscription(self, user_id=user_id)
        self._subscribers.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: HistorySubscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    async def append(self, record: NotificationRecord) -> NotificationRecord:
        """Insert one record and notify subscribers."""
        with _storage_errors("write notification history"):
            async with self.db.session() as session:
                row = NotificationHistoryRow(
                    user_id=record.user_id,
                    notification_type=record.notification_type.value,
                    title=record.title,
                    message=record.message,
                    data=record.data,
                    rule_key=record.rule_key,
                    email_sent=record.email_sent,
                    sent_at=record.sent_at,
                    read_at=None,
                )
                session.add(row)
                await session.commit()
                saved = _record_from_row(row)

        for subscriber in list(self._subscribers):
            subscriber._offer(saved)
        return saved

    async def list_for_user(self, user_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> list[NotificationRecord]:
        """Newest first."""
        with _storage_errors("load notification history"):
            async with self.db.session() as session:
                result = await session.execute(
                    select(NotificationHistoryRow)
                    .where(NotificationHistoryRow.user_id == user_id)
                    .order_by(NotificationHistoryRow.sent_at.desc(), NotificationHistoryRow.id.desc())
                    .limit(max(1, limit))
                )
                rows = result.scalars().all()
        return [_record_from_row(r) for r in rows]

    async def mark_read(self, record_id: int, user_id: str) -> NotificationRecord:
        """Set read_at on first read. Later calls keep the first timestamp."""
        with _storage_errors("mark notification read"):
            async with self.db.session() as session:
                result = await session.execute(
                    select(NotificationHistoryRow).where(
                        NotificationHistoryRow.id == record_id,
                        NotificationHistoryRow.user_id == user_id,
                    )
                )
                row = result.scalar_one_or_none()
                if row is None:
                    raise NotFound(f"Notification {record_id} not found")
                if row.read_at is None:
                    row.read_at = utcnow()
                    await session.commit()
                return _record_from_row(row)

    async def mark_all_read(self, user_id: str) -> int:
        """Mark every unread record for a user. Returns how many changed."""
        with _storage_errors("mark notifications read"):
            async with self.db.session() as session:
                result = await session.execute(
                    update(NotificationHistoryRow)
                    .where(
                        NotificationHistoryRow.user_id == user_id,
                        NotificationHistoryRow.read_at.is_(None),
                    )
                    .values(read_at=utcnow())
                )
                await session.commit()
                return result.rowcount or 0

    async def unread_count(self, user_id: str) -> int:
        with _storage_errors("count unread notifications"):
            async with self.db.session() as session:
                result = await session.execute(
                    select(func.count(NotificationHistoryRow.id)).where(
                        NotificationHistoryRow.user_id == user_id,
                        NotificationHistoryRow.read_at.is_(None),
                    )
                )
                return int(result.scalar_one())

    async def last_fired(self, user_id: str, rule_key: str) -> Optional[datetime]:
        """When a rule last produced a notification for this user, if ever."""
        with _storage_errors("load last notification time"):
            async with self.db.session() as session:
                result = await session.execute(
                    select(func.max(NotificationHistoryRow.sent_at)).where(
                        NotificationHistoryRow.user_id == user_id,
                        NotificationHistoryRow.rule_key == rule_key,
                    )
                )
                return result.scalar_one_or_none()

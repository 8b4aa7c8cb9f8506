"""SQLAlchemy models for preference, alert rule, and notification history storage.

Provider data is never stored. Weather and space weather are always fetched
live. The database holds only what users configure and what was sent to them.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .core.models import utcnow


class Base(DeclarativeBase):
    pass


class UserPreferencesRow(Base):
    """One row per user, created lazily on first login."""

    __tablename__ = "user_preferences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    saved_cities: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    notifications_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    email_notifications: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    default_city: Mapped[str] = mapped_column(String(200), nullable=False, default="London")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class WeatherAlertRow(Base):
    """A user-defined weather threshold for one city."""

    __tablename__ = "weather_alert_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    city: Mapped[str] = mapped_column(String(200), nullable=False)
    alert_type: Mapped[str] = mapped_column(String(20), nullable=False)
    condition: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    threshold: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_weather_alert_user", "user_id"),
        Index("ix_weather_alert_city_enabled", "city", "enabled"),
    )


class SpaceAlertRow(Base):
    """A user's space weather alert settings."""

    __tablename__ = "space_weather_alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    alert_types: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    min_severity: Mapped[str] = mapped_column(String(1), nullable=False, default="M")
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class NotificationHistoryRow(Base):
    """An append-only record of a dispatched notification."""

    __tablename__ = "notification_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    notification_type: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    rule_key: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    email_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sent_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_history_user_sent", "user_id", "sent_at"),
        Index("ix_history_rule_sent", "user_id", "rule_key", "sent_at"),
    )

"""Pydantic data models shared by the clients, stores and alert pipeline.

The stores, the alert pipeline, and the MCP tools all exchange these models.
Read models are lenient so that a stored rule with an unknown kind still
loads (and evaluates to false); the *Input models are strict and are the
only way new rules enter the system.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every stored datetime uses."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AlertKind(str, Enum):
    """Weather alert kinds."""

    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"
    WIND = "wind"
    RAIN = "rain"
    STORM = "storm"


class Comparison(str, Enum):
    """How a measured value is compared against the rule threshold."""

    ABOVE = "above"
    BELOW = "below"
    EQUALS = "equals"


class NotificationType(str, Enum):
    WEATHER = "weather"
    SPACE_WEATHER = "space_weather"


# NASA DONKI event type codes
SPACE_EVENT_TYPES = ("FLR", "CME", "GST", "IPS", "MPC", "RBE", "SEP", "HSS", "WSA")
SEVERITY_LETTERS = ("C", "M", "X")
SPACE_SCOPE = "space"

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


# ─── Alert rules ─────────────────────────────────────────────────────────────


class WeatherAlertRule(BaseModel):
    """A stored weather alert rule for one city."""

    id: int
    user_id: str
    city: str
    alert_type: str
    condition: Optional[str] = None
    threshold: Optional[float] = None
    enabled: bool = True
    created_at: Optional[datetime] = None

    @property
    def scope(self) -> str:
        return self.city

    @property
    def rule_key(self) -> str:
        return f"weather:{self.id}"


class WeatherAlertInput(BaseModel):
    """Validated fields for creating or replacing a weather alert rule."""

    city: str
    alert_type: AlertKind
    condition: Comparison = Comparison.ABOVE
    threshold: Optional[float] = None
    enabled: bool = True

    @field_validator("city")
    @classmethod
    def _strip_city(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("city must not be empty")
        return v

    @model_validator(mode="after")
    def _threshold_required(self) -> "WeatherAlertInput":
        if self.alert_type != AlertKind.STORM and self.threshold is None:
            raise ValueError(f"threshold is required for {self.alert_type.value} alerts")
        return self


class SpaceAlertRule(BaseModel):
    """A user's space weather alert settings (one per user)."""

    id: int
    user_id: str
    alert_types: list[str] = Field(default_factory=list)
    min_severity: str = "M"
    enabled: bool = True

    @property
    def scope(self) -> str:
        return SPACE_SCOPE

    @property
    def rule_key(self) -> str:
        return f"space:{self.id}"


class SpaceAlertInput(BaseModel):
    """Validated space weather alert settings."""

    alert_types: list[str] = Field(default_factory=lambda: ["FLR", "CME", "GST"])
    min_severity: str = "M"
    enabled: bool = True

    @field_validator("alert_types")
    @classmethod
    def _known_types(cls, v: list[str]) -> list[str]:
        types = []
        for t in v:
            code = t.strip().upper()
            if code not in SPACE_EVENT_TYPES:
                raise ValueError(f"Invalid event type {t!r}. Must be one of: {', '.join(SPACE_EVENT_TYPES)}")
            if code not in types:
                types.append(code)
        return types

    @field_validator("min_severity")
    @classmethod
    def _known_severity(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in SEVERITY_LETTERS:
            raise ValueError(f"min_severity must be one of: {', '.join(SEVERITY_LETTERS)}")
        return v


# ─── Provider snapshots ──────────────────────────────────────────────────────


class WeatherSnapshot(BaseModel):
    """Normalized current conditions for one city at fetch time."""

    city: str
    temp: Optional[float] = None
    feels_like: Optional[float] = None
    humidity: Optional[float] = None
    wind_speed: Optional[float] = None
    rain_1h: Optional[float] = None
    conditions: list[str] = Field(default_factory=list)
    description: str = ""
    fetched_at: datetime = Field(default_factory=utcnow)

    def metric(self, alert_type: str) -> Optional[float]:
        """Return the measured value an alert kind compares against."""
        if alert_type == AlertKind.TEMPERATURE.value:
            return self.temp
        if alert_type == AlertKind.HUMIDITY.value:
            return self.humidity
        if alert_type == AlertKind.WIND.value:
            return self.wind_speed
        if alert_type == AlertKind.RAIN.value:
            return self.rain_1h if self.rain_1h is not None else 0.0
        return None


class SpaceEvent(BaseModel):
    """One DONKI notification message."""

    message_type: str
    message_id: str = ""
    issued_at: Optional[datetime] = None
    body: str = ""


class SpaceSnapshot(BaseModel):
    """Space weather events fetched in one call, in feed order."""

    events: list[SpaceEvent] = Field(default_factory=list)
    fetched_at: datetime = Field(default_factory=utcnow)

    def recent(self, hours: int = 24, now: Optional[datetime] = None) -> "SpaceSnapshot":
        """Restrict to events issued within the last `hours`."""
        cutoff = (now or utcnow()) - timedelta(hours=hours)
        events = [e for e in self.events if e.issued_at is not None and e.issued_at > cutoff]
        return SpaceSnapshot(events=events, fetched_at=self.fetched_at)

    @property
    def event_types(self) -> list[str]:
        seen: list[str] = []
        for e in self.events:
            if e.message_type not in seen:
                seen.append(e.message_type)
        return seen


# ─── Users and notifications ─────────────────────────────────────────────────


class UserPreferences(BaseModel):
    """Per-user settings. Created lazily on first login."""

    user_id: str
    saved_cities: list[str] = Field(default_factory=list)
    notifications_enabled: bool = True
    email_notifications: bool = True
    default_city: str = "London"
    updated_at: Optional[datetime] = None


class Identity(BaseModel):
    """A user resolved by the identity provider."""

    user_id: str
    email: str = ""


class Recipient(BaseModel):
    """The resolved owner of an alert rule."""

    user_id: str
    email: str = ""
    email_notifications: bool = True


class NotificationRecord(BaseModel):
    """One fired notification. Append-only; read_at is set once."""

    id: Optional[int] = None
    user_id: str
    notification_type: NotificationType
    title: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    rule_key: Optional[str] = None
    email_sent: bool = False
    sent_at: datetime = Field(default_factory=utcnow)
    read_at: Optional[datetime] = None

    @property
    def is_read(self) -> bool:
        return self.read_at is not None


# ─── Pipeline results ────────────────────────────────────────────────────────


class DispatchResult(BaseModel):
    """Outcome of dispatching one triggered rule."""

    rule_key: Optional[str] = None
    user_id: str
    email_sent: bool = False
    email_id: Optional[str] = None
    history_written: bool = False
    record_id: Optional[int] = None
    error: Optional[str] = None


class ScanResult(BaseModel):
    """Counts for one scan pass over a set of rules."""

    rules_checked: int = 0
    rules_triggered: int = 0
    notifications_sent: int = 0
    failures: int = 0
    skipped: int = 0
    suppressed: int = 0
    users_checked: int = 0
    events_found: Optional[int] = None
    triggered: list[str] = Field(default_factory=list)


class CheckRunResult(BaseModel):
    """Outcome of one scheduled check across both domains."""

    status: str = "success"
    timestamp: datetime = Field(default_factory=utcnow)
    weather: Optional[ScanResult] = None
    space_weather: Optional[ScanResult] = None
    errors: list[str] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == "success"


def is_iso_date(value: str) -> bool:
    """True if value looks like YYYY-MM-DD."""
    return bool(_DATE_RE.match(value or ""))

import asyncio
from datetime import datetime

import pytest
from pydantic import ValidationError as PydanticValidationError

from weather_alerts.core.models import (
    NotificationRecord,
    NotificationType,
    SpaceAlertInput,
    WeatherAlertInput,
)
from weather_alerts.errors import NotFound, StorageError


def record(user_id="u1", sent_at=None, rule_key="weather:1", title="Weather Alert"):
    return NotificationRecord(
        user_id=user_id,
        notification_type=NotificationType.WEATHER,
        title=title,
        message="temperature is below 10 in London. Current: 5°C",
        data={"city": "London"},
        rule_key=rule_key,
        email_sent=True,
        sent_at=sent_at or datetime(2026, 10, 18, 6, 0),
    )


# ─── Preferences ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_preferences_created_lazily(preferences):
    with pytest.raises(NotFound):
        await preferences.get("u1")

    prefs = await preferences.get_or_create("u1")
    assert prefs.notifications_enabled and prefs.email_notifications
    assert prefs.saved_cities == [] and prefs.default_city == "London"

    again = await preferences.get_or_create("u1")
    assert again.user_id == "u1"


@pytest.mark.asyncio
async def test_upsert_changes_only_given_fields(preferences):
    await preferences.upsert("u1", email_notifications=False)
    prefs = await preferences.upsert("u1", default_city="Paris", notifications_enabled=None)
    assert prefs.default_city == "Paris"
    assert prefs.email_notifications is False
    assert prefs.notifications_enabled is True

    with pytest.raises(StorageError):
        await preferences.upsert("u1", favourite_colour="blue")


@pytest.mark.asyncio
async def test_update_cities_keeps_order_and_drops_duplicates(preferences):
    prefs = await preferences.update_cities("u1", ["Tokyo", " London", "Tokyo", ""])
    assert prefs.saved_cities == ["Tokyo", "London"]


@pytest.mark.asyncio
async def test_list_notifiable_excludes_disabled(preferences):
    await preferences.upsert("u1")
    await preferences.upsert("u2", notifications_enabled=False)
    assert [p.user_id for p in await preferences.list_notifiable()] == ["u1"]


# ─── Alert rules ─────────────────────────────────────────────────────────────


def test_threshold_required_except_storm():
    with pytest.raises(PydanticValidationError):
        WeatherAlertInput(city="London", alert_type="temperature", condition="above")
    with pytest.raises(PydanticValidationError):
        WeatherAlertInput(city="London", alert_type="fog", threshold=1)
    storm = WeatherAlertInput(city="London", alert_type="storm")
    assert storm.threshold is None


def test_space_input_normalizes_types():
    settings = SpaceAlertInput(alert_types=["flr", "CME", "FLR"], min_severity="x")
    assert settings.alert_types == ["FLR", "CME"]
    assert settings.min_severity == "X"
    with pytest.raises(PydanticValidationError):
        SpaceAlertInput(alert_types=["SUN"])


@pytest.mark.asyncio
async def test_rule_mutations_scoped_to_owner(rules):
    rule = await rules.create_weather(
        "u1", WeatherAlertInput(city="London", alert_type="temperature", condition="below", threshold=10)
    )

    with pytest.raises(NotFound):
        await rules.toggle_weather("u2", rule.id, False)
    with pytest.raises(NotFound):
        await rules.delete_weather("u2", rule.id)

    toggled = await rules.toggle_weather("u1", rule.id, False)
    assert toggled.enabled is False

    updated = await rules.update_weather(
        "u1", rule.id, WeatherAlertInput(city="Paris", alert_type="wind", condition="above", threshold=12)
    )
    assert (updated.city, updated.alert_type, updated.threshold, updated.enabled) == ("Paris", "wind", 12, True)

    await rules.delete_weather("u1", rule.id)
    assert await rules.list_weather_for_user("u1") == []


@pytest.mark.asyncio
async def test_list_enabled_weather_filters(rules):
    a = await rules.create_weather("u1", WeatherAlertInput(city="London", alert_type="storm"))
    b = await rules.create_weather("u2", WeatherAlertInput(city="london", alert_type="rain", threshold=1))
    c = await rules.create_weather("u1", WeatherAlertInput(city="Paris", alert_type="storm"))
    await rules.create_weather("u1", WeatherAlertInput(city="London", alert_type="storm", enabled=False))

    assert [r.id for r in await rules.list_enabled_weather(city="LONDON")] == [a.id, b.id]
    assert [r.id for r in await rules.list_enabled_weather(user_id="u1")] == [a.id, c.id]


@pytest.mark.asyncio
async def test_space_rule_is_one_per_user(rules):
    first = await rules.upsert_space("u1", SpaceAlertInput(alert_types=["FLR"], min_severity="M"))
    second = await rules.upsert_space("u1", SpaceAlertInput(alert_types=["CME"], min_severity="C", enabled=False))
    assert first.id == second.id
    assert (await rules.get_space("u1")).alert_types == ["CME"]
    assert await rules.list_enabled_space() == []
    with pytest.raises(NotFound):
        await rules.get_space("u2")


# ─── History ─────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_history_newest_first_with_limit(history):
    await history.append(record(sent_at=datetime(2026, 10, 18, 6, 0), title="first"))
    await history.append(record(sent_at=datetime(2026, 10, 18, 18, 0), title="third"))
    await history.append(record(sent_at=datetime(2026, 10, 18, 12, 0), title="second"))
    await history.append(record(user_id="u2", title="other user"))

    titles = [r.title for r in await history.list_for_user("u1")]
    assert titles == ["third", "second", "first"]
    assert [r.title for r in await history.list_for_user("u1", limit=1)] == ["third"]


@pytest.mark.asyncio
async def test_mark_read_keeps_first_timestamp(history):
    saved = await history.append(record())
    assert saved.read_at is None

    first = await history.mark_read(saved.id, "u1")
    assert first.read_at is not None
    second = await history.mark_read(saved.id, "u1")
    assert second.read_at == first.read_at


@pytest.mark.asyncio
async def test_mark_read_rejects_other_users(history):
    saved = await history.append(record(user_id="u1"))
    with pytest.raises(NotFound):
        await history.mark_read(saved.id, "u2")
    with pytest.raises(NotFound):
        await history.mark_read(9999, "u1")


@pytest.mark.asyncio
async def test_mark_all_read_and_unread_count(history):
    await history.append(record())
    await history.append(record())
    await history.append(record(user_id="u2"))
    assert await history.unread_count("u1") == 2

    assert await history.mark_all_read("u1") == 2
    assert await history.unread_count("u1") == 0
    assert await history.unread_count("u2") == 1


@pytest.mark.asyncio
async def test_last_fired(history):
    assert await history.last_fired("u1", "weather:1") is None
    await history.append(record(sent_at=datetime(2026, 10, 18, 6, 0)))
    await history.append(record(sent_at=datetime(2026, 10, 18, 9, 30)))
    await history.append(record(sent_at=datetime(2026, 10, 18, 11, 0), rule_key="weather:2"))
    assert await history.last_fired("u1", "weather:1") == datetime(2026, 10, 18, 9, 30)


@pytest.mark.asyncio
async def test_subscription_receives_appends_for_its_user(history):
    async with history.subscribe("u1") as feed:
        await history.append(record(user_id="u2", title="not mine"))
        saved = await history.append(record(user_id="u1", title="mine"))
        received = await asyncio.wait_for(feed.get(), timeout=1)
        assert received.id == saved.id and received.title == "mine"

    await history.append(record(user_id="u1", title="after close"))
    assert history._subscribers == []


@pytest.mark.asyncio
async def test_iteration_ends_when_subscription_closes(history):
    feed = history.subscribe("u1")
    await history.append(record(title="before close"))

    async def drain():
        return [r.title async for r in feed]

    consumer = asyncio.ensure_future(drain())
    await asyncio.sleep(0)
    feed.close()
    assert await asyncio.wait_for(consumer, timeout=1) == ["before close"]
    assert await feed.get() is None

from datetime import timedelta

import pytest

from weather_alerts.core.models import (
    SpaceAlertInput,
    SpaceEvent,
    SpaceSnapshot,
    WeatherAlertInput,
    utcnow,
)
from weather_alerts.errors import ProviderError, StorageError, Unauthorized, ValidationError
from weather_alerts.orchestrator import CheckOrchestrator

from helpers import london

SECRET = "s3cret"


async def cold(city):
    return london(city=city, temp=2)


def space_feed(*ages):
    """FLR events issued `ages` hours ago."""
    now = utcnow()
    return SpaceSnapshot(events=[
        SpaceEvent(message_type="FLR", body=f"Flare class X1 ({h}h ago)", issued_at=now - timedelta(hours=h))
        for h in ages
    ])


def orchestrator(scanner, fetch_weather=cold, fetch_space=None, secret=SECRET):
    if fetch_space is None:
        async def fetch_space():
            return space_feed(2)
    return CheckOrchestrator(scanner, fetch_weather, fetch_space, cron_secret=secret)


@pytest.fixture()
async def subscribed(rules, preferences):
    await preferences.upsert("u1")
    await rules.create_weather(
        "u1", WeatherAlertInput(city="London", alert_type="temperature", condition="below", threshold=10)
    )
    await rules.upsert_space("u1", SpaceAlertInput(alert_types=["FLR"], min_severity="M"))


# ─── Authentication ──────────────────────────────────────────────────────────


@pytest.mark.parametrize("header", [None, "", "Bearer wrong", SECRET, f"Basic {SECRET}"])
@pytest.mark.asyncio
async def test_rejects_bad_credentials(scanner, history, header):
    with pytest.raises(Unauthorized):
        await orchestrator(scanner).run_check(header)
    assert await history.list_for_user("u1") == []


@pytest.mark.asyncio
async def test_unset_secret_rejects_everyone(scanner):
    with pytest.raises(Unauthorized):
        await orchestrator(scanner, secret="").run_check("Bearer ")


# ─── Passes ──────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_full_check_runs_both_phases(scanner, history, subscribed):
    run = await orchestrator(scanner).run_check(f"Bearer {SECRET}")

    assert run.status == "success" and run.errors == []
    assert run.weather.rules_triggered == 1
    assert run.space_weather.rules_triggered == 1
    assert run.space_weather.events_found == 1
    kinds = sorted(r.notification_type.value for r in await history.list_for_user("u1"))
    assert kinds == ["space_weather", "weather"]


@pytest.mark.asyncio
async def test_weather_phase_failure_still_runs_space_phase(scanner, preferences, subscribed):
    async def broken_listing():
        raise StorageError("database is locked")

    preferences.list_notifiable = broken_listing
    run = await orchestrator(scanner).run_pass()

    assert run.status == "failure"
    assert run.weather is None
    assert run.errors == ["weather: database is locked"]
    assert run.space_weather.rules_triggered == 1


@pytest.mark.asyncio
async def test_space_provider_failure_is_reported(scanner, subscribed):
    async def down():
        raise ProviderError("Space weather provider returned 503", provider="donki", status_code=503)

    run = await orchestrator(scanner, fetch_space=down).run_pass()

    assert run.status == "failure"
    assert run.weather.rules_triggered == 1
    assert run.space_weather is None
    assert run.errors[0].startswith("space_weather:")


@pytest.mark.asyncio
async def test_space_phase_only_considers_recent_events(scanner, history, subscribed):
    async def stale():
        return space_feed(30, 50)

    run = await orchestrator(scanner, fetch_space=stale).run_pass()

    assert run.space_weather.events_found == 0
    assert run.space_weather.rules_triggered == 0
    assert [r.notification_type.value for r in await history.list_for_user("u1")] == ["weather"]


@pytest.mark.asyncio
async def test_unconfigured_weather_provider_is_a_phase_error(scanner, subscribed):
    run = await orchestrator(scanner, fetch_weather=None).run_pass()
    assert run.status == "failure"
    assert run.space_weather is not None


# ─── Single city ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_scan_city(scanner, history, subscribed):
    result = await orchestrator(scanner).scan_city("London")
    assert result.rules_triggered == 1
    assert len(await history.list_for_user("u1")) == 1


@pytest.mark.asyncio
async def test_scan_city_without_provider(scanner):
    with pytest.raises(ValidationError):
        await CheckOrchestrator(scanner, None, None).scan_city("London")

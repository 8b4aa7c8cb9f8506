"""Weather Alerts MCP Server.

FastMCP server exposing weather and space weather proxies, per-user alert
management, notification history, and the scheduled alert check.
Run: weather-alerts-mcp
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from mcp.server.fastmcp import Context, FastMCP
from mcp.types import ToolAnnotations
from pydantic import ValidationError as PydanticValidationError

from .config import Settings
from .core.clients import donki, openweather
from .core.models import Identity, Recipient, SpaceAlertInput, WeatherAlertInput
from .errors import NotFound, ValidationError
from .services import Services
from .stores import DEFAULT_HISTORY_LIMIT

logger = logging.getLogger(__name__)

READ_ONLY = ToolAnnotations(readOnlyHint=True, destructiveHint=False, idempotentHint=True, openWorldHint=True)
WRITE = ToolAnnotations(readOnlyHint=False, destructiveHint=False, idempotentHint=False, openWorldHint=True)
DESTRUCTIVE = ToolAnnotations(readOnlyHint=False, destructiveHint=True, idempotentHint=True, openWorldHint=False)


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[Services]:
    """Build every component once, start the optional scheduler, tear down on exit."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    services = Services(Settings.from_env())
    await services.start()
    try:
        yield services
    finally:
        await services.close()


mcp = FastMCP(
    "Weather Alerts",
    instructions="Current weather, NASA space weather, and personal weather alerts with email notifications.",
    lifespan=lifespan,
)


def _services(ctx: Context) -> Services:
    return ctx.request_context.lifespan_context


async def _user(ctx: Context, access_token: str) -> Identity:
    return await _services(ctx).identity.resolve_token(access_token)


def _weather_input(**fields) -> WeatherAlertInput:
    try:
        return WeatherAlertInput(**fields)
    except PydanticValidationError as exc:
        raise ValidationError(_first_error(exc)) from None


def _space_input(**fields) -> SpaceAlertInput:
    try:
        return SpaceAlertInput(**fields)
    except PydanticValidationError as exc:
        raise ValidationError(_first_error(exc)) from None


def _first_error(exc: PydanticValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    err = errors[0]
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return f"{loc}: {err.get('msg')}" if loc else str(err.get("msg"))


# ─── Provider proxies ────────────────────────────────────────────────────────


@mcp.tool(annotations=READ_ONLY)
async def weather_current(
    ctx: Context,
    city: str = "",
    lat: Optional[float] = None,
    lon: Optional[float] = None,
) -> dict:
    """Current weather for a city name (e.g. "London" or "London,UK") or for coordinates.

    Args:
        city: City name. Leave empty to use lat/lon.
        lat: Latitude, used with lon when no city is given.
        lon: Longitude, used with lat when no city is given.
    """
    services = _services(ctx)
    return await openweather.fetch_raw(
        services.settings.openweather_api_key,
        city=city or None,
        lat=lat,
        lon=lon,
        client=services.http,
    )


@mcp.tool(annotations=READ_ONLY)
async def space_weather_events(ctx: Context, event_type: str, start_date: str, end_date: str) -> dict:
    """NASA DONKI space weather events of one type for a date range.

    Args:
        event_type: One of FLR, CME, GST, IPS, MPC, RBE, SEP, HSS, WSA.
        start_date: Start date, YYYY-MM-DD.
        end_date: End date, YYYY-MM-DD.
    """
    services = _services(ctx)
    events = await donki.fetch_events(
        services.settings.nasa_api_key, event_type, start_date, end_date, client=services.http
    )
    return {
        "event_type": event_type.upper(),
        "start_date": start_date,
        "end_date": end_date,
        "events": events,
        "count": len(events),
    }


# ─── Scheduled check ─────────────────────────────────────────────────────────


@mcp.tool(annotations=WRITE)
async def check_alerts(ctx: Context, authorization: str) -> dict:
    """Run one automated alert check for all users. Called by the scheduler.

    Args:
        authorization: "Bearer <CRON_SECRET>".
    """
    run = await _services(ctx).orchestrator.run_check(authorization)
    return run.model_dump(mode="json")


@mcp.tool(annotations=WRITE)
async def scan_city_alerts(ctx: Context, authorization: str, city: str) -> dict:
    """Fetch current weather for one city and check every enabled alert watching it.

    Args:
        authorization: "Bearer <CRON_SECRET>".
        city: City name as stored on the alerts.
    """
    orchestrator = _services(ctx).orchestrator
    orchestrator.authenticate(authorization)
    result = await orchestrator.scan_city(city)
    return {"city": city, **result.model_dump(mode="json")}


# ─── Profile & preferences ───────────────────────────────────────────────────


@mcp.tool(annotations=READ_ONLY)
async def get_profile(ctx: Context, access_token: str) -> dict:
    """The signed-in user's preferences, weather alerts, and space weather alerts.

    Preferences are created with defaults on first call.
    """
    services = _services(ctx)
    user = await _user(ctx, access_token)
    preferences = await services.preferences.get_or_create(user.user_id)
    weather_alerts = await services.rules.list_weather_for_user(user.user_id)
    try:
        space_alerts = (await services.rules.get_space(user.user_id)).model_dump(mode="json")
    except NotFound:
        space_alerts = {}
    return {
        "user": user.model_dump(),
        "preferences": preferences.model_dump(mode="json"),
        "weather_alerts": [a.model_dump(mode="json") for a in weather_alerts],
        "space_alerts": space_alerts,
    }


@mcp.tool(annotations=WRITE)
async def update_saved_cities(ctx: Context, access_token: str, cities: list[str]) -> dict:
    """Replace the signed-in user's saved cities (order is kept, duplicates dropped)."""
    user = await _user(ctx, access_token)
    prefs = await _services(ctx).preferences.update_cities(user.user_id, cities)
    return {"data": prefs.model_dump(mode="json")}


@mcp.tool(annotations=WRITE)
async def update_notification_settings(
    ctx: Context,
    access_token: str,
    notifications_enabled: Optional[bool] = None,
    email_notifications: Optional[bool] = None,
    default_city: Optional[str] = None,
) -> dict:
    """Update notification switches and default city. Omitted fields are unchanged.

    Turning notifications_enabled off silences every alert for this user.
    """
    user = await _user(ctx, access_token)
    prefs = await _services(ctx).preferences.upsert(
        user.user_id,
        notifications_enabled=notifications_enabled,
        email_notifications=email_notifications,
        default_city=default_city.strip() if default_city else None,
    )
    return {"data": prefs.model_dump(mode="json")}


# ─── Weather alerts ──────────────────────────────────────────────────────────


@mcp.tool(annotations=WRITE)
async def create_weather_alert(
    ctx: Context,
    access_token: str,
    city: str,
    alert_type: str,
    condition: str = "above",
    threshold: Optional[float] = None,
    enabled: bool = True,
) -> dict:
    """Create a weather alert.

    Args:
        city: City to watch.
        alert_type: temperature, humidity, wind, rain, or storm.
        condition: above, below, or equals (equals matches within 1 unit). Ignored for storm.
        threshold: Required except for storm alerts.
    """
    user = await _user(ctx, access_token)
    rule = _weather_input(city=city, alert_type=alert_type, condition=condition, threshold=threshold, enabled=enabled)
    created = await _services(ctx).rules.create_weather(user.user_id, rule)
    return {"data": created.model_dump(mode="json")}


@mcp.tool(annotations=WRITE)
async def update_weather_alert(
    ctx: Context,
    access_token: str,
    alert_id: int,
    city: str,
    alert_type: str,
    condition: str = "above",
    threshold: Optional[float] = None,
    enabled: bool = True,
) -> dict:
    """Replace the fields of one of the signed-in user's weather alerts."""
    user = await _user(ctx, access_token)
    rule = _weather_input(city=city, alert_type=alert_type, condition=condition, threshold=threshold, enabled=enabled)
    updated = await _services(ctx).rules.update_weather(user.user_id, alert_id, rule)
    return {"data": updated.model_dump(mode="json")}


@mcp.tool(annotations=DESTRUCTIVE)
async def delete_weather_alert(ctx: Context, access_token: str, alert_id: int) -> dict:
    """Delete one of the signed-in user's weather alerts."""
    user = await _user(ctx, access_token)
    await _services(ctx).rules.delete_weather(user.user_id, alert_id)
    return {"message": "Alert deleted", "alert_id": alert_id}


@mcp.tool(annotations=WRITE)
async def toggle_weather_alert(ctx: Context, access_token: str, alert_id: int, enabled: bool) -> dict:
    """Enable or disable one of the signed-in user's weather alerts."""
    user = await _user(ctx, access_token)
    rule = await _services(ctx).rules.toggle_weather(user.user_id, alert_id, enabled)
    return {"data": rule.model_dump(mode="json")}


@mcp.tool(annotations=WRITE)
async def update_space_weather_alerts(
    ctx: Context,
    access_token: str,
    alert_types: list[str],
    min_severity: str = "M",
    enabled: bool = True,
) -> dict:
    """Set the signed-in user's space weather alerts.

    Args:
        alert_types: DONKI event types to watch (FLR, CME, GST, IPS, MPC, RBE, SEP, HSS, WSA).
        min_severity: Minimum solar flare class for FLR events: C, M, or X.
    """
    user = await _user(ctx, access_token)
    settings = _space_input(alert_types=alert_types, min_severity=min_severity, enabled=enabled)
    rule = await _services(ctx).rules.upsert_space(user.user_id, settings)
    return {"data": rule.model_dump(mode="json")}


# ─── Notification history ────────────────────────────────────────────────────


@mcp.tool(annotations=READ_ONLY)
async def notification_history(ctx: Context, access_token: str, limit: int = DEFAULT_HISTORY_LIMIT) -> dict:
    """The signed-in user's notifications, newest first, with the unread count."""
    history = _services(ctx).history
    user = await _user(ctx, access_token)
    records = await history.list_for_user(user.user_id, limit=limit)
    return {
        "notifications": [r.model_dump(mode="json") for r in records],
        "unread_count": await history.unread_count(user.user_id),
    }


@mcp.tool(annotations=WRITE)
async def mark_notification_read(ctx: Context, access_token: str, notification_id: int) -> dict:
    """Mark one notification read. Already-read notifications keep their first read time."""
    user = await _user(ctx, access_token)
    record = await _services(ctx).history.mark_read(notification_id, user.user_id)
    return {"data": record.model_dump(mode="json")}


@mcp.tool(annotations=WRITE)
async def mark_all_notifications_read(ctx: Context, access_token: str) -> dict:
    """Mark every unread notification read."""
    user = await _user(ctx, access_token)
    count = await _services(ctx).history.mark_all_read(user.user_id)
    return {"marked_read": count}


@mcp.tool(annotations=WRITE)
async def send_test_notification(ctx: Context, access_token: str) -> dict:
    """Send a test notification to the signed-in user (email if enabled, plus history)."""
    services = _services(ctx)
    user = await _user(ctx, access_token)
    prefs = await services.preferences.get_or_create(user.user_id)
    recipient = Recipient(user_id=user.user_id, email=user.email, email_notifications=prefs.email_notifications)
    result = await services.dispatcher.send_test(recipient)
    return result.model_dump(mode="json")


def main():
    """Entry point for the CLI command."""
    mcp.run()


if __name__ == "__main__":
    main()

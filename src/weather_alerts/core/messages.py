"""Notification content: titles, plain text, HTML email bodies and history payloads."""

from __future__ import annotations

from html import escape
from typing import Any, Optional

from pydantic import BaseModel, Field

from .evaluation import matching_events, parse_flare_severity
from .models import AlertKind, SpaceAlertRule, SpaceSnapshot, WeatherAlertRule, WeatherSnapshot

MAX_EMAIL_EVENTS = 5
BODY_PREVIEW_CHARS = 200

UNITS = {
    AlertKind.TEMPERATURE.value: "°C",
    AlertKind.HUMIDITY.value: "%",
    AlertKind.WIND.value: " m/s",
    AlertKind.RAIN.value: " mm",
}


class Message(BaseModel):
    """Composed notification content."""

    title: str
    message: str
    html: str
    data: dict[str, Any] = Field(default_factory=dict)


def _fmt(value: Optional[float], unit: str = "") -> str:
    if value is None:
        return "n/a"
    return f"{value:g}{unit}"


# ─── Weather ─────────────────────────────────────────────────────────────────


def compose_weather(rule: WeatherAlertRule, snapshot: WeatherSnapshot, dashboard_url: str = "") -> Message:
    """Build the notification for a triggered weather rule."""
    city = rule.city
    if rule.alert_type == AlertKind.STORM.value:
        labels = ", ".join(snapshot.conditions) or "storm"
        title = f"Storm Warning: {city}"
        message = f"Storm conditions in {city}: {labels}. Wind speed: {_fmt(snapshot.wind_speed, ' m/s')}"
        reason = "storm conditions were reported"
        value = None
    else:
        unit = UNITS.get(rule.alert_type, "")
        value = snapshot.metric(rule.alert_type)
        title = f"Weather Alert: {rule.alert_type} in {city}"
        message = (
            f"{rule.alert_type} is {rule.condition} {_fmt(rule.threshold, unit)} in {city}. "
            f"Current: {_fmt(value, unit)}"
        )
        reason = f"{rule.alert_type} is {rule.condition} {_fmt(rule.threshold, unit)}"

    data = {
        "alert_id": rule.id,
        "city": city,
        "alert_type": rule.alert_type,
        "condition": rule.condition,
        "threshold": rule.threshold,
        "value": value,
        "weather": snapshot.model_dump(mode="json"),
    }
    html = _weather_html(title, message, reason, snapshot, dashboard_url)
    return Message(title=title, message=message, html=html, data=data)


def _weather_html(title: str, message: str, reason: str, snapshot: WeatherSnapshot, dashboard_url: str) -> str:
    link = f'<a href="{escape(dashboard_url)}" class="btn">View Full Details</a>' if dashboard_url else ""
    return f"""<!DOCTYPE html>
<html>
<head>
  <style>
    body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif; margin: 0; background: #f5f5f5; }}
    .container {{ max-width: 600px; margin: 20px auto; background: white; border-radius: 12px; overflow: hidden; }}
    .header {{ background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); color: white; padding: 30px; text-align: center; }}
    .content {{ padding: 30px; }}
    .alert-box {{ background: #fff3cd; border-left: 4px solid #ffc107; padding: 15px; margin: 20px 0; }}
    .footer {{ background: #f8f9fa; padding: 20px; text-align: center; font-size: 12px; color: #666; }}
    .btn {{ display: inline-block; background: #667eea; color: white; padding: 12px 30px; text-decoration: none; border-radius: 6px; }}
  </style>
</head>
<body>
  <div class="container">
    <div class="header"><h1>Weather Nexus Alert</h1></div>
    <div class="content">
      <div class="alert-box">
        <h2>{escape(title)}</h2>
        <p>{escape(message)}</p>
      </div>
      <h3>Current Weather in {escape(snapshot.city)}</h3>
      <p><strong>Temperature:</strong> {_fmt(snapshot.temp, '°C')} (Feels like {_fmt(snapshot.feels_like, '°C')})</p>
      <p><strong>Humidity:</strong> {_fmt(snapshot.humidity, '%')}</p>
      <p><strong>Wind Speed:</strong> {_fmt(snapshot.wind_speed, ' m/s')}</p>
      <p><strong>Condition:</strong> {escape(snapshot.description or ', '.join(snapshot.conditions))}</p>
      <p>This alert was triggered because <strong>{escape(reason)}</strong>.</p>
      {link}
    </div>
    <div class="footer"><p>Weather Nexus - Automated Weather Monitoring</p></div>
  </div>
</body>
</html>"""


# ─── Space weather ───────────────────────────────────────────────────────────


def compose_space(rule: SpaceAlertRule, snapshot: SpaceSnapshot, dashboard_url: str = "") -> Message:
    """Build the notification for a triggered space weather rule.

    Only events that satisfied the rule are summarized.
    """
    events = matching_events(rule, snapshot)
    types: list[str] = []
    for e in events:
        if e.message_type not in types:
            types.append(e.message_type)
    summary = ", ".join(types) or "none"

    title = f"Space Weather Alert: {summary}"
    parts = []
    for e in events:
        severity = parse_flare_severity(e.body) if e.message_type == "FLR" else None
        parts.append(f"{e.message_type} class {severity}" if severity else e.message_type)
    message = f"Space weather events detected: {', '.join(parts) or summary} (minimum severity {rule.min_severity})"

    data = {
        "alert_id": rule.id,
        "alert_types": rule.alert_types,
        "min_severity": rule.min_severity,
        "events": [e.model_dump(mode="json") for e in events],
    }
    return Message(title=title, message=message, html=_space_html(title, events, dashboard_url), data=data)


def _space_html(title: str, events: list, dashboard_url: str) -> str:
    items = []
    for e in events[:MAX_EMAIL_EVENTS]:
        issued = e.issued_at.isoformat() if e.issued_at else "Recent"
        preview = e.body[:BODY_PREVIEW_CHARS]
        items.append(
            '<div class="event">'
            f"<strong>{escape(e.message_type)}</strong> - {escape(issued)}"
            f"<p>{escape(preview)}...</p>"
            "</div>"
        )
    link = f'<a href="{escape(dashboard_url)}" class="btn">View Space Weather</a>' if dashboard_url else ""
    return f"""<!DOCTYPE html>
<html>
<head>
  <style>
    body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif; margin: 0; background: #f5f5f5; }}
    .container {{ max-width: 600px; margin: 20px auto; background: white; border-radius: 12px; overflow: hidden; }}
    .header {{ background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); color: white; padding: 30px; text-align: center; }}
    .content {{ padding: 30px; }}
    .event {{ background: #f8f9fa; padding: 15px; margin: 10px 0; border-radius: 8px; border-left: 4px solid #764ba2; }}
    .footer {{ background: #f8f9fa; padding: 20px; text-align: center; font-size: 12px; color: #666; }}
    .btn {{ display: inline-block; background: #667eea; color: white; padding: 12px 30px; text-decoration: none; border-radius: 6px; }}
  </style>
</head>
<body>
  <div class="container">
    <div class="header"><h1>{escape(title)}</h1></div>
    <div class="content">
      <p>New space weather events matching your alert settings:</p>
      {''.join(items)}
      {link}
    </div>
    <div class="footer"><p>Weather Nexus - Space Weather Monitoring</p></div>
  </div>
</body>
</html>"""


# ─── Test notification ───────────────────────────────────────────────────────


def compose_test(dashboard_url: str = "") -> Message:
    title = "Test Notification"
    message = "Notifications are working. You will be alerted here when your weather conditions are met."
    link = f'<p><a href="{escape(dashboard_url)}">Visit Website</a></p>' if dashboard_url else ""
    html = (
        "<!DOCTYPE html><html><body>"
        f"<h1>{escape(title)}</h1><p>{escape(message)}</p>{link}"
        "</body></html>"
    )
    return Message(title=title, message=message, html=html, data={"test": True})

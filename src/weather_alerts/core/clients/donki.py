"""NASA DONKI (Space Weather Database Of Notifications, Knowledge, Information) client.

API docs: https://api.nasa.gov/ (DONKI section)
Timestamps look like "2024-05-10T12:34Z" and are stored as naive UTC.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx

from ...errors import ProviderError, ValidationError
from ..models import SPACE_EVENT_TYPES, SpaceEvent, SpaceSnapshot, is_iso_date, utcnow
from .http import use_client

logger = logging.getLogger(__name__)

API_BASE = "https://api.nasa.gov/DONKI"
PROVIDER = "donki"
NOTIFICATION_LOOKBACK_DAYS = 2


def validate_event_query(event_type: str, start_date: str, end_date: str) -> str:
    """Check an event query before any network call. Returns the normalized type."""
    if not event_type or not start_date or not end_date:
        raise ValidationError("Missing required parameters: type, startDate, and endDate are required.")
    code = event_type.strip().upper()
    if code not in SPACE_EVENT_TYPES:
        raise ValidationError(f"Invalid event type. Must be one of: {', '.join(SPACE_EVENT_TYPES)}")
    if not is_iso_date(start_date) or not is_iso_date(end_date):
        raise ValidationError("Invalid date format. Use YYYY-MM-DD format.")
    return code


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a DONKI timestamp into naive UTC. Returns None if unparseable."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_notification(item: dict[str, Any]) -> Optional[SpaceEvent]:
    """Parse one DONKI notification message into a SpaceEvent."""
    message_type = item.get("messageType")
    if not message_type:
        return None
    return SpaceEvent(
        message_type=str(message_type).upper(),
        message_id=str(item.get("messageID", "")),
        issued_at=parse_timestamp(item.get("messageIssueTime")),
        body=item.get("messageBody") or "",
    )


async def _get_json(url: str, params: dict, client: Optional[httpx.AsyncClient]) -> Any:
    try:
        async with use_client(client) as http:
            response = await http.get(url, params=params)
            content_type = response.headers.get("content-type", "")
            if "application/json" not in content_type:
                raise ProviderError(
                    f"Invalid response from NASA API ({response.status_code}, {content_type or 'no content type'})",
                    provider=PROVIDER,
                    status_code=response.status_code,
                )
            response.raise_for_status()
            return response.json()
    except httpx.HTTPStatusError as exc:
        status = exc.response.status_code
        raise ProviderError(f"NASA API returned {status}", provider=PROVIDER, status_code=status) from None
    except (httpx.HTTPError, ValueError) as exc:
        raise ProviderError(f"NASA API request failed: {type(exc).__name__}", provider=PROVIDER) from None


async def fetch_events(
    api_key: str,
    event_type: str,
    start_date: str,
    end_date: str,
    client: Optional[httpx.AsyncClient] = None,
) -> list[dict]:
    """Fetch raw DONKI events of one type for a date range.

    Args:
        api_key: NASA API key.
        event_type: One of FLR, CME, GST, IPS, MPC, RBE, SEP, HSS, WSA (case-insensitive).
        start_date: Start date, YYYY-MM-DD.
        end_date: End date, YYYY-MM-DD.

    Raises:
        ValidationError: Bad type or date, raised before any request is made.
        ProviderError: NASA returned a non-success or non-JSON response.
    """
    code = validate_event_query(event_type, start_date, end_date)
    if not api_key:
        raise ValidationError("NASA_API_KEY is not configured")

    params = {"startDate": start_date, "endDate": end_date, "api_key": api_key}
    data = await _get_json(f"{API_BASE}/{code}", params, client)
    if not isinstance(data, list):
        return []
    return data


async def fetch_notifications(
    api_key: str,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> SpaceSnapshot:
    """Fetch the DONKI notifications feed (all types) as a SpaceSnapshot.

    Defaults to the last two days; callers narrow further with SpaceSnapshot.recent().
    """
    if not api_key:
        raise ValidationError("NASA_API_KEY is not configured")
    today = utcnow().date()
    start_date = start_date or (today - timedelta(days=NOTIFICATION_LOOKBACK_DAYS)).isoformat()
    end_date = end_date or today.isoformat()
    if not is_iso_date(start_date) or not is_iso_date(end_date):
        raise ValidationError("Invalid date format. Use YYYY-MM-DD format.")

    params = {"type": "all", "startDate": start_date, "endDate": end_date, "api_key": api_key}
    data = await _get_json(f"{API_BASE}/notifications", params, client)

    events = []
    for item in data if isinstance(data, list) else []:
        event = parse_notification(item)
        if event is not None:
            events.append(event)
    logger.info("Fetched %d space weather notifications (%s to %s)", len(events), start_date, end_date)
    return SpaceSnapshot(events=events, fetched_at=utcnow())

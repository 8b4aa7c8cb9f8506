"""OpenWeatherMap current weather client.

API docs: https://openweathermap.org/current
Metric units. The API key is sent as a query parameter and never appears in
errors or logs raised from here.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ...errors import ProviderError, ValidationError
from ..models import WeatherSnapshot, utcnow
from .http import use_client

logger = logging.getLogger(__name__)

API_BASE = "https://api.openweathermap.org/data/2.5"
PROVIDER = "openweather"


def _build_params(api_key: str, city: Optional[str], lat: Optional[float], lon: Optional[float]) -> dict:
    if not api_key:
        raise ValidationError("OPENWEATHER_API_KEY is not configured")
    params: dict = {"appid": api_key, "units": "metric"}
    if city and city.strip():
        params["q"] = city.strip()
    elif lat is not None and lon is not None:
        params["lat"] = lat
        params["lon"] = lon
    else:
        raise ValidationError('Provide either "city" or both "lat" and "lon".')
    return params


async def fetch_raw(
    api_key: str,
    city: Optional[str] = None,
    lat: Optional[float] = None,
    lon: Optional[float] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> dict:
    """Fetch current weather JSON by city name or coordinates."""
    params = _build_params(api_key, city, lat, lon)
    location = params.get("q") or f"{lat},{lon}"

    try:
        async with use_client(client) as http:
            response = await http.get(f"{API_BASE}/weather", params=params)
            response.raise_for_status()
            return response.json()
    except httpx.HTTPStatusError as exc:
        status = exc.response.status_code
        raise ProviderError(
            f"Weather provider returned {status} for {location}",
            provider=PROVIDER,
            status_code=status,
        ) from None
    except (httpx.HTTPError, ValueError) as exc:
        raise ProviderError(
            f"Weather provider request failed for {location}: {type(exc).__name__}",
            provider=PROVIDER,
        ) from None


def parse_current(data: dict[str, Any], city: Optional[str] = None) -> WeatherSnapshot:
    """Normalize an OpenWeatherMap current weather payload."""
    main = data.get("main") or {}
    wind = data.get("wind") or {}
    rain = data.get("rain") or {}
    weather = data.get("weather") or []

    return WeatherSnapshot(
        city=city or data.get("name") or "",
        temp=main.get("temp"),
        feels_like=main.get("feels_like"),
        humidity=main.get("humidity"),
        wind_speed=wind.get("speed"),
        rain_1h=rain.get("1h"),
        conditions=[w.get("main", "") for w in weather if w.get("main")],
        description=weather[0].get("description", "") if weather else "",
        fetched_at=utcnow(),
    )


async def fetch_current(
    api_key: str,
    city: Optional[str] = None,
    lat: Optional[float] = None,
    lon: Optional[float] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> WeatherSnapshot:
    """Fetch and normalize current conditions.

    The snapshot keeps the requested city name so it matches stored rules.
    """
    data = await fetch_raw(api_key, city=city, lat=lat, lon=lon, client=client)
    return parse_current(data, city=city.strip() if city else None)

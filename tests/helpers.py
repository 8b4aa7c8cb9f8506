"""Fake collaborators and snapshot builders shared by the test modules."""

from __future__ import annotations

import asyncio

import httpx

from weather_alerts.core.models import Identity, WeatherSnapshot
from weather_alerts.errors import NotFound, ProviderError


class FakeUsers:
    """Identity lookups backed by a dict. Unknown ids are NotFound.

    Each lookup yields to the event loop once, as a real HTTP call would.
    """

    def __init__(self, emails: dict[str, str] | None = None):
        self.emails = dict(emails or {})
        self.lookups: list[str] = []

    async def get_user(self, user_id: str) -> Identity:
        self.lookups.append(user_id)
        await asyncio.sleep(0)
        if user_id not in self.emails:
            raise NotFound(f"User {user_id} not found")
        return Identity(user_id=user_id, email=self.emails[user_id])


class FakeEmail:
    """Records sends; raises ProviderError when fail is set."""

    def __init__(self, fail: bool = False, configured: bool = True):
        self.fail = fail
        self.configured = configured
        self.sent: list[dict] = []

    async def send(self, to: str, subject: str, html: str) -> str:
        if self.fail:
            raise ProviderError("Email provider returned 500", provider="resend", status_code=500)
        self.sent.append({"to": to, "subject": subject, "html": html})
        return f"email-{len(self.sent)}"


def mock_client(handler) -> httpx.AsyncClient:
    """An AsyncClient whose requests are answered by handler(request)."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def london(**overrides) -> WeatherSnapshot:
    fields = {
        "city": "London",
        "temp": 5.0,
        "feels_like": 3.0,
        "humidity": 60.0,
        "wind_speed": 4.0,
        "conditions": ["Clouds"],
        "description": "overcast clouds",
    }
    fields.update(overrides)
    return WeatherSnapshot(**fields)

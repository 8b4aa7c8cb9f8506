from datetime import datetime

import httpx
import pytest

from weather_alerts.core.clients import donki, openweather
from weather_alerts.core.clients.identity import IdentityClient, bearer_token
from weather_alerts.core.clients.resend import EmailClient, send_email
from weather_alerts.core.models import SpaceEvent, SpaceSnapshot
from weather_alerts.errors import NotFound, ProviderError, Unauthorized, ValidationError

from helpers import mock_client

OWM_PAYLOAD = {
    "name": "London",
    "main": {"temp": 5.2, "feels_like": 2.1, "humidity": 81},
    "wind": {"speed": 6.7},
    "rain": {"1h": 0.4},
    "weather": [{"main": "Rain", "description": "light rain"}, {"main": "Thunderstorm"}],
}


def recording_handler(calls, response):
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return response(request) if callable(response) else response
    return handler


# ─── OpenWeatherMap ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_fetch_current_normalizes_payload():
    calls = []
    async with mock_client(recording_handler(calls, httpx.Response(200, json=OWM_PAYLOAD))) as client:
        snap = await openweather.fetch_current("key", city=" London ", client=client)

    assert calls[0].url.params["q"] == "London"
    assert calls[0].url.params["units"] == "metric"
    assert snap.city == "London"
    assert snap.temp == 5.2 and snap.humidity == 81 and snap.wind_speed == 6.7 and snap.rain_1h == 0.4
    assert snap.conditions == ["Rain", "Thunderstorm"]
    assert snap.description == "light rain"


@pytest.mark.asyncio
async def test_fetch_by_coordinates():
    calls = []
    async with mock_client(recording_handler(calls, httpx.Response(200, json=OWM_PAYLOAD))) as client:
        await openweather.fetch_raw("key", lat=51.5, lon=-0.12, client=client)
    assert calls[0].url.params["lat"] == "51.5"
    assert "q" not in calls[0].url.params


@pytest.mark.asyncio
async def test_missing_location_fails_before_request():
    calls = []
    async with mock_client(recording_handler(calls, httpx.Response(200, json={}))) as client:
        with pytest.raises(ValidationError):
            await openweather.fetch_raw("key", lat=51.5, client=client)
    assert calls == []


@pytest.mark.asyncio
async def test_provider_error_hides_api_key():
    response = httpx.Response(404, json={"cod": "404", "message": "city not found"})
    async with mock_client(recording_handler([], response)) as client:
        with pytest.raises(ProviderError) as info:
            await openweather.fetch_current("secret-key", city="Atlantis", client=client)
    assert info.value.status_code == 404
    assert "secret-key" not in str(info.value)


# ─── DONKI ───────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
@pytest.mark.parametrize("event_type,start,end", [
    ("XYZ", "2026-10-01", "2026-10-02"),
    ("FLR", "2026/10/01", "2026-10-02"),
    ("FLR", "2026-10-01", "yesterday"),
])
async def test_event_query_validated_before_request(event_type, start, end):
    calls = []
    async with mock_client(recording_handler(calls, httpx.Response(200, json=[]))) as client:
        with pytest.raises(ValidationError):
            await donki.fetch_events("key", event_type, start, end, client=client)
    assert calls == []


@pytest.mark.asyncio
async def test_fetch_events_uppercases_type():
    calls = []
    events = [{"flrID": "2026-10-01-FLR-001", "classType": "M1.4"}]
    async with mock_client(recording_handler(calls, httpx.Response(200, json=events))) as client:
        data = await donki.fetch_events("key", "flr", "2026-10-01", "2026-10-02", client=client)
    assert data == events
    assert calls[0].url.path.endswith("/DONKI/FLR")
    assert calls[0].url.params["startDate"] == "2026-10-01"


@pytest.mark.asyncio
async def test_non_json_response_is_provider_error():
    response = httpx.Response(200, text="<html>Over rate limit</html>", headers={"content-type": "text/html"})
    async with mock_client(recording_handler([], response)) as client:
        with pytest.raises(ProviderError):
            await donki.fetch_events("key", "CME", "2026-10-01", "2026-10-02", client=client)


@pytest.mark.asyncio
async def test_fetch_notifications_builds_snapshot():
    feed = [
        {"messageType": "FLR", "messageID": "a", "messageIssueTime": "2026-10-17T08:15Z",
         "messageBody": "Flare class M2.1"},
        {"messageType": "CME", "messageID": "b", "messageIssueTime": "2026-10-16T23:00Z", "messageBody": ""},
        {"messageID": "no-type"},
    ]
    calls = []
    async with mock_client(recording_handler(calls, httpx.Response(200, json=feed))) as client:
        snap = await donki.fetch_notifications("key", client=client)

    assert calls[0].url.params["type"] == "all"
    assert [e.message_type for e in snap.events] == ["FLR", "CME"]
    assert snap.events[0].issued_at == datetime(2026, 10, 17, 8, 15)


def test_recent_window_filters_old_events():
    snap = SpaceSnapshot(events=[
        SpaceEvent(message_type="FLR", issued_at=datetime(2026, 10, 17, 12, 0)),
        SpaceEvent(message_type="CME", issued_at=datetime(2026, 10, 15, 12, 0)),
        SpaceEvent(message_type="GST", issued_at=None),
    ])
    recent = snap.recent(hours=24, now=datetime(2026, 10, 18, 0, 0))
    assert [e.message_type for e in recent.events] == ["FLR"]


def test_parse_timestamp_variants():
    assert donki.parse_timestamp("2026-10-17T08:15Z") == datetime(2026, 10, 17, 8, 15)
    assert donki.parse_timestamp("2026-10-17T10:15+02:00") == datetime(2026, 10, 17, 8, 15)
    assert donki.parse_timestamp("not a date") is None


# ─── Resend ──────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_send_email_returns_id():
    calls = []
    async with mock_client(recording_handler(calls, httpx.Response(200, json={"id": "msg_123"}))) as client:
        message_id = await send_email("re_key", "Alerts <a@example.com>", "u@example.com", "Hi", "<p>x</p>", client=client)
    assert message_id == "msg_123"
    assert calls[0].headers["Authorization"] == "Bearer re_key"


@pytest.mark.asyncio
async def test_send_email_failure_is_provider_error():
    async with mock_client(recording_handler([], httpx.Response(422, json={"message": "bad"}))) as client:
        sender = EmailClient("re_key", "a@example.com", client=client)
        with pytest.raises(ProviderError) as info:
            await sender.send("u@example.com", "Hi", "<p>x</p>")
    assert info.value.status_code == 422


# ─── Identity ────────────────────────────────────────────────────────────────


def identity_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/auth/v1/user":
        if request.headers.get("Authorization") == "Bearer good-token":
            return httpx.Response(200, json={"id": "u1", "email": "one@example.com"})
        return httpx.Response(401, json={"msg": "invalid JWT"})
    if request.url.path == "/auth/v1/admin/users/u1":
        return httpx.Response(200, json={"id": "u1", "email": "one@example.com"})
    return httpx.Response(404, json={"msg": "User not found"})


@pytest.mark.asyncio
async def test_resolve_token():
    async with mock_client(identity_handler) as client:
        identity = IdentityClient("https://auth.example.com/", "service", client=client)
        user = await identity.resolve_token("Bearer good-token")
        assert user.user_id == "u1" and user.email == "one@example.com"
        with pytest.raises(Unauthorized):
            await identity.resolve_token("Bearer expired")


@pytest.mark.asyncio
async def test_get_user_not_found():
    async with mock_client(identity_handler) as client:
        identity = IdentityClient("https://auth.example.com", "service", client=client)
        assert (await identity.get_user("u1")).email == "one@example.com"
        with pytest.raises(NotFound):
            await identity.get_user("ghost")


@pytest.mark.parametrize("header", ["Bearer ", "Bearer", "bearer   ", "  ", None])
def test_bearer_token_without_credential_is_unauthorized(header):
    with pytest.raises(Unauthorized):
        bearer_token(header)


def test_bearer_token():
    assert bearer_token("Bearer abc") == "abc"
    assert bearer_token("bearer   abc ") == "abc"
    assert bearer_token("abc") == "abc"


@pytest.mark.asyncio
@pytest.mark.parametrize("lookup", ["resolve_token", "get_user"])
async def test_non_json_identity_response_is_provider_error(lookup):
    response = httpx.Response(200, text="<html>maintenance</html>", headers={"content-type": "text/html"})
    async with mock_client(recording_handler([], response)) as client:
        identity = IdentityClient("https://auth.example.com", "service", client=client)
        with pytest.raises(ProviderError):
            await getattr(identity, lookup)("Bearer good-token" if lookup == "resolve_token" else "u1")

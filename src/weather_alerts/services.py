"""Process-wide component wiring.

Services owns the one database, the one shared HTTP client, and every
component built on them. The server lifespan creates it and hands it to
tools through the request context.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from .config import Settings
from .core.clients import donki, openweather
from .core.clients.http import DEFAULT_TIMEOUT
from .core.clients.identity import IdentityClient
from .core.clients.resend import EmailClient
from .core.models import SpaceSnapshot, WeatherSnapshot
from .db import Database
from .dispatch import NotificationDispatcher
from .orchestrator import CheckOrchestrator
from .scanner import AlertScanner
from .scheduler import AlertScheduler
from .stores import AlertRuleStore, HistoryStore, PreferenceStore

logger = logging.getLogger(__name__)


class Services:
    """All long-lived components for one process."""

    def __init__(
        self,
        settings: Settings,
        http: Optional[httpx.AsyncClient] = None,
        db: Optional[Database] = None,
    ):
        self.settings = settings
        self.http = http or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)
        self.db = db or Database(settings.get_db_url())

        self.preferences = PreferenceStore(self.db)
        self.rules = AlertRuleStore(self.db)
        self.history = HistoryStore(self.db)

        self.identity = IdentityClient(settings.supabase_url, settings.supabase_service_key, client=self.http)
        self.email = EmailClient(settings.resend_api_key, settings.email_from, client=self.http)

        self.dispatcher = NotificationDispatcher(self.history, self.email, dashboard_url=settings.dashboard_url)
        self.scanner = AlertScanner(
            self.rules,
            self.preferences,
            self.history,
            self.dispatcher,
            self.identity,
            cooldown_minutes=settings.alert_cooldown_minutes,
            max_concurrency=settings.max_concurrency,
        )
        self.orchestrator = CheckOrchestrator(
            self.scanner,
            fetch_weather=self.fetch_weather if settings.openweather_api_key else None,
            fetch_space=self.fetch_space if settings.nasa_api_key else None,
            cron_secret=settings.cron_secret,
            space_lookback_hours=settings.space_lookback_hours,
        )
        self.scheduler = AlertScheduler(self.orchestrator, settings.check_interval_minutes)

    async def fetch_weather(self, city: str) -> WeatherSnapshot:
        return await openweather.fetch_current(self.settings.openweather_api_key, city=city, client=self.http)

    async def fetch_space(self) -> SpaceSnapshot:
        return await donki.fetch_notifications(self.settings.nasa_api_key, client=self.http)

    async def start(self):
        await self.db.init()
        for name, value in (
            ("OPENWEATHER_API_KEY", self.settings.openweather_api_key),
            ("NASA_API_KEY", self.settings.nasa_api_key),
            ("RESEND_API_KEY", self.settings.resend_api_key),
            ("SUPABASE_SERVICE_ROLE_KEY", self.settings.supabase_service_key),
            ("CRON_SECRET", self.settings.cron_secret),
        ):
            if not value:
                logger.warning("%s not set, dependent features are disabled", name)
        await self.scheduler.start()

    async def close(self):
        await self.scheduler.stop()
        await self.http.aclose()
        await self.db.close()

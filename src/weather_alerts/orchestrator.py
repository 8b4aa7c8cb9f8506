"""Scheduled alert check: one full pass over weather and space weather alerts.

Invoked by an external timer (cron hitting the check_alerts tool, or the
optional in-process AlertScheduler). The two phases are independent: a
failure in the weather phase is recorded and the space weather phase still
runs. Nothing is retried within a pass.
"""

from __future__ import annotations

import hmac
import logging
from typing import Awaitable, Callable, Optional

from .core.models import CheckRunResult, ScanResult, SpaceSnapshot, WeatherSnapshot
from .errors import Unauthorized, ValidationError
from .scanner import AlertScanner

logger = logging.getLogger(__name__)

WeatherFetcher = Callable[[str], Awaitable[WeatherSnapshot]]
SpaceFetcher = Callable[[], Awaitable[SpaceSnapshot]]


class CheckOrchestrator:
    """Drives the scanner across all users and aggregates the counts."""

    def __init__(
        self,
        scanner: AlertScanner,
        fetch_weather: Optional[WeatherFetcher],
        fetch_space: Optional[SpaceFetcher],
        cron_secret: str = "",
        space_lookback_hours: int = 24,
    ):
        self.scanner = scanner
        self.fetch_weather = fetch_weather
        self.fetch_space = fetch_space
        self.cron_secret = cron_secret
        self.space_lookback_hours = space_lookback_hours

    def authenticate(self, authorization: Optional[str]) -> None:
        """Require "Bearer <CRON_SECRET>". An unset secret rejects everyone."""
        if not self.cron_secret:
            raise Unauthorized("Scheduler secret is not configured")
        expected = f"Bearer {self.cron_secret}"
        if not authorization or not hmac.compare_digest(authorization.strip().encode(), expected.encode()):
            raise Unauthorized("Unauthorized")

    async def run_check(self, authorization: Optional[str]) -> CheckRunResult:
        """Authenticate the scheduler, then run one full pass."""
        self.authenticate(authorization)
        return await self.run_pass()

    async def run_pass(self) -> CheckRunResult:
        logger.info("Starting automated alert check")
        run = CheckRunResult()

        try:
            run.weather = await self._weather_phase()
        except Exception as exc:
            run.errors.append(f"weather: {exc}")
            logger.error("Weather phase failed: %s", exc, exc_info=True)

        try:
            run.space_weather = await self._space_phase()
        except Exception as exc:
            run.errors.append(f"space_weather: {exc}")
            logger.error("Space weather phase failed: %s", exc, exc_info=True)

        run.status = "failure" if run.errors else "success"
        logger.info(
            "Alert check %s: weather=%s space=%s",
            run.status,
            _counts(run.weather),
            _counts(run.space_weather),
        )
        return run

    async def scan_city(self, city: str) -> ScanResult:
        """Fetch one city and check the rules that watch it."""
        if self.fetch_weather is None:
            raise ValidationError("Weather provider is not configured")
        snapshot = await self.fetch_weather(city)
        return await self.scanner.scan_weather(city, snapshot)

    async def _weather_phase(self) -> ScanResult:
        if self.fetch_weather is None:
            raise ValidationError("Weather provider is not configured")
        return await self.scanner.scan_all_weather(self.fetch_weather)

    async def _space_phase(self) -> ScanResult:
        if self.fetch_space is None:
            raise ValidationError("Space weather provider is not configured")
        feed = await self.fetch_space()
        recent = feed.recent(hours=self.space_lookback_hours)
        if not recent.events:
            logger.info("No space weather events in the last %d hours", self.space_lookback_hours)
        return await self.scanner.scan_space_weather(recent)


def _counts(result: Optional[ScanResult]) -> str:
    if result is None:
        return "n/a"
    return f"{result.rules_triggered}/{result.rules_checked} triggered"

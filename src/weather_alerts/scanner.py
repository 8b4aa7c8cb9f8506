"""Alert scanning. Matches enabled rules to fresh provider data and dispatches triggers.

A scan never aborts because of one rule: unresolvable owners are skipped,
provider and storage failures are counted, and every other rule still runs.
Rules are processed concurrently up to max_concurrency.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable, Optional, Protocol, Union

from .core.evaluation import evaluate
from .core.models import (
    Identity,
    Recipient,
    ScanResult,
    SpaceAlertRule,
    SpaceSnapshot,
    UserPreferences,
    WeatherAlertRule,
    WeatherSnapshot,
    utcnow,
)
from .dispatch import NotificationDispatcher
from .errors import NotFound, ProviderError, StorageError, WeatherAlertsError
from .stores import AlertRuleStore, HistoryStore, PreferenceStore

logger = logging.getLogger(__name__)

WeatherFetcher = Callable[[str], Awaitable[WeatherSnapshot]]
Rule = Union[WeatherAlertRule, SpaceAlertRule]


class UserDirectory(Protocol):
    async def get_user(self, user_id: str) -> Identity: ...


class _Pass:
    """Per-scan caches so each owner and city is looked up once."""

    def __init__(self, fetch: Optional[WeatherFetcher] = None):
        self.fetch = fetch
        self.recipients: dict[str, asyncio.Future] = {}
        self.snapshots: dict[str, asyncio.Future] = {}

    def snapshot(self, city: str) -> asyncio.Future:
        key = city.strip().lower()
        if key not in self.snapshots:
            self.snapshots[key] = asyncio.ensure_future(self.fetch(city))
        return self.snapshots[key]


class AlertScanner:
    """Evaluates enabled alert rules and hands triggered ones to the dispatcher."""

    def __init__(
        self,
        rules: AlertRuleStore,
        preferences: PreferenceStore,
        history: HistoryStore,
        dispatcher: NotificationDispatcher,
        users: UserDirectory,
        cooldown_minutes: int = 0,
        max_concurrency: int = 5,
    ):
        self.rules = rules
        self.preferences = preferences
        self.history = history
        self.dispatcher = dispatcher
        self.users = users
        self.cooldown = timedelta(minutes=cooldown_minutes)
        self.max_concurrency = max(1, max_concurrency)

    # ─── Public entry points ────────────────────────────────────────────

    async def scan_weather(self, city: str, snapshot: WeatherSnapshot) -> ScanResult:
        """Check every enabled weather rule for one city against a snapshot."""
        rules = await self.rules.list_enabled_weather(city=city)
        result = ScanResult()
        scan = _Pass()

        async def check(rule: WeatherAlertRule):
            recipient = await self._recipient(rule.user_id, scan)
            if recipient is None:
                result.skipped += 1
                return
            await self._check(rule, snapshot, recipient, result)

        await self._run(rules, check, result)
        result.users_checked = len({r.user_id for r in rules})
        logger.info(
            "Weather scan for %s: %d checked, %d triggered, %d skipped, %d failures",
            city, result.rules_checked, result.rules_triggered, result.skipped, result.failures,
        )
        return result

    async def scan_space_weather(self, snapshot: SpaceSnapshot) -> ScanResult:
        """Check every enabled space weather rule against one snapshot."""
        rules = await self.rules.list_enabled_space()
        result = ScanResult(events_found=len(snapshot.events))
        scan = _Pass()

        async def check(rule: SpaceAlertRule):
            recipient = await self._recipient(rule.user_id, scan)
            if recipient is None:
                result.skipped += 1
                return
            await self._check(rule, snapshot, recipient, result)

        await self._run(rules, check, result)
        result.users_checked = len({r.user_id for r in rules})
        logger.info(
            "Space weather scan: %d events, %d checked, %d triggered, %d skipped, %d failures",
            len(snapshot.events), result.rules_checked, result.rules_triggered, result.skipped, result.failures,
        )
        return result

    async def scan_all_weather(self, fetch: WeatherFetcher) -> ScanResult:
        """Check every enabled weather rule of every user with notifications on.

        Users with notifications disabled are never loaded. Each distinct city
        is fetched once per pass; a failed fetch counts one failure per rule
        that needed it.
        """
        users = await self.preferences.list_notifiable()
        result = ScanResult(users_checked=len(users))
        scan = _Pass(fetch)

        pending: list[WeatherAlertRule] = []
        prefs_by_user: dict[str, UserPreferences] = {}
        for prefs in users:
            try:
                user_rules = await self.rules.list_enabled_weather(user_id=prefs.user_id)
            except StorageError as exc:
                result.failures += 1
                logger.error("Could not load alerts for user %s: %s", prefs.user_id, exc)
                continue
            prefs_by_user[prefs.user_id] = prefs
            pending.extend(user_rules)

        async def check(rule: WeatherAlertRule):
            recipient = await self._recipient(rule.user_id, scan, prefs_by_user.get(rule.user_id))
            if recipient is None:
                result.skipped += 1
                return
            try:
                snapshot = await scan.snapshot(rule.city)
            except WeatherAlertsError as exc:
                result.failures += 1
                logger.warning("Could not fetch weather for %s (alert %d, user %s): %s", rule.city, rule.id, rule.user_id, exc)
                return
            await self._check(rule, snapshot, recipient, result)

        await self._run(pending, check, result)
        logger.info(
            "Weather pass: %d users, %d cities, %d checked, %d triggered, %d failures",
            result.users_checked, len(scan.snapshots), result.rules_checked, result.rules_triggered, result.failures,
        )
        return result

    # ─── Internals ──────────────────────────────────────────────────────

    async def _run(self, rules: list, check: Callable[[Rule], Awaitable[None]], result: ScanResult):
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def bounded(rule):
            async with semaphore:
                await check(rule)

        outcomes = await asyncio.gather(*(bounded(r) for r in rules), return_exceptions=True)
        for rule, outcome in zip(rules, outcomes):
            if isinstance(outcome, Exception):
                result.failures += 1
                logger.error("Alert %s for user %s failed: %s", rule.rule_key, rule.user_id, outcome, exc_info=outcome)

    async def _recipient(
        self,
        user_id: str,
        scan: _Pass,
        prefs: Optional[UserPreferences] = None,
    ) -> Optional[Recipient]:
        """Resolve a rule owner, or None if they cannot or should not be notified.

        Concurrent rules of the same owner share one lookup per pass.
        """
        if user_id not in scan.recipients:
            scan.recipients[user_id] = asyncio.ensure_future(self._lookup_recipient(user_id, prefs))
        return await scan.recipients[user_id]

    async def _lookup_recipient(self, user_id: str, prefs: Optional[UserPreferences]) -> Optional[Recipient]:
        recipient = None
        try:
            if prefs is None:
                prefs = await self.preferences.get(user_id)
            if not prefs.notifications_enabled:
                logger.debug("Notifications disabled for user %s", user_id)
            else:
                identity = await self.users.get_user(user_id)
                recipient = Recipient(
                    user_id=user_id,
                    email=identity.email,
                    email_notifications=prefs.email_notifications,
                )
        except (NotFound, ProviderError, StorageError) as exc:
            logger.warning("Could not resolve user %s, skipping their alerts: %s", user_id, exc)
        return recipient

    async def _check(
        self,
        rule: Rule,
        snapshot: Union[WeatherSnapshot, SpaceSnapshot],
        recipient: Recipient,
        result: ScanResult,
    ):
        result.rules_checked += 1
        if not evaluate(rule, snapshot):
            return

        result.rules_triggered += 1
        result.triggered.append(rule.rule_key)
        logger.info("Alert %s triggered for user %s (%s)", rule.rule_key, rule.user_id, rule.scope)

        if await self._in_cooldown(rule):
            result.suppressed += 1
            logger.info("Alert %s fired within the last %s, not re-sending", rule.rule_key, self.cooldown)
            return

        outcome = await self.dispatcher.dispatch(rule, snapshot, recipient)
        if outcome.email_sent:
            result.notifications_sent += 1
        if not outcome.history_written:
            result.failures += 1

    async def _in_cooldown(self, rule: Rule) -> bool:
        if not self.cooldown:
            return False
        try:
            last = await self.history.last_fired(rule.user_id, rule.rule_key)
        except StorageError as exc:
            logger.warning("Could not check last notification for %s: %s", rule.rule_key, exc)
            return False
        return last is not None and utcnow() - last < self.cooldown

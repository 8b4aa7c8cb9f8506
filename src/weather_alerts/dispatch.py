"""Notification dispatch: email plus one history record per triggered rule.

Email failure never blocks the history write, and a history failure never
propagates out of dispatch(); both are logged and reported in the result.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, Union

from .core.messages import Message, compose_space, compose_test, compose_weather
from .core.models import (
    DispatchResult,
    NotificationRecord,
    NotificationType,
    Recipient,
    SpaceAlertRule,
    SpaceSnapshot,
    WeatherAlertRule,
    WeatherSnapshot,
    utcnow,
)
from .errors import ProviderError, StorageError
from .stores import HistoryStore

logger = logging.getLogger(__name__)


class EmailSender(Protocol):
    configured: bool

    async def send(self, to: str, subject: str, html: str) -> str: ...


class NotificationDispatcher:
    """Composes, emails, and records notifications for triggered rules."""

    def __init__(
        self,
        history: HistoryStore,
        email: Optional[EmailSender] = None,
        dashboard_url: str = "",
    ):
        self.history = history
        self.email = email
        self.dashboard_url = dashboard_url

    def compose(
        self,
        rule: Union[WeatherAlertRule, SpaceAlertRule],
        snapshot: Union[WeatherSnapshot, SpaceSnapshot],
    ) -> tuple[NotificationType, Message]:
        if isinstance(rule, SpaceAlertRule):
            return NotificationType.SPACE_WEATHER, compose_space(rule, snapshot, self.dashboard_url)
        return NotificationType.WEATHER, compose_weather(rule, snapshot, self.dashboard_url)

    async def dispatch(
        self,
        rule: Union[WeatherAlertRule, SpaceAlertRule],
        snapshot: Union[WeatherSnapshot, SpaceSnapshot],
        recipient: Recipient,
    ) -> DispatchResult:
        """Send and record one notification for a triggered rule."""
        notification_type, content = self.compose(rule, snapshot)
        return await self._deliver(recipient, notification_type, content, rule.rule_key)

    async def send_test(self, recipient: Recipient) -> DispatchResult:
        """Send a test notification through the normal delivery path."""
        return await self._deliver(recipient, NotificationType.WEATHER, compose_test(self.dashboard_url), None)

    async def _deliver(
        self,
        recipient: Recipient,
        notification_type: NotificationType,
        content: Message,
        rule_key: Optional[str],
    ) -> DispatchResult:
        result = DispatchResult(rule_key=rule_key, user_id=recipient.user_id)

        if recipient.email_notifications:
            if self.email is None or not self.email.configured:
                logger.warning("Email not configured, skipping email for user %s (%s)", recipient.user_id, rule_key)
            else:
                try:
                    result.email_id = await self.email.send(recipient.email, content.title, content.html)
                    result.email_sent = True
                except ProviderError as exc:
                    result.error = str(exc)
                    logger.error(
                        "Email to user %s failed for %s: %s",
                        recipient.user_id, rule_key or "test", exc,
                    )

        record = NotificationRecord(
            user_id=recipient.user_id,
            notification_type=notification_type,
            title=content.title,
            message=content.message,
            data=content.data,
            rule_key=rule_key,
            email_sent=result.email_sent,
            sent_at=utcnow(),
        )
        try:
            saved = await self.history.append(record)
            result.history_written = True
            result.record_id = saved.id
        except StorageError as exc:
            result.error = f"{result.error}; {exc}" if result.error else str(exc)
            logger.error("History write failed for user %s (%s): %s", recipient.user_id, rule_key or "test", exc)

        logger.info(
            "Dispatched %s to user %s (email_sent=%s, history=%s)",
            rule_key or "test", recipient.user_id, result.email_sent, result.history_written,
        )
        return result

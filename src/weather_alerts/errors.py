"""Error taxonomy shared by clients, stores, and the alert pipeline.

ValidationError and Unauthorized surface to the caller immediately.
ProviderError and StorageError are isolated per rule during a scan pass.
"""

from __future__ import annotations

from typing import Optional


class WeatherAlertsError(Exception):
    """Base class for all application errors."""


class ValidationError(WeatherAlertsError, ValueError):
    """Malformed input (bad date, unknown event type, missing threshold)."""


class Unauthorized(WeatherAlertsError):
    """Missing, invalid, or expired credentials."""


class NotFound(WeatherAlertsError):
    """Record does not exist or is not owned by the caller."""


class ProviderError(WeatherAlertsError):
    """Upstream weather, space-weather, identity, or email service failed."""

    def __init__(self, message: str, provider: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class StorageError(WeatherAlertsError):
    """Preference, alert rule, or history store rejected an operation."""

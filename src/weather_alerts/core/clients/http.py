"""Shared HTTP settings for provider clients.

Outbound calls are bounded by a short timeout and never retried; a failed
call is reported and the next scheduled pass tries again.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx

DEFAULT_TIMEOUT = httpx.Timeout(8.0, connect=4.0)


@asynccontextmanager
async def use_client(client: Optional[httpx.AsyncClient] = None) -> AsyncIterator[httpx.AsyncClient]:
    """Yield the injected client, or a short-lived one closed on exit."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT) as owned:
        yield owned

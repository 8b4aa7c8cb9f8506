"""Resend transactional email client.

API docs: https://resend.com/docs/api-reference/emails/send-email
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from ...errors import ProviderError
from .http import use_client

logger = logging.getLogger(__name__)

API_BASE = "https://api.resend.com"
PROVIDER = "resend"


async def send_email(
    api_key: str,
    sender: str,
    to: str,
    subject: str,
    html: str,
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    """Send one HTML email. Returns the provider message id.

    Raises ProviderError on any non-success response; the caller decides
    whether that is fatal.
    """
    if not api_key:
        raise ProviderError("RESEND_API_KEY is not configured", provider=PROVIDER)
    if not to:
        raise ProviderError("Recipient has no email address", provider=PROVIDER)

    payload = {"from": sender, "to": [to], "subject": subject, "html": html}
    headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}

    try:
        async with use_client(client) as http:
            response = await http.post(f"{API_BASE}/emails", json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()
    except httpx.HTTPStatusError as exc:
        status = exc.response.status_code
        raise ProviderError(f"Email provider returned {status}", provider=PROVIDER, status_code=status) from None
    except (httpx.HTTPError, ValueError) as exc:
        raise ProviderError(f"Email request failed: {type(exc).__name__}", provider=PROVIDER) from None

    message_id = data.get("id") if isinstance(data, dict) else None
    if not message_id:
        raise ProviderError("Email provider did not confirm the send", provider=PROVIDER)
    return str(message_id)


class EmailClient:
    """Resend client bound to one API key and sender address."""

    def __init__(self, api_key: str, sender: str, client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        self.sender = sender
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def send(self, to: str, subject: str, html: str) -> str:
        return await send_email(self.api_key, self.sender, to, subject, html, client=self._client)

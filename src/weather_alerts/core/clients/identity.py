"""Hosted identity provider client (Supabase Auth / GoTrue REST API).

Resolves bearer access tokens to users, and user ids to email addresses
using the service role key. No session state is held between calls.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

import httpx

from ...errors import NotFound, ProviderError, Unauthorized
from ..models import Identity
from .http import use_client

logger = logging.getLogger(__name__)

PROVIDER = "identity"
_BEARER_RE = re.compile(r"^bearer(\s+|$)", re.IGNORECASE)


def bearer_token(authorization: Optional[str]) -> str:
    """Strip a "Bearer" scheme prefix. Raises Unauthorized if no token remains."""
    if not authorization:
        raise Unauthorized("Missing authorization")
    token = _BEARER_RE.sub("", authorization.strip(), count=1).strip()
    if not token:
        raise Unauthorized("Missing authorization")
    return token


def _json(response: httpx.Response) -> dict:
    try:
        return response.json()
    except ValueError:
        raise ProviderError(
            f"Identity provider returned a non-JSON response ({response.status_code})",
            provider=PROVIDER,
            status_code=response.status_code,
        ) from None


class IdentityClient:
    """Resolve users through the hosted auth service."""

    def __init__(self, base_url: str, service_key: str, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.service_key)

    def _headers(self, token: str) -> dict:
        return {"apikey": self.service_key, "Authorization": f"Bearer {token}"}

    async def resolve_token(self, authorization: Optional[str]) -> Identity:
        """Resolve a bearer access token to the signed-in user."""
        token = bearer_token(authorization)
        if not self.configured:
            raise Unauthorized("Identity provider is not configured")

        try:
            async with use_client(self._client) as http:
                response = await http.get(f"{self.base_url}/auth/v1/user", headers=self._headers(token))
        except httpx.HTTPError as exc:
            raise ProviderError(f"Identity request failed: {type(exc).__name__}", provider=PROVIDER) from None

        if response.status_code in (401, 403):
            raise Unauthorized("Invalid token")
        if response.status_code >= 400:
            raise ProviderError(
                f"Identity provider returned {response.status_code}",
                provider=PROVIDER,
                status_code=response.status_code,
            )
        identity = _parse_user(_json(response))
        if identity is None:
            raise Unauthorized("Invalid token")
        return identity

    async def get_user(self, user_id: str) -> Identity:
        """Look up a user by id with the service role key."""
        if not self.configured:
            raise ProviderError("Identity provider is not configured", provider=PROVIDER)

        try:
            async with use_client(self._client) as http:
                response = await http.get(
                    f"{self.base_url}/auth/v1/admin/users/{user_id}",
                    headers=self._headers(self.service_key),
                )
        except httpx.HTTPError as exc:
            raise ProviderError(f"Identity request failed: {type(exc).__name__}", provider=PROVIDER) from None

        if response.status_code == 404:
            raise NotFound(f"User {user_id} not found")
        if response.status_code >= 400:
            raise ProviderError(
                f"Identity provider returned {response.status_code} for user {user_id}",
                provider=PROVIDER,
                status_code=response.status_code,
            )
        identity = _parse_user(_json(response))
        if identity is None:
            raise NotFound(f"User {user_id} not found")
        return identity


def _parse_user(data: dict) -> Optional[Identity]:
    user = data.get("user", data) if isinstance(data, dict) else {}
    user_id = user.get("id")
    if not user_id:
        return None
    return Identity(user_id=str(user_id), email=user.get("email") or "")

"""
Google OAuth 2.0 authorization-code flow for Dotion.

Builds the consent URL, round-trips the CSRF state, and exchanges
authorization codes / refresh tokens at the Google token endpoint.
"""

from __future__ import annotations

import hmac
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx
from loguru import logger

from ..core.errors import UpstreamError, handle_missing_config

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

DEFAULT_SCOPES = [
    "openid",
    "email",
    "profile",
    "https://www.googleapis.com/auth/calendar",
]


@dataclass
class TokenGrant:
    """Token endpoint response."""
    access_token: str
    expires_in: int
    refresh_token: Optional[str] = None
    scope: Optional[str] = None


def verify_state(received: Optional[str], stored: Optional[str]) -> bool:
    """The CSRF state must round-trip exactly."""
    if not received or not stored:
        return False
    return hmac.compare_digest(received, stored)


class GoogleOAuthClient:
    """
    Google authorization-code client.

    Uses httpx directly against the token endpoint.
    """

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        redirect_uri: Optional[str],
        scopes: Optional[List[str]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = scopes or DEFAULT_SCOPES
        self._http_client = http_client
        self.timeout = timeout

    def is_configured(self) -> bool:
        """Client id, secret and redirect URI are all set."""
        return bool(self.client_id and self.client_secret and self.redirect_uri)

    def _require_redirect_config(self) -> None:
        if not self.client_id or not self.redirect_uri:
            raise handle_missing_config("google_oauth", "GOOGLE_CLIENT_ID/GOOGLE_REDIRECT_URI")

    def _require_exchange_config(self) -> None:
        self._require_redirect_config()
        if not self.client_secret:
            raise handle_missing_config("google_oauth", "GOOGLE_CLIENT_SECRET")

    @staticmethod
    def new_state() -> str:
        """Random CSRF state value."""
        return str(uuid.uuid4())

    def authorization_url(self, state: str) -> str:
        """Consent screen URL requesting offline calendar access."""
        self._require_redirect_config()
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "include_granted_scopes": "true",
            "state": state,
            "access_type": "offline",
            "prompt": "consent",
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenGrant:
        """Trade an authorization code for an access token."""
        self._require_exchange_config()
        return await self._token_request({
            "code": code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri,
            "grant_type": "authorization_code",
        })

    async def refresh(self, refresh_token: str) -> TokenGrant:
        """Trade a refresh token for a new access token."""
        self._require_exchange_config()
        grant = await self._token_request({
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        })
        if grant.refresh_token is None:
            grant.refresh_token = refresh_token
        return grant

    async def _post(self, data: Dict[str, Any]) -> httpx.Response:
        headers = {"Accept": "application/json"}
        if self._http_client is not None:
            return await self._http_client.post(GOOGLE_TOKEN_URL, data=data, headers=headers)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(GOOGLE_TOKEN_URL, data=data, headers=headers)

    async def _token_request(self, data: Dict[str, Any]) -> TokenGrant:
        try:
            response = await self._post(data)
        except httpx.HTTPError as e:
            logger.error(f"OAuth token request failed: {e}")
            raise UpstreamError("Google token request failed", provider="google-oauth") from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.status_code >= 300 or not isinstance(payload, dict):
            logger.error(f"OAuth token error ({response.status_code}): {response.text[:200]}")
            raise UpstreamError(
                "Google token exchange failed",
                provider="google-oauth",
                provider_status=response.status_code,
            )

        access_token = payload.get("access_token")
        expires_in = payload.get("expires_in")
        if not access_token or not expires_in:
            logger.error("OAuth token response missing access_token or expires_in")
            raise UpstreamError(
                "Google token response was incomplete",
                provider="google-oauth",
                provider_status=response.status_code,
            )

        return TokenGrant(
            access_token=access_token,
            expires_in=int(expires_in),
            refresh_token=payload.get("refresh_token"),
            scope=payload.get("scope"),
        )

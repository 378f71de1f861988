"""
Session Management Module for Dotion.

A session is the Google access token plus its expiry, kept in httpOnly
cookies. The manager is read-only over the request cookies; writes go
through explicit issue/clear calls on the outgoing response.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional

from loguru import logger

from ..core.errors import Unauthenticated

if TYPE_CHECKING:
    from .oauth import GoogleOAuthClient, TokenGrant


ACCESS_TOKEN_COOKIE = "google_access_token"
EXPIRES_AT_COOKIE = "google_access_token_expires_at"
REFRESH_TOKEN_COOKIE = "google_refresh_token"
OAUTH_STATE_COOKIE = "google_oauth_state"


def current_time_ms() -> float:
    return time.time() * 1000


@dataclass
class Session:
    """Represents an authenticated Google session."""
    access_token: Optional[str]
    expires_at: Optional[float]  # epoch milliseconds
    refresh_token: Optional[str] = None
    user: Optional[str] = None

    def is_valid(self, now_ms: Optional[float] = None) -> bool:
        """A session is valid iff a token is present and now < expiry."""
        if not self.access_token or self.expires_at is None:
            return False
        now_ms = current_time_ms() if now_ms is None else now_ms
        return now_ms < self.expires_at


class SessionManager:
    """
    Cookie-backed session access for a single request.

    Usage:
        manager = SessionManager(request.cookies)
        token = manager.current_token()  # raises Unauthenticated
    """

    def __init__(
        self,
        cookies: Mapping[str, str],
        clock: Callable[[], float] = current_time_ms,
        secure: bool = False,
    ):
        """
        Initialize the session manager.

        Args:
            cookies: Incoming request cookies.
            clock: Returns the current time in epoch milliseconds.
            secure: Mark issued cookies as Secure (production).
        """
        self._clock = clock
        self.secure = secure
        self.session = Session(
            access_token=cookies.get(ACCESS_TOKEN_COOKIE) or None,
            expires_at=self._parse_expiry(cookies.get(EXPIRES_AT_COOKIE)),
            refresh_token=cookies.get(REFRESH_TOKEN_COOKIE) or None,
        )

    @staticmethod
    def _parse_expiry(raw: Optional[str]) -> Optional[float]:
        if not raw:
            return None
        try:
            return float(raw)
        except ValueError:
            logger.warning(f"Ignoring malformed session expiry cookie: {raw!r}")
            return None

    def is_valid(self) -> bool:
        """Token present and unexpired."""
        return self.session.is_valid(self._clock())

    def current_token(self) -> str:
        """
        Get the access token for calendar calls.

        Raises:
            Unauthenticated: No token, or the token has expired.
        """
        if not self.is_valid():
            raise Unauthenticated()
        return self.session.access_token

    def valid_session(self) -> Optional[Session]:
        """The session if valid, else None."""
        return self.session if self.is_valid() else None

    # ------------------------------------------------------------------
    # Cookie writes
    # ------------------------------------------------------------------

    def _cookie_kwargs(self) -> Dict[str, Any]:
        return {
            "httponly": True,
            "samesite": "lax",
            "secure": self.secure,
            "path": "/",
        }

    def issue(self, response, grant: "TokenGrant") -> Session:
        """
        Store a freshly granted token on the response.

        Args:
            response: Outgoing Starlette/FastAPI response.
            grant: Token endpoint result.

        Returns:
            The new session.
        """
        expires_at = self._clock() + grant.expires_in * 1000
        kwargs = self._cookie_kwargs()

        response.set_cookie(ACCESS_TOKEN_COOKIE, grant.access_token, **kwargs)
        response.set_cookie(EXPIRES_AT_COOKIE, str(int(expires_at)), **kwargs)
        refresh_token = grant.refresh_token or self.session.refresh_token
        if grant.refresh_token:
            response.set_cookie(REFRESH_TOKEN_COOKIE, grant.refresh_token, **kwargs)

        self.session = Session(
            access_token=grant.access_token,
            expires_at=expires_at,
            refresh_token=refresh_token,
        )
        logger.info("Google session issued")
        return self.session

    def clear(self, response) -> None:
        """Destroy the session (logout)."""
        for name in (ACCESS_TOKEN_COOKIE, EXPIRES_AT_COOKIE, REFRESH_TOKEN_COOKIE):
            response.delete_cookie(name, path="/")
        self.session = Session(access_token=None, expires_at=None)
        logger.info("Google session cleared")

    async def refresh(self, response, oauth: "GoogleOAuthClient") -> Session:
        """
        Renew the access token with the stored refresh token.

        Raises:
            Unauthenticated: No refresh token is stored.
            UpstreamError: The token endpoint rejected the refresh.
        """
        if not self.session.refresh_token:
            raise Unauthenticated("No refresh token stored; sign in again")

        grant = await oauth.refresh(self.session.refresh_token)
        return self.issue(response, grant)

"""Google sign-in and session handling for Dotion."""

from .oauth import GoogleOAuthClient, TokenGrant, verify_state
from .session import OAUTH_STATE_COOKIE, Session, SessionManager

__all__ = [
    "GoogleOAuthClient",
    "TokenGrant",
    "verify_state",
    "Session",
    "SessionManager",
    "OAUTH_STATE_COOKIE",
]

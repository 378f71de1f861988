"""
Centralized Error Handling for Dotion.

Provides:
- A small typed error taxonomy mapped onto HTTP status codes
- User-friendly configuration guidance
- Short inline failure notices for tool calls that did not go through
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from loguru import logger


class DotionError(Exception):
    """Base class for every error Dotion surfaces to a client."""

    status_code: int = 500

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message}
        if self.detail:
            payload["detail"] = self.detail
        return payload


class Unauthenticated(DotionError):
    """No session, or the session's access token has expired."""

    status_code = 401

    def __init__(self, message: str = "Not authenticated", detail: Optional[str] = None):
        super().__init__(message, detail)


class ValidationError(DotionError):
    """Required event or tool fields are missing or malformed."""

    status_code = 400


class ToolArgumentError(DotionError):
    """The model produced arguments that are not a valid JSON object."""

    status_code = 400

    def __init__(
        self,
        message: str,
        index: int = 0,
        tool_name: str = "",
        raw_arguments: str = "",
    ):
        super().__init__(message)
        self.index = index
        self.tool_name = tool_name
        self.raw_arguments = raw_arguments


class UpstreamError(DotionError):
    """The calendar or model provider failed."""

    status_code = 500

    def __init__(
        self,
        message: str,
        provider: str = "google",
        provider_status: Optional[int] = None,
        detail: Optional[str] = None,
    ):
        super().__init__(message, detail)
        self.provider = provider
        self.provider_status = provider_status


class ParseError(DotionError):
    """A single stream fragment could not be decoded by the client."""

    status_code = 400

    def __init__(self, message: str, fragment: str = ""):
        super().__init__(message)
        self.fragment = fragment


class ConfigurationError(DotionError):
    """Raised when a required configuration value is missing."""

    status_code = 500

    def __init__(self, message: str, config_key: Optional[str] = None):
        super().__init__(message)
        self.config_key = config_key


# User-friendly error messages with setup instructions
ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "openai_key": {
        "short": "OpenAI API key not configured",
        "detailed": """The language model is not configured.

To enable chat:
1. Go to platform.openai.com/api-keys
2. Create an API key
3. Add to your .env file:
   OPENAI_API_KEY=your_key_here

Then restart Dotion.""",
    },
    "google_oauth": {
        "short": "Missing GOOGLE_CLIENT_ID or GOOGLE_REDIRECT_URI",
        "detailed": """Google sign-in is not configured.

To enable Google Calendar access:
1. Go to console.cloud.google.com
2. Enable the Google Calendar API
3. Create OAuth 2.0 credentials (Web application)
4. Add http://localhost:3000/api/google/callback as a redirect URI
5. Add to your .env file:
   GOOGLE_CLIENT_ID=your_client_id
   GOOGLE_CLIENT_SECRET=your_client_secret
   GOOGLE_REDIRECT_URI=http://localhost:3000/api/google/callback

Then restart Dotion.""",
    },
    "calendar_id": {
        "short": "Missing env vars: GOOGLE_CALENDAR_ID",
        "detailed": """No calendar is selected.

Add the calendar to manage to your .env file:
   GOOGLE_CALENDAR_ID=primary
   GOOGLE_TIMEZONE=America/Los_Angeles

Then restart Dotion.""",
    },
    "desktop_control": {
        "short": "Desktop app control is not available",
        "detailed": """Desktop app control is disabled.

Enable it in config/settings.yaml:
   desktop:
     enabled: true

App control needs macOS (osascript) or psutil installed.""",
    },
}


def get_error_message(error_key: str, detailed: bool = False) -> str:
    """
    Get user-friendly error message.

    Args:
        error_key: Key for the error type
        detailed: Whether to return detailed message with setup instructions

    Returns:
        User-friendly error message
    """
    if error_key not in ERROR_MESSAGES:
        return f"An error occurred: {error_key}"

    msg = ERROR_MESSAGES[error_key]
    return msg["detailed"] if detailed else msg["short"]


def handle_missing_config(config_key: str, env_var: str) -> ConfigurationError:
    """Log a missing setting and build the error to raise for it."""
    logger.warning(f"{env_var} not set")
    return ConfigurationError(get_error_message(config_key), config_key=config_key)


# Verb shown in inline failure notices, per tool name
_TOOL_VERBS: Dict[str, str] = {
    "create_calendar_event": "create calendar event",
    "update_calendar_event": "update calendar event",
    "delete_calendar_event": "delete calendar event",
    "manage_app": "control app",
    "propose_slots": "propose time slots",
    "change_view": "change calendar view",
}


def failure_notice(tool_name: str, error: Optional[BaseException] = None) -> str:
    """
    Build the short inline marker appended to an assistant message when a
    tool call fails.

    Args:
        tool_name: Name of the tool the model asked for.
        error: The failure, if known.

    Returns:
        Markdown text starting on its own paragraph.
    """
    verb = _TOOL_VERBS.get(tool_name, "execute calendar operation")
    notice = f"\n\n✗ Failed to {verb}"

    if isinstance(error, Unauthenticated):
        notice += " (sign in to Google Calendar first)"
    elif isinstance(error, ToolArgumentError):
        notice += " (the request was malformed)"
    elif isinstance(error, ValidationError):
        notice += f" ({error.message})"
    elif isinstance(error, UpstreamError) and error.provider_status == 404:
        notice += " (event not found)"

    return notice

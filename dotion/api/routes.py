"""
API Routes for Dotion.

Implements the chat, calendar, Google sign-in and desktop endpoints.
Every calendar-touching endpoint resolves the session first, so a missing
or expired session is a 401 before any provider call.
"""

from __future__ import annotations

import asyncio
from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Query, Request, Response
from fastapi.responses import RedirectResponse, StreamingResponse
from loguru import logger

from ..auth.oauth import GoogleOAuthClient, verify_state
from ..auth.session import OAUTH_STATE_COOKIE, SessionManager
from ..core.errors import DotionError, ValidationError, handle_missing_config
from ..core.prompts import build_messages
from ..core.streaming import StreamMultiplexer
from ..tools.calendar import CalendarGateway, get_zone
from ..tools.definitions import tools_for
from .models import (
    CalendarResponse,
    ChatRequest,
    ErrorResponse,
    EventRequest,
    MutationResponse,
    RunningAppsResponse,
    SessionResponse,
)

# Error bodies are always {"error": message}
ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}

# Create routers
chat_router = APIRouter(prefix="/chat", tags=["Chat"], responses=ERROR_RESPONSES)
calendar_router = APIRouter(prefix="/calendar", tags=["Calendar"], responses=ERROR_RESPONSES)
google_router = APIRouter(prefix="/google", tags=["Google"], responses=ERROR_RESPONSES)
apps_router = APIRouter(prefix="/apps", tags=["Apps"])


# ============================================================================
# Dependencies
# ============================================================================

def get_session(request: Request) -> SessionManager:
    """Session for this request, read from cookies."""
    state = request.app.state
    return SessionManager(request.cookies, clock=state.clock, secure=state.secure_cookies)


def get_gateway(request: Request, session: SessionManager) -> CalendarGateway:
    """Calendar gateway for a valid session; raises Unauthenticated first."""
    token = session.current_token()
    return request.app.state.gateway_factory(token)


def _oauth(request: Request) -> GoogleOAuthClient:
    return request.app.state.oauth_client


# ============================================================================
# Chat
# ============================================================================

@chat_router.post("")
async def chat(body: ChatRequest, request: Request):
    """Stream one assistant turn as server-sent events."""
    state = request.app.state
    llm = state.llm_client
    if not llm.is_available():
        raise handle_missing_config("openai_key", "OPENAI_API_KEY")

    session = get_session(request)
    authenticated = session.is_valid()
    desktop_enabled = state.app_controller is not None
    timezone = state.settings.google_timezone

    messages = build_messages(
        [m.model_dump() for m in body.messages],
        now=datetime.now(get_zone(timezone)),
        timezone=timezone,
        calendar_days=body.calendarEvents,
        authenticated=authenticated,
        desktop_enabled=desktop_enabled,
    )
    tools = tools_for(authenticated, desktop_enabled)

    multiplexer = StreamMultiplexer(state.executor)
    events = multiplexer.run(llm.astream_chunks(messages, tools=tools or None), session)

    return StreamingResponse(
        events,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


# ============================================================================
# Calendar
# ============================================================================

@calendar_router.get("", response_model=CalendarResponse)
async def get_calendar(
    request: Request,
    start: Optional[date] = Query(None, description="First day (YYYY-MM-DD)"),
    days: Optional[int] = Query(None, ge=1, le=62),
):
    """Calendar window, default: the current week."""
    session = get_session(request)
    gateway = get_gateway(request, session)
    window_days = days or request.app.state.app_config.calendar.window_days

    window = await gateway.get_window(start=start, days=window_days)
    return window.to_dict()


@calendar_router.post("", response_model=MutationResponse)
async def create_event(body: EventRequest, request: Request):
    """Create an event."""
    session = get_session(request)
    gateway = get_gateway(request, session)

    event_id = await gateway.create_event(
        summary=body.summary,
        start=body.start,
        end=body.end,
        description=body.description,
        location=body.location,
    )
    return MutationResponse(success=True, eventId=event_id)


@calendar_router.put("", response_model=MutationResponse)
async def update_event(body: EventRequest, request: Request):
    """Partially update an event; only sent fields change."""
    session = get_session(request)
    gateway = get_gateway(request, session)

    changes = body.model_dump(exclude_unset=True)
    event_id = changes.pop("eventId", None)
    if not event_id:
        raise ValidationError("eventId is required")

    updated_id = await gateway.update_event(event_id, changes)
    return MutationResponse(success=True, eventId=updated_id)


@calendar_router.delete("", response_model=MutationResponse)
async def delete_event(body: EventRequest, request: Request):
    """Delete an event."""
    session = get_session(request)
    gateway = get_gateway(request, session)

    if not body.eventId:
        raise ValidationError("eventId is required")

    await gateway.delete_event(body.eventId)
    return MutationResponse(success=True, eventId=body.eventId)


# ============================================================================
# Google Sign-in
# ============================================================================

@google_router.get("/auth")
async def google_auth(request: Request):
    """Redirect to the Google consent screen."""
    oauth = _oauth(request)
    state_value = oauth.new_state()
    url = oauth.authorization_url(state_value)

    response = RedirectResponse(url, status_code=307)
    response.set_cookie(
        OAUTH_STATE_COOKIE,
        state_value,
        httponly=True,
        samesite="lax",
        secure=request.app.state.secure_cookies,
        path="/",
        max_age=600,
    )
    return response


@google_router.get("/callback")
async def google_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
):
    """OAuth redirect target: verify state, exchange the code, store the session."""
    oauth = _oauth(request)
    if not oauth.is_configured():
        raise handle_missing_config("google_oauth", "GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET/GOOGLE_REDIRECT_URI")

    stored_state = request.cookies.get(OAUTH_STATE_COOKIE)

    failed = RedirectResponse("/?auth=error", status_code=307)
    failed.delete_cookie(OAUTH_STATE_COOKIE, path="/")

    if error:
        logger.warning(f"Google sign-in was not completed: {error}")
        return failed
    if not code or not verify_state(state, stored_state):
        logger.warning("OAuth state mismatch; rejecting callback")
        return failed

    try:
        grant = await oauth.exchange_code(code)
    except DotionError as e:
        logger.error(f"OAuth code exchange failed: {e.message}")
        return failed

    response = RedirectResponse("/", status_code=307)
    response.delete_cookie(OAUTH_STATE_COOKIE, path="/")
    get_session(request).issue(response, grant)
    return response


@google_router.get("/session", response_model=SessionResponse)
async def google_session(request: Request):
    """Whether the caller has a valid Google session."""
    valid = get_session(request).valid_session()
    return SessionResponse(
        authenticated=valid is not None,
        expires_at=valid.expires_at if valid else None,
    )


@google_router.post("/refresh", response_model=SessionResponse)
async def google_refresh(request: Request, response: Response):
    """Renew the access token with the stored refresh token."""
    renewed = await get_session(request).refresh(response, _oauth(request))
    return SessionResponse(authenticated=True, expires_at=renewed.expires_at)


@google_router.post("/logout")
async def google_logout(request: Request):
    """Destroy the session and return to the app."""
    response = RedirectResponse("/", status_code=303)
    get_session(request).clear(response)
    return response


# ============================================================================
# Desktop Apps
# ============================================================================

@apps_router.get("/running", response_model=RunningAppsResponse)
async def running_apps(request: Request):
    """Foreground applications (empty when desktop control is off)."""
    controller = request.app.state.app_controller
    if controller is None:
        return RunningAppsResponse(enabled=False, apps=[])

    loop = asyncio.get_running_loop()
    apps = await loop.run_in_executor(None, controller.list_running)
    return RunningAppsResponse(enabled=True, apps=apps)


def get_all_routers() -> List[APIRouter]:
    """Get all API routers."""
    return [
        chat_router,
        calendar_router,
        google_router,
        apps_router,
    ]

"""
Pydantic Models for the Dotion API.

Defines request/response schemas for the HTTP endpoints.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ============================================================================
# Chat Models
# ============================================================================

class ChatMessageModel(BaseModel):
    """One message of the client's conversation log."""
    role: str = Field(..., min_length=1)
    content: Optional[str] = ""
    toolData: Optional[Dict[str, Any]] = None

    class Config:
        extra = "ignore"


class ChatRequest(BaseModel):
    """Chat request body."""
    messages: List[ChatMessageModel] = Field(..., min_length=1)
    calendarEvents: List[Dict[str, Any]] = Field(default_factory=list)


# ============================================================================
# Calendar Models
# ============================================================================

class EventRequest(BaseModel):
    """
    Calendar mutation body (POST, PUT, DELETE).

    Fields that are not sent stay unset, so PUT is a true partial update.
    """
    eventId: Optional[str] = None
    summary: Optional[str] = None
    description: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    location: Optional[str] = None

    class Config:
        extra = "ignore"


class MutationResponse(BaseModel):
    """Result of a calendar mutation."""
    success: bool
    eventId: Optional[str] = None


class CalendarEventModel(BaseModel):
    """A calendar event as listed for the client."""
    id: str
    summary: str
    start: str
    end: Optional[str] = None
    location: str = ""
    colorId: str = "0"


class CalendarDayModel(BaseModel):
    """A projected calendar day."""
    label: str
    date: str
    isToday: bool
    events: List[CalendarEventModel] = Field(default_factory=list)


class CalendarResponse(BaseModel):
    """Calendar window response."""
    timeZone: str
    days: List[CalendarDayModel]


# ============================================================================
# Session / Misc Models
# ============================================================================

class SessionResponse(BaseModel):
    """Current Google session state."""
    authenticated: bool
    expires_at: Optional[float] = None


class RunningAppsResponse(BaseModel):
    """Foreground applications."""
    enabled: bool
    apps: List[str] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    service: str
    version: str
    missing_config: List[str] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Error response."""
    error: str

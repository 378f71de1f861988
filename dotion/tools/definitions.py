"""
Function-call schemas offered to the chat model.

Calendar tools are only offered to an authenticated session; app control
only when desktop control is enabled.
"""

from __future__ import annotations

from typing import Any, Dict, List

# Tool names
CHANGE_VIEW = "change_view"
PROPOSE_SLOTS = "propose_slots"
CREATE_EVENT = "create_calendar_event"
UPDATE_EVENT = "update_calendar_event"
DELETE_EVENT = "delete_calendar_event"
MANAGE_APP = "manage_app"

APP_ACTIONS = ["launch", "quit", "minimize", "focus"]


def _function(name: str, description: str, parameters: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": parameters,
        },
    }


CALENDAR_TOOLS: List[Dict[str, Any]] = [
    _function(
        CHANGE_VIEW,
        "Changes the user's calendar view to a specific date, mode, or zoom level. "
        "Use this when the user mentions looking at a future date (e.g., \"next week\", "
        "\"in 2 weeks\") or wants to see a different view (day, week).",
        {
            "type": "object",
            "properties": {
                "date": {"type": "string", "description": "Target date in ISO 8601 format (YYYY-MM-DD)"},
                "viewMode": {"type": "number", "description": "Number of days to show (1, 2, 3, or 7)"},
                "zoomLevel": {"type": "number", "description": "Zoom level (0.5 to 2.0)"},
            },
        },
    ),
    _function(
        PROPOSE_SLOTS,
        "VITAL: You MUST use this tool whenever you want to suggest time slots to the user. "
        "The user CANNOT see slots unless you use this tool. Use this for requests like "
        "\"when can I...\", \"find time for...\", \"suggest a time\".",
        {
            "type": "object",
            "properties": {
                "slots": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "start": {"type": "string", "description": "ISO 8601 start time"},
                            "end": {"type": "string", "description": "ISO 8601 end time"},
                            "label": {
                                "type": "string",
                                "description": "Short context (e.g. \"After meeting\", \"Morning slot\")",
                            },
                        },
                        "required": ["start", "end"],
                    },
                },
            },
            "required": ["slots"],
        },
    ),
    _function(
        CREATE_EVENT,
        "Create a new event on the user's Google Calendar. Use this when the user asks "
        "to add, create, or schedule an event.",
        {
            "type": "object",
            "properties": {
                "summary": {"type": "string", "description": "The title/name of the event"},
                "start": {
                    "type": "string",
                    "description": "Start time in ISO 8601 format (e.g., 2026-01-27T14:00:00), "
                                   "or YYYY-MM-DD for an all-day event",
                },
                "end": {
                    "type": "string",
                    "description": "End time in ISO 8601 format (e.g., 2026-01-27T15:00:00)",
                },
                "description": {"type": "string", "description": "Optional description or notes for the event"},
                "location": {"type": "string", "description": "Optional location of the event"},
            },
            "required": ["summary", "start"],
        },
    ),
    _function(
        UPDATE_EVENT,
        "Update an existing event on the user's Google Calendar. Use this when the user "
        "asks to modify, change, or reschedule an event.",
        {
            "type": "object",
            "properties": {
                "eventId": {"type": "string", "description": "The ID of the event to update"},
                "summary": {"type": "string", "description": "New title/name of the event"},
                "start": {"type": "string", "description": "New start time in ISO 8601 format"},
                "end": {"type": "string", "description": "New end time in ISO 8601 format"},
                "description": {"type": "string", "description": "New description or notes"},
                "location": {"type": "string", "description": "New location"},
            },
            "required": ["eventId"],
        },
    ),
    _function(
        DELETE_EVENT,
        "Delete an event from the user's Google Calendar. Use this when the user asks "
        "to remove, delete, or cancel an event.",
        {
            "type": "object",
            "properties": {
                "eventId": {"type": "string", "description": "The ID of the event to delete"},
            },
            "required": ["eventId"],
        },
    ),
]


APP_TOOLS: List[Dict[str, Any]] = [
    _function(
        MANAGE_APP,
        "Launch, quit, minimize, or focus a desktop application. Use this when the user "
        "asks to open, close, hide, or switch to an app.",
        {
            "type": "object",
            "properties": {
                "appName": {"type": "string", "description": "Application name (e.g., \"Spotify\", \"Messages\")"},
                "action": {"type": "string", "enum": APP_ACTIONS, "description": "What to do with the app"},
            },
            "required": ["appName", "action"],
        },
    ),
]


def tools_for(authenticated: bool, desktop_enabled: bool = False) -> List[Dict[str, Any]]:
    """
    Tool schemas to send with a completion request.

    Args:
        authenticated: The caller has a valid Google session.
        desktop_enabled: Desktop app control is available.

    Returns:
        List of tool definitions (possibly empty).
    """
    tools: List[Dict[str, Any]] = []
    if authenticated:
        tools.extend(CALENDAR_TOOLS)
    if desktop_enabled:
        tools.extend(APP_TOOLS)
    return tools

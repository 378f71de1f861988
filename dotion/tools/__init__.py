"""Calendar tools and tool-call execution for Dotion."""

from .calendar import CalendarDay, CalendarEvent, CalendarGateway, CalendarWindow
from .definitions import CALENDAR_TOOLS, tools_for
from .executor import ToolExecutor, ToolOutcome

__all__ = [
    "CalendarGateway",
    "CalendarEvent",
    "CalendarDay",
    "CalendarWindow",
    "CALENDAR_TOOLS",
    "tools_for",
    "ToolExecutor",
    "ToolOutcome",
]

"""
Prompt construction for Dotion chat turns.

Builds the system message (current time, timezone rules, presentation and
tool-usage rules, the visible calendar window) and cleans the client's
message log before it is sent to the model.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from loguru import logger

from .llm import Message
from ..tools.calendar import get_zone, is_date_only


SYSTEM_PROMPT_TEMPLATE = """You are a helpful assistant. The current date and time is: {now}.

IMPORTANT TIMEZONE INFORMATION:
- The user's timezone is: {timezone}
- When creating or updating events, you MUST use ISO 8601 format WITHOUT timezone suffix (e.g., "2026-01-28T15:00:00")
- For all-day events use a plain date (e.g., "2026-01-28")
- The system will automatically apply the {timezone} timezone
- DO NOT use UTC (Z suffix) or timezone offsets in your datetime strings
- When modifying event times, carefully calculate the new times based on the original times shown below

- When suggesting specific time slots to the user (e.g. for a break, meeting, or focused work), you MUST use the 'propose_slots' tool.
- DO NOT just list the slots in your text response. The UI needs the structured data to display interactive options.
- If you say "Here are some options" or "I found some times", you MUST call 'propose_slots' in the same turn.

CRITICAL PRESENTATION STYLE:
- You MUST provide a brief, friendly conversational summary properly answering the user's request.
- When finding slots or events, summarize the context before the UI elements.
- DO NOT list specific times or event details in the text if they are going to be shown in a UI card.
- Assume the user can see the UI cards, so your text should just be a friendly conversational lead-in.
- Be concise and sound like a helpful friend (using words like "I found", "Here are", "Check these out").

CRITICAL TOOL USAGE:
- You CANNOT perform calendar actions (create, update, delete) by text alone.
- You MUST call the corresponding tool ('create_calendar_event', 'update_calendar_event', 'delete_calendar_event') to execute the action.
- If you say "I will update...", "I'm scheduling...", or "I'll delete...", you MUST output the tool call in that SAME response.
- Do NOT say you have done something unless you have successfully called the tool.

CRITICAL UI INTERACTION LOGIC:
- If the user selects a slot (e.g., says "I'll take the slot: ..."), you MUST immediately call 'create_calendar_event' with those details.
- Use the date/time information from the user's message to fill the start/end times.
- Derive a summary from the slot label (e.g. "Nap", "Study Session") or the conversation context.
- Do not ask for confirmation again; just book it."""

SCHEDULE_TEMPLATE = """

Here is the user's upcoming calendar schedule:

{schedule}

You can reference these events when answering questions about the user's schedule. When the user asks to modify or delete an event, use the event ID shown above.

WHEN EXTENDING OR MODIFYING EVENT TIMES:
1. Look at the current start/end times shown above
2. Calculate the new times carefully (e.g., "extend by 15 minutes" means add exactly 15 minutes to the end time)
3. Use the format: YYYY-MM-DDTHH:MM:SS (e.g., "2026-01-28T16:15:00")
4. Do NOT include timezone offsets or Z suffix"""

CALENDAR_ACCESS_NOTE = (
    "\n\nYou have access to manage the user's Google Calendar. You can create new events, "
    "update existing events, or delete events using the provided functions."
)

DESKTOP_ACCESS_NOTE = (
    "\n\nYou can also launch, quit, minimize, or focus desktop applications with the "
    "'manage_app' tool when the user asks."
)

EVENT_CONTEXT_TEMPLATE = (
    "\n\n[SYSTEM CONTEXT: I just executed a calendar operation. Event ID: {event_id}. "
    "Summary: \"{summary}\". Time: {start} to {end}. If the user asks to \"move\", "
    "\"change\", or \"delete\" this, use this ID.]"
)


def _clock(value: datetime) -> str:
    """12-hour clock, e.g. "3:05 PM"."""
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {suffix}"


def format_now(now: datetime) -> str:
    """E.g. "Wednesday, January 28, 2026 at 3:05 PM"."""
    return f"{now:%A}, {now:%B} {now.day}, {now.year} at {_clock(now)}"


def _event_time(value: Optional[str], timezone: str) -> str:
    if not value:
        return ""
    if is_date_only(value):
        return "all day"
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(get_zone(timezone))
    return _clock(parsed)


def format_schedule(calendar_days: Sequence[Mapping[str, Any]], timezone: str) -> str:
    """Render the visible calendar window, one block per day."""
    blocks = []
    for day in calendar_days:
        lines = []
        for event in day.get("events") or []:
            start = _event_time(event.get("start"), timezone)
            end = _event_time(event.get("end"), timezone)
            when = start if not end or end == start else f"{start} - {end}"
            line = f"  - {event.get('summary', 'Untitled')} (ID: {event.get('id', '')}) ({when})"
            if event.get("location"):
                line += f" at {event['location']}"
            lines.append(line)

        body = "\n".join(lines) or "  No events"
        blocks.append(f"{day.get('label', '')} ({day.get('date', '')}):\n{body}")
    return "\n\n".join(blocks)


def build_system_message(
    now: datetime,
    timezone: str,
    calendar_days: Optional[Sequence[Mapping[str, Any]]] = None,
    authenticated: bool = False,
    desktop_enabled: bool = False,
) -> str:
    """
    Build the system message for one turn.

    Args:
        now: Current time (converted to the configured timezone).
        timezone: Configured IANA timezone.
        calendar_days: The client's visible calendar window.
        authenticated: Whether calendar tools are offered.
        desktop_enabled: Whether manage_app is offered.
    """
    local_now = now.astimezone(get_zone(timezone)) if now.tzinfo else now
    message = SYSTEM_PROMPT_TEMPLATE.format(now=format_now(local_now), timezone=timezone)

    if calendar_days:
        message += SCHEDULE_TEMPLATE.format(schedule=format_schedule(calendar_days, timezone))
    if authenticated:
        message += CALENDAR_ACCESS_NOTE
    if desktop_enabled:
        message += DESKTOP_ACCESS_NOTE
    return message


def _event_context(tool_data: Mapping[str, Any]) -> str:
    kind = tool_data.get("type")
    action = tool_data.get("action") if kind == "event" else kind
    if action not in ("create", "update"):
        return ""
    return EVENT_CONTEXT_TEMPLATE.format(
        event_id=tool_data.get("eventId"),
        summary=tool_data.get("summary"),
        start=tool_data.get("start"),
        end=tool_data.get("end"),
    )


def preprocess_messages(messages: Sequence[Mapping[str, Any]]) -> List[Message]:
    """
    Convert the client's message log into model messages.

    Assistant messages carrying an event card get a bracketed context note
    naming the event id; card data itself is never sent to the model.
    """
    processed: List[Message] = []
    for raw in messages:
        role = raw.get("role")
        if role not in ("user", "assistant"):
            logger.warning(f"Dropping message with unsupported role: {role!r}")
            continue

        content = raw.get("content") or ""
        tool_data = raw.get("toolData")
        if role == "assistant" and isinstance(tool_data, Mapping):
            content += _event_context(tool_data)

        processed.append(Message(role=role, content=content))
    return processed


def build_messages(
    messages: Sequence[Mapping[str, Any]],
    now: datetime,
    timezone: str,
    calendar_days: Optional[Sequence[Mapping[str, Any]]] = None,
    authenticated: bool = False,
    desktop_enabled: bool = False,
) -> List[Message]:
    """System message followed by the preprocessed conversation."""
    system = build_system_message(now, timezone, calendar_days, authenticated, desktop_enabled)
    return [Message(role="system", content=system)] + preprocess_messages(messages)

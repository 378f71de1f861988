"""
Google Calendar Gateway for Dotion.

Thin adapter translating authenticated Google Calendar v3 calls into
domain-shaped event and day records.

Features:
- List events for a window (recurrences expanded, ordered by start)
- Create events (end defaults to start)
- True partial updates (missing start/end filled from the current event)
- Delete events
- Day-bucketed projection of a window

Date handling: a bare date (YYYY-MM-DD) is always sent as an all-day value;
timestamps are sent as local wall time plus the single configured timezone.

API Documentation: https://developers.google.com/calendar/api/v3/reference
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from loguru import logger

from ..core.errors import Unauthenticated, UpstreamError, ValidationError


_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Fields a partial update may touch
UPDATABLE_FIELDS = ("summary", "description", "location", "start", "end")


def get_zone(timezone: str) -> ZoneInfo:
    """Resolve a configured IANA timezone name."""
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationError(f"Unknown timezone: {timezone}") from e


def is_date_only(value: str) -> bool:
    return bool(_DATE_ONLY.match(value.strip()))


def default_end(start: str) -> str:
    """End used for a new event created without one."""
    start = start.strip()
    if is_date_only(start):
        # All-day end dates are exclusive
        return (date.fromisoformat(start) + timedelta(days=1)).isoformat()
    return start


def _parse_timestamp(value: str) -> datetime:
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    return datetime.fromisoformat(normalized)


def to_google_time(value: str, timezone: str) -> Dict[str, str]:
    """
    Convert an ISO date or timestamp into a Google event boundary.

    Args:
        value: "YYYY-MM-DD" for all-day, or an ISO 8601 timestamp.
        timezone: The configured IANA timezone.

    Returns:
        {"date": ...} or {"dateTime": ..., "timeZone": ...}

    Raises:
        ValidationError: The value is not a date or timestamp.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Date/time value must be a non-empty string")

    zone = get_zone(timezone)
    value = value.strip()
    if is_date_only(value):
        try:
            date.fromisoformat(value)
        except ValueError as e:
            raise ValidationError(f"Invalid date: {value}") from e
        return {"date": value}

    try:
        parsed = _parse_timestamp(value)
    except ValueError as e:
        raise ValidationError(f"Invalid date/time: {value}") from e

    # Offsets are folded into the configured zone so no UTC suffix is sent
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(zone).replace(tzinfo=None)

    return {"dateTime": parsed.isoformat(timespec="seconds"), "timeZone": timezone}


def _boundary_instant(boundary: Mapping[str, Any], timezone: str) -> Optional[datetime]:
    """Aware instant for a dateTime boundary; None for all-day."""
    raw = boundary.get("dateTime")
    if not raw:
        return None
    parsed = _parse_timestamp(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=get_zone(boundary.get("timeZone") or timezone))
    return parsed


def _check_range(start: Mapping[str, Any], end: Mapping[str, Any], timezone: str) -> None:
    if ("date" in start) != ("date" in end):
        raise ValidationError("start and end must both be dates or both be timestamps")

    if "date" in start:
        if date.fromisoformat(end["date"]) < date.fromisoformat(start["date"]):
            raise ValidationError("end must not be before start")
        return

    start_at = _boundary_instant(start, timezone)
    end_at = _boundary_instant(end, timezone)
    if start_at and end_at and end_at < start_at:
        raise ValidationError("end must not be before start")


def _copy_boundary(boundary: Mapping[str, Any], timezone: str) -> Dict[str, str]:
    """Reuse an existing event boundary verbatim."""
    if boundary.get("date"):
        return {"date": boundary["date"]}
    return {
        "dateTime": boundary["dateTime"],
        "timeZone": boundary.get("timeZone") or timezone,
    }


def boundary_value(boundary: Optional[Mapping[str, Any]]) -> Optional[str]:
    """The dateTime or date string of a provider boundary."""
    if not boundary:
        return None
    return boundary.get("dateTime") or boundary.get("date")


@dataclass
class CalendarEvent:
    """Represents a calendar event."""
    id: str
    summary: str
    start: str  # ISO timestamp in the configured zone, or YYYY-MM-DD
    end: Optional[str]
    location: str = ""
    color_id: str = "0"
    description: Optional[str] = None
    is_all_day: bool = False
    date_key: str = ""

    @classmethod
    def from_google_event(cls, event: Dict[str, Any], timezone: str) -> Optional["CalendarEvent"]:
        """
        Create CalendarEvent from a Google Calendar API item.

        Returns None for items without a start.
        """
        zone = get_zone(timezone)
        start_data = event.get("start") or {}
        end_data = event.get("end") or {}

        if start_data.get("dateTime"):
            start_at = _parse_timestamp(start_data["dateTime"])
            if start_at.tzinfo is None:
                start_at = start_at.replace(tzinfo=zone)
            start_at = start_at.astimezone(zone)

            end = None
            if end_data.get("dateTime"):
                end_at = _parse_timestamp(end_data["dateTime"])
                if end_at.tzinfo is None:
                    end_at = end_at.replace(tzinfo=zone)
                end = end_at.astimezone(zone).isoformat()

            return cls(
                id=event.get("id") or "",
                summary=event.get("summary") or "Untitled",
                start=start_at.isoformat(),
                end=end,
                location=event.get("location") or "",
                color_id=event.get("colorId") or "0",
                description=event.get("description"),
                is_all_day=False,
                date_key=start_at.date().isoformat(),
            )

        if start_data.get("date"):
            # All-day: keep the bare date
            return cls(
                id=event.get("id") or "",
                summary=event.get("summary") or "Untitled",
                start=start_data["date"],
                end=end_data.get("date"),
                location=event.get("location") or "",
                color_id=event.get("colorId") or "0",
                description=event.get("description"),
                is_all_day=True,
                date_key=start_data["date"],
            )

        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "summary": self.summary,
            "start": self.start,
            "end": self.end,
            "location": self.location,
            "colorId": self.color_id,
        }


@dataclass
class CalendarDay:
    """A single day of the projected calendar window."""
    label: str
    date: str
    is_today: bool
    events: List[CalendarEvent] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "date": self.date,
            "isToday": self.is_today,
            "events": [e.to_dict() for e in self.events],
        }


@dataclass
class CalendarWindow:
    """Projected window returned by the calendar endpoint."""
    time_zone: str
    days: List[CalendarDay]

    def to_dict(self) -> Dict[str, Any]:
        return {"timeZone": self.time_zone, "days": [d.to_dict() for d in self.days]}


def day_label(day: date) -> str:
    """Short label, e.g. "Mon 27"."""
    return f"{day.strftime('%a')} {day.day}"


def week_start_for(day: date, week_start: str = "monday") -> date:
    """First day of the week containing `day`."""
    if week_start == "sunday":
        return day - timedelta(days=(day.weekday() + 1) % 7)
    return day - timedelta(days=day.weekday())


def build_calendar_days(
    events: List[CalendarEvent],
    start: date,
    days: int,
    today: date,
) -> List[CalendarDay]:
    """
    Bucket events by their local start date.

    Events keep the provider's order within a day.
    """
    result = []
    for offset in range(days):
        current = start + timedelta(days=offset)
        key = current.isoformat()
        result.append(CalendarDay(
            label=day_label(current),
            date=key,
            is_today=current == today,
            events=[e for e in events if e.date_key == key],
        ))
    return result


class CalendarGateway:
    """
    Google Calendar gateway bound to one access token.

    The Google client is synchronous; every request runs in the default
    executor so the event loop is never blocked.
    """

    def __init__(
        self,
        access_token: str,
        calendar_id: str,
        timezone: str = "UTC",
        service: Any = None,
        max_results: int = 250,
        week_start: str = "monday",
    ):
        """
        Initialize the gateway.

        Args:
            access_token: OAuth access token from a valid session.
            calendar_id: Calendar to operate on.
            timezone: The configured IANA timezone.
            service: Prebuilt Calendar API resource (built lazily if omitted).
            max_results: Page size for list requests.
            week_start: "monday" or "sunday" for the default window.
        """
        if not access_token:
            raise Unauthenticated()
        self.access_token = access_token
        self.calendar_id = calendar_id
        self.timezone = timezone
        self.max_results = max_results
        self.week_start = week_start
        self._service = service

    def _get_service(self):
        """Get or create Calendar API service."""
        if self._service is None:
            credentials = Credentials(token=self.access_token)
            self._service = build("calendar", "v3", credentials=credentials, cache_discovery=False)
        return self._service

    async def _execute(self, action: str, make_request: Callable[[Any], Any]) -> Any:
        service = self._get_service()
        loop = asyncio.get_running_loop()

        try:
            return await loop.run_in_executor(None, lambda: make_request(service).execute())
        except HttpError as e:
            status = getattr(e.resp, "status", None)
            status = int(status) if status is not None else None
            logger.error(f"Calendar API error during {action} ({status}): {e}")
            if status == 401:
                raise Unauthenticated("Google rejected the access token") from e
            raise UpstreamError(
                f"Failed to {action}",
                provider="google-calendar",
                provider_status=status,
            ) from e
        except (Unauthenticated, UpstreamError):
            raise
        except Exception as e:
            logger.error(f"Calendar request failed during {action}: {e}")
            raise UpstreamError(f"Failed to {action}", provider="google-calendar") from e

    def _rfc3339(self, value: datetime) -> str:
        if value.tzinfo is None:
            value = value.replace(tzinfo=get_zone(self.timezone))
        return value.isoformat()

    async def list_events(self, time_min: datetime, time_max: datetime) -> List[CalendarEvent]:
        """
        List events overlapping [time_min, time_max).

        Recurring events are expanded and ordered by start time.
        """
        events: List[CalendarEvent] = []
        page_token: Optional[str] = None

        while True:
            params = {
                "calendarId": self.calendar_id,
                "timeMin": self._rfc3339(time_min),
                "timeMax": self._rfc3339(time_max),
                "singleEvents": True,
                "orderBy": "startTime",
                "timeZone": self.timezone,
                "maxResults": self.max_results,
            }
            if page_token:
                params["pageToken"] = page_token

            result = await self._execute(
                "load calendar events",
                lambda service, params=params: service.events().list(**params),
            )

            for item in result.get("items", []):
                try:
                    event = CalendarEvent.from_google_event(item, self.timezone)
                except ValueError as e:
                    logger.warning(f"Failed to parse event {item.get('id')}: {e}")
                    continue
                if event is not None:
                    events.append(event)

            page_token = result.get("nextPageToken")
            if not page_token:
                break

        return events

    async def get_event(self, event_id: str) -> Dict[str, Any]:
        """Fetch the raw provider event (undo snapshot)."""
        if not event_id:
            raise ValidationError("eventId is required")
        return await self._execute(
            "fetch event",
            lambda service: service.events().get(calendarId=self.calendar_id, eventId=event_id),
        )

    async def create_event(
        self,
        summary: Optional[str],
        start: Optional[str],
        end: Optional[str] = None,
        description: Optional[str] = None,
        location: Optional[str] = None,
    ) -> str:
        """
        Create a new calendar event.

        An omitted end makes a zero-duration event (end = start). For an
        all-day start the end becomes the following day, since Google treats
        all-day end dates as exclusive.

        Returns:
            The provider-assigned event id.

        Raises:
            ValidationError: summary or start missing.
        """
        if not summary or not start:
            raise ValidationError("summary and start are required")

        start_boundary = to_google_time(start, self.timezone)
        end_boundary = to_google_time(end or default_end(start), self.timezone)

        _check_range(start_boundary, end_boundary, self.timezone)

        body: Dict[str, Any] = {
            "summary": summary,
            "start": start_boundary,
            "end": end_boundary,
        }
        if description is not None:
            body["description"] = description
        if location is not None:
            body["location"] = location

        created = await self._execute(
            "create event",
            lambda service: service.events().insert(calendarId=self.calendar_id, body=body),
        )
        logger.info(f"Created event {created.get('id')}: {summary}")
        return created.get("id", "")

    async def update_event(
        self,
        event_id: str,
        changes: Mapping[str, Any],
        existing: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Patch an existing event.

        Only keys present in `changes` are sent; a text field present with
        None is cleared. When exactly one of start/end is given the other is
        taken from the current event.

        Args:
            event_id: Event to update.
            changes: Partial fields (summary, description, location, start, end).
            existing: Pre-fetched snapshot, to avoid a second fetch.

        Returns:
            The event id.
        """
        if not event_id:
            raise ValidationError("eventId is required")

        body: Dict[str, Any] = {}
        for key in ("summary", "description", "location"):
            if key in changes:
                body[key] = changes[key]

        start = changes.get("start")
        end = changes.get("end")
        if start is not None or end is not None:
            if (start is None or end is None) and existing is None:
                existing = await self.get_event(event_id)

            if start is not None:
                body["start"] = to_google_time(start, self.timezone)
            else:
                body["start"] = _copy_boundary(existing.get("start") or {}, self.timezone)

            if end is not None:
                body["end"] = to_google_time(end, self.timezone)
            else:
                body["end"] = _copy_boundary(existing.get("end") or {}, self.timezone)

            _check_range(body["start"], body["end"], self.timezone)

        if not body:
            raise ValidationError("No fields to update")

        updated = await self._execute(
            "update event",
            lambda service: service.events().patch(
                calendarId=self.calendar_id,
                eventId=event_id,
                body=body,
            ),
        )
        logger.info(f"Updated event {event_id}: {sorted(body)}")
        return updated.get("id") or event_id

    async def delete_event(self, event_id: str) -> bool:
        """Delete a calendar event."""
        if not event_id:
            raise ValidationError("eventId is required")
        await self._execute(
            "delete event",
            lambda service: service.events().delete(calendarId=self.calendar_id, eventId=event_id),
        )
        logger.info(f"Deleted event {event_id}")
        return True

    async def get_window(
        self,
        start: Optional[date] = None,
        days: int = 7,
        now: Optional[datetime] = None,
    ) -> CalendarWindow:
        """
        Fetch and project a window of days.

        Args:
            start: First day (default: start of the current week).
            days: Number of days.
            now: Override the current time (tests).
        """
        zone = get_zone(self.timezone)
        now_local = (now or datetime.now(zone)).astimezone(zone)
        today = now_local.date()
        start = start or week_start_for(today, self.week_start)

        time_min = datetime.combine(start, time.min, tzinfo=zone)
        time_max = datetime.combine(start + timedelta(days=days), time.min, tzinfo=zone)

        events = await self.list_events(time_min, time_max)
        return CalendarWindow(
            time_zone=self.timezone,
            days=build_calendar_days(events, start, days, today),
        )

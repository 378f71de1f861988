"""
Shared fixtures and fakes for the Dotion test suite.

- FakeCalendarService: in-memory stand-in for the Google Calendar v3
  resource, normalizing boundaries the way Google does
- FakeChatModel: scripted streaming completion chunks
- FakeAppController: records desktop actions
"""

import copy
import sys
from datetime import datetime, timedelta
from pathlib import Path
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest
from googleapiclient.errors import HttpError

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotion.system.controller import AppController
from dotion.tools.calendar import CalendarGateway


TIMEZONE = "America/Los_Angeles"
NOW_MS = 1_800_000_000_000.0


# ============================================================================
# Google Calendar fake
# ============================================================================

def http_error(status: int, message: str) -> HttpError:
    resp = SimpleNamespace(status=status, reason=message)
    content = ('{"error": {"code": %d, "message": "%s"}}' % (status, message)).encode("utf-8")
    return HttpError(resp, content)


class _Request:
    def __init__(self, fn):
        self._fn = fn

    def execute(self):
        return self._fn()


class _Events:
    def __init__(self, service):
        self.service = service

    def list(self, **params):
        self.service.calls.append(("list", params))
        return _Request(lambda: self.service._list(params))

    def get(self, calendarId, eventId):
        self.service.calls.append(("get", {"calendarId": calendarId, "eventId": eventId}))
        return _Request(lambda: copy.deepcopy(self.service._require(eventId)))

    def insert(self, calendarId, body):
        self.service.calls.append(("insert", {"calendarId": calendarId, "body": copy.deepcopy(body)}))
        return _Request(lambda: self.service._insert(body))

    def patch(self, calendarId, eventId, body):
        self.service.calls.append(("patch", {"calendarId": calendarId, "eventId": eventId, "body": copy.deepcopy(body)}))
        return _Request(lambda: self.service._patch(eventId, body))

    def delete(self, calendarId, eventId):
        self.service.calls.append(("delete", {"calendarId": calendarId, "eventId": eventId}))
        return _Request(lambda: self.service._delete(eventId))


class FakeCalendarService:
    """In-memory Google Calendar v3 `service` object."""

    def __init__(self, timezone: str = TIMEZONE):
        self.timezone = timezone
        self.store = {}
        self.calls = []
        self._next_id = 1

    def events(self):
        return _Events(self)

    def calls_of(self, kind):
        return [params for name, params in self.calls if name == kind]

    # -- helpers -------------------------------------------------------

    def _normalize(self, boundary):
        if boundary.get("date"):
            return {"date": boundary["date"]}
        tz = boundary.get("timeZone") or self.timezone
        value = datetime.fromisoformat(boundary["dateTime"].replace("Z", "+00:00"))
        if value.tzinfo is None:
            value = value.replace(tzinfo=ZoneInfo(tz))
        return {"dateTime": value.isoformat(), "timeZone": tz}

    def _instant(self, boundary):
        if boundary.get("date"):
            day = datetime.fromisoformat(boundary["date"])
            return day.replace(tzinfo=ZoneInfo(self.timezone))
        return datetime.fromisoformat(boundary["dateTime"])

    def _require(self, event_id):
        if event_id not in self.store:
            raise http_error(404, "Not Found")
        return self.store[event_id]

    def _list(self, params):
        time_min = datetime.fromisoformat(params["timeMin"])
        time_max = datetime.fromisoformat(params["timeMax"])
        items = [
            copy.deepcopy(event)
            for event in self.store.values()
            if time_min <= self._instant(event["start"]) < time_max
        ]
        items.sort(key=lambda e: self._instant(e["start"]))
        return {"items": items}

    def _insert(self, body):
        event_id = f"evt{self._next_id}"
        self._next_id += 1
        event = {"id": event_id, "status": "confirmed"}
        for key, value in body.items():
            if key in ("start", "end"):
                event[key] = self._normalize(value)
            elif value is not None:
                event[key] = value
        self.store[event_id] = event
        return copy.deepcopy(event)

    def _patch(self, event_id, body):
        event = self._require(event_id)
        for key, value in body.items():
            if key in ("start", "end"):
                event[key] = self._normalize(value)
            elif value is None:
                event.pop(key, None)
            else:
                event[key] = value
        return copy.deepcopy(event)

    def _delete(self, event_id):
        self._require(event_id)
        del self.store[event_id]
        return ""

    def add(self, summary, start, end=None, **fields):
        """Seed an event directly."""
        boundary = {"date": start} if len(start) == 10 else {"dateTime": start, "timeZone": self.timezone}
        end = end or start
        end_boundary = {"date": end} if len(end) == 10 else {"dateTime": end, "timeZone": self.timezone}
        created = self._insert({"summary": summary, "start": boundary, "end": end_boundary, **fields})
        self.calls.clear()
        return created


# ============================================================================
# Model fake
# ============================================================================

def text_chunk(content):
    return {"choices": [{"index": 0, "delta": {"content": content}}]}


def tool_chunk(index, name=None, arguments=None, call_id=None):
    fragment = {"index": index, "type": "function", "function": {}}
    if call_id:
        fragment["id"] = call_id
    if name is not None:
        fragment["function"]["name"] = name
    if arguments is not None:
        fragment["function"]["arguments"] = arguments
    return {"choices": [{"index": 0, "delta": {"tool_calls": [fragment]}}]}


class FakeChatModel:
    """Scripted chat-completions client."""

    def __init__(self, chunks=None, fail_after=None, available=True):
        self.chunks = chunks or []
        self.fail_after = fail_after
        self.available = available
        self.requests = []

    def is_available(self):
        return self.available

    async def astream_chunks(self, messages, tools=None):
        self.requests.append({"messages": messages, "tools": tools})
        for i, chunk in enumerate(self.chunks):
            if self.fail_after is not None and i >= self.fail_after:
                from dotion.core.errors import UpstreamError
                raise UpstreamError("Chat completion request failed", provider="openai")
            yield chunk


# ============================================================================
# Desktop fake
# ============================================================================

class FakeAppController(AppController):
    """Records actions instead of touching the OS."""

    def __init__(self, allowed_apps=None, running=None, fail=False):
        super().__init__(allowed_apps)
        self.actions = []
        self.running = running or ["Finder", "Spotify"]
        self.fail = fail

    def _record(self, action, app_name):
        self.actions.append((action, app_name))
        if self.fail:
            return False, f"Could not {action} {app_name}"
        return True, f"{action} {app_name}"

    def launch(self, app_name):
        return self._record("launch", app_name)

    def quit(self, app_name):
        return self._record("quit", app_name)

    def minimize(self, app_name):
        return self._record("minimize", app_name)

    def focus(self, app_name):
        return self._record("focus", app_name)

    def list_running(self):
        return list(self.running)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def fake_service():
    return FakeCalendarService()


@pytest.fixture
def gateway(fake_service):
    return CalendarGateway(
        access_token="test-token",
        calendar_id="primary",
        timezone=TIMEZONE,
        service=fake_service,
    )


@pytest.fixture
def session_cookies():
    """Cookies of a session valid for another hour at NOW_MS."""
    return {
        "google_access_token": "test-token",
        "google_access_token_expires_at": str(int(NOW_MS + 3600 * 1000)),
    }


def fixed_clock():
    return NOW_MS


def local_day(offset_days=0):
    """A date string relative to 2026-01-26 (a Monday)."""
    return (datetime(2026, 1, 26) + timedelta(days=offset_days)).date().isoformat()

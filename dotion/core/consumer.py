"""
Client Stream Consumer for Dotion.

Incrementally decodes the multiplexed chat stream back into conversation
state: text deltas grow the trailing assistant message, tool results attach
as cards, refresh signals trigger a calendar re-fetch, and [DONE] closes the
turn. Malformed fragments are logged and skipped.

Also provides `ChatClient`, an httpx client for the Dotion HTTP API.
"""

from __future__ import annotations

import asyncio
import codecs
import inspect
import json
from dataclasses import dataclass, field
from datetime import date
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Set, Union

import httpx
from loguru import logger

from .errors import ParseError, UpstreamError


@dataclass
class ChatMessage:
    """A conversation message as the client sees it."""
    role: str  # "user" or "assistant"
    content: str = ""
    tool_data: Optional[Dict[str, Any]] = None
    closed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_data is not None:
            data["toolData"] = self.tool_data
        return data


@dataclass
class Conversation:
    """In-memory ordered conversation log."""
    messages: List[ChatMessage] = field(default_factory=list)

    def add_user(self, content: str) -> ChatMessage:
        self.close_turn()
        message = ChatMessage(role="user", content=content, closed=True)
        self.messages.append(message)
        return message

    def trailing_open_assistant(self) -> Optional[ChatMessage]:
        if self.messages and self.messages[-1].role == "assistant" and not self.messages[-1].closed:
            return self.messages[-1]
        return None

    def open_assistant(self) -> ChatMessage:
        """The trailing open assistant message, created if needed."""
        message = self.trailing_open_assistant()
        if message is None:
            message = ChatMessage(role="assistant")
            self.messages.append(message)
        return message

    def close_turn(self) -> None:
        """Freeze every message of the current turn."""
        for message in self.messages:
            message.closed = True

    def to_payload(self) -> List[Dict[str, Any]]:
        return [m.to_dict() for m in self.messages]


RefreshCallback = Callable[[], Any]


class StreamConsumer:
    """
    Decoder for one streamed turn.

    Usage:
        consumer = StreamConsumer(conversation, on_refresh=reload_calendar)
        await consumer.consume(response.aiter_bytes())
    """

    def __init__(self, conversation: Conversation, on_refresh: Optional[RefreshCallback] = None):
        """
        Initialize the consumer.

        Args:
            conversation: Log to apply events to.
            on_refresh: Called on every refresh signal. Coroutine functions
                are scheduled without being awaited.
        """
        self.conversation = conversation
        self.on_refresh = on_refresh

        self.done = False
        self.errors: List[ParseError] = []
        self.refresh_count = 0
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._tasks: Set[asyncio.Task] = set()

    @property
    def parse_errors(self) -> int:
        return len(self.errors)

    def feed_bytes(self, data: Union[bytes, str]) -> bool:
        """
        Feed raw stream bytes; lines may be split anywhere.

        Returns:
            True once the end-of-stream marker has been seen.
        """
        if self.done:
            return True
        if isinstance(data, bytes):
            data = self._decoder.decode(data)

        self._buffer += data
        while "\n" in self._buffer and not self.done:
            line, self._buffer = self._buffer.split("\n", 1)
            self.feed_line(line)
        return self.done

    def feed_line(self, line: str) -> bool:
        """Apply a single SSE line."""
        if self.done:
            return True

        trimmed = line.strip()
        if not trimmed or not trimmed.startswith("data:"):
            return False

        data = trimmed[5:].strip()
        if data == "[DONE]":
            self._finish()
            return True

        try:
            payload = json.loads(data)
            if not isinstance(payload, dict):
                raise ValueError("event is not a JSON object")
            self._apply(payload)
        except ValueError as e:
            error = ParseError(f"Stream parse error: {e}", fragment=data)
            self.errors.append(error)
            logger.warning(f"{error.message} ({data[:80]!r})")
        return False

    def _apply(self, payload: Dict[str, Any]) -> None:
        if payload.get("refresh_calendar"):
            self._refresh()
            return

        tool_data = payload.get("tool_result_data")
        if isinstance(tool_data, dict):
            message = self.conversation.trailing_open_assistant()
            if message is None or message.tool_data is not None:
                # One card per message
                message = ChatMessage(role="assistant")
                self.conversation.messages.append(message)
            message.tool_data = tool_data
            return

        choices = payload.get("choices") or []
        if not isinstance(choices, list) or (choices and not isinstance(choices[0], dict)):
            raise ValueError("choices is not a list of objects")
        if not choices:
            return

        delta = choices[0].get("delta") or {}
        if not isinstance(delta, dict):
            raise ValueError("delta is not an object")
        content = delta.get("content")
        if content is not None and not isinstance(content, str):
            raise ValueError("delta content is not a string")
        if content:
            self.conversation.open_assistant().content += content

    def _refresh(self) -> None:
        self.refresh_count += 1
        if self.on_refresh is None:
            return

        result = self.on_refresh()
        if not inspect.isawaitable(result):
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error("Calendar refresh needs a running event loop")
            if inspect.iscoroutine(result):
                result.close()
            return

        # Fire and forget; only the calendar view depends on it
        task = asyncio.ensure_future(result, loop=loop)
        self._tasks.add(task)
        task.add_done_callback(self._refresh_done)

    def _refresh_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Calendar refresh failed: {task.exception()}")

    def _finish(self) -> None:
        self.done = True
        self._buffer = ""
        self.conversation.close_turn()

    async def consume(self, stream: AsyncIterator[Union[bytes, str]]) -> Conversation:
        """Consume a whole stream, stopping at [DONE]."""
        async for data in stream:
            if self.feed_bytes(data):
                break

        if not self.done and self._buffer.strip():
            self.feed_line(self._buffer)
            self._buffer = ""
        if not self.done:
            logger.warning("Stream ended without an end-of-stream marker")
            self.conversation.close_turn()
        return self.conversation

    async def wait_for_refreshes(self) -> None:
        """Await any refresh callbacks still in flight."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


def undo_request(tool_data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Compensating calendar request for an event card.

    Returns:
        {"method": ..., "json": ...} or None if the card cannot be undone.
    """
    if tool_data.get("type") == "event":
        action = tool_data.get("action")
    else:
        action = tool_data.get("type")

    event_id = tool_data.get("eventId")
    original = tool_data.get("originalEvent") or {}

    def _restore_fields() -> Dict[str, Any]:
        start = original.get("start") or {}
        end = original.get("end") or {}
        return {
            "summary": original.get("summary"),
            "description": original.get("description") or None,
            "location": original.get("location") or None,
            "start": start.get("dateTime") or start.get("date"),
            "end": end.get("dateTime") or end.get("date"),
        }

    if action == "create" and event_id:
        return {"method": "DELETE", "json": {"eventId": event_id}}
    if action == "update" and event_id and original:
        return {"method": "PUT", "json": {"eventId": event_id, **_restore_fields()}}
    if action == "delete" and original:
        return {"method": "POST", "json": _restore_fields()}
    return None


class ChatClient:
    """
    HTTP client for a running Dotion server.

    Cookies set by the server (the Google session) persist on the client.
    """

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:3000",
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ):
        self._client = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch_calendar(self, start: Optional[date] = None, days: Optional[int] = None) -> Dict[str, Any]:
        """Fetch the calendar window (GET /api/calendar)."""
        params: Dict[str, Any] = {}
        if start is not None:
            params["start"] = start.isoformat()
        if days is not None:
            params["days"] = days

        response = await self._client.get("/api/calendar", params=params)
        if response.status_code != 200:
            raise UpstreamError(
                response.json().get("error", "Failed to load calendar events"),
                provider="dotion",
                provider_status=response.status_code,
            )
        return response.json()

    async def send(
        self,
        conversation: Conversation,
        text: str,
        calendar_days: Optional[List[Dict[str, Any]]] = None,
        on_refresh: Optional[RefreshCallback] = None,
    ) -> StreamConsumer:
        """
        Send a user message and consume the streamed reply into `conversation`.

        Returns:
            The consumer used for the turn.
        """
        conversation.add_user(text)
        payload = {
            "messages": conversation.to_payload(),
            "calendarEvents": calendar_days or [],
        }
        consumer = StreamConsumer(conversation, on_refresh=on_refresh)

        async with self._client.stream("POST", "/api/chat", json=payload) as response:
            if response.status_code != 200:
                await response.aread()
                conversation.messages.append(
                    ChatMessage(role="assistant", content="Sorry, something went wrong.", closed=True)
                )
                raise UpstreamError(
                    "Chat request failed",
                    provider="dotion",
                    provider_status=response.status_code,
                )
            await consumer.consume(response.aiter_bytes())

        return consumer

    async def undo(self, tool_data: Dict[str, Any]) -> Dict[str, Any]:
        """Revert the calendar change behind an event card."""
        request = undo_request(tool_data)
        if request is None:
            raise ValueError("This card cannot be undone")

        response = await self._client.request(request["method"], "/api/calendar", json=request["json"])
        body = response.json()
        if response.status_code != 200:
            raise UpstreamError(
                body.get("error", "Undo failed"),
                provider="dotion",
                provider_status=response.status_code,
            )
        return body

"""
Tests for the client stream consumer and HTTP chat client.

Run with: pytest tests/test_consumer.py -v
"""

import asyncio
import json
import sys
from datetime import date
from pathlib import Path

import httpx
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotion.core.consumer import ChatClient, Conversation, StreamConsumer, undo_request
from dotion.core.errors import UpstreamError
from dotion.core.streaming import DONE_EVENT, REFRESH_EVENT, encode_sse, text_event, tool_result_event


VIEW_CARD = {"type": "view_update", "date": "2026-02-09", "viewMode": 7, "zoomLevel": 1}
CREATE_CARD = {
    "type": "event", "action": "create", "eventId": "evt1", "summary": "Lunch",
    "start": "2026-01-28T12:00:00", "end": "2026-01-28T12:00:00", "location": None,
}
ORIGINAL = {
    "id": "evt2",
    "summary": "Review",
    "description": "",
    "location": "Room 1",
    "start": {"dateTime": "2026-01-28T14:00:00-08:00", "timeZone": "America/Los_Angeles"},
    "end": {"dateTime": "2026-01-28T15:00:00-08:00", "timeZone": "America/Los_Angeles"},
}


def stream_bytes(*events):
    return "".join(events).encode("utf-8")


class TestDecoding:
    """Test incremental decoding into conversation state."""

    def test_text_grows_trailing_assistant(self):
        conversation = Conversation()
        conversation.add_user("hi")
        consumer = StreamConsumer(conversation)

        consumer.feed_bytes(stream_bytes(encode_sse(text_event("Hel")), encode_sse(text_event("lo"))))

        assert [m.role for m in conversation.messages] == ["user", "assistant"]
        assert conversation.messages[-1].content == "Hello"
        assert not consumer.done

    def test_lines_split_anywhere(self):
        """Byte boundaries may fall inside lines and inside UTF-8 characters."""
        conversation = Conversation()
        consumer = StreamConsumer(conversation)
        data = stream_bytes(encode_sse(text_event("café ✓")), DONE_EVENT)

        for i in range(len(data)):
            consumer.feed_bytes(data[i:i + 1])

        assert conversation.messages[-1].content == "café ✓"
        assert consumer.done

    def test_malformed_fragment_is_skipped(self):
        conversation = Conversation()
        consumer = StreamConsumer(conversation)

        consumer.feed_bytes(b'data: {"choices": [\n\n')
        consumer.feed_bytes(stream_bytes(encode_sse(text_event("still here")), DONE_EVENT))

        assert consumer.parse_errors == 1
        assert consumer.errors[0].fragment == '{"choices": ['
        assert conversation.messages[-1].content == "still here"
        assert consumer.done

    @pytest.mark.parametrize("event", [
        '{"choices": [{"delta": "oops"}]}',
        '{"choices": [{"delta": {"content": 5}}]}',
        '{"choices": "none"}',
        '{"choices": ["text"]}',
    ])
    def test_wrong_shape_is_skipped(self, event):
        conversation = Conversation()
        consumer = StreamConsumer(conversation)

        consumer.feed_bytes(stream_bytes(encode_sse(text_event("Hi")), f"data: {event}\n\n",
                                         encode_sse(text_event(" there")), DONE_EVENT))

        assert consumer.parse_errors == 1
        assert consumer.errors[0].fragment == event
        assert conversation.messages[-1].content == "Hi there"
        assert consumer.done

    def test_non_data_lines_are_ignored(self):
        conversation = Conversation()
        consumer = StreamConsumer(conversation)

        consumer.feed_bytes(b": keep-alive\n\nevent: ping\n\n")

        assert conversation.messages == []
        assert consumer.parse_errors == 0

    def test_card_attaches_to_text_message(self):
        conversation = Conversation()
        consumer = StreamConsumer(conversation)

        consumer.feed_bytes(stream_bytes(
            encode_sse(text_event("Here you go.")),
            encode_sse(tool_result_event(VIEW_CARD)),
        ))

        assert len(conversation.messages) == 1
        assert conversation.messages[0].tool_data == VIEW_CARD
        assert conversation.messages[0].to_dict() == {
            "role": "assistant", "content": "Here you go.", "toolData": VIEW_CARD,
        }

    def test_second_card_becomes_new_message(self):
        conversation = Conversation()
        consumer = StreamConsumer(conversation)

        consumer.feed_bytes(stream_bytes(
            encode_sse(text_event("Done.")),
            encode_sse(tool_result_event(CREATE_CARD)),
            encode_sse(tool_result_event(VIEW_CARD)),
            DONE_EVENT,
        ))

        assert [m.tool_data for m in conversation.messages] == [CREATE_CARD, VIEW_CARD]
        assert conversation.messages[1].content == ""

    def test_done_closes_turn(self):
        """Text after the end marker of one turn never reopens it."""
        conversation = Conversation()
        first = StreamConsumer(conversation)
        first.feed_bytes(stream_bytes(encode_sse(text_event("one")), DONE_EVENT))

        second = StreamConsumer(conversation)
        second.feed_bytes(stream_bytes(encode_sse(text_event("two"))))

        assert [m.content for m in conversation.messages] == ["one", "two"]

    def test_events_after_done_are_ignored(self):
        conversation = Conversation()
        consumer = StreamConsumer(conversation)

        consumer.feed_bytes(stream_bytes(DONE_EVENT, encode_sse(text_event("late"))))

        assert conversation.messages == []


class TestRefresh:
    """Test refresh signal handling."""

    def test_sync_callback(self):
        calls = []
        consumer = StreamConsumer(Conversation(), on_refresh=lambda: calls.append(1))

        consumer.feed_bytes(stream_bytes(encode_sse(REFRESH_EVENT), DONE_EVENT))

        assert calls == [1]
        assert consumer.refresh_count == 1

    @pytest.mark.asyncio
    async def test_async_callback_is_scheduled(self):
        reloaded = asyncio.Event()

        async def reload_calendar():
            reloaded.set()

        consumer = StreamConsumer(Conversation(), on_refresh=reload_calendar)

        async def stream():
            yield stream_bytes(encode_sse(REFRESH_EVENT))
            yield stream_bytes(DONE_EVENT)

        await consumer.consume(stream())
        await consumer.wait_for_refreshes()

        assert reloaded.is_set()

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_break_stream(self):
        async def reload_calendar():
            raise RuntimeError("calendar down")

        conversation = Conversation()
        consumer = StreamConsumer(conversation, on_refresh=reload_calendar)

        async def stream():
            yield stream_bytes(encode_sse(REFRESH_EVENT), encode_sse(text_event("ok")), DONE_EVENT)

        await consumer.consume(stream())
        await consumer.wait_for_refreshes()

        assert conversation.messages[-1].content == "ok"
        assert consumer.done


class TestConsume:
    """Test whole-stream consumption."""

    @pytest.mark.asyncio
    async def test_missing_done_still_closes_turn(self):
        conversation = Conversation()
        consumer = StreamConsumer(conversation)

        async def stream():
            yield stream_bytes(encode_sse(text_event("partial")))
            yield b'data: {"choices": [{"delta": {"content": "!"}}]}'

        await consumer.consume(stream())

        assert conversation.messages[-1].content == "partial!"
        assert conversation.messages[-1].closed
        assert not consumer.done


class TestUndo:
    """Test compensating requests for event cards."""

    def test_undo_create_deletes(self):
        assert undo_request(CREATE_CARD) == {"method": "DELETE", "json": {"eventId": "evt1"}}

    def test_undo_update_restores_snapshot(self):
        card = {"type": "event", "action": "update", "eventId": "evt2", "originalEvent": ORIGINAL}

        assert undo_request(card) == {
            "method": "PUT",
            "json": {
                "eventId": "evt2",
                "summary": "Review",
                "description": None,
                "location": "Room 1",
                "start": "2026-01-28T14:00:00-08:00",
                "end": "2026-01-28T15:00:00-08:00",
            },
        }

    def test_undo_delete_recreates(self):
        card = {"type": "event", "action": "delete", "eventId": "evt2", "originalEvent": ORIGINAL}

        request = undo_request(card)

        assert request["method"] == "POST"
        assert "eventId" not in request["json"]
        assert request["json"]["summary"] == "Review"

    def test_cards_without_snapshot(self):
        assert undo_request({"type": "event", "action": "update", "eventId": "evt2"}) is None
        assert undo_request(VIEW_CARD) is None


class TestChatClient:
    """Test the HTTP client against a mock transport."""

    @pytest.mark.asyncio
    async def test_send_streams_into_conversation(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            body = stream_bytes(
                encode_sse(text_event("Booked.")),
                encode_sse(tool_result_event(CREATE_CARD)),
                encode_sse(REFRESH_EVENT),
                DONE_EVENT,
            )
            return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

        http = httpx.AsyncClient(base_url="http://dotion.test", transport=httpx.MockTransport(handler))
        client = ChatClient(http_client=http)
        conversation = Conversation()
        refreshes = []

        consumer = await client.send(conversation, "Lunch tomorrow at noon", [{"date": "2026-01-29"}],
                                     on_refresh=lambda: refreshes.append(True))
        await client.close()

        assert seen["body"]["messages"] == [{"role": "user", "content": "Lunch tomorrow at noon"}]
        assert seen["body"]["calendarEvents"] == [{"date": "2026-01-29"}]
        assert conversation.messages[-1].content == "Booked."
        assert conversation.messages[-1].tool_data == CREATE_CARD
        assert refreshes == [True]
        assert consumer.done

    @pytest.mark.asyncio
    async def test_send_failure_appends_apology(self):
        http = httpx.AsyncClient(
            base_url="http://dotion.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(500, json={"error": "boom"})),
        )
        client = ChatClient(http_client=http)
        conversation = Conversation()

        with pytest.raises(UpstreamError):
            await client.send(conversation, "hi")

        assert conversation.messages[-1].content == "Sorry, something went wrong."

    @pytest.mark.asyncio
    async def test_undo_sends_compensating_request(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["json"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True, "eventId": "evt1"})

        http = httpx.AsyncClient(base_url="http://dotion.test", transport=httpx.MockTransport(handler))
        client = ChatClient(http_client=http)

        result = await client.undo(CREATE_CARD)

        assert seen == {"method": "DELETE", "json": {"eventId": "evt1"}}
        assert result["success"] is True

    @pytest.mark.asyncio
    async def test_fetch_calendar_params(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"timeZone": "UTC", "days": []})

        http = httpx.AsyncClient(base_url="http://dotion.test", transport=httpx.MockTransport(handler))
        client = ChatClient(http_client=http)

        window = await client.fetch_calendar(start=date(2026, 1, 26), days=3)

        assert seen["params"] == {"start": "2026-01-26", "days": "3"}
        assert window["days"] == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

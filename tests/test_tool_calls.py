"""
Tests for the streaming tool-call accumulator.

Run with: pytest tests/test_tool_calls.py -v
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotion.core.errors import ToolArgumentError
from dotion.core.tool_calls import AccumulatorState, ToolCallAccumulator
from conftest import text_chunk, tool_chunk


class TestAccumulation:
    """Test fragment accumulation."""

    def test_fragments_concatenate_into_one_call(self):
        """Name and argument fragments for one index join in order."""
        acc = ToolCallAccumulator()
        acc.feed(tool_chunk(0, name="create_calendar_event", call_id="call_1"))
        acc.feed(tool_chunk(0, arguments='{"summary":'))
        acc.feed(tool_chunk(0, arguments='"X","start":"2026-02-01T09:00:00"}'))

        calls = acc.complete()

        assert len(calls) == 1
        assert calls[0].name == "create_calendar_event"
        assert calls[0].id == "call_1"
        assert calls[0].arguments == {"summary": "X", "start": "2026-02-01T09:00:00"}
        assert calls[0].ok

    def test_text_is_returned_for_forwarding(self):
        """Content deltas come back from feed; tool fragments do not."""
        acc = ToolCallAccumulator()

        assert acc.feed(text_chunk("Hello")) == "Hello"
        assert acc.feed(tool_chunk(0, name="change_view")) is None
        assert acc.feed({"choices": []}) is None

    def test_interleaved_parallel_calls(self):
        """Fragments of different indices may interleave across chunks."""
        acc = ToolCallAccumulator()
        acc.feed(tool_chunk(1, name="delete_calendar_event"))
        acc.feed(tool_chunk(0, name="create_calendar_event"))
        acc.feed(tool_chunk(1, arguments='{"eventId":'))
        acc.feed(tool_chunk(0, arguments='{"summary":"A",'))
        acc.feed(tool_chunk(1, arguments='"abc"}'))
        acc.feed(tool_chunk(0, arguments='"start":"2026-02-01"}'))

        calls = acc.complete()

        assert [c.index for c in calls] == [0, 1]
        assert calls[0].arguments == {"summary": "A", "start": "2026-02-01"}
        assert calls[1].arguments == {"eventId": "abc"}

    def test_calls_complete_in_index_order(self):
        """Completion order is by index, not by first appearance."""
        acc = ToolCallAccumulator()
        for index in (2, 0, 1):
            acc.feed(tool_chunk(index, name=f"tool_{index}", arguments="{}"))

        assert [c.name for c in acc.complete()] == ["tool_0", "tool_1", "tool_2"]

    def test_late_id_is_kept(self):
        """An id arriving after the first fragment is recorded."""
        acc = ToolCallAccumulator()
        acc.feed_fragment(0, name="change_view")
        acc.feed_fragment(0, call_id="call_9", arguments="{}")

        assert acc.complete()[0].id == "call_9"

    def test_fragment_without_index_is_ignored(self):
        acc = ToolCallAccumulator()
        acc.feed_fragment(None, name="change_view")

        assert acc.complete() == []


class TestArgumentParsing:
    """Test end-of-turn argument parsing."""

    def test_empty_arguments_parse_as_empty_object(self):
        acc = ToolCallAccumulator()
        acc.feed(tool_chunk(0, name="change_view"))

        assert acc.complete()[0].arguments == {}

    def test_malformed_call_does_not_affect_siblings(self):
        """One bad call among N yields an error for that call only."""
        acc = ToolCallAccumulator()
        acc.feed(tool_chunk(0, name="create_calendar_event", arguments='{"summary":"A","start":"2026-02-01"}'))
        acc.feed(tool_chunk(1, name="update_calendar_event", arguments='{"eventId": "x", '))
        acc.feed(tool_chunk(2, name="delete_calendar_event", arguments='{"eventId":"y"}'))

        calls = acc.complete()

        assert [c.ok for c in calls] == [True, False, True]
        assert isinstance(calls[1].error, ToolArgumentError)
        assert calls[1].error.index == 1
        assert calls[1].error.tool_name == "update_calendar_event"
        assert calls[1].error.raw_arguments == '{"eventId": "x", '
        assert calls[2].arguments == {"eventId": "y"}

    def test_non_object_arguments_are_rejected(self):
        acc = ToolCallAccumulator()
        acc.feed(tool_chunk(0, name="change_view", arguments="[1, 2]"))

        call = acc.complete()[0]
        assert not call.ok
        assert call.error.message == "Arguments must be a JSON object"


class TestLifecycle:
    """Test accumulator state transitions."""

    def test_states(self):
        acc = ToolCallAccumulator()
        assert acc.state == AccumulatorState.IDLE

        acc.feed(text_chunk("hi"))
        assert acc.state == AccumulatorState.ACCUMULATING

        acc.complete()
        assert acc.state == AccumulatorState.COMPLETE

    def test_feed_after_complete_fails(self):
        acc = ToolCallAccumulator()
        acc.complete()

        with pytest.raises(RuntimeError):
            acc.feed(text_chunk("late"))
        with pytest.raises(RuntimeError):
            acc.complete()

    def test_no_calls(self):
        """A text-only turn completes with no calls."""
        acc = ToolCallAccumulator()
        acc.feed(text_chunk("Just text"))

        assert acc.complete() == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

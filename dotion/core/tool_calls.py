"""
Tool Call Accumulator for Dotion.

Reconstructs complete function-call invocations from a token-streamed
completion. Fragments arrive keyed by their position in the model's
parallel-call array and may interleave across chunks; each position owns a
growing record. Arguments are only parsed once the stream has ended.

Usage:
    accumulator = ToolCallAccumulator()
    async for chunk in completion:
        text = accumulator.feed(chunk)
        if text:
            forward(text)
    for call in accumulator.complete():
        ...
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from loguru import logger

from .errors import ToolArgumentError


class AccumulatorState(Enum):
    """State of the accumulator for one turn."""
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    COMPLETE = "complete"


@dataclass
class ToolCallRecord:
    """An in-flight tool call; name and arguments grow by concatenation."""
    index: int
    id: Optional[str] = None
    name: str = ""
    arguments: str = ""


@dataclass
class CompletedToolCall:
    """A tool call after end-of-turn, with parsed arguments or an error."""
    index: int
    id: Optional[str]
    name: str
    arguments: Optional[Dict[str, Any]] = None
    error: Optional[ToolArgumentError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ToolCallAccumulator:
    """
    Indexed mapping from call position to a growing record.

    States: IDLE -> ACCUMULATING -> COMPLETE.
    """

    def __init__(self):
        self.state = AccumulatorState.IDLE
        self._records: Dict[int, ToolCallRecord] = {}

    def feed(self, chunk: Mapping[str, Any]) -> Optional[str]:
        """
        Consume one completion chunk.

        Args:
            chunk: A decoded streaming chunk ({"choices": [{"delta": ...}]}).

        Returns:
            Any plain text carried by the chunk, for immediate forwarding.
        """
        if self.state == AccumulatorState.COMPLETE:
            raise RuntimeError("Cannot feed a completed tool call accumulator")
        self.state = AccumulatorState.ACCUMULATING

        choices = chunk.get("choices") or []
        if not choices:
            return None
        delta = choices[0].get("delta") or {}

        for fragment in delta.get("tool_calls") or []:
            function = fragment.get("function") or {}
            self.feed_fragment(
                fragment.get("index"),
                call_id=fragment.get("id"),
                name=function.get("name"),
                arguments=function.get("arguments"),
            )

        return delta.get("content") or None

    def feed_fragment(
        self,
        index: Optional[int],
        call_id: Optional[str] = None,
        name: Optional[str] = None,
        arguments: Optional[str] = None,
    ) -> None:
        """Append one tool-call fragment to the record at `index`."""
        if self.state == AccumulatorState.COMPLETE:
            raise RuntimeError("Cannot feed a completed tool call accumulator")
        self.state = AccumulatorState.ACCUMULATING

        if index is None:
            logger.warning("Ignoring tool call fragment without an index")
            return

        record = self._records.get(index)
        if record is None:
            record = ToolCallRecord(index=index, id=call_id)
            self._records[index] = record
        elif call_id and not record.id:
            record.id = call_id

        if name:
            record.name += name
        if arguments:
            record.arguments += arguments

    def complete(self) -> List[CompletedToolCall]:
        """
        Close the turn and parse every accumulated call.

        Returns:
            One entry per index in ascending order. A call whose arguments are
            not a JSON object carries a ToolArgumentError instead; the others
            are unaffected.
        """
        if self.state == AccumulatorState.COMPLETE:
            raise RuntimeError("Tool call accumulator already completed")
        self.state = AccumulatorState.COMPLETE

        completed = []
        for index in sorted(self._records):
            record = self._records[index]
            completed.append(self._parse(record))

        if completed:
            logger.debug(f"Accumulated {len(completed)} tool call(s): {[c.name for c in completed]}")
        return completed

    @staticmethod
    def _parse(record: ToolCallRecord) -> CompletedToolCall:
        raw = record.arguments.strip()
        if not raw:
            return CompletedToolCall(index=record.index, id=record.id, name=record.name, arguments={})

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Malformed arguments for tool call {record.index} ({record.name}): {e}")
            return CompletedToolCall(
                index=record.index,
                id=record.id,
                name=record.name,
                error=ToolArgumentError(
                    f"Invalid JSON arguments: {e.msg}",
                    index=record.index,
                    tool_name=record.name,
                    raw_arguments=record.arguments,
                ),
            )

        if not isinstance(parsed, dict):
            return CompletedToolCall(
                index=record.index,
                id=record.id,
                name=record.name,
                error=ToolArgumentError(
                    "Arguments must be a JSON object",
                    index=record.index,
                    tool_name=record.name,
                    raw_arguments=record.arguments,
                ),
            )

        return CompletedToolCall(index=record.index, id=record.id, name=record.name, arguments=parsed)

"""
Stream Multiplexer for Dotion.

Merges one turn of a streamed chat completion into a single ordered
server-sent-event stream for the client:

1. text deltas, forwarded as they arrive
2. (tool-call fragments, accumulated and invisible to the client)
3. one tool result, or inline failure notice, per completed call, each
   emitted only after its action has finished
4. one refresh signal if any call mutated the calendar
5. the [DONE] end-of-stream marker

Usage:
    multiplexer = StreamMultiplexer(executor)
    async for event in multiplexer.run(llm.astream_chunks(messages, tools), session):
        yield event  # already SSE-framed
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable, Dict, List, Mapping

from loguru import logger

from .tool_calls import ToolCallAccumulator

if TYPE_CHECKING:
    from ..auth.session import SessionManager
    from ..tools.executor import ToolExecutor, ToolOutcome


DONE_EVENT = "data: [DONE]\n\n"
MODEL_FAILURE_NOTICE = "\n\n✗ Failed to get a response from the assistant"


class StreamState(Enum):
    """State of the multiplexer for one turn."""
    IDLE = "idle"
    STREAMING = "streaming"
    EXECUTING_TOOLS = "executing_tools"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class StreamMetrics:
    """Metrics for one multiplexed turn."""
    start_time: float = 0.0
    first_token_time: float = 0.0
    end_time: float = 0.0
    total_chunks: int = 0
    text_chunks: int = 0
    total_characters: int = 0
    tool_calls: int = 0
    tool_failures: int = 0

    @property
    def time_to_first_token(self) -> float:
        """Time from start to first text token in ms."""
        if self.first_token_time and self.start_time:
            return (self.first_token_time - self.start_time) * 1000
        return 0.0

    @property
    def total_time(self) -> float:
        """Total turn time in ms."""
        if self.end_time and self.start_time:
            return (self.end_time - self.start_time) * 1000
        return 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time_to_first_token_ms": round(self.time_to_first_token, 2),
            "total_time_ms": round(self.total_time, 2),
            "total_chunks": self.total_chunks,
            "text_chunks": self.text_chunks,
            "total_characters": self.total_characters,
            "tool_calls": self.tool_calls,
            "tool_failures": self.tool_failures,
        }


def encode_sse(payload: Mapping[str, Any]) -> str:
    """Frame a JSON payload as one server-sent event."""
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def text_event(content: str) -> Dict[str, Any]:
    """Chat-completion shaped text delta."""
    return {"choices": [{"delta": {"content": content}}]}


def tool_result_event(tool_data: Mapping[str, Any]) -> Dict[str, Any]:
    return {"tool_result_data": dict(tool_data)}


REFRESH_EVENT: Dict[str, Any] = {"refresh_calendar": True}


class StreamMultiplexer:
    """
    Single ordered output stream for one turn.

    Tool calls run sequentially in index order, after the model stream has
    ended, never before.
    """

    def __init__(
        self,
        executor: "ToolExecutor",
        accumulator_factory: Callable[[], ToolCallAccumulator] = ToolCallAccumulator,
        enable_metrics: bool = True,
    ):
        """
        Initialize the multiplexer.

        Args:
            executor: Runs completed tool calls.
            accumulator_factory: Builds a fresh accumulator per turn.
            enable_metrics: Log turn metrics at debug level.
        """
        self.executor = executor
        self.accumulator_factory = accumulator_factory
        self.enable_metrics = enable_metrics

        self.state = StreamState.IDLE
        self.metrics = StreamMetrics()
        self.outcomes: List["ToolOutcome"] = []

    def _reset(self) -> None:
        self.state = StreamState.IDLE
        self.metrics = StreamMetrics()
        self.outcomes = []

    async def run(
        self,
        chunks: AsyncIterator[Dict[str, Any]],
        session: "SessionManager",
    ) -> AsyncIterator[str]:
        """
        Multiplex one turn.

        Args:
            chunks: Decoded completion chunks from the model.
            session: Session used by calendar tool calls.

        Yields:
            SSE-framed events, ending with the [DONE] marker.
        """
        self._reset()
        self.state = StreamState.STREAMING
        self.metrics.start_time = time.time()
        accumulator = self.accumulator_factory()

        try:
            try:
                async for chunk in chunks:
                    self.metrics.total_chunks += 1
                    text = accumulator.feed(chunk)
                    if not text:
                        continue

                    if self.metrics.text_chunks == 0:
                        self.metrics.first_token_time = time.time()
                    self.metrics.text_chunks += 1
                    self.metrics.total_characters += len(text)

                    yield encode_sse(text_event(text))
            except Exception as e:
                # Partially assembled calls are discarded, never executed
                self.state = StreamState.ERROR
                logger.error(f"Model stream failed: {e}")
                yield encode_sse(text_event(MODEL_FAILURE_NOTICE))
                yield DONE_EVENT
                return

            self.state = StreamState.EXECUTING_TOOLS
            mutated = False

            for call in accumulator.complete():
                self.metrics.tool_calls += 1
                outcome = await self.executor.execute_safely(call, session)
                self.outcomes.append(outcome)

                if outcome.success and outcome.tool_data is not None:
                    yield encode_sse(tool_result_event(outcome.tool_data))
                else:
                    self.metrics.tool_failures += 1
                    if outcome.notice:
                        yield encode_sse(text_event(outcome.notice))

                mutated = mutated or (outcome.success and outcome.mutated_calendar)

            if mutated:
                yield encode_sse(REFRESH_EVENT)

            self.state = StreamState.COMPLETED
            yield DONE_EVENT

        finally:
            self.metrics.end_time = time.time()
            if self.enable_metrics:
                logger.debug(f"Stream metrics: {self.metrics.to_dict()}")

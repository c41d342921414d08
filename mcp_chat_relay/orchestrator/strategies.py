"""Model response consumption strategies.

Both strategies fill the same RoundState, so transcript construction and
termination stay in one place (the orchestrator loop). They differ only in how
the model output is read and when tools run:

- incremental: read an event stream; forward text as it arrives; announce tool
  calls where they occur; defer all execution to the end of the round.
- completed: read a finished message set; walk content items in order; run each
  tool call inline, one at a time, before moving to the next item.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol, Sequence

from mcp_chat_relay.core.types import TextDelta, TextPart, ToolCallRequest, ToolCallResult, Turn
from mcp_chat_relay.llm.base import ModelCapability

from .annotations import tool_call_announcement, tool_failure_annotation


logger = logging.getLogger(__name__)


ToolExecutor = Callable[[ToolCallRequest], Awaitable[ToolCallResult]]


@dataclass(slots=True)
class RoundState:
    """Everything one round produced."""

    text_parts: list[str] = field(default_factory=list)
    reasoning_parts: list[str] = field(default_factory=list)
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    # Parallel to tool_calls; None until executed.
    results: list[ToolCallResult | None] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(self.text_parts)

    @property
    def reasoning(self) -> str:
        return "".join(self.reasoning_parts)

    def add_call(self, call: ToolCallRequest) -> ToolCallRequest:
        """Record a call, giving it a fresh id when its own is empty or already used.

        Returns the call as recorded; results must carry its id.
        """

        slot = len(self.tool_calls)
        used = {c.id for c in self.tool_calls}
        if not call.id or call.id in used:
            new_id = f"call_{slot}"
            n = 0
            while new_id in used:
                n += 1
                new_id = f"call_{slot}_{n}"
            logger.warning("tool_call_id_rewritten", extra={"tool": call.name, "from": call.id, "to": new_id})
            call = replace(call, id=new_id)
        self.tool_calls.append(call)
        self.results.append(None)
        return call


class ResponseStrategy(Protocol):
    name: str

    def consume(
        self,
        *,
        model: ModelCapability,
        transcript: Sequence[Turn],
        tools: list[dict[str, Any]] | None,
        state: RoundState,
        execute: ToolExecutor,
    ) -> AsyncIterator[str]:
        """Run one model invocation, yielding caller-facing text and filling `state`."""
        ...


class IncrementalStrategy:
    name = "incremental"

    async def consume(
        self,
        *,
        model: ModelCapability,
        transcript: Sequence[Turn],
        tools: list[dict[str, Any]] | None,
        state: RoundState,
        execute: ToolExecutor,
    ) -> AsyncIterator[str]:
        async for event in model.stream(transcript, tools):
            if isinstance(event, TextDelta):
                if event.text:
                    state.text_parts.append(event.text)
                    yield event.text
            elif isinstance(event, ToolCallRequest):
                call = state.add_call(event)
                yield tool_call_announcement(call)


class CompletedStrategy:
    name = "completed"

    async def consume(
        self,
        *,
        model: ModelCapability,
        transcript: Sequence[Turn],
        tools: list[dict[str, Any]] | None,
        state: RoundState,
        execute: ToolExecutor,
    ) -> AsyncIterator[str]:
        messages = await model.complete(transcript, tools)

        emitted = False
        for message in messages:
            for item in message.items:
                if isinstance(item, TextPart):
                    if not item.text:
                        continue
                    if item.kind == "reasoning":
                        state.reasoning_parts.append(item.text)
                    else:
                        if state.text_parts:
                            state.text_parts.append("\n\n")
                        state.text_parts.append(item.text)
                    yield ("\n\n" if emitted else "") + item.text
                    emitted = True
                    continue

                # Tool call: execute right away, before the next content item.
                call = state.add_call(item)
                yield ("\n\n" if emitted else "") + tool_call_announcement(call)
                emitted = False
                result = await execute(call)
                state.results[-1] = result
                if result.is_error:
                    yield tool_failure_annotation(result)


def strategy_for(mode: str) -> ResponseStrategy:
    if mode == IncrementalStrategy.name:
        return IncrementalStrategy()
    if mode == CompletedStrategy.name:
        return CompletedStrategy()
    raise ValueError(f"unknown response mode: {mode!r}")

"""Streaming tool-call argument accumulator.

OpenAI-compatible streaming may deliver tool-call JSON arguments split across
chunks. Only the first chunk of a call carries its id and name; later chunks
are matched by `index`. Calls are streamed one after another, so a call is
complete as soon as a chunk for a different call shows up.

Parsing never raises: a call whose arguments are not a JSON object comes back
as an InvalidToolCall.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterable

from mcp_chat_relay.core.types import ToolCallRequest


@dataclass(frozen=True)
class InvalidToolCall:
    id: str
    name: str | None
    raw_args: str
    error: str


@dataclass
class _PartialCall:
    position: int
    id: str | None = None
    name: str | None = None
    fragments: list[str] = field(default_factory=list)
    taken: bool = False

    def finish(self) -> ToolCallRequest | InvalidToolCall:
        self.taken = True
        call_id = self.id or f"call_{self.position}"
        raw = "".join(self.fragments)
        try:
            arguments = json.loads(raw) if raw else {}
        except json.JSONDecodeError as e:
            return InvalidToolCall(id=call_id, name=self.name, raw_args=raw, error=str(e))
        if not isinstance(arguments, dict):
            return InvalidToolCall(id=call_id, name=self.name, raw_args=raw, error="arguments must be a JSON object")
        if not self.name:
            return InvalidToolCall(id=call_id, name=None, raw_args=raw, error="missing tool name")
        return ToolCallRequest(id=call_id, name=self.name, arguments=arguments)


class ToolCallAccumulator:
    """Accumulate streamed tool-call chunks into ToolCallRequest objects."""

    def __init__(self) -> None:
        self._calls: dict[str, _PartialCall] = {}

    def _key_for(self, chunk: dict[str, Any]) -> str:
        if chunk.get("index") is not None:
            return f"index_{chunk['index']}"
        if chunk.get("id"):
            return f"id_{chunk['id']}"
        # Neither index nor id: continuation of the latest call.
        return next(reversed(self._calls), "index_unknown")

    def add_chunk(self, chunk: dict[str, Any]) -> None:
        """Consume one LangChain ToolCallChunk-like dict (`id`, `name`, `args`, `index`)."""

        key = self._key_for(chunk)
        call = self._calls.get(key)
        if call is None:
            call = self._calls[key] = _PartialCall(position=len(self._calls))

        if chunk.get("id") and call.id is None:
            call.id = str(chunk["id"])
        if chunk.get("name") and call.name is None:
            call.name = str(chunk["name"])
        fragment = chunk.get("args")
        if isinstance(fragment, str) and fragment:
            call.fragments.append(fragment)

    def add_chunks(self, chunks: Iterable[Any]) -> None:
        for chunk in chunks:
            if isinstance(chunk, dict):
                self.add_chunk(chunk)

    def take_finished(self) -> tuple[list[ToolCallRequest], list[InvalidToolCall]]:
        """Calls that can no longer grow (all but the latest), each returned once."""

        return self._take(list(self._calls.values())[:-1])

    def finalize(self) -> tuple[list[ToolCallRequest], list[InvalidToolCall]]:
        """Every call not yet returned, as (tool_calls, invalid_tool_calls)."""

        return self._take(list(self._calls.values()))

    @staticmethod
    def _take(calls: list[_PartialCall]) -> tuple[list[ToolCallRequest], list[InvalidToolCall]]:
        ready: list[ToolCallRequest] = []
        invalid: list[InvalidToolCall] = []
        for call in calls:
            if call.taken:
                continue
            outcome = call.finish()
            if isinstance(outcome, InvalidToolCall):
                invalid.append(outcome)
            else:
                ready.append(outcome)
        return ready, invalid

from __future__ import annotations

from typing import Any, AsyncIterator, Sequence, Union

from mcp_chat_relay.core.types import (
    ModelEvent,
    ModelMessage,
    TextDelta,
    TextPart,
    ToolCallRequest,
    Turn,
    UserTurn,
)


ScriptItem = Union[str, TextPart, ToolCallRequest, BaseException]


class ScriptedModel:
    """Offline stub for running the orchestrator without network/API.

    Each invocation consumes the next round of the script. A round is a list of
    items: strings or TextParts become text, ToolCallRequests become tool calls,
    and an exception is raised when it is reached. Once the script is exhausted
    the model echoes the latest user message.
    """

    def __init__(self, rounds: Sequence[Sequence[ScriptItem]] | None = None) -> None:
        self._rounds = [list(r) for r in (rounds or [])]
        self.calls: list[tuple[list[Turn], list[dict[str, Any]] | None]] = []

    def _next_round(self, transcript: Sequence[Turn], tools: list[dict[str, Any]] | None) -> list[ScriptItem]:
        self.calls.append((list(transcript), tools))
        if self._rounds:
            return self._rounds.pop(0)
        last_user = next((t.text for t in reversed(transcript) if isinstance(t, UserTurn)), "")
        return [f"(fake) {last_user}".rstrip()]

    async def stream(
        self,
        transcript: Sequence[Turn],
        tools: list[dict[str, Any]] | None,
    ) -> AsyncIterator[ModelEvent]:
        for item in self._next_round(transcript, tools):
            if isinstance(item, BaseException):
                raise item
            if isinstance(item, str):
                yield TextDelta(item)
            elif isinstance(item, TextPart):
                yield TextDelta(item.text)
            else:
                yield item

    async def complete(
        self,
        transcript: Sequence[Turn],
        tools: list[dict[str, Any]] | None,
    ) -> list[ModelMessage]:
        items: list[TextPart | ToolCallRequest] = []
        for item in self._next_round(transcript, tools):
            if isinstance(item, BaseException):
                raise item
            items.append(TextPart(item) if isinstance(item, str) else item)
        return [ModelMessage(items=tuple(items))]

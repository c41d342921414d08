from __future__ import annotations

from typing import Any, AsyncIterator, Protocol, Sequence

from mcp_chat_relay.core.types import ModelEvent, ModelMessage, Turn


class ModelCapability(Protocol):
    """What the orchestrator needs from a language model.

    `tools` is a list of OpenAI-compatible function specs, or None for a
    tool-free invocation.
    """

    def stream(self, transcript: Sequence[Turn], tools: list[dict[str, Any]] | None) -> AsyncIterator[ModelEvent]:
        """Yield TextDelta and ToolCallRequest events in production order."""
        ...

    async def complete(self, transcript: Sequence[Turn], tools: list[dict[str, Any]] | None) -> list[ModelMessage]:
        """Return the completed message set for one invocation."""
        ...

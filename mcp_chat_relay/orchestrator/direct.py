from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Sequence

from mcp_chat_relay.core.errors import ModelError
from mcp_chat_relay.core.types import ToolCallRequest, ToolCallResult, Turn
from mcp_chat_relay.llm.base import ModelCapability
from mcp_chat_relay.mcp.result_codec import normalize_error
from mcp_chat_relay.observability import bind_context, new_call_id, set_round, set_state

from .annotations import stream_error_marker
from .loop import build_assistant_turn
from .strategies import ResponseStrategy, RoundState, strategy_for


logger = logging.getLogger(__name__)


async def _no_tools(call: ToolCallRequest) -> ToolCallResult:
    return ToolCallResult(
        tool_call_id=call.id,
        name=call.name,
        is_error=True,
        error=normalize_error(error_type="tools_disabled", message="no tool backend connected"),
    )


class DirectChat:
    """Single model invocation for callers without a session.

    No tools are offered and there is no loop; model text is forwarded as is.
    """

    def __init__(self, model: ModelCapability, mode: str = "incremental", *, session_key: str | None = None) -> None:
        self._model = model
        self._strategy: ResponseStrategy = strategy_for(mode)
        self._session_key = session_key

        self.transcript: list[Turn] = []
        self.error: ModelError | None = None

    async def stream(self, transcript: Sequence[Turn]) -> AsyncIterator[str]:
        self.error = None
        try:
            async for chunk in self._run(transcript):
                yield chunk
        except ModelError as e:
            self.error = e
            yield stream_error_marker(e)

    async def collect(self, transcript: Sequence[Turn]) -> str:
        return "".join([chunk async for chunk in self._run(transcript)])

    async def _run(self, transcript: Sequence[Turn]) -> AsyncIterator[str]:
        self.transcript = list(transcript)
        bind_context(session_key=self._session_key, call_id=new_call_id())
        set_round(1)
        set_state("GENERATING")
        logger.info("direct_chat_started", extra={"mode": self._strategy.name, "turns": len(transcript)})

        state = RoundState()
        try:
            async for chunk in self._strategy.consume(
                model=self._model,
                transcript=list(transcript),
                tools=None,
                state=state,
                execute=_no_tools,
            ):
                yield chunk
        except asyncio.CancelledError:
            raise
        except ModelError as e:
            logger.error("chat_failed", extra={"error": str(e), "exc": type(e).__name__})
            raise
        except Exception as e:  # noqa: BLE001
            logger.error("chat_failed", extra={"error": str(e), "exc": type(e).__name__})
            raise ModelError(str(e) or type(e).__name__) from e

        set_state("DONE")
        if state.tool_calls:
            logger.warning("direct_chat_tool_calls_ignored", extra={"count": len(state.tool_calls)})

        # Ignored tool calls have no results, so only the text is kept.
        assistant = build_assistant_turn(RoundState(text_parts=state.text_parts, reasoning_parts=state.reasoning_parts))
        if assistant.parts:
            self.transcript.append(assistant)

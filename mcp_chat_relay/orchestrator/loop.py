from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, AsyncIterator, Sequence

from mcp_chat_relay.core.clock import elapsed_ms
from mcp_chat_relay.core.errors import MaxRoundsExceededError, ModelError, TerminalChatError
from mcp_chat_relay.core.types import (
    AssistantPart,
    AssistantTurn,
    TextPart,
    ToolCallRequest,
    ToolCallResult,
    ToolResultTurn,
    Turn,
)
from mcp_chat_relay.llm.base import ModelCapability
from mcp_chat_relay.mcp.connection import Connection
from mcp_chat_relay.mcp.gateway import ToolGateway
from mcp_chat_relay.mcp.result_codec import normalize_error
from mcp_chat_relay.observability import bind_context, new_call_id, set_round, set_state

from .annotations import stream_error_marker, tool_failure_annotation
from .strategies import IncrementalStrategy, ResponseStrategy, RoundState


logger = logging.getLogger(__name__)


def build_assistant_turn(state: RoundState) -> AssistantTurn:
    """Trimmed text (omitted when empty) followed by the tool calls in order."""

    parts: list[AssistantPart] = []
    reasoning = state.reasoning.strip()
    if reasoning:
        parts.append(TextPart(reasoning, kind="reasoning"))
    text = state.text.strip()
    if text:
        parts.append(TextPart(text))
    parts.extend(state.tool_calls)
    return AssistantTurn(parts=tuple(parts))


class ConversationOrchestrator:
    """GENERATING -> INSPECTING -> EXECUTING_TOOLS -> ... -> DONE turn loop.

    One instance per chat invocation. The loop ends on the first round whose
    model output contains no tool calls. Tool failures are folded into their
    result slot; model failures end the call with a terminal error.
    """

    def __init__(
        self,
        *,
        model: ModelCapability,
        connection: Connection | None,
        gateway: ToolGateway | None = None,
        strategy: ResponseStrategy | None = None,
        max_rounds: int = 0,
        max_concurrency: int = 4,
        session_key: str | None = None,
    ) -> None:
        self._model = model
        self._connection = connection
        self._gateway = gateway or ToolGateway()
        self._strategy = strategy or IncrementalStrategy()
        self._max_rounds = max(0, int(max_rounds))
        self._max_concurrency = max(1, int(max_concurrency))
        self._session_key = session_key

        self.transcript: list[Turn] = []
        self.rounds = 0
        self.error: TerminalChatError | None = None

    async def stream(self, transcript: Sequence[Turn]) -> AsyncIterator[str]:
        """Yield caller-facing text; a terminal error ends the stream with a marker.

        The error is also kept on `self.error`.
        """

        self.error = None
        try:
            async for chunk in self._run(transcript):
                yield chunk
        except TerminalChatError as e:
            self.error = e
            yield stream_error_marker(e)

    async def collect(self, transcript: Sequence[Turn]) -> str:
        """One-shot variant: return the full text or raise the terminal error."""

        chunks: list[str] = []
        async for chunk in self._run(transcript):
            chunks.append(chunk)
        return "".join(chunks)

    async def _run(self, transcript: Sequence[Turn]) -> AsyncIterator[str]:
        self.transcript = list(transcript)
        self.rounds = 0
        bind_context(session_key=self._session_key, call_id=new_call_id())

        tools = self._model_tools()
        t_call = time.perf_counter()
        logger.info(
            "chat_started",
            extra={
                "mode": self._strategy.name,
                "turns": len(self.transcript),
                "tools": len(tools or []),
            },
        )

        try:
            while True:
                if self._max_rounds and self.rounds >= self._max_rounds:
                    raise MaxRoundsExceededError(max_rounds=self._max_rounds)

                self.rounds += 1
                set_round(self.rounds)
                set_state("GENERATING")

                state = RoundState()
                t0 = time.perf_counter()
                try:
                    async for chunk in self._strategy.consume(
                        model=self._model,
                        transcript=list(self.transcript),
                        tools=tools,
                        state=state,
                        execute=self._execute,
                    ):
                        yield chunk
                except asyncio.CancelledError:
                    raise
                except TerminalChatError:
                    raise
                except Exception as e:  # noqa: BLE001
                    raise ModelError(str(e) or type(e).__name__) from e

                set_state("INSPECTING")
                assistant = build_assistant_turn(state)
                logger.info(
                    "round_done",
                    extra={
                        "latency_ms": elapsed_ms(t0),
                        "tool_calls": len(state.tool_calls),
                        "assistant_text_len": len(state.text),
                    },
                )

                if not state.tool_calls:
                    if assistant.parts:
                        self.transcript.append(assistant)
                    else:
                        logger.warning("assistant_turn_empty")
                    set_state("DONE")
                    break

                self.transcript.append(assistant)

                set_state("EXECUTING_TOOLS")
                results = await self._execute_pending(state)
                for result, was_pending in results:
                    if was_pending and result.is_error:
                        yield tool_failure_annotation(result)
                self.transcript.append(ToolResultTurn(results=tuple(r for r, _ in results)))
        except TerminalChatError as e:
            logger.error("chat_failed", extra={"error": str(e), "exc": type(e).__name__, "rounds": self.rounds})
            raise

        logger.info(
            "chat_done",
            extra={"rounds": self.rounds, "latency_ms": elapsed_ms(t_call)},
        )

    def _model_tools(self) -> list[dict[str, Any]] | None:
        if self._connection is None or len(self._connection.tools) == 0:
            return None
        return self._connection.tools.to_model_tools()

    async def _execute(self, call: ToolCallRequest) -> ToolCallResult:
        if self._connection is None:
            return ToolCallResult(
                tool_call_id=call.id,
                name=call.name,
                is_error=True,
                error=normalize_error(error_type="tools_disabled", message="no tool backend connected"),
            )
        return await self._gateway.execute(self._connection, call)

    async def _execute_pending(self, state: RoundState) -> list[tuple[ToolCallResult, bool]]:
        """Run every call not executed during the round; keep request order.

        Returns (result, was_pending) pairs aligned with state.tool_calls.
        """

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def run(call: ToolCallRequest) -> ToolCallResult:
            async with semaphore:
                return await self._execute(call)

        pending = [i for i, r in enumerate(state.results) if r is None]
        if pending:
            logger.info("executing_tools", extra={"count": len(pending)})
            done = await asyncio.gather(*(run(state.tool_calls[i]) for i in pending))
            for i, result in zip(pending, done):
                state.results[i] = result

        fresh = set(pending)
        return [(result, i in fresh) for i, result in enumerate(state.results) if result is not None]

"""OpenAI-compatible model capability.

This client uses LangChain's OpenAI wrapper (`langchain_openai.ChatOpenAI`), so
any OpenAI-compatible endpoint can be targeted through `base_url`.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Sequence

from langchain_core.messages import AIMessage
from langchain_openai import ChatOpenAI
from pydantic import SecretStr

from mcp_chat_relay.config.model import ModelConfig
from mcp_chat_relay.core.types import (
    AssistantPart,
    ModelEvent,
    ModelMessage,
    TextDelta,
    TextPart,
    ToolCallRequest,
    Turn,
)

from .messages import to_langchain_messages
from .tool_call_accumulator import ToolCallAccumulator


logger = logging.getLogger(__name__)


class LangChainChatModel:
    """ModelCapability backed by ChatOpenAI."""

    def __init__(self, chat_model: ChatOpenAI) -> None:
        self._model = chat_model

    @classmethod
    def from_config(cls, cfg: ModelConfig) -> "LangChainChatModel":
        kwargs: dict[str, Any] = {
            "model": cfg.model,
            "api_key": SecretStr(cfg.api_key),
            "timeout": cfg.timeout_s,
            "max_retries": cfg.max_retries,
        }
        if cfg.base_url:
            kwargs["base_url"] = cfg.base_url
        if cfg.temperature is not None:
            kwargs["temperature"] = cfg.temperature
        return cls(ChatOpenAI(**kwargs))

    def _bound(self, tools: list[dict[str, Any]] | None) -> Any:
        return self._model.bind_tools(tools) if tools else self._model

    async def stream(
        self,
        transcript: Sequence[Turn],
        tools: list[dict[str, Any]] | None,
    ) -> AsyncIterator[ModelEvent]:
        """Stream text deltas and tool calls.

        Tool-call arguments are accumulated from streaming chunks; each call is
        yielded as soon as it can no longer grow. Invalid tool calls are logged
        and dropped (non-fatal).
        """

        model = self._bound(tools)
        accumulator = ToolCallAccumulator()

        async for chunk in model.astream(to_langchain_messages(transcript)):
            # LangChain streams AIMessageChunk objects.
            content = getattr(chunk, "content", None)
            if isinstance(content, str) and content:
                yield TextDelta(content)

            tool_call_chunks = getattr(chunk, "tool_call_chunks", None)
            if isinstance(tool_call_chunks, list) and tool_call_chunks:
                accumulator.add_chunks(tool_call_chunks)
                ready, invalid = accumulator.take_finished()
                _log_invalid(invalid)
                for call in ready:
                    yield call

        ready, invalid = accumulator.finalize()
        _log_invalid(invalid)
        for call in ready:
            yield call

    async def complete(
        self,
        transcript: Sequence[Turn],
        tools: list[dict[str, Any]] | None,
    ) -> list[ModelMessage]:
        response = await self._bound(tools).ainvoke(to_langchain_messages(transcript))
        if not isinstance(response, AIMessage):
            return [ModelMessage(items=(TextPart(str(getattr(response, "content", "") or "")),))]
        return [ModelMessage(items=tuple(message_items(response)))]


def message_items(message: AIMessage) -> list[AssistantPart]:
    """Flatten an AIMessage into ordered text/reasoning/tool-call items.

    Providers that return content blocks keep their block order; otherwise the
    text comes first, followed by the tool calls.
    """

    items: list[AssistantPart] = []

    reasoning = message.additional_kwargs.get("reasoning_content")
    if isinstance(reasoning, str) and reasoning:
        items.append(TextPart(reasoning, kind="reasoning"))

    # Calls without an id get `call_{position}`, as streamed calls do.
    calls = [_request(tc, position) for position, tc in enumerate(message.tool_calls)]
    slot_by_id: dict[str, int] = {}
    for position, tc in enumerate(message.tool_calls):
        if tc.get("id"):
            slot_by_id.setdefault(str(tc["id"]), position)
    emitted: set[int] = set()

    content = message.content
    if isinstance(content, str):
        if content:
            items.append(TextPart(content))
    else:
        for block in content:
            if isinstance(block, str):
                if block:
                    items.append(TextPart(block))
                continue
            if not isinstance(block, dict):
                continue
            kind = block.get("type")
            if kind == "text" and block.get("text"):
                items.append(TextPart(str(block["text"])))
            elif kind in ("reasoning", "thinking"):
                text = block.get("reasoning") or block.get("thinking") or block.get("text")
                if text:
                    items.append(TextPart(str(text), kind="reasoning"))
            elif kind in ("tool_use", "tool_call") and str(block.get("id")) in slot_by_id:
                position = slot_by_id[str(block.get("id"))]
                if position not in emitted:
                    items.append(calls[position])
                    emitted.add(position)

    items.extend(call for position, call in enumerate(calls) if position not in emitted)

    for bad in message.invalid_tool_calls:
        logger.warning("invalid_tool_call", extra={"tool_call_id": bad.get("id"), "tool": bad.get("name")})

    return items


def _request(tc: Any, position: int) -> ToolCallRequest:
    return ToolCallRequest(
        id=str(tc.get("id") or f"call_{position}"),
        name=str(tc.get("name") or ""),
        arguments=dict(tc.get("args") or {}),
    )


def _log_invalid(invalid: list[Any]) -> None:
    for bad in invalid:
        logger.warning(
            "invalid_tool_call",
            extra={"tool_call_id": bad.id, "tool": bad.name, "error": bad.error},
        )

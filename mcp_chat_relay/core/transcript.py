"""Transcript wire codec.

Callers exchange transcripts as role/content dicts:

    {"role": "user", "content": "hi"}
    {"role": "assistant", "content": [
        {"type": "text", "text": "Let me look."},
        {"type": "tool-call", "toolCallId": "c1", "toolName": "search", "args": {"q": "x"}},
    ]}
    {"role": "tool", "content": [
        {"type": "tool-result", "toolCallId": "c1", "toolName": "search",
         "result": [...], "isError": false},
    ]}

Plain string content is accepted for every text-bearing role.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from .types import (
    AssistantPart,
    AssistantTurn,
    SystemTurn,
    TextPart,
    ToolCallRequest,
    ToolCallResult,
    ToolResultTurn,
    Turn,
    UserTurn,
)


def _text_of(content: Any, *, where: str) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts: list[str] = []
        for part in content:
            if isinstance(part, Mapping) and part.get("type") == "text":
                texts.append(str(part.get("text") or ""))
            elif isinstance(part, str):
                texts.append(part)
        return "".join(texts)
    raise ValueError(f"{where}: content must be a string or a list of parts")


def _assistant_parts(content: Any, *, where: str) -> tuple[AssistantPart, ...]:
    if isinstance(content, str):
        return (TextPart(content),) if content else ()
    if not isinstance(content, list):
        raise ValueError(f"{where}: content must be a string or a list of parts")

    parts: list[AssistantPart] = []
    for i, part in enumerate(content):
        if not isinstance(part, Mapping):
            raise ValueError(f"{where}[{i}]: part must be a mapping")
        kind = part.get("type")
        if kind in ("text", "reasoning"):
            parts.append(TextPart(str(part.get("text") or ""), kind=kind))
        elif kind == "tool-call":
            args = part.get("args") or {}
            if not isinstance(args, Mapping):
                raise ValueError(f"{where}[{i}].args: must be a mapping")
            parts.append(
                ToolCallRequest(
                    id=str(part.get("toolCallId") or ""),
                    name=str(part.get("toolName") or ""),
                    arguments=dict(args),
                )
            )
        else:
            raise ValueError(f"{where}[{i}]: unsupported assistant part type {kind!r}")
    return tuple(parts)


def _tool_results(content: Any, *, where: str) -> tuple[ToolCallResult, ...]:
    if not isinstance(content, list):
        raise ValueError(f"{where}: tool content must be a list of tool-result parts")

    results: list[ToolCallResult] = []
    for i, part in enumerate(content):
        if not isinstance(part, Mapping) or part.get("type") != "tool-result":
            raise ValueError(f"{where}[{i}]: expected a tool-result part")
        is_error = bool(part.get("isError", False))
        error = part.get("error")
        if is_error and not isinstance(error, Mapping):
            error = {"type": "tool_error", "message": str(part.get("result") or ""), "details": {}}
        results.append(
            ToolCallResult(
                tool_call_id=str(part.get("toolCallId") or ""),
                name=str(part.get("toolName") or ""),
                payload=None if is_error else part.get("result"),
                is_error=is_error,
                error=dict(error) if is_error and isinstance(error, Mapping) else None,
            )
        )
    return tuple(results)


def transcript_from_messages(messages: Iterable[Mapping[str, Any]]) -> list[Turn]:
    """Decode role/content dicts into transcript turns.

    Raises:
        ValueError: On unknown roles, malformed parts, or a tool turn that does
            not answer the immediately preceding assistant turn.
    """

    turns: list[Turn] = []
    for i, msg in enumerate(messages):
        where = f"messages[{i}]"
        if not isinstance(msg, Mapping):
            raise ValueError(f"{where}: message must be a mapping")
        role = msg.get("role")
        content = msg.get("content")

        if role == "system":
            turns.append(SystemTurn(_text_of(content, where=where)))
        elif role == "user":
            turns.append(UserTurn(_text_of(content, where=where)))
        elif role == "assistant":
            turns.append(AssistantTurn(_assistant_parts(content, where=where)))
        elif role == "tool":
            turns.append(ToolResultTurn(_tool_results(content, where=where)))
        else:
            raise ValueError(f"{where}: unsupported role {role!r}")

    validate_transcript(turns)
    return turns


def transcript_to_messages(turns: Sequence[Turn]) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for turn in turns:
        if isinstance(turn, (SystemTurn, UserTurn)):
            out.append({"role": turn.role, "content": turn.text})
        elif isinstance(turn, AssistantTurn):
            parts: list[dict[str, Any]] = []
            for p in turn.parts:
                if isinstance(p, TextPart):
                    parts.append({"type": p.kind, "text": p.text})
                else:
                    parts.append(
                        {"type": "tool-call", "toolCallId": p.id, "toolName": p.name, "args": dict(p.arguments)}
                    )
            out.append({"role": "assistant", "content": parts})
        elif isinstance(turn, ToolResultTurn):
            results: list[dict[str, Any]] = []
            for r in turn.results:
                item: dict[str, Any] = {
                    "type": "tool-result",
                    "toolCallId": r.tool_call_id,
                    "toolName": r.name,
                    "result": r.error_summary if r.is_error else r.payload,
                    "isError": r.is_error,
                }
                if r.is_error and r.error is not None:
                    item["error"] = dict(r.error)
                results.append(item)
            out.append({"role": "tool", "content": results})
    return out


def validate_transcript(turns: Sequence[Turn]) -> None:
    """Check that every tool turn answers the immediately preceding assistant turn.

    Result count and call-id order must match the assistant turn's requests.
    """

    for i, turn in enumerate(turns):
        if not isinstance(turn, ToolResultTurn):
            continue
        prev = turns[i - 1] if i > 0 else None
        if not isinstance(prev, AssistantTurn) or not prev.tool_calls:
            raise ValueError(f"turn {i}: tool results without a preceding assistant tool call")
        expected = [tc.id for tc in prev.tool_calls]
        actual = [r.tool_call_id for r in turn.results]
        if expected != actual:
            raise ValueError(f"turn {i}: tool results {actual} do not match requests {expected}")


def with_system_prompt(turns: Sequence[Turn], prompt: str | None) -> list[Turn]:
    """Prepend `prompt` as a SystemTurn unless the transcript already has one."""

    out = list(turns)
    if prompt and not any(isinstance(t, SystemTurn) for t in out):
        out.insert(0, SystemTurn(prompt))
    return out

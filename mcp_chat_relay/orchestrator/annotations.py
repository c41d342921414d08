"""User-visible markers interleaved with streamed model text."""

from __future__ import annotations

import json

from mcp_chat_relay.core.types import ToolCallRequest, ToolCallResult


def _args_json(arguments: dict) -> str:
    try:
        return json.dumps(arguments, ensure_ascii=False)
    except TypeError:
        return repr(arguments)


def tool_call_announcement(call: ToolCallRequest) -> str:
    return f"**Calling Tool: {call.name}({_args_json(call.arguments)})**\n\n"


def tool_failure_annotation(result: ToolCallResult) -> str:
    return f"**Tool {result.name} failed: {result.error_summary}**\n\n"


def stream_error_marker(error: BaseException) -> str:
    return f"\n[STREAM ERROR]: {error}"

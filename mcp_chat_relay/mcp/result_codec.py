from __future__ import annotations

import json
from typing import Any

from mcp_chat_relay.core.types import ToolCallResult


def normalize_error(*, error_type: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {"type": str(error_type), "message": str(message), "details": dict(details or {})}


def text_of_content(content: Any) -> str:
    """Concatenate the text blocks of an MCP content list."""

    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    return "\n".join(
        block["text"]
        for block in content
        if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str) and block["text"]
    )


def dumps_payload(payload: Any) -> str:
    """Serialize a tool payload for the model's tool message.

    Non-string payloads become compact JSON; repr() only for values JSON cannot encode.
    """

    if isinstance(payload, str):
        return payload
    try:
        return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError):
        return repr(payload)


def model_content_for(result: ToolCallResult) -> str:
    """Text the model sees for one tool result on the next round."""

    if result.is_error:
        return f"Error: {result.error_summary}"
    return dumps_payload(result.payload)

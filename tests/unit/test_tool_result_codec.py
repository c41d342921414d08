from __future__ import annotations

import json

from mcp_chat_relay.core.types import ToolCallResult
from mcp_chat_relay.mcp.result_codec import dumps_payload, model_content_for, normalize_error, text_of_content


def test_normalize_error_shape() -> None:
    err = normalize_error(error_type="timeout", message="too slow", details={"timeout_s": "1"})
    assert err == {"type": "timeout", "message": "too slow", "details": {"timeout_s": "1"}}

    assert normalize_error(error_type="x", message="y")["details"] == {}


def test_dumps_payload_is_compact_json() -> None:
    s = dumps_payload([{"type": "text", "text": "héllo"}])
    assert s == '[{"type":"text","text":"héllo"}]'
    assert json.loads(s)[0]["text"] == "héllo"


def test_dumps_payload_passes_strings_through() -> None:
    assert dumps_payload("plain") == "plain"


def test_text_of_content_joins_text_blocks() -> None:
    content = [
        {"type": "text", "text": "a"},
        {"type": "image", "data": "..."},
        {"type": "text", "text": "b"},
    ]
    assert text_of_content(content) == "a\nb"
    assert text_of_content(None) == ""


def test_model_content_for_success_and_failure() -> None:
    ok = ToolCallResult(tool_call_id="c1", name="search", payload=[{"type": "text", "text": "r"}])
    assert json.loads(model_content_for(ok)) == [{"type": "text", "text": "r"}]

    bad = ToolCallResult(
        tool_call_id="c2",
        name="search",
        is_error=True,
        error=normalize_error(error_type="tool_error", message="rate limited"),
    )
    assert model_content_for(bad) == "Error: rate limited"

from __future__ import annotations

from typing import Any, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage

from mcp_chat_relay.core.types import (
    AssistantTurn,
    SystemTurn,
    TextPart,
    ToolCallRequest,
    ToolResultTurn,
    Turn,
    UserTurn,
)
from mcp_chat_relay.mcp.result_codec import model_content_for


def to_langchain_messages(transcript: Sequence[Turn]) -> list[BaseMessage]:
    """Convert transcript turns into LangChain chat messages.

    Reasoning parts are not sent back to the model. Each tool result becomes
    its own ToolMessage, paired with its request by tool_call_id.
    """

    out: list[BaseMessage] = []
    for turn in transcript:
        if isinstance(turn, SystemTurn):
            out.append(SystemMessage(content=turn.text))
        elif isinstance(turn, UserTurn):
            out.append(HumanMessage(content=turn.text))
        elif isinstance(turn, AssistantTurn):
            text = "".join(p.text for p in turn.parts if isinstance(p, TextPart) and p.kind == "text")
            tool_calls: list[dict[str, Any]] = [
                {"id": p.id, "name": p.name, "args": dict(p.arguments), "type": "tool_call"}
                for p in turn.parts
                if isinstance(p, ToolCallRequest)
            ]
            out.append(AIMessage(content=text, tool_calls=tool_calls))
        elif isinstance(turn, ToolResultTurn):
            for r in turn.results:
                out.append(
                    ToolMessage(
                        content=model_content_for(r),
                        tool_call_id=r.tool_call_id,
                        name=r.name,
                        status="error" if r.is_error else "success",
                    )
                )
    return out

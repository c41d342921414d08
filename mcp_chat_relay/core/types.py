from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union


@dataclass(frozen=True, slots=True)
class ToolDescriptor:
    """A tool advertised by a backend (immutable once snapshotted)."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ToolCallRequest:
    """Abstract tool call (stable structure across model implementations)."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ToolCallResult:
    tool_call_id: str
    name: str
    payload: Any = None
    is_error: bool = False
    error: dict[str, Any] | None = None

    @property
    def error_summary(self) -> str:
        if not self.is_error:
            return ""
        if self.error and self.error.get("message"):
            return str(self.error["message"])
        return "tool call failed"


@dataclass(frozen=True, slots=True)
class TextPart:
    text: str
    kind: Literal["text", "reasoning"] = "text"


AssistantPart = Union[TextPart, ToolCallRequest]


@dataclass(frozen=True, slots=True)
class SystemTurn:
    text: str
    role: Literal["system"] = "system"


@dataclass(frozen=True, slots=True)
class UserTurn:
    text: str
    role: Literal["user"] = "user"


@dataclass(frozen=True, slots=True)
class AssistantTurn:
    parts: tuple[AssistantPart, ...] = ()
    role: Literal["assistant"] = "assistant"

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    @property
    def tool_calls(self) -> list[ToolCallRequest]:
        return [p for p in self.parts if isinstance(p, ToolCallRequest)]


@dataclass(frozen=True, slots=True)
class ToolResultTurn:
    results: tuple[ToolCallResult, ...] = ()
    role: Literal["tool"] = "tool"


Turn = Union[SystemTurn, UserTurn, AssistantTurn, ToolResultTurn]


@dataclass(frozen=True, slots=True)
class TextDelta:
    """A streamed text fragment."""

    text: str


# Incremental-mode events: text fragments and tool-call requests, in production order.
ModelEvent = Union[TextDelta, ToolCallRequest]


@dataclass(frozen=True, slots=True)
class ModelMessage:
    """One completed model message (completed mode)."""

    items: tuple[AssistantPart, ...] = ()


@dataclass(frozen=True, slots=True)
class ToolOutput:
    """Raw outcome of a single remote tool invocation.

    `content` is passed through exactly as the backend supplied it.
    """

    content: Any
    is_error: bool = False
    structured: dict[str, Any] | None = None

"""Tool registry adapter.

Translates a backend's advertised tools into the model-facing calling
convention. The snapshot is taken once per connection and never mutated.

Listing failures are non-fatal: the connection stays usable for plain
conversation with an empty tool set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterator, Mapping

from mcp_chat_relay.core.types import ToolDescriptor

from .transport import ToolTransport


logger = logging.getLogger(__name__)


_EMPTY_OBJECT_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}


@dataclass(frozen=True)
class ToolSnapshot:
    tools: Mapping[str, ToolDescriptor] = field(default_factory=lambda: MappingProxyType({}))

    def __len__(self) -> int:
        return len(self.tools)

    def __iter__(self) -> Iterator[ToolDescriptor]:
        return iter(self.tools.values())

    def __contains__(self, name: object) -> bool:
        return name in self.tools

    def names(self) -> list[str]:
        return list(self.tools.keys())

    def to_model_tools(self) -> list[dict[str, Any]]:
        """Return OpenAI-compatible tool specs.

        {
          "type": "function",
          "function": {"name": ..., "description": ..., "parameters": {...JSON Schema...}}
        }
        """

        return [tool_to_model_spec(t) for t in self.tools.values()]


def tool_to_model_spec(tool: ToolDescriptor) -> dict[str, Any]:
    parameters = dict(tool.input_schema) if tool.input_schema else dict(_EMPTY_OBJECT_SCHEMA)
    # Function-calling APIs require an object schema.
    if parameters.get("type") != "object":
        parameters = dict(_EMPTY_OBJECT_SCHEMA)

    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description,
            "parameters": parameters,
        },
    }


def snapshot_from_descriptors(descriptors: list[ToolDescriptor]) -> ToolSnapshot:
    tools: dict[str, ToolDescriptor] = {}
    for d in descriptors:
        if not d.name:
            continue
        if d.name in tools:
            logger.warning("duplicate_tool_name", extra={"tool": d.name})
            continue
        tools[d.name] = d
    return ToolSnapshot(tools=MappingProxyType(tools))


async def build_tool_snapshot(transport: ToolTransport, handle: Any, *, backend_id: str = "") -> ToolSnapshot:
    try:
        descriptors = await transport.list_tools(handle)
    except Exception as e:  # noqa: BLE001
        logger.error(
            "tool_list_failed",
            extra={"backend_id": backend_id, "error": str(e), "exc": type(e).__name__},
        )
        return ToolSnapshot()

    snapshot = snapshot_from_descriptors(list(descriptors))
    logger.info("mcp_tools_loaded", extra={"backend_id": backend_id, "tools": snapshot.names()})
    return snapshot

"""MCP integration layer.

Notes:
- The third-party MCP SDK remains importable as the top-level `mcp` package.
- The internal integration layer is namespaced under `mcp_chat_relay.mcp`.
"""

from __future__ import annotations

from .connection import Connection, open_connection
from .gateway import ToolGateway
from .launch import LaunchSpec, resolve_catalog, resolve_launch_spec
from .registry import ToolSnapshot, build_tool_snapshot
from .transport import StdioToolTransport, ToolTransport

__all__ = [
    "Connection",
    "LaunchSpec",
    "StdioToolTransport",
    "ToolGateway",
    "ToolSnapshot",
    "ToolTransport",
    "build_tool_snapshot",
    "open_connection",
    "resolve_catalog",
    "resolve_launch_spec",
]

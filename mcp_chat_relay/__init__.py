"""mcp-chat-relay: streamed multi-turn chat with MCP tool execution."""

from __future__ import annotations

from mcp_chat_relay.core import __version__

__all__ = ["__version__"]

"""Tool transport: the MCP wire behind a tiny protocol.

The concrete implementation launches a backend process over stdio with the
upstream MCP Python SDK and keeps one long-lived `ClientSession` per connection.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

from mcp_chat_relay.core.errors import BackendConnectionError, ToolExecutionError, ToolListError
from mcp_chat_relay.core.types import ToolDescriptor, ToolOutput

from .launch import LaunchSpec


logger = logging.getLogger(__name__)


class ToolTransport(Protocol):
    """Smallest useful MCP client surface."""

    async def connect(self, launch: LaunchSpec) -> Any:
        """Start the backend and complete the handshake.

        Raises BackendConnectionError on failure.
        """
        ...

    async def list_tools(self, handle: Any) -> list[ToolDescriptor]:
        """Raises ToolListError on failure."""
        ...

    async def call_tool(self, handle: Any, name: str, arguments: dict[str, Any]) -> ToolOutput:
        """Raises ToolExecutionError on transport failure."""
        ...

    async def close(self, handle: Any) -> None:
        """Release the handle. Closing twice is a no-op."""
        ...


class StdioSession:
    """Owner task for one stdio MCP session.

    The SDK's context managers use anyio cancel scopes, which must be exited by
    the task that entered them. A dedicated task holds them open so that any
    caller (chat, disconnect, idle sweep) can use or close the session.
    """

    def __init__(self, launch: LaunchSpec, *, close_timeout_s: float = 10.0) -> None:
        self.launch = launch
        self._close_timeout_s = close_timeout_s
        self._ready = asyncio.Event()
        self._closing = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._session: ClientSession | None = None
        self._error: BaseException | None = None
        self._closed = False

    @property
    def session(self) -> ClientSession:
        if self._session is None:
            raise ToolExecutionError("mcp_unavailable", f"MCP session for {self.launch.backend_id!r} is not running")
        return self._session

    async def open(self) -> None:
        self._task = asyncio.create_task(self._run(), name=f"mcp-session-{self.launch.backend_id}")
        try:
            await self._ready.wait()
        except asyncio.CancelledError:
            self._closing.set()
            self._task.cancel()
            raise

        if self._error is not None:
            raise BackendConnectionError(self.launch.backend_id, str(self._error)) from self._error

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._closing.set()
        if self._task is not None:
            await asyncio.wait_for(self._task, timeout=self._close_timeout_s)

    async def _run(self) -> None:
        params = StdioServerParameters(
            command=self.launch.command,
            args=list(self.launch.args),
            env=dict(self.launch.env),
            cwd=self.launch.cwd,
        )
        try:
            async with stdio_client(params) as (read, write):
                async with ClientSession(read, write) as session:
                    await session.initialize()
                    self._session = session
                    self._ready.set()
                    await self._closing.wait()
        except Exception as e:  # noqa: BLE001
            if not self._ready.is_set():
                self._error = e
            else:
                logger.warning(
                    "mcp_session_ended",
                    extra={"backend_id": self.launch.backend_id, "error": str(e), "exc": type(e).__name__},
                )
        finally:
            self._session = None
            self._ready.set()


class StdioToolTransport:
    """ToolTransport over stdio using the upstream MCP SDK."""

    async def connect(self, launch: LaunchSpec) -> StdioSession:
        handle = StdioSession(launch)
        await handle.open()
        return handle

    async def list_tools(self, handle: StdioSession) -> list[ToolDescriptor]:
        tools: list[ToolDescriptor] = []
        cursor: str | None = None
        try:
            while True:
                result = await handle.session.list_tools(cursor=cursor) if cursor else await handle.session.list_tools()
                for t in result.tools:
                    tools.append(
                        ToolDescriptor(
                            name=t.name,
                            description=t.description or "",
                            input_schema=dict(t.inputSchema or {}),
                        )
                    )
                cursor = getattr(result, "nextCursor", None)
                if not cursor:
                    return tools
        except Exception as e:  # noqa: BLE001
            raise ToolListError(str(e)) from e

    async def call_tool(self, handle: StdioSession, name: str, arguments: dict[str, Any]) -> ToolOutput:
        try:
            result = await handle.session.call_tool(name, arguments=arguments)
        except ToolExecutionError:
            raise
        except Exception as e:  # noqa: BLE001
            raise ToolExecutionError("mcp_error", str(e), details={"exc": type(e).__name__}) from e

        content = [block.model_dump(mode="json", exclude_none=True) for block in result.content]
        structured = getattr(result, "structuredContent", None)
        return ToolOutput(
            content=content,
            is_error=bool(result.isError),
            structured=structured if isinstance(structured, dict) and structured else None,
        )

    async def close(self, handle: StdioSession) -> None:
        await handle.close()

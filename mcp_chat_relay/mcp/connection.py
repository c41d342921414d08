from __future__ import annotations

import asyncio
import logging
from typing import Any

from mcp_chat_relay.core.errors import BackendConnectionError

from .launch import LaunchSpec
from .registry import ToolSnapshot, build_tool_snapshot
from .transport import ToolTransport


logger = logging.getLogger(__name__)


class Connection:
    """A live backend connection plus the tool snapshot taken when it opened.

    Owned by at most one session. `close()` must be called before the
    connection is discarded; closing twice is a no-op.
    """

    def __init__(self, *, launch: LaunchSpec, transport: ToolTransport, handle: Any, tools: ToolSnapshot) -> None:
        self.launch = launch
        self.transport = transport
        self.handle = handle
        self.tools = tools
        self._closed = False

    @property
    def backend_id(self) -> str:
        return self.launch.backend_id

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.transport.close(self.handle)


async def open_connection(transport: ToolTransport, launch: LaunchSpec, *, timeout_s: float | None = None) -> Connection:
    """Connect to a backend and snapshot its tools.

    Raises:
        BackendConnectionError: If the process fails to start, the handshake
            fails, or it does not complete within `timeout_s`.
    """

    try:
        handle = await asyncio.wait_for(transport.connect(launch), timeout=timeout_s)
    except BackendConnectionError:
        raise
    except TimeoutError as e:
        raise BackendConnectionError(launch.backend_id, f"connect timed out after {timeout_s}s") from e
    except Exception as e:  # noqa: BLE001
        raise BackendConnectionError(launch.backend_id, str(e)) from e

    tools = await build_tool_snapshot(transport, handle, backend_id=launch.backend_id)
    return Connection(launch=launch, transport=transport, handle=handle, tools=tools)

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from mcp_chat_relay.core.clock import elapsed_ms
from mcp_chat_relay.core.errors import ToolExecutionError
from mcp_chat_relay.core.types import ToolCallRequest, ToolCallResult

from .connection import Connection
from .result_codec import normalize_error, text_of_content


logger = logging.getLogger(__name__)


class ToolGateway:
    """Execute single tool calls against a backend connection.

    Every outcome is a well-formed ToolCallResult: transport errors, timeouts
    and remote tool errors are folded into a failure result instead of raised,
    so one failing call never aborts the conversation loop.
    """

    def __init__(self, *, timeout_s: float | None = 60.0) -> None:
        self._timeout_s = timeout_s

    async def execute(self, connection: Connection, request: ToolCallRequest) -> ToolCallResult:
        extra: dict[str, Any] = {
            "tool_call_id": request.id,
            "tool": request.name,
            "backend_id": connection.backend_id,
        }

        if connection.closed:
            return self._failure(request, "mcp_unavailable", "connection is closed", extra=extra)

        if request.name not in connection.tools:
            return self._failure(request, "not_found", f"tool not registered: {request.name}", extra=extra)

        t0 = time.perf_counter()
        try:
            output = await asyncio.wait_for(
                connection.transport.call_tool(connection.handle, request.name, dict(request.arguments)),
                timeout=self._timeout_s,
            )
        except asyncio.CancelledError:
            raise
        except TimeoutError:
            return self._failure(
                request,
                "timeout",
                f"tool call timed out after {self._timeout_s}s",
                details={"timeout_s": str(self._timeout_s)},
                extra=extra,
            )
        except ToolExecutionError as e:
            return self._failure(request, e.error_type, e.message, details=e.details, extra=extra)
        except Exception as e:  # noqa: BLE001
            return self._failure(request, "mcp_error", str(e) or type(e).__name__, details={"exc": type(e).__name__}, extra=extra)

        latency_ms = elapsed_ms(t0)

        if output.is_error:
            message = text_of_content(output.content) or "tool reported an error"
            return self._failure(request, "tool_error", message, details={"content": output.content}, extra=extra)

        logger.info("tool_ok", extra={**extra, "latency_ms": latency_ms})
        # Content blocks as received, wrapped next to structuredContent when the tool sent one.
        payload: Any = output.content
        if output.structured is not None:
            payload = {"content": output.content, "structuredContent": output.structured}
        return ToolCallResult(tool_call_id=request.id, name=request.name, payload=payload)

    def _failure(
        self,
        request: ToolCallRequest,
        error_type: str,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        extra: dict[str, Any],
    ) -> ToolCallResult:
        logger.warning("tool_error", extra={**extra, "error_type": error_type, "error": message})
        return ToolCallResult(
            tool_call_id=request.id,
            name=request.name,
            payload=None,
            is_error=True,
            error=normalize_error(error_type=error_type, message=message, details=details),
        )

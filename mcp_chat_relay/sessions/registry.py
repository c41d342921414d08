"""Session registry.

Maps opaque session keys to live backend connections and owns their lifecycle:
creation, reuse, the session-count ceiling, idle reclamation and teardown.

Locking:
- `_lock` guards the session map and the in-flight connect counter.
- One lock per key serializes connect / disconnect / sweep on that key. The
  entry only exists while someone holds or waits on it.
- `Session.lock` is held for the whole duration of a chat, so teardown of a
  session waits for the in-flight chat on it.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Mapping, Sequence

from mcp_chat_relay.config.model import OrchestratorConfig, RegistryConfig, RelayConfig
from mcp_chat_relay.core.clock import monotonic_s
from mcp_chat_relay.core.errors import (
    BackendConnectionError,
    CapacityError,
    RelayError,
    TerminalChatError,
    UnknownBackendError,
)
from mcp_chat_relay.core.transcript import with_system_prompt
from mcp_chat_relay.core.types import Turn
from mcp_chat_relay.llm.base import ModelCapability
from mcp_chat_relay.mcp.connection import Connection, open_connection
from mcp_chat_relay.mcp.gateway import ToolGateway
from mcp_chat_relay.mcp.launch import LaunchSpec
from mcp_chat_relay.mcp.transport import ToolTransport
from mcp_chat_relay.orchestrator import ConversationOrchestrator, DirectChat, strategy_for


logger = logging.getLogger(__name__)


class ConnectStatus(str, enum.Enum):
    OK = "ok"
    ALREADY_CONNECTED = "already_connected"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    UNKNOWN_BACKEND = "unknown_backend"
    BACKEND_UNAVAILABLE = "backend_unavailable"


class DisconnectStatus(str, enum.Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    # The slot is freed anyway.
    TEARDOWN_FAILED = "teardown_failed"


@dataclass(slots=True)
class Session:
    key: str
    backend_id: str
    connection: Connection
    last_activity: float
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def in_use(self) -> bool:
        return self.lock.locked()


@dataclass(slots=True)
class ChatOutcome:
    """What one `SessionRegistry.chat` call left behind.

    `turns` are the turns the call added after the caller's transcript (tool
    rounds and the final assistant turn). `error` is set when the call ended
    with a terminal error; `turns` then stops at the last complete round.
    """

    turns: list[Turn] = field(default_factory=list)
    error: TerminalChatError | None = None


@dataclass(slots=True)
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    # Holders plus waiters.
    users: int = 0


@dataclass(frozen=True)
class RegistrySettings:
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    system_prompt: str | None = None

    @classmethod
    def from_config(cls, cfg: RelayConfig) -> "RegistrySettings":
        return cls(registry=cfg.registry, orchestrator=cfg.orchestrator, system_prompt=cfg.model.system_prompt)


class SessionRegistry:
    """Process-wide registry of sessions keyed by an opaque string."""

    def __init__(
        self,
        catalog: Mapping[str, LaunchSpec],
        transport: ToolTransport,
        model: ModelCapability,
        settings: RegistrySettings | None = None,
        *,
        clock: Callable[[], float] = monotonic_s,
    ) -> None:
        self._catalog = dict(catalog)
        self._transport = transport
        self._model = model
        self._settings = settings or RegistrySettings()
        self._clock = clock
        self._gateway = ToolGateway(timeout_s=self._settings.orchestrator.tool_timeout_s)

        self._sessions: dict[str, Session] = {}
        self._pending_connects = 0
        self._lock = asyncio.Lock()
        self._key_locks: dict[str, _KeyLock] = {}
        self._sweeper: asyncio.Task[None] | None = None

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def get(self, key: str) -> Session | None:
        return self._sessions.get(key)

    def list_backends(self) -> list[dict[str, str]]:
        return [{"id": backend_id, "display_name": spec.display_name} for backend_id, spec in self._catalog.items()]

    @contextlib.asynccontextmanager
    async def _key_lock(self, key: str) -> AsyncIterator[None]:
        """Hold the per-key lock; the entry is dropped once nobody holds or waits on it."""

        entry = self._key_locks.get(key)
        if entry is None:
            entry = self._key_locks[key] = _KeyLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._key_locks.get(key) is entry:
                del self._key_locks[key]

    async def connect(self, key: str, backend_id: str) -> ConnectStatus:
        status, _ = await self._connect(key, backend_id)
        return status

    async def connect_or_raise(self, key: str, backend_id: str) -> Session:
        """Like `connect`, but failures raise the matching RelayError."""

        status, error = await self._connect(key, backend_id)
        if error is not None:
            raise error
        session = self._sessions.get(key)
        if session is None:
            raise RelayError(f"session {key!r} vanished right after {status.value}")
        return session

    async def _connect(self, key: str, backend_id: str) -> tuple[ConnectStatus, RelayError | None]:
        if not key:
            raise ValueError("session key must be a non-empty string")

        async with self._key_lock(key):
            existing = self._sessions.get(key)
            if existing is not None and existing.backend_id == backend_id:
                existing.last_activity = self._clock()
                logger.info("session_already_connected", extra={"session_key": key, "backend_id": backend_id})
                return ConnectStatus.ALREADY_CONNECTED, None

            launch = self._catalog.get(backend_id)
            if launch is None:
                logger.warning("unknown_backend", extra={"session_key": key, "backend_id": backend_id})
                return ConnectStatus.UNKNOWN_BACKEND, UnknownBackendError(backend_id, available=list(self._catalog))

            if existing is not None:
                logger.info(
                    "session_switching_backend",
                    extra={"session_key": key, "from": existing.backend_id, "to": backend_id},
                )
                async with existing.lock:
                    await self._teardown(existing, reason="switch")

            async with self._lock:
                max_sessions = self._settings.registry.max_sessions
                if len(self._sessions) + self._pending_connects >= max_sessions:
                    logger.warning(
                        "capacity_exceeded",
                        extra={"session_key": key, "sessions": len(self._sessions), "pending": self._pending_connects},
                    )
                    return ConnectStatus.CAPACITY_EXCEEDED, CapacityError(max_sessions=max_sessions)
                self._pending_connects += 1

            connection: Connection | None = None
            try:
                connection = await open_connection(
                    self._transport, launch, timeout_s=self._settings.registry.connect_timeout_s
                )
            except BackendConnectionError as e:
                logger.error("backend_unavailable", extra={"session_key": key, "backend_id": backend_id, "error": str(e)})
                return ConnectStatus.BACKEND_UNAVAILABLE, e
            finally:
                async with self._lock:
                    self._pending_connects -= 1
                    if connection is not None:
                        self._sessions[key] = Session(
                            key=key,
                            backend_id=backend_id,
                            connection=connection,
                            last_activity=self._clock(),
                        )

            logger.info(
                "session_connected",
                extra={
                    "session_key": key,
                    "backend_id": backend_id,
                    "tools": connection.tools.names(),
                    "sessions": len(self._sessions),
                },
            )
            return ConnectStatus.OK, None

    async def disconnect(self, key: str) -> DisconnectStatus:
        if not key:
            raise ValueError("session key must be a non-empty string")

        async with self._key_lock(key):
            session = self._sessions.get(key)
            if session is None:
                return DisconnectStatus.NOT_FOUND
            async with session.lock:
                ok = await self._teardown(session, reason="disconnect")
            return DisconnectStatus.OK if ok else DisconnectStatus.TEARDOWN_FAILED

    async def _teardown(self, session: Session, *, reason: str) -> bool:
        """Remove the session, then close its connection.

        Removal always happens; close errors are logged and reported as False.
        """

        async with self._lock:
            if self._sessions.get(session.key) is session:
                del self._sessions[session.key]
            remaining = len(self._sessions)

        try:
            await session.connection.close()
        except Exception as e:  # noqa: BLE001
            logger.error(
                "session_teardown_failed",
                extra={"session_key": session.key, "backend_id": session.backend_id, "reason": reason, "error": str(e)},
            )
            return False
        finally:
            logger.info(
                "session_removed",
                extra={"session_key": session.key, "backend_id": session.backend_id, "reason": reason, "sessions": remaining},
            )
        return True

    async def chat(
        self,
        key: str,
        transcript: Sequence[Turn],
        outcome: ChatOutcome | None = None,
    ) -> AsyncIterator[str]:
        """Stream the reply for `transcript`.

        Unknown keys fall back to a single tool-less model call. Otherwise the
        orchestrator runs against the session's connection while holding the
        session lock. When `outcome` is given it is filled in once the stream
        is exhausted.
        """

        if not transcript:
            raise ValueError("transcript must contain at least one turn")

        turns = with_system_prompt(transcript, self._settings.system_prompt)
        mode = self._settings.orchestrator.mode

        session = self._sessions.get(key) if key else None
        if session is not None:
            async with session.lock:
                # Torn down while waiting for the lock.
                if self._sessions.get(key) is session:
                    session.last_activity = self._clock()
                    orchestrator = ConversationOrchestrator(
                        model=self._model,
                        connection=session.connection,
                        gateway=self._gateway,
                        strategy=strategy_for(mode),
                        max_rounds=self._settings.orchestrator.max_rounds,
                        max_concurrency=self._settings.orchestrator.max_concurrency,
                        session_key=key,
                    )
                    try:
                        async for chunk in orchestrator.stream(turns):
                            yield chunk
                    finally:
                        session.last_activity = self._clock()
                    if outcome is not None:
                        outcome.turns = orchestrator.transcript[len(turns):]
                        outcome.error = orchestrator.error
                    return

        logger.info("direct_chat_fallback", extra={"session_key": key or None})
        direct = DirectChat(self._model, mode, session_key=key or None)
        async for chunk in direct.stream(turns):
            yield chunk
        if outcome is not None:
            outcome.turns = direct.transcript[len(turns):]
            outcome.error = direct.error

    async def sweep_idle(self) -> list[str]:
        """Tear down sessions idle longer than `idle_timeout_s`; return their keys."""

        timeout = self._settings.registry.idle_timeout_s
        now = self._clock()
        candidates = [
            s for s in list(self._sessions.values()) if not s.in_use and now - s.last_activity > timeout
        ]

        reclaimed: list[str] = []
        for session in candidates:
            if session.key in self._key_locks or session.in_use:
                continue
            async with self._key_lock(session.key):
                async with session.lock:
                    if self._sessions.get(session.key) is not session:
                        continue
                    if self._clock() - session.last_activity <= timeout:
                        continue
                    await self._teardown(session, reason="idle")
                    reclaimed.append(session.key)

        if reclaimed:
            logger.info("idle_sessions_reclaimed", extra={"keys": reclaimed, "sessions": len(self._sessions)})
        return reclaimed

    async def _sweep_loop(self) -> None:
        interval = self._settings.registry.sweep_interval_s
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep_idle()
            except Exception:  # noqa: BLE001
                logger.exception("idle_sweep_failed")

    def start(self) -> None:
        """Start the periodic idle sweep. Needs a running event loop."""

        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop(), name="session-idle-sweep")

    async def aclose(self) -> None:
        """Stop the idle sweep and tear down every session."""

        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None

        for session in list(self._sessions.values()):
            async with self._key_lock(session.key):
                async with session.lock:
                    await self._teardown(session, reason="shutdown")

    async def __aenter__(self) -> "SessionRegistry":
        self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

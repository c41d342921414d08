from __future__ import annotations

import secrets
from contextvars import ContextVar


_session_key: ContextVar[str | None] = ContextVar("session_key", default=None)
_call_id: ContextVar[str | None] = ContextVar("call_id", default=None)
_round: ContextVar[int | None] = ContextVar("round", default=None)
_state: ContextVar[str | None] = ContextVar("state", default=None)


def new_call_id() -> str:
    return secrets.token_hex(8)


def bind_context(*, session_key: str | None, call_id: str) -> None:
    _session_key.set(session_key)
    _call_id.set(call_id)
    _round.set(None)
    _state.set(None)


def set_round(round_no: int) -> None:
    _round.set(round_no)


def set_state(state: str) -> None:
    _state.set(state)


def snapshot() -> dict[str, object]:
    """Return a snapshot of current observability context for logging."""

    out: dict[str, object] = {}
    if (v := _session_key.get()) is not None:
        out["session_key"] = v
    if (v := _call_id.get()) is not None:
        out["call_id"] = v
    if (v := _round.get()) is not None:
        out["round"] = v
    if (v := _state.get()) is not None:
        out["state"] = v
    return out

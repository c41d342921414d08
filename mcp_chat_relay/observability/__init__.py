from __future__ import annotations

from .context import bind_context, new_call_id, set_round, set_state
from .logging import configure_logging

__all__ = ["bind_context", "configure_logging", "new_call_id", "set_round", "set_state"]

from __future__ import annotations

from .registry import ChatOutcome, ConnectStatus, DisconnectStatus, RegistrySettings, Session, SessionRegistry

__all__ = ["ChatOutcome", "ConnectStatus", "DisconnectStatus", "RegistrySettings", "Session", "SessionRegistry"]

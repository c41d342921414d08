from __future__ import annotations

from .direct import DirectChat
from .loop import ConversationOrchestrator
from .strategies import CompletedStrategy, IncrementalStrategy, ResponseStrategy, strategy_for

__all__ = [
    "CompletedStrategy",
    "ConversationOrchestrator",
    "DirectChat",
    "IncrementalStrategy",
    "ResponseStrategy",
    "strategy_for",
]

from __future__ import annotations

from .base import ModelCapability
from .client import LangChainChatModel
from .scripted import ScriptedModel

__all__ = ["LangChainChatModel", "ModelCapability", "ScriptedModel"]

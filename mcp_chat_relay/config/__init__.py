"""Configuration loading and schema.

- YAML-first configuration under configs/*.yaml
- Strict ${ENV_VAR} expansion (missing/empty env vars are errors)
"""

from __future__ import annotations

from mcp_chat_relay.core.errors import ConfigError

from .loader import load_config_dict, resolve_profile_configs
from .model import (
    BackendConfig,
    ModelConfig,
    OrchestratorConfig,
    RegistryConfig,
    RelayConfig,
    load_config,
    parse_config,
)

__all__ = [
    "BackendConfig",
    "ConfigError",
    "ModelConfig",
    "OrchestratorConfig",
    "RegistryConfig",
    "RelayConfig",
    "load_config",
    "load_config_dict",
    "parse_config",
    "resolve_profile_configs",
]

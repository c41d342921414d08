from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Sequence

from mcp_chat_relay.core.errors import ConfigError

from .loader import load_config_dict


@dataclass(frozen=True)
class ModelConfig:
    api_key: str
    base_url: str | None = None
    model: str = "gpt-4o-mini"
    temperature: float | None = None
    timeout_s: float = 60.0
    max_retries: int = 2
    system_prompt: str | None = None


@dataclass(frozen=True)
class OrchestratorConfig:
    mode: str = "incremental"
    # 0 disables the cap.
    max_rounds: int = 10
    tool_timeout_s: float = 60.0
    max_concurrency: int = 4


@dataclass(frozen=True)
class RegistryConfig:
    max_sessions: int = 10
    idle_timeout_s: float = 600.0
    sweep_interval_s: float = 60.0
    connect_timeout_s: float = 30.0


@dataclass(frozen=True)
class BackendConfig:
    """One selectable MCP backend, launched over stdio."""

    display_name: str
    command: str
    args: list[str] = field(default_factory=list)
    cwd: str | None = None
    env: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class RelayConfig:
    model: ModelConfig
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    backends: dict[str, BackendConfig] = field(default_factory=dict)


MODES = ("incremental", "completed")


def _section(raw: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError("must be a mapping", path=key)
    return value


def _positive(value: Any, *, path: str, allow_zero: bool = False) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError("must be a number", path=path) from e
    if number < 0 or (number == 0 and not allow_zero):
        raise ConfigError("must be >= 0" if allow_zero else "must be > 0", path=path)
    return number


def _parse_model(raw: Mapping[str, Any]) -> ModelConfig:
    api_key = raw.get("api_key")
    if api_key is None or api_key == "":
        api_key = os.getenv("OPENAI_API_KEY")
    if not isinstance(api_key, str) or not api_key.strip():
        raise ConfigError("must be a non-empty string (or set OPENAI_API_KEY)", path="model.api_key")

    base_url = raw.get("base_url")
    if base_url is not None and not isinstance(base_url, str):
        raise ConfigError("must be a string", path="model.base_url")

    temperature = raw.get("temperature")
    system_prompt = raw.get("system_prompt")

    return ModelConfig(
        api_key=api_key,
        base_url=base_url or None,
        model=str(raw.get("model", ModelConfig.model)),
        temperature=float(temperature) if temperature is not None else None,
        timeout_s=_positive(raw.get("timeout_s", ModelConfig.timeout_s), path="model.timeout_s"),
        max_retries=int(raw.get("max_retries", ModelConfig.max_retries)),
        system_prompt=str(system_prompt) if system_prompt else None,
    )


def _parse_orchestrator(raw: Mapping[str, Any]) -> OrchestratorConfig:
    mode = str(raw.get("mode", OrchestratorConfig.mode))
    if mode not in MODES:
        raise ConfigError(f"must be one of {', '.join(MODES)}", path="orchestrator.mode")

    max_concurrency = int(raw.get("max_concurrency", OrchestratorConfig.max_concurrency))
    if max_concurrency < 1:
        raise ConfigError("must be an integer >= 1", path="orchestrator.max_concurrency")

    return OrchestratorConfig(
        mode=mode,
        max_rounds=int(
            _positive(raw.get("max_rounds", OrchestratorConfig.max_rounds), path="orchestrator.max_rounds", allow_zero=True)
        ),
        tool_timeout_s=_positive(
            raw.get("tool_timeout_s", OrchestratorConfig.tool_timeout_s), path="orchestrator.tool_timeout_s"
        ),
        max_concurrency=max_concurrency,
    )


def _parse_registry(raw: Mapping[str, Any]) -> RegistryConfig:
    max_sessions = int(raw.get("max_sessions", RegistryConfig.max_sessions))
    if max_sessions < 1:
        raise ConfigError("must be an integer >= 1", path="registry.max_sessions")

    return RegistryConfig(
        max_sessions=max_sessions,
        idle_timeout_s=_positive(raw.get("idle_timeout_s", RegistryConfig.idle_timeout_s), path="registry.idle_timeout_s"),
        sweep_interval_s=_positive(
            raw.get("sweep_interval_s", RegistryConfig.sweep_interval_s), path="registry.sweep_interval_s"
        ),
        connect_timeout_s=_positive(
            raw.get("connect_timeout_s", RegistryConfig.connect_timeout_s), path="registry.connect_timeout_s"
        ),
    )


def _parse_backends(raw: Mapping[str, Any]) -> dict[str, BackendConfig]:
    backends: dict[str, BackendConfig] = {}
    for backend_id, entry in raw.items():
        path = f"backends.{backend_id}"
        if not isinstance(backend_id, str) or not backend_id:
            raise ConfigError("backend id must be a non-empty string", path="backends")
        if not isinstance(entry, Mapping):
            raise ConfigError("backend config must be a mapping", path=path)

        command = entry.get("command")
        if not isinstance(command, str) or not command.strip():
            raise ConfigError("stdio backends need a command", path=f"{path}.command")

        args = entry.get("args", [])
        if args is None:
            args = []
        if not isinstance(args, list) or not all(isinstance(x, str) for x in args):
            raise ConfigError("must be a list of strings", path=f"{path}.args")

        env = entry.get("env", {})
        if env is None:
            env = {}
        if not isinstance(env, Mapping):
            raise ConfigError("must be a mapping of strings", path=f"{path}.env")

        cwd = entry.get("cwd")
        if cwd is not None and not isinstance(cwd, str):
            raise ConfigError("must be a string", path=f"{path}.cwd")

        backends[backend_id] = BackendConfig(
            display_name=str(entry.get("display_name") or backend_id),
            command=command,
            args=list(args),
            cwd=cwd or None,
            env={str(k): str(v) for k, v in env.items()},
        )
    return backends


def parse_config(raw: Mapping[str, Any]) -> RelayConfig:
    """Build a typed RelayConfig from an expanded config mapping."""

    return RelayConfig(
        model=_parse_model(_section(raw, "model")),
        orchestrator=_parse_orchestrator(_section(raw, "orchestrator")),
        registry=_parse_registry(_section(raw, "registry")),
        backends=_parse_backends(_section(raw, "backends")),
    )


def load_config(paths: str | Path | Sequence[Path], **kwargs: Any) -> RelayConfig:
    if isinstance(paths, str):
        paths = Path(paths)
    return parse_config(load_config_dict(paths, **kwargs))

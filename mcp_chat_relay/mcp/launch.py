from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from mcp_chat_relay.config.model import BackendConfig


@dataclass(frozen=True, slots=True)
class LaunchSpec:
    """Everything needed to start one backend process over stdio.

    Resolved once per catalog entry and passed opaquely to the transport.
    """

    backend_id: str
    display_name: str
    command: str
    args: tuple[str, ...] = ()
    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)


def merge_env(parent: Mapping[str, str], overrides: Mapping[str, str]) -> dict[str, str]:
    """Parent environment overlaid by backend overrides.

    PATH comes from the overrides when set there, else from the parent, else "".
    """

    env = {**parent, **overrides}
    env["PATH"] = overrides.get("PATH") or parent.get("PATH") or ""
    return env


def resolve_launch_spec(
    backend_id: str,
    cfg: BackendConfig,
    *,
    parent_env: Mapping[str, str] | None = None,
    base_dir: Path | None = None,
) -> LaunchSpec:
    cwd: str | None = None
    if cfg.cwd:
        p = Path(cfg.cwd).expanduser()
        if not p.is_absolute():
            p = (base_dir or Path.cwd()) / p
        cwd = str(p.resolve())

    return LaunchSpec(
        backend_id=backend_id,
        display_name=cfg.display_name,
        command=cfg.command,
        args=tuple(cfg.args),
        cwd=cwd,
        env=merge_env(dict(os.environ) if parent_env is None else parent_env, cfg.env),
    )


def resolve_catalog(
    backends: Mapping[str, BackendConfig],
    *,
    parent_env: Mapping[str, str] | None = None,
    base_dir: Path | None = None,
) -> dict[str, LaunchSpec]:
    return {
        backend_id: resolve_launch_spec(backend_id, cfg, parent_env=parent_env, base_dir=base_dir)
        for backend_id, cfg in backends.items()
    }

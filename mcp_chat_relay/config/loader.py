"""YAML config files -> one expanded mapping.

Files are merged in order (later wins, mappings merge recursively), then every
`${NAME}` placeholder is replaced from the environment. A placeholder whose
variable is unset or empty is an error; all of them are reported at once so a
fresh checkout can be fixed in one pass.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Sequence

import yaml
from dotenv import load_dotenv

from mcp_chat_relay.core.errors import ConfigError


_PLACEHOLDER = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


@dataclass(slots=True)
class _Expander:
    sources: str
    environ: Mapping[str, str]
    problems: list[str] = field(default_factory=list)

    def expand(self, value: Any, where: str = "") -> Any:
        if isinstance(value, str):
            return _PLACEHOLDER.sub(lambda m: self._lookup(m, where), value)
        if isinstance(value, Mapping):
            return {str(k): self.expand(v, f"{where}.{k}" if where else str(k)) for k, v in value.items()}
        if isinstance(value, list):
            return [self.expand(v, f"{where}[{i}]") for i, v in enumerate(value)]
        return value

    def _lookup(self, match: re.Match[str], where: str) -> str:
        name = match.group(1)
        value = self.environ.get(name)
        if value:
            return value
        state = "missing" if value is None else "empty"
        self.problems.append(f"- {name} ({state}) at {where or '<root>'} in {self.sources}")
        return match.group(0)


def merge_mappings(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> dict[str, Any]:
    """Recursive merge; non-mapping values in `overlay` replace those in `base`."""

    merged = dict(base)
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = merge_mappings(current, value)
        else:
            merged[key] = value
    return merged


def _read_fragment(path: Path) -> Mapping[str, Any]:
    if not path.is_file():
        raise ConfigError("Config file not found", path=str(path))
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read YAML config: {e}", path=str(path)) from e
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigError("Top-level YAML must be a mapping", path=str(path))
    return data


def load_config_dict(
    paths: Path | Sequence[Path],
    *,
    load_dotenv_file: bool = True,
    dotenv_path: Path | None = None,
) -> dict[str, Any]:
    """Load, merge and expand one or more YAML files.

    Args:
        paths: A file or an ordered list of files (later files override earlier ones).
        load_dotenv_file: Load a .env file first. Variables already set win.
        dotenv_path: The .env to load; defaults to `./.env`.

    Raises:
        ConfigError: Missing file, unreadable YAML, non-mapping document, or
            unresolved `${NAME}` placeholders.
    """

    files = [paths] if isinstance(paths, Path) else list(paths)
    if not files:
        raise ConfigError("No config files provided")

    if load_dotenv_file:
        load_dotenv(dotenv_path or Path.cwd() / ".env", override=False)

    merged: dict[str, Any] = {}
    for path in files:
        merged = merge_mappings(merged, _read_fragment(path))

    expander = _Expander(sources=",".join(str(p) for p in files), environ=os.environ)
    expanded = expander.expand(merged)
    if expander.problems:
        raise ConfigError("\n".join(["Unresolved environment variables in config:", *expander.problems]))
    return expanded


_PROFILES: dict[str, tuple[str, ...]] = {
    "app": ("app.yaml",),
    "dev": ("app.yaml", "dev.yaml"),
}


def resolve_profile_configs(*, profile: str, configs_dir: Path) -> list[Path]:
    """Config files for a profile: `app` is app.yaml; `dev` overlays dev.yaml on it."""

    names = _PROFILES.get(profile)
    if names is None:
        raise ConfigError(f"Unknown profile: {profile}")
    return [configs_dir / name for name in names]

from __future__ import annotations

from pathlib import Path

import pytest

from mcp_chat_relay.config import ConfigError, load_config_dict, resolve_profile_configs


def test_load_config_expands_env_vars(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GITHUB_TOKEN", "abc123")

    cfg_path = tmp_path / "app.yaml"
    cfg_path.write_text(
        """
backends:
  github:
    command: docker-compose
    env:
      GITHUB_PERSONAL_ACCESS_TOKEN: ${GITHUB_TOKEN}
nested:
  arr:
    - hi-${GITHUB_TOKEN}
""".lstrip(),
        encoding="utf-8",
    )

    cfg = load_config_dict(cfg_path, load_dotenv_file=False)
    assert cfg["backends"]["github"]["env"]["GITHUB_PERSONAL_ACCESS_TOKEN"] == "abc123"
    assert cfg["nested"]["arr"][0] == "hi-abc123"


def test_load_config_missing_env_var_is_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    monkeypatch.delenv("OTHER_TOKEN", raising=False)

    cfg_path = tmp_path / "app.yaml"
    cfg_path.write_text(
        """
backends:
  github:
    env:
      A: ${GITHUB_TOKEN}
      B: ${OTHER_TOKEN}
""".lstrip(),
        encoding="utf-8",
    )

    with pytest.raises(ConfigError) as ei:
        load_config_dict(cfg_path, load_dotenv_file=False)

    msg = str(ei.value)
    # Every unresolved reference is reported, with its key path.
    assert "GITHUB_TOKEN (missing) at backends.github.env.A" in msg
    assert "OTHER_TOKEN (missing) at backends.github.env.B" in msg


def test_load_config_empty_env_var_is_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GITHUB_TOKEN", "")

    cfg_path = tmp_path / "app.yaml"
    cfg_path.write_text("token: ${GITHUB_TOKEN}\n", encoding="utf-8")

    with pytest.raises(ConfigError) as ei:
        load_config_dict(cfg_path, load_dotenv_file=False)

    msg = str(ei.value)
    assert "GITHUB_TOKEN" in msg
    assert "empty" in msg


def test_later_files_deep_merge_over_earlier(tmp_path: Path) -> None:
    base = tmp_path / "app.yaml"
    base.write_text("registry:\n  max_sessions: 10\n  idle_timeout_s: 600\n", encoding="utf-8")
    overlay = tmp_path / "dev.yaml"
    overlay.write_text("registry:\n  max_sessions: 2\n", encoding="utf-8")

    cfg = load_config_dict([base, overlay], load_dotenv_file=False)

    assert cfg["registry"] == {"max_sessions": 2, "idle_timeout_s": 600}


def test_missing_file_and_bad_yaml_are_config_errors(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_config_dict(tmp_path / "nope.yaml", load_dotenv_file=False)

    bad = tmp_path / "bad.yaml"
    bad.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="mapping"):
        load_config_dict(bad, load_dotenv_file=False)


def test_dotenv_does_not_override_existing_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RELAY_A", "from-env")
    monkeypatch.delenv("RELAY_B", raising=False)

    dotenv = tmp_path / ".env"
    dotenv.write_text("RELAY_A=from-file\nRELAY_B=from-file\n", encoding="utf-8")
    cfg_path = tmp_path / "app.yaml"
    cfg_path.write_text("a: ${RELAY_A}\nb: ${RELAY_B}\n", encoding="utf-8")

    cfg = load_config_dict(cfg_path, dotenv_path=dotenv)

    assert cfg == {"a": "from-env", "b": "from-file"}


def test_resolve_profile_configs(tmp_path: Path) -> None:
    assert resolve_profile_configs(profile="app", configs_dir=tmp_path) == [tmp_path / "app.yaml"]
    assert resolve_profile_configs(profile="dev", configs_dir=tmp_path) == [tmp_path / "app.yaml", tmp_path / "dev.yaml"]
    with pytest.raises(ConfigError):
        resolve_profile_configs(profile="prod", configs_dir=tmp_path)

from __future__ import annotations

from pathlib import Path

import pytest

from mcp_chat_relay.config import ConfigError, load_config, parse_config, resolve_profile_configs


def test_defaults_and_api_key_fallback(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "k_test")

    cfg = parse_config({})

    assert cfg.model.api_key == "k_test"
    assert cfg.model.model == "gpt-4o-mini"
    assert cfg.orchestrator.mode == "incremental"
    assert cfg.orchestrator.max_rounds == 10
    assert cfg.registry.max_sessions == 10
    assert cfg.registry.idle_timeout_s == 600
    assert cfg.backends == {}


def test_missing_api_key_is_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(ConfigError) as ei:
        parse_config({"model": {"model": "gpt-4o-mini"}})

    assert ei.value.path == "model.api_key"


@pytest.mark.parametrize(
    ("raw", "path"),
    [
        ({"orchestrator": {"mode": "batch"}}, "orchestrator.mode"),
        ({"orchestrator": {"max_rounds": -1}}, "orchestrator.max_rounds"),
        ({"registry": {"max_sessions": 0}}, "registry.max_sessions"),
        ({"registry": {"idle_timeout_s": "soon"}}, "registry.idle_timeout_s"),
        ({"backends": {"github": {"display_name": "Github"}}}, "backends.github.command"),
        ({"backends": {"github": {"command": "x", "args": "run"}}}, "backends.github.args"),
        ({"registry": []}, "registry"),
    ],
)
def test_validation_errors_name_the_key_path(raw: dict, path: str) -> None:
    with pytest.raises(ConfigError) as ei:
        parse_config(raw)
    assert ei.value.path == path


def test_max_rounds_zero_disables_the_cap() -> None:
    assert parse_config({"orchestrator": {"max_rounds": 0}}).orchestrator.max_rounds == 0


def test_backend_entries() -> None:
    cfg = parse_config(
        {
            "backends": {
                "github": {
                    "display_name": "Github",
                    "command": "docker-compose",
                    "args": ["run", "--rm", "github-mcp-server"],
                    "cwd": "..",
                    "env": {"PORT": 8080},
                },
                "fs": {"command": "npx"},
            }
        }
    )

    gh = cfg.backends["github"]
    assert gh.args == ["run", "--rm", "github-mcp-server"]
    assert gh.env == {"PORT": "8080"}
    assert cfg.backends["fs"].display_name == "fs"


def test_repo_configs_load(monkeypatch: pytest.MonkeyPatch) -> None:
    configs_dir = Path(__file__).resolve().parents[1] / "configs"

    app = load_config(resolve_profile_configs(profile="app", configs_dir=configs_dir), load_dotenv_file=False)
    dev = load_config(resolve_profile_configs(profile="dev", configs_dir=configs_dir), load_dotenv_file=False)

    assert "github" in app.backends
    assert app.registry.max_sessions == 10
    assert dev.registry.max_sessions == 2
    assert dev.orchestrator.max_rounds == 4
    assert dev.backends.keys() == app.backends.keys()

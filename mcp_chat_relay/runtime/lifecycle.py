from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Callable, Sequence

from mcp_chat_relay.config import ConfigError, RelayConfig, load_config, resolve_profile_configs
from mcp_chat_relay.config.model import MODES
from mcp_chat_relay.core.types import Turn, UserTurn
from mcp_chat_relay.llm import LangChainChatModel, ModelCapability, ScriptedModel
from mcp_chat_relay.mcp import StdioToolTransport, resolve_catalog
from mcp_chat_relay.observability import configure_logging
from mcp_chat_relay.sessions import ChatOutcome, ConnectStatus, RegistrySettings, SessionRegistry


logger = logging.getLogger(__name__)

REPL_SESSION_KEY = "cli"
_EXIT_WORDS = frozenset({"/exit", "/quit"})
_SECRET_HINTS = ("api_key", "token", "secret", "password")


def redact(value: Any) -> Any:
    """Copy of a plain config tree with secret-looking keys masked."""

    if isinstance(value, dict):
        return {
            k: "<redacted>" if isinstance(k, str) and any(h in k.lower() for h in _SECRET_HINTS) else redact(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [redact(v) for v in value]
    return value


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-chat-relay",
        description="Multi-turn chat relay between an OpenAI-compatible model and MCP tool backends",
    )
    parser.add_argument("--log-level", default="WARNING", help="Root log level, e.g. DEBUG or INFO")

    source = parser.add_mutually_exclusive_group()
    source.add_argument("--config", type=Path, help="Load this YAML file instead of a profile")
    source.add_argument(
        "--profile",
        choices=["app", "dev"],
        default="app",
        help="Profile under ./configs: app.yaml, or app.yaml + dev.yaml",
    )

    sub = parser.add_subparsers(dest="command")

    chat = sub.add_parser("chat", help="Interactive chat on stdin/stdout")
    chat.add_argument("--backend", help="Backend id to connect before chatting (default: no tools)")
    chat.add_argument("--mode", choices=list(MODES), help="Override orchestrator.mode")
    chat.add_argument("--fake", action="store_true", help="Use the offline scripted model (no API calls)")

    sub.add_parser("backends", help="List configured backends")
    sub.add_parser("print-config", help="Print the merged, expanded config with secrets masked")
    return parser


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2))


async def run_chat(
    cfg: RelayConfig,
    *,
    model: ModelCapability,
    backend: str | None = None,
    read_line: Callable[[], str] = input,
) -> int:
    """Read user lines until EOF or /exit; stream each reply to stdout."""

    registry = SessionRegistry(
        resolve_catalog(cfg.backends, base_dir=Path.cwd()),
        StdioToolTransport(),
        model,
        RegistrySettings.from_config(cfg),
    )

    async with registry:
        if backend:
            status = await registry.connect(REPL_SESSION_KEY, backend)
            if status is not ConnectStatus.OK:
                print(f"connect {backend!r}: {status.value}", file=sys.stderr)
                return 1

        history: list[Turn] = []
        while True:
            try:
                line = (await asyncio.to_thread(read_line)).strip()
            except EOFError:
                break
            if line in _EXIT_WORDS:
                break
            if not line:
                continue

            history.append(UserTurn(line))
            outcome = ChatOutcome()
            async for chunk in registry.chat(REPL_SESSION_KEY, history, outcome):
                print(chunk, end="", flush=True)
            print()

            # A failed call leaves only the user line behind.
            if outcome.error is None:
                history.extend(outcome.turns)

    return 0


def _config_paths(ns: argparse.Namespace) -> list[Path]:
    if ns.config is not None:
        return [ns.config]
    return resolve_profile_configs(profile=ns.profile, configs_dir=Path.cwd() / "configs")


def _dispatch(ns: argparse.Namespace, cfg: RelayConfig) -> int:
    if ns.command == "print-config":
        _print_json(redact(dataclasses.asdict(cfg)))
        return 0

    if ns.command == "backends":
        _print_json(
            [
                {"id": backend_id, "display_name": b.display_name, "command": b.command, "args": list(b.args)}
                for backend_id, b in cfg.backends.items()
            ]
        )
        return 0

    if ns.mode:
        cfg = dataclasses.replace(cfg, orchestrator=dataclasses.replace(cfg.orchestrator, mode=ns.mode))
    model: ModelCapability = ScriptedModel() if ns.fake else LangChainChatModel.from_config(cfg.model)
    return asyncio.run(run_chat(cfg, model=model, backend=ns.backend))


def main(argv: Sequence[str] | None = None) -> int:
    """Console entry point (`mcp-chat-relay`).

    Exit codes: 0 on success, 2 on configuration errors, 1 otherwise.
    """

    parser = _build_parser()
    try:
        ns = parser.parse_args(list(argv) if argv is not None else None)
    except SystemExit as e:
        return e.code if isinstance(e.code, int) else 1

    if ns.command is None:
        parser.print_help()
        return 1

    configure_logging(level=ns.log_level)

    # The scripted model never calls the API.
    if ns.command == "chat" and ns.fake and not os.getenv("OPENAI_API_KEY"):
        os.environ["OPENAI_API_KEY"] = "sk-fake"

    try:
        paths = _config_paths(ns)
        cfg = load_config(paths)
        logger.info("config_loaded", extra={"config_files": [str(p) for p in paths]})
        return _dispatch(ns, cfg)
    except ConfigError as e:
        logger.error("config_error", extra={"error": str(e)})
        print(f"ConfigError: {e}", file=sys.stderr)
        return 2
    except Exception as e:  # noqa: BLE001
        logger.exception("fatal_error")
        print(f"Fatal error: {e}", file=sys.stderr)
        return 1

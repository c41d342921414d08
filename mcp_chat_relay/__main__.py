from __future__ import annotations

from mcp_chat_relay.runtime.lifecycle import main


if __name__ == "__main__":
    raise SystemExit(main())

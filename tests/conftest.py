from __future__ import annotations

import pytest


@pytest.fixture(autouse=True)
def _api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    # Config parsing falls back to OPENAI_API_KEY; never hit a real key in tests.
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

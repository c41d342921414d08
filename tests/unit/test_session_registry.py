from __future__ import annotations

import asyncio
from typing import Any

import pytest

from fakes import FakeTransport, make_launch, text_output

from mcp_chat_relay.config import OrchestratorConfig, RegistryConfig
from mcp_chat_relay.core.errors import BackendConnectionError, CapacityError, ModelError, UnknownBackendError
from mcp_chat_relay.core.types import SystemTurn, ToolCallRequest, UserTurn
from mcp_chat_relay.llm import ScriptedModel
from mcp_chat_relay.sessions import ChatOutcome, ConnectStatus, DisconnectStatus, RegistrySettings, SessionRegistry


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _registry(
    transport: FakeTransport,
    model: ScriptedModel | None = None,
    *,
    clock: FakeClock | None = None,
    system_prompt: str | None = None,
    **registry_kwargs: Any,
) -> SessionRegistry:
    catalog = {b: make_launch(b) for b in ("github", "filesystem", "broken")}
    settings = RegistrySettings(
        registry=RegistryConfig(**registry_kwargs),
        orchestrator=OrchestratorConfig(max_rounds=5),
        system_prompt=system_prompt,
    )
    return SessionRegistry(catalog, transport, model or ScriptedModel(), settings, clock=clock or FakeClock())


async def _collect(registry: SessionRegistry, key: str, transcript: list) -> str:
    return "".join([chunk async for chunk in registry.chat(key, transcript)])


def test_connect_is_idempotent_for_same_backend() -> None:
    clock = FakeClock()
    transport = FakeTransport({"search": lambda a: text_output("r")})
    registry = _registry(transport, clock=clock)

    async def run() -> None:
        assert await registry.connect("s1", "github") is ConnectStatus.OK
        first = registry.get("s1")
        assert first is not None
        assert first.connection.tools.names() == ["search"]

        clock.now += 30
        assert await registry.connect("s1", "github") is ConnectStatus.ALREADY_CONNECTED
        assert registry.get("s1") is first
        assert first.last_activity == clock.now

    asyncio.run(run())
    assert transport.connects == ["github"]


def test_eleventh_connect_is_rejected() -> None:
    transport = FakeTransport()
    registry = _registry(transport)

    async def run() -> None:
        for i in range(10):
            assert await registry.connect(f"s{i}", "github") is ConnectStatus.OK
        assert await registry.connect("s10", "github") is ConnectStatus.CAPACITY_EXCEEDED
        with pytest.raises(CapacityError):
            await registry.connect_or_raise("s11", "github")

    asyncio.run(run())
    assert registry.session_count == 10
    assert len(transport.connects) == 10


def test_in_flight_connects_count_against_capacity() -> None:
    transport = FakeTransport()
    registry = _registry(transport, max_sessions=1)

    async def run() -> list[ConnectStatus]:
        return await asyncio.gather(registry.connect("a", "github"), registry.connect("b", "github"))

    statuses = asyncio.run(run())

    assert sorted(s.value for s in statuses) == ["capacity_exceeded", "ok"]
    assert registry.session_count == 1


def test_unknown_and_unavailable_backends() -> None:
    transport = FakeTransport(unavailable={"broken"})
    registry = _registry(transport, max_sessions=1)

    async def run() -> None:
        assert await registry.connect("s1", "nope") is ConnectStatus.UNKNOWN_BACKEND
        with pytest.raises(UnknownBackendError) as ei:
            await registry.connect_or_raise("s1", "nope")
        assert ei.value.available == ["github", "filesystem", "broken"]

        assert await registry.connect("s1", "broken") is ConnectStatus.BACKEND_UNAVAILABLE
        with pytest.raises(BackendConnectionError):
            await registry.connect_or_raise("s1", "broken")
        assert registry.get("s1") is None

        # The failed attempts released their capacity reservation.
        assert await registry.connect("s1", "github") is ConnectStatus.OK

    asyncio.run(run())


def test_switching_backend_tears_down_the_old_connection() -> None:
    transport = FakeTransport()
    registry = _registry(transport)

    async def run() -> None:
        await registry.connect("s1", "github")
        old = registry.get("s1").connection
        assert await registry.connect("s1", "filesystem") is ConnectStatus.OK
        assert old.closed
        assert registry.get("s1").backend_id == "filesystem"

    asyncio.run(run())
    assert [h.backend_id for h in transport.closes] == ["github"]
    assert registry.session_count == 1


def test_disconnect_statuses() -> None:
    registry = _registry(FakeTransport())

    async def run() -> None:
        await registry.connect("s1", "github")
        assert await registry.disconnect("s1") is DisconnectStatus.OK
        assert await registry.disconnect("s1") is DisconnectStatus.NOT_FOUND

    asyncio.run(run())
    assert registry.session_count == 0


def test_teardown_failure_still_frees_the_slot() -> None:
    registry = _registry(FakeTransport(fail_close=True), max_sessions=1)

    async def run() -> None:
        await registry.connect("s1", "github")
        assert await registry.disconnect("s1") is DisconnectStatus.TEARDOWN_FAILED
        assert registry.get("s1") is None
        assert await registry.connect("s2", "github") is ConnectStatus.OK

    asyncio.run(run())


def test_empty_keys_and_transcripts_are_rejected() -> None:
    registry = _registry(FakeTransport())

    async def run() -> None:
        with pytest.raises(ValueError):
            await registry.connect("", "github")
        with pytest.raises(ValueError):
            await registry.disconnect("")
        with pytest.raises(ValueError):
            await _collect(registry, "s1", [])

    asyncio.run(run())


def test_unknown_key_falls_back_to_direct_chat() -> None:
    model = ScriptedModel()
    registry = _registry(FakeTransport(), model)

    out = asyncio.run(_collect(registry, "nobody", [UserTurn("hi")]))

    assert out == "(fake) hi"
    assert model.calls[0][1] is None


def test_chat_uses_the_session_tools_and_refreshes_activity() -> None:
    clock = FakeClock()
    transport = FakeTransport({"search": lambda a: text_output("found")})
    model = ScriptedModel([[ToolCallRequest(id="c1", name="search", arguments={"q": "x"})], ["Done"]])
    registry = _registry(transport, model, clock=clock, system_prompt="Use tools when helpful.")

    async def run() -> str:
        await registry.connect("s1", "github")
        clock.now += 100
        out = await _collect(registry, "s1", [UserTurn("find x")])
        assert registry.get("s1").last_activity == clock.now
        return out

    out = asyncio.run(run())

    assert out.endswith("Done")
    assert transport.calls == [("search", {"q": "x"})]
    transcript, tools = model.calls[0]
    assert transcript[0] == SystemTurn("Use tools when helpful.")
    assert [t["function"]["name"] for t in tools] == ["search"]


def test_idle_sweep_reclaims_only_idle_sessions() -> None:
    clock = FakeClock()
    transport = FakeTransport()
    registry = _registry(transport, clock=clock, idle_timeout_s=600)

    async def run() -> list[str]:
        await registry.connect("old", "github")
        clock.now += 500
        await registry.connect("fresh", "github")
        clock.now += 200
        return await registry.sweep_idle()

    assert asyncio.run(run()) == ["old"]
    assert registry.get("old") is None
    assert registry.get("fresh") is not None
    assert len(transport.closes) == 1


def test_disconnect_waits_for_in_flight_chat() -> None:
    events: list[str] = []

    async def slow_search(args: dict[str, Any]):
        events.append("tool_started")
        await asyncio.sleep(0.05)
        events.append("tool_done")
        return text_output("r")

    transport = FakeTransport({"search": slow_search})
    model = ScriptedModel([[ToolCallRequest(id="c1", name="search")], ["Done"]])
    registry = _registry(transport, model)

    async def run() -> str:
        await registry.connect("s1", "github")
        chat = asyncio.create_task(_collect(registry, "s1", [UserTurn("x")]))
        while "tool_started" not in events:
            await asyncio.sleep(0)

        # In use: the sweep skips it and disconnect has to wait.
        assert registry.get("s1").in_use
        assert await registry.sweep_idle() == []

        status = await registry.disconnect("s1")
        events.append(f"disconnect_{status.value}")
        return await chat

    out = asyncio.run(run())

    assert out.endswith("Done")
    assert events == ["tool_started", "tool_done", "disconnect_ok"]


def test_background_sweep_and_aclose() -> None:
    clock = FakeClock()
    transport = FakeTransport()
    registry = _registry(transport, clock=clock, idle_timeout_s=10, sweep_interval_s=0.01)

    async def run() -> None:
        async with registry:
            await registry.connect("a", "github")
            await registry.connect("b", "filesystem")
            clock.now += 11
            await registry.connect("b", "filesystem")  # refresh b
            for _ in range(100):
                if registry.get("a") is None:
                    break
                await asyncio.sleep(0.01)
            assert registry.get("a") is None
            assert registry.get("b") is not None
        assert registry.session_count == 0

    asyncio.run(run())
    assert sorted(h.backend_id for h in transport.closes) == ["filesystem", "github"]


def test_list_backends() -> None:
    registry = _registry(FakeTransport())

    assert registry.list_backends() == [
        {"id": "github", "display_name": "Github"},
        {"id": "filesystem", "display_name": "Filesystem"},
        {"id": "broken", "display_name": "Broken"},
    ]


def test_key_locks_do_not_outlive_their_callers() -> None:
    registry = _registry(FakeTransport(), max_sessions=1)

    async def run() -> None:
        assert await registry.connect("s1", "github") is ConnectStatus.OK
        for i in range(50):
            assert await registry.disconnect(f"ghost-{i}") is DisconnectStatus.NOT_FOUND
            assert await registry.connect(f"full-{i}", "github") is ConnectStatus.CAPACITY_EXCEEDED
            assert await registry.connect(f"odd-{i}", "nope") is ConnectStatus.UNKNOWN_BACKEND
        assert registry._key_locks == {}

        await registry.disconnect("s1")
        statuses = await asyncio.gather(registry.connect("s2", "github"), registry.connect("s2", "github"))
        assert sorted(s.value for s in statuses) == ["already_connected", "ok"]
        assert await registry.sweep_idle() == []

    asyncio.run(run())
    assert registry._key_locks == {}
    assert registry.session_count == 1


def test_chat_outcome_carries_the_new_turns() -> None:
    transport = FakeTransport({"search": lambda a: text_output("found")})
    model = ScriptedModel(
        [
            [ToolCallRequest(id="c1", name="search", arguments={"q": "x"})],
            ["Done"],
            [RuntimeError("quota exceeded")],
        ]
    )
    registry = _registry(transport, model, system_prompt="Be brief.")

    async def run() -> tuple[ChatOutcome, ChatOutcome]:
        await registry.connect("s1", "github")
        ok = ChatOutcome()
        async for _ in registry.chat("s1", [UserTurn("find x")], ok):
            pass
        failed = ChatOutcome()
        async for _ in registry.chat("s1", [UserTurn("again")], failed):
            pass
        return ok, failed

    ok, failed = asyncio.run(run())

    assert ok.error is None
    assert [t.role for t in ok.turns] == ["assistant", "tool", "assistant"]
    assert ok.turns[-1].text == "Done"
    assert isinstance(failed.error, ModelError)
    assert failed.turns == []

import asyncio

import pytest

from fakes import HANG, FakeTransport, default_responder
from mcpbridge.core.events import TOOLS_LIST_CHANGED
from mcpbridge.mcp.manager import MCPManager, MCPTimeouts
from mcpbridge.mcp.session import MCPServerSession
from mcpbridge.mcp.types import ConnectionState, MCPServerConfig
from mcpbridge.tools.registry import ToolRegistry


class FakeFleet:
    """Session factory handing each server its own FakeTransport."""

    def __init__(self, responders=None):
        self.responders = responders or {}
        self.transports = {}

    def __call__(self, config: MCPServerConfig, timeouts: MCPTimeouts) -> MCPServerSession:
        transport = FakeTransport(self.responders.get(config.name))
        self.transports[config.name] = transport
        return MCPServerSession(
            config,
            request_timeout=timeouts.request_seconds,
            transport_factory=lambda _c: transport,
        )


def _config(name, **kwargs):
    return MCPServerConfig(name=name, command="unused", **kwargs)


@pytest.mark.asyncio
async def test_initialize_registers_namespaced_tools():
    registry = ToolRegistry()
    fleet = FakeFleet()
    manager = MCPManager([_config("alpha"), _config("beta"), _config("off", enabled=False)], registry, session_factory=fleet)

    await manager.initialize()
    try:
        names = {d.name for d in registry.list_tools()}
        assert names == {"alpha__echo", "alpha__fails", "beta__echo", "beta__fails"}
        assert "off" not in fleet.transports
        assert {s.name for s in manager.get_all_servers()} == {"alpha", "beta"}
        assert manager.get_health("alpha").healthy
        assert manager.get_health("off").last_error == "not started"

        result = await registry.execute("beta__echo", {"text": "hi"})
        assert result.success and result.content == "hi"
        assert result.metadata["server"] == "beta"
    finally:
        await manager.shutdown()

    assert len(registry) == 0
    assert not fleet.transports["alpha"].connected


@pytest.mark.asyncio
async def test_failing_server_does_not_block_others():
    def refuse(message):
        if message["method"] == "initialize":
            return {"__error__": {"code": -32603, "message": "nope"}}
        return default_responder(message)

    registry = ToolRegistry()
    manager = MCPManager(
        [_config("bad"), _config("good")], registry, session_factory=FakeFleet({"bad": refuse})
    )

    await manager.initialize()
    try:
        assert manager.get_server("bad") is None
        assert manager.get_server("good").state is ConnectionState.CONNECTED
        health = manager.get_health("bad")
        assert health.healthy is False
        assert "nope" in health.last_error
        assert {d.server for d in registry.list_tools()} == {"good"}
    finally:
        await manager.shutdown()


@pytest.mark.asyncio
async def test_connect_timeout_is_recorded():
    registry = ToolRegistry()
    manager = MCPManager(
        [_config("slow")],
        registry,
        timeouts=MCPTimeouts(connect_seconds=0.1, request_seconds=5.0),
        session_factory=FakeFleet({"slow": lambda m: HANG}),
    )

    await asyncio.wait_for(manager.initialize(), timeout=5.0)
    try:
        health = manager.get_health("slow")
        assert health.healthy is False
        assert "timeout" in health.last_error
        assert len(registry) == 0
    finally:
        await manager.shutdown()


@pytest.mark.asyncio
async def test_allowlist_and_denylist_filter_tools():
    def many_tools(message):
        if message["method"] == "tools/list":
            return {"tools": [{"name": n} for n in ("read_file", "read_dir", "write_file", "delete_file")]}
        return default_responder(message)

    registry = ToolRegistry()
    fleet = FakeFleet({"fs": many_tools})
    config = _config("fs", tool_allowlist=["read_*", "write_file"], tool_denylist=["read_dir"])
    manager = MCPManager([config], registry, session_factory=fleet)

    await manager.initialize()
    try:
        assert {p.mcp_tool_name for p in manager.get_server_tools("fs")} == {"read_file", "write_file"}
    finally:
        await manager.shutdown()


@pytest.mark.asyncio
async def test_tool_list_changed_refreshes_registry():
    calls = {"n": 0}

    def growing(message):
        if message["method"] == "tools/list":
            calls["n"] += 1
            tools = [{"name": "first"}]
            if calls["n"] > 1:
                tools.append({"name": "second"})
            return {"tools": tools}
        return default_responder(message)

    registry = ToolRegistry()
    fleet = FakeFleet({"dyn": growing})
    manager = MCPManager([_config("dyn")], registry, session_factory=fleet)

    await manager.initialize()
    try:
        assert {d.name for d in registry.list_tools()} == {"dyn__first"}

        fleet.transports["dyn"].push({"jsonrpc": "2.0", "method": TOOLS_LIST_CHANGED})
        for _ in range(50):
            if "dyn__second" in registry:
                break
            await asyncio.sleep(0.01)

        assert {d.name for d in registry.list_tools()} == {"dyn__first", "dyn__second"}
        assert len(manager.get_all_tools()) == 2
    finally:
        await manager.shutdown()


@pytest.mark.asyncio
async def test_disconnect_server_removes_its_tools_and_health():
    registry = ToolRegistry()
    fleet = FakeFleet()
    manager = MCPManager([_config("alpha"), _config("beta")], registry, session_factory=fleet)

    await manager.initialize()
    try:
        await manager.disconnect_server("alpha")
        assert manager.get_server("alpha") is None
        assert manager.get_server_tools("alpha") == []
        assert {d.server for d in registry.list_tools()} == {"beta"}
        assert manager.get_health("alpha").last_error == "not started"
    finally:
        await manager.shutdown()


@pytest.mark.asyncio
async def test_health_reflects_dropped_session():
    registry = ToolRegistry()
    fleet = FakeFleet()
    manager = MCPManager([_config("alpha")], registry, session_factory=fleet)

    await manager.initialize()
    try:
        fleet.transports["alpha"].drop()
        health = manager.get_health("alpha")
        assert health.healthy is False
        assert "error" in health.last_error

        result = await registry.execute("alpha__echo", {"text": "hi"})
        assert not result.success
        assert "not connected" in result.error
    finally:
        await manager.shutdown()


def test_sessions_use_configured_protocol_version():
    registry = ToolRegistry()
    manager = MCPManager(
        [_config("a")],
        registry,
        timeouts=MCPTimeouts(connect_seconds=5, request_seconds=7),
        protocol_version="2025-03-26",
    )
    session = manager.create_session(_config("a"))
    assert session.protocol_version == "2025-03-26"
    assert session.state is ConnectionState.DISCONNECTED

    default = MCPManager([], registry).create_session(_config("b"))
    assert default.protocol_version == "2024-11-05"

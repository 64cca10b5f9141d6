import asyncio
import sys

import pytest

from mcpbridge.mcp.errors import MCPTimeoutError
from mcpbridge.mcp.manager import MCPManager, MCPTimeouts
from mcpbridge.mcp.session import MCPServerSession
from mcpbridge.mcp.types import ConnectionState, MCPServerConfig
from mcpbridge.tools.registry import ToolRegistry


def _config(script, mode, name="scripted"):
    return MCPServerConfig(name=name, command=sys.executable, args=[str(script), mode])


@pytest.mark.asyncio
async def test_mcp_hanging_server_times_out_and_does_not_block(scripted_server_script):
    registry = ToolRegistry()
    manager = MCPManager(
        [_config(scripted_server_script, "hang", "hang"), _config(scripted_server_script, "normal", "ok")],
        registry,
        timeouts=MCPTimeouts(connect_seconds=0.5, request_seconds=0.5),
    )
    try:
        # Ensure the call returns quickly even if the server never responds.
        await asyncio.wait_for(manager.initialize(), timeout=15.0)

        health = manager.get_health("hang")
        assert health.healthy is False
        assert "timeout" in str(health.last_error).lower()

        assert manager.get_health("ok").healthy
        assert "ok__ping_tool" in registry
    finally:
        await manager.shutdown()


@pytest.mark.asyncio
async def test_handshake_timeout_leaves_error_state(scripted_server_script):
    session = MCPServerSession(_config(scripted_server_script, "hang"), request_timeout=0.3)

    with pytest.raises(MCPTimeoutError):
        await session.connect()
    assert session.state is ConnectionState.ERROR
    assert session.transport is None


@pytest.mark.asyncio
async def test_server_crash_during_call_returns_error_result(scripted_server_script):
    session = MCPServerSession(_config(scripted_server_script, "crash-on-call"), request_timeout=10.0)
    await session.connect()
    try:
        result = await asyncio.wait_for(session.call_tool("ping_tool", {}), timeout=10.0)
        assert result.is_error
        assert "exited with code 3" in result.text
        assert session.state is ConnectionState.ERROR
    finally:
        await session.disconnect()


@pytest.mark.asyncio
async def test_error_on_list_yields_no_tools(scripted_server_script):
    registry = ToolRegistry()
    manager = MCPManager([_config(scripted_server_script, "error-on-list")], registry)
    await manager.initialize()
    try:
        assert manager.get_server("scripted").is_connected
        assert len(registry) == 0
    finally:
        await manager.shutdown()


@pytest.mark.asyncio
async def test_list_changed_notification_over_stdio(scripted_server_script):
    registry = ToolRegistry()
    manager = MCPManager([_config(scripted_server_script, "notify")], registry)
    await manager.initialize()
    try:
        for _ in range(100):
            if "scripted__late_tool" in registry:
                break
            await asyncio.sleep(0.05)
        assert "scripted__late_tool" in registry
        assert "scripted__ping_tool" in registry
    finally:
        await manager.shutdown()

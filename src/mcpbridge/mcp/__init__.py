"""
MCP client - transports, request correlation and server sessions.

MCPManager (imported lazily) ties sessions to the tool registry.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from mcpbridge.mcp.correlator import MessageCorrelator
from mcpbridge.mcp.errors import (
    MCPConnectionError,
    MCPError,
    MCPTimeoutError,
    NotConnectedError,
    ProtocolError,
    ToolExecutionError,
)
from mcpbridge.mcp.http import HttpTransport
from mcpbridge.mcp.session import MCPServerSession, create_transport
from mcpbridge.mcp.stdio import StdioTransport
from mcpbridge.mcp.transport import BaseTransport
from mcpbridge.mcp.types import CallToolResult, ConnectionState, MCPServerConfig

if TYPE_CHECKING:
    from mcpbridge.mcp.manager import MCPManager as MCPManager

__all__ = [
    "BaseTransport",
    "CallToolResult",
    "ConnectionState",
    "HttpTransport",
    "MCPConnectionError",
    "MCPError",
    "MCPManager",
    "MCPServerConfig",
    "MCPServerSession",
    "MCPTimeoutError",
    "MessageCorrelator",
    "NotConnectedError",
    "ProtocolError",
    "StdioTransport",
    "ToolExecutionError",
    "create_transport",
]


def __getattr__(name: str):
    # The manager depends on mcpbridge.tools, which depends on this package.
    if name == "MCPManager":
        from mcpbridge.mcp.manager import MCPManager  # local import

        return MCPManager
    raise AttributeError(name)

"""
MCP client errors.

Every error raised by the client derives from MCPError so hosts can catch the
whole family at once.
"""

from __future__ import annotations

from typing import Any, Optional


class MCPError(Exception):
    """Base class for MCP client errors."""


class MCPConnectionError(MCPError, ConnectionError):
    """The channel to an MCP server could not be opened or was closed."""


class ProtocolError(MCPError):
    """The server answered with a JSON-RPC error or a malformed payload."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.data = data

    @classmethod
    def from_error_object(cls, error: Any) -> "ProtocolError":
        if not isinstance(error, dict):
            return cls(f"Invalid error object: {error!r}")
        code = error.get("code")
        return cls(
            str(error.get("message") or "Unknown error"),
            code=code if isinstance(code, int) else None,
            data=error.get("data"),
        )


class MCPTimeoutError(MCPError, TimeoutError):
    """No response arrived before the request deadline."""

    def __init__(self, method: str, timeout: float) -> None:
        super().__init__(f"Request timeout after {timeout}s: {method}")
        self.method = method
        self.timeout = timeout


class NotConnectedError(MCPError):
    """A capability call was made on a session that is not connected."""

    def __init__(self, server_name: str) -> None:
        super().__init__(f"MCP server {server_name} is not connected")
        self.server_name = server_name


class ToolExecutionError(MCPError):
    """
    A tools/call that failed before producing a result.

    Never raised to callers; call_tool() turns it into an error-flagged
    CallToolResult.
    """

    def __init__(self, tool_name: str, cause: BaseException) -> None:
        super().__init__(f"Error calling tool {tool_name}: {cause}")
        self.tool_name = tool_name
        self.cause = cause

"""
mcpbridge - Model Context Protocol client.

Connects to MCP servers over stdio or HTTP, discovers their tools, resources
and prompts, and exposes remote tools through a local tool registry.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

__version__ = "0.1.0"

if TYPE_CHECKING:
    from mcpbridge.mcp.manager import MCPManager as MCPManager
    from mcpbridge.mcp.session import MCPServerSession as MCPServerSession

__all__ = ["MCPManager", "MCPServerSession", "__version__"]


def __getattr__(name: str):
    # Lazy import so `import mcpbridge` stays cheap for submodules.
    if name == "MCPManager":
        from mcpbridge.mcp.manager import MCPManager  # local import

        return MCPManager
    if name == "MCPServerSession":
        from mcpbridge.mcp.session import MCPServerSession  # local import

        return MCPServerSession
    raise AttributeError(name)

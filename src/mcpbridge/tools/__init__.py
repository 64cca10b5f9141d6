"""Tools module - tool interface, registry and MCP tool proxies."""

from mcpbridge.tools.registry import ToolRegistry
from mcpbridge.tools.base import BaseTool, ToolDefinition, ToolResult
from mcpbridge.tools.mcp_tool import MCPToolProxy

__all__ = ["ToolRegistry", "BaseTool", "ToolDefinition", "ToolResult", "MCPToolProxy"]

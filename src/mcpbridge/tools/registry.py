"""
Tool Registry - Central registry for host tools.

Local tools and MCP tool proxies register here under unique names; the host
lists and executes them through one interface.
"""

from typing import Any, Dict, List, Optional, Set

from loguru import logger

from mcpbridge.tools.base import BaseTool, ToolDefinition, ToolResult


class ToolRegistry:
    """
    Central registry for tools.

    Features:
    - Tool registration and discovery
    - Filtering by origin server or allowlist
    - Uniform execution returning ToolResult
    """

    def __init__(self):
        self._tools: Dict[str, BaseTool] = {}
        self._definitions: Dict[str, ToolDefinition] = {}
        self._revision = 0

    @property
    def revision(self) -> int:
        return int(self._revision)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def register(self, tool: BaseTool) -> None:
        """Register a tool, replacing any tool with the same name."""
        definition = tool.definition
        if definition.name in self._tools:
            logger.debug(f"Replacing registered tool: {definition.name}")
        self._tools[definition.name] = tool
        self._definitions[definition.name] = definition
        self._revision += 1
        logger.debug(f"Registered tool: {definition.name}")

    def unregister(self, name: str) -> bool:
        """Unregister a tool."""
        if name in self._tools:
            del self._tools[name]
            del self._definitions[name]
            self._revision += 1
            return True
        return False

    def get_tool(self, name: str) -> Optional[BaseTool]:
        """Get a tool by name."""
        return self._tools.get(name)

    def get_definition(self, name: str) -> Optional[ToolDefinition]:
        """Get a tool definition by name."""
        return self._definitions.get(name)

    def list_tools(
        self,
        server: Optional[str] = None,
        *,
        allowlist: Optional[Set[str]] = None,
    ) -> List[ToolDefinition]:
        """
        List all registered tools.

        Args:
            server: Only tools coming from this MCP server
            allowlist: Only tools with these names

        Returns:
            List of tool definitions
        """
        definitions = list(self._definitions.values())
        if allowlist is not None:
            allowed = set(allowlist)
            definitions = [d for d in definitions if d.name in allowed]

        if server:
            definitions = [d for d in definitions if d.server == server]

        return definitions

    def get_definitions(self) -> List[Dict[str, Any]]:
        """Tool definitions in the host's {name, description, input_schema} shape."""
        return [d.to_host_schema() for d in self._definitions.values()]

    async def execute(self, name: str, params: Optional[Dict[str, Any]] = None) -> ToolResult:
        """
        Execute a tool.

        Args:
            name: Tool name
            params: Execution parameters

        Returns:
            Tool result; failures are reported through success/error
        """
        tool = self._tools.get(name)
        if not tool:
            raise ValueError(f"Tool not found: {name}")

        result = await tool.safe_execute(**dict(params or {}))
        if not result.success:
            logger.debug(f"Tool {name} failed: {result.error}")
        return result

"""
MCPToolProxy - expose an MCP server tool as a local tool.
"""

from __future__ import annotations

import weakref
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from loguru import logger

from mcpbridge.mcp.types import (
    CallToolResult,
    EmbeddedResource,
    ImageContent,
    TextContent,
    Tool,
)
from mcpbridge.tools.base import BaseTool, ToolDefinition, ToolResult

if TYPE_CHECKING:
    from mcpbridge.mcp.session import MCPServerSession

SessionResolver = Callable[[str], Optional["MCPServerSession"]]

EMPTY_RESULT_MESSAGE = "Tool executed successfully"


def proxy_tool_name(server_name: str, tool_name: str) -> str:
    return f"{server_name}__{tool_name}"


def flatten_tool_content(result: CallToolResult) -> str:
    """Render text, image and resource blocks as one string, in that group order."""
    texts: List[str] = []
    images: List[str] = []
    resources: List[str] = []
    for block in result.content:
        if isinstance(block, TextContent):
            texts.append(block.text)
        elif isinstance(block, ImageContent):
            images.append(f"[Image: {block.mime_type or 'unknown'}]")
        elif isinstance(block, EmbeddedResource):
            resources.append(block.embedded_text or "[Resource]")

    groups = ["\n".join(texts), "\n".join(images), "\n".join(resources)]
    return "\n\n".join(g for g in groups if g)


class MCPToolProxy(BaseTool):
    """
    One remote tool, callable through the local tool interface.

    Holds a copy of the tool descriptor and only a weak link to its session:
    either a weak reference, or a resolver that looks the session up by
    server name at call time.
    """

    def __init__(
        self,
        tool: Tool,
        session: "MCPServerSession",
        *,
        resolve_session: Optional[SessionResolver] = None,
    ) -> None:
        self._tool = tool.model_copy(deep=True)
        self._server_name = session.name
        self._session_ref = weakref.ref(session)
        self._resolve_session = resolve_session

        self._definition = ToolDefinition(
            name=proxy_tool_name(self._server_name, self._tool.name),
            description=self._tool.description or f"Tool from MCP server: {self._server_name}",
            parameters=dict(self._tool.input_schema or {}),
            server=self._server_name,
        )

    @property
    def definition(self) -> ToolDefinition:
        return self._definition

    @property
    def server_name(self) -> str:
        return self._server_name

    @property
    def mcp_tool_name(self) -> str:
        return self._tool.name

    @property
    def tool(self) -> Tool:
        return self._tool

    def _session(self) -> Optional["MCPServerSession"]:
        if self._resolve_session is not None:
            return self._resolve_session(self._server_name)
        return self._session_ref()

    def _metadata(self) -> Dict[str, Any]:
        return {"server": self._server_name, "mcp_tool_name": self._tool.name}

    async def execute(self, **kwargs) -> ToolResult:
        session = self._session()
        if session is None:
            return ToolResult(
                success=False,
                error=f"MCP server {self._server_name} is not available",
                metadata=self._metadata(),
            )

        try:
            result = await session.call_tool(self._tool.name, dict(kwargs or {}))
        except Exception as e:
            logger.debug(f"MCPToolProxy execute failed ({self.name}): {e}")
            return ToolResult(success=False, error=f"MCP tool error: {e}", metadata=self._metadata())

        if result.is_error:
            return ToolResult(success=False, error=result.text, metadata=self._metadata())

        return ToolResult(
            success=True,
            data=flatten_tool_content(result) or EMPTY_RESULT_MESSAGE,
            metadata=self._metadata(),
        )

"""
MCPManager - one session per configured server, tools published to the registry.

A server that fails to connect or list its tools is logged and skipped; it
never blocks the others. There is no retry or reconnection here.
"""

from __future__ import annotations

import asyncio
import fnmatch
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from loguru import logger

from mcpbridge.core.events import TOOLS_LIST_CHANGED, ServerNotification
from mcpbridge.mcp.session import MCPServerSession
from mcpbridge.mcp.types import LATEST_PROTOCOL_VERSION, ConnectionState, MCPServerConfig
from mcpbridge.tools.mcp_tool import MCPToolProxy
from mcpbridge.tools.registry import ToolRegistry


@dataclass
class MCPServerHealth:
    healthy: bool
    last_error: Optional[str] = None


@dataclass(frozen=True)
class MCPTimeouts:
    connect_seconds: float = 30.0
    request_seconds: float = 30.0


SessionFactory = Callable[[MCPServerConfig, MCPTimeouts], MCPServerSession]


class MCPManager:
    def __init__(
        self,
        configs: Iterable[MCPServerConfig],
        registry: ToolRegistry,
        *,
        timeouts: Optional[MCPTimeouts] = None,
        protocol_version: str = LATEST_PROTOCOL_VERSION,
        session_factory: Optional[SessionFactory] = None,
    ) -> None:
        self._configs = list(configs)
        self._registry = registry
        self._timeouts = timeouts or MCPTimeouts()
        self._protocol_version = protocol_version
        self._session_factory = session_factory
        self._sessions: Dict[str, MCPServerSession] = {}
        self._proxies: Dict[str, List[MCPToolProxy]] = {}
        self._health: Dict[str, MCPServerHealth] = {}
        self._lock = asyncio.Lock()

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def timeouts(self) -> MCPTimeouts:
        return self._timeouts

    async def initialize(self) -> None:
        configs = [c for c in self._configs if c.enabled]
        logger.info(f"Initializing {len(configs)} MCP server(s)...")

        for config in configs:
            try:
                await self.connect_server(config)
            except Exception as e:
                logger.error(f"Failed to initialize MCP server {config.name}: {e}")

        connected = sum(1 for s in self._sessions.values() if s.state is ConnectionState.CONNECTED)
        logger.success(f"MCP: {connected}/{len(configs)} servers connected")

    async def connect_server(self, config: MCPServerConfig) -> MCPServerSession:
        if config.name in self._sessions:
            await self.disconnect_server(config.name)

        session = self.create_session(config)
        session.notifications.subscribe(TOOLS_LIST_CHANGED, self._on_tools_changed)
        try:
            await asyncio.wait_for(session.connect(), timeout=float(self._timeouts.connect_seconds))
        except asyncio.TimeoutError:
            self._health[config.name] = MCPServerHealth(
                healthy=False, last_error=f"timeout after {self._timeouts.connect_seconds}s during connect"
            )
            await self._discard_session(session)
            raise
        except Exception as e:
            self._health[config.name] = MCPServerHealth(healthy=False, last_error=str(e))
            await self._discard_session(session)
            raise

        self._sessions[config.name] = session
        self._health[config.name] = MCPServerHealth(healthy=True)

        count = await self.refresh_tools(config.name)
        logger.debug(f"MCP server {config.name} initialized with {count} tools")
        return session

    def create_session(self, config: MCPServerConfig) -> MCPServerSession:
        """Build an unconnected session for a server config."""
        if self._session_factory is not None:
            return self._session_factory(config, self._timeouts)
        return MCPServerSession(
            config,
            request_timeout=self._timeouts.request_seconds,
            protocol_version=self._protocol_version,
        )

    async def refresh_tools(self, name: str) -> int:
        """Re-list a server's tools and replace its proxies in the registry."""
        async with self._lock:
            session = self._sessions.get(name)
            self._unregister_proxies(name)
            if session is None:
                return 0

            config = session.config
            tools = await session.list_tools()
            proxies: List[MCPToolProxy] = []
            for tool in tools:
                if not self._tool_allowed(tool.name, config.tool_allowlist, config.tool_denylist):
                    logger.debug(f"Skipping filtered MCP tool: {name}/{tool.name}")
                    continue
                proxy = MCPToolProxy(tool, session, resolve_session=self.get_server)
                self._registry.register(proxy)
                proxies.append(proxy)
                logger.debug(f"Registered MCP tool: {proxy.name}")

            self._proxies[name] = proxies
            return len(proxies)

    async def disconnect_server(self, name: str) -> None:
        session = self._sessions.pop(name, None)
        async with self._lock:
            self._unregister_proxies(name)
        self._health.pop(name, None)
        if session is not None:
            await self._discard_session(session)
            logger.debug(f"Disconnected MCP server: {name}")

    async def shutdown(self) -> None:
        logger.debug("Shutting down MCP servers...")
        for name in list(self._sessions.keys()):
            try:
                await self.disconnect_server(name)
            except Exception as e:
                logger.error(f"Error disconnecting {name}: {e}")

        self._sessions.clear()
        self._proxies.clear()
        logger.debug("All MCP servers disconnected")

    def get_server(self, name: str) -> Optional[MCPServerSession]:
        return self._sessions.get(name)

    def get_all_servers(self) -> List[MCPServerSession]:
        return list(self._sessions.values())

    def get_server_tools(self, name: str) -> List[MCPToolProxy]:
        return list(self._proxies.get(name, []))

    def get_all_tools(self) -> List[MCPToolProxy]:
        tools: List[MCPToolProxy] = []
        for proxies in self._proxies.values():
            tools.extend(proxies)
        return tools

    def get_health(self, name: str) -> MCPServerHealth:
        health = self._health.get(name)
        if health is None:
            return MCPServerHealth(healthy=False, last_error="not started")
        session = self._sessions.get(name)
        if health.healthy and session is not None and session.state is not ConnectionState.CONNECTED:
            return MCPServerHealth(healthy=False, last_error=f"session is {session.state.value}")
        return health

    @staticmethod
    def _tool_allowed(name: str, allowlist: List[str], denylist: List[str]) -> bool:
        n = str(name or "")
        if denylist:
            for pat in denylist:
                if not pat:
                    continue
                if fnmatch.fnmatchcase(n, pat):
                    return False
        if allowlist:
            for pat in allowlist:
                if not pat:
                    continue
                if fnmatch.fnmatchcase(n, pat):
                    return True
            return False
        return True

    async def _discard_session(self, session: MCPServerSession) -> None:
        session.notifications.unsubscribe(TOOLS_LIST_CHANGED, self._on_tools_changed)
        await session.disconnect()

    def _unregister_proxies(self, name: str) -> None:
        for proxy in self._proxies.pop(name, []):
            self._registry.unregister(proxy.name)

    async def _on_tools_changed(self, notification: ServerNotification) -> None:
        if notification.server not in self._sessions:
            return
        logger.info(f"Tool list changed on MCP server {notification.server}; refreshing")
        await self.refresh_tools(notification.server)

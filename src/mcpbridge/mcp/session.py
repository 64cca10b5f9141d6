"""
MCPServerSession - connection lifecycle and capability calls for one server.

State machine: disconnected -> connecting -> connected, with connecting or
connected -> error on failure, and any state -> disconnected via disconnect().
"""

from __future__ import annotations

import asyncio
import functools
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, TypeVar

from loguru import logger
from pydantic import BaseModel, ValidationError

from mcpbridge import __version__
from mcpbridge.core.events import NotificationBus, ServerNotification
from mcpbridge.mcp.correlator import DEFAULT_REQUEST_TIMEOUT, MessageCorrelator
from mcpbridge.mcp.errors import (
    MCPConnectionError,
    NotConnectedError,
    ProtocolError,
    ToolExecutionError,
)
from mcpbridge.mcp.http import HttpTransport
from mcpbridge.mcp.stdio import StdioTransport
from mcpbridge.mcp.transport import BaseTransport
from mcpbridge.mcp.types import (
    LATEST_PROTOCOL_VERSION,
    CallToolResult,
    ConnectionState,
    InitializeResult,
    MCPServerConfig,
    Prompt,
    PromptMessage,
    Resource,
    ResourceContents,
    ServerInfo,
    Tool,
    ToolCall,
)

CLIENT_NAME = "mcpbridge"

ModelT = TypeVar("ModelT", bound=BaseModel)
TransportFactory = Callable[[MCPServerConfig], BaseTransport]


def create_transport(config: MCPServerConfig, *, timeout: float = DEFAULT_REQUEST_TIMEOUT) -> BaseTransport:
    """Build the transport a server config asks for."""
    kind = (config.transport or "").strip().lower()
    if kind == "stdio":
        if not config.command:
            raise MCPConnectionError("Stdio transport requires command")
        return StdioTransport(config.command, config.args, config.env, config.cwd)
    if kind == "http":
        if not config.url:
            raise MCPConnectionError("HTTP transport requires url")
        return HttpTransport(config.url, config.headers, timeout=timeout)
    raise MCPConnectionError(f"Unsupported transport: {config.transport}")


def requires_connection(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
    """Fail fast with NotConnectedError unless the session is connected."""

    @functools.wraps(func)
    async def wrapper(self: "MCPServerSession", *args: Any, **kwargs: Any) -> Any:
        self._ensure_connected()
        return await func(self, *args, **kwargs)

    return wrapper


class MCPServerSession:
    def __init__(
        self,
        config: MCPServerConfig,
        *,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        protocol_version: str = LATEST_PROTOCOL_VERSION,
        client_capabilities: Optional[Dict[str, Any]] = None,
        transport_factory: Optional[TransportFactory] = None,
        notifications: Optional[NotificationBus] = None,
    ) -> None:
        self.config = config
        self._request_timeout = float(request_timeout)
        self._protocol_version = protocol_version
        self._client_capabilities = dict(client_capabilities or {})
        self._transport_factory = transport_factory or (
            lambda cfg: create_transport(cfg, timeout=self._request_timeout)
        )
        self._notifications = notifications or NotificationBus()

        self._state = ConnectionState.DISCONNECTED
        self._info: Optional[ServerInfo] = None
        self._transport: Optional[BaseTransport] = None
        self._correlator: Optional[MessageCorrelator] = None
        self._generation = 0
        self._closing = False

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def protocol_version(self) -> str:
        """Protocol version requested in the initialize handshake."""
        return self._protocol_version

    @property
    def info(self) -> Optional[ServerInfo]:
        return self._info

    @property
    def transport(self) -> Optional[BaseTransport]:
        return self._transport

    @property
    def correlator(self) -> Optional[MessageCorrelator]:
        return self._correlator

    @property
    def notifications(self) -> NotificationBus:
        return self._notifications

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    async def connect(self) -> None:
        if self._state is ConnectionState.CONNECTED:
            return
        if self._state is ConnectionState.CONNECTING:
            raise MCPConnectionError(f"MCP server {self.name} is already connecting")

        self._state = ConnectionState.CONNECTING
        self._generation += 1
        generation = self._generation
        if self._transport is not None or self._correlator is not None:
            # Left over from a connection that closed underneath us.
            await self._teardown()
        self._closing = False
        logger.debug(f"Connecting to MCP server: {self.name}")

        try:
            transport = self._transport_factory(self.config)
            correlator = MessageCorrelator(
                transport.send,
                timeout=self._request_timeout,
                on_notification=self._on_notification,
            )
            transport.set_handlers(correlator.handle_message, self._on_transport_closed)
            self._transport = transport
            self._correlator = correlator

            await transport.connect()
            if generation != self._generation:
                await transport.disconnect()
                raise MCPConnectionError(f"MCP server {self.name} was disconnected during connect")

            raw = await correlator.request(
                "initialize",
                {
                    "protocolVersion": self._protocol_version,
                    "capabilities": self._client_capabilities,
                    "clientInfo": {"name": CLIENT_NAME, "version": __version__},
                },
            )
            info = ServerInfo.from_initialize(self._parse(InitializeResult, raw, "initialize"))
            await correlator.notify("notifications/initialized")
        except asyncio.CancelledError:
            await self._abort_connect(generation)
            raise
        except Exception as e:
            logger.error(f"Failed to connect to MCP server {self.name}: {e}")
            await self._abort_connect(generation)
            raise

        if generation != self._generation:
            # disconnect() ran while the handshake was finishing.
            raise MCPConnectionError(f"MCP server {self.name} was disconnected during connect")

        self._info = info
        self._state = ConnectionState.CONNECTED
        logger.success(f"Connected to MCP server: {self.name} ({info.name} {info.version}, protocol {info.protocol_version})")

    async def disconnect(self) -> None:
        self._generation += 1
        await self._teardown()
        self._info = None
        self._state = ConnectionState.DISCONNECTED
        self._notifications.cancel_pending()
        logger.debug(f"Disconnected from MCP server: {self.name}")

    @requires_connection
    async def ping(self) -> None:
        await self._correlator.request("ping")

    @requires_connection
    async def list_tools(self) -> List[Tool]:
        return await self._discover("tools/list", "tools", Tool)

    @requires_connection
    async def list_resources(self) -> List[Resource]:
        return await self._discover("resources/list", "resources", Resource)

    @requires_connection
    async def list_prompts(self) -> List[Prompt]:
        return await self._discover("prompts/list", "prompts", Prompt)

    @requires_connection
    async def read_resource(self, uri: str) -> List[ResourceContents]:
        raw = await self._correlator.request("resources/read", {"uri": uri})
        contents = (raw or {}).get("contents") if isinstance(raw, dict) else None
        return self._parse_list(ResourceContents, contents or [], "resources/read")

    @requires_connection
    async def get_prompt(self, name: str, arguments: Optional[Dict[str, str]] = None) -> List[PromptMessage]:
        params: Dict[str, Any] = {"name": name}
        if arguments:
            params["arguments"] = {str(k): str(v) for k, v in arguments.items()}
        raw = await self._correlator.request("prompts/get", params)
        messages = (raw or {}).get("messages") if isinstance(raw, dict) else None
        return self._parse_list(PromptMessage, messages or [], "prompts/get")

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> CallToolResult:
        """Invoke a remote tool. Never raises; failures come back with is_error set."""
        try:
            return await self._call_tool(ToolCall(name=name, arguments=dict(arguments or {})))
        except Exception as e:
            error = ToolExecutionError(name, e)
            logger.debug(f"{error} (server={self.name})")
            return CallToolResult.from_error(error)

    @requires_connection
    async def _call_tool(self, call: ToolCall) -> CallToolResult:
        raw = await self._correlator.request("tools/call", call.model_dump())
        return self._parse(CallToolResult, raw, "tools/call")

    def _ensure_connected(self) -> None:
        if self._state is not ConnectionState.CONNECTED or self._correlator is None:
            raise NotConnectedError(self.name)

    async def _discover(self, method: str, field: str, model: Type[ModelT]) -> List[ModelT]:
        try:
            raw = await self._correlator.request(method)
            items = raw.get(field) if isinstance(raw, dict) else None
            return self._parse_list(model, items or [], method)
        except Exception as e:
            logger.warning(f"Failed to {method} from {self.name}: {e}")
            return []

    @staticmethod
    def _parse(model: Type[ModelT], raw: Any, method: str) -> ModelT:
        try:
            return model.model_validate(raw if raw is not None else {})
        except ValidationError as e:
            raise ProtocolError(f"Malformed {method} result: {e}") from e

    @classmethod
    def _parse_list(cls, model: Type[ModelT], items: Any, method: str) -> List[ModelT]:
        if not isinstance(items, list):
            raise ProtocolError(f"Malformed {method} result: expected a list")
        return [cls._parse(model, item, method) for item in items]

    async def _abort_connect(self, generation: int) -> None:
        if generation != self._generation:
            return
        await self._teardown()
        self._info = None
        self._state = ConnectionState.ERROR

    async def _teardown(self) -> None:
        transport = self._transport
        correlator = self._correlator
        self._transport = None
        self._correlator = None
        self._closing = True
        try:
            if transport is not None:
                try:
                    await transport.disconnect()
                except Exception as e:
                    logger.debug(f"Error disconnecting transport for {self.name}: {e}")
        finally:
            if correlator is not None:
                correlator.close(MCPConnectionError("Transport closed"))
            self._closing = False

    def _on_transport_closed(self, error: Exception) -> None:
        correlator = self._correlator
        if correlator is not None:
            correlator.reject_all(error)
        if not self._closing and self._state is ConnectionState.CONNECTED:
            logger.warning(f"MCP server {self.name} closed unexpectedly: {error}")
            self._state = ConnectionState.ERROR

    def _on_notification(self, method: str, params: Dict[str, Any]) -> None:
        logger.debug(f"MCP notification from {self.name}: {method}")
        self._notifications.publish(ServerNotification(server=self.name, method=method, params=params))

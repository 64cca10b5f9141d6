"""
MCP wire types.

Pydantic models for the JSON-RPC payloads the client consumes. Unknown fields
are kept (extra="allow") so newer servers do not break older clients.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

JSONRPC_VERSION = "2.0"
LATEST_PROTOCOL_VERSION = "2024-11-05"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class ConnectionState(str, Enum):
    """Server session lifecycle states."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True)
class MCPServerConfig:
    """Per-server connection settings."""

    name: str
    transport: str = "stdio"
    command: Optional[str] = None
    args: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    cwd: Optional[Path] = None
    url: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    enabled: bool = True
    tool_allowlist: List[str] = field(default_factory=list)
    tool_denylist: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], *, name: Optional[str] = None) -> "MCPServerConfig":
        server_name = str(name or data.get("name") or "").strip()
        if not server_name:
            raise ValueError("MCP server config requires a name")

        transport = str(data.get("transport") or "").strip().lower()
        if not transport:
            transport = "http" if data.get("url") and not data.get("command") else "stdio"

        cwd = data.get("cwd")
        return cls(
            name=server_name,
            transport=transport,
            command=str(data["command"]) if data.get("command") else None,
            args=[str(a) for a in (data.get("args") or [])],
            env={str(k): str(v) for k, v in (data.get("env") or {}).items()},
            cwd=Path(str(cwd)) if cwd else None,
            url=str(data["url"]) if data.get("url") else None,
            headers={str(k): str(v) for k, v in (data.get("headers") or {}).items()},
            enabled=bool(data.get("enabled", True)),
            tool_allowlist=[str(x) for x in (data.get("tool_allowlist") or [])],
            tool_denylist=[str(x) for x in (data.get("tool_denylist") or [])],
        )


class MCPModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


# Content blocks

class TextContent(MCPModel):
    type: Literal["text"] = "text"
    text: str = ""


class ImageContent(MCPModel):
    type: Literal["image"] = "image"
    data: str = ""  # base64
    mime_type: Optional[str] = Field(default=None, alias="mimeType")


class ResourceContents(MCPModel):
    uri: str = ""
    mime_type: Optional[str] = Field(default=None, alias="mimeType")
    text: Optional[str] = None
    blob: Optional[str] = None


class EmbeddedResource(MCPModel):
    type: Literal["resource"] = "resource"
    resource: Optional[ResourceContents] = None
    # Some servers inline the text next to the type instead of nesting it.
    text: Optional[str] = None

    @property
    def embedded_text(self) -> Optional[str]:
        if self.text:
            return self.text
        if self.resource is not None and self.resource.text:
            return self.resource.text
        return None


class UnknownContent(MCPModel):
    """Content kind this client does not model (audio, resource_link, ...)."""

    type: str = "unknown"


ContentBlock = Union[TextContent, ImageContent, EmbeddedResource, UnknownContent]

_CONTENT_TYPES = {
    "text": TextContent,
    "image": ImageContent,
    "resource": EmbeddedResource,
}


def parse_content_block(raw: Any) -> ContentBlock:
    """Map one raw content object onto its tagged model."""
    if isinstance(raw, (TextContent, ImageContent, EmbeddedResource, UnknownContent)):
        return raw
    if not isinstance(raw, dict):
        return UnknownContent(type="unknown", value=raw)
    model = _CONTENT_TYPES.get(str(raw.get("type") or ""))
    if model is None:
        return UnknownContent.model_validate(raw)
    return model.model_validate(raw)


# Capability descriptors

class Tool(MCPModel):
    name: str
    description: Optional[str] = None
    input_schema: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        alias="inputSchema",
    )


class ToolCall(MCPModel):
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class CallToolResult(MCPModel):
    content: List[ContentBlock] = Field(default_factory=list)
    is_error: bool = Field(default=False, alias="isError")
    structured_content: Optional[Dict[str, Any]] = Field(default=None, alias="structuredContent")

    @field_validator("content", mode="before")
    @classmethod
    def _parse_content(cls, value: Any) -> List[ContentBlock]:
        if value is None:
            return []
        return [parse_content_block(item) for item in list(value)]

    @classmethod
    def from_error(cls, error: BaseException) -> "CallToolResult":
        return cls(content=[TextContent(text=str(error))], is_error=True)

    @property
    def text(self) -> str:
        return "\n".join(b.text for b in self.content if isinstance(b, TextContent))


class Resource(MCPModel):
    uri: str
    name: str = ""
    description: Optional[str] = None
    mime_type: Optional[str] = Field(default=None, alias="mimeType")


class PromptArgument(MCPModel):
    name: str
    description: Optional[str] = None
    required: bool = False


class Prompt(MCPModel):
    name: str
    description: Optional[str] = None
    arguments: List[PromptArgument] = Field(default_factory=list)


class PromptMessage(MCPModel):
    role: str = "user"
    content: ContentBlock = Field(default_factory=TextContent)

    @field_validator("content", mode="before")
    @classmethod
    def _parse_content(cls, value: Any) -> ContentBlock:
        return parse_content_block(value)


# Handshake

class Implementation(MCPModel):
    name: str = "unknown"
    version: str = ""


class InitializeResult(MCPModel):
    protocol_version: str = Field(alias="protocolVersion")
    capabilities: Dict[str, Any] = Field(default_factory=dict)
    server_info: Implementation = Field(default_factory=Implementation, alias="serverInfo")


class ServerInfo(MCPModel):
    """What the server declared during initialize."""

    name: str
    version: str
    protocol_version: str
    capabilities: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_initialize(cls, result: InitializeResult) -> "ServerInfo":
        return cls(
            name=result.server_info.name,
            version=result.server_info.version,
            protocol_version=result.protocol_version,
            capabilities=dict(result.capabilities or {}),
        )

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities

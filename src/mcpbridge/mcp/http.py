"""
HttpTransport - talk to an MCP server with one POST per message.

Strictly request/response: the JSON body returned for a request is pushed to
the message handler before send() returns. Notification responses are
discarded. No long-lived stream is opened.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterator, List, Optional

import httpx
from loguru import logger

from mcpbridge.mcp.errors import MCPConnectionError, ProtocolError
from mcpbridge.mcp.transport import BaseTransport, Message

SESSION_ID_HEADER = "Mcp-Session-Id"


def iter_sse_data(body: str) -> Iterator[str]:
    """Yield the data payload of each event in a complete SSE body."""
    data_lines: List[str] = []
    for raw_line in body.splitlines():
        line = raw_line.rstrip("\r")
        if not line:
            if data_lines:
                yield "\n".join(data_lines)
                data_lines = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "data":
            data_lines.append(value)
    if data_lines:
        yield "\n".join(data_lines)


class HttpTransport(BaseTransport):
    def __init__(
        self,
        url: Optional[str],
        headers: Optional[Dict[str, str]] = None,
        *,
        timeout: float = 30.0,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__()
        self.url = url
        self.headers = dict(headers or {})
        self._timeout = timeout
        self._http_transport = http_transport
        self._client: Optional[httpx.AsyncClient] = None
        self._session_id: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    async def connect(self) -> None:
        if self._client is not None:
            return
        if not self.url:
            raise MCPConnectionError("HTTP transport requires url")

        self._reset_close_state()
        self._session_id = None
        self._client = httpx.AsyncClient(
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json, text/event-stream",
                **self.headers,
            },
            timeout=httpx.Timeout(self._timeout),
            follow_redirects=True,
            transport=self._http_transport,
        )
        logger.debug(f"MCP HTTP transport ready: {self.url}")

    async def disconnect(self) -> None:
        client = self._client
        self._client = None
        self._session_id = None
        if client is not None:
            try:
                await client.aclose()
            except httpx.HTTPError as e:
                logger.debug(f"Error closing MCP HTTP client: {e}")
        self._report_closed(MCPConnectionError("Transport closed"))

    async def send(self, message: Message) -> None:
        client = self._client
        if client is None or not self.url:
            raise MCPConnectionError("Not connected")

        headers = {SESSION_ID_HEADER: self._session_id} if self._session_id else None
        try:
            response = await client.post(self.url, json=message, headers=headers)
        except httpx.HTTPError as e:
            raise MCPConnectionError(f"HTTP request to {self.url} failed: {e}") from e

        if response.is_error:
            raise MCPConnectionError(f"HTTP {response.status_code}: {response.reason_phrase}")

        session_id = response.headers.get(SESSION_ID_HEADER)
        if session_id:
            self._session_id = session_id

        is_request = "id" in message and "method" in message
        if not is_request:
            return

        for payload in self._decode_body(response):
            if isinstance(payload, list):
                for item in payload:
                    self._dispatch(item)
            else:
                self._dispatch(payload)

    def _decode_body(self, response: httpx.Response) -> List[Any]:
        content_type = response.headers.get("content-type", "")
        try:
            if content_type.startswith("text/event-stream"):
                return [json.loads(data) for data in iter_sse_data(response.text) if data.strip()]
            if not response.content:
                raise ProtocolError("Empty HTTP response body for request")
            return [response.json()]
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Invalid JSON in HTTP response: {e}") from e

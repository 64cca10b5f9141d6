"""
MessageCorrelator - match JSON-RPC responses to the requests that caused them.

Owns the request-id counter and the pending-request table for one session.
Each pending entry is settled exactly once: by its response, by its timeout,
or by reject_all() when the transport closes. Whichever comes first wins; the
others find the entry gone and do nothing.
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from loguru import logger

from mcpbridge.mcp.errors import MCPTimeoutError, ProtocolError
from mcpbridge.mcp.types import JSONRPC_VERSION, METHOD_NOT_FOUND

SendFn = Callable[[Dict[str, Any]], Awaitable[None]]
NotificationFn = Callable[[str, Dict[str, Any]], None]

DEFAULT_REQUEST_TIMEOUT = 30.0


@dataclass
class PendingRequest:
    id: int
    method: str
    future: asyncio.Future
    timer: Optional[asyncio.TimerHandle] = None


class MessageCorrelator:
    def __init__(
        self,
        send: SendFn,
        *,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        on_notification: Optional[NotificationFn] = None,
    ) -> None:
        self._send = send
        self._timeout = float(timeout)
        self._on_notification = on_notification
        self._ids = itertools.count(1)
        self._pending: Dict[int, PendingRequest] = {}
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_pending(self, request_id: int) -> bool:
        return request_id in self._pending

    async def request(self, method: str, params: Optional[Dict[str, Any]] = None, *, timeout: Optional[float] = None) -> Any:
        loop = asyncio.get_running_loop()
        request_id = next(self._ids)
        deadline = self._timeout if timeout is None else float(timeout)

        entry = PendingRequest(id=request_id, method=method, future=loop.create_future())
        self._pending[request_id] = entry
        entry.timer = loop.call_later(deadline, self._expire, request_id, deadline)

        message: Dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": request_id, "method": method}
        if params is not None:
            message["params"] = params

        try:
            await self._send(message)
            return await entry.future
        except BaseException:
            # Covers send failures and caller cancellation; no-op if already settled.
            self._discard(request_id)
            if not entry.future.done():
                entry.future.cancel()
            elif not entry.future.cancelled():
                entry.future.exception()
            raise

    async def notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        message: Dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": method}
        if params is not None:
            message["params"] = params
        await self._send(message)

    def handle_message(self, message: Dict[str, Any]) -> None:
        has_id = message.get("id") is not None
        method = message.get("method")

        if has_id and ("result" in message or "error" in message):
            self._settle(message)
        elif method and not has_id:
            if self._on_notification is not None:
                params = message.get("params")
                self._on_notification(str(method), params if isinstance(params, dict) else {})
            else:
                logger.debug(f"Ignoring MCP notification: {method}")
        elif method and has_id:
            self._answer_server_request(message)
        else:
            logger.debug(f"Dropping malformed MCP message: {message!r}")

    def reject_all(self, error: BaseException) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for entry in pending:
            if entry.timer is not None:
                entry.timer.cancel()
            if not entry.future.done():
                entry.future.set_exception(error)
        if pending:
            logger.debug(f"Rejected {len(pending)} pending MCP request(s): {error}")

    def close(self, error: BaseException) -> None:
        self.reject_all(error)
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    def _settle(self, message: Dict[str, Any]) -> None:
        request_id = message.get("id")
        entry = self._pending.pop(request_id, None) if isinstance(request_id, int) else None
        if entry is None:
            logger.debug(f"Dropping MCP response for unknown or stale id: {request_id!r}")
            return
        if entry.timer is not None:
            entry.timer.cancel()
        if entry.future.done():
            return
        if "error" in message and message["error"] is not None:
            entry.future.set_exception(ProtocolError.from_error_object(message["error"]))
        else:
            entry.future.set_result(message.get("result"))

    def _expire(self, request_id: int, deadline: float) -> None:
        entry = self._pending.pop(request_id, None)
        if entry is None:
            return
        if not entry.future.done():
            entry.future.set_exception(MCPTimeoutError(entry.method, deadline))

    def _discard(self, request_id: int) -> None:
        entry = self._pending.pop(request_id, None)
        if entry is not None and entry.timer is not None:
            entry.timer.cancel()

    def _answer_server_request(self, message: Dict[str, Any]) -> None:
        method = str(message.get("method"))
        reply: Dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": message.get("id")}
        if method == "ping":
            reply["result"] = {}
        else:
            logger.debug(f"Unsupported server request: {method}")
            reply["error"] = {"code": METHOD_NOT_FOUND, "message": f"Method not found: {method}"}

        task = asyncio.ensure_future(self._send_reply(reply))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send_reply(self, reply: Dict[str, Any]) -> None:
        try:
            await self._send(reply)
        except Exception as e:
            logger.debug(f"Failed to answer MCP server request {reply.get('id')!r}: {e}")

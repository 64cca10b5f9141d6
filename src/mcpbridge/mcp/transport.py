"""
Transport base class.

A transport moves encoded JSON-RPC messages between the client and one MCP
server. It knows framing, not message semantics: inbound messages are pushed
to the registered message handler, and closure of the channel is reported once
to the close handler so pending requests can be failed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

from loguru import logger

Message = Dict[str, Any]
MessageHandler = Callable[[Message], None]
CloseHandler = Callable[[Exception], None]


class BaseTransport(ABC):
    """Abstract MCP transport."""

    def __init__(self) -> None:
        self._on_message: Optional[MessageHandler] = None
        self._on_close: Optional[CloseHandler] = None
        self._close_reported = False

    def set_handlers(self, on_message: MessageHandler, on_close: Optional[CloseHandler] = None) -> None:
        self._on_message = on_message
        self._on_close = on_close

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether the channel is open."""

    @abstractmethod
    async def connect(self) -> None:
        """Open the channel. Must be paired with disconnect()."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the channel and report closure. Idempotent."""

    @abstractmethod
    async def send(self, message: Message) -> None:
        """Transmit one JSON-RPC message."""

    def _dispatch(self, message: Any) -> None:
        if not isinstance(message, dict):
            logger.debug(f"Dropping non-object MCP message: {message!r}")
            return
        handler = self._on_message
        if handler is None:
            logger.debug("Dropping MCP message: no handler registered")
            return
        try:
            handler(message)
        except Exception as e:
            logger.error(f"MCP message handler failed: {e}")

    def _report_closed(self, error: Exception) -> None:
        if self._close_reported:
            return
        self._close_reported = True
        handler = self._on_close
        if handler is not None:
            try:
                handler(error)
            except Exception as e:
                logger.error(f"MCP close handler failed: {e}")

    def _reset_close_state(self) -> None:
        self._close_reported = False

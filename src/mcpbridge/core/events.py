"""
Notification bus for server-initiated MCP notifications.

Each session owns its own bus; handlers subscribe per notification method or
with '*' for everything the server sends.
"""

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple
from uuid import uuid4

from loguru import logger

TOOLS_LIST_CHANGED = "notifications/tools/list_changed"
RESOURCES_LIST_CHANGED = "notifications/resources/list_changed"
RESOURCE_UPDATED = "notifications/resources/updated"
PROMPTS_LIST_CHANGED = "notifications/prompts/list_changed"
LOG_MESSAGE = "notifications/message"
PROGRESS = "notifications/progress"


@dataclass
class ServerNotification:
    """A notification received from an MCP server."""

    server: str
    method: str
    params: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)
    id: str = field(default_factory=lambda: str(uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "server": self.server,
            "method": self.method,
            "params": self.params,
            "timestamp": self.timestamp.isoformat(),
        }


NotificationHandler = Callable[[ServerNotification], Awaitable[None]]


class NotificationBus:
    """
    Observer channel for server notifications.

    Features:
    - Per-method and wildcard subscriptions
    - Handler priority
    - Bounded history
    """

    def __init__(self, max_history: int = 100):
        self._handlers: Dict[str, List[Tuple[int, NotificationHandler]]] = defaultdict(list)
        self._wildcard_handlers: List[Tuple[int, NotificationHandler]] = []
        self._history: List[ServerNotification] = []
        self._max_history = max_history
        self._tasks: Set[asyncio.Task] = set()

    def subscribe(self, method: str, handler: NotificationHandler, priority: int = 0) -> None:
        """
        Subscribe to a notification.

        Args:
            method: Notification method or '*' for all notifications
            handler: Async function receiving the notification
            priority: Higher priority handlers run first
        """
        if method == "*":
            self._wildcard_handlers.append((priority, handler))
            self._wildcard_handlers.sort(key=lambda x: -x[0])
        else:
            self._handlers[method].append((priority, handler))
            self._handlers[method].sort(key=lambda x: -x[0])
        logger.debug(f"Handler subscribed to '{method}'")

    def unsubscribe(self, method: str, handler: NotificationHandler) -> None:
        if method == "*":
            self._wildcard_handlers = [(p, h) for p, h in self._wildcard_handlers if h != handler]
        else:
            self._handlers[method] = [(p, h) for p, h in self._handlers[method] if h != handler]

    def publish(self, notification: ServerNotification) -> List[asyncio.Task]:
        """
        Record a notification and schedule its handlers.

        Safe to call from synchronous code running on the event loop.
        Returns the scheduled handler tasks.
        """
        self._history.append(notification)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        handlers = self._collect(notification.method)
        tasks = []
        for handler in handlers:
            task = asyncio.ensure_future(self._run_handler(handler, notification))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            tasks.append(task)
        return tasks

    async def emit(self, notification: ServerNotification) -> None:
        """Record a notification and wait for all its handlers."""
        tasks = self.publish(notification)
        if tasks:
            await asyncio.gather(*tasks)

    def get_history(self, method: Optional[str] = None, limit: int = 100) -> List[ServerNotification]:
        history = self._history
        if method:
            history = [n for n in history if n.method == method]
        return history[-limit:]

    def cancel_pending(self) -> None:
        """Cancel in-flight handlers, except the one calling this."""
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()
                self._tasks.discard(task)

    def clear(self) -> None:
        """Drop history and cancel in-flight handlers. Subscriptions are kept."""
        self._history.clear()
        self.cancel_pending()

    def _collect(self, method: str) -> List[NotificationHandler]:
        handlers = [h for _, h in self._handlers.get(method, [])]
        handlers.extend(h for _, h in self._wildcard_handlers)
        return handlers

    async def _run_handler(self, handler: NotificationHandler, notification: ServerNotification) -> None:
        try:
            await handler(notification)
        except Exception as e:
            logger.error(f"Notification handler error for '{notification.method}': {e}")

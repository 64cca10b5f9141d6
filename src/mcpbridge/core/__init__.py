"""Core module - notification bus and logging setup."""

from mcpbridge.core.events import NotificationBus, ServerNotification
from mcpbridge.core.log import setup_logging

__all__ = ["NotificationBus", "ServerNotification", "setup_logging"]

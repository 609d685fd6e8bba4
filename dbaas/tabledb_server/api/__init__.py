"""
API layer for TableDB.

This module provides:
- FastAPI HTTP gateway (REST, tenant from trusted upstream headers)
- Action dispatcher for assistant-style {action, args} write intents
"""

from .dispatch import ACTION_ORIGIN, ACTIONS, dispatch_action
from .http_server import create_app, status_for
from .settings import Settings

__all__ = [
    "create_app",
    "status_for",
    "Settings",
    "dispatch_action",
    "ACTIONS",
    "ACTION_ORIGIN",
]

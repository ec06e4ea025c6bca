"""Pickup request lifecycle: transition table and state machine service."""

from .manager import RequestLifecycleManager
from .transitions import (
    ALLOWED_TRANSITIONS,
    COLLECTOR_ASSIGNED_STATUSES,
    TERMINAL_STATUSES,
    is_terminal,
    validate_transition,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "COLLECTOR_ASSIGNED_STATUSES",
    "RequestLifecycleManager",
    "TERMINAL_STATUSES",
    "is_terminal",
    "validate_transition",
]

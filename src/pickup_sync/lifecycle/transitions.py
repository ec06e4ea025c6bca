"""Pickup request transition table, guard conditions, and validation.

PENDING -> ACCEPTED -> IN_PROGRESS -> COMPLETED, plus PENDING -> CANCELLED.
Every lifecycle mutation is checked against :data:`ALLOWED_TRANSITIONS`
using the status read inside the same store transaction.
"""

from __future__ import annotations

from ..models import RequestStatus

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "cancelled"})

# Statuses in which the request carries a collectorId.
COLLECTOR_ASSIGNED_STATUSES: frozenset[str] = frozenset({"accepted", "in_progress", "completed"})

ALLOWED_TRANSITIONS: frozenset[tuple[str, str]] = frozenset(
    {
        ("pending", "accepted"),
        ("accepted", "in_progress"),
        ("in_progress", "completed"),
        ("pending", "cancelled"),
    }
)

# Map of (from_status, to_status) -> guard function name
_GUARDED_TRANSITIONS: dict[tuple[str, str], str] = {
    ("pending", "accepted"): "collector_required",
    ("in_progress", "completed"): "final_amount_required",
}


def is_terminal(status: str) -> bool:
    """Check if a status is terminal (completed or cancelled)."""
    return status.strip().lower() in TERMINAL_STATUSES


def _guard_collector_required(collector_id: str | None) -> tuple[bool, str | None]:
    """Guard: pending -> accepted requires the accepting collector."""
    if not collector_id or not collector_id.strip():
        return False, "Transition pending -> accepted requires a collector id"
    return True, None


def _guard_final_amount_required(final_amount: float | None) -> tuple[bool, str | None]:
    """Guard: in_progress -> completed requires a non-negative final amount."""
    if final_amount is None or final_amount < 0:
        return False, "Transition in_progress -> completed requires a final amount >= 0"
    return True, None


def validate_transition(
    from_status: str,
    to_status: str,
    *,
    collector_id: str | None = None,
    final_amount: float | None = None,
) -> tuple[bool, str | None]:
    """Validate a status transition. Returns (ok, error_message)."""
    resolved_from = from_status.strip().lower()
    resolved_to = to_status.strip().lower()

    try:
        RequestStatus(resolved_from)
    except ValueError:
        return False, f"Unknown status: {from_status}"
    try:
        RequestStatus(resolved_to)
    except ValueError:
        return False, f"Unknown status: {to_status}"

    if (resolved_from, resolved_to) not in ALLOWED_TRANSITIONS:
        return False, f"Illegal transition: {resolved_from} -> {resolved_to}"

    guard_name = _GUARDED_TRANSITIONS.get((resolved_from, resolved_to))
    if guard_name == "collector_required":
        return _guard_collector_required(collector_id)
    if guard_name == "final_amount_required":
        return _guard_final_amount_required(final_amount)
    return True, None

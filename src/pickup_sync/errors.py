"""Exception hierarchy for pickup-sync services.

Validation and authorization errors are raised before any store I/O and
are never retried. ``TransientIOError`` is what a store raises for
network-level failures; ``TransactionConflictError`` surfaces only after
the store's transaction retry budget is exhausted.
"""

from __future__ import annotations


class PickupSyncError(Exception):
    """Base exception for pickup-sync errors."""

    pass


class ValidationError(PickupSyncError):
    """Malformed input, detected before any I/O."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class NotAuthenticatedError(PickupSyncError):
    """No authenticated user is available for an operation that needs one."""

    def __init__(self, message: str = "User not authenticated"):
        super().__init__(message)


class NotAuthorizedError(PickupSyncError):
    """Caller is not the owner, not a participant, or has the wrong role."""

    def __init__(self, message: str, user_id: str | None = None):
        self.user_id = user_id
        super().__init__(message)


class InvalidRoleError(NotAuthorizedError):
    """Caller is authenticated but holds the wrong role."""

    def __init__(self, user_id: str, role: str, required: str):
        self.role = role
        self.required = required
        super().__init__(
            f"User {user_id} has role {role!r}; {required!r} is required",
            user_id=user_id,
        )


class NotFoundError(PickupSyncError):
    """A document that must exist does not."""

    def __init__(self, path: str, message: str | None = None):
        self.path = path
        super().__init__(message or f"Document not found: {path}")


class InvalidTransitionError(PickupSyncError):
    """A request lifecycle transition is not allowed from the current status."""

    def __init__(
        self,
        request_id: str,
        from_status: str,
        to_status: str,
        message: str | None = None,
    ):
        self.request_id = request_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            message
            or f"Request {request_id}: illegal transition {from_status} -> {to_status}"
        )


class AlreadyAcceptedError(InvalidTransitionError):
    """Another collector won the race to accept a pending request."""

    def __init__(self, request_id: str, current_status: str, collector_id: str | None):
        self.collector_id = collector_id
        super().__init__(
            request_id,
            current_status,
            "accepted",
            message=(
                f"Request {request_id} was already accepted"
                + (f" by {collector_id}" if collector_id else "")
                + f" (status: {current_status})"
            ),
        )


class TransactionConflictError(PickupSyncError):
    """Concurrent writes kept invalidating a transaction until retries ran out."""

    def __init__(self, attempts: int, paths: list[str] | None = None):
        self.attempts = attempts
        self.paths = list(paths or [])
        detail = f" on {', '.join(self.paths)}" if self.paths else ""
        super().__init__(
            f"Transaction aborted after {attempts} attempt(s) due to concurrent writes{detail}. "
            "Retry the operation."
        )


class TransientIOError(PickupSyncError):
    """Network-level failure talking to the document store."""

    pass

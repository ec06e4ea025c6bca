"""Who is calling: the boundary to credential/session management."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

from .errors import InvalidRoleError, NotAuthenticatedError


class UserRole(StrEnum):
    HOUSEHOLD = "household"
    COLLECTOR = "collector"


@dataclass(frozen=True)
class UserIdentity:
    id: str
    role: UserRole
    display_name: str = ""


class SessionProvider(Protocol):
    """Source of the signed-in user; ``None`` when nobody is signed in."""

    def current_user(self) -> UserIdentity | None: ...


class StaticSession:
    """Session provider that always returns the same user (or nobody)."""

    def __init__(self, user: UserIdentity | None = None) -> None:
        self.user = user

    def current_user(self) -> UserIdentity | None:
        return self.user


def require_user(session: SessionProvider, role: UserRole | None = None) -> UserIdentity:
    """Return the signed-in user, optionally insisting on *role*."""
    user = session.current_user()
    if user is None or not user.id.strip():
        raise NotAuthenticatedError()
    if role is not None and user.role != role:
        raise InvalidRoleError(user.id, str(user.role), str(role))
    return user

"""Caller identity threaded through every ledger operation.

The acting user is resolved once at the boundary (HTTP dependency, webhook
handler, script) into a ``Caller`` and passed explicitly from there on.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable
from uuid import UUID

from affiliate_ledger.errors import AccessDeniedError, UnauthenticatedError


@dataclass(frozen=True)
class Caller:
    """Authenticated identity plus its administrator flag."""

    user_id: UUID
    is_admin: bool = False

    def owns(self, owner_id: UUID) -> bool:
        return self.user_id == owner_id


@runtime_checkable
class CallerResolver(Protocol):
    """Resolves an opaque caller token into a Caller."""

    def resolve(self, token: str | None) -> Caller:
        """Return the caller or raise UnauthenticatedError."""
        ...


class HeaderCallerResolver:
    """Resolve callers from a user-id header against a fixed administrator set."""

    def __init__(self, admin_user_ids: frozenset[UUID] | set[UUID] = frozenset()):
        self.admin_user_ids = frozenset(admin_user_ids)

    def resolve(self, token: str | None) -> Caller:
        if not token:
            raise UnauthenticatedError("X-User-ID header is required")
        try:
            user_id = UUID(token.strip())
        except ValueError as exc:
            raise UnauthenticatedError("Invalid X-User-ID format") from exc
        return Caller(user_id=user_id, is_admin=user_id in self.admin_user_ids)


def require_admin(caller: Caller) -> Caller:
    """Raise AccessDeniedError unless the caller is an administrator."""
    if not caller.is_admin:
        raise AccessDeniedError("Administrator access required")
    return caller


def require_owner_or_admin(caller: Caller, owner_id: UUID) -> Caller:
    """Raise AccessDeniedError unless the caller owns the resource or is an admin."""
    if not (caller.is_admin or caller.owns(owner_id)):
        raise AccessDeniedError()
    return caller

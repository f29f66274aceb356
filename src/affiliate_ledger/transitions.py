"""Typed partial updates for ledger entry transitions.

Each transition is a frozen dataclass whose ``values()`` feeds exactly one
``UPDATE`` statement, so a transition can only ever touch the columns it
names. Fields that a transition clears are listed explicitly as ``None``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

NOTE_MAX_LENGTH = 280


def clean_note(note: str | None, max_length: int = NOTE_MAX_LENGTH) -> str | None:
    """Trim and truncate a free-text note; blank notes become None."""
    if note is None:
        return None
    note = note.strip()[:max_length]
    return note or None


@dataclass(frozen=True)
class Recompute:
    """Fresh totals for an open entry."""

    attributed_revenue_cents: int
    commission_rate: Decimal
    commission_cents: int
    updated_at: datetime

    def values(self) -> dict[str, Any]:
        return {
            "attributed_revenue_cents": self.attributed_revenue_cents,
            "commission_rate": self.commission_rate,
            "commission_cents": self.commission_cents,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class LockTransition:
    """open -> locked."""

    locked_at: datetime
    note: str | None = None

    def values(self) -> dict[str, Any]:
        values: dict[str, Any] = {
            "status": "locked",
            "locked_at": self.locked_at,
            "updated_at": self.locked_at,
        }
        if self.note is not None:
            values["notes"] = self.note
        return values


@dataclass(frozen=True)
class ManualPaidTransition:
    """locked -> paid, recorded by hand outside any batch."""

    paid_at: datetime
    paid_by_user_id: UUID
    method: str | None = None
    note: str | None = None

    def values(self) -> dict[str, Any]:
        values: dict[str, Any] = {
            "status": "paid",
            "paid_at": self.paid_at,
            "paid_by_user_id": self.paid_by_user_id,
            "payment_method": self.method,
            "updated_at": self.paid_at,
        }
        if self.note is not None:
            values["notes"] = self.note
        return values


@dataclass(frozen=True)
class BatchPaidTransition:
    """locked -> paid as a member of a payout batch; clears any request claim."""

    paid_at: datetime
    payout_batch_id: UUID
    method: str

    def values(self) -> dict[str, Any]:
        return {
            "status": "paid",
            "paid_at": self.paid_at,
            "payout_batch_id": self.payout_batch_id,
            "payout_request_id": None,
            "payment_method": self.method,
            "updated_at": self.paid_at,
        }


@dataclass(frozen=True)
class ExternalTransferPaidTransition:
    """locked -> paid, reported by the payment processor."""

    paid_at: datetime
    external_refs: dict[str, str] = field(default_factory=dict)
    paid_by_user_id: UUID | None = None

    def values(self) -> dict[str, Any]:
        return {
            "status": "paid",
            "paid_at": self.paid_at,
            "paid_by_user_id": self.paid_by_user_id,
            "payment_method": "external_transfer",
            "external_refs_json": dict(self.external_refs),
            "updated_at": self.paid_at,
        }


@dataclass(frozen=True)
class RevertToLockedTransition:
    """paid -> locked (batch void or administrator correction)."""

    updated_at: datetime
    note: str | None = None
    release_request: bool = False

    def values(self) -> dict[str, Any]:
        values: dict[str, Any] = {
            "status": "locked",
            "paid_at": None,
            "paid_by_user_id": None,
            "payment_method": None,
            "payout_batch_id": None,
            "updated_at": self.updated_at,
        }
        if self.release_request:
            values["payout_request_id"] = None
        if self.note is not None:
            values["notes"] = self.note
        return values


@dataclass(frozen=True)
class RequestClaim:
    """Point a locked entry at an in-flight payout request."""

    payout_request_id: UUID
    updated_at: datetime

    def values(self) -> dict[str, Any]:
        return {"payout_request_id": self.payout_request_id, "updated_at": self.updated_at}


@dataclass(frozen=True)
class RequestRelease:
    """Drop an entry's payout request reference."""

    updated_at: datetime

    def values(self) -> dict[str, Any]:
        return {"payout_request_id": None, "updated_at": self.updated_at}

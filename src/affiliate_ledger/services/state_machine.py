"""Ledger entry, payout request and batch transfer state machines."""

from __future__ import annotations

from enum import Enum

from affiliate_ledger.errors import InvalidStateError


class LedgerStatus(str, Enum):
    """Ledger entry status values."""

    OPEN = "open"
    LOCKED = "locked"
    PAID = "paid"


class BatchStatus(str, Enum):
    """Payout batch status values."""

    RECORDED = "recorded"
    VOIDED = "voided"


class TransferStatus(str, Enum):
    """External transfer status on a payout batch."""

    RECORDED = "recorded"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"


class PayoutRequestStatus(str, Enum):
    """Payout request status values."""

    SUBMITTED = "submitted"
    APPROVED = "approved"
    DENIED = "denied"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class LedgerStateMachine:
    """State machine for ledger entry status transitions.

    Allowed transitions:
    - open → locked
    - locked → paid (batch, request completion, manual, external transfer)
    - paid → locked (batch void, administrator correction)
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        LedgerStatus.OPEN: [LedgerStatus.LOCKED],
        LedgerStatus.LOCKED: [LedgerStatus.PAID],
        LedgerStatus.PAID: [LedgerStatus.LOCKED],
    }

    # Statuses where totals may be recomputed from attributions
    RECOMPUTE_ALLOWED = {LedgerStatus.OPEN}

    # Statuses that make the entry a frozen statement
    FROZEN = {LedgerStatus.LOCKED, LedgerStatus.PAID}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def can_recompute(cls, status: str) -> bool:
        """Check if totals may still be recomputed in this status."""
        return status in cls.RECOMPUTE_ALLOWED

    @classmethod
    def is_frozen(cls, status: str) -> bool:
        return status in cls.FROZEN

    @classmethod
    def validate_transition(cls, entry_id: object, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidStateError naming the current status."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateError(
                "Ledger entry",
                str(entry_id),
                from_status,
                f"cannot move to '{_value(to_status)}'",
            )

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])


class PayoutRequestStateMachine:
    """State machine for payout request transitions.

    Allowed transitions:
    - submitted → approved | denied | cancelled | completed
    - approved → denied | completed
    - denied, cancelled, completed are terminal
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        PayoutRequestStatus.SUBMITTED: [
            PayoutRequestStatus.APPROVED,
            PayoutRequestStatus.DENIED,
            PayoutRequestStatus.CANCELLED,
            PayoutRequestStatus.COMPLETED,
        ],
        PayoutRequestStatus.APPROVED: [
            PayoutRequestStatus.DENIED,
            PayoutRequestStatus.COMPLETED,
        ],
        PayoutRequestStatus.DENIED: [],
        PayoutRequestStatus.CANCELLED: [],
        PayoutRequestStatus.COMPLETED: [],
    }

    # Statuses in which member entries are still claimed by the request
    IN_FLIGHT = {PayoutRequestStatus.SUBMITTED, PayoutRequestStatus.APPROVED}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return not cls.VALID_TRANSITIONS.get(status)

    @classmethod
    def validate_transition(cls, request_id: object, from_status: str, to_status: str) -> None:
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateError(
                "Payout request",
                str(request_id),
                from_status,
                f"cannot move to '{_value(to_status)}'",
            )


class TransferStateMachine:
    """External transfer sub-state on a payout batch.

    A batch with no transfer status behaves as ``recorded``.
    - recorded → processing
    - failed → processing (retry)
    - processing → paid | failed
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        TransferStatus.RECORDED: [TransferStatus.PROCESSING],
        TransferStatus.FAILED: [TransferStatus.PROCESSING],
        TransferStatus.PROCESSING: [TransferStatus.PAID, TransferStatus.FAILED],
        TransferStatus.PAID: [],
    }

    @classmethod
    def effective(cls, status: str | None) -> str:
        return status or TransferStatus.RECORDED.value

    @classmethod
    def can_transition(cls, from_status: str | None, to_status: str) -> bool:
        allowed = cls.VALID_TRANSITIONS.get(cls.effective(from_status), [])
        return to_status in allowed

    @classmethod
    def blocks_void(cls, status: str | None) -> bool:
        return cls.effective(status) == TransferStatus.PROCESSING


def _value(status: str) -> str:
    return status.value if isinstance(status, Enum) else status

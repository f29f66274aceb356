"""Error types raised by the commission ledger.

Every error carries a stable ``code`` so the API layer can map it to a
status without string matching. Messages are human readable and name the
current state of the resource whenever a state check failed.
"""

from __future__ import annotations

from uuid import UUID


class LedgerError(Exception):
    """Base class for all ledger errors."""

    code = "LEDGER_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class UnauthenticatedError(LedgerError):
    """Caller identity could not be resolved."""

    code = "UNAUTHENTICATED"


class NotFoundError(LedgerError):
    """Ledger entry, batch or request does not exist."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: UUID | str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class AccessDeniedError(LedgerError):
    """Caller is neither the owner nor an administrator where required."""

    code = "ACCESS_DENIED"

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class InvalidStateError(LedgerError):
    """Operation attempted from a state that does not permit it."""

    code = "INVALID_STATE"

    def __init__(
        self,
        entity: str,
        entity_id: UUID | str,
        actual_status: str | None,
        reason: str | None = None,
    ):
        self.entity = entity
        self.entity_id = entity_id
        self.actual_status = actual_status
        self.reason = reason
        msg = f"{entity} {entity_id} is '{actual_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class AlreadyBatchedError(LedgerError):
    """Ledger entry is already committed to a payout batch."""

    code = "ALREADY_BATCHED"

    def __init__(self, ledger_entry_id: UUID, message: str | None = None):
        self.ledger_entry_id = ledger_entry_id
        super().__init__(message or f"Ledger entry {ledger_entry_id} already belongs to a payout batch")


class AlreadyRequestedError(LedgerError):
    """Ledger entry is already part of another payout request."""

    code = "ALREADY_REQUESTED"

    def __init__(self, ledger_entry_id: UUID, message: str | None = None):
        self.ledger_entry_id = ledger_entry_id
        super().__init__(
            message or f"Ledger entry {ledger_entry_id} is already in a pending payout request"
        )


class EmptySelectionError(LedgerError):
    """No ledger entries were supplied to a batch or request operation."""

    code = "EMPTY_SELECTION"

    def __init__(self) -> None:
        super().__init__("No ledger entries selected")


class MissingReasonError(LedgerError):
    """A denial was attempted without a reason."""

    code = "MISSING_REASON"

    def __init__(self) -> None:
        super().__init__("Denial reason is required")


class TransferInProgressError(LedgerError):
    """Batch cannot be voided while an external transfer is processing."""

    code = "TRANSFER_IN_PROGRESS"

    def __init__(self, payout_batch_id: UUID):
        self.payout_batch_id = payout_batch_id
        super().__init__(
            f"Cannot void payout batch {payout_batch_id} while an external transfer is processing"
        )


class ValidationError(LedgerError):
    """Malformed input such as an unknown period type or date string."""

    code = "VALIDATION_ERROR"

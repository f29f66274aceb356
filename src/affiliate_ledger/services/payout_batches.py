"""Payout batch recording, voiding and external transfer tracking."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Sequence
from uuid import UUID, uuid4

from sqlalchemy import or_, select, update

from affiliate_ledger.auth import Caller, require_admin
from affiliate_ledger.errors import (
    AlreadyBatchedError,
    EmptySelectionError,
    InvalidStateError,
    NotFoundError,
    TransferInProgressError,
    ValidationError,
)
from affiliate_ledger.events import (
    EventEmitter,
    EventMetadata,
    LedgerEntryPaid,
    LedgerEntryUnpaid,
    PayoutBatchCreated,
    PayoutBatchTransferUpdated,
    PayoutBatchVoided,
)
from affiliate_ledger.models import LedgerEntry, PayoutBatch
from affiliate_ledger.periods import utcnow
from affiliate_ledger.services.entries import (
    apply_transition,
    dedupe,
    load_entries,
    validate_payable,
)
from affiliate_ledger.services.state_machine import (
    BatchStatus,
    LedgerStatus,
    TransferStateMachine,
    TransferStatus,
)
from affiliate_ledger.transitions import BatchPaidTransition, RevertToLockedTransition, clean_note

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

TRANSFER_ERROR_MAX_LENGTH = 500


class PayoutBatchManager:
    """Groups locked entries into administrator-recorded payouts.

    Constraints:
    - Every member must be locked and unbatched when the batch is recorded
    - Batch totals are a snapshot taken at creation time
    - All members become paid, or the whole call fails
    - A batch whose external transfer is processing cannot be voided
    """

    def __init__(
        self,
        session: Session,
        clock: Callable[[], datetime] = utcnow,
        emitter: EventEmitter | None = None,
    ):
        self.session = session
        self.clock = clock
        self.emitter = emitter or EventEmitter()

    def create_batch(
        self,
        caller: Caller,
        ledger_entry_ids: Sequence[UUID],
        method: str,
        note: str | None = None,
    ) -> PayoutBatch:
        """Record a batch over locked entries and mark them all paid.

        Raises:
            EmptySelectionError: no ids supplied
            NotFoundError: an id does not exist
            InvalidStateError: an entry is not locked
            AlreadyBatchedError: an entry already has a batch
        """
        require_admin(caller)
        ids = dedupe(ledger_entry_ids)
        if not ids:
            raise EmptySelectionError()

        entries = load_entries(self.session, ids, for_update=True)
        validated = validate_payable(entries, ids)
        return self.record_batch(caller, validated, method, note)

    def record_batch(
        self,
        caller: Caller,
        entries: list[LedgerEntry],
        method: str,
        note: str | None = None,
        payout_request_id: UUID | None = None,
    ) -> PayoutBatch:
        """Insert the batch and claim every already-validated entry for it.

        Each claim re-checks status and references at write time; a lost
        race raises AlreadyBatchedError and the caller's transaction must
        be rolled back.
        """
        method = (method or "").strip()
        if not method:
            raise ValidationError("Payment method is required")

        now = self.clock()
        batch = PayoutBatch(
            payout_batch_id=uuid4(),
            created_by_user_id=caller.user_id,
            created_at=now,
            method=method,
            notes=clean_note(note),
            total_commission_cents=sum(entry.commission_cents for entry in entries),
            ledger_ids_json=[str(entry.ledger_entry_id) for entry in entries],
            status=BatchStatus.RECORDED.value,
        )
        self.session.add(batch)
        self.session.flush()

        transition = BatchPaidTransition(paid_at=now, payout_batch_id=batch.payout_batch_id, method=method)
        for entry in entries:
            conditions = [
                LedgerEntry.status == LedgerStatus.LOCKED.value,
                LedgerEntry.payout_batch_id.is_(None),
            ]
            if payout_request_id is not None:
                conditions.append(
                    or_(
                        LedgerEntry.payout_request_id.is_(None),
                        LedgerEntry.payout_request_id == payout_request_id,
                    )
                )
            if not apply_transition(self.session, entry, transition, *conditions):
                raise AlreadyBatchedError(
                    entry.ledger_entry_id,
                    f"Ledger entry {entry.ledger_entry_id} was claimed by another payout "
                    f"(now '{entry.status}')",
                )

        logger.info(
            "Recorded payout batch %s with %d entries totalling %d",
            batch.payout_batch_id,
            len(entries),
            batch.total_commission_cents,
        )

        metadata = EventMetadata.create(actor_id=caller.user_id, actor_type="admin", timestamp=now)
        self.emitter.emit(
            PayoutBatchCreated(
                metadata=metadata,
                payout_batch_id=batch.payout_batch_id,
                ledger_entry_ids=tuple(entry.ledger_entry_id for entry in entries),
                total_commission_cents=batch.total_commission_cents,
                method=method,
                payout_request_id=payout_request_id,
            )
        )
        for entry in entries:
            self.emitter.emit(
                LedgerEntryPaid(
                    metadata=EventMetadata.create(
                        correlation_id=metadata.correlation_id,
                        actor_id=caller.user_id,
                        actor_type="admin",
                        timestamp=now,
                    ),
                    ledger_entry_id=entry.ledger_entry_id,
                    referrer_user_id=entry.referrer_user_id,
                    commission_cents=entry.commission_cents,
                    channel="batch",
                    payout_batch_id=batch.payout_batch_id,
                )
            )
        return batch

    def void_batch(self, caller: Caller, payout_batch_id: UUID, note: str | None = None) -> PayoutBatch:
        """Void a batch and revert members that are still paid through it."""
        require_admin(caller)
        batch = self._get_batch(payout_batch_id)

        if batch.status == BatchStatus.VOIDED.value:
            logger.info("Void of payout batch %s ignored; already voided", payout_batch_id)
            return batch
        if TransferStateMachine.blocks_void(batch.payout_status):
            raise TransferInProgressError(payout_batch_id)

        now = self.clock()
        entries = load_entries(self.session, batch.ledger_ids, for_update=True)
        reverted: list[LedgerEntry] = []
        for ledger_entry_id in batch.ledger_ids:
            entry = entries.get(ledger_entry_id)
            if entry is None:
                continue
            if apply_transition(
                self.session,
                entry,
                RevertToLockedTransition(updated_at=now),
                LedgerEntry.status == LedgerStatus.PAID.value,
                LedgerEntry.payout_batch_id == payout_batch_id,
            ):
                reverted.append(entry)

        values = {"status": BatchStatus.VOIDED.value, "voided_at": now}
        cleaned = clean_note(note)
        if cleaned is not None:
            values["notes"] = cleaned
        voided = self._update_batch(
            batch,
            values,
            PayoutBatch.status == BatchStatus.RECORDED.value,
            or_(
                PayoutBatch.payout_status.is_(None),
                PayoutBatch.payout_status != TransferStatus.PROCESSING.value,
            ),
        )
        if not voided:
            if batch.status == BatchStatus.VOIDED.value:
                return batch
            raise TransferInProgressError(payout_batch_id)

        logger.info("Voided payout batch %s; reverted %d entries", payout_batch_id, len(reverted))
        metadata = EventMetadata.create(actor_id=caller.user_id, actor_type="admin", timestamp=now)
        self.emitter.emit(
            PayoutBatchVoided(
                metadata=metadata,
                payout_batch_id=payout_batch_id,
                reverted_ledger_entry_ids=tuple(entry.ledger_entry_id for entry in reverted),
            )
        )
        for entry in reverted:
            self.emitter.emit(
                LedgerEntryUnpaid(
                    metadata=EventMetadata.create(
                        correlation_id=metadata.correlation_id,
                        actor_id=caller.user_id,
                        actor_type="admin",
                        timestamp=now,
                    ),
                    ledger_entry_id=entry.ledger_entry_id,
                    referrer_user_id=entry.referrer_user_id,
                    reason="batch_voided",
                )
            )
        return batch

    # ------------------------------------------------------------------
    # External transfer sub-state (payment processor side)
    # ------------------------------------------------------------------

    def mark_transfer_processing(self, payout_batch_id: UUID) -> PayoutBatch:
        """Claim the batch for an outgoing transfer; prevents double-send."""
        batch = self._get_batch(payout_batch_id)
        previous = batch.payout_status
        if batch.status != BatchStatus.RECORDED.value:
            raise InvalidStateError("Payout batch", payout_batch_id, batch.status, "cannot pay a voided batch")
        if batch.external_transfer_id or not TransferStateMachine.can_transition(
            previous, TransferStatus.PROCESSING
        ):
            raise InvalidStateError(
                "Payout batch",
                payout_batch_id,
                TransferStateMachine.effective(previous),
                "transfer already started",
            )

        now = self.clock()
        claimed = self._update_batch(
            batch,
            {
                "payout_status": TransferStatus.PROCESSING.value,
                "processing_at": now,
                "payout_error_message": None,
            },
            PayoutBatch.status == BatchStatus.RECORDED.value,
            PayoutBatch.external_transfer_id.is_(None),
            or_(
                PayoutBatch.payout_status.is_(None),
                PayoutBatch.payout_status.in_(
                    [TransferStatus.RECORDED.value, TransferStatus.FAILED.value]
                ),
            ),
        )
        if not claimed:
            raise InvalidStateError(
                "Payout batch",
                payout_batch_id,
                TransferStateMachine.effective(batch.payout_status),
                "transfer state changed concurrently",
            )
        self._emit_transfer(batch, previous, now)
        return batch

    def mark_transfer_paid(self, payout_batch_id: UUID, external_transfer_id: str) -> PayoutBatch:
        """Record a completed transfer and mark any still-locked members paid."""
        batch = self._get_batch(payout_batch_id)
        previous = batch.payout_status
        if previous == TransferStatus.PAID.value:
            if batch.external_transfer_id == external_transfer_id:
                logger.info("Transfer %s replay for batch %s ignored", external_transfer_id, payout_batch_id)
                return batch
            raise InvalidStateError(
                "Payout batch", payout_batch_id, previous, "already paid by a different transfer"
            )
        if not TransferStateMachine.can_transition(previous, TransferStatus.PAID):
            raise InvalidStateError(
                "Payout batch", payout_batch_id, TransferStateMachine.effective(previous), "transfer is not processing"
            )

        now = self.clock()
        updated = self._update_batch(
            batch,
            {
                "payout_status": TransferStatus.PAID.value,
                "external_transfer_id": external_transfer_id,
                "transfer_paid_at": now,
            },
            PayoutBatch.payout_status == TransferStatus.PROCESSING.value,
        )
        if not updated:
            raise InvalidStateError(
                "Payout batch",
                payout_batch_id,
                TransferStateMachine.effective(batch.payout_status),
                "transfer state changed concurrently",
            )

        entries = load_entries(self.session, batch.ledger_ids, for_update=True)
        transition = BatchPaidTransition(paid_at=now, payout_batch_id=payout_batch_id, method=batch.method)
        for entry in entries.values():
            apply_transition(
                self.session,
                entry,
                transition,
                LedgerEntry.status == LedgerStatus.LOCKED.value,
                LedgerEntry.payout_batch_id.is_(None),
            )

        self._emit_transfer(batch, previous, now)
        return batch

    def mark_transfer_failed(self, payout_batch_id: UUID, error_message: str) -> PayoutBatch:
        """Record a failed transfer; members stay as they are."""
        batch = self._get_batch(payout_batch_id)
        previous = batch.payout_status
        if previous == TransferStatus.FAILED.value:
            return batch
        if not TransferStateMachine.can_transition(previous, TransferStatus.FAILED):
            raise InvalidStateError(
                "Payout batch", payout_batch_id, TransferStateMachine.effective(previous), "transfer is not processing"
            )

        now = self.clock()
        updated = self._update_batch(
            batch,
            {
                "payout_status": TransferStatus.FAILED.value,
                "payout_error_message": (error_message or "transfer failed")[:TRANSFER_ERROR_MAX_LENGTH],
            },
            PayoutBatch.payout_status == TransferStatus.PROCESSING.value,
        )
        if not updated:
            raise InvalidStateError(
                "Payout batch",
                payout_batch_id,
                TransferStateMachine.effective(batch.payout_status),
                "transfer state changed concurrently",
            )
        logger.warning("Transfer for payout batch %s failed: %s", payout_batch_id, batch.payout_error_message)
        self._emit_transfer(batch, previous, now)
        return batch

    def _get_batch(self, payout_batch_id: UUID) -> PayoutBatch:
        stmt = (
            select(PayoutBatch)
            .where(PayoutBatch.payout_batch_id == payout_batch_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        batch = self.session.scalars(stmt).one_or_none()
        if batch is None:
            raise NotFoundError("Payout batch", payout_batch_id)
        return batch

    def _update_batch(self, batch: PayoutBatch, values: dict, *conditions) -> bool:
        result = self.session.execute(
            update(PayoutBatch)
            .where(PayoutBatch.payout_batch_id == batch.payout_batch_id, *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.session.refresh(batch)
        return (result.rowcount or 0) == 1

    def _emit_transfer(self, batch: PayoutBatch, previous: str | None, now: datetime) -> None:
        self.emitter.emit(
            PayoutBatchTransferUpdated(
                metadata=EventMetadata.create(actor_type="webhook", timestamp=now),
                payout_batch_id=batch.payout_batch_id,
                previous_status=previous,
                new_status=batch.payout_status,
                external_transfer_id=batch.external_transfer_id,
            )
        )

"""Ledger entry lifecycle: lock, pay and correction transitions."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Callable
from uuid import UUID

from affiliate_ledger.auth import Caller, require_admin, require_owner_or_admin
from affiliate_ledger.errors import InvalidStateError
from affiliate_ledger.events import (
    EventEmitter,
    EventMetadata,
    LedgerEntryLocked,
    LedgerEntryPaid,
    LedgerEntryUnpaid,
)
from affiliate_ledger.models import LedgerEntry, PayoutRequest
from affiliate_ledger.periods import utcnow
from affiliate_ledger.services.entries import apply_transition, get_entry_or_raise
from affiliate_ledger.services.state_machine import (
    LedgerStateMachine,
    LedgerStatus,
    PayoutRequestStateMachine,
)
from affiliate_ledger.transitions import (
    ExternalTransferPaidTransition,
    LockTransition,
    ManualPaidTransition,
    RevertToLockedTransition,
    clean_note,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def _actor_type(caller: Caller) -> str:
    return "admin" if caller.is_admin else "referrer"


class LedgerService:
    """Owns the open → locked → paid lifecycle of a single entry.

    Repeat calls that find the entry already where the caller wants it
    (lock on locked/paid, webhook replay on paid) succeed without writing.
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

    def lock(self, caller: Caller, ledger_entry_id: UUID, note: str | None = None) -> LedgerEntry:
        """Freeze an open entry. No-op if already locked or paid."""
        entry = get_entry_or_raise(self.session, ledger_entry_id, for_update=True)
        require_owner_or_admin(caller, entry.referrer_user_id)

        if entry.status != LedgerStatus.OPEN.value:
            logger.info("Lock of %s ignored; entry is already %s", ledger_entry_id, entry.status)
            return entry

        now = self.clock()
        locked = apply_transition(
            self.session,
            entry,
            LockTransition(locked_at=now, note=clean_note(note)),
            LedgerEntry.status == LedgerStatus.OPEN.value,
        )
        if not locked:
            logger.info("Lock of %s lost a race; entry is now %s", ledger_entry_id, entry.status)
            return entry

        self.emitter.emit(
            LedgerEntryLocked(
                metadata=EventMetadata.create(
                    actor_id=caller.user_id, actor_type=_actor_type(caller), timestamp=now
                ),
                ledger_entry_id=entry.ledger_entry_id,
                referrer_user_id=entry.referrer_user_id,
                commission_cents=entry.commission_cents,
            )
        )
        return entry

    def mark_paid_manually(
        self,
        caller: Caller,
        ledger_entry_id: UUID,
        method: str | None = None,
        note: str | None = None,
    ) -> LedgerEntry:
        """Record an out-of-band payment for a locked entry."""
        entry = get_entry_or_raise(self.session, ledger_entry_id, for_update=True)
        require_owner_or_admin(caller, entry.referrer_user_id)
        LedgerStateMachine.validate_transition(ledger_entry_id, entry.status, LedgerStatus.PAID)

        now = self.clock()
        paid = apply_transition(
            self.session,
            entry,
            ManualPaidTransition(
                paid_at=now,
                paid_by_user_id=caller.user_id,
                method=clean_note(method),
                note=clean_note(note),
            ),
            LedgerEntry.status == LedgerStatus.LOCKED.value,
        )
        if not paid:
            raise InvalidStateError("Ledger entry", ledger_entry_id, entry.status, "must be locked")

        self._emit_paid(entry, "manual", caller.user_id, _actor_type(caller), now)
        return entry

    def mark_paid_via_external_transfer(
        self,
        ledger_entry_id: UUID,
        external_refs: dict[str, str] | None = None,
        paid_by_user_id: UUID | None = None,
    ) -> LedgerEntry:
        """Mark a locked entry paid on behalf of the payment processor.

        Replays against an already-paid entry are logged and ignored.
        """
        entry = get_entry_or_raise(self.session, ledger_entry_id, for_update=True)
        if entry.status == LedgerStatus.PAID.value:
            logger.info("External transfer replay for %s ignored; entry already paid", ledger_entry_id)
            return entry
        LedgerStateMachine.validate_transition(ledger_entry_id, entry.status, LedgerStatus.PAID)

        now = self.clock()
        paid = apply_transition(
            self.session,
            entry,
            ExternalTransferPaidTransition(
                paid_at=now,
                external_refs={k: str(v) for k, v in (external_refs or {}).items()},
                paid_by_user_id=paid_by_user_id,
            ),
            LedgerEntry.status == LedgerStatus.LOCKED.value,
        )
        if not paid:
            if entry.status == LedgerStatus.PAID.value:
                logger.info("External transfer for %s raced another payment", ledger_entry_id)
                return entry
            raise InvalidStateError("Ledger entry", ledger_entry_id, entry.status, "must be locked")

        self._emit_paid(entry, "external_transfer", paid_by_user_id, "webhook", now)
        return entry

    def unmark_paid(self, caller: Caller, ledger_entry_id: UUID, note: str | None = None) -> LedgerEntry:
        """Administrator correction: paid → locked."""
        require_admin(caller)
        entry = get_entry_or_raise(self.session, ledger_entry_id, for_update=True)
        if entry.status != LedgerStatus.PAID.value:
            raise InvalidStateError(
                "Ledger entry", ledger_entry_id, entry.status, "only paid entries can be unmarked"
            )

        # Drop claims held by requests that are no longer in flight.
        release_request = False
        if entry.payout_request_id is not None:
            request = self.session.get(PayoutRequest, entry.payout_request_id)
            release_request = request is None or request.status not in PayoutRequestStateMachine.IN_FLIGHT

        now = self.clock()
        reverted = apply_transition(
            self.session,
            entry,
            RevertToLockedTransition(updated_at=now, note=clean_note(note), release_request=release_request),
            LedgerEntry.status == LedgerStatus.PAID.value,
        )
        if not reverted:
            raise InvalidStateError("Ledger entry", ledger_entry_id, entry.status, "must be paid")

        self.emitter.emit(
            LedgerEntryUnpaid(
                metadata=EventMetadata.create(actor_id=caller.user_id, actor_type="admin", timestamp=now),
                ledger_entry_id=entry.ledger_entry_id,
                referrer_user_id=entry.referrer_user_id,
                reason="correction",
            )
        )
        return entry

    def _emit_paid(
        self,
        entry: LedgerEntry,
        channel: str,
        actor_id: UUID | None,
        actor_type: str,
        now: datetime,
    ) -> None:
        self.emitter.emit(
            LedgerEntryPaid(
                metadata=EventMetadata.create(actor_id=actor_id, actor_type=actor_type, timestamp=now),
                ledger_entry_id=entry.ledger_entry_id,
                referrer_user_id=entry.referrer_user_id,
                commission_cents=entry.commission_cents,
                channel=channel,
                payout_batch_id=entry.payout_batch_id,
            )
        )

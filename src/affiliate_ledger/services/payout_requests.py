"""Referrer-initiated payout requests."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Sequence
from uuid import UUID, uuid4

from sqlalchemy import select, update

from affiliate_ledger.auth import Caller, require_admin
from affiliate_ledger.errors import (
    AccessDeniedError,
    AlreadyRequestedError,
    EmptySelectionError,
    InvalidStateError,
    LedgerError,
    MissingReasonError,
    NotFoundError,
)
from affiliate_ledger.events import (
    EventEmitter,
    EventMetadata,
    PayoutRequestApproved,
    PayoutRequestCancelled,
    PayoutRequestCompleted,
    PayoutRequestDenied,
    PayoutRequestSubmitted,
)
from affiliate_ledger.models import LedgerEntry, PayoutBatch, PayoutRequest
from affiliate_ledger.periods import utcnow
from affiliate_ledger.services.entries import (
    apply_transition,
    dedupe,
    load_entries,
    payout_problem,
    validate_payable,
)
from affiliate_ledger.services.payout_batches import PayoutBatchManager
from affiliate_ledger.services.state_machine import (
    LedgerStatus,
    PayoutRequestStateMachine,
    PayoutRequestStatus,
)
from affiliate_ledger.transitions import RequestClaim, RequestRelease, clean_note

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


@dataclass
class RequestEligibility:
    """A payout request with its members annotated for completion eligibility."""

    request: PayoutRequest
    entries: list[LedgerEntry] = field(default_factory=list)
    problems: dict[UUID, LedgerError] = field(default_factory=dict)

    @property
    def invalid_ledger_ids(self) -> list[UUID]:
        return list(self.problems)

    @property
    def can_complete(self) -> bool:
        return (
            self.request.status in PayoutRequestStateMachine.IN_FLIGHT
            and not self.problems
        )


class PayoutRequestManager:
    """Carries a request through submitted → approved/denied/cancelled → completed.

    Member eligibility is re-checked inside every transition that moves
    money, since entries can be paid through another channel in between.
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

    def create_request(
        self,
        caller: Caller,
        ledger_entry_ids: Sequence[UUID],
        note: str | None = None,
    ) -> PayoutRequest:
        """Submit a request over the caller's own locked, unclaimed entries."""
        ids = dedupe(ledger_entry_ids)
        if not ids:
            raise EmptySelectionError()

        entries = load_entries(self.session, ids, for_update=True)
        validated: list[LedgerEntry] = []
        for ledger_entry_id in ids:
            entry = entries.get(ledger_entry_id)
            if entry is None:
                raise NotFoundError("Ledger entry", ledger_entry_id)
            if not caller.owns(entry.referrer_user_id):
                raise AccessDeniedError("Access denied: ledger entry does not belong to you")
            problem = payout_problem(ledger_entry_id, entry, action="requested")
            if problem is not None:
                raise problem
            if entry.payout_request_id is not None:
                raise AlreadyRequestedError(ledger_entry_id)
            validated.append(entry)

        now = self.clock()
        request = PayoutRequest(
            payout_request_id=uuid4(),
            referrer_user_id=caller.user_id,
            status=PayoutRequestStatus.SUBMITTED.value,
            ledger_ids_json=[str(entry.ledger_entry_id) for entry in validated],
            total_commission_cents=sum(entry.commission_cents for entry in validated),
            total_revenue_cents=sum(entry.attributed_revenue_cents for entry in validated),
            notes=clean_note(note),
            created_at=now,
            updated_at=now,
        )
        self.session.add(request)
        self.session.flush()

        claim = RequestClaim(payout_request_id=request.payout_request_id, updated_at=now)
        for entry in validated:
            claimed = apply_transition(
                self.session,
                entry,
                claim,
                LedgerEntry.status == LedgerStatus.LOCKED.value,
                LedgerEntry.payout_batch_id.is_(None),
                LedgerEntry.payout_request_id.is_(None),
            )
            if not claimed:
                raise AlreadyRequestedError(
                    entry.ledger_entry_id,
                    f"Ledger entry {entry.ledger_entry_id} was claimed by another payout "
                    f"(now '{entry.status}')",
                )

        logger.info(
            "Payout request %s submitted by %s for %d entries",
            request.payout_request_id,
            caller.user_id,
            len(validated),
        )
        self.emitter.emit(
            PayoutRequestSubmitted(
                metadata=EventMetadata.create(actor_id=caller.user_id, actor_type="referrer", timestamp=now),
                payout_request_id=request.payout_request_id,
                referrer_user_id=caller.user_id,
                ledger_entry_ids=tuple(entry.ledger_entry_id for entry in validated),
                total_commission_cents=request.total_commission_cents,
            )
        )
        return request

    def cancel(self, caller: Caller, payout_request_id: UUID, note: str | None = None) -> PayoutRequest:
        """Owner withdraws a submitted request; repeat cancels are no-ops."""
        request = self._get_request(payout_request_id)
        if not caller.owns(request.referrer_user_id):
            raise AccessDeniedError()
        if request.status == PayoutRequestStatus.CANCELLED.value:
            logger.info("Cancel of payout request %s ignored; already cancelled", payout_request_id)
            return request
        if request.status != PayoutRequestStatus.SUBMITTED.value:
            raise InvalidStateError(
                "Payout request",
                payout_request_id,
                request.status,
                "only submitted requests can be cancelled",
            )

        now = self.clock()
        values = {
            "status": PayoutRequestStatus.CANCELLED.value,
            "cancelled_at": now,
            "updated_at": now,
        }
        cleaned = clean_note(note)
        if cleaned is not None:
            values["notes"] = cleaned
        self._move(request, PayoutRequestStatus.CANCELLED, values)
        self._release_members(request, now)

        self.emitter.emit(
            PayoutRequestCancelled(
                metadata=EventMetadata.create(actor_id=caller.user_id, actor_type="referrer", timestamp=now),
                payout_request_id=payout_request_id,
                referrer_user_id=request.referrer_user_id,
            )
        )
        return request

    def approve(self, caller: Caller, payout_request_id: UUID, note: str | None = None) -> PayoutRequest:
        require_admin(caller)
        request = self._get_request(payout_request_id)
        if request.status != PayoutRequestStatus.SUBMITTED.value:
            raise InvalidStateError(
                "Payout request",
                payout_request_id,
                request.status,
                "only submitted requests can be approved",
            )

        now = self.clock()
        values = {
            "status": PayoutRequestStatus.APPROVED.value,
            "approved_at": now,
            "updated_at": now,
        }
        cleaned = clean_note(note)
        if cleaned is not None:
            values["admin_notes"] = cleaned
        self._move(request, PayoutRequestStatus.APPROVED, values)

        self.emitter.emit(
            PayoutRequestApproved(
                metadata=EventMetadata.create(actor_id=caller.user_id, actor_type="admin", timestamp=now),
                payout_request_id=payout_request_id,
                referrer_user_id=request.referrer_user_id,
            )
        )
        return request

    def deny(self, caller: Caller, payout_request_id: UUID, reason: str) -> PayoutRequest:
        """Reject a submitted or approved request and release its members."""
        require_admin(caller)
        cleaned = clean_note(reason)
        if cleaned is None:
            raise MissingReasonError()

        request = self._get_request(payout_request_id)
        PayoutRequestStateMachine.validate_transition(
            payout_request_id, request.status, PayoutRequestStatus.DENIED
        )

        now = self.clock()
        self._move(
            request,
            PayoutRequestStatus.DENIED,
            {
                "status": PayoutRequestStatus.DENIED.value,
                "denied_at": now,
                "updated_at": now,
                "admin_notes": cleaned,
            },
        )
        self._release_members(request, now)

        self.emitter.emit(
            PayoutRequestDenied(
                metadata=EventMetadata.create(actor_id=caller.user_id, actor_type="admin", timestamp=now),
                payout_request_id=payout_request_id,
                referrer_user_id=request.referrer_user_id,
                reason=cleaned,
            )
        )
        return request

    def complete_as_batch(
        self,
        caller: Caller,
        payout_request_id: UUID,
        method: str,
        note: str | None = None,
        batches: PayoutBatchManager | None = None,
    ) -> tuple[PayoutRequest, PayoutBatch]:
        """Pay every member through a new batch and close the request.

        Raises the first eligibility problem found among the members; nothing
        is written in that case.
        """
        require_admin(caller)
        request = self._get_request(payout_request_id)
        PayoutRequestStateMachine.validate_transition(
            payout_request_id, request.status, PayoutRequestStatus.COMPLETED
        )

        ids = request.ledger_ids
        entries = load_entries(self.session, ids, for_update=True)
        validated = validate_payable(entries, ids, payout_request_id=payout_request_id, action="paid")

        batches = batches or PayoutBatchManager(self.session, self.clock, self.emitter)
        batch = batches.record_batch(
            caller,
            validated,
            method,
            note,
            payout_request_id=payout_request_id,
        )

        now = self.clock()
        self._move(
            request,
            PayoutRequestStatus.COMPLETED,
            {
                "status": PayoutRequestStatus.COMPLETED.value,
                "completed_at": now,
                "updated_at": now,
                "payout_batch_id": batch.payout_batch_id,
            },
        )
        logger.info("Payout request %s completed as batch %s", payout_request_id, batch.payout_batch_id)

        self.emitter.emit(
            PayoutRequestCompleted(
                metadata=EventMetadata.create(actor_id=caller.user_id, actor_type="admin", timestamp=now),
                payout_request_id=payout_request_id,
                referrer_user_id=request.referrer_user_id,
                payout_batch_id=batch.payout_batch_id,
            )
        )
        return request, batch

    def get_request_with_eligibility(self, caller: Caller, payout_request_id: UUID) -> RequestEligibility:
        """Read-only: the request plus which members would block completion."""
        require_admin(caller)
        request = self.session.get(PayoutRequest, payout_request_id)
        if request is None:
            raise NotFoundError("Payout request", payout_request_id)

        ids = request.ledger_ids
        entries = load_entries(self.session, ids)
        result = RequestEligibility(request=request)
        for ledger_entry_id in ids:
            entry = entries.get(ledger_entry_id)
            if entry is not None:
                result.entries.append(entry)
            problem = payout_problem(
                ledger_entry_id,
                entry,
                payout_request_id=payout_request_id,
                action="paid",
            )
            if problem is not None:
                result.problems[ledger_entry_id] = problem
        return result

    def _get_request(self, payout_request_id: UUID) -> PayoutRequest:
        stmt = (
            select(PayoutRequest)
            .where(PayoutRequest.payout_request_id == payout_request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        request = self.session.scalars(stmt).one_or_none()
        if request is None:
            raise NotFoundError("Payout request", payout_request_id)
        return request

    def _move(self, request: PayoutRequest, to_status: PayoutRequestStatus, values: dict) -> None:
        """Write a request transition only if its status is unchanged since read."""
        from_status = request.status
        result = self.session.execute(
            update(PayoutRequest)
            .where(
                PayoutRequest.payout_request_id == request.payout_request_id,
                PayoutRequest.status == from_status,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.session.refresh(request)
        if (result.rowcount or 0) != 1:
            raise InvalidStateError(
                "Payout request",
                request.payout_request_id,
                request.status,
                f"cannot move to '{to_status.value}'",
            )

    def _release_members(self, request: PayoutRequest, now: datetime) -> int:
        """Drop this request's claim from members that were not paid elsewhere."""
        entries = load_entries(self.session, request.ledger_ids, for_update=True)
        released = 0
        for entry in entries.values():
            if apply_transition(
                self.session,
                entry,
                RequestRelease(updated_at=now),
                LedgerEntry.payout_request_id == request.payout_request_id,
                LedgerEntry.status != LedgerStatus.PAID.value,
            ):
                released += 1
        logger.debug("Released %d entries from payout request %s", released, request.payout_request_id)
        return released

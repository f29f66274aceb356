"""Affiliate ledger facade: the single integration path for ledger operations.

Usage:
    ledger = AffiliateLedger(session, settings)

    # Refresh the caller's current statement
    entry = ledger.upsert_current_period_ledger(caller)

    # Freeze it, then pay it out in a batch
    ledger.lock_ledger_period(caller, entry.ledger_entry_id)
    batch = ledger.create_payout_batch_and_mark_paid(admin, [entry.ledger_entry_id], "Zelle")

Every mutation runs in its own transaction: commit on success, rollback on
any error. Domain events raised during a mutation are dispatched only after
the commit succeeds. Read views never write.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Iterator, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from affiliate_ledger.auth import Caller
from affiliate_ledger.config import Settings, get_settings
from affiliate_ledger.events import EventEmitter
from affiliate_ledger.models import Attribution, LedgerEntry, PayoutBatch, PayoutRequest
from affiliate_ledger.periods import parse_period_anchor, parse_period_type, utcnow
from affiliate_ledger.services.aggregator import LedgerAggregator
from affiliate_ledger.services.attributions import AttributionService, AttributionSummary
from affiliate_ledger.services.ledger_service import LedgerService
from affiliate_ledger.services.payout_batches import PayoutBatchManager
from affiliate_ledger.services.payout_requests import PayoutRequestManager, RequestEligibility
from affiliate_ledger.services.queries import (
    BatchDetail,
    LedgerQueries,
    Page,
    ReferrerSummary,
    RequestDetail,
)

logger = logging.getLogger(__name__)


class AffiliateLedger:
    """Synchronous affiliate ledger facade."""

    def __init__(
        self,
        session: Session,
        settings: Settings | None = None,
        event_emitter: EventEmitter | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._emitter = event_emitter or EventEmitter()
        self._clock = clock

        self._aggregator = LedgerAggregator(session, self.commission_rate, clock, self._emitter)
        self._entries = LedgerService(session, clock, self._emitter)
        self._batches = PayoutBatchManager(session, clock, self._emitter)
        self._requests = PayoutRequestManager(session, clock, self._emitter)
        self._attributions = AttributionService(session, self.commission_rate, clock)
        self._queries = LedgerQueries(session)

    @property
    def commission_rate(self) -> Decimal:
        return self._settings.commission_rate

    @property
    def emitter(self) -> EventEmitter:
        return self._emitter

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        with self._emitter.batch():
            try:
                yield
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

    # =========================================================================
    # Ledger entries
    # =========================================================================

    def upsert_ledger_for_period(
        self,
        caller: Caller,
        period_start: str,
        period_type: str | None = None,
        referrer_user_id: UUID | None = None,
    ) -> LedgerEntry:
        """Create or refresh the entry for the period containing ``period_start``.

        ``period_start`` is a ``YYYY-MM-DD`` string; any day inside the period
        selects it. Administrators may target another referrer.
        """
        kind = parse_period_type(period_type, self._settings.default_period_type)
        anchor = parse_period_anchor(period_start)
        with self._transaction():
            return self._aggregator.upsert_ledger(
                caller, referrer_user_id or caller.user_id, kind, anchor
            )

    def upsert_current_period_ledger(
        self,
        caller: Caller,
        period_type: str | None = None,
        referrer_user_id: UUID | None = None,
    ) -> LedgerEntry:
        kind = parse_period_type(period_type, self._settings.default_period_type)
        with self._transaction():
            return self._aggregator.upsert_ledger(
                caller, referrer_user_id or caller.user_id, kind, self._clock()
            )

    def lock_ledger_period(self, caller: Caller, ledger_entry_id: UUID, note: str | None = None) -> LedgerEntry:
        with self._transaction():
            return self._entries.lock(caller, ledger_entry_id, note)

    def mark_ledger_paid(
        self,
        caller: Caller,
        ledger_entry_id: UUID,
        method: str | None = None,
        note: str | None = None,
    ) -> LedgerEntry:
        with self._transaction():
            return self._entries.mark_paid_manually(caller, ledger_entry_id, method, note)

    def unmark_ledger_paid(self, caller: Caller, ledger_entry_id: UUID, note: str | None = None) -> LedgerEntry:
        with self._transaction():
            return self._entries.unmark_paid(caller, ledger_entry_id, note)

    # =========================================================================
    # Payout batches
    # =========================================================================

    def create_payout_batch_and_mark_paid(
        self,
        caller: Caller,
        ledger_entry_ids: Sequence[UUID],
        method: str,
        note: str | None = None,
    ) -> PayoutBatch:
        with self._transaction():
            return self._batches.create_batch(caller, ledger_entry_ids, method, note)

    def void_payout_batch_and_revert_paid(
        self,
        caller: Caller,
        payout_batch_id: UUID,
        note: str | None = None,
    ) -> PayoutBatch:
        with self._transaction():
            return self._batches.void_batch(caller, payout_batch_id, note)

    # =========================================================================
    # Payout requests
    # =========================================================================

    def create_payout_request(
        self,
        caller: Caller,
        ledger_entry_ids: Sequence[UUID],
        note: str | None = None,
    ) -> PayoutRequest:
        with self._transaction():
            return self._requests.create_request(caller, ledger_entry_ids, note)

    def cancel_my_payout_request(
        self,
        caller: Caller,
        payout_request_id: UUID,
        note: str | None = None,
    ) -> PayoutRequest:
        with self._transaction():
            return self._requests.cancel(caller, payout_request_id, note)

    def approve_payout_request(
        self,
        caller: Caller,
        payout_request_id: UUID,
        note: str | None = None,
    ) -> PayoutRequest:
        with self._transaction():
            return self._requests.approve(caller, payout_request_id, note)

    def deny_payout_request(self, caller: Caller, payout_request_id: UUID, reason: str) -> PayoutRequest:
        with self._transaction():
            return self._requests.deny(caller, payout_request_id, reason)

    def complete_payout_request_as_batch(
        self,
        caller: Caller,
        payout_request_id: UUID,
        method: str,
        note: str | None = None,
    ) -> tuple[PayoutRequest, PayoutBatch]:
        with self._transaction():
            return self._requests.complete_as_batch(
                caller, payout_request_id, method, note, batches=self._batches
            )

    # =========================================================================
    # Collaborator entry points (revenue feed, payment processor)
    # =========================================================================

    def record_attribution(
        self,
        referrer_user_id: UUID,
        purchaser_user_id: UUID,
        attribution_type: str,
        amount_cents: int = 0,
        currency: str = "usd",
        external_transaction_id: str | None = None,
        created_at: datetime | None = None,
    ) -> Attribution:
        with self._transaction():
            return self._attributions.record_attribution(
                referrer_user_id,
                purchaser_user_id,
                attribution_type,
                amount_cents=amount_cents,
                currency=currency,
                external_transaction_id=external_transaction_id,
                created_at=created_at,
            )

    def mark_paid_via_external_transfer(
        self,
        ledger_entry_id: UUID,
        external_refs: dict[str, Any] | None = None,
        paid_by_user_id: UUID | None = None,
    ) -> LedgerEntry:
        with self._transaction():
            return self._entries.mark_paid_via_external_transfer(
                ledger_entry_id, external_refs, paid_by_user_id
            )

    def handle_external_transfer(
        self,
        ledger_entry_ids: Sequence[UUID],
        external_refs: dict[str, Any] | None = None,
        paid_by_user_id: UUID | None = None,
    ) -> list[LedgerEntry]:
        """Apply a payment-processor notification to every listed entry.

        Replays are harmless: entries already paid are logged and skipped.
        """
        with self._transaction():
            return [
                self._entries.mark_paid_via_external_transfer(ledger_entry_id, external_refs, paid_by_user_id)
                for ledger_entry_id in dict.fromkeys(ledger_entry_ids)
            ]

    def mark_batch_transfer_processing(self, payout_batch_id: UUID) -> PayoutBatch:
        with self._transaction():
            return self._batches.mark_transfer_processing(payout_batch_id)

    def mark_batch_transfer_paid(self, payout_batch_id: UUID, external_transfer_id: str) -> PayoutBatch:
        with self._transaction():
            return self._batches.mark_transfer_paid(payout_batch_id, external_transfer_id)

    def mark_batch_transfer_failed(self, payout_batch_id: UUID, error_message: str) -> PayoutBatch:
        with self._transaction():
            return self._batches.mark_transfer_failed(payout_batch_id, error_message)

    # =========================================================================
    # Read views
    # =========================================================================

    def get_my_ledger(
        self,
        caller: Caller,
        period_type: str | None = None,
        status: str | None = None,
        cursor: int | None = None,
        limit: int | None = None,
    ) -> Page[LedgerEntry]:
        return self._queries.get_my_ledger(caller, period_type, status, cursor, limit)

    def get_ledger_for_referrer(
        self,
        caller: Caller,
        referrer_user_id: UUID,
        period_type: str | None = None,
        status: str | None = None,
        cursor: int | None = None,
        limit: int | None = None,
    ) -> Page[LedgerEntry]:
        return self._queries.get_ledger_for_referrer(
            caller, referrer_user_id, period_type, status, cursor, limit
        )

    def list_affiliate_referrers(self, caller: Caller, limit: int | None = None) -> list[ReferrerSummary]:
        return self._queries.list_affiliate_referrers(caller, limit)

    def list_payout_batches(
        self,
        caller: Caller,
        status: str | None = None,
        cursor: int | None = None,
        limit: int | None = None,
    ) -> Page[PayoutBatch]:
        return self._queries.list_payout_batches(caller, status, cursor, limit)

    def get_payout_batch(self, caller: Caller, payout_batch_id: UUID) -> BatchDetail:
        return self._queries.get_payout_batch(caller, payout_batch_id)

    def list_payout_batches_for_referrer(
        self,
        caller: Caller,
        referrer_user_id: UUID,
        status: str | None = None,
        cursor: int | None = None,
        limit: int | None = None,
    ) -> Page[PayoutBatch]:
        return self._queries.list_payout_batches_for_referrer(
            caller, referrer_user_id, status, cursor, limit
        )

    def get_my_payout_requests(
        self,
        caller: Caller,
        cursor: int | None = None,
        limit: int | None = None,
    ) -> Page[PayoutRequest]:
        return self._queries.get_my_payout_requests(caller, cursor, limit)

    def get_my_payout_request(self, caller: Caller, payout_request_id: UUID) -> RequestDetail:
        return self._queries.get_my_payout_request(caller, payout_request_id)

    def list_payout_requests_admin(
        self,
        caller: Caller,
        status: str | None = None,
        cursor: int | None = None,
        limit: int | None = None,
    ) -> Page[PayoutRequest]:
        return self._queries.list_payout_requests_admin(caller, status, cursor, limit)

    def get_payout_request_admin(self, caller: Caller, payout_request_id: UUID) -> RequestEligibility:
        return self._requests.get_request_with_eligibility(caller, payout_request_id)

    def list_my_attributions(
        self,
        caller: Caller,
        cursor: int | None = None,
        limit: int | None = None,
    ) -> Page[Attribution]:
        return self._queries.list_my_attributions(caller, cursor, limit)

    def get_my_attribution_summary(self, caller: Caller) -> AttributionSummary:
        return self._attributions.summarize(caller)

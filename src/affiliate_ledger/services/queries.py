"""Cursor-paginated read views over entries, batches, requests and attributions.

Pages are newest-first. The cursor is the last returned row's sort key
(``period_start`` for ledger entries, ``created_at`` for everything else)
encoded as epoch microseconds; the next page holds rows strictly older than
it, so a full page also carries every row tied with its last sort key.
A page shorter than the limit carries no next cursor.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy import func, select

from affiliate_ledger.auth import Caller, require_admin
from affiliate_ledger.errors import AccessDeniedError, NotFoundError, ValidationError
from affiliate_ledger.models import Attribution, LedgerEntry, PayoutBatch, PayoutRequest
from affiliate_ledger.periods import from_cursor, to_cursor
from affiliate_ledger.services.entries import load_entries

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from sqlalchemy.sql import Select

T = TypeVar("T")

LEDGER_PAGE_SIZE = 50
ATTRIBUTION_PAGE_SIZE = 50
BATCH_PAGE_SIZE = 20
REQUEST_PAGE_SIZE = 20
MAX_PAGE_SIZE = 200


@dataclass
class Page(Generic[T]):
    """One page of rows plus the cursor for the next page, if any."""

    rows: list[T]
    next_cursor: int | None = None


@dataclass
class BatchDetail:
    batch: PayoutBatch
    entries: list[LedgerEntry] = field(default_factory=list)


@dataclass
class RequestDetail:
    request: PayoutRequest
    entries: list[LedgerEntry] = field(default_factory=list)


@dataclass(frozen=True)
class ReferrerSummary:
    referrer_user_id: UUID
    ledger_entry_count: int
    latest_period_start: datetime


def clamp_limit(limit: int | None, default: int) -> int:
    if limit is None:
        return default
    return max(1, min(int(limit), MAX_PAGE_SIZE))


def paginate(
    session: Session,
    stmt: Select,
    sort_column: Any,
    tiebreak_column: Any,
    cursor: int | None,
    limit: int,
) -> Page:
    """Apply the newest-first cursor contract to ``stmt``.

    A full page is extended with every remaining row that shares the last
    row's sort key, since the next page starts strictly below that key.
    """
    if cursor is not None:
        if cursor < 0:
            raise ValidationError("Cursor must be non-negative")
        stmt = stmt.where(sort_column < from_cursor(cursor))
    page_stmt = stmt.order_by(sort_column.desc(), tiebreak_column).limit(limit)
    rows = list(session.scalars(page_stmt))
    next_cursor = None
    if len(rows) == limit:
        last_key = getattr(rows[-1], sort_column.key)
        tied = session.scalars(stmt.where(sort_column == last_key).order_by(tiebreak_column))
        rows.extend([row for row in tied if row not in rows])
        next_cursor = to_cursor(last_key)
    return Page(rows=rows, next_cursor=next_cursor)


class LedgerQueries:
    """Read-only views. Nothing here writes or locks rows."""

    def __init__(self, session: Session):
        self.session = session

    # -- ledger entries ----------------------------------------------------

    def get_my_ledger(
        self,
        caller: Caller,
        period_type: str | None = None,
        status: str | None = None,
        cursor: int | None = None,
        limit: int | None = None,
    ) -> Page[LedgerEntry]:
        return self._ledger_page(caller.user_id, period_type, status, cursor, limit)

    def get_ledger_for_referrer(
        self,
        caller: Caller,
        referrer_user_id: UUID,
        period_type: str | None = None,
        status: str | None = None,
        cursor: int | None = None,
        limit: int | None = None,
    ) -> Page[LedgerEntry]:
        require_admin(caller)
        return self._ledger_page(referrer_user_id, period_type, status, cursor, limit)

    def _ledger_page(self, referrer_user_id, period_type, status, cursor, limit) -> Page[LedgerEntry]:
        stmt = select(LedgerEntry).where(LedgerEntry.referrer_user_id == referrer_user_id)
        if period_type:
            stmt = stmt.where(LedgerEntry.period_type == period_type)
        if status:
            stmt = stmt.where(LedgerEntry.status == status)
        return paginate(
            self.session,
            stmt,
            LedgerEntry.period_start,
            LedgerEntry.period_type,
            cursor,
            clamp_limit(limit, LEDGER_PAGE_SIZE),
        )

    def list_affiliate_referrers(self, caller: Caller, limit: int | None = None) -> list[ReferrerSummary]:
        """Referrers that have at least one ledger entry, most recently active first."""
        require_admin(caller)
        latest = func.max(LedgerEntry.period_start)
        stmt = (
            select(LedgerEntry.referrer_user_id, func.count(), latest)
            .group_by(LedgerEntry.referrer_user_id)
            .order_by(latest.desc())
            .limit(clamp_limit(limit, LEDGER_PAGE_SIZE))
        )
        return [
            ReferrerSummary(referrer_user_id=row[0], ledger_entry_count=row[1], latest_period_start=row[2])
            for row in self.session.execute(stmt)
        ]

    # -- payout batches ----------------------------------------------------

    def list_payout_batches(
        self,
        caller: Caller,
        status: str | None = None,
        cursor: int | None = None,
        limit: int | None = None,
    ) -> Page[PayoutBatch]:
        require_admin(caller)
        stmt = select(PayoutBatch)
        if status:
            stmt = stmt.where(PayoutBatch.status == status)
        return self._batch_page(stmt, cursor, limit)

    def list_payout_batches_for_referrer(
        self,
        caller: Caller,
        referrer_user_id: UUID,
        status: str | None = None,
        cursor: int | None = None,
        limit: int | None = None,
    ) -> Page[PayoutBatch]:
        """Batches currently referenced by any of the referrer's entries."""
        require_admin(caller)
        member_batches = (
            select(LedgerEntry.payout_batch_id)
            .where(
                LedgerEntry.referrer_user_id == referrer_user_id,
                LedgerEntry.payout_batch_id.is_not(None),
            )
            .distinct()
        )
        stmt = select(PayoutBatch).where(PayoutBatch.payout_batch_id.in_(member_batches))
        if status:
            stmt = stmt.where(PayoutBatch.status == status)
        return self._batch_page(stmt, cursor, limit)

    def _batch_page(self, stmt: Select, cursor: int | None, limit: int | None) -> Page[PayoutBatch]:
        return paginate(
            self.session,
            stmt,
            PayoutBatch.created_at,
            PayoutBatch.payout_batch_id,
            cursor,
            clamp_limit(limit, BATCH_PAGE_SIZE),
        )

    def get_payout_batch(self, caller: Caller, payout_batch_id: UUID) -> BatchDetail:
        require_admin(caller)
        batch = self.session.get(PayoutBatch, payout_batch_id)
        if batch is None:
            raise NotFoundError("Payout batch", payout_batch_id)
        return BatchDetail(batch=batch, entries=self._members(batch.ledger_ids))

    # -- payout requests ---------------------------------------------------

    def get_my_payout_requests(
        self,
        caller: Caller,
        cursor: int | None = None,
        limit: int | None = None,
    ) -> Page[PayoutRequest]:
        stmt = select(PayoutRequest).where(PayoutRequest.referrer_user_id == caller.user_id)
        return self._request_page(stmt, cursor, limit)

    def get_my_payout_request(self, caller: Caller, payout_request_id: UUID) -> RequestDetail:
        request = self.session.get(PayoutRequest, payout_request_id)
        if request is None:
            raise NotFoundError("Payout request", payout_request_id)
        if not caller.owns(request.referrer_user_id):
            raise AccessDeniedError()
        return RequestDetail(request=request, entries=self._members(request.ledger_ids))

    def list_payout_requests_admin(
        self,
        caller: Caller,
        status: str | None = None,
        cursor: int | None = None,
        limit: int | None = None,
    ) -> Page[PayoutRequest]:
        require_admin(caller)
        stmt = select(PayoutRequest)
        if status:
            stmt = stmt.where(PayoutRequest.status == status)
        return self._request_page(stmt, cursor, limit)

    def _request_page(self, stmt: Select, cursor: int | None, limit: int | None) -> Page[PayoutRequest]:
        return paginate(
            self.session,
            stmt,
            PayoutRequest.created_at,
            PayoutRequest.payout_request_id,
            cursor,
            clamp_limit(limit, REQUEST_PAGE_SIZE),
        )

    # -- attributions ------------------------------------------------------

    def list_my_attributions(
        self,
        caller: Caller,
        cursor: int | None = None,
        limit: int | None = None,
    ) -> Page[Attribution]:
        stmt = select(Attribution).where(Attribution.referrer_user_id == caller.user_id)
        return paginate(
            self.session,
            stmt,
            Attribution.created_at,
            Attribution.attribution_id,
            cursor,
            clamp_limit(limit, ATTRIBUTION_PAGE_SIZE),
        )

    def _members(self, ledger_entry_ids: list[UUID]) -> list[LedgerEntry]:
        entries = load_entries(self.session, ledger_entry_ids)
        return [entries[i] for i in ledger_entry_ids if i in entries]

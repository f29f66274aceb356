"""Ledger aggregation: attributions in, one open statement per period out."""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Callable
from uuid import UUID, uuid4

from sqlalchemy import func, insert, select
from sqlalchemy.dialects import postgresql, sqlite

from affiliate_ledger.auth import Caller, require_owner_or_admin
from affiliate_ledger.events import EventEmitter, EventMetadata, LedgerEntryRecomputed
from affiliate_ledger.models import REVENUE_ATTRIBUTION_TYPES, Attribution, LedgerEntry
from affiliate_ledger.periods import PeriodType, period_bounds, utcnow
from affiliate_ledger.services.entries import apply_transition
from affiliate_ledger.services.state_machine import LedgerStateMachine, LedgerStatus
from affiliate_ledger.transitions import Recompute

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

NATURAL_KEY = ["referrer_user_id", "period_type", "period_start"]


def compute_commission(revenue_cents: int, rate: Decimal) -> int:
    """Commission in minor units, rounded half-up to the nearest unit."""
    raw = Decimal(revenue_cents) * Decimal(rate)
    return int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class LedgerAggregator:
    """Computes and refreshes ledger entries from attributions.

    Key invariants:
    1. One entry per (referrer, period type, period start), enforced by a
       unique constraint and an insert that ignores conflicts
    2. Open entries are recomputed in place on every call
    3. Locked and paid entries are returned untouched
    """

    def __init__(
        self,
        session: Session,
        commission_rate: Decimal,
        clock: Callable[[], datetime] = utcnow,
        emitter: EventEmitter | None = None,
    ):
        self.session = session
        self.commission_rate = Decimal(commission_rate)
        self.clock = clock
        self.emitter = emitter or EventEmitter()

    def upsert_ledger(
        self,
        caller: Caller,
        referrer_user_id: UUID,
        period_type: PeriodType | str,
        anchor: datetime,
    ) -> LedgerEntry:
        """Create or refresh the entry for the period containing ``anchor``."""
        require_owner_or_admin(caller, referrer_user_id)
        period_type = PeriodType(period_type)
        period_start, period_end = period_bounds(period_type, anchor)

        existing = self._find(referrer_user_id, period_type, period_start)
        if existing is not None and LedgerStateMachine.is_frozen(existing.status):
            logger.debug(
                "Ledger entry %s is %s; returning frozen statement",
                existing.ledger_entry_id,
                existing.status,
            )
            return existing

        revenue_cents = self.sum_revenue(referrer_user_id, period_start, period_end)
        commission_cents = compute_commission(revenue_cents, self.commission_rate)
        now = self.clock()

        created = False
        if existing is None:
            created = self._insert_if_absent(
                referrer_user_id=referrer_user_id,
                period_type=period_type.value,
                period_start=period_start,
                period_end=period_end,
                revenue_cents=revenue_cents,
                commission_cents=commission_cents,
                now=now,
            )
            existing = self._find(referrer_user_id, period_type, period_start)
            if existing is None:
                raise RuntimeError("ledger entry vanished after insert")

        if not created:
            if not LedgerStateMachine.can_recompute(existing.status):
                return existing
            updated = apply_transition(
                self.session,
                existing,
                Recompute(
                    attributed_revenue_cents=revenue_cents,
                    commission_rate=self.commission_rate,
                    commission_cents=commission_cents,
                    updated_at=now,
                ),
                LedgerEntry.status == LedgerStatus.OPEN.value,
            )
            if not updated:
                # Locked between our read and our write.
                return existing

        self.emitter.emit(
            LedgerEntryRecomputed(
                metadata=EventMetadata.create(
                    actor_id=caller.user_id,
                    actor_type="admin" if caller.is_admin else "referrer",
                    timestamp=now,
                ),
                ledger_entry_id=existing.ledger_entry_id,
                referrer_user_id=referrer_user_id,
                period_type=period_type.value,
                period_start=period_start,
                attributed_revenue_cents=revenue_cents,
                commission_cents=commission_cents,
                created=created,
            )
        )
        return existing

    def sum_revenue(self, referrer_user_id: UUID, start: datetime, end: datetime) -> int:
        """Sum revenue-bearing attribution amounts in [start, end)."""
        total = self.session.scalar(
            select(func.coalesce(func.sum(Attribution.amount_cents), 0)).where(
                Attribution.referrer_user_id == referrer_user_id,
                Attribution.attribution_type.in_(REVENUE_ATTRIBUTION_TYPES),
                Attribution.created_at >= start,
                Attribution.created_at < end,
            )
        )
        return int(total or 0)

    def _find(
        self,
        referrer_user_id: UUID,
        period_type: PeriodType,
        period_start: datetime,
    ) -> LedgerEntry | None:
        stmt = (
            select(LedgerEntry)
            .where(
                LedgerEntry.referrer_user_id == referrer_user_id,
                LedgerEntry.period_type == period_type.value,
                LedgerEntry.period_start == period_start,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.session.scalars(stmt).one_or_none()

    def _insert_if_absent(
        self,
        *,
        referrer_user_id: UUID,
        period_type: str,
        period_start: datetime,
        period_end: datetime,
        revenue_cents: int,
        commission_cents: int,
        now: datetime,
    ) -> bool:
        """Insert a new open entry; returns False if the natural key already exists."""
        values = {
            "ledger_entry_id": uuid4(),
            "referrer_user_id": referrer_user_id,
            "period_type": period_type,
            "period_start": period_start,
            "period_end": period_end,
            "attributed_revenue_cents": revenue_cents,
            "commission_rate": self.commission_rate,
            "commission_cents": commission_cents,
            "status": LedgerStatus.OPEN.value,
            "created_at": now,
        }
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = (
                postgresql.insert(LedgerEntry)
                .values(**values)
                .on_conflict_do_nothing(index_elements=NATURAL_KEY)
            )
        elif dialect == "sqlite":
            stmt = (
                sqlite.insert(LedgerEntry)
                .values(**values)
                .on_conflict_do_nothing(index_elements=NATURAL_KEY)
            )
        else:
            stmt = insert(LedgerEntry).values(**values)

        result = self.session.execute(stmt)
        return (result.rowcount or 0) == 1

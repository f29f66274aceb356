"""Attribution intake from the revenue pipeline and referrer summaries."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Callable
from uuid import UUID, uuid4

from sqlalchemy import case, func, insert, select
from sqlalchemy.dialects import postgresql, sqlite

from affiliate_ledger.auth import Caller, require_owner_or_admin
from affiliate_ledger.errors import ValidationError
from affiliate_ledger.models import ATTRIBUTION_TYPES, REVENUE_ATTRIBUTION_TYPES, Attribution
from affiliate_ledger.periods import ensure_utc, utcnow
from affiliate_ledger.services.aggregator import compute_commission

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

EXTERNAL_KEY = ["attribution_type", "external_transaction_id"]


@dataclass(frozen=True)
class AttributionSummary:
    """Rolling revenue and commission figures for one referrer."""

    referrer_user_id: UUID
    commission_rate: Decimal
    lifetime_revenue_cents: int
    last_30d_revenue_cents: int
    last_7d_revenue_cents: int
    total_attributed_invoices: int
    total_referred_users: int

    @property
    def lifetime_commission_cents(self) -> int:
        return compute_commission(self.lifetime_revenue_cents, self.commission_rate)

    @property
    def last_30d_commission_cents(self) -> int:
        return compute_commission(self.last_30d_revenue_cents, self.commission_rate)

    @property
    def last_7d_commission_cents(self) -> int:
        return compute_commission(self.last_7d_revenue_cents, self.commission_rate)


class AttributionService:
    """Appends attributions and summarizes them per referrer.

    Attributions are never updated or deleted. A repeated delivery of the
    same external transaction returns the row recorded the first time.
    """

    def __init__(
        self,
        session: Session,
        commission_rate: Decimal,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.commission_rate = Decimal(commission_rate)
        self.clock = clock

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
        if attribution_type not in ATTRIBUTION_TYPES:
            raise ValidationError(f"Unknown attribution type '{attribution_type}'")
        if amount_cents < 0:
            raise ValidationError("Attribution amount cannot be negative")
        currency = (currency or "").strip().lower()
        if len(currency) != 3:
            raise ValidationError(f"Invalid currency code '{currency}'")

        if external_transaction_id is not None:
            existing = self._find_external(attribution_type, external_transaction_id)
            if existing is not None:
                logger.info(
                    "Attribution for %s %s already recorded; ignoring replay",
                    attribution_type,
                    external_transaction_id,
                )
                return existing

        attribution_id = uuid4()
        values = {
            "attribution_id": attribution_id,
            "referrer_user_id": referrer_user_id,
            "purchaser_user_id": purchaser_user_id,
            "attribution_type": attribution_type,
            "amount_cents": amount_cents,
            "currency": currency,
            "external_transaction_id": external_transaction_id,
            "created_at": ensure_utc(created_at) if created_at else self.clock(),
        }
        dialect = self.session.get_bind().dialect.name
        if external_transaction_id is not None and dialect == "postgresql":
            stmt = postgresql.insert(Attribution).values(**values).on_conflict_do_nothing(index_elements=EXTERNAL_KEY)
        elif external_transaction_id is not None and dialect == "sqlite":
            stmt = sqlite.insert(Attribution).values(**values).on_conflict_do_nothing(index_elements=EXTERNAL_KEY)
        else:
            stmt = insert(Attribution).values(**values)
        result = self.session.execute(stmt)

        if (result.rowcount or 0) != 1:
            # Lost a race with a concurrent delivery of the same transaction.
            return self._find_external(attribution_type, external_transaction_id)

        logger.debug("Recorded %s attribution %s for %s", attribution_type, attribution_id, referrer_user_id)
        return self.session.get(Attribution, attribution_id)

    def summarize(self, caller: Caller, referrer_user_id: UUID | None = None) -> AttributionSummary:
        """Lifetime, 30-day and 7-day revenue for a referrer (default: the caller)."""
        referrer_user_id = referrer_user_id or caller.user_id
        require_owner_or_admin(caller, referrer_user_id)

        now = self.clock()
        since_30d = now - timedelta(days=30)
        since_7d = now - timedelta(days=7)
        is_revenue = Attribution.attribution_type.in_(REVENUE_ATTRIBUTION_TYPES)

        def revenue_since(since: datetime):
            return func.coalesce(
                func.sum(
                    case(
                        (is_revenue & (Attribution.created_at >= since), Attribution.amount_cents),
                        else_=0,
                    )
                ),
                0,
            )

        row = self.session.execute(
            select(
                func.coalesce(func.sum(case((is_revenue, Attribution.amount_cents), else_=0)), 0),
                revenue_since(since_30d),
                revenue_since(since_7d),
                func.count(case((is_revenue, Attribution.attribution_id))),
                func.count(func.distinct(Attribution.purchaser_user_id)),
            ).where(Attribution.referrer_user_id == referrer_user_id)
        ).one()

        return AttributionSummary(
            referrer_user_id=referrer_user_id,
            commission_rate=self.commission_rate,
            lifetime_revenue_cents=int(row[0]),
            last_30d_revenue_cents=int(row[1]),
            last_7d_revenue_cents=int(row[2]),
            total_attributed_invoices=int(row[3]),
            total_referred_users=int(row[4]),
        )

    def _find_external(self, attribution_type: str, external_transaction_id: str) -> Attribution | None:
        return self.session.scalars(
            select(Attribution).where(
                Attribution.attribution_type == attribution_type,
                Attribution.external_transaction_id == external_transaction_id,
            )
        ).one_or_none()

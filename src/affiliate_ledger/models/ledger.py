"""Commission ledger, payout batch and payout request models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from affiliate_ledger.models.base import Base, TimestampMixin


class LedgerEntry(Base, TimestampMixin):
    """Periodic commission statement for one referrer and one period.

    Natural key is (referrer_user_id, period_type, period_start). Totals are
    recomputable while open and frozen once locked or paid.
    """

    __tablename__ = "affiliate_ledger_entry"

    ledger_entry_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    referrer_user_id: Mapped[UUID] = mapped_column(nullable=False)
    period_type: Mapped[str] = mapped_column(String(16), nullable=False)
    period_start: Mapped[datetime] = mapped_column(nullable=False)
    period_end: Mapped[datetime] = mapped_column(nullable=False)
    attributed_revenue_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    commission_rate: Mapped[Decimal] = mapped_column(Numeric(7, 4), nullable=False)
    commission_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open")
    locked_at: Mapped[datetime | None] = mapped_column(nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    payment_method: Mapped[str | None] = mapped_column(Text, nullable=True)
    paid_by_user_id: Mapped[UUID | None] = mapped_column(nullable=True)
    external_refs_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    payout_batch_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("affiliate_payout_batch.payout_batch_id"),
        nullable=True,
    )
    payout_request_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("affiliate_payout_request.payout_request_id"),
        nullable=True,
    )
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "referrer_user_id",
            "period_type",
            "period_start",
            name="affiliate_ledger_entry_period_uq",
        ),
        CheckConstraint(
            "period_type IN ('monthly', 'weekly')",
            name="affiliate_ledger_entry_period_type_ck",
        ),
        CheckConstraint(
            "status IN ('open', 'locked', 'paid')",
            name="affiliate_ledger_entry_status_ck",
        ),
        CheckConstraint(
            "payout_batch_id IS NULL OR payout_request_id IS NULL",
            name="affiliate_ledger_entry_single_claim_ck",
        ),
        CheckConstraint("period_end > period_start", name="affiliate_ledger_entry_period_ck"),
        Index("affiliate_ledger_entry_by_referrer", "referrer_user_id", "period_start"),
    )


class PayoutBatch(Base, TimestampMixin):
    """Administrator-created group of ledger entries paid together.

    total_commission_cents is a snapshot taken at creation time.
    """

    __tablename__ = "affiliate_payout_batch"

    payout_batch_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    created_by_user_id: Mapped[UUID] = mapped_column(nullable=False)
    method: Mapped[str] = mapped_column(Text, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_commission_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    ledger_ids_json: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="recorded")
    voided_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # External transfer sub-state, driven by the payment processor.
    payout_status: Mapped[str | None] = mapped_column(String(16), nullable=True)
    external_transfer_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    payout_error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    processing_at: Mapped[datetime | None] = mapped_column(nullable=True)
    transfer_paid_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('recorded', 'voided')",
            name="affiliate_payout_batch_status_ck",
        ),
        CheckConstraint(
            "payout_status IS NULL OR payout_status IN ('recorded', 'processing', 'paid', 'failed')",
            name="affiliate_payout_batch_payout_status_ck",
        ),
        CheckConstraint("total_commission_cents >= 0", name="affiliate_payout_batch_total_ck"),
        Index("affiliate_payout_batch_by_created", "created_at"),
    )

    @property
    def ledger_ids(self) -> list[UUID]:
        return [UUID(value) for value in self.ledger_ids_json]


class PayoutRequest(Base, TimestampMixin):
    """Referrer-initiated request to cash out locked ledger entries."""

    __tablename__ = "affiliate_payout_request"

    payout_request_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    referrer_user_id: Mapped[UUID] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="submitted")
    ledger_ids_json: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    total_commission_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_revenue_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    denied_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    payout_batch_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("affiliate_payout_batch.payout_batch_id"),
        nullable=True,
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('submitted', 'approved', 'denied', 'cancelled', 'completed')",
            name="affiliate_payout_request_status_ck",
        ),
        Index("affiliate_payout_request_by_referrer", "referrer_user_id", "created_at"),
        Index("affiliate_payout_request_by_status", "status", "created_at"),
    )

    @property
    def ledger_ids(self) -> list[UUID]:
        return [UUID(value) for value in self.ledger_ids_json]

"""Revenue attribution records."""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import BigInteger, CheckConstraint, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from affiliate_ledger.models.base import Base, TimestampMixin

# Attribution kinds that carry monetary value toward commission.
REVENUE_ATTRIBUTION_TYPES = ("invoice_paid",)
ATTRIBUTION_TYPES = ("invoice_paid", "subscription_created")


class Attribution(Base, TimestampMixin):
    """Append-only link between a referrer and a purchaser's monetized event.

    Written by the revenue pipeline, never updated or deleted.
    """

    __tablename__ = "affiliate_attribution"

    attribution_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    referrer_user_id: Mapped[UUID] = mapped_column(nullable=False)
    purchaser_user_id: Mapped[UUID] = mapped_column(nullable=False)
    attribution_type: Mapped[str] = mapped_column(String(32), nullable=False)
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    external_transaction_id: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "attribution_type IN ('invoice_paid', 'subscription_created')",
            name="affiliate_attribution_type_ck",
        ),
        CheckConstraint("amount_cents >= 0", name="affiliate_attribution_amount_ck"),
        Index("affiliate_attribution_by_referrer", "referrer_user_id", "created_at"),
        Index(
            "affiliate_attribution_external_uq",
            "attribution_type",
            "external_transaction_id",
            unique=True,
        ),
    )

    def __repr__(self) -> str:
        return (
            f"Attribution({self.attribution_id}, referrer={self.referrer_user_id}, "
            f"{self.attribution_type}, {self.amount_cents})"
        )


__all__ = ["Attribution", "ATTRIBUTION_TYPES", "REVENUE_ATTRIBUTION_TYPES"]

"""ORM models for the affiliate commission ledger."""

from affiliate_ledger.models.attribution import (
    ATTRIBUTION_TYPES,
    REVENUE_ATTRIBUTION_TYPES,
    Attribution,
)
from affiliate_ledger.models.base import Base, TimestampMixin, UTCDateTime
from affiliate_ledger.models.ledger import LedgerEntry, PayoutBatch, PayoutRequest

__all__ = [
    "ATTRIBUTION_TYPES",
    "REVENUE_ATTRIBUTION_TYPES",
    "Attribution",
    "Base",
    "LedgerEntry",
    "PayoutBatch",
    "PayoutRequest",
    "TimestampMixin",
    "UTCDateTime",
]

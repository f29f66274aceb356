"""Domain event types for commission ledger operations.

All events are immutable, carry traceable metadata and serialize to plain
JSON-compatible dicts.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class EventCategory(str, Enum):
    """Event categories for routing and filtering."""

    LEDGER = "ledger"
    BATCH = "batch"
    REQUEST = "request"


@dataclass(frozen=True)
class EventMetadata:
    """Metadata attached to every domain event."""

    event_id: UUID
    timestamp: datetime
    correlation_id: UUID
    actor_id: UUID | None
    actor_type: str  # 'referrer', 'admin', 'webhook', 'system'
    source_service: str = "affiliate_ledger"
    version: int = 1

    @classmethod
    def create(
        cls,
        correlation_id: UUID | None = None,
        actor_id: UUID | None = None,
        actor_type: str = "system",
        timestamp: datetime | None = None,
    ) -> EventMetadata:
        """Create metadata with auto-generated fields."""
        return cls(
            event_id=uuid4(),
            timestamp=timestamp or datetime.now(timezone.utc),
            correlation_id=correlation_id or uuid4(),
            actor_id=actor_id,
            actor_type=actor_type,
        )


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    metadata: EventMetadata

    @property
    def event_type(self) -> str:
        """Event type name for routing."""
        return self.__class__.__name__

    @property
    def category(self) -> EventCategory:
        """Event category for filtering."""
        raise NotImplementedError("Subclasses must define category")

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to dictionary."""
        data = _serialize(asdict(self))
        data["event_type"] = self.event_type
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


def _serialize(obj: Any) -> Any:
    """Recursively serialize objects for JSON compatibility."""
    if isinstance(obj, dict):
        return {k: _serialize(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [_serialize(v) for v in obj]
    elif isinstance(obj, UUID):
        return str(obj)
    elif isinstance(obj, (datetime, date)):
        return obj.isoformat()
    elif isinstance(obj, Decimal):
        return str(obj)
    elif isinstance(obj, Enum):
        return obj.value
    return obj


# =============================================================================
# Ledger Events
# =============================================================================


@dataclass(frozen=True)
class LedgerEntryRecomputed(DomainEvent):
    """An open entry was created or refreshed from attributions."""

    ledger_entry_id: UUID
    referrer_user_id: UUID
    period_type: str
    period_start: datetime
    attributed_revenue_cents: int
    commission_cents: int
    created: bool

    @property
    def category(self) -> EventCategory:
        return EventCategory.LEDGER


@dataclass(frozen=True)
class LedgerEntryLocked(DomainEvent):
    """An entry was frozen into a statement."""

    ledger_entry_id: UUID
    referrer_user_id: UUID
    commission_cents: int

    @property
    def category(self) -> EventCategory:
        return EventCategory.LEDGER


@dataclass(frozen=True)
class LedgerEntryPaid(DomainEvent):
    """An entry moved to paid."""

    ledger_entry_id: UUID
    referrer_user_id: UUID
    commission_cents: int
    channel: str  # 'manual', 'batch', 'external_transfer'
    payout_batch_id: UUID | None = None

    @property
    def category(self) -> EventCategory:
        return EventCategory.LEDGER


@dataclass(frozen=True)
class LedgerEntryUnpaid(DomainEvent):
    """A paid entry was reverted to locked."""

    ledger_entry_id: UUID
    referrer_user_id: UUID
    reason: str  # 'correction', 'batch_voided'

    @property
    def category(self) -> EventCategory:
        return EventCategory.LEDGER


# =============================================================================
# Batch Events
# =============================================================================


@dataclass(frozen=True)
class PayoutBatchCreated(DomainEvent):
    """A batch was recorded and its members marked paid."""

    payout_batch_id: UUID
    ledger_entry_ids: tuple[UUID, ...]
    total_commission_cents: int
    method: str
    payout_request_id: UUID | None = None

    @property
    def category(self) -> EventCategory:
        return EventCategory.BATCH


@dataclass(frozen=True)
class PayoutBatchVoided(DomainEvent):
    """A batch was voided and its members reverted."""

    payout_batch_id: UUID
    reverted_ledger_entry_ids: tuple[UUID, ...]

    @property
    def category(self) -> EventCategory:
        return EventCategory.BATCH


@dataclass(frozen=True)
class PayoutBatchTransferUpdated(DomainEvent):
    """The external transfer status of a batch changed."""

    payout_batch_id: UUID
    previous_status: str | None
    new_status: str
    external_transfer_id: str | None = None

    @property
    def category(self) -> EventCategory:
        return EventCategory.BATCH


# =============================================================================
# Request Events
# =============================================================================


@dataclass(frozen=True)
class PayoutRequestSubmitted(DomainEvent):
    payout_request_id: UUID
    referrer_user_id: UUID
    ledger_entry_ids: tuple[UUID, ...]
    total_commission_cents: int

    @property
    def category(self) -> EventCategory:
        return EventCategory.REQUEST


@dataclass(frozen=True)
class PayoutRequestCancelled(DomainEvent):
    payout_request_id: UUID
    referrer_user_id: UUID

    @property
    def category(self) -> EventCategory:
        return EventCategory.REQUEST


@dataclass(frozen=True)
class PayoutRequestApproved(DomainEvent):
    payout_request_id: UUID
    referrer_user_id: UUID

    @property
    def category(self) -> EventCategory:
        return EventCategory.REQUEST


@dataclass(frozen=True)
class PayoutRequestDenied(DomainEvent):
    payout_request_id: UUID
    referrer_user_id: UUID
    reason: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.REQUEST


@dataclass(frozen=True)
class PayoutRequestCompleted(DomainEvent):
    payout_request_id: UUID
    referrer_user_id: UUID
    payout_batch_id: UUID

    @property
    def category(self) -> EventCategory:
        return EventCategory.REQUEST

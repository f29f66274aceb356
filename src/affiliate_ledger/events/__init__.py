"""Ledger domain events package."""

from affiliate_ledger.events.emitter import EventBatch, EventEmitter
from affiliate_ledger.events.types import (
    DomainEvent,
    EventCategory,
    EventMetadata,
    LedgerEntryLocked,
    LedgerEntryPaid,
    LedgerEntryRecomputed,
    LedgerEntryUnpaid,
    PayoutBatchCreated,
    PayoutBatchTransferUpdated,
    PayoutBatchVoided,
    PayoutRequestApproved,
    PayoutRequestCancelled,
    PayoutRequestCompleted,
    PayoutRequestDenied,
    PayoutRequestSubmitted,
)

__all__ = [
    "DomainEvent",
    "EventBatch",
    "EventCategory",
    "EventEmitter",
    "EventMetadata",
    "LedgerEntryLocked",
    "LedgerEntryPaid",
    "LedgerEntryRecomputed",
    "LedgerEntryUnpaid",
    "PayoutBatchCreated",
    "PayoutBatchTransferUpdated",
    "PayoutBatchVoided",
    "PayoutRequestApproved",
    "PayoutRequestCancelled",
    "PayoutRequestCompleted",
    "PayoutRequestDenied",
    "PayoutRequestSubmitted",
]

"""Affiliate ledger services."""

from affiliate_ledger.services.aggregator import LedgerAggregator, compute_commission
from affiliate_ledger.services.attributions import AttributionService, AttributionSummary
from affiliate_ledger.services.ledger_service import LedgerService
from affiliate_ledger.services.payout_batches import PayoutBatchManager
from affiliate_ledger.services.payout_requests import PayoutRequestManager, RequestEligibility
from affiliate_ledger.services.queries import LedgerQueries, Page
from affiliate_ledger.services.state_machine import (
    BatchStatus,
    LedgerStateMachine,
    LedgerStatus,
    PayoutRequestStateMachine,
    PayoutRequestStatus,
    TransferStateMachine,
    TransferStatus,
)

__all__ = [
    "AttributionService",
    "AttributionSummary",
    "BatchStatus",
    "LedgerAggregator",
    "LedgerQueries",
    "LedgerService",
    "LedgerStateMachine",
    "LedgerStatus",
    "Page",
    "PayoutBatchManager",
    "PayoutRequestManager",
    "PayoutRequestStateMachine",
    "PayoutRequestStatus",
    "RequestEligibility",
    "TransferStateMachine",
    "TransferStatus",
    "compute_commission",
]

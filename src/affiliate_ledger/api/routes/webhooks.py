"""Inbound feeds from the billing pipeline and the payment processor.

These endpoints trust their caller; authenticate them at the edge (signed
payloads or a private network), not here.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, status

from affiliate_ledger.api.dependencies import Ledger
from affiliate_ledger.api.schemas import (
    AttributionCreate,
    AttributionResponse,
    BatchTransferNotification,
    ErrorResponse,
    ExternalTransferNotification,
    LedgerEntryResponse,
    PayoutBatchResponse,
)
from affiliate_ledger.errors import ValidationError

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post(
    "/external-transfers",
    response_model=list[LedgerEntryResponse],
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def handle_external_transfer(
    ledger: Ledger,
    payload: ExternalTransferNotification,
) -> list[LedgerEntryResponse]:
    """Mark entries paid by an external transfer. Replays are no-ops."""
    entries = ledger.handle_external_transfer(
        payload.ledger_entry_ids,
        payload.external_refs,
        payload.paid_by_user_id,
    )
    return [LedgerEntryResponse.model_validate(entry) for entry in entries]


@router.post(
    "/payout-batches/{payout_batch_id}/transfer",
    response_model=PayoutBatchResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def update_batch_transfer(
    ledger: Ledger,
    payout_batch_id: Annotated[UUID, Path()],
    payload: BatchTransferNotification,
) -> PayoutBatchResponse:
    """Advance a batch's external transfer: processing, paid or failed."""
    if payload.status == "processing":
        batch = ledger.mark_batch_transfer_processing(payout_batch_id)
    elif payload.status == "paid":
        if not payload.external_transfer_id:
            raise ValidationError("external_transfer_id is required for a paid transfer")
        batch = ledger.mark_batch_transfer_paid(payout_batch_id, payload.external_transfer_id)
    else:
        batch = ledger.mark_batch_transfer_failed(payout_batch_id, payload.error_message or "")
    return PayoutBatchResponse.model_validate(batch)


@router.post(
    "/attributions",
    response_model=AttributionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
)
def record_attribution(ledger: Ledger, payload: AttributionCreate) -> AttributionResponse:
    """Append a revenue attribution; idempotent on external_transaction_id."""
    attribution = ledger.record_attribution(
        payload.referrer_user_id,
        payload.purchaser_user_id,
        payload.attribution_type,
        amount_cents=payload.amount_cents,
        currency=payload.currency,
        external_transaction_id=payload.external_transaction_id,
        created_at=payload.created_at,
    )
    return AttributionResponse.model_validate(attribution)

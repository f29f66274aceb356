"""Payout batch API endpoints (administrator only)."""

from typing import Annotated, Literal
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from affiliate_ledger.api.dependencies import CurrentCaller, Ledger
from affiliate_ledger.api.schemas import (
    ErrorResponse,
    LedgerEntryResponse,
    NoteRequest,
    PayoutBatchCreate,
    PayoutBatchDetailResponse,
    PayoutBatchPageResponse,
    PayoutBatchResponse,
)

router = APIRouter(prefix="/payout-batches", tags=["payout-batches"])

BatchStatusFilter = Literal["recorded", "voided"]


@router.post(
    "",
    response_model=PayoutBatchResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
def create_payout_batch(
    ledger: Ledger,
    caller: CurrentCaller,
    payload: PayoutBatchCreate,
) -> PayoutBatchResponse:
    """Record a payout batch and mark every member entry paid."""
    batch = ledger.create_payout_batch_and_mark_paid(
        caller, payload.ledger_entry_ids, payload.method, payload.note
    )
    return PayoutBatchResponse.model_validate(batch)


@router.get("", response_model=PayoutBatchPageResponse)
def list_payout_batches(
    ledger: Ledger,
    caller: CurrentCaller,
    status_filter: Annotated[BatchStatusFilter | None, Query(alias="status")] = None,
    cursor: Annotated[int | None, Query(ge=0)] = None,
    limit: Annotated[int | None, Query(ge=1)] = None,
) -> PayoutBatchPageResponse:
    page = ledger.list_payout_batches(caller, status_filter, cursor, limit)
    return PayoutBatchPageResponse(
        rows=[PayoutBatchResponse.model_validate(row) for row in page.rows],
        next_cursor=page.next_cursor,
    )


@router.get("/referrers/{referrer_user_id}", response_model=PayoutBatchPageResponse)
def list_payout_batches_for_referrer(
    ledger: Ledger,
    caller: CurrentCaller,
    referrer_user_id: Annotated[UUID, Path()],
    status_filter: Annotated[BatchStatusFilter | None, Query(alias="status")] = None,
    cursor: Annotated[int | None, Query(ge=0)] = None,
    limit: Annotated[int | None, Query(ge=1)] = None,
) -> PayoutBatchPageResponse:
    page = ledger.list_payout_batches_for_referrer(caller, referrer_user_id, status_filter, cursor, limit)
    return PayoutBatchPageResponse(
        rows=[PayoutBatchResponse.model_validate(row) for row in page.rows],
        next_cursor=page.next_cursor,
    )


@router.get(
    "/{payout_batch_id}",
    response_model=PayoutBatchDetailResponse,
    responses={404: {"model": ErrorResponse}},
)
def get_payout_batch(
    ledger: Ledger,
    caller: CurrentCaller,
    payout_batch_id: Annotated[UUID, Path()],
) -> PayoutBatchDetailResponse:
    detail = ledger.get_payout_batch(caller, payout_batch_id)
    return PayoutBatchDetailResponse(
        batch=PayoutBatchResponse.model_validate(detail.batch),
        ledger_rows=[LedgerEntryResponse.model_validate(entry) for entry in detail.entries],
    )


@router.post(
    "/{payout_batch_id}/void",
    response_model=PayoutBatchResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def void_payout_batch(
    ledger: Ledger,
    caller: CurrentCaller,
    payout_batch_id: Annotated[UUID, Path()],
    payload: NoteRequest | None = None,
) -> PayoutBatchResponse:
    """Void a batch and revert its still-paid members to locked."""
    note = payload.note if payload else None
    batch = ledger.void_payout_batch_and_revert_paid(caller, payout_batch_id, note)
    return PayoutBatchResponse.model_validate(batch)

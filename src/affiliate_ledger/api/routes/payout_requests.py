"""Payout request API endpoints."""

from typing import Annotated, Literal
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from affiliate_ledger.api.dependencies import CurrentCaller, Ledger
from affiliate_ledger.api.schemas import (
    CompleteRequest,
    CompletionResponse,
    DenyRequest,
    ErrorResponse,
    IneligibleEntry,
    LedgerEntryResponse,
    NoteRequest,
    PayoutRequestAdminResponse,
    PayoutRequestCreate,
    PayoutRequestDetailResponse,
    PayoutRequestPageResponse,
    PayoutRequestResponse,
)

router = APIRouter(prefix="/payout-requests", tags=["payout-requests"])

RequestStatusFilter = Literal["submitted", "approved", "denied", "cancelled", "completed"]


# ============================================================================
# Referrer endpoints
# ============================================================================


@router.post(
    "",
    response_model=PayoutRequestResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def create_payout_request(
    ledger: Ledger,
    caller: CurrentCaller,
    payload: PayoutRequestCreate,
) -> PayoutRequestResponse:
    request = ledger.create_payout_request(caller, payload.ledger_entry_ids, payload.note)
    return PayoutRequestResponse.model_validate(request)


@router.get("/mine", response_model=PayoutRequestPageResponse)
def get_my_payout_requests(
    ledger: Ledger,
    caller: CurrentCaller,
    cursor: Annotated[int | None, Query(ge=0)] = None,
    limit: Annotated[int | None, Query(ge=1)] = None,
) -> PayoutRequestPageResponse:
    page = ledger.get_my_payout_requests(caller, cursor, limit)
    return PayoutRequestPageResponse(
        rows=[PayoutRequestResponse.model_validate(row) for row in page.rows],
        next_cursor=page.next_cursor,
    )


@router.get(
    "/mine/{payout_request_id}",
    response_model=PayoutRequestDetailResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def get_my_payout_request(
    ledger: Ledger,
    caller: CurrentCaller,
    payout_request_id: Annotated[UUID, Path()],
) -> PayoutRequestDetailResponse:
    detail = ledger.get_my_payout_request(caller, payout_request_id)
    return PayoutRequestDetailResponse(
        request=PayoutRequestResponse.model_validate(detail.request),
        ledger_rows=[LedgerEntryResponse.model_validate(entry) for entry in detail.entries],
    )


@router.post(
    "/{payout_request_id}/cancel",
    response_model=PayoutRequestResponse,
    responses={403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def cancel_my_payout_request(
    ledger: Ledger,
    caller: CurrentCaller,
    payout_request_id: Annotated[UUID, Path()],
    payload: NoteRequest | None = None,
) -> PayoutRequestResponse:
    note = payload.note if payload else None
    return PayoutRequestResponse.model_validate(
        ledger.cancel_my_payout_request(caller, payout_request_id, note)
    )


# ============================================================================
# Administrator endpoints
# ============================================================================


@router.get("", response_model=PayoutRequestPageResponse)
def list_payout_requests_admin(
    ledger: Ledger,
    caller: CurrentCaller,
    status_filter: Annotated[RequestStatusFilter | None, Query(alias="status")] = None,
    cursor: Annotated[int | None, Query(ge=0)] = None,
    limit: Annotated[int | None, Query(ge=1)] = None,
) -> PayoutRequestPageResponse:
    page = ledger.list_payout_requests_admin(caller, status_filter, cursor, limit)
    return PayoutRequestPageResponse(
        rows=[PayoutRequestResponse.model_validate(row) for row in page.rows],
        next_cursor=page.next_cursor,
    )


@router.get(
    "/{payout_request_id}",
    response_model=PayoutRequestAdminResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def get_payout_request_admin(
    ledger: Ledger,
    caller: CurrentCaller,
    payout_request_id: Annotated[UUID, Path()],
) -> PayoutRequestAdminResponse:
    """Request detail with members that would currently block completion."""
    view = ledger.get_payout_request_admin(caller, payout_request_id)
    return PayoutRequestAdminResponse(
        request=PayoutRequestResponse.model_validate(view.request),
        ledger_rows=[LedgerEntryResponse.model_validate(entry) for entry in view.entries],
        invalid_ledger_ids=view.invalid_ledger_ids,
        ineligible=[
            IneligibleEntry(ledger_entry_id=ledger_entry_id, code=problem.code, detail=problem.message)
            for ledger_entry_id, problem in view.problems.items()
        ],
        can_complete=view.can_complete,
    )


@router.post(
    "/{payout_request_id}/approve",
    response_model=PayoutRequestResponse,
    responses={403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def approve_payout_request(
    ledger: Ledger,
    caller: CurrentCaller,
    payout_request_id: Annotated[UUID, Path()],
    payload: NoteRequest | None = None,
) -> PayoutRequestResponse:
    note = payload.note if payload else None
    return PayoutRequestResponse.model_validate(
        ledger.approve_payout_request(caller, payout_request_id, note)
    )


@router.post(
    "/{payout_request_id}/deny",
    response_model=PayoutRequestResponse,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def deny_payout_request(
    ledger: Ledger,
    caller: CurrentCaller,
    payout_request_id: Annotated[UUID, Path()],
    payload: DenyRequest,
) -> PayoutRequestResponse:
    return PayoutRequestResponse.model_validate(
        ledger.deny_payout_request(caller, payout_request_id, payload.reason)
    )


@router.post(
    "/{payout_request_id}/complete",
    response_model=CompletionResponse,
    responses={403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def complete_payout_request_as_batch(
    ledger: Ledger,
    caller: CurrentCaller,
    payout_request_id: Annotated[UUID, Path()],
    payload: CompleteRequest,
) -> CompletionResponse:
    """Pay the request's members through a new batch."""
    request, batch = ledger.complete_payout_request_as_batch(
        caller, payout_request_id, payload.method, payload.note
    )
    return CompletionResponse(
        payout_request_id=request.payout_request_id,
        payout_batch_id=batch.payout_batch_id,
    )

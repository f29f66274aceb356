"""Ledger entry API endpoints."""

from typing import Annotated, Literal
from uuid import UUID

from fastapi import APIRouter, Path, Query

from affiliate_ledger.api.dependencies import CurrentCaller, Ledger
from affiliate_ledger.api.schemas import (
    ErrorResponse,
    LedgerEntryResponse,
    LedgerPageResponse,
    LedgerUpsertRequest,
    MarkPaidRequest,
    NoteRequest,
    ReferrerSummaryResponse,
)

router = APIRouter(prefix="/ledger", tags=["ledger"])

PeriodTypeFilter = Literal["monthly", "weekly"]
StatusFilter = Literal["open", "locked", "paid"]


@router.get("", response_model=LedgerPageResponse)
def get_my_ledger(
    ledger: Ledger,
    caller: CurrentCaller,
    period_type: PeriodTypeFilter | None = None,
    status_filter: Annotated[StatusFilter | None, Query(alias="status")] = None,
    cursor: Annotated[int | None, Query(ge=0)] = None,
    limit: Annotated[int | None, Query(ge=1)] = None,
) -> LedgerPageResponse:
    """The caller's own entries, newest period first."""
    page = ledger.get_my_ledger(caller, period_type, status_filter, cursor, limit)
    return LedgerPageResponse(
        rows=[LedgerEntryResponse.model_validate(row) for row in page.rows],
        next_cursor=page.next_cursor,
    )


@router.post(
    "/upsert",
    response_model=LedgerEntryResponse,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
def upsert_ledger(
    ledger: Ledger,
    caller: CurrentCaller,
    payload: LedgerUpsertRequest,
) -> LedgerEntryResponse:
    """Create or refresh the entry for a period (current period by default)."""
    if payload.period_start:
        entry = ledger.upsert_ledger_for_period(
            caller,
            payload.period_start,
            payload.period_type,
            payload.referrer_user_id,
        )
    else:
        entry = ledger.upsert_current_period_ledger(caller, payload.period_type, payload.referrer_user_id)
    return LedgerEntryResponse.model_validate(entry)


@router.post(
    "/{ledger_entry_id}/lock",
    response_model=LedgerEntryResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def lock_ledger_period(
    ledger: Ledger,
    caller: CurrentCaller,
    ledger_entry_id: Annotated[UUID, Path()],
    payload: NoteRequest | None = None,
) -> LedgerEntryResponse:
    note = payload.note if payload else None
    return LedgerEntryResponse.model_validate(ledger.lock_ledger_period(caller, ledger_entry_id, note))


@router.post(
    "/{ledger_entry_id}/mark-paid",
    response_model=LedgerEntryResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def mark_ledger_paid(
    ledger: Ledger,
    caller: CurrentCaller,
    ledger_entry_id: Annotated[UUID, Path()],
    payload: MarkPaidRequest | None = None,
) -> LedgerEntryResponse:
    payload = payload or MarkPaidRequest()
    entry = ledger.mark_ledger_paid(caller, ledger_entry_id, payload.method, payload.note)
    return LedgerEntryResponse.model_validate(entry)


@router.post(
    "/{ledger_entry_id}/unmark-paid",
    response_model=LedgerEntryResponse,
    responses={403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def unmark_ledger_paid(
    ledger: Ledger,
    caller: CurrentCaller,
    ledger_entry_id: Annotated[UUID, Path()],
    payload: NoteRequest | None = None,
) -> LedgerEntryResponse:
    note = payload.note if payload else None
    return LedgerEntryResponse.model_validate(ledger.unmark_ledger_paid(caller, ledger_entry_id, note))


# ============================================================================
# Administrator views
# ============================================================================


@router.get("/referrers", response_model=list[ReferrerSummaryResponse])
def list_affiliate_referrers(
    ledger: Ledger,
    caller: CurrentCaller,
    limit: Annotated[int | None, Query(ge=1)] = None,
) -> list[ReferrerSummaryResponse]:
    return [
        ReferrerSummaryResponse.model_validate(row)
        for row in ledger.list_affiliate_referrers(caller, limit)
    ]


@router.get("/referrers/{referrer_user_id}", response_model=LedgerPageResponse)
def get_ledger_for_referrer(
    ledger: Ledger,
    caller: CurrentCaller,
    referrer_user_id: Annotated[UUID, Path()],
    period_type: PeriodTypeFilter | None = None,
    status_filter: Annotated[StatusFilter | None, Query(alias="status")] = None,
    cursor: Annotated[int | None, Query(ge=0)] = None,
    limit: Annotated[int | None, Query(ge=1)] = None,
) -> LedgerPageResponse:
    page = ledger.get_ledger_for_referrer(
        caller, referrer_user_id, period_type, status_filter, cursor, limit
    )
    return LedgerPageResponse(
        rows=[LedgerEntryResponse.model_validate(row) for row in page.rows],
        next_cursor=page.next_cursor,
    )

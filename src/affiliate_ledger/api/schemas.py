"""Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Ledger entry schemas
# ============================================================================


class LedgerUpsertRequest(BaseModel):
    """Refresh a period's entry; omit period_start for the current period."""

    period_start: str | None = None
    period_type: Literal["monthly", "weekly"] | None = None
    referrer_user_id: UUID | None = None


class NoteRequest(BaseModel):
    note: str | None = None


class MarkPaidRequest(BaseModel):
    method: str | None = None
    note: str | None = None


class LedgerEntryResponse(BaseModel):
    """Schema for ledger entry response."""

    model_config = ConfigDict(from_attributes=True)

    ledger_entry_id: UUID
    referrer_user_id: UUID
    period_type: str
    period_start: datetime
    period_end: datetime
    attributed_revenue_cents: int
    commission_rate: Decimal
    commission_cents: int
    status: str
    locked_at: datetime | None = None
    paid_at: datetime | None = None
    payment_method: str | None = None
    paid_by_user_id: UUID | None = None
    external_refs_json: dict[str, Any] | None = None
    notes: str | None = None
    payout_batch_id: UUID | None = None
    payout_request_id: UUID | None = None
    created_at: datetime
    updated_at: datetime | None = None


class LedgerPageResponse(BaseModel):
    rows: list[LedgerEntryResponse]
    next_cursor: int | None = None


class ReferrerSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    referrer_user_id: UUID
    ledger_entry_count: int
    latest_period_start: datetime


# ============================================================================
# Payout batch schemas
# ============================================================================


class PayoutBatchCreate(BaseModel):
    """Schema for recording a payout batch."""

    ledger_entry_ids: list[UUID]
    method: str
    note: str | None = None


class PayoutBatchResponse(BaseModel):
    """Schema for payout batch response."""

    model_config = ConfigDict(from_attributes=True)

    payout_batch_id: UUID
    created_by_user_id: UUID
    created_at: datetime
    method: str
    notes: str | None = None
    total_commission_cents: int
    ledger_ids: list[UUID]
    status: str
    voided_at: datetime | None = None
    payout_status: str | None = None
    external_transfer_id: str | None = None
    payout_error_message: str | None = None


class PayoutBatchDetailResponse(BaseModel):
    batch: PayoutBatchResponse
    ledger_rows: list[LedgerEntryResponse]


class PayoutBatchPageResponse(BaseModel):
    rows: list[PayoutBatchResponse]
    next_cursor: int | None = None


# ============================================================================
# Payout request schemas
# ============================================================================


class PayoutRequestCreate(BaseModel):
    ledger_entry_ids: list[UUID]
    note: str | None = None


class DenyRequest(BaseModel):
    reason: str


class CompleteRequest(BaseModel):
    method: str
    note: str | None = None


class PayoutRequestResponse(BaseModel):
    """Schema for payout request response."""

    model_config = ConfigDict(from_attributes=True)

    payout_request_id: UUID
    referrer_user_id: UUID
    status: str
    ledger_ids: list[UUID]
    total_commission_cents: int
    total_revenue_cents: int
    notes: str | None = None
    admin_notes: str | None = None
    created_at: datetime
    updated_at: datetime
    approved_at: datetime | None = None
    denied_at: datetime | None = None
    cancelled_at: datetime | None = None
    completed_at: datetime | None = None
    payout_batch_id: UUID | None = None


class PayoutRequestDetailResponse(BaseModel):
    request: PayoutRequestResponse
    ledger_rows: list[LedgerEntryResponse]


class IneligibleEntry(BaseModel):
    ledger_entry_id: UUID
    code: str
    detail: str


class PayoutRequestAdminResponse(BaseModel):
    """Request plus members that would currently block completion."""

    request: PayoutRequestResponse
    ledger_rows: list[LedgerEntryResponse]
    invalid_ledger_ids: list[UUID]
    ineligible: list[IneligibleEntry]
    can_complete: bool


class PayoutRequestPageResponse(BaseModel):
    rows: list[PayoutRequestResponse]
    next_cursor: int | None = None


class CompletionResponse(BaseModel):
    payout_request_id: UUID
    payout_batch_id: UUID


# ============================================================================
# Attribution schemas
# ============================================================================


class AttributionCreate(BaseModel):
    """Revenue event delivered by the billing pipeline."""

    referrer_user_id: UUID
    purchaser_user_id: UUID
    attribution_type: str
    amount_cents: int = 0
    currency: str = "usd"
    external_transaction_id: str | None = None
    created_at: datetime | None = None


class AttributionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    attribution_id: UUID
    referrer_user_id: UUID
    purchaser_user_id: UUID
    attribution_type: str
    amount_cents: int
    currency: str
    external_transaction_id: str | None = None
    created_at: datetime


class AttributionPageResponse(BaseModel):
    rows: list[AttributionResponse]
    next_cursor: int | None = None


class AttributionSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    referrer_user_id: UUID
    commission_rate: Decimal
    lifetime_revenue_cents: int
    last_30d_revenue_cents: int
    last_7d_revenue_cents: int
    lifetime_commission_cents: int
    last_30d_commission_cents: int
    last_7d_commission_cents: int
    total_attributed_invoices: int
    total_referred_users: int


# ============================================================================
# Webhook schemas
# ============================================================================


class ExternalTransferNotification(BaseModel):
    """Payment-processor notice that listed entries were paid out."""

    ledger_entry_ids: list[UUID] = Field(min_length=1)
    external_refs: dict[str, str] = Field(default_factory=dict)
    paid_by_user_id: UUID | None = None


class BatchTransferNotification(BaseModel):
    """Payment-processor progress report for a batch transfer."""

    status: Literal["processing", "paid", "failed"]
    external_transfer_id: str | None = None
    error_message: str | None = None


# ============================================================================
# Error schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str

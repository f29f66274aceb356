"""Attribution read endpoints for referrers."""

from typing import Annotated

from fastapi import APIRouter, Query

from affiliate_ledger.api.dependencies import CurrentCaller, Ledger
from affiliate_ledger.api.schemas import (
    AttributionPageResponse,
    AttributionResponse,
    AttributionSummaryResponse,
)

router = APIRouter(prefix="/attributions", tags=["attributions"])


@router.get("", response_model=AttributionPageResponse)
def list_my_attributions(
    ledger: Ledger,
    caller: CurrentCaller,
    cursor: Annotated[int | None, Query(ge=0)] = None,
    limit: Annotated[int | None, Query(ge=1)] = None,
) -> AttributionPageResponse:
    page = ledger.list_my_attributions(caller, cursor, limit)
    return AttributionPageResponse(
        rows=[AttributionResponse.model_validate(row) for row in page.rows],
        next_cursor=page.next_cursor,
    )


@router.get("/summary", response_model=AttributionSummaryResponse)
def get_my_attribution_summary(ledger: Ledger, caller: CurrentCaller) -> AttributionSummaryResponse:
    return AttributionSummaryResponse.model_validate(ledger.get_my_attribution_summary(caller))

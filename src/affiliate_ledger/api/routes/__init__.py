"""API routes."""

from affiliate_ledger.api.routes.attributions import router as attributions_router
from affiliate_ledger.api.routes.health import router as health_router
from affiliate_ledger.api.routes.ledger import router as ledger_router
from affiliate_ledger.api.routes.payout_batches import router as payout_batches_router
from affiliate_ledger.api.routes.payout_requests import router as payout_requests_router
from affiliate_ledger.api.routes.webhooks import router as webhooks_router

__all__ = [
    "attributions_router",
    "health_router",
    "ledger_router",
    "payout_batches_router",
    "payout_requests_router",
    "webhooks_router",
]

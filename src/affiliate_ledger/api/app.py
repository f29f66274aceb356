"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from affiliate_ledger import __version__
from affiliate_ledger.api.routes import (
    attributions_router,
    health_router,
    ledger_router,
    payout_batches_router,
    payout_requests_router,
    webhooks_router,
)
from affiliate_ledger.database import create_schema, init_db
from affiliate_ledger.errors import LedgerError

logger = logging.getLogger(__name__)

# HTTP status per LedgerError.code; unknown codes fall back to 400.
ERROR_STATUS_CODES = {
    "UNAUTHENTICATED": status.HTTP_401_UNAUTHORIZED,
    "ACCESS_DENIED": status.HTTP_403_FORBIDDEN,
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "INVALID_STATE": status.HTTP_409_CONFLICT,
    "ALREADY_BATCHED": status.HTTP_409_CONFLICT,
    "ALREADY_REQUESTED": status.HTTP_409_CONFLICT,
    "TRANSFER_IN_PROGRESS": status.HTTP_409_CONFLICT,
    "EMPTY_SELECTION": status.HTTP_400_BAD_REQUEST,
    "MISSING_REASON": status.HTTP_400_BAD_REQUEST,
    "VALIDATION_ERROR": status.HTTP_400_BAD_REQUEST,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    engine, _ = init_db()
    create_schema(engine)
    yield


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Affiliate Ledger API",
        description="Affiliate commission ledger and payout lifecycle",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
        """Map domain errors to HTTP responses."""
        status_code = ERROR_STATUS_CODES.get(exc.code, status.HTTP_400_BAD_REQUEST)
        logger.info("%s %s rejected: %s (%s)", request.method, request.url.path, exc.message, exc.code)
        return JSONResponse(
            status_code=status_code,
            content={"detail": exc.message, "code": exc.code},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    app.include_router(health_router)
    app.include_router(ledger_router, prefix="/api/v1")
    app.include_router(payout_batches_router, prefix="/api/v1")
    app.include_router(payout_requests_router, prefix="/api/v1")
    app.include_router(attributions_router, prefix="/api/v1")
    app.include_router(webhooks_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()

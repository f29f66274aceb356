"""FastAPI dependencies for dependency injection."""

from collections.abc import Iterator
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from affiliate_ledger.auth import Caller, CallerResolver, HeaderCallerResolver
from affiliate_ledger.config import Settings, get_settings
from affiliate_ledger.database import init_db
from affiliate_ledger.events import EventEmitter
from affiliate_ledger.ledger import AffiliateLedger


def get_db_session() -> Iterator[Session]:
    """Get database session dependency."""
    _, factory = init_db()
    session = factory()
    try:
        yield session
    finally:
        session.close()


def get_app_settings() -> Settings:
    return get_settings()


@lru_cache(maxsize=1)
def get_event_emitter() -> EventEmitter:
    """Process-wide emitter; subscribers register on it at startup."""
    return EventEmitter()


def get_caller_resolver(settings: Annotated[Settings, Depends(get_app_settings)]) -> CallerResolver:
    return HeaderCallerResolver(settings.admin_user_ids)


def get_caller(
    resolver: Annotated[CallerResolver, Depends(get_caller_resolver)],
    x_user_id: Annotated[str | None, Header()] = None,
) -> Caller:
    """Resolve the acting user from the X-User-ID header."""
    return resolver.resolve(x_user_id)


def get_ledger(
    session: Annotated[Session, Depends(get_db_session)],
    settings: Annotated[Settings, Depends(get_app_settings)],
    emitter: Annotated[EventEmitter, Depends(get_event_emitter)],
) -> AffiliateLedger:
    return AffiliateLedger(session, settings, emitter)


# Type aliases for cleaner dependency injection
DbSession = Annotated[Session, Depends(get_db_session)]
CurrentCaller = Annotated[Caller, Depends(get_caller)]
Ledger = Annotated[AffiliateLedger, Depends(get_ledger)]

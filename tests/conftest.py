"""Pytest fixtures for affiliate ledger tests."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session, sessionmaker

from affiliate_ledger.auth import Caller
from affiliate_ledger.config import Settings
from affiliate_ledger.database import create_schema, get_engine
from affiliate_ledger.events import DomainEvent, EventEmitter
from affiliate_ledger.ledger import AffiliateLedger
from affiliate_ledger.models import Attribution, LedgerEntry

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite://"

ADMIN_ID = UUID("00000000-0000-0000-0000-00000000a001")
REFERRER_ID = UUID("00000000-0000-0000-0000-00000000b001")
OTHER_REFERRER_ID = UUID("00000000-0000-0000-0000-00000000b002")

# Mid-month so "current period" is March 2024 in every test.
FIXED_NOW = datetime(2024, 3, 20, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock; advance it explicitly between operations."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def engine():
    """Create a fresh in-memory database per test."""
    engine = get_engine(TEST_DATABASE_URL)
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker[Session]:
    return sessionmaker(engine, class_=Session, expire_on_commit=False, autoflush=False)


@pytest.fixture
def session(session_factory) -> Iterator[Session]:
    """Create a database session for each test."""
    with session_factory() as session:
        yield session
        session.rollback()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url=TEST_DATABASE_URL,
        commission_rate=Decimal("0.10"),
        default_period_type="monthly",
        admin_user_ids=frozenset({ADMIN_ID}),
        host="127.0.0.1",
        port=8000,
        debug=False,
        log_level="DEBUG",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def emitter() -> EventEmitter:
    return EventEmitter()


@pytest.fixture
def published(emitter: EventEmitter) -> list[DomainEvent]:
    """Every event the emitter dispatches, in order."""
    events: list[DomainEvent] = []
    emitter.on_all(events.append)
    return events


@pytest.fixture
def ledger(session: Session, settings: Settings, emitter: EventEmitter, clock: FakeClock) -> AffiliateLedger:
    return AffiliateLedger(session, settings, emitter, clock)


@pytest.fixture
def admin() -> Caller:
    return Caller(user_id=ADMIN_ID, is_admin=True)


@pytest.fixture
def referrer() -> Caller:
    return Caller(user_id=REFERRER_ID)


@pytest.fixture
def other_referrer() -> Caller:
    return Caller(user_id=OTHER_REFERRER_ID)


@pytest.fixture
def add_attribution(session: Session) -> Callable[..., Attribution]:
    """Insert an attribution directly, bypassing the revenue feed."""

    def _add(
        amount_cents: int,
        created_at: datetime,
        referrer_user_id: UUID = REFERRER_ID,
        attribution_type: str = "invoice_paid",
        purchaser_user_id: UUID | None = None,
    ) -> Attribution:
        attribution = Attribution(
            attribution_id=uuid4(),
            referrer_user_id=referrer_user_id,
            purchaser_user_id=purchaser_user_id or uuid4(),
            attribution_type=attribution_type,
            amount_cents=amount_cents,
            currency="usd",
            created_at=created_at,
        )
        session.add(attribution)
        session.commit()
        return attribution

    return _add


@pytest.fixture
def locked_entry(
    ledger: AffiliateLedger,
    referrer: Caller,
    add_attribution: Callable[..., Attribution],
) -> LedgerEntry:
    """March 2024 entry for the referrer: 12500 revenue, 1250 commission, locked."""
    add_attribution(10000, datetime(2024, 3, 5, 9, 30, tzinfo=timezone.utc))
    add_attribution(2500, datetime(2024, 3, 18, 16, 0, tzinfo=timezone.utc))
    entry = ledger.upsert_ledger_for_period(referrer, "2024-03-15", "monthly")
    return ledger.lock_ledger_period(referrer, entry.ledger_entry_id)


@pytest.fixture
def make_locked_entry(
    ledger: AffiliateLedger,
    add_attribution: Callable[..., Attribution],
) -> Callable[..., LedgerEntry]:
    """Build a locked monthly entry for any referrer and month."""

    def _make(caller: Caller, month: int, amount_cents: int = 1000, year: int = 2024) -> LedgerEntry:
        add_attribution(
            amount_cents,
            datetime(year, month, 10, tzinfo=timezone.utc),
            referrer_user_id=caller.user_id,
        )
        entry = ledger.upsert_ledger_for_period(caller, f"{year}-{month:02d}-01", "monthly")
        return ledger.lock_ledger_period(caller, entry.ledger_entry_id)

    return _make

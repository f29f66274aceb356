"""Ledger entry lookup, payout eligibility and compare-and-swap writes.

Every write to an entry goes through ``apply_transition``: a single
``UPDATE ... WHERE`` that re-checks the entry's current status and claim
references at write time. A zero row count means another transaction got
there first and the caller must treat the check as failed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable
from uuid import UUID

from sqlalchemy import select, update

from affiliate_ledger.errors import (
    AlreadyBatchedError,
    AlreadyRequestedError,
    InvalidStateError,
    LedgerError,
    NotFoundError,
)
from affiliate_ledger.models import LedgerEntry
from affiliate_ledger.services.state_machine import LedgerStatus

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


def get_entry(session: Session, ledger_entry_id: UUID, *, for_update: bool = False) -> LedgerEntry | None:
    """Load one entry, optionally row-locked for the rest of the transaction."""
    stmt = select(LedgerEntry).where(LedgerEntry.ledger_entry_id == ledger_entry_id)
    if for_update:
        stmt = stmt.with_for_update()
    stmt = stmt.execution_options(populate_existing=True)
    return session.scalars(stmt).one_or_none()


def get_entry_or_raise(session: Session, ledger_entry_id: UUID, *, for_update: bool = False) -> LedgerEntry:
    entry = get_entry(session, ledger_entry_id, for_update=for_update)
    if entry is None:
        raise NotFoundError("Ledger entry", ledger_entry_id)
    return entry


def load_entries(
    session: Session,
    ledger_entry_ids: Iterable[UUID],
    *,
    for_update: bool = False,
) -> dict[UUID, LedgerEntry]:
    """Load entries by id; missing ids are simply absent from the result."""
    ids = list(ledger_entry_ids)
    if not ids:
        return {}
    stmt = (
        select(LedgerEntry)
        .where(LedgerEntry.ledger_entry_id.in_(ids))
        .order_by(LedgerEntry.ledger_entry_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    return {entry.ledger_entry_id: entry for entry in session.scalars(stmt)}


def dedupe(ledger_entry_ids: Iterable[UUID]) -> list[UUID]:
    """Drop repeated ids, keeping first-seen order."""
    return list(dict.fromkeys(ledger_entry_ids))


def payout_problem(
    ledger_entry_id: UUID,
    entry: LedgerEntry | None,
    *,
    payout_request_id: UUID | None = None,
    action: str = "batched",
) -> LedgerError | None:
    """Return why an entry cannot be paid out right now, or None if it can.

    An entry is payable when it exists, is locked and carries no batch
    reference. When ``payout_request_id`` is given, the entry may also carry
    a request reference, but only to that request.

    Both the write path (batch creation, request completion) and the
    read-only eligibility view use this function.
    """
    if entry is None:
        return NotFoundError("Ledger entry", ledger_entry_id)
    if entry.status != LedgerStatus.LOCKED.value:
        return InvalidStateError(
            "Ledger entry",
            ledger_entry_id,
            entry.status,
            f"only locked entries can be {action}",
        )
    if entry.payout_batch_id is not None:
        return AlreadyBatchedError(ledger_entry_id)
    if (
        payout_request_id is not None
        and entry.payout_request_id is not None
        and entry.payout_request_id != payout_request_id
    ):
        return AlreadyRequestedError(
            ledger_entry_id,
            f"Ledger entry {ledger_entry_id} belongs to a different payout request",
        )
    return None


def validate_payable(
    entries: dict[UUID, LedgerEntry],
    ledger_entry_ids: list[UUID],
    *,
    payout_request_id: UUID | None = None,
    action: str = "batched",
) -> list[LedgerEntry]:
    """Check every id and return entries in id order; raise the first problem."""
    validated = []
    for ledger_entry_id in ledger_entry_ids:
        entry = entries.get(ledger_entry_id)
        problem = payout_problem(
            ledger_entry_id,
            entry,
            payout_request_id=payout_request_id,
            action=action,
        )
        if problem is not None:
            raise problem
        validated.append(entry)
    return validated


def apply_transition(
    session: Session,
    entry: LedgerEntry,
    transition: Any,
    *conditions: Any,
) -> bool:
    """Write ``transition`` to ``entry`` if ``conditions`` still hold.

    Returns True when the row was updated. The in-session object is refreshed
    either way so callers always see the committed-or-pending row.
    """
    stmt = (
        update(LedgerEntry)
        .where(LedgerEntry.ledger_entry_id == entry.ledger_entry_id, *conditions)
        .values(**transition.values())
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    session.refresh(entry)
    return (result.rowcount or 0) == 1

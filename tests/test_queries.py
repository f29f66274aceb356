"""Tests for the paginated read views."""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from affiliate_ledger.errors import AccessDeniedError, NotFoundError, ValidationError
from affiliate_ledger.periods import to_cursor
from affiliate_ledger.services.queries import MAX_PAGE_SIZE, clamp_limit

from tests.conftest import OTHER_REFERRER_ID, REFERRER_ID

UTC = timezone.utc


class TestClampLimit:
    def test_default_when_missing(self):
        assert clamp_limit(None, 50) == 50

    def test_capped_at_maximum(self):
        assert clamp_limit(10_000, 50) == MAX_PAGE_SIZE

    def test_at_least_one(self):
        assert clamp_limit(0, 50) == 1
        assert clamp_limit(-5, 50) == 1


class TestMyLedger:
    @pytest.fixture
    def five_months(self, referrer, make_locked_entry):
        return [make_locked_entry(referrer, month) for month in range(1, 6)]

    def test_newest_first(self, ledger, referrer, five_months):
        page = ledger.get_my_ledger(referrer)

        assert [e.period_start.month for e in page.rows] == [5, 4, 3, 2, 1]
        assert page.next_cursor is None

    def test_walk_pages_with_cursor(self, ledger, referrer, five_months):
        first = ledger.get_my_ledger(referrer, limit=2)
        assert [e.period_start.month for e in first.rows] == [5, 4]
        assert first.next_cursor == to_cursor(datetime(2024, 4, 1, tzinfo=UTC))

        second = ledger.get_my_ledger(referrer, cursor=first.next_cursor, limit=2)
        assert [e.period_start.month for e in second.rows] == [3, 2]

        third = ledger.get_my_ledger(referrer, cursor=second.next_cursor, limit=2)
        assert [e.period_start.month for e in third.rows] == [1]
        assert third.next_cursor is None

    def test_full_last_page_still_has_cursor(self, ledger, referrer, five_months):
        page = ledger.get_my_ledger(referrer, limit=5)

        assert len(page.rows) == 5
        assert page.next_cursor is not None
        assert ledger.get_my_ledger(referrer, cursor=page.next_cursor).rows == []

    def test_walk_pages_keeps_entries_sharing_period_start(self, ledger, referrer):
        # April 1st 2024 is a Monday: the monthly and weekly periods start together.
        monthly = ledger.upsert_ledger_for_period(referrer, "2024-04-01", "monthly")
        weekly = ledger.upsert_ledger_for_period(referrer, "2024-04-01", "weekly")
        assert monthly.period_start == weekly.period_start

        seen = []
        cursor = None
        for _ in range(3):
            page = ledger.get_my_ledger(referrer, cursor=cursor, limit=1)
            seen.extend(page.rows)
            cursor = page.next_cursor
            if cursor is None:
                break

        assert [e.period_type for e in seen] == ["monthly", "weekly"]
        assert {e.ledger_entry_id for e in seen} == {monthly.ledger_entry_id, weekly.ledger_entry_id}

    def test_status_filter(self, ledger, referrer, five_months):
        ledger.mark_ledger_paid(referrer, five_months[0].ledger_entry_id)

        paid = ledger.get_my_ledger(referrer, status="paid")

        assert [e.ledger_entry_id for e in paid.rows] == [five_months[0].ledger_entry_id]

    def test_period_type_filter(self, ledger, referrer, five_months):
        ledger.upsert_ledger_for_period(referrer, "2024-03-20", "weekly")

        weekly = ledger.get_my_ledger(referrer, period_type="weekly")

        assert len(weekly.rows) == 1
        assert weekly.rows[0].period_type == "weekly"

    def test_only_callers_entries(self, ledger, other_referrer, five_months):
        assert ledger.get_my_ledger(other_referrer).rows == []

    def test_negative_cursor_rejected(self, ledger, referrer):
        with pytest.raises(ValidationError):
            ledger.get_my_ledger(referrer, cursor=-1)


class TestAdminLedgerViews:
    def test_ledger_for_referrer(self, ledger, admin, referrer, make_locked_entry):
        entry = make_locked_entry(referrer, 2)

        page = ledger.get_ledger_for_referrer(admin, REFERRER_ID)

        assert [e.ledger_entry_id for e in page.rows] == [entry.ledger_entry_id]

    def test_ledger_for_referrer_requires_admin(self, ledger, other_referrer):
        with pytest.raises(AccessDeniedError):
            ledger.get_ledger_for_referrer(other_referrer, REFERRER_ID)

    def test_list_referrers(self, ledger, admin, referrer, other_referrer, make_locked_entry):
        make_locked_entry(referrer, 1)
        make_locked_entry(referrer, 2)
        make_locked_entry(other_referrer, 3)

        summaries = ledger.list_affiliate_referrers(admin)

        assert [(s.referrer_user_id, s.ledger_entry_count) for s in summaries] == [
            (OTHER_REFERRER_ID, 1),
            (REFERRER_ID, 2),
        ]
        assert summaries[0].latest_period_start == datetime(2024, 3, 1, tzinfo=UTC)

    def test_list_referrers_requires_admin(self, ledger, referrer):
        with pytest.raises(AccessDeniedError):
            ledger.list_affiliate_referrers(referrer)


class TestBatchViews:
    def test_list_newest_first_with_status_filter(self, ledger, admin, referrer, make_locked_entry, clock):
        january = make_locked_entry(referrer, 1)
        february = make_locked_entry(referrer, 2)
        first = ledger.create_payout_batch_and_mark_paid(admin, [january.ledger_entry_id], "Zelle")
        clock.advance(minutes=1)
        second = ledger.create_payout_batch_and_mark_paid(admin, [february.ledger_entry_id], "ACH")
        ledger.void_payout_batch_and_revert_paid(admin, first.payout_batch_id)

        everything = ledger.list_payout_batches(admin)
        voided = ledger.list_payout_batches(admin, status="voided")

        assert [b.payout_batch_id for b in everything.rows] == [second.payout_batch_id, first.payout_batch_id]
        assert [b.payout_batch_id for b in voided.rows] == [first.payout_batch_id]

    def test_batches_paginate_on_created_at(self, ledger, admin, referrer, make_locked_entry, clock):
        batches = []
        for month in (1, 2, 3):
            entry = make_locked_entry(referrer, month)
            batches.append(ledger.create_payout_batch_and_mark_paid(admin, [entry.ledger_entry_id], "Zelle"))
            clock.advance(minutes=1)

        first = ledger.list_payout_batches(admin, limit=2)
        second = ledger.list_payout_batches(admin, cursor=first.next_cursor, limit=2)

        assert [b.payout_batch_id for b in first.rows] == [batches[2].payout_batch_id, batches[1].payout_batch_id]
        assert [b.payout_batch_id for b in second.rows] == [batches[0].payout_batch_id]

    def test_batches_for_referrer(self, ledger, admin, referrer, other_referrer, make_locked_entry):
        mine = make_locked_entry(referrer, 1)
        theirs = make_locked_entry(other_referrer, 1)
        my_batch = ledger.create_payout_batch_and_mark_paid(admin, [mine.ledger_entry_id], "Zelle")
        ledger.create_payout_batch_and_mark_paid(admin, [theirs.ledger_entry_id], "Zelle")

        page = ledger.list_payout_batches_for_referrer(admin, REFERRER_ID)

        assert [b.payout_batch_id for b in page.rows] == [my_batch.payout_batch_id]

    def test_batch_detail_missing(self, ledger, admin):
        with pytest.raises(NotFoundError):
            ledger.get_payout_batch(admin, uuid4())

    def test_batch_views_require_admin(self, ledger, referrer):
        with pytest.raises(AccessDeniedError):
            ledger.list_payout_batches(referrer)


class TestRequestViews:
    def test_my_requests(self, ledger, referrer, other_referrer, make_locked_entry, clock):
        january = make_locked_entry(referrer, 1)
        february = make_locked_entry(referrer, 2)
        first = ledger.create_payout_request(referrer, [january.ledger_entry_id])
        clock.advance(minutes=1)
        second = ledger.create_payout_request(referrer, [february.ledger_entry_id])

        page = ledger.get_my_payout_requests(referrer)

        assert [r.payout_request_id for r in page.rows] == [second.payout_request_id, first.payout_request_id]
        assert ledger.get_my_payout_requests(other_referrer).rows == []

    def test_my_request_detail(self, ledger, referrer, locked_entry):
        request = ledger.create_payout_request(referrer, [locked_entry.ledger_entry_id])

        detail = ledger.get_my_payout_request(referrer, request.payout_request_id)

        assert detail.request.payout_request_id == request.payout_request_id
        assert [e.ledger_entry_id for e in detail.entries] == [locked_entry.ledger_entry_id]

    def test_my_request_detail_owner_only(self, ledger, referrer, other_referrer, locked_entry):
        request = ledger.create_payout_request(referrer, [locked_entry.ledger_entry_id])

        with pytest.raises(AccessDeniedError):
            ledger.get_my_payout_request(other_referrer, request.payout_request_id)

    def test_admin_list_filters_status(self, ledger, admin, referrer, make_locked_entry, clock):
        january = make_locked_entry(referrer, 1)
        february = make_locked_entry(referrer, 2)
        submitted = ledger.create_payout_request(referrer, [january.ledger_entry_id])
        clock.advance(minutes=1)
        approved = ledger.create_payout_request(referrer, [february.ledger_entry_id])
        ledger.approve_payout_request(admin, approved.payout_request_id)

        page = ledger.list_payout_requests_admin(admin, status="submitted")

        assert [r.payout_request_id for r in page.rows] == [submitted.payout_request_id]

    def test_admin_list_requires_admin(self, ledger, referrer):
        with pytest.raises(AccessDeniedError):
            ledger.list_payout_requests_admin(referrer)


class TestAttributionViews:
    def test_list_my_attributions(self, ledger, referrer, add_attribution):
        older = add_attribution(1000, datetime(2024, 3, 1, tzinfo=UTC))
        newer = add_attribution(2000, datetime(2024, 3, 2, tzinfo=UTC))
        add_attribution(3000, datetime(2024, 3, 3, tzinfo=UTC), referrer_user_id=OTHER_REFERRER_ID)

        page = ledger.list_my_attributions(referrer)

        assert [a.attribution_id for a in page.rows] == [newer.attribution_id, older.attribution_id]

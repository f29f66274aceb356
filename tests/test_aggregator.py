"""Tests for ledger aggregation from attributions.

Tests verify:
1. Revenue is summed per period from revenue-bearing attributions only
2. Repeated upserts while open recompute in place (same entry identity)
3. Locked and paid entries are frozen statements
4. Commission rounding is half-up
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from affiliate_ledger.errors import AccessDeniedError, ValidationError
from affiliate_ledger.events import LedgerEntryRecomputed
from affiliate_ledger.models import LedgerEntry
from affiliate_ledger.services.aggregator import compute_commission

from tests.conftest import OTHER_REFERRER_ID, REFERRER_ID

UTC = timezone.utc


class TestComputeCommission:
    def test_exact(self):
        assert compute_commission(12500, Decimal("0.10")) == 1250

    def test_zero_revenue(self):
        assert compute_commission(0, Decimal("0.10")) == 0

    def test_half_rounds_up(self):
        # 25 * 0.10 = 2.5
        assert compute_commission(25, Decimal("0.10")) == 3
        # 15 * 0.10 = 1.5
        assert compute_commission(15, Decimal("0.10")) == 2

    def test_below_half_rounds_down(self):
        assert compute_commission(24, Decimal("0.10")) == 2


class TestUpsertLedger:
    """Test upsert of a period's entry."""

    def test_march_scenario(self, ledger, referrer, add_attribution):
        """Two invoices in March 2024 roll up to one monthly entry."""
        add_attribution(10000, datetime(2024, 3, 5, tzinfo=UTC))
        add_attribution(2500, datetime(2024, 3, 28, tzinfo=UTC))

        entry = ledger.upsert_ledger_for_period(referrer, "2024-03-15", "monthly")

        assert entry.attributed_revenue_cents == 12500
        assert entry.commission_cents == 1250
        assert entry.commission_rate == Decimal("0.10")
        assert entry.status == "open"
        assert entry.period_start == datetime(2024, 3, 1, tzinfo=UTC)
        assert entry.period_end == datetime(2024, 4, 1, tzinfo=UTC)

    def test_only_attributions_inside_period_count(self, ledger, referrer, add_attribution):
        add_attribution(500, datetime(2024, 2, 29, 23, 59, 59, tzinfo=UTC))
        add_attribution(700, datetime(2024, 3, 1, tzinfo=UTC))
        add_attribution(900, datetime(2024, 4, 1, tzinfo=UTC))

        entry = ledger.upsert_ledger_for_period(referrer, "2024-03-01")

        assert entry.attributed_revenue_cents == 700

    def test_non_revenue_attributions_ignored(self, ledger, referrer, add_attribution):
        add_attribution(1000, datetime(2024, 3, 2, tzinfo=UTC))
        add_attribution(5000, datetime(2024, 3, 3, tzinfo=UTC), attribution_type="subscription_created")

        entry = ledger.upsert_ledger_for_period(referrer, "2024-03-10")

        assert entry.attributed_revenue_cents == 1000

    def test_other_referrers_attributions_ignored(self, ledger, referrer, add_attribution):
        add_attribution(1000, datetime(2024, 3, 2, tzinfo=UTC))
        add_attribution(9000, datetime(2024, 3, 2, tzinfo=UTC), referrer_user_id=OTHER_REFERRER_ID)

        entry = ledger.upsert_ledger_for_period(referrer, "2024-03-10")

        assert entry.attributed_revenue_cents == 1000

    def test_empty_period_creates_zero_entry(self, ledger, referrer):
        entry = ledger.upsert_ledger_for_period(referrer, "2024-01-10")

        assert entry.attributed_revenue_cents == 0
        assert entry.commission_cents == 0
        assert entry.status == "open"

    def test_repeat_upsert_recomputes_same_entry(self, ledger, referrer, add_attribution, session):
        add_attribution(1000, datetime(2024, 3, 2, tzinfo=UTC))
        first = ledger.upsert_ledger_for_period(referrer, "2024-03-10")
        first_id = first.ledger_entry_id

        add_attribution(3000, datetime(2024, 3, 9, tzinfo=UTC))
        second = ledger.upsert_ledger_for_period(referrer, "2024-03-31")

        assert second.ledger_entry_id == first_id
        assert second.attributed_revenue_cents == 4000
        assert second.commission_cents == 400
        count = session.scalar(select(func.count()).select_from(LedgerEntry))
        assert count == 1

    def test_weekly_and_monthly_are_separate_keys(self, ledger, referrer, add_attribution):
        add_attribution(1000, datetime(2024, 3, 12, tzinfo=UTC))

        monthly = ledger.upsert_ledger_for_period(referrer, "2024-03-12", "monthly")
        weekly = ledger.upsert_ledger_for_period(referrer, "2024-03-12", "weekly")

        assert monthly.ledger_entry_id != weekly.ledger_entry_id
        assert weekly.period_start == datetime(2024, 3, 11, tzinfo=UTC)
        assert weekly.attributed_revenue_cents == 1000

    def test_locked_entry_is_frozen(self, ledger, referrer, locked_entry, add_attribution):
        add_attribution(99999, datetime(2024, 3, 19, tzinfo=UTC))

        again = ledger.upsert_ledger_for_period(referrer, "2024-03-15")

        assert again.ledger_entry_id == locked_entry.ledger_entry_id
        assert again.attributed_revenue_cents == 12500
        assert again.commission_cents == 1250
        assert again.status == "locked"

    def test_current_period_uses_clock(self, ledger, referrer, add_attribution):
        add_attribution(2000, datetime(2024, 3, 19, tzinfo=UTC))

        entry = ledger.upsert_current_period_ledger(referrer)

        assert entry.period_start == datetime(2024, 3, 1, tzinfo=UTC)
        assert entry.attributed_revenue_cents == 2000

    def test_default_period_type_from_settings(self, ledger, referrer):
        entry = ledger.upsert_current_period_ledger(referrer)
        assert entry.period_type == "monthly"

    def test_referrer_cannot_upsert_for_someone_else(self, ledger, referrer):
        with pytest.raises(AccessDeniedError):
            ledger.upsert_ledger_for_period(referrer, "2024-03-01", referrer_user_id=OTHER_REFERRER_ID)

    def test_admin_can_upsert_for_any_referrer(self, ledger, admin, add_attribution):
        add_attribution(800, datetime(2024, 3, 4, tzinfo=UTC))

        entry = ledger.upsert_ledger_for_period(admin, "2024-03-01", referrer_user_id=REFERRER_ID)

        assert entry.referrer_user_id == REFERRER_ID
        assert entry.attributed_revenue_cents == 800

    def test_bad_period_type_rejected(self, ledger, referrer):
        with pytest.raises(ValidationError):
            ledger.upsert_ledger_for_period(referrer, "2024-03-01", "daily")

    def test_upsert_emits_recomputed_event(self, ledger, referrer, published):
        ledger.upsert_ledger_for_period(referrer, "2024-03-01")
        ledger.upsert_ledger_for_period(referrer, "2024-03-02")

        events = [e for e in published if isinstance(e, LedgerEntryRecomputed)]
        assert [e.created for e in events] == [True, False]
        assert events[0].metadata.actor_type == "referrer"

"""HTTP tests for the API routes, run against an in-memory database."""

from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from affiliate_ledger.api.app import create_app
from affiliate_ledger.api.dependencies import get_app_settings, get_db_session

from tests.conftest import ADMIN_ID, OTHER_REFERRER_ID, REFERRER_ID

API = "/api/v1"
REFERRER_HEADERS = {"X-User-ID": str(REFERRER_ID)}
OTHER_HEADERS = {"X-User-ID": str(OTHER_REFERRER_ID)}
ADMIN_HEADERS = {"X-User-ID": str(ADMIN_ID)}


@pytest.fixture
def client(session_factory, settings):
    app = create_app()

    def override_db_session():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db_session] = override_db_session
    app.dependency_overrides[get_app_settings] = lambda: settings
    return TestClient(app)


def record_revenue(client, amount_cents, referrer_id=REFERRER_ID, **extra):
    response = client.post(
        f"{API}/webhooks/attributions",
        json={
            "referrer_user_id": str(referrer_id),
            "purchaser_user_id": str(uuid4()),
            "attribution_type": "invoice_paid",
            "amount_cents": amount_cents,
            **extra,
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


def locked_entry(client, amount_cents=12500, headers=REFERRER_HEADERS, referrer_id=REFERRER_ID):
    record_revenue(client, amount_cents, referrer_id)
    entry = client.post(f"{API}/ledger/upsert", json={}, headers=headers).json()
    response = client.post(f"{API}/ledger/{entry['ledger_entry_id']}/lock", headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["database"] == "healthy"

    def test_ready_and_live(self, client):
        assert client.get("/ready").json() == {"status": "ready"}
        assert client.get("/live").status_code == 200


class TestAuthentication:
    def test_missing_header(self, client):
        response = client.get(f"{API}/ledger")

        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHENTICATED"

    def test_malformed_header(self, client):
        response = client.get(f"{API}/ledger", headers={"X-User-ID": "not-a-uuid"})

        assert response.status_code == 401

    def test_admin_route_rejects_referrer(self, client):
        response = client.get(f"{API}/payout-batches", headers=REFERRER_HEADERS)

        assert response.status_code == 403
        assert response.json()["code"] == "ACCESS_DENIED"


class TestLedgerRoutes:
    def test_upsert_current_period(self, client):
        record_revenue(client, 12500)

        response = client.post(f"{API}/ledger/upsert", json={}, headers=REFERRER_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "open"
        assert body["attributed_revenue_cents"] == 12500
        assert body["commission_cents"] == 1250

    def test_upsert_bad_period_start(self, client):
        response = client.post(
            f"{API}/ledger/upsert", json={"period_start": "yesterday"}, headers=REFERRER_HEADERS
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_lock_and_list(self, client):
        entry = locked_entry(client)

        page = client.get(f"{API}/ledger", params={"status": "locked"}, headers=REFERRER_HEADERS).json()

        assert entry["status"] == "locked"
        assert [row["ledger_entry_id"] for row in page["rows"]] == [entry["ledger_entry_id"]]
        assert page["next_cursor"] is None

    def test_mark_paid_open_entry_conflicts(self, client):
        entry = client.post(f"{API}/ledger/upsert", json={}, headers=REFERRER_HEADERS).json()

        response = client.post(f"{API}/ledger/{entry['ledger_entry_id']}/mark-paid", headers=REFERRER_HEADERS)

        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_STATE"
        assert "is 'open'" in response.json()["detail"]

    def test_mark_paid_and_unmark(self, client):
        entry = locked_entry(client)
        entry_id = entry["ledger_entry_id"]

        paid = client.post(
            f"{API}/ledger/{entry_id}/mark-paid", json={"method": "PayPal"}, headers=REFERRER_HEADERS
        )
        denied = client.post(f"{API}/ledger/{entry_id}/unmark-paid", headers=REFERRER_HEADERS)
        reverted = client.post(f"{API}/ledger/{entry_id}/unmark-paid", headers=ADMIN_HEADERS)

        assert paid.json()["status"] == "paid"
        assert paid.json()["payment_method"] == "PayPal"
        assert denied.status_code == 403
        assert reverted.json()["status"] == "locked"

    def test_unknown_entry(self, client):
        response = client.post(f"{API}/ledger/{uuid4()}/lock", headers=REFERRER_HEADERS)

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_admin_referrer_views(self, client):
        entry = locked_entry(client)

        referrers = client.get(f"{API}/ledger/referrers", headers=ADMIN_HEADERS).json()
        ledger_page = client.get(f"{API}/ledger/referrers/{REFERRER_ID}", headers=ADMIN_HEADERS).json()

        assert referrers[0]["referrer_user_id"] == str(REFERRER_ID)
        assert referrers[0]["ledger_entry_count"] == 1
        assert ledger_page["rows"][0]["ledger_entry_id"] == entry["ledger_entry_id"]


class TestPayoutBatchRoutes:
    def test_create_detail_void(self, client):
        entry = locked_entry(client)

        created = client.post(
            f"{API}/payout-batches",
            json={"ledger_entry_ids": [entry["ledger_entry_id"]], "method": "Zelle"},
            headers=ADMIN_HEADERS,
        )
        assert created.status_code == 201
        batch = created.json()
        assert batch["total_commission_cents"] == 1250
        assert batch["ledger_ids"] == [entry["ledger_entry_id"]]

        detail = client.get(f"{API}/payout-batches/{batch['payout_batch_id']}", headers=ADMIN_HEADERS).json()
        assert detail["ledger_rows"][0]["status"] == "paid"
        assert detail["ledger_rows"][0]["payout_batch_id"] == batch["payout_batch_id"]

        voided = client.post(f"{API}/payout-batches/{batch['payout_batch_id']}/void", headers=ADMIN_HEADERS)
        assert voided.json()["status"] == "voided"

        listed = client.get(
            f"{API}/payout-batches", params={"status": "voided"}, headers=ADMIN_HEADERS
        ).json()
        assert [row["payout_batch_id"] for row in listed["rows"]] == [batch["payout_batch_id"]]

    def test_empty_selection(self, client):
        response = client.post(
            f"{API}/payout-batches", json={"ledger_entry_ids": [], "method": "Zelle"}, headers=ADMIN_HEADERS
        )

        assert response.status_code == 400
        assert response.json()["code"] == "EMPTY_SELECTION"

    def test_second_batch_conflicts(self, client):
        entry = locked_entry(client)
        body = {"ledger_entry_ids": [entry["ledger_entry_id"]], "method": "Zelle"}
        client.post(f"{API}/payout-batches", json=body, headers=ADMIN_HEADERS)

        response = client.post(f"{API}/payout-batches", json=body, headers=ADMIN_HEADERS)

        assert response.status_code == 409

    def test_batches_for_referrer(self, client):
        entry = locked_entry(client)
        batch = client.post(
            f"{API}/payout-batches",
            json={"ledger_entry_ids": [entry["ledger_entry_id"]], "method": "Zelle"},
            headers=ADMIN_HEADERS,
        ).json()

        page = client.get(f"{API}/payout-batches/referrers/{REFERRER_ID}", headers=ADMIN_HEADERS).json()

        assert [row["payout_batch_id"] for row in page["rows"]] == [batch["payout_batch_id"]]


class TestPayoutRequestRoutes:
    def test_submit_review_complete(self, client):
        entry = locked_entry(client)

        created = client.post(
            f"{API}/payout-requests",
            json={"ledger_entry_ids": [entry["ledger_entry_id"]], "note": "please"},
            headers=REFERRER_HEADERS,
        )
        assert created.status_code == 201
        request_id = created.json()["payout_request_id"]

        mine = client.get(f"{API}/payout-requests/mine", headers=REFERRER_HEADERS).json()
        assert [row["payout_request_id"] for row in mine["rows"]] == [request_id]

        review = client.get(f"{API}/payout-requests/{request_id}", headers=ADMIN_HEADERS).json()
        assert review["can_complete"] is True
        assert review["invalid_ledger_ids"] == []

        approved = client.post(f"{API}/payout-requests/{request_id}/approve", headers=ADMIN_HEADERS)
        assert approved.json()["status"] == "approved"

        completed = client.post(
            f"{API}/payout-requests/{request_id}/complete", json={"method": "ACH"}, headers=ADMIN_HEADERS
        )
        assert completed.status_code == 200
        assert completed.json()["payout_request_id"] == request_id

        detail = client.get(f"{API}/payout-requests/mine/{request_id}", headers=REFERRER_HEADERS).json()
        assert detail["request"]["status"] == "completed"
        assert detail["request"]["payout_batch_id"] == completed.json()["payout_batch_id"]
        assert detail["ledger_rows"][0]["status"] == "paid"

    def test_deny_requires_reason(self, client):
        entry = locked_entry(client)
        request_id = client.post(
            f"{API}/payout-requests", json={"ledger_entry_ids": [entry["ledger_entry_id"]]}, headers=REFERRER_HEADERS
        ).json()["payout_request_id"]

        missing = client.post(
            f"{API}/payout-requests/{request_id}/deny", json={"reason": "  "}, headers=ADMIN_HEADERS
        )
        denied = client.post(
            f"{API}/payout-requests/{request_id}/deny", json={"reason": "duplicate"}, headers=ADMIN_HEADERS
        )

        assert missing.status_code == 400
        assert missing.json()["code"] == "MISSING_REASON"
        assert denied.json()["status"] == "denied"
        assert denied.json()["admin_notes"] == "duplicate"

    def test_cancel_by_other_referrer_forbidden(self, client):
        entry = locked_entry(client)
        request_id = client.post(
            f"{API}/payout-requests", json={"ledger_entry_ids": [entry["ledger_entry_id"]]}, headers=REFERRER_HEADERS
        ).json()["payout_request_id"]

        forbidden = client.post(f"{API}/payout-requests/{request_id}/cancel", headers=OTHER_HEADERS)
        cancelled = client.post(f"{API}/payout-requests/{request_id}/cancel", headers=REFERRER_HEADERS)

        assert forbidden.status_code == 403
        assert cancelled.json()["status"] == "cancelled"

    def test_duplicate_request_conflicts(self, client):
        entry = locked_entry(client)
        body = {"ledger_entry_ids": [entry["ledger_entry_id"]]}
        client.post(f"{API}/payout-requests", json=body, headers=REFERRER_HEADERS)

        response = client.post(f"{API}/payout-requests", json=body, headers=REFERRER_HEADERS)

        assert response.status_code == 409
        assert response.json()["code"] == "ALREADY_REQUESTED"


class TestWebhookRoutes:
    def test_attribution_replay(self, client):
        first = record_revenue(client, 900, external_transaction_id="in_42")
        again = record_revenue(client, 900, external_transaction_id="in_42")

        assert again["attribution_id"] == first["attribution_id"]

    def test_unknown_attribution_type(self, client):
        response = client.post(
            f"{API}/webhooks/attributions",
            json={
                "referrer_user_id": str(REFERRER_ID),
                "purchaser_user_id": str(uuid4()),
                "attribution_type": "refund",
            },
        )

        assert response.status_code == 400

    def test_external_transfer_marks_paid(self, client):
        entry = locked_entry(client)

        response = client.post(
            f"{API}/webhooks/external-transfers",
            json={"ledger_entry_ids": [entry["ledger_entry_id"]], "external_refs": {"transfer_id": "tr_1"}},
        )

        assert response.status_code == 200
        assert response.json()[0]["status"] == "paid"
        assert response.json()[0]["external_refs_json"] == {"transfer_id": "tr_1"}

    def test_external_transfer_requires_ids(self, client):
        response = client.post(f"{API}/webhooks/external-transfers", json={"ledger_entry_ids": []})

        assert response.status_code == 422

    def test_batch_transfer_lifecycle(self, client):
        entry = locked_entry(client)
        batch_id = client.post(
            f"{API}/payout-batches",
            json={"ledger_entry_ids": [entry["ledger_entry_id"]], "method": "Stripe"},
            headers=ADMIN_HEADERS,
        ).json()["payout_batch_id"]
        transfer_url = f"{API}/webhooks/payout-batches/{batch_id}/transfer"

        processing = client.post(transfer_url, json={"status": "processing"})
        blocked_void = client.post(f"{API}/payout-batches/{batch_id}/void", headers=ADMIN_HEADERS)
        missing_id = client.post(transfer_url, json={"status": "paid"})
        paid = client.post(transfer_url, json={"status": "paid", "external_transfer_id": "tr_9"})

        assert processing.json()["payout_status"] == "processing"
        assert blocked_void.status_code == 409
        assert blocked_void.json()["code"] == "TRANSFER_IN_PROGRESS"
        assert missing_id.status_code == 400
        assert paid.json()["payout_status"] == "paid"
        assert paid.json()["external_transfer_id"] == "tr_9"


class TestAttributionRoutes:
    def test_list_and_summary(self, client):
        record_revenue(client, 5000)
        record_revenue(client, 700, referrer_id=OTHER_REFERRER_ID)

        page = client.get(f"{API}/attributions", headers=REFERRER_HEADERS).json()
        summary = client.get(f"{API}/attributions/summary", headers=REFERRER_HEADERS).json()

        assert [row["amount_cents"] for row in page["rows"]] == [5000]
        assert summary["lifetime_revenue_cents"] == 5000
        assert summary["last_7d_commission_cents"] == 500
        assert summary["total_referred_users"] == 1

"""Tests for the HTTP surface."""

import pytest
from fastapi.testclient import TestClient

from splitbill.main import app
from splitbill.services.changebus import get_change_bus
from splitbill.services.notifications import Severity, get_notification_sink
from splitbill.services.store import get_session_store
from tests.factories import BILL_SESSION_ID, COVER_SESSION_ID


@pytest.fixture
def client(store, bus, notifier):
    app.dependency_overrides[get_session_store] = lambda: store
    app.dependency_overrides[get_change_bus] = lambda: bus
    app.dependency_overrides[get_notification_sink] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["store"] == "memory: healthy"


class TestSettlementEndpoints:

    def test_settlement_status(self, client):
        response = client.get(f"/api/sessions/{BILL_SESSION_ID}/settlement")

        assert response.status_code == 200
        data = response.json()
        assert data["total_cents"] == 10000
        assert data["remaining_cents"] == 10000
        assert data["fiscal_status"] is False
        assert data["is_open"] is True

    def test_unknown_session_is_404(self, client):
        response = client.get("/api/sessions/999/settlement")

        assert response.status_code == 404
        assert response.json()["error"] == "SESSION_NOT_FOUND"

    def test_remaining_items_with_covers(self, client):
        response = client.get(f"/api/sessions/{COVER_SESSION_ID}/remaining-items")

        data = response.json()
        assert [line["item_id"] for line in data["lines"]] == [31]
        assert data["covers_remaining"] == 4
        assert data["cover_unit_cents"] == 200
        assert data["total_cents"] == 2800

    def test_selection_is_clamped(self, client, notifier):
        response = client.post(
            f"/api/sessions/{COVER_SESSION_ID}/selection",
            json={"items": [{"item_id": 31, "quantity": 5}, {"item_id": "cover", "quantity": 9}]},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["amount_cents"] == 2000 + 800
        assert [item["order_item_id"] for item in data["items"]] == [31, "cover"]
        assert notifier.messages(Severity.INFO) == ["Selection applied: €28.00"]

    def test_empty_selection(self, client, notifier):
        response = client.post(f"/api/sessions/{BILL_SESSION_ID}/selection", json={"items": []})

        assert response.status_code == 400
        assert response.json()["error"] == "NOTHING_SELECTED"
        assert notifier.messages(Severity.WARNING) == ["Select at least one item or cover"]

    def test_equal_share(self, client):
        response = client.post(
            f"/api/sessions/{BILL_SESSION_ID}/equal-share",
            json={"total_people": 4, "paying_people": 1},
        )

        assert response.json()["amount_cents"] == 2500
        assert response.json()["note"] == "Equal split (1/4 people)"

    def test_session_fiscal_flag_without_split_payments(self, client, bus):
        response = client.put(f"/api/sessions/{BILL_SESSION_ID}/fiscal-flag", json={"fiscal_flag": True})

        assert response.status_code == 200
        assert response.json()["fiscal_status"] is True
        assert [event.entity for event in bus.published] == ["table_sessions"]

    def test_session_fiscal_flag_on_closed_bill(self, client):
        client.post(f"/api/sessions/{BILL_SESSION_ID}/payments", json={"amount": "100.00"})

        response = client.put(f"/api/sessions/{BILL_SESSION_ID}/fiscal-flag", json={"fiscal_flag": True})

        assert response.status_code == 400
        assert response.json()["error"] == "SESSION_CLOSED"

    def test_invalid_equal_share(self, client):
        response = client.post(
            f"/api/sessions/{BILL_SESSION_ID}/equal-share",
            json={"total_people": 0},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_SPLIT"


class TestPaymentEndpoints:

    def test_amount_then_items(self, client, store):
        first = client.post(
            f"/api/sessions/{BILL_SESSION_ID}/payments",
            json={"amount": "40.00", "method": "card"},
        )
        assert first.status_code == 201
        assert first.json()["status"]["remaining_cents"] == 6000

        second = client.post(
            f"/api/sessions/{BILL_SESSION_ID}/payments",
            json={
                "method": "cash",
                "tendered": "70.00",
                "fiscal_flag": True,
                "items": [{"item_id": 11, "quantity": 1}, {"item_id": 12, "quantity": 1}],
            },
        )

        assert second.status_code == 201
        data = second.json()
        assert data["payment"]["amount_cents"] == 6000
        assert data["change_cents"] == 1000
        assert data["closed"] is True
        assert data["status"]["fiscal_status"] == "partial"
        assert data["status"]["fiscal_cents"] == 6000

        ledger = client.get(f"/api/sessions/{BILL_SESSION_ID}/payments").json()
        assert ledger["total"] == 2
        assert ledger["payments"][1]["receipt_number"] == f"P-{data['payment']['id']}"

    def test_amount_above_remaining(self, client):
        response = client.post(f"/api/sessions/{BILL_SESSION_ID}/payments", json={"amount": "100.01"})

        assert response.status_code == 400
        assert response.json()["error"] == "AMOUNT_EXCEEDS_REMAINING"

    def test_missing_amount(self, client):
        response = client.post(f"/api/sessions/{BILL_SESSION_ID}/payments", json={"method": "card"})

        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_AMOUNT"

    def test_quantity_above_remaining(self, client):
        response = client.post(
            f"/api/sessions/{BILL_SESSION_ID}/payments",
            json={"items": [{"item_id": 11, "quantity": 2}]},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "QUANTITY_EXCEEDS_REMAINING"

    def test_store_failure_then_retry(self, client, store):
        store.fail_next_appends = 1
        body = {"amount": "25.00", "idempotency_key": "till-2:0001"}

        failed = client.post(f"/api/sessions/{BILL_SESSION_ID}/payments", json=body)
        retried = client.post(f"/api/sessions/{BILL_SESSION_ID}/payments", json=body)
        repeated = client.post(f"/api/sessions/{BILL_SESSION_ID}/payments", json=body)

        assert failed.status_code == 503
        assert failed.json()["error"] == "STORE_FAILURE"
        assert retried.status_code == 201
        assert repeated.json()["payment"]["id"] == retried.json()["payment"]["id"]
        assert client.get(f"/api/sessions/{BILL_SESSION_ID}/payments").json()["total"] == 1

    def test_closed_session(self, client):
        client.post(f"/api/sessions/{BILL_SESSION_ID}/payments", json={"amount": "100"})

        response = client.post(f"/api/sessions/{BILL_SESSION_ID}/payments", json={"amount": "1"})

        assert response.status_code == 400
        assert response.json()["error"] == "SESSION_CLOSED"

    def test_receipt(self, client):
        payment = client.post(
            f"/api/sessions/{BILL_SESSION_ID}/payments",
            json={"items": [{"item_id": 21, "quantity": 1}], "method": "card"},
        ).json()["payment"]

        response = client.get(f"/api/sessions/{BILL_SESSION_ID}/payments/{payment['id']}/receipt")

        assert response.status_code == 200
        data = response.json()
        assert data["receipt_number"] == f"P-{payment['id']}"
        assert data["total_cents"] == 4000
        assert data["iva_cents"] == 364
        assert data["items"][0]["name"] == "Mixed grill"
        assert "TOTAL" in data["text"]
        assert data["export_task_id"] is None

    def test_missing_receipt(self, client):
        response = client.get(f"/api/sessions/{BILL_SESSION_ID}/payments/12345/receipt")

        assert response.status_code == 404


class TestReportsAndDemo:

    def test_fiscal_summary(self, client):
        client.post(f"/api/sessions/{BILL_SESSION_ID}/payments", json={"amount": "30", "fiscal_flag": True})

        response = client.get("/api/reports/fiscal-summary")

        assert response.status_code == 200
        data = response.json()
        assert data["fiscal_cents"] == 3000
        assert data["non_fiscal_cents"] == 7000 + 2800
        assert data["session_count"] == 2

    def test_demo_session(self, client):
        response = client.post("/api/dev/demo-session", json={"covers": 2, "cover_unit": "1.50"})

        assert response.status_code == 201
        data = response.json()
        assert data["total_cents"] == 1600 + 900 + 1250 + 900
        assert data["effective_total_cents"] == data["total_cents"] + 300
        assert len(data["item_ids"]) == 4

        status = client.get(f"/api/sessions/{data['session_id']}/settlement").json()
        assert status["remaining_cents"] == data["effective_total_cents"]

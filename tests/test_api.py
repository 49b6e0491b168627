"""Tests for the /api routes.

Covers:
- Enriched boards (search, failed joins, 503 + retry hint on primary failure)
- Transition endpoints mapping TransitionResult failures onto status codes
"""

from __future__ import annotations

import asyncio

import pytest
from conftest import FakeRecordStore
from fastapi import FastAPI
from fastapi.testclient import TestClient

from opsdesk.admin.reconciliation_audit import reconciliation_audit
from opsdesk.api.routes import get_pipeline, get_record_store, router
from opsdesk.errors import WriteError
from opsdesk.models.enums import Collection
from opsdesk.pipeline.service import PipelineService
from opsdesk.schemas.events import EventType, SystemEvent

# ── Helpers ──────────────────────────────────────────────────────────


def _make_store() -> FakeRecordStore:
    store = FakeRecordStore()
    store.seed(Collection.PROFILES, {"id": "u1", "email": "ana@example.com", "full_name": "Ana Lima"})
    store.seed(
        Collection.QUOTATIONS,
        {
            "id": "q1",
            "quotation_id": "QT-1",
            "user_id": "u1",
            "product_name": "Desk Lamp",
            "quantity": 2,
            "title_option1": "Basic",
            "unit_price_option1": "10",
            "title_option2": "Premium",
            "unit_price_option2": "15",
        },
    )
    store.seed(
        Collection.PAYMENTS,
        {
            "id": "p1",
            "user_id": "u1",
            "quotation_ids": ["q1"],
            "total_amount": "20.00",
            "method": "WISE",
            "status": "Pending",
            "reference_number": "PAY-111111-AAAAAA",
            "created_at": "2026-02-01T00:00:00+00:00",
        },
    )
    store.seed(
        Collection.SHIPPING,
        {"id": "s1", "user_id": "u1", "quotation_id": "q1", "status": "Waiting", "created_at": "2026-02-02T00:00:00+00:00"},
    )
    store.seed(Collection.SHIPPING_RECEIVERS, {"id": "r1", "user_id": "u1", "receiver_name": "Home", "is_default": True})
    return store


@pytest.fixture()
def store() -> FakeRecordStore:
    return _make_store()


@pytest.fixture()
def client(store):
    """Test client with just the dashboard router over the in-memory store."""
    app = FastAPI()
    app.include_router(router)
    app.dependency_overrides[get_record_store] = lambda: store
    return TestClient(app)


# ── Boards ───────────────────────────────────────────────────────────


class TestBoards:
    def test_payments_board(self, client):
        resp = client.get("/api/payments")

        assert resp.status_code == 200
        body = resp.json()
        assert body["failed_joins"] == {}
        [payment] = body["payments"]
        assert payment["payment"]["reference_number"] == "PAY-111111-AAAAAA"
        assert payment["profile"]["email"] == "ana@example.com"
        assert payment["quotations"][0]["quotation_id"] == "QT-1"

    def test_payments_search(self, client):
        assert len(client.get("/api/payments", params={"q": "ANA"}).json()["payments"]) == 1
        assert client.get("/api/payments", params={"q": "binance"}).json()["payments"] == []

    def test_partial_board_is_200(self, client, store):
        store.fail_fetch(Collection.PROFILES)

        resp = client.get("/api/payments")

        assert resp.status_code == 200
        assert "profile" in resp.json()["failed_joins"]
        assert resp.json()["payments"][0]["profile_loaded"] is False

    def test_primary_failure_is_503_with_retry(self, client, store):
        store.fail_fetch(Collection.PAYMENTS, "Timed out loading payments")

        resp = client.get("/api/payments")

        assert resp.status_code == 503
        assert resp.json() == {"detail": "Timed out loading payments", "collection": "payments", "retry": True}

    def test_shipments_board(self, client):
        resp = client.get("/api/users/u1/shipments")

        [shipment] = resp.json()["shipments"]
        assert shipment["shipment"]["id"] == "s1"
        assert shipment["quotation"]["product_name"] == "Desk Lamp"
        assert shipment["location_summary"] == "Waiting for update"

    def test_shipment_deep_link_by_quotation(self, client):
        assert len(client.get("/api/users/u1/shipments", params={"quotation_id": "q1"}).json()["shipments"]) == 1
        assert client.get("/api/users/u1/shipments", params={"quotation_id": "q9"}).json()["shipments"] == []

    def test_saved_receivers(self, client):
        resp = client.get("/api/users/u1/receivers")
        assert [r["receiver_name"] for r in resp.json()["receivers"]] == ["Home"]

    def test_reconciliation_items(self, client):
        reconciliation_audit.clear()
        asyncio.run(reconciliation_audit.on_event(SystemEvent(
            event_type=EventType.SIDE_EFFECT_FAILED,
            collection="quotations",
            record_id="q1",
            data={"payment_id": "p1"},
        )))
        try:
            items = client.get("/api/reconciliation").json()["items"]
        finally:
            reconciliation_audit.clear()

        assert items[0]["record_id"] == "q1"
        assert items[0]["reason"] == "side_effect_failed"


# ── Transitions ──────────────────────────────────────────────────────


class TestTransitions:
    def test_approve_payment(self, client, store):
        resp = client.post("/api/payments/p1/status", json={"status": "approved"}, headers={"X-Actor-Id": "admin"})

        assert resp.status_code == 200
        assert resp.json()["patch"] == {"status": "Approved"}
        assert store.get(Collection.PAYMENTS, "p1")["status"] == "Approved"

    def test_invalid_transition_is_409(self, client):
        resp = client.post("/api/shipments/s1/status", json={"status": "Delivered"})

        assert resp.status_code == 409
        assert resp.json()["failure"] == "transition"

    def test_missing_record_is_404(self, client):
        assert client.post("/api/payments/nope/status", json={"status": "Approved"}).status_code == 404

    def test_empty_status_is_rejected_by_schema(self, client):
        assert client.post("/api/payments/p1/status", json={"status": ""}).status_code == 422

    def test_receiver_validation_is_422(self, client):
        resp = client.post("/api/shipments/s1/receiver", json={"receiver_name": "Ana", "receiver_address": "Rua A"})

        assert resp.status_code == 422
        assert resp.json()["field"] == "receiver_phone"

    def test_receiver_submission(self, client, store):
        resp = client.post(
            "/api/shipments/s1/receiver",
            json={
                "receiver_name": "Ana",
                "receiver_phone": "123",
                "receiver_address": "Rua A",
                "existing_receiver_id": "r1",
            },
        )

        assert resp.status_code == 200
        assert resp.json()["patch"]["status"] == "Processing"
        assert store.get(Collection.SHIPPING, "s1")["receiver_phone"] == "123"

    def test_label(self, client, store):
        resp = client.post("/api/shipments/s1/label", json={"label": "  Pallet 3 "})

        assert resp.status_code == 200
        assert store.get(Collection.SHIPPING, "s1")["label"] == "Pallet 3"

    def test_select_option(self, client, store):
        resp = client.post("/api/quotations/q1/selected-option", json={"option": 2})

        assert resp.status_code == 409  # p1 already references q1
        store.get(Collection.PAYMENTS, "p1")["status"] = "Rejected"
        resp = client.post("/api/quotations/q1/selected-option", json={"option": 2})
        assert resp.status_code == 200
        assert store.get(Collection.QUOTATIONS, "q1")["selected_option"] == 2

    def test_profile_approval(self, client, store):
        resp = client.post("/api/profiles/u1/approval", json={"approve": True})

        assert resp.status_code == 200
        assert store.get(Collection.PROFILES, "u1")["approve"] is True

    def test_unknown_payment_method_is_422(self, client, store):
        resp = client.post("/api/payments", json={"quotation_id": "q1", "method": "cash"})

        assert resp.status_code == 422
        assert store.writes == []

    def test_write_failure_is_502(self, client, store):
        store.fail_writes(Collection.SHIPPING, WriteError("shipping", "s1", "HTTP 500"))

        resp = client.post("/api/shipments/s1/label", json={"label": "x"})

        assert resp.status_code == 502
        assert resp.json()["error"] == "HTTP 500"

    def test_timeout_is_504_unknown_outcome(self, client, store):
        client.app.dependency_overrides[get_pipeline] = lambda: PipelineService(store, write_timeout=0.01)
        store.gate(Collection.SHIPPING)

        resp = client.post("/api/shipments/s1/status", json={"status": "Processing"})

        assert resp.status_code == 504
        body = resp.json()
        assert body["outcome_unknown"] is True
        assert "Refresh before retrying" in body["detail"]

"""Tests for PipelineService transitions and cross-entity side effects.

Covers:
- Payment/shipment status transitions (write first, then STATUS_CHANGED)
- Payment creation returns before the quotation approval lands
- Receiver submission: Waiting → Processing once, address book follow-up
- Price option selection and the post-payment lock
- Write timeouts reported as unknown outcome, never as success
- Re-entrancy guard refuses overlapping operations
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest
from conftest import FakeRecordStore, emitted

from opsdesk.config import PipelineSettings
from opsdesk.errors import WriteError
from opsdesk.guard import InFlightGuard
from opsdesk.models.enums import Collection
from opsdesk.pipeline.saga import drain
from opsdesk.pipeline.service import FailureKind, PipelineService, TransitionResult
from opsdesk.schemas.events import EventType
from opsdesk.schemas.records import Receiver

# ── Helpers ──────────────────────────────────────────────────────────


def _make_quotation(**overrides) -> dict:
    row = {
        "id": "q1",
        "quotation_id": "QT-1700000000000",
        "user_id": "u1",
        "product_name": "Desk Lamp",
        "quantity": 10,
        "status": "Pending",
        "title_option1": "Basic",
        "unit_price_option1": "12.50",
        "title_option2": "Premium",
        "unit_price_option2": "20",
        "selected_option": 1,
        "Quotation_fees": "5",
    }
    row.update(overrides)
    return row


def _make_service(store: FakeRecordStore, **config) -> PipelineService:
    settings = PipelineSettings(side_effect_attempts=1, side_effect_backoff=0, **config)
    return PipelineService(store, guard=InFlightGuard(), config=settings, write_timeout=1.0)


def _make_receiver(**overrides) -> Receiver:
    fields = {"receiver_name": " Ana Lima ", "receiver_phone": "+55 11 5555", "receiver_address": "Rua A, 10"}
    fields.update(overrides)
    return Receiver(**fields)


# ── TransitionResult ─────────────────────────────────────────────────


class TestTransitionResult:
    def test_unknown_outcome_is_serialized(self):
        result = TransitionResult.fail("p1", FailureKind.UNKNOWN_OUTCOME, RuntimeError("timed out"))
        body = result.model_dump(mode="json")
        assert body["outcome_unknown"] is True
        assert body["ok"] is False
        assert body["patch"] == {}

    def test_success_defaults(self):
        result = TransitionResult.success("p1", patch={"status": "Approved"})
        assert result.ok is True
        assert result.outcome_unknown is False
        assert result.failure is None


# ── Status transitions ───────────────────────────────────────────────


class TestPaymentStatus:
    @pytest.mark.asyncio()
    async def test_approve_writes_then_emits(self, store, captured_events):
        store.seed(Collection.PAYMENTS, {"id": "p1", "status": "Pending"})

        result = await _make_service(store).approve_payment("p1", actor_id="admin")

        assert result.ok is True
        assert result.patch == {"status": "Approved"}
        assert store.get(Collection.PAYMENTS, "p1")["status"] == "Approved"
        event = emitted(captured_events, EventType.STATUS_CHANGED)[0]
        assert event.data == {"from_status": "Pending", "to_status": "Approved"}
        assert event.actor_id == "admin"

    @pytest.mark.asyncio()
    async def test_invalid_transition_writes_nothing(self, store, captured_events):
        store.seed(Collection.PAYMENTS, {"id": "p1", "status": "Rejected"})

        result = await _make_service(store).approve_payment("p1")

        assert result.ok is False
        assert result.failure == FailureKind.TRANSITION
        assert store.writes == []
        assert emitted(captured_events, EventType.STATUS_CHANGED) == []

    @pytest.mark.asyncio()
    async def test_same_status_is_noop(self, store):
        store.seed(Collection.PAYMENTS, {"id": "p1", "status": "pending"})

        result = await _make_service(store).set_payment_status("p1", "Pending")

        assert result.ok is True
        assert result.noop is True
        assert store.writes == []

    @pytest.mark.asyncio()
    async def test_missing_record(self, store):
        result = await _make_service(store).reject_payment("nope")
        assert result.failure == FailureKind.NOT_FOUND

    @pytest.mark.asyncio()
    async def test_failed_write_emits_no_status_change(self, store, captured_events):
        store.seed(Collection.PAYMENTS, {"id": "p1", "status": "Pending"})
        store.fail_writes(Collection.PAYMENTS, WriteError("payments", "p1", "HTTP 500"))

        result = await _make_service(store).approve_payment("p1")

        assert result.failure == FailureKind.WRITE
        assert result.error == "HTTP 500"
        assert emitted(captured_events, EventType.STATUS_CHANGED) == []
        assert emitted(captured_events, EventType.WRITE_FAILED)[0].record_id == "p1"

    @pytest.mark.asyncio()
    async def test_fetch_failure(self, store):
        store.fail_fetch(Collection.PAYMENTS)
        result = await _make_service(store).approve_payment("p1")
        assert result.failure == FailureKind.FETCH


class TestShipmentStatus:
    @pytest.mark.asyncio()
    async def test_delivered_stamps_delivered_at(self, store):
        store.seed(Collection.SHIPPING, {"id": "s1", "status": "In Transit"})

        result = await _make_service(store).set_shipment_status("s1", "Delivered")

        assert result.ok is True
        assert result.patch["status"] == "Delivered"
        assert result.patch["delivered_at"] is not None

    @pytest.mark.asyncio()
    async def test_shipping_rows_get_no_updated_at(self, store):
        store.seed(Collection.SHIPPING, {"id": "s1", "status": "Waiting"})

        await _make_service(store).set_shipment_status("s1", "Processing")

        assert "updated_at" not in store.get(Collection.SHIPPING, "s1")

    @pytest.mark.asyncio()
    async def test_unknown_outcome_on_timeout(self, store, captured_events):
        store.seed(Collection.SHIPPING, {"id": "s1", "status": "Waiting"})
        store.gate(Collection.SHIPPING)  # never released
        service = PipelineService(store, write_timeout=0.01)

        result = await service.set_shipment_status("s1", "Processing")

        assert result.ok is False
        assert result.outcome_unknown is True
        assert result.patch == {}
        assert emitted(captured_events, EventType.STATUS_CHANGED) == []
        assert emitted(captured_events, EventType.WRITE_OUTCOME_UNKNOWN)[0].record_id == "s1"


# ── Re-entrancy ──────────────────────────────────────────────────────


class TestGuard:
    @pytest.mark.asyncio()
    async def test_overlapping_calls_on_same_record_are_refused(self, store):
        store.seed(Collection.PAYMENTS, {"id": "p1", "status": "Pending"})
        gate = store.gate(Collection.PAYMENTS)
        service = _make_service(store)

        first = asyncio.create_task(service.approve_payment("p1"))
        await asyncio.sleep(0)
        second = await service.reject_payment("p1")
        gate.set()
        first_result = await first

        assert second.failure == FailureKind.BUSY
        assert first_result.ok is True
        assert store.get(Collection.PAYMENTS, "p1")["status"] == "Approved"

    @pytest.mark.asyncio()
    async def test_guard_released_after_failure(self, store):
        store.seed(Collection.PAYMENTS, {"id": "p1", "status": "Pending"})
        store.fail_writes(Collection.PAYMENTS, WriteError("payments", "p1"))
        service = _make_service(store)

        assert (await service.approve_payment("p1")).ok is False
        assert (await service.approve_payment("p1")).ok is True


# ── Payment creation ─────────────────────────────────────────────────


class TestCreatePayment:
    @pytest.mark.asyncio()
    async def test_returns_before_quotation_approval(self, store, captured_events):
        store.seed(Collection.QUOTATIONS, _make_quotation())
        gate = store.gate(Collection.QUOTATIONS)

        result = await _make_service(store).create_payment("q1", "wise", user_id="u1")

        assert result.ok is True
        payment = store.get(Collection.PAYMENTS, result.record_id)
        assert payment["status"] == "Pending"
        assert payment["method"] == "WISE"
        assert payment["quotation_ids"] == ["q1"]
        assert payment["total_amount"] == Decimal("130.00")
        assert payment["reference_number"].startswith("PAY-")
        assert store.get(Collection.QUOTATIONS, "q1")["status"] == "Pending"

        gate.set()
        await drain(timeout=1)

        assert store.get(Collection.QUOTATIONS, "q1")["status"] == "Approved"
        assert store.get(Collection.QUOTATIONS, "q1")["updated_at"] is not None
        changed = emitted(captured_events, EventType.STATUS_CHANGED)[0]
        assert changed.data["trigger"] == "payment_created"
        assert emitted(captured_events, EventType.PAYMENT_CREATED)[0].record_id == result.record_id

    @pytest.mark.asyncio()
    async def test_approval_failure_keeps_payment(self, store, captured_events):
        store.seed(Collection.QUOTATIONS, _make_quotation())
        store.fail_writes(Collection.QUOTATIONS, WriteError("quotations", "q1", "HTTP 500"))

        result = await _make_service(store).create_payment("q1", "BINANCE")
        await drain(timeout=1)

        assert result.ok is True
        assert store.get(Collection.PAYMENTS, result.record_id) is not None
        assert store.get(Collection.QUOTATIONS, "q1")["status"] == "Pending"
        failed = emitted(captured_events, EventType.SIDE_EFFECT_FAILED)[0]
        assert failed.collection == "quotations"
        assert failed.record_id == "q1"
        assert failed.data["payment_id"] == result.record_id

    @pytest.mark.asyncio()
    async def test_insert_failure_skips_approval(self, store):
        store.seed(Collection.QUOTATIONS, _make_quotation())
        store.fail_writes(Collection.PAYMENTS, WriteError("payments", None, "HTTP 409"))

        result = await _make_service(store).create_payment("q1", "WISE")
        await drain(timeout=1)

        assert result.failure == FailureKind.WRITE
        assert store.tables[Collection.PAYMENTS] == []
        assert store.get(Collection.QUOTATIONS, "q1")["status"] == "Pending"

    @pytest.mark.asyncio()
    async def test_requires_selected_option(self, store):
        store.seed(Collection.QUOTATIONS, _make_quotation(selected_option=None))

        result = await _make_service(store).create_payment("q1", "WISE")

        assert result.failure == FailureKind.VALIDATION
        assert result.field == "selected_option"
        assert store.writes == []

    @pytest.mark.asyncio()
    async def test_unknown_method(self, store):
        store.seed(Collection.QUOTATIONS, _make_quotation())

        result = await _make_service(store).create_payment("q1", "paypal")

        assert result.failure == FailureKind.VALIDATION
        assert result.field == "method"

    @pytest.mark.asyncio()
    async def test_rejected_quotation(self, store):
        store.seed(Collection.QUOTATIONS, _make_quotation(status="Rejected"))

        result = await _make_service(store).create_payment("q1", "WISE")

        assert result.failure == FailureKind.TRANSITION

    @pytest.mark.asyncio()
    async def test_already_approved_quotation_is_left_alone(self, store, captured_events):
        store.seed(Collection.QUOTATIONS, _make_quotation(status="Approved"))

        result = await _make_service(store).create_payment("q1", "PAYONEER")
        await drain(timeout=1)

        assert result.ok is True
        assert emitted(captured_events, EventType.STATUS_CHANGED) == []
        assert all(c != Collection.QUOTATIONS for _, c, _ in store.writes)


# ── Receiver info ────────────────────────────────────────────────────


class TestReceiverInfo:
    @pytest.mark.asyncio()
    async def test_first_submission_moves_to_processing(self, store, captured_events):
        store.seed(Collection.SHIPPING, {"id": "s1", "user_id": "u1", "status": "Waiting"})

        result = await _make_service(store).submit_receiver_info("s1", _make_receiver(), save_for_later=True)
        await drain(timeout=1)

        shipment = store.get(Collection.SHIPPING, "s1")
        assert result.ok is True
        assert shipment["status"] == "Processing"
        assert shipment["receiver_name"] == "Ana Lima"
        saved = store.tables[Collection.SHIPPING_RECEIVERS]
        assert len(saved) == 1
        assert saved[0]["user_id"] == "u1"
        assert saved[0]["is_default"] is True
        assert emitted(captured_events, EventType.STATUS_CHANGED)[0].data["to_status"] == "Processing"

    @pytest.mark.asyncio()
    async def test_resubmission_keeps_status(self, store, captured_events):
        store.seed(Collection.SHIPPING, {"id": "s1", "user_id": "u1", "status": "In Transit"})

        result = await _make_service(store).submit_receiver_info(
            "s1", _make_receiver(receiver_name="Bruno"), existing_receiver_id="r1"
        )
        await drain(timeout=1)

        assert result.ok is True
        assert "status" not in result.patch
        assert store.get(Collection.SHIPPING, "s1")["status"] == "In Transit"
        assert store.get(Collection.SHIPPING, "s1")["receiver_name"] == "Bruno"
        assert emitted(captured_events, EventType.STATUS_CHANGED) == []
        assert store.tables[Collection.SHIPPING_RECEIVERS] == []

    @pytest.mark.asyncio()
    async def test_existing_receiver_marked_default(self, store):
        store.seed(Collection.SHIPPING, {"id": "s1", "status": "Processing"})
        store.seed(Collection.SHIPPING_RECEIVERS, {"id": "r1", "user_id": "u1", "is_default": False})

        await _make_service(store).submit_receiver_info(
            "s1", _make_receiver(), existing_receiver_id="r1", save_for_later=True
        )
        await drain(timeout=1)

        assert store.get(Collection.SHIPPING_RECEIVERS, "r1")["is_default"] is True

    @pytest.mark.asyncio()
    async def test_missing_field_rejected_locally(self, store):
        store.seed(Collection.SHIPPING, {"id": "s1", "status": "Waiting"})

        result = await _make_service(store).submit_receiver_info("s1", _make_receiver(receiver_phone="  "))

        assert result.failure == FailureKind.VALIDATION
        assert result.field == "receiver_phone"
        assert result.error == "Receiver phone number is required"
        assert store.fetch_calls == []

    @pytest.mark.asyncio()
    async def test_delivered_shipment_is_final(self, store):
        store.seed(Collection.SHIPPING, {"id": "s1", "status": "Delivered"})

        result = await _make_service(store).submit_receiver_info("s1", _make_receiver())

        assert result.failure == FailureKind.TRANSITION
        assert store.writes == []

    @pytest.mark.asyncio()
    async def test_address_book_failure_does_not_fail_submission(self, store, captured_events):
        store.seed(Collection.SHIPPING, {"id": "s1", "status": "Waiting"})
        store.fail_writes(Collection.SHIPPING_RECEIVERS, WriteError("shipping_receivers"))

        result = await _make_service(store).submit_receiver_info("s1", _make_receiver())
        await drain(timeout=1)

        assert result.ok is True
        assert store.get(Collection.SHIPPING, "s1")["status"] == "Processing"
        assert emitted(captured_events, EventType.SIDE_EFFECT_FAILED)[0].data["shipment_id"] == "s1"

    @pytest.mark.asyncio()
    async def test_list_saved_receivers_default_first(self, store):
        store.seed(
            Collection.SHIPPING_RECEIVERS,
            {"id": "r1", "user_id": "u1", "receiver_name": "Old", "is_default": False, "created_at": "2026-01-02"},
            {"id": "r2", "user_id": "u1", "receiver_name": "Home", "is_default": True, "created_at": "2026-01-01"},
            {"id": "r3", "user_id": "u2", "receiver_name": "Other", "is_default": True, "created_at": "2026-01-03"},
        )

        receivers = await _make_service(store).list_saved_receivers("u1")

        assert [r.receiver_name for r in receivers] == ["Home", "Old"]


class TestLabel:
    @pytest.mark.asyncio()
    async def test_set_and_clear(self, store, captured_events):
        store.seed(Collection.SHIPPING, {"id": "s1", "status": "Waiting"})
        service = _make_service(store)

        await service.set_shipment_label("s1", "  Carton A ")
        assert store.get(Collection.SHIPPING, "s1")["label"] == "Carton A"

        result = await service.set_shipment_label("s1", "   ")
        assert result.patch == {"label": None}
        assert store.get(Collection.SHIPPING, "s1")["label"] is None
        assert len(emitted(captured_events, EventType.LABEL_UPDATED)) == 2


# ── Price option selection ───────────────────────────────────────────


class TestSelectPriceOption:
    @pytest.mark.asyncio()
    async def test_select_populated_option(self, store, captured_events):
        store.seed(Collection.QUOTATIONS, _make_quotation())

        result = await _make_service(store).select_price_option("q1", 2)

        assert result.ok is True
        assert store.get(Collection.QUOTATIONS, "q1")["selected_option"] == 2
        assert emitted(captured_events, EventType.OPTION_SELECTED)[0].data == {"from_option": 1, "to_option": 2}

    @pytest.mark.asyncio()
    async def test_empty_option_is_refused(self, store):
        store.seed(Collection.QUOTATIONS, _make_quotation())

        result = await _make_service(store).select_price_option("q1", 3)

        assert result.failure == FailureKind.VALIDATION
        assert "no price option 3" in result.error

    @pytest.mark.asyncio()
    async def test_out_of_range(self, store):
        result = await _make_service(store).select_price_option("q1", 0)
        assert result.failure == FailureKind.VALIDATION

    @pytest.mark.asyncio()
    async def test_locked_after_payment(self, store):
        store.seed(Collection.QUOTATIONS, _make_quotation())
        store.seed(Collection.PAYMENTS, {"id": "p1", "user_id": "u1", "quotation_ids": "q1", "status": "Pending"})

        result = await _make_service(store).select_price_option("q1", 2)

        assert result.failure == FailureKind.TRANSITION
        assert "locked" in result.error

    @pytest.mark.asyncio()
    async def test_payment_by_another_actor_locks(self, store):
        store.seed(Collection.QUOTATIONS, _make_quotation())
        service = _make_service(store)
        payment = await service.create_payment("q1", "WISE", user_id="admin-7")
        await drain(timeout=1)
        assert payment.ok is True

        result = await service.select_price_option("q1", 2)

        assert result.failure == FailureKind.TRANSITION
        assert store.get(Collection.QUOTATIONS, "q1")["selected_option"] == 1

    @pytest.mark.asyncio()
    async def test_lock_via_reference_number(self, store):
        store.seed(Collection.QUOTATIONS, _make_quotation())
        store.seed(
            Collection.PAYMENTS,
            {"id": "p1", "user_id": "u1", "reference_number": "QT-1700000000000", "status": "Approved"},
        )

        result = await _make_service(store).select_price_option("q1", 2)

        assert result.failure == FailureKind.TRANSITION

    @pytest.mark.asyncio()
    async def test_rejected_payment_does_not_lock(self, store):
        store.seed(Collection.QUOTATIONS, _make_quotation())
        store.seed(Collection.PAYMENTS, {"id": "p1", "user_id": "u1", "quotation_ids": ["q1"], "status": "Rejected"})

        result = await _make_service(store).select_price_option("q1", 2)

        assert result.ok is True

    @pytest.mark.asyncio()
    async def test_lock_can_be_disabled(self, store):
        store.seed(Collection.QUOTATIONS, _make_quotation())
        store.seed(Collection.PAYMENTS, {"id": "p1", "user_id": "u1", "quotation_ids": ["q1"], "status": "Pending"})

        result = await _make_service(store, lock_selection_after_payment=False).select_price_option("q1", 2)

        assert result.ok is True


# ── Profiles ─────────────────────────────────────────────────────────


class TestProfileApproval:
    @pytest.mark.asyncio()
    async def test_toggle(self, store, captured_events):
        store.seed(Collection.PROFILES, {"id": "u1", "approve": False})

        result = await _make_service(store).set_profile_approval("u1", True, actor_id="admin")

        assert result.ok is True
        assert store.get(Collection.PROFILES, "u1")["approve"] is True
        assert "updated_at" in store.get(Collection.PROFILES, "u1")
        assert emitted(captured_events, EventType.PROFILE_APPROVAL_CHANGED)[0].actor_id == "admin"

    @pytest.mark.asyncio()
    async def test_missing_profile_is_a_write_error(self, store):
        result = await _make_service(store).set_profile_approval("ghost", True)
        assert result.failure == FailureKind.WRITE

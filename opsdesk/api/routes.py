"""Dashboard JSON API: enriched boards and transition endpoints.

Boards return 503 with a retry hint when their primary collection fails to
load; partially decorated boards still return 200 and list the failed joins.
Transition endpoints map TransitionResult failures onto HTTP status codes.
"""
# ruff: noqa: B008

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import JSONResponse

from opsdesk.admin.reconciliation_audit import reconciliation_audit
from opsdesk.errors import FetchError
from opsdesk.guard import InFlightGuard
from opsdesk.pipeline.service import FailureKind, PipelineService, TransitionResult
from opsdesk.reconciliation.views import PaymentBoard, ShipmentBoard
from opsdesk.schemas.api import (
    ApprovalRequest,
    CreatePaymentRequest,
    LabelRequest,
    ReceiverRequest,
    SelectOptionRequest,
    StatusRequest,
)
from opsdesk.schemas.records import Receiver
from opsdesk.store import RecordStore, create_record_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["dashboard"])

_FAILURE_STATUS: dict[FailureKind, int] = {
    FailureKind.VALIDATION: 422,
    FailureKind.TRANSITION: 409,
    FailureKind.BUSY: 409,
    FailureKind.NOT_FOUND: 404,
    FailureKind.FETCH: 503,
    FailureKind.WRITE: 502,
    FailureKind.UNKNOWN_OUTCOME: 504,
}

# ── Dependencies ─────────────────────────────────────────────────────

_store: RecordStore | None = None
_guard = InFlightGuard()


def get_record_store() -> RecordStore:
    global _store
    if _store is None:
        _store = create_record_store()
    return _store


def get_pipeline(store: RecordStore = Depends(get_record_store)) -> PipelineService:
    # One guard for the process, so overlapping requests on a record are refused
    return PipelineService(store, guard=_guard)


def _respond(result: TransitionResult) -> JSONResponse:
    body = result.model_dump(mode="json")
    if result.ok:
        return JSONResponse(body)
    if result.outcome_unknown:
        body["detail"] = "The write may have been applied. Refresh before retrying."
    return JSONResponse(body, status_code=_FAILURE_STATUS.get(result.failure, 500))


def _load_failed(exc: FetchError) -> JSONResponse:
    return JSONResponse({"detail": str(exc), "collection": exc.collection, "retry": True}, status_code=503)


# ── Boards ───────────────────────────────────────────────────────────


@router.get("/payments")
async def list_payments(
    q: str | None = Query(default=None),
    store: RecordStore = Depends(get_record_store),
) -> Any:
    """All payments with their profiles and quotations, optionally filtered by `q`."""
    board = PaymentBoard(store)
    try:
        await board.load()
    except FetchError as exc:
        return _load_failed(exc)
    views = board.search(q) if q else board.views
    return {
        "payments": [v.model_dump(mode="json") for v in views],
        "failed_joins": board.failures,
    }


@router.get("/users/{user_id}/shipments")
async def list_shipments(
    user_id: str,
    q: str | None = Query(default=None),
    quotation_id: str | None = Query(default=None),
    store: RecordStore = Depends(get_record_store),
) -> Any:
    """One user's shipments with their quotations. `quotation_id` narrows to one shipment."""
    board = ShipmentBoard(store, user_id)
    try:
        await board.load()
    except FetchError as exc:
        return _load_failed(exc)
    if quotation_id:
        found = board.find_by_quotation(quotation_id)
        views = [found] if found else []
    else:
        views = board.search(q) if q else board.views
    return {
        "shipments": [
            {**v.model_dump(mode="json"), "location_summary": v.shipment.location_summary}
            for v in views
        ],
        "failed_joins": board.failures,
    }


@router.get("/users/{user_id}/receivers")
async def list_receivers(user_id: str, pipeline: PipelineService = Depends(get_pipeline)) -> Any:
    try:
        receivers = await pipeline.list_saved_receivers(user_id)
    except FetchError as exc:
        return _load_failed(exc)
    return {"receivers": [r.model_dump() for r in receivers]}


@router.get("/reconciliation")
async def outstanding_drift() -> dict[str, Any]:
    """Records left inconsistent by failed side effects or unknown write outcomes."""
    return {
        "items": [
            {
                "collection": item.collection,
                "record_id": item.record_id,
                "reason": item.reason,
                "first_seen": item.first_seen.isoformat(),
                "data": item.data,
            }
            for item in reconciliation_audit.outstanding()
        ]
    }


# ── Transitions ──────────────────────────────────────────────────────


@router.post("/payments")
async def create_payment(
    body: CreatePaymentRequest,
    pipeline: PipelineService = Depends(get_pipeline),
) -> JSONResponse:
    return _respond(await pipeline.create_payment(body.quotation_id, body.method, user_id=body.user_id))


@router.post("/payments/{payment_id}/status")
async def set_payment_status(
    payment_id: str,
    body: StatusRequest,
    pipeline: PipelineService = Depends(get_pipeline),
    actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
) -> JSONResponse:
    return _respond(await pipeline.set_payment_status(payment_id, body.status, actor_id=actor_id))


@router.post("/shipments/{shipment_id}/status")
async def set_shipment_status(
    shipment_id: str,
    body: StatusRequest,
    pipeline: PipelineService = Depends(get_pipeline),
    actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
) -> JSONResponse:
    return _respond(await pipeline.set_shipment_status(shipment_id, body.status, actor_id=actor_id))


@router.post("/shipments/{shipment_id}/receiver")
async def submit_receiver(
    shipment_id: str,
    body: ReceiverRequest,
    pipeline: PipelineService = Depends(get_pipeline),
) -> JSONResponse:
    receiver = Receiver(
        receiver_name=body.receiver_name,
        receiver_phone=body.receiver_phone,
        receiver_address=body.receiver_address,
    )
    result = await pipeline.submit_receiver_info(
        shipment_id,
        receiver,
        user_id=body.user_id,
        save_for_later=body.save_for_later,
        existing_receiver_id=body.existing_receiver_id,
    )
    return _respond(result)


@router.post("/shipments/{shipment_id}/label")
async def set_label(
    shipment_id: str,
    body: LabelRequest,
    pipeline: PipelineService = Depends(get_pipeline),
    actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
) -> JSONResponse:
    return _respond(await pipeline.set_shipment_label(shipment_id, body.label, actor_id=actor_id))


@router.post("/quotations/{quotation_id}/selected-option")
async def select_option(
    quotation_id: str,
    body: SelectOptionRequest,
    pipeline: PipelineService = Depends(get_pipeline),
    actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
) -> JSONResponse:
    return _respond(await pipeline.select_price_option(quotation_id, body.option, actor_id=actor_id))


@router.post("/profiles/{profile_id}/approval")
async def set_approval(
    profile_id: str,
    body: ApprovalRequest,
    pipeline: PipelineService = Depends(get_pipeline),
    actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
) -> JSONResponse:
    return _respond(await pipeline.set_profile_approval(profile_id, body.approve, actor_id=actor_id))

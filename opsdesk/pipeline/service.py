"""Imperative transition functions over quotations, payments, shipments and profiles.

Every public method returns a TransitionResult instead of raising: the caller
(API route or UI layer) renders `error` inline and offers a retry. A write that
timed out comes back with `outcome_unknown=True` and no patch, because the
remote write may still have landed.

Each operation holds an InFlightGuard key for its whole duration, so a second
click on the same record is refused rather than written twice.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, computed_field

from opsdesk.admin.events import emit
from opsdesk.config import PipelineSettings, settings
from opsdesk.errors import (
    FetchError,
    FieldValidationError,
    InvalidTransitionError,
    OperationInProgressError,
    PriceOptionsError,
    RecordNotFoundError,
    WriteError,
    WriteTimeoutError,
)
from opsdesk.guard import InFlightGuard
from opsdesk.models.enums import (
    Collection,
    PaymentMethod,
    PaymentStatus,
    QuotationStatus,
    ShipmentStatus,
)
from opsdesk.pipeline.machine import StatusChange, StatusMachine
from opsdesk.pipeline.saga import RetryPolicy, Saga, SagaStep
from opsdesk.pricing import generate_payment_reference, payment_total
from opsdesk.reconciliation.references import describe
from opsdesk.schemas.events import EventType, SystemEvent
from opsdesk.schemas.records import OPTION_NUMBERS, Quotation, Receiver
from opsdesk.store.base import Eq, Record, RecordStore, write_within

logger = logging.getLogger(__name__)

# Collections whose rows carry an updated_at column
_TOUCHED = {Collection.QUOTATIONS, Collection.PROFILES}

_RECEIVER_LABELS = {
    "receiver_name": "Receiver name",
    "receiver_phone": "Receiver phone number",
    "receiver_address": "Receiver address",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class FailureKind(str, Enum):
    VALIDATION = "validation"
    TRANSITION = "transition"
    BUSY = "busy"
    NOT_FOUND = "not_found"
    FETCH = "fetch"
    WRITE = "write"
    UNKNOWN_OUTCOME = "unknown_outcome"


class TransitionResult(BaseModel):
    """Success/failure of one transition function.

    `patch` is what the caller should apply to its local copy (boards expose
    `apply_patch`). It is empty on failure and on an unknown outcome.
    """

    ok: bool
    record_id: str | None = None
    patch: dict[str, Any] = Field(default_factory=dict)
    record: dict[str, Any] | None = None
    noop: bool = False
    error: str | None = None
    failure: FailureKind | None = None
    field: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def outcome_unknown(self) -> bool:
        return self.failure == FailureKind.UNKNOWN_OUTCOME

    @classmethod
    def success(
        cls,
        record_id: str,
        patch: dict[str, Any] | None = None,
        record: dict[str, Any] | None = None,
        noop: bool = False,
    ) -> TransitionResult:
        return cls(ok=True, record_id=record_id, patch=patch or {}, record=record, noop=noop)

    @classmethod
    def fail(cls, record_id: str | None, kind: FailureKind, exc: Exception) -> TransitionResult:
        return cls(
            ok=False,
            record_id=record_id,
            error=str(exc),
            failure=kind,
            field=getattr(exc, "field", None),
        )


class PipelineService:
    """Status pipeline and cross-entity side effects over a RecordStore."""

    def __init__(
        self,
        store: RecordStore,
        guard: InFlightGuard | None = None,
        config: PipelineSettings | None = None,
        write_timeout: float | None = None,
    ) -> None:
        self._store = store
        self._guard = guard or InFlightGuard()
        self._config = config or settings.pipeline
        self._write_timeout = write_timeout if write_timeout is not None else settings.store.store_write_timeout

    # ── Store access ─────────────────────────────────────────────────

    async def _load(self, collection: Collection, record_id: str) -> Record:
        rows = await self._store.fetch_by(collection, {"id": Eq(record_id)})
        if not rows:
            raise RecordNotFoundError(collection.value, record_id)
        return rows[0]

    async def _update(self, collection: Collection, record_id: str, patch: Record) -> Record:
        if collection in _TOUCHED:
            patch = {**patch, "updated_at": _now()}
        updated = await write_within(
            self._store.update(collection, record_id, patch), collection, record_id, self._write_timeout
        )
        return updated or {"id": record_id, **patch}

    async def _insert(self, collection: Collection, record: Record) -> Record:
        created = await write_within(
            self._store.insert(collection, record), collection, record.get("id"), self._write_timeout
        )
        return created or record

    # ── Error boundary ───────────────────────────────────────────────

    async def _execute(
        self,
        key: str,
        collection: Collection,
        record_id: str | None,
        operation: Callable[[], Awaitable[TransitionResult]],
    ) -> TransitionResult:
        """Run `operation` under the guard and turn domain errors into results."""
        try:
            async with self._guard.hold(key):
                return await operation()
        except OperationInProgressError as exc:
            return TransitionResult.fail(record_id, FailureKind.BUSY, exc)
        except RecordNotFoundError as exc:
            logger.warning("Transition target missing: %s", exc)
            return TransitionResult.fail(record_id, FailureKind.NOT_FOUND, exc)
        except FieldValidationError as exc:
            return TransitionResult.fail(record_id, FailureKind.VALIDATION, exc)
        except InvalidTransitionError as exc:
            logger.info("Refused transition on %s/%s: %s", collection.value, record_id, exc)
            return TransitionResult.fail(record_id, FailureKind.TRANSITION, exc)
        except FetchError as exc:
            logger.error("Fetch failed during %s: %s", key, exc)
            return TransitionResult.fail(record_id, FailureKind.FETCH, exc)
        except WriteTimeoutError as exc:
            logger.error("Write outcome unknown for %s/%s: %s", exc.collection, exc.record_id, exc)
            await emit(SystemEvent(
                event_type=EventType.WRITE_OUTCOME_UNKNOWN,
                collection=exc.collection,
                record_id=exc.record_id,
                data={"operation": key, "timeout": exc.timeout},
                source_module="pipeline.service",
            ))
            return TransitionResult.fail(exc.record_id or record_id, FailureKind.UNKNOWN_OUTCOME, exc)
        except WriteError as exc:
            logger.error("Write failed for %s/%s: %s", exc.collection, exc.record_id, exc)
            await emit(SystemEvent(
                event_type=EventType.WRITE_FAILED,
                collection=exc.collection,
                record_id=exc.record_id,
                data={"operation": key, "error": str(exc)},
                source_module="pipeline.service",
            ))
            return TransitionResult.fail(record_id, FailureKind.WRITE, exc)

    async def _status_changed(
        self,
        collection: Collection,
        record_id: str,
        change: StatusChange,
        actor_id: str | None,
        **data: Any,
    ) -> None:
        logger.info(
            "Status transition: %s --> %s (%s/%s)",
            change.from_status.value if change.from_status is not None else "?",
            change.to_status.value,
            collection.value,
            record_id,
        )
        await emit(SystemEvent(
            event_type=EventType.STATUS_CHANGED,
            collection=collection.value,
            record_id=record_id,
            actor_id=actor_id,
            data={**change.as_event_data(), **data},
            source_module="pipeline.service",
        ))

    # ── Status transitions ───────────────────────────────────────────

    async def _set_status(
        self,
        collection: Collection,
        record_id: str,
        status: Any,
        actor_id: str | None,
        extra: Callable[[Record, StatusChange], Record] | None = None,
    ) -> TransitionResult:
        async def run() -> TransitionResult:
            record = await self._load(collection, record_id)
            change = StatusMachine(collection, record_id, record.get("status")).validate(status)
            if change.is_noop:
                return TransitionResult.success(record_id, record=record, noop=True)

            patch: Record = {"status": change.to_status.value}
            if extra is not None:
                patch.update(extra(record, change))
            updated = await self._update(collection, record_id, patch)
            await self._status_changed(collection, record_id, change, actor_id)
            return TransitionResult.success(record_id, patch=patch, record=updated)

        return await self._execute(f"{collection.value}:{record_id}", collection, record_id, run)

    async def set_payment_status(
        self,
        payment_id: str,
        status: PaymentStatus | str,
        actor_id: str | None = None,
    ) -> TransitionResult:
        """Admin review of a payment: Pending → Approved | Rejected."""
        return await self._set_status(Collection.PAYMENTS, payment_id, status, actor_id)

    async def approve_payment(self, payment_id: str, actor_id: str | None = None) -> TransitionResult:
        return await self.set_payment_status(payment_id, PaymentStatus.APPROVED, actor_id)

    async def reject_payment(self, payment_id: str, actor_id: str | None = None) -> TransitionResult:
        return await self.set_payment_status(payment_id, PaymentStatus.REJECTED, actor_id)

    async def set_shipment_status(
        self,
        shipment_id: str,
        status: ShipmentStatus | str,
        actor_id: str | None = None,
    ) -> TransitionResult:
        """Move a shipment along Waiting → Processing → In Transit → Delivered (or Delayed)."""

        def delivered_stamp(record: Record, change: StatusChange) -> Record:
            if change.to_status == ShipmentStatus.DELIVERED and not record.get("delivered_at"):
                return {"delivered_at": _now()}
            return {}

        return await self._set_status(Collection.SHIPPING, shipment_id, status, actor_id, extra=delivered_stamp)

    # ── Quotation option selection ───────────────────────────────────

    async def _has_active_payment(self, quotation: Quotation) -> bool:
        """True when a non-rejected payment references the quotation (by id or business reference)."""
        # Any actor may pay for a quotation, and quotation_ids is stored as either
        # an array or a delimited string, so no server-side filter is exact
        payments = await self._store.fetch_by(Collection.PAYMENTS)
        for payment in payments:
            if StatusMachine.parse(Collection.PAYMENTS, payment.get("status")) == PaymentStatus.REJECTED:
                continue
            ref = describe(payment.get("quotation_ids"), fallback=payment.get("reference_number"))
            if quotation.id in ref.identifiers:
                return True
            if not ref.identifiers and ref.fallback and ref.fallback == quotation.quotation_id:
                return True
        return False

    async def select_price_option(
        self,
        quotation_id: str,
        option_number: int,
        actor_id: str | None = None,
    ) -> TransitionResult:
        """Mark one of the quotation's populated price options (1-based) as selected."""

        async def run() -> TransitionResult:
            if option_number not in OPTION_NUMBERS:
                raise PriceOptionsError("selected_option", f"Price option must be one of {list(OPTION_NUMBERS)}")

            record = await self._load(Collection.QUOTATIONS, quotation_id)
            quotation = Quotation.from_record(record)
            if quotation.option(option_number) is None:
                raise PriceOptionsError(
                    "selected_option",
                    f"Quotation {quotation.quotation_id or quotation_id} has no price option {option_number}",
                )
            if quotation.selected_option == option_number:
                return TransitionResult.success(quotation_id, record=record, noop=True)

            if self._config.lock_selection_after_payment and await self._has_active_payment(quotation):
                raise InvalidTransitionError(
                    f"Price option is locked: a payment already references quotation "
                    f"{quotation.quotation_id or quotation_id}"
                )

            patch: Record = {"selected_option": option_number}
            updated = await self._update(Collection.QUOTATIONS, quotation_id, patch)
            logger.info("Selected option %d on quotation %s", option_number, quotation_id)
            await emit(SystemEvent(
                event_type=EventType.OPTION_SELECTED,
                collection=Collection.QUOTATIONS.value,
                record_id=quotation_id,
                actor_id=actor_id,
                data={"from_option": quotation.selected_option, "to_option": option_number},
                source_module="pipeline.service",
            ))
            return TransitionResult.success(quotation_id, patch=patch, record=updated)

        return await self._execute(f"quotations:{quotation_id}", Collection.QUOTATIONS, quotation_id, run)

    # ── Shipment receiver / label ────────────────────────────────────

    @staticmethod
    def validate_receiver(receiver: Receiver) -> Receiver:
        """Trim the receiver fields and require all three.

        Raises:
            FieldValidationError: Naming the first missing field.
        """
        cleaned = Receiver(**{
            name: (getattr(receiver, name) or "").strip() for name in _RECEIVER_LABELS
        })
        for name, label in _RECEIVER_LABELS.items():
            if not getattr(cleaned, name):
                raise FieldValidationError(name, f"{label} is required")
        return cleaned

    async def submit_receiver_info(
        self,
        shipment_id: str,
        receiver: Receiver,
        user_id: str | None = None,
        save_for_later: bool = False,
        existing_receiver_id: str | None = None,
    ) -> TransitionResult:
        """Attach receiver details to a shipment.

        A Waiting shipment moves to Processing; any later submission only
        replaces the receiver fields. The shipment write is the operation; the
        address-book entry (``shipping_receivers``) is a best-effort follow-up.
        """

        async def run() -> TransitionResult:
            cleaned = self.validate_receiver(receiver)
            record = await self._load(Collection.SHIPPING, shipment_id)
            machine = StatusMachine(Collection.SHIPPING, shipment_id, record.get("status"))
            if machine.is_terminal:
                raise InvalidTransitionError(
                    f"Shipment {shipment_id} is {machine.current_status.value}; receiver details are final"
                )

            patch: Record = cleaned.as_patch()
            change: StatusChange | None = None
            if machine.current_status == ShipmentStatus.WAITING:
                change = machine.validate(ShipmentStatus.PROCESSING)
                patch["status"] = change.to_status.value

            owner = user_id or record.get("user_id")
            steps = [SagaStep("update_shipment", lambda: self._update(Collection.SHIPPING, shipment_id, patch))]
            if existing_receiver_id is None:
                steps.append(SagaStep(
                    "save_receiver",
                    lambda: self._insert(Collection.SHIPPING_RECEIVERS, {
                        "id": str(uuid4()),
                        "user_id": owner,
                        "shipping_id": shipment_id,
                        **cleaned.as_patch(),
                        "is_default": save_for_later,
                    }),
                    critical=False,
                    retry=self._retry_policy(),
                ))
            elif save_for_later:
                steps.append(SagaStep(
                    "mark_default_receiver",
                    lambda: self._update(Collection.SHIPPING_RECEIVERS, existing_receiver_id, {"is_default": True}),
                    critical=False,
                    retry=self._retry_policy(),
                ))

            saga = Saga(
                "submit_receiver_info",
                steps,
                collection=Collection.SHIPPING_RECEIVERS.value,
                record_id=existing_receiver_id,
                context={"shipment_id": shipment_id},
            )
            outcome = await saga.run()
            if not outcome.ok:
                raise outcome.failed.error

            if change is not None:
                await self._status_changed(Collection.SHIPPING, shipment_id, change, user_id)
            await emit(SystemEvent(
                event_type=EventType.RECEIVER_SUBMITTED,
                collection=Collection.SHIPPING.value,
                record_id=shipment_id,
                actor_id=user_id,
                data={"status_changed": change is not None, "save_for_later": save_for_later},
                source_module="pipeline.service",
            ))
            return TransitionResult.success(shipment_id, patch=patch, record=outcome.result_of("update_shipment"))

        return await self._execute(f"shipping:{shipment_id}", Collection.SHIPPING, shipment_id, run)

    async def set_shipment_label(
        self,
        shipment_id: str,
        label: str | None,
        actor_id: str | None = None,
    ) -> TransitionResult:
        """Set the free-text label; a blank label clears it."""

        async def run() -> TransitionResult:
            patch: Record = {"label": (label or "").strip() or None}
            updated = await self._update(Collection.SHIPPING, shipment_id, patch)
            await emit(SystemEvent(
                event_type=EventType.LABEL_UPDATED,
                collection=Collection.SHIPPING.value,
                record_id=shipment_id,
                actor_id=actor_id,
                data={"label": patch["label"]},
                source_module="pipeline.service",
            ))
            return TransitionResult.success(shipment_id, patch=patch, record=updated)

        return await self._execute(f"shipping:{shipment_id}", Collection.SHIPPING, shipment_id, run)

    async def list_saved_receivers(self, user_id: str) -> list[Receiver]:
        """The user's address book, default entries first.

        Raises:
            FetchError: If the address book cannot be loaded.
        """
        rows = await self._store.fetch_by(
            Collection.SHIPPING_RECEIVERS,
            {"user_id": Eq(user_id)},
            order_by="created_at",
            descending=True,
        )
        rows.sort(key=lambda row: not row.get("is_default"))
        return [Receiver.model_validate(row) for row in rows]

    # ── Payment creation ─────────────────────────────────────────────

    def _retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            attempts=self._config.side_effect_attempts,
            backoff=self._config.side_effect_backoff,
        )

    async def _approve_quotation(self, quotation: Quotation) -> Record | None:
        """Best-effort Pending → Approved after a payment landed."""
        change = StatusMachine(Collection.QUOTATIONS, quotation.id, quotation.status).validate(
            QuotationStatus.APPROVED
        )
        if change.is_noop:
            return None
        updated = await self._update(Collection.QUOTATIONS, quotation.id, {"status": change.to_status.value})
        await self._status_changed(Collection.QUOTATIONS, quotation.id, change, None, trigger="payment_created")
        return updated

    async def create_payment(
        self,
        quotation_id: str,
        method: PaymentMethod | str,
        user_id: str | None = None,
    ) -> TransitionResult:
        """Create a Pending payment for the quotation's selected option.

        Returns as soon as the payment row is written. Approving the quotation
        runs afterwards in the background; if it keeps failing the payment
        stands and a SIDE_EFFECT_FAILED event records the drift.
        """
        payment_id = str(uuid4())

        async def run() -> TransitionResult:
            try:
                settlement = PaymentMethod(method)
            except ValueError:
                valid = [m.value for m in PaymentMethod]
                raise FieldValidationError("method", f"Unknown payment method {method!r} (valid: {valid})") from None

            quotation = Quotation.from_record(await self._load(Collection.QUOTATIONS, quotation_id))
            if StatusMachine.parse(Collection.QUOTATIONS, quotation.status) == QuotationStatus.REJECTED:
                raise InvalidTransitionError(f"Quotation {quotation.quotation_id or quotation_id} was rejected")
            option = quotation.selected
            if option is None:
                raise PriceOptionsError("selected_option", "Select a price option before paying")
            if option.unit_price is None:
                raise PriceOptionsError(
                    f"unit_price_option{option.number}",
                    f"Price option {option.number} has no unit price",
                )

            amount = payment_total(option.unit_price, quotation.quantity, quotation.service_fee)
            record: Record = {
                "id": payment_id,
                "user_id": user_id or quotation.user_id,
                "quotation_ids": [quotation.id],
                "total_amount": amount,
                "method": settlement.value,
                "status": PaymentStatus.PENDING.value,
                "reference_number": generate_payment_reference(),
                "created_at": _now(),
            }

            saga = Saga(
                "create_payment",
                [
                    SagaStep("insert_payment", lambda: self._insert(Collection.PAYMENTS, record)),
                    SagaStep(
                        "approve_quotation",
                        lambda: self._approve_quotation(quotation),
                        critical=False,
                        retry=self._retry_policy(),
                    ),
                ],
                collection=Collection.QUOTATIONS.value,
                record_id=quotation.id,
                context={"payment_id": payment_id, "reference_number": record["reference_number"]},
            )
            outcome = await saga.run()
            if not outcome.ok:
                raise outcome.failed.error

            created = outcome.result_of("insert_payment") or record
            logger.info(
                "Payment %s created for quotation %s (%s %s)",
                record["reference_number"],
                quotation.id,
                amount,
                settlement.value,
            )
            await emit(SystemEvent(
                event_type=EventType.PAYMENT_CREATED,
                collection=Collection.PAYMENTS.value,
                record_id=payment_id,
                actor_id=user_id,
                data={
                    "quotation_id": quotation.id,
                    "reference_number": record["reference_number"],
                    "total_amount": str(amount),
                    "method": settlement.value,
                },
                source_module="pipeline.service",
            ))
            return TransitionResult.success(payment_id, patch=record, record=created)

        return await self._execute(f"create_payment:{quotation_id}", Collection.PAYMENTS, payment_id, run)

    # ── Profiles ─────────────────────────────────────────────────────

    async def set_profile_approval(
        self,
        profile_id: str,
        approved: bool,
        actor_id: str | None = None,
    ) -> TransitionResult:
        async def run() -> TransitionResult:
            patch: Record = {"approve": approved}
            updated = await self._update(Collection.PROFILES, profile_id, patch)
            await emit(SystemEvent(
                event_type=EventType.PROFILE_APPROVAL_CHANGED,
                collection=Collection.PROFILES.value,
                record_id=profile_id,
                actor_id=actor_id,
                data={"approve": approved},
                source_module="pipeline.service",
            ))
            return TransitionResult.success(profile_id, patch=patch, record=updated)

        return await self._execute(f"profiles:{profile_id}", Collection.PROFILES, profile_id, run)

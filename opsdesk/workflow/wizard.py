"""Create-quotation wizard: product → shipping → service → complete.

Moving forward validates the current step; moving back never does. The only
remote side effect is the quotation insert on `submit()`, so an abandoned
wizard leaves nothing behind in the record store. With a draft store the form
fields survive a reload.
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

from opsdesk.admin.events import emit
from opsdesk.config import settings
from opsdesk.drafts.session import DraftSession
from opsdesk.drafts.store import DraftKey, DraftStore
from opsdesk.errors import InvalidTransitionError
from opsdesk.guard import InFlightGuard
from opsdesk.models.enums import Collection, QuotationStatus
from opsdesk.pricing import generate_quotation_reference
from opsdesk.schemas.events import EventType, SystemEvent
from opsdesk.store.base import Record, RecordStore, write_within
from opsdesk.workflow.steps import (
    COMPLETE,
    PRODUCT,
    SERVICE,
    STEP_TITLES,
    VALIDATORS,
    parse_quantity,
    stored_shipping_method,
    validate_step,
)

logger = logging.getLogger(__name__)

FORM = "quotation_wizard"

WIZARD_FIELDS: dict[str, Any] = {
    "product_name": "",
    "product_url": "",
    "quantity": "",
    "product_images": [],
    "shipping_country": "",
    "shipping_city": "",
    "shipping_method": "",
    "service_type": "",
}


class QuotationWizard:
    """One user's pass through the create-quotation form."""

    def __init__(
        self,
        store: RecordStore,
        user_id: str | None,
        guard: InFlightGuard | None = None,
        drafts: DraftStore[DraftKey] | None = None,
        draft_id: str | None = None,
        write_timeout: float | None = None,
    ) -> None:
        self._store = store
        self.user_id = user_id
        self._guard = guard or InFlightGuard()
        self.draft_id = draft_id or user_id or str(uuid4())
        self._session: DraftSession[DraftKey] | None = None
        if drafts is not None:
            self._session = DraftSession(drafts, DraftKey(FORM, self.draft_id), fields=tuple(WIZARD_FIELDS))
        self._write_timeout = write_timeout if write_timeout is not None else settings.store.store_write_timeout
        self.step = PRODUCT
        self.form: dict[str, Any] = {k: (list(v) if isinstance(v, list) else v) for k, v in WIZARD_FIELDS.items()}
        self.created: Record | None = None

    @property
    def title(self) -> str:
        return STEP_TITLES[self.step]

    @property
    def is_complete(self) -> bool:
        return self.step == COMPLETE

    @property
    def _guard_key(self) -> str:
        return f"{FORM}:{self.draft_id}"

    async def open(self) -> dict[str, Any]:
        """Restore saved form fields, if a draft store is attached."""
        if self._session is not None:
            restored = await self._session.open(self.form)
            self.form.update(restored)
        return dict(self.form)

    async def set_field(self, name: str, value: Any) -> None:
        if name not in WIZARD_FIELDS:
            raise KeyError(f"{name} is not a wizard field")
        changes = {name: value}
        # Methods offered depend on the destination, so a new country resets the choice
        if name == "shipping_country" and value != self.form.get("shipping_country"):
            changes["shipping_method"] = ""
        self.form.update(changes)
        if self._session is not None:
            await self._session.update_many(changes)

    def next(self) -> int:
        """Validate the current step and advance.

        Raises:
            StepValidationError: The current step is incomplete; the step does not change.
            InvalidTransitionError: On the last input step (use submit) or after completion.
        """
        if self.step >= SERVICE:
            raise InvalidTransitionError(
                "Wizard is complete" if self.is_complete else "Submit to finish the last step"
            )
        validate_step(self.step, self.form)
        self.step += 1
        logger.debug("Wizard %s advanced to step %d", self.draft_id, self.step)
        return self.step

    def back(self) -> int:
        if PRODUCT < self.step < COMPLETE:
            self.step -= 1
        return self.step

    def build_record(self) -> Record:
        return {
            "id": str(uuid4()),
            "quotation_id": generate_quotation_reference(),
            "user_id": self.user_id,
            "product_name": self.form["product_name"].strip(),
            "product_url": (self.form.get("product_url") or "").strip() or None,
            "quantity": parse_quantity(self.form["quantity"]),
            "image_url": self.form["product_images"][0] if self.form.get("product_images") else None,
            "product_images": list(self.form.get("product_images") or []),
            "shipping_country": self.form["shipping_country"].strip(),
            "shipping_city": self.form["shipping_city"].strip(),
            "shipping_method": stored_shipping_method(self.form["shipping_method"]).value,
            "service_type": self.form["service_type"].strip(),
            "status": QuotationStatus.PENDING.value,
            "title_option1": "",
            "total_price_option1": "0",
            "delivery_time_option1": "To be determined",
        }

    async def submit(self) -> Record:
        """Re-validate every step and insert the quotation.

        Raises:
            OperationInProgressError: A submit for this wizard is already running.
            StepValidationError: Some step is incomplete; nothing is written.
            InvalidTransitionError: The wizard was already submitted.
            WriteError: The insert failed (WriteTimeoutError when the outcome is unknown).
        """
        async with self._guard.hold(self._guard_key):
            if self.is_complete:
                raise InvalidTransitionError("Quotation already submitted")
            for step in VALIDATORS:
                validate_step(step, self.form)

            record = self.build_record()
            created = await write_within(
                self._store.insert(Collection.QUOTATIONS, record),
                Collection.QUOTATIONS,
                record["id"],
                self._write_timeout,
            )
            self.created = created or record
            self.step = COMPLETE
            if self._session is not None:
                await self._session.clear()

            logger.info("Quotation %s submitted by %s", record["quotation_id"], self.user_id)
            await emit(SystemEvent(
                event_type=EventType.QUOTATION_SUBMITTED,
                collection=Collection.QUOTATIONS.value,
                record_id=record["id"],
                actor_id=self.user_id,
                data={"quotation_id": record["quotation_id"], "product_name": record["product_name"]},
                source_module="workflow.wizard",
            ))
            return self.created

    async def cancel(self) -> None:
        """Abandon the wizard; nothing was written remotely."""
        if self._session is not None:
            await self._session.cancel()
        self.step = PRODUCT

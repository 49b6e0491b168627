"""Receiver details form for a shipment, with draft recovery."""

from __future__ import annotations

from typing import Any

from opsdesk.drafts.session import DraftSession
from opsdesk.drafts.store import Draft, DraftKey, DraftStore
from opsdesk.pipeline.service import PipelineService, TransitionResult
from opsdesk.schemas.records import Receiver

FORM = "receiver_info"
RECEIVER_FIELDS: tuple[str, ...] = tuple(Receiver.model_fields)


class ReceiverForm:
    """Draft-backed receiver form that submits through the status pipeline."""

    def __init__(self, pipeline: PipelineService, drafts: DraftStore[DraftKey], shipment_id: str) -> None:
        self._pipeline = pipeline
        self.shipment_id = shipment_id
        self.session: DraftSession[DraftKey] = DraftSession(
            drafts, DraftKey(FORM, shipment_id), fields=RECEIVER_FIELDS
        )

    async def open(self, shipment: dict[str, Any] | None = None, saved: Receiver | None = None) -> Draft:
        """Open over the shipment's current receiver, falling back to a saved address."""
        snapshot = {f: (shipment or {}).get(f) for f in RECEIVER_FIELDS}
        if saved is not None:
            for f, value in saved.as_patch().items():
                snapshot[f] = snapshot[f] or value
        return await self.session.open(snapshot)

    async def set_field(self, field: str, value: str | None) -> None:
        await self.session.update(field, value)

    async def use_saved(self, saved: Receiver) -> None:
        await self.session.update_many(saved.as_patch())

    async def submit(
        self,
        user_id: str | None = None,
        save_for_later: bool = False,
        existing_receiver_id: str | None = None,
    ) -> TransitionResult:
        """Submit the receiver; the draft is dropped only when the write succeeded."""
        result = await self._pipeline.submit_receiver_info(
            self.shipment_id,
            Receiver.model_validate(self.session.values),
            user_id=user_id,
            save_for_later=save_for_later,
            existing_receiver_id=existing_receiver_id,
        )
        if result.ok:
            await self.session.clear()
        return result

    async def cancel(self) -> None:
        await self.session.cancel()

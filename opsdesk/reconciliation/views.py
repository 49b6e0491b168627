"""Enriched read models and the boards that hold them.

A board loads its primary collection through the CollectionJoiner, keeps the
enriched views in memory, and applies confirmed write patches locally so the
UI reflects a write immediately; `load()` again for an authoritative refetch.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel, Field

from opsdesk.admin.events import emit
from opsdesk.errors import FetchError
from opsdesk.models.enums import Collection
from opsdesk.reconciliation.joiner import CollectionJoiner, Decoration, JoinedRecord, JoinSpec
from opsdesk.reconciliation.references import describe, resolve_identifiers
from opsdesk.schemas.events import EventType, SystemEvent
from opsdesk.schemas.records import Payment, Profile, Quotation, Shipment
from opsdesk.store.base import Eq, Record, RecordStore

logger = logging.getLogger(__name__)

# ── Join specs ───────────────────────────────────────────────────────

PAYMENT_JOINS: tuple[JoinSpec, ...] = (
    JoinSpec(
        name="profile",
        collection=Collection.PROFILES,
        reference=lambda row: describe(row.get("user_id")),
    ),
    JoinSpec(
        name="quotations",
        collection=Collection.QUOTATIONS,
        reference=lambda row: describe(row.get("quotation_ids"), fallback=row.get("reference_number")),
        fallback_column="quotation_id",
    ),
)

SHIPMENT_JOINS: tuple[JoinSpec, ...] = (
    JoinSpec(
        name="quotation",
        collection=Collection.QUOTATIONS,
        reference=lambda row: describe(row.get("quotation_id")),
    ),
)


# ── Views ────────────────────────────────────────────────────────────


class PaymentView(BaseModel):
    """A payment with its profile and quotations resolved.

    `quotations is None` means the quotations collection could not be loaded;
    an empty list means it loaded and nothing matched.
    """

    payment: Payment
    profile: Profile | None = None
    profile_loaded: bool = True
    quotations: list[Quotation] | None = None
    quotation_ids: list[str] = Field(default_factory=list)
    record: dict[str, Any] = Field(default_factory=dict, exclude=True)

    @classmethod
    def build(cls, joined: JoinedRecord) -> PaymentView:
        profile_dec = joined.decorations.get("profile", Decoration.unavailable())
        quote_dec = joined.decorations.get("quotations", Decoration.unavailable())
        return cls(
            payment=Payment.model_validate(joined.record),
            profile=Profile.model_validate(profile_dec.first) if profile_dec.first else None,
            profile_loaded=profile_dec.fetched,
            quotations=[Quotation.from_record(q) for q in quote_dec.records] if quote_dec.fetched else None,
            quotation_ids=resolve_identifiers(joined.record.get("quotation_ids")),
            record=dict(joined.record),
        )

    def matches(self, query: str) -> bool:
        """Case-insensitive substring search across the board columns."""
        needle = query.strip().lower()
        if not needle:
            return True
        p = self.payment
        haystack = [
            p.id,
            p.user_id,
            p.reference_number,
            p.method,
            p.status,
            self.profile.email if self.profile else None,
            self.profile.full_name if self.profile else None,
        ]
        return any(needle in value.lower() for value in haystack if value)


class ShipmentView(BaseModel):
    """A shipment with its quotation resolved (None when missing or not loaded)."""

    shipment: Shipment
    quotation: Quotation | None = None
    quotation_loaded: bool = True
    record: dict[str, Any] = Field(default_factory=dict, exclude=True)

    @classmethod
    def build(cls, joined: JoinedRecord) -> ShipmentView:
        dec = joined.decorations.get("quotation", Decoration.unavailable())
        return cls(
            shipment=Shipment.model_validate(joined.record),
            quotation=Quotation.from_record(dec.first) if dec.first else None,
            quotation_loaded=dec.fetched,
            record=dict(joined.record),
        )

    def matches(self, query: str) -> bool:
        needle = query.strip().lower()
        if not needle:
            return True
        s, q = self.shipment, self.quotation
        haystack = [
            s.id,
            s.status,
            s.location,
            s.label,
            q.quotation_id if q else None,
            q.product_name if q else None,
        ]
        return any(needle in value.lower() for value in haystack if value)


# ── Boards ───────────────────────────────────────────────────────────


class _Board:
    """Shared load / error-state handling for the dashboard boards."""

    primary: Collection
    specs: Sequence[JoinSpec]

    def __init__(self, store: RecordStore) -> None:
        self._joiner = CollectionJoiner(store)
        self.error: str | None = None
        self.failures: dict[str, str] = {}

    async def _load_rows(self, filters: dict[str, Eq] | None = None) -> list[JoinedRecord]:
        self.error = None
        try:
            result = await self._joiner.load(self.primary, self.specs, filters=filters)
        except FetchError as exc:
            self.error = str(exc)
            logger.error("Board load failed for %s: %s", self.primary.value, exc)
            await emit(SystemEvent(
                event_type=EventType.COLLECTION_FETCH_FAILED,
                collection=self.primary.value,
                data={"primary": True, "error": str(exc)},
                source_module="reconciliation.views",
            ))
            raise

        self.failures = result.failures
        await emit(SystemEvent(
            event_type=EventType.BOARD_LOADED,
            collection=self.primary.value,
            data={"rows": len(result.rows), "failed_joins": sorted(result.failures)},
            source_module="reconciliation.views",
        ))
        return result.rows


class PaymentBoard(_Board):
    """All payments, newest first, with profiles and quotations resolved."""

    primary = Collection.PAYMENTS
    specs = PAYMENT_JOINS

    def __init__(self, store: RecordStore) -> None:
        super().__init__(store)
        self.views: list[PaymentView] = []

    async def load(self) -> list[PaymentView]:
        """Fetch and join. Raises FetchError (with `self.error` set) if payments fail to load."""
        rows = await self._load_rows()
        self.views = [PaymentView.build(row) for row in rows]
        return self.views

    def search(self, query: str) -> list[PaymentView]:
        return [v for v in self.views if v.matches(query)]

    def get(self, payment_id: str) -> PaymentView | None:
        return next((v for v in self.views if v.payment.id == payment_id), None)

    def find_by_reference(self, reference_number: str) -> PaymentView | None:
        return next((v for v in self.views if v.payment.reference_number == reference_number), None)

    def apply_patch(self, payment_id: str, patch: Record) -> PaymentView | None:
        """Patch a loaded payment in place after a confirmed write."""
        for pos, view in enumerate(self.views):
            if view.payment.id != payment_id:
                continue
            record = {**view.record, **patch}
            updated = view.model_copy(update={
                "payment": Payment.model_validate(record),
                "quotation_ids": resolve_identifiers(record.get("quotation_ids")),
                "record": record,
            })
            self.views[pos] = updated
            return updated
        return None

    def apply_quotation_patch(self, quotation_id: str, patch: Record) -> int:
        """Patch a quotation wherever it is attached. Returns the number of views touched."""
        touched = 0
        for pos, view in enumerate(self.views):
            if not view.quotations or all(q.id != quotation_id for q in view.quotations):
                continue
            quotations = [
                Quotation.from_record({**q.raw, **patch}) if q.id == quotation_id else q
                for q in view.quotations
            ]
            self.views[pos] = view.model_copy(update={"quotations": quotations})
            touched += 1
        return touched


class ShipmentBoard(_Board):
    """One user's shipments, newest first, with their quotations resolved."""

    primary = Collection.SHIPPING
    specs = SHIPMENT_JOINS

    def __init__(self, store: RecordStore, user_id: str) -> None:
        super().__init__(store)
        self.user_id = user_id
        self.views: list[ShipmentView] = []

    async def load(self) -> list[ShipmentView]:
        rows = await self._load_rows({"user_id": Eq(self.user_id)})
        self.views = [ShipmentView.build(row) for row in rows]
        return self.views

    def search(self, query: str) -> list[ShipmentView]:
        return [v for v in self.views if v.matches(query)]

    def get(self, shipment_id: str) -> ShipmentView | None:
        return next((v for v in self.views if v.shipment.id == shipment_id), None)

    def find_by_quotation(self, quotation_id: str) -> ShipmentView | None:
        """Locate the shipment attached to a quotation (deep links use the quotation id)."""
        return next(
            (v for v in self.views if v.quotation is not None and v.quotation.id == quotation_id),
            None,
        )

    def apply_patch(self, shipment_id: str, patch: Record) -> ShipmentView | None:
        for pos, view in enumerate(self.views):
            if view.shipment.id != shipment_id:
                continue
            record = {**view.record, **patch}
            updated = view.model_copy(update={
                "shipment": Shipment.model_validate(record),
                "record": record,
            })
            self.views[pos] = updated
            return updated
        return None

"""Price options editor backed by a write-through draft.

Up to three options per quotation. Option 1 is always shown and needs a title
on save; option 2 can be added or removed; option 3 can only be shown while
option 2 is. Removing an option clears its fields (removing option 2 also
removes option 3). Price and weight inputs are coerced to numbers as they are
typed, and an option is shown on open whenever any of its fields holds data.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from opsdesk.admin.events import emit
from opsdesk.config import settings
from opsdesk.drafts.merger import is_empty
from opsdesk.drafts.session import DraftSession
from opsdesk.drafts.store import Draft, DraftKey, DraftStore
from opsdesk.errors import PriceOptionsError, RecordNotFoundError
from opsdesk.models.enums import Collection
from opsdesk.pricing import parse_numeric
from opsdesk.schemas.events import EventType, SystemEvent
from opsdesk.schemas.records import OPTION_NUMBERS, option_fields
from opsdesk.store.base import Eq, Record, RecordStore, write_within

logger = logging.getLogger(__name__)

FORM = "price_options"
PRICE_OPTION_FIELDS: tuple[str, ...] = tuple(f for n in OPTION_NUMBERS for f in option_fields(n))
_NUMERIC_STEMS = ("unit_price_option", "unit_weight_option")


def option_of(field: str) -> int:
    """Option number a price option field belongs to (image_option2_2 → 2)."""
    for n in OPTION_NUMBERS:
        if field in option_fields(n):
            return n
    raise PriceOptionsError(field, f"{field} is not a price option field")


def is_numeric_field(field: str) -> bool:
    return field.startswith(_NUMERIC_STEMS)


def coerce_numeric(field: str, raw: Any) -> str | None:
    """Blank clears the field; anything else must parse as a non-negative number."""
    if is_empty(raw):
        return None
    number = parse_numeric(raw)
    if number is None:
        raise PriceOptionsError(field, f"{field} must be a number")
    if number < 0:
        raise PriceOptionsError(field, f"{field} cannot be negative")
    # Drafts hold JSON, so numbers are kept as canonical decimal strings
    return str(number)


def has_option_data(values: Draft, n: int) -> bool:
    return any(not is_empty(values.get(f)) for f in option_fields(n))


class PriceOptionsEditor:
    """Edit a quotation's price options with draft recovery."""

    def __init__(
        self,
        store: RecordStore,
        drafts: DraftStore[DraftKey],
        quotation_id: str,
        write_timeout: float | None = None,
    ) -> None:
        self._store = store
        self.quotation_id = quotation_id
        self.session: DraftSession[DraftKey] = DraftSession(
            drafts, DraftKey(FORM, quotation_id), fields=PRICE_OPTION_FIELDS
        )
        self._write_timeout = write_timeout if write_timeout is not None else settings.store.store_write_timeout
        self.quantity = 1
        self._visible: set[int] = {1}
        self.selected_option: int | None = None

    # ── Lifecycle ────────────────────────────────────────────────────

    async def open(self) -> Draft:
        """Fetch the quotation, merge it with any saved draft, and derive option visibility.

        Raises:
            FetchError: If the quotation cannot be loaded.
            RecordNotFoundError: If the quotation does not exist.
        """
        rows = await self._store.fetch_by(Collection.QUOTATIONS, {"id": Eq(self.quotation_id)})
        if not rows:
            raise RecordNotFoundError(Collection.QUOTATIONS.value, self.quotation_id)
        row = rows[0]
        quantity = parse_numeric(row.get("quantity"))
        self.quantity = int(quantity) if quantity and quantity > 0 else 1
        selected = parse_numeric(row.get("selected_option"))
        self.selected_option = int(selected) if selected is not None else None

        values = await self.session.open({f: row.get(f) for f in PRICE_OPTION_FIELDS})
        self._visible = {1} | {n for n in OPTION_NUMBERS if has_option_data(values, n)}
        if 3 in self._visible:
            self._visible.add(2)
        return values

    async def close(self) -> None:
        """Close without saving; the draft is discarded."""
        await self.session.cancel()

    # ── Visibility ───────────────────────────────────────────────────

    @property
    def visible_options(self) -> list[int]:
        return sorted(self._visible)

    def show_option(self, n: int) -> None:
        if n not in OPTION_NUMBERS:
            raise PriceOptionsError(f"title_option{n}", f"There is no price option {n}")
        if n == 3 and 2 not in self._visible:
            raise PriceOptionsError("title_option3", "Option 3 requires option 2")
        self._visible.add(n)

    async def hide_option(self, n: int) -> None:
        """Remove option n (and every option after it) and clear their fields."""
        if n == 1:
            raise PriceOptionsError("title_option1", "Option 1 cannot be removed")
        removed = [m for m in OPTION_NUMBERS if m >= n]
        self._visible.difference_update(removed)
        await self.session.reset_fields(f for m in removed for f in option_fields(m))

    # ── Field edits ──────────────────────────────────────────────────

    async def set_field(self, field: str, raw: Any) -> Any:
        """Validate and store one input; returns the stored value."""
        n = option_of(field)
        if n not in self._visible:
            self.show_option(n)
        if is_numeric_field(field):
            value = coerce_numeric(field, raw)
        elif isinstance(raw, str):
            value = raw if raw.strip() else None
        else:
            value = raw
        await self.session.update(field, value)
        return value

    def option_total(self, n: int) -> Decimal | None:
        """Unit price × quantity for display next to the option."""
        price = parse_numeric(self.session.value(f"unit_price_option{n}"))
        if price is None:
            return None
        return price * self.quantity

    # ── Save ─────────────────────────────────────────────────────────

    def build_patch(self) -> Record:
        """Validate the draft and turn it into a quotation patch.

        Raises:
            PriceOptionsError: If option 1 has no title or option 3 is set without option 2.
        """
        values = self.session.values
        title = (values.get("title_option1") or "").strip()
        if not title:
            raise PriceOptionsError("title_option1", "Title is required for Option 1")
        if has_option_data(values, 3) and not has_option_data(values, 2):
            raise PriceOptionsError("title_option2", "Option 3 requires option 2")

        patch: Record = {}
        for n in OPTION_NUMBERS:
            for f in option_fields(n):
                value = values.get(f) if n in self._visible else None
                if is_numeric_field(f):
                    value = parse_numeric(value)
                patch[f] = value
        patch["title_option1"] = title

        # A removed option cannot stay selected; fall back to option 1, which always exists
        kept = {1} | {n for n in self._visible if has_option_data(values, n)}
        if self.selected_option is not None and self.selected_option not in kept:
            logger.info(
                "Selected option %d removed from quotation %s, selecting option 1",
                self.selected_option,
                self.quotation_id,
            )
            patch["selected_option"] = 1
        return patch

    async def submit(self, actor_id: str | None = None) -> Record:
        """Write the options to the quotation and drop the draft.

        Raises:
            PriceOptionsError: On local validation failure (nothing is written).
            WriteError: If the update fails; the draft is kept for a retry.
        """
        patch = {**self.build_patch(), "updated_at": datetime.now(timezone.utc)}
        updated = await write_within(
            self._store.update(Collection.QUOTATIONS, self.quotation_id, patch),
            Collection.QUOTATIONS,
            self.quotation_id,
            self._write_timeout,
        )
        await self.session.clear()
        logger.info("Saved %d price options on quotation %s", len(self._visible), self.quotation_id)
        await emit(SystemEvent(
            event_type=EventType.PRICE_OPTIONS_SAVED,
            collection=Collection.QUOTATIONS.value,
            record_id=self.quotation_id,
            actor_id=actor_id,
            data={"options": self.visible_options},
            source_module="drafts.price_options",
        ))
        return updated or {"id": self.quotation_id, **patch}

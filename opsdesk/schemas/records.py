"""Pydantic read models for the four record types.

Parsing is lenient: the store holds years of inconsistently written rows, and
a malformed price must never make a whole board fail to load. Unknown columns
are ignored; the raw row stays available on the enriched views.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from opsdesk.pricing import parse_numeric

OPTION_NUMBERS: tuple[int, ...] = (1, 2, 3)

# Per-option field stems; the stored column is f"{stem}{n}" (e.g. title_option2)
OPTION_FIELD_STEMS: tuple[str, ...] = (
    "title_option",
    "unit_price_option",
    "unit_weight_option",
    "delivery_time_option",
    "description_option",
    "image_option",
)


def option_fields(n: int) -> list[str]:
    """All stored columns belonging to price option n, including the secondary image."""
    return [f"{stem}{n}" for stem in OPTION_FIELD_STEMS] + [f"image_option{n}_2"]


class _Record(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class Receiver(_Record):
    """Receiver sub-record (name / phone / address)."""

    receiver_name: str | None = None
    receiver_phone: str | None = None
    receiver_address: str | None = None

    @property
    def is_complete(self) -> bool:
        return all(
            (value or "").strip()
            for value in (self.receiver_name, self.receiver_phone, self.receiver_address)
        )

    def as_patch(self) -> dict[str, str | None]:
        return self.model_dump()


class PriceOption(BaseModel):
    """One of the (up to three) priced alternatives on a quotation."""

    number: int
    title: str | None = None
    unit_price: Decimal | None = None
    unit_weight: Decimal | None = None
    total_price: Decimal | None = None
    delivery_time: str | None = None
    description: str | None = None
    images: list[str] = Field(default_factory=list)


class Quotation(_Record):
    id: str
    quotation_id: str | None = None
    user_id: str | None = None
    product_name: str | None = None
    product_url: str | None = None
    quantity: int | None = None
    image_url: str | None = None
    service_type: str | None = None
    shipping_country: str | None = None
    shipping_city: str | None = None
    shipping_method: str | None = None
    selected_option: int | None = None
    service_fee: Decimal | None = Field(default=None, alias="Quotation_fees")
    status: str | None = "Pending"
    receiver_name: str | None = None
    receiver_phone: str | None = None
    receiver_address: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    # Raw option columns, kept as-is for option assembly
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)

    @field_validator("service_fee", mode="before")
    @classmethod
    def lenient_fee(cls, v: Any) -> Decimal | None:
        return parse_numeric(v)

    @field_validator("quantity", "selected_option", mode="before")
    @classmethod
    def lenient_int(cls, v: Any) -> int | None:
        number = parse_numeric(v)
        return int(number) if number is not None else None

    @classmethod
    def from_record(cls, row: dict[str, Any]) -> Quotation:
        return cls.model_validate({**row, "raw": row})

    @property
    def options(self) -> list[PriceOption]:
        """Populated price options in order. An option counts when any of its fields is set."""
        result: list[PriceOption] = []
        for n in OPTION_NUMBERS:
            if not any(self.raw.get(name) not in (None, "") for name in option_fields(n)):
                continue
            images = [
                url for url in (self.raw.get(f"image_option{n}"), self.raw.get(f"image_option{n}_2")) if url
            ]
            result.append(PriceOption(
                number=n,
                title=self.raw.get(f"title_option{n}") or None,
                unit_price=parse_numeric(self.raw.get(f"unit_price_option{n}")),
                unit_weight=parse_numeric(self.raw.get(f"unit_weight_option{n}")),
                total_price=parse_numeric(self.raw.get(f"total_price_option{n}")),
                delivery_time=self.raw.get(f"delivery_time_option{n}") or None,
                description=self.raw.get(f"description_option{n}") or None,
                images=images,
            ))
        return result

    def option(self, number: int) -> PriceOption | None:
        return next((o for o in self.options if o.number == number), None)

    @property
    def selected(self) -> PriceOption | None:
        if self.selected_option is None:
            return None
        return self.option(self.selected_option)

    @property
    def receiver(self) -> Receiver:
        return Receiver(
            receiver_name=self.receiver_name,
            receiver_phone=self.receiver_phone,
            receiver_address=self.receiver_address,
        )


class Payment(_Record):
    id: str
    user_id: str | None = None
    total_amount: Decimal | None = None
    method: str | None = None
    status: str | None = "Pending"
    reference_number: str | None = None
    quotation_ids: list[Any] | str | None = None
    proof_url: str | None = None
    payment_proof: str | None = None
    created_at: datetime | None = None

    @field_validator("total_amount", mode="before")
    @classmethod
    def lenient_amount(cls, v: Any) -> Decimal | None:
        return parse_numeric(v)


class Shipment(_Record):
    id: str
    quotation_id: str | None = None
    user_id: str | None = None
    status: str | None = "Waiting"
    location: str | None = None
    images_urls: list[str] | None = None
    videos_urls: list[str] | None = None
    delivered_at: datetime | None = None
    estimated_delivery: datetime | None = None
    label: str | None = None
    receiver_name: str | None = None
    receiver_phone: str | None = None
    receiver_address: str | None = None
    created_at: datetime | None = None

    @property
    def receiver(self) -> Receiver:
        return Receiver(
            receiver_name=self.receiver_name,
            receiver_phone=self.receiver_phone,
            receiver_address=self.receiver_address,
        )

    @property
    def location_summary(self) -> str:
        """Board hint shown next to the status."""
        return "In Transit" if self.location else "Waiting for update"


class Profile(_Record):
    id: str
    email: str | None = None
    full_name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    role: str | None = None
    approve: bool | None = False

    @property
    def display_name(self) -> str:
        if self.full_name:
            return self.full_name
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) or (self.email or self.id)

"""Domain enums used across SQLAlchemy models, Pydantic schemas and the status pipeline.

All enums use the str mixin for JSON serialization. Status lookups are
case-insensitive: older rows store e.g. ``processing`` while the canonical
value written back is ``Processing``.
"""

from __future__ import annotations

from enum import Enum


class _CaseInsensitiveEnum(str, Enum):
    """Accept any casing, surrounding whitespace or `_`/`-` word separators."""

    @classmethod
    def _missing_(cls, value: object) -> _CaseInsensitiveEnum | None:
        if isinstance(value, str):
            needle = " ".join(value.replace("_", " ").replace("-", " ").split()).lower()
            for member in cls:
                if member.value.lower() == needle:
                    return member
        return None


class Collection(str, Enum):
    """Record store collections (table names)."""

    QUOTATIONS = "quotations"
    PAYMENTS = "payments"
    SHIPPING = "shipping"
    PROFILES = "profiles"
    SHIPPING_RECEIVERS = "shipping_receivers"


class QuotationStatus(_CaseInsensitiveEnum):
    """Quotation lifecycle: approval is a side effect of payment creation."""

    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class PaymentStatus(_CaseInsensitiveEnum):
    """Payment lifecycle: admin-driven once created."""

    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class ShipmentStatus(_CaseInsensitiveEnum):
    """Shipment lifecycle."""

    WAITING = "Waiting"
    PROCESSING = "Processing"
    IN_TRANSIT = "In Transit"
    DELIVERED = "Delivered"
    DELAYED = "Delayed"


class ShippingMethod(str, Enum):
    """Shipping method as stored on a quotation."""

    SEA = "Sea"
    AIR = "Air"
    TRAIN = "Train"


# Wizard choice label → stored value. Unknown labels fall back to SEA.
SHIPPING_METHOD_LABELS: dict[str, ShippingMethod] = {
    "Sea Freight": ShippingMethod.SEA,
    "Air Freight": ShippingMethod.AIR,
    "Train Freight": ShippingMethod.TRAIN,
}


class PaymentMethod(_CaseInsensitiveEnum):
    """Settlement channels offered at checkout."""

    WISE = "WISE"
    PAYONEER = "PAYONEER"
    BINANCE = "BINANCE"

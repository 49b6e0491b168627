"""Per-step validation for the create-quotation wizard.

Each validator raises StepValidationError naming the first offending field;
they never touch the record store.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from opsdesk.errors import StepValidationError
from opsdesk.models.enums import SHIPPING_METHOD_LABELS, ShippingMethod

PRODUCT, SHIPPING, SERVICE, COMPLETE = 1, 2, 3, 4

STEP_TITLES: dict[int, str] = {
    PRODUCT: "Product Information",
    SHIPPING: "Shipping Information",
    SERVICE: "Service Details",
    COMPLETE: "Complete",
}


def _text(form: Mapping[str, Any], name: str) -> str:
    value = form.get(name)
    return value.strip() if isinstance(value, str) else ""


def parse_quantity(raw: Any) -> int:
    """Quantity must be a positive whole number ("5" and 5 pass, "abc", "0" and "2.5" do not)."""
    if isinstance(raw, bool):
        number = None
    elif isinstance(raw, int):
        number = raw
    elif isinstance(raw, str) and raw.strip().isdecimal():
        number = int(raw.strip())
    else:
        number = None
    if number is None or number <= 0:
        raise StepValidationError(PRODUCT, "quantity", "Please enter a valid quantity (must be a positive whole number)")
    return number


def stored_shipping_method(label: str) -> ShippingMethod:
    """Map a form label to the stored method; unrecognized labels fall back to Sea."""
    if label in SHIPPING_METHOD_LABELS:
        return SHIPPING_METHOD_LABELS[label]
    try:
        return ShippingMethod(label)
    except ValueError:
        return ShippingMethod.SEA


def validate_product(form: Mapping[str, Any]) -> None:
    if not _text(form, "product_name"):
        raise StepValidationError(PRODUCT, "product_name", "Please enter a product name")
    parse_quantity(form.get("quantity"))


def validate_shipping(form: Mapping[str, Any]) -> None:
    if not _text(form, "shipping_country"):
        raise StepValidationError(SHIPPING, "shipping_country", "Please select a destination country")
    if not _text(form, "shipping_city"):
        raise StepValidationError(SHIPPING, "shipping_city", "Please enter a destination city")
    method = _text(form, "shipping_method")
    if method not in SHIPPING_METHOD_LABELS:
        raise StepValidationError(
            SHIPPING,
            "shipping_method",
            f"Please select a shipping method ({', '.join(SHIPPING_METHOD_LABELS)})",
        )


def validate_service(form: Mapping[str, Any]) -> None:
    if not _text(form, "service_type"):
        raise StepValidationError(SERVICE, "service_type", "Please select a service type")


VALIDATORS: dict[int, Callable[[Mapping[str, Any]], None]] = {
    PRODUCT: validate_product,
    SHIPPING: validate_shipping,
    SERVICE: validate_service,
}


def validate_step(step: int, form: Mapping[str, Any]) -> None:
    VALIDATORS[step](form)

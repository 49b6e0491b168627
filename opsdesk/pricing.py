"""Price arithmetic and business reference generation.

Stored prices are inconsistent: numbers, numeric strings, or display strings
such as "$1,200.50". Everything is parsed into Decimal before arithmetic.
"""

from __future__ import annotations

import re
import secrets
import string
import time
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

_NON_NUMERIC = re.compile(r"[^0-9.\-]")
_CENTS = Decimal("0.01")


def parse_numeric(value: Any) -> Decimal | None:
    """Parse a loosely formatted amount. Returns None when nothing numeric remains."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    cleaned = _NON_NUMERIC.sub("", str(value))
    if not cleaned or cleaned in {"-", ".", "-."}:
        return None
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def payment_total(unit_price: Any, quantity: Any, service_fee: Any = None) -> Decimal:
    """Amount due for a quotation: unit price × quantity + service fee, rounded to cents.

    Missing or unparseable parts count as zero.
    """
    price = parse_numeric(unit_price) or Decimal(0)
    qty = parse_numeric(quantity) or Decimal(0)
    fee = parse_numeric(service_fee) or Decimal(0)
    return (price * qty + fee).quantize(_CENTS, rounding=ROUND_HALF_UP)


def generate_payment_reference() -> str:
    """PAY-<last 6 digits of epoch ms>-<6 uppercase alphanumerics>."""
    stamp = str(int(time.time() * 1000))[-6:]
    alphabet = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(6))
    return f"PAY-{stamp}-{suffix}"


def generate_quotation_reference() -> str:
    """QT-<epoch ms>."""
    return f"QT-{int(time.time() * 1000)}"

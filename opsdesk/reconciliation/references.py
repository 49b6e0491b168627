"""Reference descriptors: one normalized shape for every cross-collection link.

A record points at another collection in one of three ways:

- an array of identifiers (``["q1", "q2"]``)
- a comma-delimited string (``"q1, q2 ,q3"``)
- a business reference number resolved against a non-key column
  (e.g. ``payments.reference_number`` vs ``quotations.quotation_id``)

`describe()` turns any of these into a `ReferenceDescriptor`; nothing
downstream branches on the original encoding again.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ReferenceKind(str, Enum):
    """How the reference field was encoded in the source record."""

    NONE = "none"
    LIST = "list"
    DELIMITED = "delimited"


@dataclass(frozen=True)
class ReferenceDescriptor:
    """Normalized cross-collection reference.

    `identifiers` are primary-key candidates, deduplicated, in source order.
    `fallback` is the secondary business-reference key, only consulted when no
    identifier matched.
    """

    kind: ReferenceKind
    identifiers: tuple[str, ...] = ()
    fallback: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.identifiers and self.fallback is None


def resolve_identifiers(value: Any) -> list[str]:
    """Normalize a reference field of unknown shape into ordered, unique identifiers.

    Lists keep their non-empty string elements as-is; strings are split on
    commas, trimmed and empty parts dropped; anything else yields [].
    """
    if isinstance(value, (list, tuple)):
        parts = [item for item in value if isinstance(item, str)]
    elif isinstance(value, str):
        parts = [part.strip() for part in value.split(",")]
    else:
        return []
    return list(dict.fromkeys(part for part in parts if part))


def describe(value: Any, fallback: Any = None) -> ReferenceDescriptor:
    """Build a ReferenceDescriptor from a raw reference field and optional fallback key."""
    if isinstance(value, (list, tuple)):
        kind = ReferenceKind.LIST
    elif isinstance(value, str) and value.strip():
        kind = ReferenceKind.DELIMITED
    else:
        kind = ReferenceKind.NONE

    fallback_key = fallback.strip() if isinstance(fallback, str) else None
    return ReferenceDescriptor(
        kind=kind,
        identifiers=tuple(resolve_identifiers(value)),
        fallback=fallback_key or None,
    )

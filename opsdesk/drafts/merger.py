"""Field-level merge of a stored draft with a freshly fetched snapshot.

The draft wins wherever it holds a value: in-progress edits are never replaced
by a newer fetch. A draft field that is empty takes the snapshot's value when
the snapshot has one, so data populated upstream since the draft was saved is
not masked. Merging is idempotent.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any


def is_empty(value: Any) -> bool:
    """None, blank strings and empty containers are empty; numbers and booleans never are."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def merge_draft(
    draft: Mapping[str, Any] | None,
    snapshot: Mapping[str, Any] | None,
    fields: Iterable[str] | None = None,
) -> dict[str, Any]:
    """Merge `snapshot` into `draft`, restricted to `fields` when given.

    With no draft the result is seeded from the snapshot alone.
    """
    allowed = set(fields) if fields is not None else None

    def keep(name: str) -> bool:
        return allowed is None or name in allowed

    source = {k: v for k, v in (snapshot or {}).items() if keep(k)}
    if draft is None:
        return source

    merged = {k: v for k, v in draft.items() if keep(k)}
    for name, value in source.items():
        if is_empty(merged.get(name)) and not is_empty(value):
            merged[name] = value
    return merged


def filled_fields(draft: Mapping[str, Any] | None, merged: Mapping[str, Any]) -> list[str]:
    """Fields the merge took from the snapshot (empty when there was no draft)."""
    if draft is None:
        return []
    return sorted(name for name, value in merged.items() if draft.get(name) != value)

"""Write-through draft session for one form on one record.

Open with the latest snapshot, read with `value()` / `values`, change with
`update()`; every change is persisted immediately. `clear()` after a
successful submit and `cancel()` on explicit discard both delete the stored
draft so stale edits are not resurrected on the next open.

A draft backend outage never blocks editing: the session keeps working in
memory and logs the failed write. A draft that cannot be deleted is reported
as DRAFT_DELETE_FAILED, since it would bring back stale edits on the next open.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Generic, TypeVar

from opsdesk.admin.events import emit
from opsdesk.drafts.merger import filled_fields, merge_draft
from opsdesk.drafts.store import Draft, DraftStore, DraftStoreError
from opsdesk.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

K = TypeVar("K")

# Collection name used when draft events are keyed for the reconciliation audit
DRAFTS = "drafts"


class DraftSession(Generic[K]):
    """Accessor/mutator pair over a durable draft."""

    def __init__(self, store: DraftStore[K], key: K, fields: Sequence[str] | None = None) -> None:
        self._store = store
        self.key = key
        self.fields = tuple(fields) if fields is not None else None
        self._values: Draft = {}
        self._opened = False
        self.restored = False

    @property
    def is_open(self) -> bool:
        return self._opened

    @property
    def values(self) -> Draft:
        return dict(self._values)

    def value(self, field: str, default: Any = None) -> Any:
        return self._values.get(field, default)

    def _check_field(self, field: str) -> None:
        if self.fields is not None and field not in self.fields:
            raise KeyError(f"{field} is not part of this draft")

    async def open(self, snapshot: Mapping[str, Any] | None = None) -> Draft:
        """Load the stored draft, merge the snapshot in, and persist the result."""
        try:
            stored = await self._store.get(self.key)
        except DraftStoreError as exc:
            logger.warning("Draft %s unavailable, starting from snapshot: %s", self.key, exc)
            stored = None

        self._values = merge_draft(stored, snapshot, self.fields)
        self._opened = True
        self.restored = stored is not None
        await self._persist()

        if stored is not None:
            filled = filled_fields(stored, self._values)
            logger.info("Restored draft %s (%d fields filled from snapshot)", self.key, len(filled))
            await emit(SystemEvent(
                event_type=EventType.DRAFT_RESTORED,
                data={"key": str(self.key), "filled_from_snapshot": filled},
                source_module="drafts.session",
            ))
        return self.values

    async def update(self, field: str, value: Any) -> None:
        self._check_field(field)
        self._values[field] = value
        await self._persist()

    async def update_many(self, changes: Mapping[str, Any]) -> None:
        for field in changes:
            self._check_field(field)
        self._values.update(changes)
        await self._persist()

    async def reset_fields(self, fields: Iterable[str]) -> None:
        await self.update_many({field: None for field in fields})

    async def clear(self) -> None:
        """Drop the stored draft after a successful submit."""
        await self._delete()
        self._opened = False

    async def cancel(self) -> None:
        """Discard the draft on explicit cancellation."""
        deleted = await self._delete()
        self._values = {}
        self._opened = False
        if deleted:
            await emit(SystemEvent(
                event_type=EventType.DRAFT_DISCARDED,
                collection=DRAFTS,
                record_id=str(self.key),
                data={"key": str(self.key)},
                source_module="drafts.session",
            ))

    async def _persist(self) -> None:
        try:
            await self._store.set(self.key, dict(self._values))
        except DraftStoreError as exc:
            logger.warning("Draft %s not saved: %s", self.key, exc)

    async def _delete(self) -> bool:
        try:
            await self._store.delete(self.key)
        except DraftStoreError as exc:
            logger.error("Draft %s not deleted, stale edits will return on next open: %s", self.key, exc)
            await emit(SystemEvent(
                event_type=EventType.DRAFT_DELETE_FAILED,
                collection=DRAFTS,
                record_id=str(self.key),
                data={"key": str(self.key), "error": str(exc)},
                source_module="drafts.session",
            ))
            return False
        return True

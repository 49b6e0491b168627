"""Shared in-memory fakes for the record store and the draft store."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from typing import Any
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest

from opsdesk.drafts.store import Draft, DraftStoreError
from opsdesk.errors import FetchError, WriteError
from opsdesk.models.enums import Collection
from opsdesk.schemas.events import EventType, SystemEvent
from opsdesk.store.base import Eq, Filters, In, Record, matches_nothing

# Every module that publishes SystemEvents imports `emit` by name
_EMITTING_MODULES = (
    "opsdesk.reconciliation.joiner",
    "opsdesk.reconciliation.views",
    "opsdesk.pipeline.saga",
    "opsdesk.pipeline.service",
    "opsdesk.drafts.session",
    "opsdesk.drafts.price_options",
    "opsdesk.workflow.wizard",
)


class FakeRecordStore:
    """RecordStore over plain dicts, with failure and latency injection."""

    def __init__(self) -> None:
        self.tables: dict[Collection, list[Record]] = {c: [] for c in Collection}
        self.fetch_calls: list[tuple[Collection, dict[str, Any]]] = []
        self.writes: list[tuple[str, Collection, Record]] = []
        self.failing_fetches: dict[Collection, Exception] = {}
        self._write_failures: dict[Collection, list[Exception]] = {}
        self._gates: dict[Collection, asyncio.Event] = {}

    # ── Setup ────────────────────────────────────────────────────────

    def seed(self, collection: Collection, *rows: Record) -> None:
        self.tables[collection].extend(dict(r) for r in rows)

    def get(self, collection: Collection, record_id: str) -> Record | None:
        return next((r for r in self.tables[collection] if r.get("id") == record_id), None)

    def fail_fetch(self, collection: Collection, message: str = "boom") -> None:
        self.failing_fetches[collection] = FetchError(collection.value, message)

    def fail_writes(self, collection: Collection, exc: Exception, times: int = 1) -> None:
        """Make the next `times` writes to `collection` raise `exc`."""
        self._write_failures.setdefault(collection, []).extend([exc] * times)

    def gate(self, collection: Collection) -> asyncio.Event:
        """Hold writes to `collection` until the returned event is set."""
        event = asyncio.Event()
        self._gates[collection] = event
        return event

    def fetch_count(self, collection: Collection) -> int:
        return sum(1 for c, _ in self.fetch_calls if c == collection)

    # ── RecordStore ──────────────────────────────────────────────────

    async def fetch_by(
        self,
        collection: Collection,
        filters: Filters | None = None,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[Record]:
        if matches_nothing(filters):
            return []
        self.fetch_calls.append((collection, dict(filters or {})))
        if collection in self.failing_fetches:
            raise self.failing_fetches[collection]

        rows = [dict(r) for r in self.tables[collection] if _matches(r, filters)]
        if order_by:
            rows.sort(key=lambda r: str(r.get(order_by) or ""), reverse=descending)
        return rows

    async def insert(self, collection: Collection, record: Record) -> Record:
        await self._before_write(collection)
        row = {"id": str(uuid4()), **record}
        self.tables[collection].append(row)
        self.writes.append(("insert", collection, dict(record)))
        return dict(row)

    async def update(self, collection: Collection, record_id: str, patch: Record) -> Record | None:
        await self._before_write(collection)
        row = self.get(collection, record_id)
        if row is None:
            raise WriteError(collection.value, record_id, f"{collection.value}/{record_id} not found")
        row.update(patch)
        self.writes.append(("update", collection, {"id": record_id, **patch}))
        return dict(row)

    async def _before_write(self, collection: Collection) -> None:
        gate = self._gates.get(collection)
        if gate is not None:
            await gate.wait()
        failures = self._write_failures.get(collection)
        if failures:
            raise failures.pop(0)


def _matches(row: Record, filters: Filters | None) -> bool:
    for name, flt in (filters or {}).items():
        if isinstance(flt, Eq) and row.get(name) != flt.value:
            return False
        if isinstance(flt, In) and row.get(name) not in flt.values:
            return False
    return True


class MemoryDraftStore:
    """DraftStore over a dict; `broken = True` simulates a backend outage."""

    def __init__(self) -> None:
        self.data: dict[Any, Draft] = {}
        self.broken = False

    async def get(self, key: Any) -> Draft | None:
        self._check()
        value = self.data.get(key)
        return dict(value) if value is not None else None

    async def set(self, key: Any, value: Draft) -> None:
        self._check()
        self.data[key] = dict(value)

    async def delete(self, key: Any) -> None:
        self._check()
        self.data.pop(key, None)

    def _check(self) -> None:
        if self.broken:
            raise DraftStoreError("draft backend unavailable")


def emitted(mock: AsyncMock, event_type: EventType | None = None) -> list[SystemEvent]:
    """Events passed to the captured `emit`, optionally of one type."""
    events = [c.args[0] for c in mock.await_args_list]
    if event_type is None:
        return events
    return [e for e in events if e.event_type == event_type]


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def captured_events() -> Iterator[AsyncMock]:
    """Route every emit() to one AsyncMock instead of the background event bus."""
    capture = AsyncMock()
    patchers = [patch(f"{module}.emit", new=capture) for module in _EMITTING_MODULES]
    for p in patchers:
        p.start()
    try:
        yield capture
    finally:
        for p in reversed(patchers):
            p.stop()


@pytest.fixture()
def store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture()
def drafts() -> MemoryDraftStore:
    return MemoryDraftStore()

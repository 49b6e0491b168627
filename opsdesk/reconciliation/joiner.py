"""Collection joiner: decorates primary records with their weakly-linked targets.

For each JoinSpec the joiner issues one batch `In` fetch over the union of all
identifiers referenced by the primary rows, plus at most one batch fetch on the
business-reference column for rows whose identifiers matched nothing. Fetch
count is bounded by the number of specs, never by the number of primary rows.

A failing target collection leaves its decorations marked `fetched=False` and
the other targets continue; a failing primary collection raises FetchError.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from itertools import chain

from opsdesk.admin.events import emit
from opsdesk.errors import FetchError
from opsdesk.models.enums import Collection
from opsdesk.reconciliation.references import ReferenceDescriptor
from opsdesk.schemas.events import EventType, SystemEvent
from opsdesk.store.base import Filters, In, Record, RecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JoinSpec:
    """How to resolve one target collection from a primary record."""

    name: str
    collection: Collection
    reference: Callable[[Record], ReferenceDescriptor]
    key_column: str = "id"
    fallback_column: str | None = None


@dataclass(frozen=True)
class Decoration:
    """Matched target records for one primary record and one JoinSpec.

    `fetched=False` means the target could not be loaded, which is different
    from a successful fetch that matched nothing (`fetched=True`, no records).
    """

    fetched: bool
    records: tuple[Record, ...] = ()

    @classmethod
    def unavailable(cls) -> Decoration:
        return cls(fetched=False)

    @property
    def is_empty(self) -> bool:
        return self.fetched and not self.records

    @property
    def first(self) -> Record | None:
        return self.records[0] if self.records else None


@dataclass
class JoinedRecord:
    record: Record
    decorations: dict[str, Decoration] = field(default_factory=dict)


@dataclass
class JoinResult:
    rows: list[JoinedRecord]
    # JoinSpec name → error message, for targets that failed to load
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def is_partial(self) -> bool:
        return bool(self.failures)


def _unique_by_key(records: Sequence[Record], key_column: str) -> tuple[Record, ...]:
    seen: set[str] = set()
    unique: list[Record] = []
    for rec in records:
        key = str(rec.get(key_column))
        if key in seen:
            continue
        seen.add(key)
        unique.append(rec)
    return tuple(unique)


class CollectionJoiner:
    """Batch-resolves references from a primary collection into target collections."""

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    async def load(
        self,
        primary: Collection,
        specs: Sequence[JoinSpec],
        filters: Filters | None = None,
        order_by: str | None = "created_at",
        descending: bool = True,
    ) -> JoinResult:
        """Fetch the primary collection and decorate it.

        Raises:
            FetchError: If the primary collection cannot be loaded.
        """
        rows = await self._store.fetch_by(primary, filters, order_by=order_by, descending=descending)
        logger.info("Loaded %d %s rows for joining", len(rows), primary.value)
        return await self.decorate(rows, specs)

    async def decorate(self, rows: Sequence[Record], specs: Sequence[JoinSpec]) -> JoinResult:
        """Attach one Decoration per spec to every row. Never raises FetchError."""
        joined = [JoinedRecord(record=row) for row in rows]
        if not joined:
            return JoinResult(rows=[])

        outcomes = await asyncio.gather(*[self._resolve(rows, spec) for spec in specs])

        failures: dict[str, str] = {}
        for spec, (decorations, error) in zip(specs, outcomes):
            for item, decoration in zip(joined, decorations):
                item.decorations[spec.name] = decoration
            if error is not None:
                failures[spec.name] = error
        return JoinResult(rows=joined, failures=failures)

    async def _resolve(
        self,
        rows: Sequence[Record],
        spec: JoinSpec,
    ) -> tuple[list[Decoration], str | None]:
        descriptors = [spec.reference(row) for row in rows]
        wanted = In(chain.from_iterable(d.identifiers for d in descriptors))

        try:
            targets = await self._store.fetch_by(spec.collection, {spec.key_column: wanted})
        except FetchError as exc:
            await self._report_failure(spec, exc)
            return [Decoration.unavailable() for _ in rows], str(exc)

        index = {str(t.get(spec.key_column)): t for t in targets}
        matches: list[list[Record]] = [
            [index[i] for i in d.identifiers if i in index] for d in descriptors
        ]

        # Fallback: rows that matched nothing by key but carry a business reference
        pending = [
            pos for pos, d in enumerate(descriptors)
            if not matches[pos] and d.fallback is not None
        ]
        fallback_failed = False
        error: str | None = None
        if spec.fallback_column and pending:
            refs = In(descriptors[pos].fallback for pos in pending)
            try:
                by_ref = await self._store.fetch_by(spec.collection, {spec.fallback_column: refs})
            except FetchError as exc:
                await self._report_failure(spec, exc)
                fallback_failed = True
                error = str(exc)
            else:
                grouped: dict[str, list[Record]] = {}
                for t in by_ref:
                    grouped.setdefault(str(t.get(spec.fallback_column)), []).append(t)
                for pos in pending:
                    matches[pos] = grouped.get(descriptors[pos].fallback or "", [])
                logger.debug(
                    "Fallback %s.%s matched %d of %d rows",
                    spec.collection.value,
                    spec.fallback_column,
                    sum(1 for pos in pending if matches[pos]),
                    len(pending),
                )

        pending_set = set(pending) if fallback_failed else set()
        decorations = [
            Decoration.unavailable() if pos in pending_set
            else Decoration(fetched=True, records=_unique_by_key(found, spec.key_column))
            for pos, found in enumerate(matches)
        ]
        return decorations, error

    async def _report_failure(self, spec: JoinSpec, exc: FetchError) -> None:
        logger.error("Decoration fetch failed for %s (%s): %s", spec.name, spec.collection.value, exc)
        await emit(SystemEvent(
            event_type=EventType.COLLECTION_FETCH_FAILED,
            collection=spec.collection.value,
            data={"join": spec.name, "error": str(exc)},
            source_module="reconciliation.joiner",
        ))

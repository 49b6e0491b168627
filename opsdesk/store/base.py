"""Record store capability: the only way the core talks to remote storage.

Records are plain dicts keyed by column name. Filters map a column to `Eq` or
`In`; an `In` with no values matches nothing and adapters short-circuit it
without a round trip.

Usage:
    rows = await store.fetch_by(Collection.QUOTATIONS, {"id": In(ids)})
    created = await store.insert(Collection.PAYMENTS, {...})
    await store.update(Collection.SHIPPING, shipment_id, {"label": "Carton A"})
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, Union

from opsdesk.errors import WriteTimeoutError
from opsdesk.models.enums import Collection

Record = dict[str, Any]


@dataclass(frozen=True)
class Eq:
    """Column equals value."""

    value: Any


@dataclass(frozen=True)
class In:
    """Column is one of values (order irrelevant, duplicates collapsed)."""

    values: tuple[Any, ...]

    def __init__(self, values: Iterable[Any]) -> None:
        # dict.fromkeys keeps first-seen order while dropping duplicates
        object.__setattr__(self, "values", tuple(dict.fromkeys(values)))

    @property
    def is_empty(self) -> bool:
        return not self.values


Filter = Union[Eq, In]
Filters = Mapping[str, Filter]


class RecordStore(Protocol):
    """Abstract record store.

    Adapters raise `FetchError` for failed reads and `WriteError` (or
    `WriteTimeoutError` when the outcome is unknown) for failed writes.
    """

    async def fetch_by(
        self,
        collection: Collection,
        filters: Filters | None = None,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[Record]:
        """Return zero or more records matching all filters."""
        ...

    async def insert(self, collection: Collection, record: Record) -> Record:
        """Insert a record and return it as stored (with generated id)."""
        ...

    async def update(self, collection: Collection, record_id: str, patch: Record) -> Record | None:
        """Apply a partial update; return the updated record when the backend reports it."""
        ...


def matches_nothing(filters: Filters | None) -> bool:
    """True when an `In` filter with no values makes the query trivially empty."""
    if not filters:
        return False
    return any(isinstance(f, In) and f.is_empty for f in filters.values())


async def write_within(
    write: Awaitable[Record | None],
    collection: Collection,
    record_id: str | None,
    timeout: float,
) -> Record | None:
    """Await a store write, abandoning the wait after `timeout` seconds.

    Raises:
        WriteTimeoutError: The client stopped waiting; the write may still land.
    """
    try:
        return await asyncio.wait_for(write, timeout=timeout)
    except asyncio.TimeoutError:
        raise WriteTimeoutError(collection.value, record_id, timeout) from None

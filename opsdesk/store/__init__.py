"""Record store capability and its SQL / PostgREST adapters."""

from __future__ import annotations

from opsdesk.config import settings
from opsdesk.store.base import Eq, Filters, In, Record, RecordStore


def create_record_store() -> RecordStore:
    """Build the record store selected by STORE_BACKEND."""
    if settings.store.store_backend == "rest":
        from opsdesk.store.rest import RestRecordStore

        return RestRecordStore()

    from opsdesk.db.engine import async_session_factory
    from opsdesk.store.sql import SqlRecordStore

    return SqlRecordStore(async_session_factory)


__all__ = ["Eq", "In", "Filters", "Record", "RecordStore", "create_record_store"]

"""SQLAlchemy-backed record store over the ORM models in `opsdesk.models`.

Each call opens its own short-lived session and commits immediately: the core
never spans a transaction across collections.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from opsdesk.errors import FetchError, WriteError
from opsdesk.models import MODEL_BY_COLLECTION, Base
from opsdesk.models.enums import Collection
from opsdesk.store.base import Eq, Filters, In, Record, matches_nothing

logger = logging.getLogger(__name__)


def _column_keys(model: type[Base]) -> dict[str, str]:
    """Map stored column name → mapped attribute key (e.g. Quotation_fees → quotation_fees)."""
    return {column.name: key for key, column in inspect(model).columns.items()}


def _to_record(instance: Base) -> Record:
    """Serialize an ORM instance into a dict keyed by stored column name."""
    mapper = inspect(type(instance))
    return {column.name: getattr(instance, key) for key, column in mapper.columns.items()}


class SqlRecordStore:
    """RecordStore implementation on SQLAlchemy 2.0 async."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    def _model(self, collection: Collection) -> type[Base]:
        return MODEL_BY_COLLECTION[Collection(collection)]

    def _attributes(self, model: type[Base], values: dict[str, Any]) -> dict[str, Any]:
        keys = _column_keys(model)
        unknown = [name for name in values if name not in keys]
        if unknown:
            msg = f"Unknown columns for {model.__tablename__}: {unknown}"
            raise ValueError(msg)
        return {keys[name]: value for name, value in values.items()}

    async def fetch_by(
        self,
        collection: Collection,
        filters: Filters | None = None,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[Record]:
        collection = Collection(collection)
        if matches_nothing(filters):
            return []

        model = self._model(collection)
        keys = _column_keys(model)
        stmt = select(model)
        for name, flt in (filters or {}).items():
            column = getattr(model, keys[name])
            if isinstance(flt, Eq):
                stmt = stmt.where(column.is_(None) if flt.value is None else column == flt.value)
            elif isinstance(flt, In):
                stmt = stmt.where(column.in_(flt.values))
        if order_by:
            column = getattr(model, keys[order_by])
            stmt = stmt.order_by(column.desc() if descending else column.asc())

        try:
            async with self._session_factory() as db:
                result = await db.execute(stmt)
                rows = [_to_record(row) for row in result.scalars().all()]
        except SQLAlchemyError as exc:
            logger.exception("Fetch failed for %s", collection.value)
            raise FetchError(collection.value, f"Failed to load {collection.value}: {exc}") from exc

        logger.debug("Fetched %d %s rows", len(rows), collection.value)
        return rows

    async def insert(self, collection: Collection, record: Record) -> Record:
        collection = Collection(collection)
        model = self._model(collection)
        instance = model(**self._attributes(model, record))
        try:
            async with self._session_factory() as db:
                db.add(instance)
                await db.commit()
                await db.refresh(instance)
        except SQLAlchemyError as exc:
            logger.exception("Insert failed for %s", collection.value)
            raise WriteError(collection.value, message=f"Failed to create {collection.value}: {exc}") from exc

        created = _to_record(instance)
        logger.info("Inserted %s id=%s", collection.value, created.get("id"))
        return created

    async def update(self, collection: Collection, record_id: str, patch: Record) -> Record | None:
        collection = Collection(collection)
        model = self._model(collection)
        attributes = self._attributes(model, patch)
        try:
            async with self._session_factory() as db:
                instance = await db.get(model, record_id)
                if instance is None:
                    raise WriteError(collection.value, record_id, f"{collection.value}/{record_id} not found")
                for key, value in attributes.items():
                    setattr(instance, key, value)
                await db.commit()
                await db.refresh(instance)
        except SQLAlchemyError as exc:
            logger.exception("Update failed for %s/%s", collection.value, record_id)
            raise WriteError(collection.value, record_id, f"Failed to update {collection.value}: {exc}") from exc

        logger.info("Updated %s id=%s fields=%s", collection.value, record_id, sorted(patch))
        return _to_record(instance)

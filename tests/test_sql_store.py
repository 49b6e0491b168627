"""Tests for the SQLAlchemy record store against a mocked AsyncSession."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from opsdesk.errors import FetchError, WriteError
from opsdesk.models import Payment, Quotation, Shipment
from opsdesk.models.enums import Collection
from opsdesk.store import create_record_store
from opsdesk.store.base import Eq, In
from opsdesk.store.rest import RestRecordStore
from opsdesk.store.sql import SqlRecordStore

# ── Helpers ──────────────────────────────────────────────────────────


def _make_db(rows=None, get_result=None):
    """Build a mock AsyncSession."""
    db = AsyncMock()
    db.add = MagicMock()
    result = MagicMock()
    scalars = MagicMock()
    scalars.all.return_value = rows or []
    result.scalars.return_value = scalars
    db.execute = AsyncMock(return_value=result)
    db.get = AsyncMock(return_value=get_result)
    return db


def _make_factory(db) -> MagicMock:
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=db)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    return factory


class TestFetch:
    @pytest.mark.asyncio()
    async def test_rows_keyed_by_stored_column_name(self):
        quotation = Quotation(id="q1", quotation_id="QT-1", product_name="Lamp", quantity=2, quotation_fees=Decimal("5"))
        store = SqlRecordStore(_make_factory(_make_db(rows=[quotation])))

        rows = await store.fetch_by(Collection.QUOTATIONS, {"id": In(["q1"])}, order_by="created_at", descending=True)

        assert rows[0]["id"] == "q1"
        assert rows[0]["Quotation_fees"] == Decimal("5")
        assert "quotation_fees" not in rows[0]

    @pytest.mark.asyncio()
    async def test_empty_in_skips_the_database(self):
        factory = _make_factory(_make_db())
        rows = await SqlRecordStore(factory).fetch_by(Collection.PAYMENTS, {"id": In([])})

        assert rows == []
        factory.assert_not_called()

    @pytest.mark.asyncio()
    async def test_database_error_is_fetch_error(self):
        db = _make_db()
        db.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("down")))

        with pytest.raises(FetchError) as exc_info:
            await SqlRecordStore(_make_factory(db)).fetch_by(Collection.PAYMENTS, {"user_id": Eq("u1")})

        assert exc_info.value.collection == "payments"

    @pytest.mark.asyncio()
    async def test_unknown_filter_column(self):
        with pytest.raises(KeyError):
            await SqlRecordStore(_make_factory(_make_db())).fetch_by(Collection.PAYMENTS, {"nope": Eq(1)})


class TestWrites:
    @pytest.mark.asyncio()
    async def test_insert_maps_columns(self):
        db = _make_db()
        store = SqlRecordStore(_make_factory(db))

        created = await store.insert(
            Collection.PAYMENTS,
            {"id": "p1", "total_amount": Decimal("20"), "method": "WISE", "status": "Pending"},
        )

        instance = db.add.call_args.args[0]
        assert isinstance(instance, Payment)
        assert created["id"] == "p1"
        assert created["method"] == "WISE"
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_insert_rejects_unknown_columns(self):
        with pytest.raises(ValueError, match="Unknown columns"):
            await SqlRecordStore(_make_factory(_make_db())).insert(Collection.PAYMENTS, {"bogus": 1})

    @pytest.mark.asyncio()
    async def test_update_applies_patch(self):
        shipment = Shipment(id="s1", status="Waiting")
        db = _make_db(get_result=shipment)

        updated = await SqlRecordStore(_make_factory(db)).update(Collection.SHIPPING, "s1", {"label": "Carton A"})

        assert shipment.label == "Carton A"
        assert updated["label"] == "Carton A"
        assert updated["status"] == "Waiting"

    @pytest.mark.asyncio()
    async def test_update_missing_row(self):
        with pytest.raises(WriteError, match="not found"):
            await SqlRecordStore(_make_factory(_make_db())).update(Collection.SHIPPING, "s9", {"label": "x"})

    @pytest.mark.asyncio()
    async def test_commit_error_is_write_error(self):
        db = _make_db(get_result=Shipment(id="s1", status="Waiting"))
        db.commit = AsyncMock(side_effect=OperationalError("UPDATE", {}, Exception("down")))

        with pytest.raises(WriteError) as exc_info:
            await SqlRecordStore(_make_factory(db)).update(Collection.SHIPPING, "s1", {"label": "x"})

        assert exc_info.value.record_id == "s1"


class TestFactory:
    def test_rest_backend(self):
        with patch("opsdesk.store.settings") as mock_settings:
            mock_settings.store.store_backend = "rest"
            assert isinstance(create_record_store(), RestRecordStore)

    def test_sql_backend(self):
        with patch("opsdesk.store.settings") as mock_settings:
            mock_settings.store.store_backend = "sql"
            assert isinstance(create_record_store(), SqlRecordStore)

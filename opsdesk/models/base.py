"""SQLAlchemy declarative base and shared mixins.

Every table gets a string `id`, `created_at`, and `updated_at` via the
RecordMixin. Identifiers are stored as text: cross-collection references are
weak and may hold values that are not valid UUIDs, so `IN (...)` filters must
never fail on malformed identifiers.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""

    pass


def _new_id() -> str:
    return str(uuid.uuid4())


class RecordMixin:
    """Mixin adding id (text UUID), created_at, and updated_at to every model.

    Uses server-side defaults so timestamps are set by PostgreSQL.
    """

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

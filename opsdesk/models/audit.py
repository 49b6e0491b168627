"""AuditLog model: append-only trail of every emitted SystemEvent."""

from __future__ import annotations

from typing import Any

from sqlalchemy import String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from opsdesk.models.base import Base, RecordMixin


class AuditLog(RecordMixin, Base):
    """Immutable audit trail entry."""

    __tablename__ = "audit_log"

    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    collection: Mapped[str | None] = mapped_column(String(50), index=True)
    record_id: Mapped[str | None] = mapped_column(String(64), index=True)
    actor_id: Mapped[str | None] = mapped_column(String(100))
    data: Mapped[dict[str, Any] | None] = mapped_column(JSONB)

    def __repr__(self) -> str:
        return f"<AuditLog event={self.event_type} record={self.collection}/{self.record_id}>"

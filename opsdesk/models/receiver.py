"""SavedReceiver model: per-user receiver address book."""

from __future__ import annotations

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from opsdesk.models.base import Base, RecordMixin


class SavedReceiver(RecordMixin, Base):
    """Receiver details captured when submitting shipping info."""

    __tablename__ = "shipping_receivers"

    user_id: Mapped[str | None] = mapped_column(String(64), index=True)
    shipping_id: Mapped[str | None] = mapped_column(String(64))
    receiver_name: Mapped[str] = mapped_column(String(200), nullable=False)
    receiver_phone: Mapped[str] = mapped_column(String(50), nullable=False)
    receiver_address: Mapped[str] = mapped_column(Text, nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<SavedReceiver user={self.user_id} default={self.is_default}>"

"""Shipment model: one per quotation by convention, created outside this core."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Mapped, mapped_column

from opsdesk.models.base import Base, RecordMixin
from opsdesk.models.enums import ShipmentStatus


class Shipment(RecordMixin, Base):
    """Shipping row for an approved quotation."""

    __tablename__ = "shipping"

    quotation_id: Mapped[str | None] = mapped_column(String(64), index=True, comment="quotations.id")
    user_id: Mapped[str | None] = mapped_column(String(64), index=True)

    status: Mapped[str] = mapped_column(
        String(20), default=ShipmentStatus.WAITING.value, nullable=False
    )
    location: Mapped[str | None] = mapped_column(String(300))
    images_urls: Mapped[list[str] | None] = mapped_column(ARRAY(Text))
    videos_urls: Mapped[list[str] | None] = mapped_column(ARRAY(Text))
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    estimated_delivery: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    label: Mapped[str | None] = mapped_column(String(300))

    receiver_name: Mapped[str | None] = mapped_column(String(200))
    receiver_phone: Mapped[str | None] = mapped_column(String(50))
    receiver_address: Mapped[str | None] = mapped_column(Text)

    def __repr__(self) -> str:
        return f"<Shipment id={self.id} status={self.status}>"

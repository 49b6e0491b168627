"""Payment model: references quotations by an untyped identifier list."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from sqlalchemy import Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from opsdesk.models.base import Base, RecordMixin
from opsdesk.models.enums import PaymentStatus


class Payment(RecordMixin, Base):
    """A payment against one or more quotations."""

    __tablename__ = "payments"

    user_id: Mapped[str | None] = mapped_column(String(64), index=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    method: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=PaymentStatus.PENDING.value, nullable=False
    )
    reference_number: Mapped[str | None] = mapped_column(String(50), index=True)

    # Array of quotation ids or a comma-separated string; both exist in the wild
    quotation_ids: Mapped[Any | None] = mapped_column(JSONB)

    proof_url: Mapped[str | None] = mapped_column(Text)
    payment_proof: Mapped[str | None] = mapped_column(Text)

    def __repr__(self) -> str:
        return f"<Payment ref={self.reference_number} status={self.status}>"

"""Quotation model: a priced request with up to three alternative options."""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Mapped, mapped_column

from opsdesk.models.base import Base, RecordMixin
from opsdesk.models.enums import QuotationStatus


class Quotation(RecordMixin, Base):
    """A price request. `quotation_id` is the human-facing business reference, not the key."""

    __tablename__ = "quotations"

    quotation_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    user_id: Mapped[str | None] = mapped_column(String(64), index=True)

    # Product
    product_name: Mapped[str] = mapped_column(String(300), nullable=False)
    product_url: Mapped[str | None] = mapped_column(Text)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    image_url: Mapped[str | None] = mapped_column(Text)
    product_images: Mapped[list[str] | None] = mapped_column(ARRAY(Text))
    service_type: Mapped[str | None] = mapped_column(String(100))

    # Shipping
    shipping_country: Mapped[str | None] = mapped_column(String(100))
    shipping_city: Mapped[str | None] = mapped_column(String(100))
    shipping_method: Mapped[str | None] = mapped_column(String(20))

    # Option 1 (mandatory once priced)
    title_option1: Mapped[str | None] = mapped_column(String(300))
    unit_price_option1: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    unit_weight_option1: Mapped[Decimal | None] = mapped_column(Numeric(12, 3))
    total_price_option1: Mapped[str | None] = mapped_column(String(50))
    delivery_time_option1: Mapped[str | None] = mapped_column(String(100))
    description_option1: Mapped[str | None] = mapped_column(Text)
    image_option1: Mapped[str | None] = mapped_column(Text)
    image_option1_2: Mapped[str | None] = mapped_column(Text)

    # Option 2
    title_option2: Mapped[str | None] = mapped_column(String(300))
    unit_price_option2: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    unit_weight_option2: Mapped[Decimal | None] = mapped_column(Numeric(12, 3))
    total_price_option2: Mapped[str | None] = mapped_column(String(50))
    delivery_time_option2: Mapped[str | None] = mapped_column(String(100))
    description_option2: Mapped[str | None] = mapped_column(Text)
    image_option2: Mapped[str | None] = mapped_column(Text)
    image_option2_2: Mapped[str | None] = mapped_column(Text)

    # Option 3 (requires option 2)
    title_option3: Mapped[str | None] = mapped_column(String(300))
    unit_price_option3: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    unit_weight_option3: Mapped[Decimal | None] = mapped_column(Numeric(12, 3))
    total_price_option3: Mapped[str | None] = mapped_column(String(50))
    delivery_time_option3: Mapped[str | None] = mapped_column(String(100))
    description_option3: Mapped[str | None] = mapped_column(Text)
    image_option3: Mapped[str | None] = mapped_column(Text)
    image_option3_2: Mapped[str | None] = mapped_column(Text)

    selected_option: Mapped[int | None] = mapped_column(Integer, comment="1-based option index")
    quotation_fees: Mapped[Decimal | None] = mapped_column("Quotation_fees", Numeric(12, 2))
    status: Mapped[str] = mapped_column(
        String(20), default=QuotationStatus.PENDING.value, nullable=False
    )

    # Receiver captured at checkout; may diverge from the shipment's receiver
    receiver_name: Mapped[str | None] = mapped_column(String(200))
    receiver_phone: Mapped[str | None] = mapped_column(String(50))
    receiver_address: Mapped[str | None] = mapped_column(Text)

    def __repr__(self) -> str:
        return f"<Quotation ref={self.quotation_id} status={self.status}>"

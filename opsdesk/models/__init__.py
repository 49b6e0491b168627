"""SQLAlchemy ORM models for OpsDesk.

Import all models here so Alembic and Base.metadata.create_all() discover them.
"""

from __future__ import annotations

from opsdesk.models.audit import AuditLog
from opsdesk.models.base import Base
from opsdesk.models.enums import (
    Collection,
    PaymentMethod,
    PaymentStatus,
    QuotationStatus,
    ShipmentStatus,
    ShippingMethod,
)
from opsdesk.models.payment import Payment
from opsdesk.models.profile import Profile
from opsdesk.models.quotation import Quotation
from opsdesk.models.receiver import SavedReceiver
from opsdesk.models.shipment import Shipment

# Collection → ORM model, used by the SQL record store
MODEL_BY_COLLECTION: dict[Collection, type[Base]] = {
    Collection.QUOTATIONS: Quotation,
    Collection.PAYMENTS: Payment,
    Collection.SHIPPING: Shipment,
    Collection.PROFILES: Profile,
    Collection.SHIPPING_RECEIVERS: SavedReceiver,
}

__all__ = [
    # Base
    "Base",
    "MODEL_BY_COLLECTION",
    # Models
    "Quotation",
    "Payment",
    "Shipment",
    "Profile",
    "SavedReceiver",
    "AuditLog",
    # Enums
    "Collection",
    "QuotationStatus",
    "PaymentMethod",
    "PaymentStatus",
    "ShipmentStatus",
    "ShippingMethod",
]

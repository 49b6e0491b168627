"""Reconciliation: reference resolution, batch joins and enriched read models."""

from opsdesk.reconciliation.joiner import CollectionJoiner, Decoration, JoinedRecord, JoinResult, JoinSpec
from opsdesk.reconciliation.references import (
    ReferenceDescriptor,
    ReferenceKind,
    describe,
    resolve_identifiers,
)
from opsdesk.reconciliation.views import (
    PAYMENT_JOINS,
    SHIPMENT_JOINS,
    PaymentBoard,
    PaymentView,
    ShipmentBoard,
    ShipmentView,
)

__all__ = [
    "CollectionJoiner",
    "Decoration",
    "JoinedRecord",
    "JoinResult",
    "JoinSpec",
    "ReferenceDescriptor",
    "ReferenceKind",
    "describe",
    "resolve_identifiers",
    "PAYMENT_JOINS",
    "SHIPMENT_JOINS",
    "PaymentBoard",
    "PaymentView",
    "ShipmentBoard",
    "ShipmentView",
]

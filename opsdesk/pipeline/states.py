"""Lifecycle transition maps for quotations, payments and shipments.

Each map is {current_status: allowed next statuses}. An empty set marks a
terminal status. Setting a record to the status it already has is a no-op and
is handled by the machine, not listed here.
"""

from __future__ import annotations

from enum import Enum

from opsdesk.models.enums import Collection, PaymentStatus, QuotationStatus, ShipmentStatus

QUOTATION_TRANSITIONS: dict[QuotationStatus, frozenset[QuotationStatus]] = {
    QuotationStatus.PENDING: frozenset({QuotationStatus.APPROVED, QuotationStatus.REJECTED}),
    QuotationStatus.APPROVED: frozenset(),
    QuotationStatus.REJECTED: frozenset(),
}

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.APPROVED, PaymentStatus.REJECTED}),
    PaymentStatus.APPROVED: frozenset(),
    PaymentStatus.REJECTED: frozenset(),
}

# Delayed is reachable from every non-terminal status and can recover forward
SHIPMENT_TRANSITIONS: dict[ShipmentStatus, frozenset[ShipmentStatus]] = {
    ShipmentStatus.WAITING: frozenset({ShipmentStatus.PROCESSING, ShipmentStatus.DELAYED}),
    ShipmentStatus.PROCESSING: frozenset({
        ShipmentStatus.IN_TRANSIT,
        ShipmentStatus.DELIVERED,
        ShipmentStatus.DELAYED,
    }),
    ShipmentStatus.IN_TRANSIT: frozenset({ShipmentStatus.DELIVERED, ShipmentStatus.DELAYED}),
    ShipmentStatus.DELAYED: frozenset({
        ShipmentStatus.PROCESSING,
        ShipmentStatus.IN_TRANSIT,
        ShipmentStatus.DELIVERED,
    }),
    ShipmentStatus.DELIVERED: frozenset(),
}

TRANSITIONS: dict[Collection, dict] = {
    Collection.QUOTATIONS: QUOTATION_TRANSITIONS,
    Collection.PAYMENTS: PAYMENT_TRANSITIONS,
    Collection.SHIPPING: SHIPMENT_TRANSITIONS,
}

STATUS_ENUMS: dict[Collection, type[Enum]] = {
    Collection.QUOTATIONS: QuotationStatus,
    Collection.PAYMENTS: PaymentStatus,
    Collection.SHIPPING: ShipmentStatus,
}

# Status a record is assumed to have when the stored value is null
INITIAL_STATUS: dict[Collection, Enum] = {
    Collection.QUOTATIONS: QuotationStatus.PENDING,
    Collection.PAYMENTS: PaymentStatus.PENDING,
    Collection.SHIPPING: ShipmentStatus.WAITING,
}

"""Reconciliation audit: tracks records that may have drifted out of sync.

A best-effort side effect that kept failing (a payment whose quotation is
still Pending) or a write whose outcome is unknown leaves records that need an
operator to look at them. The audit subscribes to those events, keeps the
outstanding items in memory, and drops an item once a later side effect on the
same record succeeds. Drafts that could not be deleted are tracked the same
way and cleared by a later successful discard.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from opsdesk.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DriftItem:
    """One record that needs reconciling."""

    collection: str | None
    record_id: str | None
    reason: str
    first_seen: datetime
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> tuple[str | None, str | None]:
        return (self.collection, self.record_id)


_REASONS: dict[EventType, str] = {
    EventType.SIDE_EFFECT_FAILED: "side_effect_failed",
    EventType.WRITE_OUTCOME_UNKNOWN: "write_outcome_unknown",
    EventType.DRAFT_DELETE_FAILED: "stale_draft",
}


class ReconciliationAudit:
    """In-memory ledger of outstanding partial-success failures."""

    def __init__(self) -> None:
        self._items: dict[tuple[str | None, str | None], DriftItem] = {}

    @property
    def watched_types(self) -> list[EventType]:
        return [*_REASONS, EventType.SIDE_EFFECT_COMPLETED, EventType.STATUS_CHANGED, EventType.DRAFT_DISCARDED]

    async def on_event(self, event: SystemEvent) -> None:
        key = (event.collection, event.record_id)
        reason = _REASONS.get(event.event_type)
        if reason is not None:
            if key not in self._items:
                self._items[key] = DriftItem(
                    collection=event.collection,
                    record_id=event.record_id,
                    reason=reason,
                    first_seen=event.timestamp,
                    data=dict(event.data),
                )
                logger.warning("Reconciliation needed: %s/%s (%s)", event.collection, event.record_id, reason)
            return
        if key in self._items:
            self._items.pop(key)
            logger.info("Reconciled %s/%s via %s", event.collection, event.record_id, event.event_type.value)

    def outstanding(self) -> list[DriftItem]:
        return sorted(self._items.values(), key=lambda item: item.first_seen)

    def resolve(self, collection: str, record_id: str) -> bool:
        """Mark an item as handled by an operator. Returns False if it was not tracked."""
        return self._items.pop((collection, record_id), None) is not None

    def clear(self) -> None:
        self._items.clear()


# Module-level singleton
reconciliation_audit = ReconciliationAudit()

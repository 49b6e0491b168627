"""Audit log subscriber: persists every SystemEvent to the audit_log table.

Registered as a global subscriber (receives ALL events). Failures are logged
and never propagate to the event system.
"""

from __future__ import annotations

import logging

from pydantic_core import to_jsonable_python

from opsdesk.db.engine import async_session_factory
from opsdesk.models.audit import AuditLog
from opsdesk.schemas.events import SystemEvent

logger = logging.getLogger(__name__)


async def audit_on_event(event: SystemEvent) -> None:
    """Write a SystemEvent to the audit_log table."""
    try:
        async with async_session_factory() as db:
            db.add(AuditLog(
                event_type=event.event_type.value,
                collection=event.collection,
                record_id=event.record_id,
                actor_id=event.actor_id,
                data={**to_jsonable_python(event.data), "source_module": event.source_module},
            ))
            await db.commit()
    except Exception:
        logger.exception(
            "Failed to persist audit event: %s (%s/%s)",
            event.event_type.value,
            event.collection,
            event.record_id,
        )

"""SystemEvent schema: the core event type that flows through the dashboard core.

Every read failure, write and status transition emits a SystemEvent.
Subscribers (AuditLogger, reconciliation audits) consume these events asynchronously.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """All event types emitted by the system."""

    # Read path
    COLLECTION_FETCH_FAILED = "read.fetch_failed"
    BOARD_LOADED = "read.board_loaded"

    # Status pipeline
    STATUS_CHANGED = "pipeline.status_changed"
    OPTION_SELECTED = "pipeline.option_selected"
    RECEIVER_SUBMITTED = "pipeline.receiver_submitted"
    LABEL_UPDATED = "pipeline.label_updated"
    PROFILE_APPROVAL_CHANGED = "pipeline.profile_approval_changed"

    # Payments & sagas
    PAYMENT_CREATED = "payment.created"
    SIDE_EFFECT_COMPLETED = "saga.side_effect_completed"
    SIDE_EFFECT_FAILED = "saga.side_effect_failed"

    # Writes
    WRITE_FAILED = "write.failed"
    WRITE_OUTCOME_UNKNOWN = "write.outcome_unknown"

    # Drafts
    DRAFT_RESTORED = "draft.restored"
    DRAFT_DISCARDED = "draft.discarded"
    DRAFT_DELETE_FAILED = "draft.delete_failed"

    # Submission workflow
    QUOTATION_SUBMITTED = "workflow.quotation_submitted"
    PRICE_OPTIONS_SAVED = "workflow.price_options_saved"

    # System
    SYSTEM_STARTUP = "system.startup"
    SYSTEM_SHUTDOWN = "system.shutdown"
    SYSTEM_ERROR = "system.error"


class SystemEvent(BaseModel):
    """Core event that flows through the dashboard core.

    Immutable once created. Consumed by:
    - AuditLogger → writes to audit_log table
    - reconciliation audits → subscribe to SIDE_EFFECT_FAILED
    """

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Context (optional; not every event concerns a single record)
    collection: str | None = None
    record_id: str | None = None
    actor_id: str | None = None

    # Flexible payload
    data: dict[str, Any] = Field(default_factory=dict)

    # Metadata
    source_module: str | None = Field(default=None, description="Module that emitted this event")

    model_config = {"frozen": True}

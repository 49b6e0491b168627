"""Status machine for a single quotation, payment or shipment.

The machine only validates; the caller performs the remote write and emits the
STATUS_CHANGED event once the write is confirmed, so a failed write never
leaves a transition recorded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from opsdesk.errors import InvalidTransitionError
from opsdesk.models.enums import Collection
from opsdesk.pipeline.states import INITIAL_STATUS, STATUS_ENUMS, TRANSITIONS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusChange:
    """A validated transition. `from_status` is None when the stored value was unrecognized."""

    from_status: Enum | None
    to_status: Enum

    @property
    def is_noop(self) -> bool:
        return self.from_status == self.to_status

    def as_event_data(self) -> dict[str, Any]:
        return {
            "from_status": self.from_status.value if self.from_status is not None else None,
            "to_status": self.to_status.value,
        }


class StatusMachine:
    """Validates lifecycle transitions for one record."""

    def __init__(self, collection: Collection | str, record_id: str, current: Any) -> None:
        self.collection = Collection(collection)
        if self.collection not in TRANSITIONS:
            raise ValueError(f"{self.collection.value} has no status lifecycle")
        self.record_id = record_id
        self.raw_status = current
        self.current_status = self.parse(self.collection, current)

    @staticmethod
    def parse(collection: Collection, value: Any) -> Enum | None:
        """Parse a stored status case-insensitively. Null means the initial status."""
        if value is None or (isinstance(value, str) and not value.strip()):
            return INITIAL_STATUS[collection]
        try:
            return STATUS_ENUMS[collection](value)
        except ValueError:
            return None

    def _target(self, target: Any) -> Enum:
        try:
            return STATUS_ENUMS[self.collection](target)
        except ValueError:
            valid = [s.value for s in STATUS_ENUMS[self.collection]]
            raise InvalidTransitionError(
                f"Unknown {self.collection.value} status {target!r} (valid: {valid})"
            ) from None

    def get_valid_targets(self) -> list[Enum]:
        if self.current_status is None:
            return list(STATUS_ENUMS[self.collection])
        return sorted(TRANSITIONS[self.collection][self.current_status], key=lambda s: s.value)

    def can_transition(self, target: Any) -> bool:
        try:
            self.validate(target)
        except InvalidTransitionError:
            return False
        return True

    def validate(self, target: Any) -> StatusChange:
        """Check that `target` is reachable from the current status.

        Returns:
            The validated StatusChange; `is_noop` when target equals the current status.

        Raises:
            InvalidTransitionError: If the target is unknown or not allowed.
        """
        to_status = self._target(target)

        # Legacy rows can hold statuses outside the lifecycle; any known target repairs them
        if self.current_status is None:
            logger.warning(
                "Unrecognized %s status %r on %s, allowing %s",
                self.collection.value,
                self.raw_status,
                self.record_id,
                to_status.value,
            )
            return StatusChange(from_status=None, to_status=to_status)

        if to_status == self.current_status:
            return StatusChange(from_status=self.current_status, to_status=to_status)

        allowed = TRANSITIONS[self.collection][self.current_status]
        if to_status not in allowed:
            msg = (
                f"Invalid transition: {self.current_status.value} --> {to_status.value} "
                f"for {self.collection.value}/{self.record_id} "
                f"(valid: {[s.value for s in self.get_valid_targets()]})"
            )
            raise InvalidTransitionError(msg)
        return StatusChange(from_status=self.current_status, to_status=to_status)

    @property
    def is_terminal(self) -> bool:
        if self.current_status is None:
            return False
        return len(TRANSITIONS[self.collection][self.current_status]) == 0

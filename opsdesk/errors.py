"""Error taxonomy for the reconciliation core.

- FetchError: a collection failed to load (fatal only for the primary collection)
- WriteError: a remote insert/update failed; surfaced, no local state change
- WriteTimeoutError: the client stopped waiting; the remote write may have landed
- FieldValidationError (StepValidationError, PriceOptionsError): local, synchronous,
  never reach the store
- InvalidTransitionError: a status change not allowed by the transition map
- OperationInProgressError: re-entrancy guard refused a concurrent operation
- RecordNotFoundError: a transition targeted a record that is not in the store
"""

from __future__ import annotations


class OpsDeskError(Exception):
    """Base class for all errors raised by the core."""


class FetchError(OpsDeskError):
    """Raised when a record store read fails."""

    def __init__(self, collection: str, message: str | None = None) -> None:
        self.collection = collection
        if message is None:
            message = f"Failed to load {collection}"
        super().__init__(message)


class WriteError(OpsDeskError):
    """Raised when a remote insert or update fails."""

    def __init__(self, collection: str, record_id: str | None = None, message: str | None = None) -> None:
        self.collection = collection
        self.record_id = record_id
        if message is None:
            target = f"{collection}/{record_id}" if record_id else collection
            message = f"Failed to write {target}"
        super().__init__(message)


class WriteTimeoutError(WriteError):
    """Raised when a write is abandoned on timeout.

    The remote write may or may not have landed: callers must treat this as
    an unknown outcome, not as a failure.
    """

    def __init__(self, collection: str, record_id: str | None = None, timeout: float | None = None) -> None:
        self.timeout = timeout
        target = f"{collection}/{record_id}" if record_id else collection
        super().__init__(
            collection,
            record_id,
            f"Timed out after {timeout}s waiting for {target}: outcome unknown, refresh before retrying",
        )


class FieldValidationError(ValueError):
    """Raised when a submitted field is missing or malformed."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(message)


class StepValidationError(FieldValidationError):
    """Raised when a wizard step's required fields are missing or malformed."""

    def __init__(self, step: int, field: str, message: str) -> None:
        self.step = step
        super().__init__(field, message)


class PriceOptionsError(FieldValidationError):
    """Raised when price options violate the option layout rules."""


class InvalidTransitionError(ValueError):
    """Raised when a status change is not allowed from the current status."""


class OperationInProgressError(OpsDeskError):
    """Raised when an operation is already in flight for the same key."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Operation already in progress for {key}")


class RecordNotFoundError(OpsDeskError):
    """Raised when a transition targets a record the store does not return."""

    def __init__(self, collection: str, record_id: str) -> None:
        self.collection = collection
        self.record_id = record_id
        super().__init__(f"{collection}/{record_id} not found")

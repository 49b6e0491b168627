"""Per-key re-entrancy guard for remote operations that are not idempotent.

Payment creation, status transitions and wizard submission each hold a key for
the duration of their remote writes; a second call on the same key while the
first is in flight is refused instead of queued.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from opsdesk.errors import OperationInProgressError

logger = logging.getLogger(__name__)


class InFlightGuard:
    """Tracks which operation keys are currently running."""

    def __init__(self) -> None:
        self._active: set[str] = set()

    def is_busy(self, key: str) -> bool:
        return key in self._active

    @property
    def active(self) -> frozenset[str]:
        return frozenset(self._active)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Hold `key` until the block exits.

        Raises:
            OperationInProgressError: If `key` is already held.
        """
        # Check-and-add has no await in between, so it is atomic on one loop
        if key in self._active:
            logger.warning("Refused overlapping operation: %s", key)
            raise OperationInProgressError(key)
        self._active.add(key)
        try:
            yield
        finally:
            self._active.discard(key)

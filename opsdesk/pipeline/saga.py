"""Two-phase step runner for cross-entity writes without transactions.

Critical steps run in order and the first failure aborts the saga; nothing
after it is attempted. Once every critical step has succeeded the saga
returns, and the best-effort steps run in a background task with their own
retry policy. A best-effort failure is logged at ERROR and emitted as
SIDE_EFFECT_FAILED for reconciliation audits; it never undoes a critical step.

Usage:
    saga = Saga("create_payment", [
        SagaStep("insert_payment", insert_payment),
        SagaStep("approve_quotation", approve_quotation, critical=False, retry=RetryPolicy(3, 0.5)),
    ], collection="payments")
    result = await saga.run()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from opsdesk.admin.events import emit
from opsdesk.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

# Background side-effect tasks, kept referenced until they finish
_pending: set[asyncio.Task[None]] = set()


@dataclass(frozen=True)
class RetryPolicy:
    """`attempts` tries in total, sleeping backoff * 2**(n-1) after the n-th failure."""

    attempts: int = 1
    backoff: float = 0.0

    def delay(self, attempt: int) -> float:
        return self.backoff * (2 ** (attempt - 1))


@dataclass(frozen=True)
class SagaStep:
    name: str
    action: Callable[[], Awaitable[Any]]
    critical: bool = True
    retry: RetryPolicy = field(default_factory=RetryPolicy)


@dataclass
class StepOutcome:
    name: str
    ok: bool
    attempts: int = 1
    result: Any = None
    error: BaseException | None = None


@dataclass
class SagaResult:
    """Outcome of the critical phase. Best-effort steps report through events."""

    name: str
    outcomes: list[StepOutcome] = field(default_factory=list)
    followups: asyncio.Task[None] | None = None

    @property
    def ok(self) -> bool:
        return all(o.ok for o in self.outcomes)

    @property
    def failed(self) -> StepOutcome | None:
        return next((o for o in self.outcomes if not o.ok), None)

    def result_of(self, step_name: str) -> Any:
        outcome = next((o for o in self.outcomes if o.name == step_name), None)
        return outcome.result if outcome else None


class Saga:
    """Runs critical steps in order, then schedules best-effort steps."""

    def __init__(
        self,
        name: str,
        steps: Sequence[SagaStep],
        collection: str | None = None,
        record_id: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.name = name
        self.steps = list(steps)
        self.collection = collection
        self.record_id = record_id
        self.context = context or {}

    async def run(self) -> SagaResult:
        """Run the critical phase and schedule the best-effort phase.

        Returns as soon as the last critical step succeeds (or the first one
        fails). Exceptions raised by critical steps are captured on the result,
        never raised.
        """
        result = SagaResult(name=self.name)

        for step in (s for s in self.steps if s.critical):
            try:
                value = await step.action()
            except Exception as exc:
                logger.warning("Saga %s aborted at %s: %s", self.name, step.name, exc)
                result.outcomes.append(StepOutcome(name=step.name, ok=False, error=exc))
                return result
            result.outcomes.append(StepOutcome(name=step.name, ok=True, result=value))

        followups = [s for s in self.steps if not s.critical]
        if followups:
            task = asyncio.create_task(self._run_followups(followups), name=f"saga:{self.name}")
            _pending.add(task)
            task.add_done_callback(_pending.discard)
            result.followups = task
        return result

    async def _run_followups(self, steps: Sequence[SagaStep]) -> None:
        for step in steps:
            await self._run_with_retry(step)

    async def _run_with_retry(self, step: SagaStep) -> StepOutcome:
        attempts = max(step.retry.attempts, 1)
        attempt = 0
        while True:
            attempt += 1
            try:
                value = await step.action()
            except Exception as exc:
                if attempt >= attempts:
                    logger.error(
                        "Saga %s step %s failed after %d attempts: %s",
                        self.name, step.name, attempts, exc,
                    )
                    await self._report(EventType.SIDE_EFFECT_FAILED, step, attempt, error=str(exc))
                    return StepOutcome(name=step.name, ok=False, attempts=attempt, error=exc)
                delay = step.retry.delay(attempt)
                logger.warning(
                    "Saga %s step %s failed (attempt %d/%d), retrying in %.2fs: %s",
                    self.name, step.name, attempt, attempts, delay, exc,
                )
                await asyncio.sleep(delay)
            else:
                logger.info("Saga %s step %s completed (attempt %d)", self.name, step.name, attempt)
                await self._report(EventType.SIDE_EFFECT_COMPLETED, step, attempt)
                return StepOutcome(name=step.name, ok=True, attempts=attempt, result=value)

    async def _report(self, event_type: EventType, step: SagaStep, attempts: int, error: str | None = None) -> None:
        data: dict[str, Any] = {**self.context, "saga": self.name, "step": step.name, "attempts": attempts}
        if error is not None:
            data["error"] = error
        await emit(SystemEvent(
            event_type=event_type,
            collection=self.collection,
            record_id=self.record_id,
            data=data,
            source_module="pipeline.saga",
        ))


def pending_side_effects() -> int:
    """Number of best-effort phases still running."""
    return len(_pending)


async def drain(timeout: float | None = None) -> None:
    """Wait for every scheduled best-effort phase to finish (shutdown and tests)."""
    if not _pending:
        return
    await asyncio.wait_for(asyncio.gather(*list(_pending), return_exceptions=True), timeout=timeout)

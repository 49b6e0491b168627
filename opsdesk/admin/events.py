"""In-process event bus for SystemEvents.

Fetch failures, record writes, status transitions and saga side effects all
publish here. The audit log and the reconciliation audit subscribe. Publishing
only enqueues, so a slow subscriber never holds up a transition.

Usage:
    from opsdesk.admin.events import emit, subscribe

    subscribe(on_drift, event_types=[EventType.SIDE_EFFECT_FAILED])
    await emit(SystemEvent(event_type=EventType.STATUS_CHANGED, collection="payments", record_id=pid))
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine, Iterable
from dataclasses import dataclass
from typing import Any

from opsdesk.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[SystemEvent], Coroutine[Any, Any, None]]


@dataclass(frozen=True)
class Subscription:
    handler: EventHandler
    # None means every event type
    event_types: frozenset[EventType] | None = None

    def wants(self, event: SystemEvent) -> bool:
        return self.event_types is None or event.event_type in self.event_types

    @property
    def name(self) -> str:
        return getattr(self.handler, "__name__", repr(self.handler))


class EventBus:
    """Subscriber registry plus a single queue worker that fans events out."""

    def __init__(self) -> None:
        self.subscriptions: list[Subscription] = []
        self._queue: asyncio.Queue[SystemEvent] | None = None
        self._worker: asyncio.Task[None] | None = None

    # ── Registration ─────────────────────────────────────────────────

    def subscribe(self, handler: EventHandler, event_types: Iterable[EventType] | None = None) -> None:
        types = frozenset(event_types) if event_types is not None else None
        self.subscriptions.append(Subscription(handler, types))
        if types is None:
            logger.info("Subscribed %s to all events", self.subscriptions[-1].name)
        else:
            logger.info("Subscribed %s to %s", self.subscriptions[-1].name, sorted(t.value for t in types))

    def unsubscribe(self, handler: EventHandler) -> None:
        self.subscriptions = [s for s in self.subscriptions if s.handler is not handler]

    # ── Publishing ───────────────────────────────────────────────────

    async def publish(self, event: SystemEvent) -> None:
        queue = self._queue if self._queue is not None else self.start()
        await queue.put(event)
        logger.debug("Queued %s for %s/%s", event.event_type.value, event.collection, event.record_id)

    async def dispatch(self, event: SystemEvent) -> int:
        """Deliver one event to every matching subscriber; return how many failed."""
        targets = [s for s in self.subscriptions if s.wants(event)]
        if not targets:
            return 0
        outcomes = await asyncio.gather(
            *[s.handler(event) for s in targets],
            return_exceptions=True,
        )
        failed = 0
        for sub, outcome in zip(targets, outcomes):
            if isinstance(outcome, Exception):
                failed += 1
                logger.error(
                    "Subscriber %s failed on %s (%s/%s): %s",
                    sub.name,
                    event.event_type.value,
                    event.collection,
                    event.record_id,
                    outcome,
                )
        return failed

    # ── Worker lifecycle ─────────────────────────────────────────────

    def start(self) -> asyncio.Queue[SystemEvent]:
        """Create the queue and worker if needed; return the live queue."""
        queue = self._queue
        if queue is None:
            queue = self._queue = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(queue))
        return queue

    async def stop(self) -> None:
        """Deliver everything already queued, then stop the worker."""
        if self._queue is not None:
            await self._queue.join()
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None
        self._queue = None

    async def _run(self, queue: asyncio.Queue[SystemEvent]) -> None:
        while True:
            event = await queue.get()
            try:
                await self.dispatch(event)
            except Exception:
                logger.exception("Dispatch crashed for %s", event.event_type.value)
            finally:
                queue.task_done()


# ── Module-level bus ─────────────────────────────────────────────────

bus = EventBus()


def subscribe(handler: EventHandler, event_types: Iterable[EventType] | None = None) -> None:
    """Register `handler` for `event_types`, or for every event when None."""
    bus.subscribe(handler, event_types)


def unsubscribe(handler: EventHandler) -> None:
    bus.unsubscribe(handler)


async def emit(event: SystemEvent) -> None:
    await bus.publish(event)


async def emit_nowait(event: SystemEvent) -> None:
    """Deliver immediately, bypassing the queue. Use sparingly; prefer `emit()`."""
    await bus.dispatch(event)


async def start_event_system() -> None:
    bus.start()
    logger.info("Event system started with %d subscriptions", len(bus.subscriptions))


async def stop_event_system() -> None:
    await bus.stop()
    logger.info("Event system stopped")

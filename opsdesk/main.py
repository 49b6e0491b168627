"""FastAPI application entry point: wires the event bus, audit trail and API.

Usage:
    python -m opsdesk.main
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from opsdesk import __version__
from opsdesk.admin.events import emit, start_event_system, stop_event_system, subscribe
from opsdesk.admin.reconciliation_audit import reconciliation_audit
from opsdesk.api.routes import router
from opsdesk.config import settings
from opsdesk.db.engine import db_lifespan
from opsdesk.pipeline.saga import drain, pending_side_effects
from opsdesk.schemas.events import EventType, SystemEvent
from opsdesk.security.audit import audit_on_event

# ── Logging setup ────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    stream=sys.stdout,
)
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = logging.getLogger(__name__)

# Seconds to wait for background side effects on shutdown
_DRAIN_TIMEOUT = 10.0

# ── FastAPI lifespan ─────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    logger.info("Starting OpsDesk (env=%s, store=%s)", settings.environment, settings.store.store_backend)

    async with db_lifespan():
        logger.info("Database initialized")

        await start_event_system()
        subscribe(audit_on_event)
        subscribe(reconciliation_audit.on_event, event_types=reconciliation_audit.watched_types)
        logger.info("Event system started with audit subscribers")

        await emit(SystemEvent(
            event_type=EventType.SYSTEM_STARTUP,
            data={"version": __version__, "store_backend": settings.store.store_backend},
            source_module="main",
        ))

        try:
            yield
        finally:
            logger.info("Shutting down OpsDesk...")
            if pending_side_effects():
                logger.info("Waiting for %d background side effects", pending_side_effects())
                try:
                    await drain(timeout=_DRAIN_TIMEOUT)
                except asyncio.TimeoutError:
                    logger.error("Side effects still running at shutdown; check the reconciliation audit")

            await emit(SystemEvent(event_type=EventType.SYSTEM_SHUTDOWN, source_module="main"))
            await stop_event_system()
            logger.info("Event system stopped")

    logger.info("OpsDesk shutdown complete")


# ── FastAPI app ──────────────────────────────────────────────────────

app = FastAPI(
    title="OpsDesk API",
    description="Reconciliation, status pipeline and drafts for the operations dashboard",
    version=__version__,
    lifespan=lifespan,
)
app.include_router(router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {
        "status": "ok",
        "environment": settings.environment,
        "store_backend": settings.store.store_backend,
    }


# ── Entry point ──────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "opsdesk.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )

"""FastAPI application entry point — wires everything together.

Usage:
    python -m src.main

Resolves the Verifactu configuration eagerly (a broken live configuration
stops startup instead of silently falling back to simulation), then serves
the sync API and a health check.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from src.api.verifactu import router as verifactu_router
from src.config import settings
from src.db.engine import db_lifespan
from src.events.bus import emit, start_event_system, stop_event_system, subscribe, unsubscribe
from src.integrations.verifactu.client import VerifactuClient
from src.integrations.verifactu.config import get_engine_configuration
from src.schemas.events import EventType, SystemEvent
from src.security.audit import audit_on_event
from src.sync.orchestrator import SyncOrchestrator
from src.sync.poller import StatusPoller
from src.sync.service import persist_sync_state

# ── Logging setup ────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
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

# ── FastAPI lifespan ─────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    logger.info("Starting Verifactu sync service (env=%s)", settings.environment)

    # 1. Engine configuration: raises ConfigurationError on a broken live setup
    engine_config = get_engine_configuration()

    async with db_lifespan():
        logger.info("Database initialized")

        # 2. Event system + audit trail
        subscribe(audit_on_event)
        await start_event_system()

        # 3. Sync engine
        client = VerifactuClient(engine_config)
        orchestrator = SyncOrchestrator(
            client,
            max_retries=settings.verifactu.verifactu_max_retries,
            retry_backoff=settings.verifactu.verifactu_retry_backoff,
        )
        poller = StatusPoller(
            orchestrator,
            interval=settings.verifactu.verifactu_poll_interval,
            on_update=persist_sync_state,
        )
        app.state.engine_config = engine_config
        app.state.orchestrator = orchestrator
        app.state.poller = poller

        await emit(SystemEvent(
            event_type=EventType.SYSTEM_STARTUP,
            data={"mode": engine_config.mode.value, "environment": settings.environment},
            source_module="main",
        ))
        logger.info("Verifactu sync engine ready (mode=%s)", engine_config.mode.value)

        try:
            yield
        finally:
            logger.info("Shutting down Verifactu sync service")
            await poller.stop_all()
            await emit(SystemEvent(event_type=EventType.SYSTEM_SHUTDOWN, source_module="main"))
            await stop_event_system()
            unsubscribe(audit_on_event)


# ── FastAPI app ──────────────────────────────────────────────────────

app = FastAPI(
    title="Verifactu Sync",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(verifactu_router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "ok"}


# ── Entrypoint ───────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        log_level=settings.log_level.lower(),
    )

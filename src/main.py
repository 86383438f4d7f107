"""
Incident Escalation Service - Main Application
===============================================

SLA timers and single-fire escalation for open incidents.

Modules:
- Escalation: policy resolution, pause/resume-aware SLA timers,
  lazy escalation detection, append-only transition history

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: EscalationEngine, collaborator interfaces, DTOs
- Domain: Entities and value objects
- Infrastructure: Database, policy file, Slack, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from config import settings
from core import ApplicationException

# Infrastructure
from infrastructure.database import init_database, close_database, create_tables

# Escalation Module
from escalation.container import create_container
from escalation.infrastructure import EscalationScheduler
from escalation.interfaces import escalation_router

# Logging and middleware
from shared.infrastructure.logging import setup_logging, get_logger
from shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database (database backend only)
    3. Build the escalation container: load and watch policies,
       wire store backend and dispatcher (process-wide collaborators)
    4. Start the escalation sweep scheduler (if enabled)

    SHUTDOWN:
    1. Stop sweep scheduler
    2. Stop policy watcher
    3. Close dispatcher HTTP client
    4. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Escalation Service", extra={
        "version": settings.app_version,
        "environment": settings.environment,
        "store_backend": settings.escalation_store_backend
    })
    app.state.settings = settings

    uses_database = settings.escalation_store_backend == "database"
    if uses_database:
        logger.info("Initializing database")
        init_database()
        # Note: if the database is down the service still starts, and
        # escalation endpoints answer 503 until it is back
        try:
            await create_tables()
        except Exception as e:
            logger.warning(f"Database not available - running in degraded mode: {e}")

    logger.info("Loading escalation policies")
    container = create_container(settings, watch_policies=True)
    app.state.escalation = container

    scheduler = None
    if settings.sweep_enabled:
        async def escalation_sweep_job():
            """Background escalation sweep."""
            async with container.engine_scope() as engine:
                await engine.sweep()

        try:
            scheduler = EscalationScheduler(interval_seconds=settings.escalation_sweep_interval)
            await scheduler.start(escalation_sweep_job)
        except Exception as e:
            logger.warning(f"Escalation scheduler not started: {e}")
            scheduler = None
    app.state.scheduler = scheduler

    logger.info("Escalation Service started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Escalation Service")

    if scheduler:
        await scheduler.stop()

    await container.close()

    if uses_database:
        await close_database()

    logger.info("Escalation Service shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Incident Escalation API",
    description="""
    ## Incident Escalation Engine

    SLA timers for open incidents with pause/resume and exactly-once escalation.

    ---

    ### ⏱️ Escalation Timers

    **Endpoints:**
    - `POST /escalations/incidents/{id}/calculate` - Start (or read) the incident's timer
    - `GET /escalations/incidents/{id}` - Current status; escalates if overdue
    - `GET /escalations/incidents/{id}/history` - Transition history
    - `POST /escalations/incidents/{id}/pause` - Stop the SLA clock
    - `POST /escalations/incidents/{id}/resume` - Restart the SLA clock
    - `POST /escalations/incidents/{id}/resolve` - Close the timer
    - `POST /escalations/sweep` - Escalate every overdue timer

    **Features:**
    - Paused time pushes the deadline forward
    - Escalation detected on read, no background process required
    - Optimistic concurrency: concurrent requests never lose an update
    - Exactly one escalation notification per incident (Slack)

    ---

    ### 🔧 Default Policies (minutes)

    | Priority | Timeout |
    |----------|---------|
    | Urgent   | 2  |
    | High     | 5  |
    | Medium   | 15 |
    | Low      | 30 |

    *Type-specific rules and per-event overrides live in `escalation_policies.yaml`.*
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
# Added last runs first: correlation id must exist before logging reads it
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(escalation_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "store_backend": "database",
                        "escalation_policies": "loaded",
                        "sweep_scheduler": "running"
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Returns service health status including:
    - Store backend in use
    - Escalation policy status
    - Sweep scheduler state
    """
    container = getattr(request.app.state, "escalation", None)
    scheduler = getattr(request.app.state, "scheduler", None)

    checks = {
        "store_backend": settings.escalation_store_backend,
        "escalation_policies": "loaded" if container else "not_loaded",
        "sweep_scheduler": "running" if scheduler and scheduler.is_running else "stopped"
    }

    return {
        "status": "healthy" if container else "starting",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": "Incident Escalation Service",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "escalation": {
                "prefix": "/escalations",
                "endpoints": [
                    "POST /escalations/incidents/{id}/calculate - Start or read timer",
                    "GET /escalations/incidents/{id} - Get timer status",
                    "GET /escalations/incidents/{id}/history - Get transition history",
                    "POST /escalations/incidents/{id}/pause - Pause timer",
                    "POST /escalations/incidents/{id}/resume - Resume timer",
                    "POST /escalations/incidents/{id}/resolve - Resolve timer",
                    "POST /escalations/sweep - Run escalation sweep"
                ]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )

"""
Help-desk SLA Engine - Main Application
=======================================

SLA compliance and escalation engine for a help-desk ticket store.

Modules:
- SLA Escalation: Overdue detection, escalation rules, auto-close, team pulse

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Engine, dispatcher, sweeper, DTOs
- Domain: Entities, value objects, classifiers
- Infrastructure: Database, config watcher, notification sinks, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from config import settings
from core import ApplicationException

# Infrastructure
from infrastructure.database import (
    close_database,
    create_tables,
    get_session_maker,
    init_database,
)

# SLA Module
from sla.infrastructure import (
    EmailWebhookClient,
    SLAConfigManager,
    SLAScheduler,
    SystemClock,
)
from sla.services import SLAEngineRunner
from sla.interfaces import sla_router

# Shared
from shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database (and create tables outside production)
    3. Load SLA configuration and watch it for changes
    4. Build the engine runner
    5. Start the SLA scheduler

    SHUTDOWN:
    1. Stop SLA scheduler
    2. Stop config watcher
    3. Close email relay client
    4. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting SLA engine", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    init_database()
    if settings.create_tables_on_startup:
        logger.info("Creating database tables")
        try:
            await create_tables()
        except Exception as e:
            logger.warning(f"Database not available - running in degraded mode: {e}")

    logger.info("Loading SLA configuration")
    sla_config_manager = SLAConfigManager()
    sla_config_manager.load(settings.sla_config_path)
    sla_config_manager.start_watching()

    clock = SystemClock()
    email_client = EmailWebhookClient()
    sla_runner = SLAEngineRunner(
        get_session_maker(),
        sla_config_manager,
        email_sink=email_client,
        clock=clock
    )

    sla_scheduler = None
    if settings.sla_evaluation_interval > 0:
        sla_scheduler = SLAScheduler(
            interval_seconds=settings.sla_evaluation_interval,
            max_instances=settings.sla_max_concurrent_runs
        )
        await sla_scheduler.start(sla_runner.run_scheduled)
    else:
        logger.info("SLA scheduler disabled; passes run only on demand")

    app.state.settings = settings
    app.state.clock = clock
    app.state.sla_config_manager = sla_config_manager
    app.state.sla_runner = sla_runner
    app.state.sla_scheduler = sla_scheduler

    logger.info("SLA engine started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down SLA engine")

    if sla_scheduler:
        await sla_scheduler.stop()

    sla_config_manager.stop_watching()
    await email_client.close()
    await close_database()

    logger.info("SLA engine shutdown complete")


def create_app(use_lifespan: bool = True) -> FastAPI:
    """Build the FastAPI application; tests pass ``use_lifespan=False``."""
    app = FastAPI(
        title="Help-desk SLA Engine API",
        description="""
    ## Help-desk SLA Compliance & Escalation Engine

    Evaluates every active ticket against its SLA target, fires escalation
    rules at most once per threshold, and auto-closes tickets left in
    Resolved for more than 24 hours.

    **Endpoints:**
    - `POST /sla/engine/run` - Run an evaluation pass now
    - `GET /sla/team-pulse` - Per-agent workload
    - `GET /sla/tickets/{id}` - SLA state of one ticket
    - `GET /sla/auto-close/preview` - Tickets the next sweep would close
    - `GET /sla/rules` - Active escalation rules

    **Default targets:** Urgent 4h, High 8h, Medium 48h, Low 120h, otherwise 24h.
    """,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan if use_lifespan else None
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
    app.add_middleware(CorrelationIDMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_exception_handler(ApplicationException, application_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    # === Include Module Routers ===
    app.include_router(sla_router)

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
                            "sla_config": "loaded",
                            "sla_scheduler": "running"
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
        - SLA configuration status
        - Scheduler state
        """
        scheduler = getattr(request.app.state, "sla_scheduler", None)
        checks = {
            "sla_config": "loaded" if getattr(request.app.state, "sla_config_manager", None) else "missing",
            "sla_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
        }
        return {
            "status": "healthy",
            "version": settings.app_version,
            "environment": settings.environment,
            "checks": checks
        }

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "service": settings.app_name,
            "version": settings.app_version,
            "architecture": "Clean Architecture / Modular Monolith",
            "docs": "/docs",
            "health": "/health",
            "modules": {
                "sla": {
                    "prefix": "/sla",
                    "endpoints": [
                        "POST /sla/engine/run - Run an evaluation pass now",
                        "GET /sla/team-pulse - Per-agent workload",
                        "GET /sla/tickets/{id} - Get ticket SLA status",
                        "GET /sla/auto-close/preview - Preview auto-close",
                        "GET /sla/rules - List escalation rules"
                    ]
                }
            }
        }

    return app


app = create_app()


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower()
    )

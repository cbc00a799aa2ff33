"""
Agency Desk - Main Application
==============================

Ticket lifecycle and SLA engine for a support desk.

Modules:
- Tickets: status changes, SLA tracking, assignment, escalation and auto-close

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services, scanners and DTOs
- Domain: Entities, value objects, status normalization
- Infrastructure: Database, notification sinks, config watcher, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

# Configuration and Core
from agency_desk.config import settings
from agency_desk.container import EngineContainer
from agency_desk.core import ApplicationException

# Infrastructure
from agency_desk.infrastructure.database import (
    close_database,
    create_tables,
    get_session_maker,
    init_database,
)

# Module Routers
from agency_desk.tickets.interfaces import jobs_router, tickets_router

# Middleware and Logging
from agency_desk.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from agency_desk.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Build the engine container (loads the engine YAML config)
    4. Start the config watcher and, when enabled, the pass scheduler

    SHUTDOWN:
    1. Stop scheduler and config watcher
    2. Close the webhook client
    3. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Agency Desk", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    container: Optional[EngineContainer] = app.state.container
    owns_container = container is None

    if owns_container:
        logger.info("Initializing database")
        init_database()

        # Development convenience - production should use migrations
        try:
            await create_tables()
        except (SQLAlchemyError, OSError) as e:
            logger.warning(
                "Database not available - running in degraded mode",
                extra={"error": str(e)}
            )

        logger.info("Loading engine configuration", extra={"path": str(settings.engine_config_path)})
        container = EngineContainer(get_session_maker(), settings)
        app.state.container = container

    await container.start()
    logger.info("Agency Desk started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Agency Desk")
    await container.close()

    if owns_container:
        app.state.container = None
        await close_database()

    logger.info("Agency Desk shutdown complete")


def create_app(container: Optional[EngineContainer] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        container: Pre-built engine container; when omitted the lifespan
            builds one from settings
    """
    app = FastAPI(
        title="Agency Desk API",
        description="""
    ## Ticket Lifecycle & SLA Engine

    **Tickets:**
    - `POST /tickets` - Create a ticket (SLA tracking + automatic assignment)
    - `POST /tickets/{id}/intake` - Track and assign a ticket created elsewhere
    - `PATCH /tickets/{id}/status` - Change status (accepts aliases such as `Em Andamento`)
    - `POST /tickets/{id}/responses` - Record an agent response
    - `GET /tickets/{id}/sla` - SLA due times, breaches and badge
    - `GET /tickets/sla/summary` - Compliance summary

    **Jobs** (for cron or a scheduler; safe to re-run):
    - `POST /jobs/escalation` - Reassign tickets idle past a rule's threshold
    - `POST /jobs/auto-close` - Close tickets resolved past the grace period
    - `POST /jobs/sla-check` - Warn agents about deadlines due within the hour
    """,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    app.state.settings = settings
    app.state.container = container

    # === CORS Middleware ===
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # === Custom Middleware (from shared) ===
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(CorrelationIDMiddleware)
    app.add_exception_handler(ApplicationException, application_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    # === Include Module Routers ===
    app.include_router(tickets_router)
    app.include_router(jobs_router)

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
                            "engine": "ready",
                            "engine_config": "loaded",
                            "scheduler": "stopped"
                        }
                    }
                }
            }
        }
    })
    async def health_check(request: Request):
        """
        Health check endpoint for load balancers and orchestrators.

        Returns service health status including engine readiness,
        configuration and scheduler state.
        """
        engine = request.app.state.container
        scheduler = engine.scheduler if engine else None
        checks = {
            "engine": "ready" if engine else "not_initialized",
            "engine_config": "loaded" if engine else "not_loaded",
            "scheduler": "running" if scheduler and scheduler.is_running else "stopped",
        }

        return {
            "status": "healthy" if engine else "degraded",
            "version": settings.app_version,
            "environment": settings.environment,
            "checks": checks
        }

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "service": "Agency Desk",
            "version": settings.app_version,
            "architecture": "Clean Architecture / Modular Monolith",
            "docs": "/docs",
            "health": "/health",
            "modules": {
                "tickets": {
                    "prefix": "/tickets",
                    "endpoints": [
                        "POST /tickets - Create ticket",
                        "POST /tickets/{id}/intake - Intake existing ticket",
                        "PATCH /tickets/{id}/status - Change status",
                        "POST /tickets/{id}/responses - Record agent response",
                        "GET /tickets/{id}/sla - Get ticket SLA status",
                        "GET /tickets/sla/summary - SLA compliance summary"
                    ]
                },
                "jobs": {
                    "prefix": "/jobs",
                    "endpoints": [
                        "POST /jobs/escalation - Run escalation pass",
                        "POST /jobs/auto-close - Run auto-close pass",
                        "POST /jobs/sla-check - Run SLA warning pass"
                    ]
                }
            }
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "agency_desk.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )

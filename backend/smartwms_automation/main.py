"""SmartWMS Automation API — FastAPI application entry point.

Invariants:
    - Routes registered explicitly (no auto-discovery)
    - Global error handlers map AutomationError → structured JSON responses
    - CORS configured from settings (not hardcoded)
    - Database, engine, and scheduler initialized on startup via lifespan;
      torn down in reverse order on shutdown

Design Decisions:
    - Lifespan over @app.on_event: FastAPI recommended pattern, cleaner cleanup
    - Error handlers live in api/error_handlers.py
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from smartwms_automation import __version__
from smartwms_automation.api.error_handlers import register_error_handlers
from smartwms_automation.api.routes import automation_executions, automation_rules, health
from smartwms_automation.config import get_settings
from smartwms_automation.infrastructure import database
from smartwms_automation.infrastructure.observability import setup_logging
from smartwms_automation.services.engine_runtime import init_engine, shutdown_engine

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    database.init_db(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    runtime = init_engine(settings)
    if settings.scheduler_enabled:
        await runtime.scheduler.start()
    logger.info("SmartWMS Automation API started")
    yield
    logger.info("SmartWMS Automation API shutting down")
    await shutdown_engine()
    if database.db_manager:
        await database.db_manager.dispose()


app = FastAPI(
    title="SmartWMS Automation API", version=__version__, lifespan=lifespan,
)

settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

# Routes: explicit registration
app.include_router(health.router)
app.include_router(automation_rules.router)
app.include_router(automation_executions.router)

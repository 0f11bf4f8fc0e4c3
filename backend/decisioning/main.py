"""Inbox Decisioning API: FastAPI application entry point.

Invariants:
    - Routes registered explicitly (no auto-discovery)
    - Global error handlers map DecisioningError -> structured JSON responses
    - Database initialized on startup via lifespan context manager

Design Decisions:
    - Lifespan over @app.on_event: FastAPI recommended pattern, cleaner cleanup
    - create_app() factory: tests build an app without running the lifespan
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from decisioning import __version__
from decisioning.api.error_handlers import register_error_handlers
from decisioning.api.routes import decisioning, health
from decisioning.config import get_settings
from decisioning.infrastructure import database
from decisioning.infrastructure.observability import setup_logging

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
    logger.info("Inbox Decisioning API started")
    yield
    if database.db_manager is not None:
        await database.db_manager.dispose()
    logger.info("Inbox Decisioning API shutting down")


def create_app() -> FastAPI:
    app = FastAPI(title="Inbox Decisioning API", version=__version__, lifespan=lifespan)
    app.include_router(health.router)
    app.include_router(decisioning.router)
    register_error_handlers(app)
    return app


app = create_app()

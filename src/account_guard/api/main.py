"""
FastAPI application factory and configuration.

This module creates the FastAPI application instance,
configures logging, exception handlers, and lifespan events.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from psycopg_pool import ConnectionPool

from account_guard import __version__
from account_guard.adapters.repository.postgres import run_migrations
from account_guard.api.dependencies import get_email_relay
from account_guard.api.errors import register_exception_handlers
from account_guard.api.v1 import router as v1_router
from account_guard.config.settings import get_settings

logger = logging.getLogger(__name__)

# OpenAPI tags for documentation grouping
tags_metadata = [
    {
        "name": "v1",
        "description": "Account security API v1 - Devices, verification codes and email relay",
    },
]


def configure_logging(level: str) -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    FastAPI lifespan context manager.

    Manages application startup and shutdown:
    - Validates settings (missing secrets abort startup)
    - Creates database connection pool and runs migrations (postgres backend)
    - Closes the pool and the relay HTTP client on shutdown
    """
    settings = get_settings()
    configure_logging(settings.log_level)

    logger.info("Starting application...")
    app.state.pool = None

    if settings.storage_backend == "postgres":
        logger.info("Connecting to database...")
        # Create connection pool with explicit sizing
        pool = ConnectionPool(
            conninfo=settings.database_url,
            min_size=settings.pool_min_size,
            max_size=settings.pool_max_size,
        )

        logger.info("Running database migrations...")
        run_migrations(pool)
        app.state.pool = pool
    else:
        logger.warning("Using in-memory storage; state is lost on restart")

    logger.info("Application startup complete")

    yield

    # Shutdown
    logger.info("Shutting down application...")
    get_email_relay().close()
    if app.state.pool is not None:
        app.state.pool.close()
        logger.info("Database connection pool closed")


app = FastAPI(
    title="account-guard",
    description="Account security core - device registry, verification codes and "
    "signed email relay",
    version=__version__,
    openapi_tags=tags_metadata,
    lifespan=lifespan,
)

register_exception_handlers(app)

# Include v1 API routes
app.include_router(v1_router, prefix="/v1")


@app.get("/health")
async def health_check(request: Request) -> dict[str, str]:
    """
    Health check endpoint with storage validation.

    Returns 200 OK if application and database are healthy.
    Raises exception if database connection fails.
    """
    pool = getattr(request.app.state, "pool", None)
    if pool is None:
        return {"status": "healthy", "storage": "memory"}

    with pool.connection() as conn:
        conn.execute("SELECT 1")

    return {"status": "healthy", "storage": "postgres"}

"""
FastAPI application factory and configuration.

This module creates the FastAPI application instance,
configures exception handlers, and lifespan events.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from psycopg_pool import ConnectionPool

from insport_auth import __version__
from insport_auth.adapters.repository import run_migrations
from insport_auth.adapters.session import create_redis_client
from insport_auth.api.dependencies import build_services
from insport_auth.api.errors import register_exception_handlers
from insport_auth.api.v1 import router as v1_router
from insport_auth.config.settings import get_settings

logger = logging.getLogger(__name__)

# OpenAPI tags for documentation grouping
tags_metadata = [
    {
        "name": "v1",
        "description": "InSport account API v1 - Create accounts via OTP verification and log in",
    },
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    FastAPI lifespan context manager.

    Manages application startup and shutdown:
    - Creates database connection pool and runs migrations on startup
    - Connects the Redis session store
    - Builds the signup and login services
    - Closes OTP channels, pool and Redis client on shutdown
    """
    settings = get_settings()

    logger.info("Starting application...")
    logger.info("Connecting to database...")

    # Create connection pool with explicit sizing and bounded connect time
    pool = ConnectionPool(
        conninfo=settings.database_url,
        min_size=settings.pool_min_size,
        max_size=settings.pool_max_size,
        timeout=settings.database_connect_timeout_seconds,
        kwargs={"connect_timeout": max(1, int(settings.database_connect_timeout_seconds))},
    )

    logger.info("Running database migrations...")
    run_migrations(pool)

    logger.info("Connecting to session store...")
    redis_client = create_redis_client(settings.redis_url, settings.redis_socket_timeout_seconds)

    app.state.pool = pool
    app.state.redis = redis_client
    app.state.services = build_services(settings, pool, redis_client)

    if settings.otp_delivery == "console":
        logger.warning("OTP delivery is set to console; codes are written to the log")
    logger.info("Application startup complete")

    yield

    # Shutdown
    logger.info("Shutting down application...")
    app.state.services.close()
    redis_client.close()
    pool.close()
    logger.info("Database connection pool closed")


app = FastAPI(
    title="insport-auth",
    description="InSport account creation - phone/email OTP verification, profile and password",
    version=__version__,
    openapi_tags=tags_metadata,
    lifespan=lifespan,
)

register_exception_handlers(app)

app.include_router(v1_router, prefix="/v1")


@app.get("/health")
def health_check(request: Request) -> dict[str, str]:
    """
    Health check endpoint with database and session-store validation.

    Returns 200 OK if the application, database and Redis are healthy.
    Connection failures are answered with 503 by the exception handlers.
    """
    pool = request.app.state.pool
    with pool.connection() as conn:
        conn.execute("SELECT 1")
    request.app.state.redis.ping()

    return {"status": "healthy"}

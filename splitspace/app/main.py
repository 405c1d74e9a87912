"""
FastAPI Application Entry Point.

This is the main application file for the SplitSpace Ledger Engine.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from splitspace.app.core.config import settings
from splitspace.app.api.v1.router import router as api_v1_router
from splitspace.app.core.observability import ObservabilityMiddleware, configure_logging
from splitspace.app.core.redis_client import close_redis, ping_redis
from splitspace.app.db.session import engine, Base
from splitspace.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from splitspace.app.models.user import User
from splitspace.app.models.wallet import Wallet
from splitspace.app.models.room import Room, RoomMember, RoomContribution
from splitspace.app.models.recurring_plan import RecurringPlan
from splitspace.app.models.ledger_entry import LedgerEntry
from splitspace.app.models.transaction_limit import TransactionLimit
from splitspace.app.models.activity_log import ActivityLog
from splitspace.app.models.dlq import DeadLetterQueue

configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Closes the Redis connection pool on shutdown.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_redis()
    await engine.dispose()

# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Wallet ledger, Money Rooms escrow and HourGlass recurring savings",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Redis being down degrades event delivery only; money movement keeps working.

    Returns:
        dict: Status and application information
    """
    redis_ok = await ping_redis()
    return {
        "status": "healthy" if redis_ok else "degraded",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "up" if redis_ok else "down",
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to the SplitSpace Ledger Engine API",
        "docs": "/docs",
        "health": "/health",
    }

"""
Booking registry service.

Run with ``uvicorn trikeride.app.main:app``. Driver apps talk to the
``/v1`` routes through ``trikeride.app.clients.booking_registry``.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from trikeride.app.core.config import settings
from trikeride.app.api.v1.router import router as api_v1_router
from trikeride.app.core.jwt import issue_token
from trikeride.app.core.observability import ObservabilityMiddleware
from trikeride.app.core.redis_client import ping_redis, close_redis
from trikeride.app.db.session import engine, Base
from trikeride.app.models.enums import UserRole
from trikeride.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Registers the tables on Base.metadata
from trikeride.app.models.booking import Booking  # noqa: F401
from trikeride.app.models.audit_log import AuditLog  # noqa: F401
from trikeride.app.models.driver_review import DriverReview, DriverRating  # noqa: F401

logger = logging.getLogger("trikeride")


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(
        "Registry ready (completion radius %.0f m, bookings expire after %d min)",
        settings.completion_radius_meters,
        settings.booking_expiry_minutes,
    )
    try:
        yield
    finally:
        await close_redis()
        await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Booking registry for tricycle trip matching and fare negotiation",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

for exc_class, handler in (
    (AppException, app_exception_handler),
    (HTTPException, http_exception_handler),
    (RequestValidationError, validation_exception_handler),
    (Exception, generic_exception_handler),
):
    app.add_exception_handler(exc_class, handler)

app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/health", tags=["Health"])
async def health_check():
    """Liveness plus Redis reachability; declined-offer hiding is off while Redis is down."""
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "ok" if await ping_redis() else "unavailable",
    }


@app.post("/auth/test-token", tags=["Authentication"])
async def generate_test_token(
    user_id: int = 1,
    username: str = "test_user",
    role: UserRole = UserRole.DRIVER,
):
    """
    Mint a bearer token for local development.

    Identity belongs to an external provider, so this route only exists
    while ``debug`` is on.
    """
    if not settings.debug:
        raise HTTPException(status_code=404, detail="Not Found")

    return {
        "access_token": issue_token(user_id, role.value, username=username),
        "token_type": "bearer",
        "user_id": user_id,
        "role": role.value,
    }

"""
Booking Data Service - FastAPI application

Thin HTTP surface over a DataManager: get, refresh, status, cache
statistics, cache clearing and health.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from booking_data.errors import (
    BookingDataError,
    DataExpiredError,
    DecodeError,
    FetchTimeoutError,
    ManagerDestroyedError,
    NotFoundError,
    ValidationError,
)
from booking_data.manager import DataManager, build_data_manager
from config.settings import settings

# Version tracking
APP_VERSION = "v0.1.0"
APP_NAME = "Booking Data Service"

logger = logging.getLogger("booking.api")

# Most specific first
ERROR_STATUS_CODES = [
    (DataExpiredError, 410),
    (NotFoundError, 404),
    (ValidationError, 422),
    (DecodeError, 422),
    (ManagerDestroyedError, 503),
    (FetchTimeoutError, 504),
]


def status_code_for(error: BookingDataError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 502


def get_manager(request: Request) -> DataManager:
    return request.app.state.manager


def create_app(manager: Optional[DataManager] = None) -> FastAPI:
    """
    Build the application.

    Args:
        manager: Use this manager instead of building one from settings on
            startup. A supplied manager is not destroyed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.manager is None
        if owned:
            logging.basicConfig(level=settings.log_level)
            app.state.manager = build_data_manager(settings)
        try:
            yield
        finally:
            if owned:
                app.state.manager.destroy()
                app.state.manager = None

    app = FastAPI(
        title=APP_NAME,
        description="Cached, deduplicated access to booking data",
        version=APP_VERSION,
        lifespan=lifespan,
    )
    app.state.manager = manager

    @app.exception_handler(BookingDataError)
    async def booking_error_handler(request: Request, exc: BookingDataError):
        status_code = status_code_for(exc)
        logger.warning(f"{request.method} {request.url.path} -> {status_code}: {exc}")
        body = {
            "detail": str(exc),
            "error": type(exc).__name__,
            "category": exc.category.value,
            "retryable": exc.retryable,
        }
        if isinstance(exc, ValidationError):
            body["issues"] = exc.issues
        return JSONResponse(status_code=status_code, content=body)

    @app.get("/health")
    def health_check(request: Request):
        """Health check endpoint."""
        health = get_manager(request).health_check()
        return {"status": "ok" if health.is_healthy else "degraded", **health.to_dict()}

    @app.get("/version")
    def version_info():
        """Version information endpoint."""
        return {"name": APP_NAME, "version": APP_VERSION}

    @app.get("/booking")
    def get_booking(request: Request):
        """Current booking, served from cache when possible."""
        return get_manager(request).get().to_payload()

    @app.post("/booking/refresh")
    def refresh_booking(request: Request):
        """Fetch the booking from the source, bypassing the cache."""
        return get_manager(request).refresh().to_payload()

    @app.get("/booking/status")
    def booking_status(request: Request):
        manager = get_manager(request)
        record = manager.current_record
        return {
            **manager.get_status().to_dict(),
            "shipReference": record.ship_reference if record else None,
        }

    @app.get("/cache/stats")
    def cache_stats(request: Request):
        """Get cache statistics."""
        manager = get_manager(request)
        is_valid, fetched_at, age = manager.get_persistent_info()
        return {
            "memory": manager.get_cache_statistics().to_dict(),
            "metrics": manager.get_cache_metrics().to_dict(),
            "performance": manager.get_performance_metrics().to_dict(),
            "persistent": {
                "isValid": is_valid,
                "fetchedAt": fetched_at.isoformat() if fetched_at else None,
                "ageSeconds": age,
            },
            "resources": manager.get_resource_usage().to_dict(),
        }

    @app.delete("/cache")
    def clear_cache(request: Request):
        get_manager(request).clear_cache()
        return {"status": "cleared"}

    return app


app = create_app()

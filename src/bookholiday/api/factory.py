"""FastAPI application factory with role-based route mounting."""

import os
from contextlib import asynccontextmanager
from typing import Literal

from fastapi import FastAPI, Request, Response

from bookholiday.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from bookholiday.observability.logging import get_logger
from bookholiday.scheduler.refresh_scheduler import RefreshScheduler
from bookholiday.services.availability import get_availability_service

from .routers import public, worker

AppRole = Literal["public", "worker"]

logger = get_logger(__name__)


@asynccontextmanager
async def worker_lifespan(app: FastAPI):
    """Run the refresh scheduler for the app's lifetime when enabled."""
    service = get_availability_service()
    scheduler = None
    if service.settings.scheduler_enabled:
        scheduler = RefreshScheduler(service)
        scheduler.start()
    app.state.refresh_scheduler = scheduler
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop()
            logger.info("refresh scheduler stopped")


def create_app(role: AppRole | None = None) -> FastAPI:
    """Create FastAPI app with routes based on APP_ROLE.

    Args:
        role: Explicit role override. If None, reads from APP_ROLE env var.
              Defaults to "public" if env var is not set.

    Returns:
        Configured FastAPI application. The worker role also runs the
        background refresh scheduler when SCHEDULER_ENABLED is set.
    """
    if role is None:
        role = os.environ.get("APP_ROLE", "public")  # type: ignore[assignment]

    app = FastAPI(
        title="BookHoliday Availability",
        docs_url=None,
        redoc_url=None,
        lifespan=worker_lifespan if role == "worker" else None,
    )
    app.state.role = role
    app.state.refresh_scheduler = None

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    # Public routes (always)
    app.include_router(public.router)

    # Worker routes only for worker role
    if role == "worker":
        app.include_router(worker.router)

    return app

"""
FastAPI application for the floor service.

Run with:
    uvicorn criollo.api.main:app --reload
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from criollo.api import invoices_router, orders_router, reservations_router, tables_router
from criollo.config import configure_logging, load_settings
from criollo.errors import FloorError, StorageError
from criollo.services.floor import FloorCoordinator

logger = logging.getLogger(__name__)


def create_app(coordinator: Optional[FloorCoordinator] = None) -> FastAPI:
    """Build the app around a coordinator (one is created from the environment if omitted)."""
    if coordinator is None:
        settings = load_settings()
        configure_logging(settings.log_level)
        coordinator = FloorCoordinator.from_settings(settings)

    app = FastAPI(title="Criollo Floor Service")
    app.state.coordinator = coordinator

    # Allow CORS for local dev (adjust in production)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(FloorError)
    async def floor_error_handler(request: Request, exc: FloorError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=503,
            content={"detail": {"kind": "storage_unavailable", "message": str(exc)}},
        )

    @app.get("/health", summary="Liveness probe")
    async def health():
        return {"status": "ok", "storage": type(app.state.coordinator.storage).__name__}

    app.include_router(tables_router.router)
    app.include_router(orders_router.router)
    app.include_router(invoices_router.router)
    app.include_router(reservations_router.router)
    return app


app = create_app()

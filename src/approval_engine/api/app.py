"""
FastAPI application
"""
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging
from typing import Optional

from .routers import templates, instances, metrics, monitoring
from .middleware import RequestLoggingMiddleware, AuthenticationMiddleware
from .. import __version__
from ..config import EngineSettings, load_settings
from ..exceptions import (
    AuthorizationError, ConcurrencyConflict, InvalidActionError,
    NotFoundError, ValidationError, WorkflowEngineError
)
from ..services import ApprovalServices, open_services


logger = logging.getLogger(__name__)


# engine error -> (HTTP status, error code)
ERROR_STATUS = [
    (ValidationError, status.HTTP_400_BAD_REQUEST, "validation_error"),
    (InvalidActionError, status.HTTP_400_BAD_REQUEST, "invalid_action"),
    (AuthorizationError, status.HTTP_403_FORBIDDEN, "forbidden"),
    (NotFoundError, status.HTTP_404_NOT_FOUND, "not_found"),
    (ConcurrencyConflict, status.HTTP_409_CONFLICT, "concurrency_conflict"),
]


def create_app(
    settings: Optional[EngineSettings] = None,
    services: Optional[ApprovalServices] = None
) -> FastAPI:
    """Build the API application.

    Args:
        settings: Engine settings; loaded from file and environment when omitted.
        services: Pre-wired services (e.g. in-memory ones). When omitted the
            lifespan opens a database from ``settings.database_url``.
    """
    settings = settings or (services.settings if services else load_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Approval Engine API...")
        active = services or await open_services(settings)
        app.state.services.update(active.as_dict())

        if settings.sweeper_enabled:
            await active.sweeper.start()

        logger.info("Approval Engine API started successfully")

        yield

        logger.info("Shutting down Approval Engine API...")
        await active.close()
        app.state.services.clear()
        logger.info("Approval Engine API shut down successfully")

    app = FastAPI(
        title="Approval Engine API",
        description="Role-gated approval workflow engine",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json"
    )
    app.state.settings = settings
    app.state.services = {}

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        AuthenticationMiddleware,
        secret_key=settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
        disabled=settings.auth_disabled
    )
    # added last so it wraps authentication and logs rejected requests too
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(templates.router, prefix="/api/v1/templates", tags=["templates"])
    app.include_router(instances.router, prefix="/api/v1/instances", tags=["instances"])
    app.include_router(metrics.router, prefix="/api/v1/metrics", tags=["metrics"])
    app.include_router(monitoring.router, prefix="/api/v1/monitoring", tags=["monitoring"])

    @app.exception_handler(WorkflowEngineError)
    async def engine_exception_handler(request: Request, exc: WorkflowEngineError):
        status_code, error = status.HTTP_500_INTERNAL_SERVER_ERROR, "engine_error"
        for exc_type, mapped_status, mapped_error in ERROR_STATUS:
            if isinstance(exc, exc_type):
                status_code, error = mapped_status, mapped_error
                break

        if status_code == status.HTTP_500_INTERNAL_SERVER_ERROR:
            logger.error(f"Unmapped engine error: {exc}", exc_info=exc)

        return JSONResponse(
            status_code=status_code,
            content={
                "error": error,
                "message": str(exc),
                "details": getattr(exc, "errors", None) or None,
                "request_id": getattr(request.state, "request_id", None)
            }
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=exc)

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
                "request_id": getattr(request.state, "request_id", None)
            }
        )

    @app.get("/", tags=["root"])
    async def root():
        return {
            "name": "Approval Engine API",
            "version": __version__,
            "status": "running",
            "docs": "/docs",
            "health": "/api/v1/monitoring/health"
        }

    return app

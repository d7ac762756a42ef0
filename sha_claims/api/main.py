"""
FastAPI Main Application
Entry point for the SHA claims workflow API
Source: https://fastapi.tiangolo.com/
Verified: 2025-11-02
"""

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from sha_claims import __version__
from sha_claims.api.config import get_settings
from sha_claims.api.routes import (
    claims,
    health,
    sha_batches,
    sha_documents,
    sha_invoices,
    sha_reconciliation,
    sha_workflows,
)
from sha_claims.core.exceptions import ClaimsWorkflowError
from sha_claims.db.connection import close_db_connection, get_session_maker
from sha_claims.schemas.common import ErrorBody, ErrorResponse
from sha_claims.utils.logging import get_logger, setup_logging

settings = get_settings()

setup_logging(
    level=settings.LOG_LEVEL,
    log_file=settings.LOG_FILE,
    json_logs=settings.is_production,
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):  # type: ignore[no-untyped-def]
    """
    Application lifespan manager.

    Builds the service container on startup unless one was installed already
    (tests install their own).
    Source: https://fastapi.tiangolo.com/advanced/events/
    """
    logger.info(f"Starting SHA claims API in {settings.ENVIRONMENT} mode")

    if getattr(app.state, "container", None) is None:
        # Imported here so the API module does not need a broker to load
        from sha_claims.services.container import build_container
        from sha_claims.tasks.sha_tasks import CeleryAutomationScheduler

        app.state.container = build_container(
            get_session_maker(), settings, CeleryAutomationScheduler()
        )

    yield

    logger.info("Shutting down application")
    await app.state.container.close()
    await close_db_connection()
    logger.info("Database connections closed")


def _error_response(
    status_code: int, message: str, error_type: str, details: dict[str, Any], headers=None
) -> JSONResponse:
    body = ErrorResponse(message=message, error=ErrorBody(type=error_type, details=details))
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(body.model_dump()),
        headers=headers,
    )


async def workflow_error_handler(request: Request, exc: ClaimsWorkflowError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} refused: {exc.message}")
    return _error_response(
        exc.status_code, exc.message, type(exc).__name__, jsonable_encoder(exc.details)
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return _error_response(
        422,
        "Request validation failed",
        "RequestValidationError",
        {"errors": jsonable_encoder(exc.errors())},
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(
        exc.status_code,
        str(exc.detail),
        "HTTPException",
        {},
        headers=getattr(exc, "headers", None),
    )


def create_app() -> FastAPI:
    """Build the FastAPI application with routers and the envelope error handlers."""
    app = FastAPI(
        title="SHA Claims Workflow API",
        description="Claims, pre-submission invoices, batches, SHA submission and reconciliation",
        version=__version__,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        openapi_url="/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )

    # Source: https://fastapi.tiangolo.com/tutorial/cors/
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=settings.CORS_CREDENTIALS,
        allow_methods=settings.CORS_METHODS,
        allow_headers=settings.CORS_HEADERS,
    )

    # Source: https://fastapi.tiangolo.com/tutorial/handling-errors/#install-custom-exception-handlers
    app.add_exception_handler(ClaimsWorkflowError, workflow_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)

    app.include_router(health.router)
    app.include_router(claims.router)
    app.include_router(sha_invoices.router)
    app.include_router(sha_batches.router)
    app.include_router(sha_documents.router)
    app.include_router(sha_workflows.router)
    app.include_router(sha_reconciliation.router)

    @app.get("/")
    async def root() -> dict[str, Any]:
        return {
            "name": "SHA Claims Workflow API",
            "version": __version__,
            "environment": settings.ENVIRONMENT,
            "docs": "/docs" if not settings.is_production else "disabled",
        }

    return app


app = create_app()


def run() -> None:
    """Serve the API with uvicorn (the `sha-claims-api` console script)."""
    import uvicorn

    uvicorn.run(
        "sha_claims.api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()

"""
Main FastAPI application for the Opzenix API.

This module provides the FastAPI application with middleware, CORS
configuration, exception handlers and the lifespan that brings up the
database, the realtime change feed and the pipeline runner.
"""

import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator, Callable, Dict, Optional, cast

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from .. import __version__
from ..core.config import get_config
from ..core.database import close_tortoise, init_tortoise
from ..core.errors import ErrorType, OpzenixError, create_error_response
from ..core.executions.runner import PipelineRunner, set_runner
from ..core.logging import get_logger, setup_logging
from ..core.realtime import create_change_feed, set_change_feed
from .versioning import get_version_info


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers to all responses."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Any]
    ) -> Response:
        """Dispatch request with security headers."""
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = (
            "geolocation=(), microphone=(), camera=()"
        )

        # Remove server information
        if "server" in response.headers:
            del response.headers["server"]

        return cast(Response, response)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    config = get_config()
    setup_logging(
        level=config.logging.level,
        log_file=Path(config.logging.log_file) if config.logging.log_file else None,
        json_output=config.logging.json_output,
    )

    # Startup
    logger = get_logger("api.app")
    logger.info("Starting Opzenix API server", **config.summary())

    await init_tortoise()

    feed = create_change_feed()
    await feed.start()
    set_change_feed(feed)

    runner = PipelineRunner()
    set_runner(runner)

    yield

    # Shutdown
    logger.info("Shutting down Opzenix API server...")
    await runner.shutdown()
    set_runner(None)
    await feed.stop()
    set_change_feed(None)
    await close_tortoise()


def create_app(environment: Optional[str] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        environment: Optional environment override. If provided, this will
                    override the environment from config for this app instance.
    """
    config = get_config()

    if environment:
        from ..core.config import Environment

        config.environment = Environment(environment)

    app = FastAPI(
        title="Opzenix API",
        description="""
        ## Opzenix CI/CD Execution Control Plane

        Backend for pipeline executions, approvals, deployments and
        supply-chain evidence.

        ### Features
        - **Executions**: Run pipelines drawn in the flow editor, follow node
          progress and logs, cancel and rerun from checkpoints
        - **Governance**: Branch to environment mappings, environment locks
          and multi-approver gates
        - **Deployments**: Deployment history and rollbacks
        - **Evidence**: Artifacts, SBOMs, vulnerability scans, CI evidence and
          test reports
        - **Realtime**: Row change feed over WebSocket at `/ws/changes`
        """,
        version=__version__,
        docs_url="/docs" if not config.is_production() else None,
        redoc_url="/redoc" if not config.is_production() else None,
        lifespan=lifespan,
    )

    @app.get("/api/version", tags=["version"])
    async def get_api_version_info() -> Dict[str, Any]:
        """Get API version information."""
        return get_version_info()

    _setup_middleware(app, config)
    _setup_exception_handlers(app)
    _setup_routes(app)

    return app


def _setup_middleware(app: FastAPI, config: Any) -> None:
    """Set up application middleware."""
    # Security headers middleware (add first to ensure headers are set)
    app.add_middleware(SecurityHeadersMiddleware)

    # CORS middleware with environment-specific configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins_resolved,
        allow_credentials=config.cors_credentials_resolved,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=config.api.cors_headers_resolved,
        max_age=config.api.cors_max_age,
    )

    # Gzip compression middleware
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    # Logging middleware
    @app.middleware("http")
    async def log_requests(request: Request, call_next: Any) -> Any:
        logger = get_logger("api.middleware")
        start_time = time.time()

        response = await call_next(request)

        logger.info(
            "Request handled",
            method=request.method,
            path=request.url.path,
            client=request.client.host if request.client else "unknown",
            status_code=response.status_code,
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )
        return response


def _setup_exception_handlers(app: FastAPI) -> None:
    """Set up exception handlers."""
    logger = get_logger("api.exceptions")

    @app.exception_handler(OpzenixError)
    async def opzenix_exception_handler(
        request: Request, exc: OpzenixError
    ) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "Request failed",
            error_type=exc.error_type.value,
            error=exc.message,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response(path=request.url.path),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.warning("Validation error", errors=exc.errors(), path=request.url.path)
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=create_error_response(
                ErrorType.VALIDATION_ERROR,
                "Validation error",
                {"errors": jsonable_errors(exc)},
                path=request.url.path,
            ),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        logger.warning("HTTP exception", status_code=exc.status_code, detail=exc.detail)
        error_type = (
            ErrorType.NOT_FOUND
            if exc.status_code == status.HTTP_404_NOT_FOUND
            else ErrorType.UNKNOWN_ERROR
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=create_error_response(
                error_type, str(exc.detail), path=request.url.path
            ),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error("Unexpected error", error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=create_error_response(
                ErrorType.UNKNOWN_ERROR,
                "Internal server error",
                path=request.url.path,
            ),
        )


def jsonable_errors(exc: RequestValidationError) -> Any:
    """Validation errors without the non-serializable exception objects."""
    return jsonable_encoder(exc.errors(), custom_encoder={Exception: str})


def _setup_routes(app: FastAPI) -> None:
    """Set up application routes."""
    from .routes import (
        approvals,
        artifacts,
        audit,
        deployments,
        environments,
        evidence,
        executions,
        flow_maps,
        health,
        notifications,
        telemetry,
        webhooks,
        websocket,
    )

    app.include_router(health.router, tags=["health"])
    app.include_router(executions.router)
    app.include_router(executions.checkpoints_router)
    app.include_router(approvals.router)
    app.include_router(deployments.router)
    app.include_router(webhooks.router)
    app.include_router(artifacts.router)
    app.include_router(evidence.router)
    app.include_router(flow_maps.router)
    app.include_router(telemetry.router)
    app.include_router(notifications.router)
    app.include_router(environments.router)
    app.include_router(audit.router)
    app.include_router(websocket.websocket_router)


# Create the main application instance
app = create_app()


def main() -> None:
    """Run the API server with uvicorn."""
    import uvicorn

    config = get_config()

    uvicorn.run(
        "opzenix.api.app:app",
        host=config.api.host,
        port=config.api.port,
        reload=config.api.reload and config.is_development(),
        log_level="info",
    )


if __name__ == "__main__":
    main()

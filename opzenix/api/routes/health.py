"""
Health check endpoints for the Opzenix API.
"""

import time
from datetime import datetime, timezone
from typing import Any, Dict, Union

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from tortoise import connections
from tortoise.exceptions import BaseORMException

from ... import __version__
from ...core.config import get_config
from ...core.logging import get_logger
from ...core.realtime import get_change_feed
from ..models import HealthResponse

router = APIRouter()

SERVICE_NAME = "Opzenix API"


async def _check_database() -> str:
    logger = get_logger("api.health")
    try:
        await connections.get("default").execute_query("SELECT 1")
    except (BaseORMException, KeyError, OSError) as e:
        logger.error("Database health check failed", error=str(e))
        return "unhealthy"
    return "healthy"


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health Check",
    description="Returns the health of the API and its database and change feed",
)
async def health_check() -> HealthResponse:
    """
    Health check endpoint.

    Reports the database connection and which change feed backend is used.
    The overall status is ``degraded`` when a component is unhealthy.
    """
    start_time = time.time()
    config = get_config()

    components = {
        "api": "healthy",
        "database": await _check_database(),
    }
    metrics = {
        "response_time_ms": round((time.time() - start_time) * 1000, 2),
        "realtime_backend": config.realtime.backend,
        "change_feed_type": type(get_change_feed()).__name__,
    }

    overall_status = "healthy"
    if any(value == "unhealthy" for value in components.values()):
        overall_status = "degraded"

    return HealthResponse(
        status=overall_status,
        service=SERVICE_NAME,
        version=__version__,
        components=components,
        metrics=metrics,
    )


@router.get("/health/ready", response_model=None)
async def readiness_check() -> Union[Dict[str, Any], JSONResponse]:
    """
    Readiness check endpoint.

    The service is ready once the database answers.
    """
    database = await _check_database()
    if database != "healthy":
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "not_ready",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "service": SERVICE_NAME,
                "checks": {"database": database},
            },
        )

    return {
        "status": "ready",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": SERVICE_NAME,
        "checks": {"database": "ready"},
    }


@router.get("/health/live", response_model=Dict[str, Any])
async def liveness_check() -> Dict[str, Any]:
    """Liveness check endpoint."""
    return {
        "status": "alive",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": SERVICE_NAME,
    }

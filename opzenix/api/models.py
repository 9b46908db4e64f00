"""
Common API response models for standardized responses.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Error body returned by every exception handler."""

    success: bool = Field(False, description="Always false for error responses")
    error: str = Field(..., description="Human-readable error message")
    error_type: str = Field(..., description="Error category")
    error_context: Dict[str, Any] = Field(
        default_factory=dict, description="Additional error details"
    )
    timestamp: datetime = Field(..., description="Error timestamp")
    path: Optional[str] = Field(None, description="Request path that caused the error")


class HealthResponse(BaseModel):
    """
    Standardized health check response.
    """

    status: str = Field(
        ...,
        description="Overall health status",
        examples=["healthy", "degraded", "unhealthy"],
    )
    service: str = Field(..., description="Service name", examples=["Opzenix API"])
    version: str = Field(..., description="Service version", examples=["0.1.0"])
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Check timestamp",
    )
    components: Optional[Dict[str, str]] = Field(
        None,
        description="Component health status",
        examples=[{"api": "healthy", "database": "healthy"}],
    )
    metrics: Optional[Dict[str, Any]] = Field(
        None,
        description="Health metrics",
        examples=[
            {
                "response_time_ms": 3.1,
                "realtime_backend": "redis",
                "change_feed_type": "RedisChangeFeed",
            }
        ],
    )

    model_config = {
        "json_schema_extra": {
            "example": {
                "status": "healthy",
                "service": "Opzenix API",
                "version": "0.1.0",
                "timestamp": "2024-01-15T10:30:00Z",
                "components": {"api": "healthy", "database": "healthy"},
                "metrics": {
                    "response_time_ms": 3.1,
                    "realtime_backend": "redis",
                    "change_feed_type": "RedisChangeFeed",
                },
            }
        }
    }

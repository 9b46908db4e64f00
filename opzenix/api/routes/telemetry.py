"""
OpenTelemetry ingestion endpoint.
"""

from typing import Any, Dict

from fastapi import Body

from ...core.services.telemetry_service import TelemetryService
from ..versioning import create_versioned_router

router = create_versioned_router(prefix="/telemetry", tags=["telemetry"])


@router.post("")
async def ingest_telemetry(body: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    """Store a single signal or a ``{"signals": [...]}`` batch."""
    service = TelemetryService()
    return await service.ingest(body)

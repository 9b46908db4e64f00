"""
Notification endpoint.
"""

from typing import Any, Dict, List, Optional

from fastapi import status
from pydantic import BaseModel, Field

from ...core.database.schemas import NotificationEventResponse
from ...core.services.notification_service import NotificationService
from ..versioning import create_versioned_router

router = create_versioned_router(prefix="/notifications", tags=["notifications"])


class NotifyRequest(BaseModel):
    """Notification to record for one or more targets."""

    type: Optional[str] = None
    target: Optional[str] = None
    targets: Optional[List[str]] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


@router.post("", status_code=status.HTTP_201_CREATED)
async def notify(request: NotifyRequest) -> Dict[str, Any]:
    """Record a notification event per target."""
    service = NotificationService()
    events: List[NotificationEventResponse] = await service.notify(
        request.type,
        target=request.target,
        targets=request.targets,
        payload=request.payload,
    )
    return {"success": True, "count": len(events), "data": events}

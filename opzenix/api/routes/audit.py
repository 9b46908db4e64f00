"""
Audit trail endpoint.
"""

from typing import List, Optional

from fastapi import Query

from ...core.database.schemas import AuditLogResponse
from ...core.services.audit_service import AuditService
from ..versioning import create_versioned_router

router = create_versioned_router(prefix="/audit-logs", tags=["audit"])


@router.get("", response_model=List[AuditLogResponse])
async def list_audit_logs(
    resource_type: Optional[str] = Query(None, description="Filter by resource type"),
    resource_id: Optional[str] = Query(None, description="Filter by resource ID"),
    action: Optional[str] = Query(None, description="Filter by action"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> List[AuditLogResponse]:
    """Audit trail, newest first."""
    service = AuditService()
    return await service.list(
        resource_type=resource_type,
        resource_id=resource_id,
        action=action,
        limit=limit,
        offset=offset,
    )

"""
Audit trail service.

Every state-changing operation records who did what to which resource.
"""

from typing import Any, Dict, List, Optional

from ..database.schemas import AuditLogResponse
from ..logging import get_logger
from ..models import AuditLog

logger = get_logger(__name__)


class AuditService:
    """Audit log service using Tortoise ORM directly."""

    async def record(
        self,
        action: str,
        resource_type: str,
        resource_id: Optional[Any] = None,
        user_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditLogResponse:
        """Append an audit log entry."""
        entry = await AuditLog.create(
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            user_id=user_id,
            details=details or {},
        )
        logger.info(
            "Audit event recorded",
            action=action,
            resource_type=resource_type,
            resource_id=entry.resource_id,
            user_id=user_id,
        )
        return AuditLogResponse.model_validate(entry)

    async def list(
        self,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        action: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[AuditLogResponse]:
        """List audit entries, newest first."""
        query = AuditLog.all()
        if resource_type:
            query = query.filter(resource_type=resource_type)
        if resource_id:
            query = query.filter(resource_id=resource_id)
        if action:
            query = query.filter(action=action)

        entries = await query.order_by("-created_at").offset(offset).limit(limit)
        return [AuditLogResponse.model_validate(entry) for entry in entries]

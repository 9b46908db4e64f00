"""
Deployment API endpoints.
"""

from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import Header, Query, status

from ...core.database.schemas import DeploymentResponse, RollbackRequest
from ...core.services.deployment_service import DeploymentService
from ..versioning import create_versioned_router

router = create_versioned_router(prefix="/deployments", tags=["deployments"])


@router.get("", response_model=List[DeploymentResponse])
async def list_deployments(
    environment: Optional[str] = Query(None, description="Filter by environment"),
    limit: int = Query(50, ge=1, le=500),
) -> List[DeploymentResponse]:
    """List deployments, newest first."""
    service = DeploymentService()
    return await service.list(environment=environment, limit=limit)


@router.get("/{deployment_id}", response_model=DeploymentResponse)
async def get_deployment(deployment_id: UUID) -> DeploymentResponse:
    """Get deployment by ID."""
    service = DeploymentService()
    return await service.get(deployment_id)


@router.post("/{deployment_id}/rollback", status_code=status.HTTP_202_ACCEPTED)
async def rollback_deployment(
    deployment_id: UUID,
    request: RollbackRequest,
    x_user_id: Optional[str] = Header(None),
) -> Dict[str, Any]:
    """Roll an environment back to the version of an earlier deployment."""
    service = DeploymentService()
    return await service.rollback(
        deployment_id,
        target_version=request.target_version,
        environment=request.environment,
        reason=request.reason,
        requested_by=x_user_id,
    )

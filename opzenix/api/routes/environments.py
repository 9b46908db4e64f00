"""
Environment configuration, lock and branch mapping endpoints.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import Header, Query, status

from ...core.database.schemas import (
    BranchMappingRequest,
    BranchMappingResponse,
    EnvironmentConfigResponse,
    EnvironmentCreateRequest,
    EnvironmentLockRequest,
    EnvironmentLockResponse,
    EnvironmentUpdateRequest,
)
from ...core.services.environment_service import EnvironmentService
from ...core.services.github_service import GitHubWebhookService
from ..versioning import create_versioned_router

router = create_versioned_router(tags=["environments"])


@router.get("/environments", response_model=List[EnvironmentConfigResponse])
async def list_environments(
    active_only: bool = Query(False, description="Only active environments"),
) -> List[EnvironmentConfigResponse]:
    service = EnvironmentService()
    return await service.list(active_only=active_only)


@router.post(
    "/environments",
    response_model=EnvironmentConfigResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_environment(
    request: EnvironmentCreateRequest,
) -> EnvironmentConfigResponse:
    """Create an environment config."""
    service = EnvironmentService()
    return await service.create(
        name=request.name,
        environment=request.environment,
        variables=request.variables,
        secrets_ref=request.secrets_ref,
        created_by=request.created_by,
    )


@router.patch(
    "/environments/{environment_id}", response_model=EnvironmentConfigResponse
)
async def update_environment(
    environment_id: UUID, request: EnvironmentUpdateRequest
) -> EnvironmentConfigResponse:
    """Update variables, secrets reference or active flag of an environment."""
    service = EnvironmentService()
    return await service.update(
        environment_id,
        variables=request.variables,
        secrets_ref=request.secrets_ref,
        is_active=request.is_active,
        updated_by=request.updated_by,
    )


@router.get("/environment-locks", response_model=List[EnvironmentLockResponse])
async def list_environment_locks() -> List[EnvironmentLockResponse]:
    service = EnvironmentService()
    return await service.list_locks()


@router.put("/environment-locks/{environment}", response_model=EnvironmentLockResponse)
async def set_environment_lock(
    environment: str,
    request: EnvironmentLockRequest,
    x_user_id: Optional[str] = Header(None),
) -> EnvironmentLockResponse:
    """Lock or unlock an environment."""
    service = EnvironmentService()
    return await service.set_lock(
        environment,
        is_locked=request.is_locked,
        requires_approval=request.requires_approval,
        required_role=request.required_role,
        updated_by=x_user_id,
    )


@router.get("/branch-mappings", response_model=List[BranchMappingResponse])
async def list_branch_mappings(
    repository: Optional[str] = Query(None, description="owner/name"),
) -> List[BranchMappingResponse]:
    service = GitHubWebhookService()
    return await service.list_branch_mappings(repository=repository)


@router.post(
    "/branch-mappings",
    response_model=BranchMappingResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_branch_mapping(request: BranchMappingRequest) -> BranchMappingResponse:
    """Map a branch pattern of a repository to an environment."""
    service = GitHubWebhookService()
    return await service.add_branch_mapping(
        repository=request.repository,
        branch_pattern=request.branch_pattern,
        environment=request.environment,
        is_deployable=request.is_deployable,
    )

"""
Approval API endpoints.
"""

from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import Query

from ...core.database.schemas import (
    ApprovalRequestResponse,
    ApprovalVoteRequest,
    ApprovalVoteResponse,
)
from ...core.services.approval_service import ApprovalService
from ..versioning import create_versioned_router

router = create_versioned_router(prefix="/approvals", tags=["approvals"])


@router.get("", response_model=List[ApprovalRequestResponse])
async def list_approval_requests(
    status: Optional[str] = Query(None, description="pending, approved or rejected"),
) -> List[ApprovalRequestResponse]:
    """List approval requests, newest first."""
    service = ApprovalService()
    return await service.list(status=status)


@router.get("/{request_id}/votes", response_model=List[ApprovalVoteResponse])
async def get_approval_votes(request_id: UUID) -> List[ApprovalVoteResponse]:
    """Votes cast on an approval request."""
    service = ApprovalService()
    return await service.get_votes(request_id)


@router.post("/{request_id}/votes")
async def vote_on_approval(
    request_id: UUID, vote: ApprovalVoteRequest
) -> Dict[str, Any]:
    """Approve or reject a pending approval request."""
    service = ApprovalService()
    return await service.vote(
        request_id, user_id=vote.user_id, approved=vote.approved, comment=vote.comment
    )

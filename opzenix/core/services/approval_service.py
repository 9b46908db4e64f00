"""
Approval voting for execution gates.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from tortoise.exceptions import IntegrityError
from tortoise.transactions import in_transaction

from ..database.schemas import ApprovalRequestResponse, ApprovalVoteResponse
from ..errors import ConflictError, NotFoundError, ValidationFailedError
from ..executions.lifecycle import (
    ApprovalStatus,
    ExecutionStatus,
    GovernanceStatus,
    NodeStatus,
    approval_machine,
    execution_machine,
)
from ..executions.runner import PipelineRunner, get_runner
from ..logging import get_logger, log_execution_event
from ..models import (
    ApprovalRequest,
    ApprovalVote,
    Execution,
    ExecutionLog,
    ExecutionNode,
    ExecutionStateEvent,
)
from .audit_service import AuditService

logger = get_logger(__name__)

GOVERNANCE_GATE_NODE = "governance-gate"


class ApprovalService:
    """Records votes and resolves approval requests."""

    def __init__(
        self,
        runner: Optional[PipelineRunner] = None,
        audit_service: Optional[AuditService] = None,
    ) -> None:
        self._runner = runner
        self.audit_service = audit_service or AuditService()

    @property
    def runner(self) -> PipelineRunner:
        return self._runner or get_runner()

    async def list(self, status: Optional[str] = None) -> List[ApprovalRequestResponse]:
        """List approval requests, newest first."""
        query = ApprovalRequest.all()
        if status:
            query = query.filter(status=status)
        requests = await query.order_by("-created_at")
        return [ApprovalRequestResponse.model_validate(r) for r in requests]

    async def get_votes(self, request_id: UUID) -> List[ApprovalVoteResponse]:
        """Votes cast on an approval request, oldest first."""
        if not await ApprovalRequest.exists(id=request_id):
            raise NotFoundError("Approval request", request_id)
        votes = await ApprovalVote.filter(approval_request_id=request_id).order_by(
            "created_at"
        )
        return [ApprovalVoteResponse.model_validate(v) for v in votes]

    async def vote(
        self,
        request_id: UUID,
        user_id: str,
        approved: bool,
        comment: Optional[str],
    ) -> Dict[str, Any]:
        """
        Cast a vote on a pending approval request.

        An approval counts towards ``required_approvals``; a single rejection
        rejects the request. Resolving the request resumes or fails the
        execution it gates.

        Raises:
            ValidationFailedError: If the comment is missing
            NotFoundError: If the request does not exist
            ConflictError: If the request is resolved or the user already voted
        """
        if not comment or not comment.strip():
            raise ValidationFailedError(
                "A comment is required for approval decisions",
                {"required": ["comment"]},
            )

        try:
            async with in_transaction():
                request, vote = await self._record_vote(
                    request_id, user_id, approved, comment.strip()
                )
        except IntegrityError:
            raise ConflictError(
                "User has already voted on this request",
                {"request_id": str(request_id), "user_id": user_id},
            )

        await self.audit_service.record(
            "APPROVAL_GRANTED" if approved else "APPROVAL_REJECTED",
            "approval_request",
            request.id,
            user_id=user_id,
            details={
                "execution_id": str(request.execution_id),
                "node_id": request.node_id,
                "comment": vote.comment,
                "current_approvals": request.current_approvals,
                "required_approvals": request.required_approvals,
            },
        )

        if request.status == ApprovalStatus.APPROVED.value:
            await self._release(request, user_id)
        elif request.status == ApprovalStatus.REJECTED.value:
            await self._reject(request, user_id, vote.comment)

        return {
            "request": ApprovalRequestResponse.model_validate(request),
            "vote": ApprovalVoteResponse.model_validate(vote),
        }

    async def _record_vote(
        self, request_id: UUID, user_id: str, approved: bool, comment: str
    ) -> Tuple[ApprovalRequest, ApprovalVote]:
        """Insert a vote and recount the request under a row lock."""
        request = (
            await ApprovalRequest.filter(id=request_id).select_for_update().first()
        )
        if request is None:
            raise NotFoundError("Approval request", request_id)
        if request.status != ApprovalStatus.PENDING.value:
            raise ConflictError(
                f"Approval request is already {request.status}",
                {"request_id": str(request.id), "status": request.status},
            )
        if await ApprovalVote.exists(approval_request_id=request.id, user_id=user_id):
            raise ConflictError(
                "User has already voted on this request",
                {"request_id": str(request.id), "user_id": user_id},
            )

        vote = await ApprovalVote.create(
            approval_request_id=request.id,
            user_id=user_id,
            vote=approved,
            comment=comment,
        )

        # current_approvals mirrors the approving vote rows
        request.current_approvals = await ApprovalVote.filter(
            approval_request_id=request.id, vote=True
        ).count()
        if not approved:
            self._resolve(request, ApprovalStatus.REJECTED)
        elif request.current_approvals >= request.required_approvals:
            self._resolve(request, ApprovalStatus.APPROVED)
        await request.save()
        return request, vote

    def _resolve(self, request: ApprovalRequest, status: ApprovalStatus) -> None:
        request.status = approval_machine.require_transition(
            request.status, status
        ).value
        request.resolved_at = datetime.now(timezone.utc)

    async def _release(self, request: ApprovalRequest, user_id: str) -> None:
        execution = await Execution.get(id=request.execution_id)
        if execution_machine.is_terminal(execution.status):
            return

        if request.node_id == GOVERNANCE_GATE_NODE:
            execution.status = execution_machine.require_transition(
                execution.status, ExecutionStatus.IDLE
            ).value
            execution.governance_status = GovernanceStatus.ALLOWED.value
            execution.blocked_reason = None
            await execution.save()
            await ExecutionLog.create(
                execution_id=execution.id,
                node_id=GOVERNANCE_GATE_NODE,
                level="info",
                message=f"Deployment to {execution.environment} approved by {user_id}",
            )
            log_execution_event(
                execution.id, "governance_released", approved_by=user_id
            )
            return

        await self.runner.resume(execution.id)

    async def _reject(
        self, request: ApprovalRequest, user_id: str, comment: str
    ) -> None:
        execution = await Execution.get(id=request.execution_id)
        if not execution_machine.can_transition(
            execution.status, ExecutionStatus.FAILED
        ):
            return

        old_state = execution.status
        execution.status = ExecutionStatus.FAILED.value
        execution.completed_at = datetime.now(timezone.utc)
        if request.node_id == GOVERNANCE_GATE_NODE:
            execution.governance_status = GovernanceStatus.BLOCKED.value
        await execution.save()

        node = await ExecutionNode.get_or_none(
            execution_id=execution.id, node_id=request.node_id
        )
        if node is not None and node.status == NodeStatus.PAUSED.value:
            node.status = NodeStatus.FAILED.value
            node.completed_at = execution.completed_at
            await node.save()

        await ExecutionStateEvent.create(
            execution_id=execution.id,
            old_state=old_state,
            new_state=ExecutionStatus.FAILED.value,
            reason=f"Approval rejected: {comment}",
            triggered_by=user_id,
        )
        await ExecutionLog.create(
            execution_id=execution.id,
            node_id=request.node_id,
            level="error",
            message=f"Approval rejected by {user_id}: {comment}",
        )
        log_execution_event(
            execution.id, "rejected", level="warning", rejected_by=user_id
        )

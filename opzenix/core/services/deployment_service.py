"""
Deployment history and rollbacks.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from ..config import get_config
from ..database.schemas import DeploymentResponse
from ..errors import NotFoundError
from ..executions.lifecycle import DeploymentStatus, deployment_machine
from ..executions.runner import PipelineRunner, get_runner
from ..logging import get_logger
from ..models import Deployment
from .audit_service import AuditService

logger = get_logger(__name__)


class DeploymentService:
    """Deployment service using Tortoise ORM directly."""

    def __init__(
        self,
        runner: Optional[PipelineRunner] = None,
        audit_service: Optional[AuditService] = None,
        rollback_delay: Optional[float] = None,
    ) -> None:
        self._runner = runner
        self.audit_service = audit_service or AuditService()
        self.rollback_delay = (
            get_config().execution.rollback_delay_seconds
            if rollback_delay is None
            else rollback_delay
        )

    @property
    def runner(self) -> PipelineRunner:
        return self._runner or get_runner()

    async def get(self, deployment_id: UUID) -> DeploymentResponse:
        """Get deployment by ID."""
        deployment = await Deployment.get_or_none(id=deployment_id)
        if deployment is None:
            raise NotFoundError("Deployment", deployment_id)
        return DeploymentResponse.model_validate(deployment)

    async def list(
        self, environment: Optional[str] = None, limit: int = 50
    ) -> List[DeploymentResponse]:
        """List deployments, newest first."""
        query = Deployment.all()
        if environment:
            query = query.filter(environment=environment)
        deployments = await query.order_by("-created_at").limit(limit)
        return [DeploymentResponse.model_validate(d) for d in deployments]

    async def rollback(
        self,
        deployment_id: UUID,
        target_version: str,
        environment: str,
        reason: Optional[str] = None,
        requested_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Roll an environment back to the version of an earlier deployment.

        A new running deployment is recorded immediately and completes in the
        background. On completion the newest successful deployment that the
        rollback replaces is marked rolled back.

        Raises:
            NotFoundError: If the referenced deployment does not exist
        """
        original = await Deployment.get_or_none(id=deployment_id)
        if original is None:
            raise NotFoundError("Deployment", deployment_id)

        deployment = await Deployment.create(
            version=target_version,
            environment=environment,
            status=DeploymentStatus.RUNNING.value,
            rollback_to=original.id,
            notes=reason or f"Rollback to {target_version}",
            deployed_by=requested_by,
            deployed_at=datetime.now(timezone.utc),
        )
        logger.info(
            "Rollback started",
            deployment_id=str(deployment.id),
            original_deployment_id=str(original.id),
            target_version=target_version,
            environment=environment,
        )

        await self.audit_service.record(
            "rollback_deployment",
            "deployment",
            deployment.id,
            user_id=requested_by,
            details={
                "original_deployment_id": str(original.id),
                "target_version": target_version,
                "environment": environment,
                "reason": reason,
            },
        )

        self.runner.start_job(
            f"rollback:{deployment.id}",
            self._complete_rollback(deployment.id, original.id),
        )

        return {
            "deployment": DeploymentResponse.model_validate(deployment),
            "message": f"Rollback to {target_version} initiated",
        }

    async def _complete_rollback(self, deployment_id: UUID, target_id: UUID) -> None:
        await asyncio.sleep(self.rollback_delay)

        deployment = await Deployment.get(id=deployment_id)
        deployment.status = deployment_machine.require_transition(
            deployment.status, DeploymentStatus.SUCCESS
        ).value
        await deployment.save()

        target = await Deployment.get_or_none(id=target_id)
        if target is not None:
            replaced = (
                await Deployment.filter(
                    environment=deployment.environment,
                    status=DeploymentStatus.SUCCESS.value,
                    created_at__gt=target.created_at,
                )
                .exclude(id__in=[deployment.id, target.id])
                .order_by("-created_at")
                .first()
            )
            if replaced is not None:
                replaced.status = deployment_machine.require_transition(
                    replaced.status, DeploymentStatus.ROLLED_BACK
                ).value
                await replaced.save()

        logger.info("Rollback completed", deployment_id=str(deployment_id))

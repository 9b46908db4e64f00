"""
Execution service using Tortoise ORM directly.

Starts pipeline executions, cancels them and reruns them from checkpoints.
Background processing is delegated to the pipeline runner.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from ..database.schemas import (
    CheckpointResponse,
    ExecutionLogResponse,
    ExecutionNodeResponse,
    ExecutionResponse,
    PipelineExecuteRequest,
)
from ..errors import NotFoundError, ValidationFailedError
from ..executions.graph import (
    PipelineEdge,
    PipelineNode,
    edges_within,
    execution_order,
    split_at_checkpoint,
)
from ..executions.lifecycle import (
    DeploymentStatus,
    ExecutionStatus,
    NodeStatus,
    execution_machine,
)
from ..executions.runner import PipelineRunner, get_runner
from ..logging import get_logger, log_execution_event
from ..models import (
    Checkpoint,
    Deployment,
    Execution,
    ExecutionLog,
    ExecutionNode,
    ExecutionStateEvent,
)
from .audit_service import AuditService
from .notification_service import NotificationService

logger = get_logger(__name__)

DEFAULT_CANCEL_REASON = "User requested cancellation"


@dataclass(frozen=True)
class DemoStage:
    """A fixed stage of the demo pipeline."""

    id: str
    label: str
    stage_type: str
    duration_ms: int
    is_checkpoint: bool = False
    is_gate: bool = False


def demo_stages(environment: str) -> List[DemoStage]:
    """Stages of the demo pipeline created by ``create_test_execution``."""
    return [
        DemoStage("source", "Source Checkout", "source", 2000, is_checkpoint=True),
        DemoStage("build", "Build", "build", 5000),
        DemoStage("test", "Unit Tests", "test", 4000),
        DemoStage("security", "Security Scan", "security", 6000, is_checkpoint=True),
        DemoStage("approval", "Approval Gate", "approval", 3000, is_gate=True),
        DemoStage("deploy", f"Deploy to {environment}", "deploy", 5000),
        DemoStage("health", "Health Check", "checkpoint", 2000, is_checkpoint=True),
    ]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _now_ms() -> int:
    return int(time.time() * 1000)


def to_base36(value: int) -> str:
    """Render a non-negative integer in base 36."""
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if value == 0:
        return "0"
    result = ""
    while value:
        value, remainder = divmod(value, 36)
        result = digits[remainder] + result
    return result


class ExecutionService:
    """Execution service using Tortoise ORM directly."""

    def __init__(
        self,
        runner: Optional[PipelineRunner] = None,
        audit_service: Optional[AuditService] = None,
        notification_service: Optional[NotificationService] = None,
    ) -> None:
        """Initialize the execution service with optional dependencies."""
        self._runner = runner
        self.audit_service = audit_service or AuditService()
        self.notification_service = notification_service or NotificationService()

    @property
    def runner(self) -> PipelineRunner:
        return self._runner or get_runner()

    async def _get_execution(self, execution_id: Any) -> Execution:
        execution = await Execution.get_or_none(id=execution_id)
        if execution is None:
            raise NotFoundError("Execution", execution_id)
        return execution

    # Queries

    async def get(self, execution_id: UUID) -> ExecutionResponse:
        """Get execution by ID."""
        return ExecutionResponse.model_validate(await self._get_execution(execution_id))

    async def list(
        self,
        status: Optional[str] = None,
        environment: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[ExecutionResponse]:
        """List executions, newest first."""
        query = Execution.all()
        if status:
            query = query.filter(status=status)
        if environment:
            query = query.filter(environment=environment)
        executions = await query.order_by("-created_at").offset(offset).limit(limit)
        return [ExecutionResponse.model_validate(e) for e in executions]

    async def get_nodes(self, execution_id: UUID) -> List[ExecutionNodeResponse]:
        """Get the nodes of an execution in creation order."""
        await self._get_execution(execution_id)
        nodes = await ExecutionNode.filter(execution_id=execution_id).order_by(
            "created_at"
        )
        return [ExecutionNodeResponse.model_validate(n) for n in nodes]

    async def list_checkpoints(self, execution_id: UUID) -> List[CheckpointResponse]:
        """Get the checkpoints of an execution, oldest first."""
        await self._get_execution(execution_id)
        checkpoints = await Checkpoint.filter(execution_id=execution_id).order_by(
            "created_at"
        )
        return [CheckpointResponse.model_validate(c) for c in checkpoints]

    async def fetch_logs(
        self,
        execution_id: UUID,
        node_id: Optional[str] = None,
        level: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Dict[str, Any]:
        """
        Page through an execution's logs.

        Without ``node_id`` the page is grouped by node. The node status
        summary is always included.
        """
        await self._get_execution(execution_id)

        query = ExecutionLog.filter(execution_id=execution_id)
        if node_id:
            query = query.filter(node_id=node_id)
        if level:
            query = query.filter(level=level)

        total = await query.count()
        rows = await query.order_by("created_at").offset(offset).limit(limit)
        page = [ExecutionLogResponse.model_validate(row) for row in rows]

        logs: Any = page
        if not node_id:
            grouped: Dict[str, List[ExecutionLogResponse]] = {}
            for entry in page:
                grouped.setdefault(entry.node_id or "system", []).append(entry)
            logs = grouped

        node_status = [
            {
                "node_id": n.node_id,
                "status": n.status,
                "started_at": n.started_at,
                "completed_at": n.completed_at,
                "duration_ms": n.duration_ms,
            }
            for n in await ExecutionNode.filter(execution_id=execution_id).order_by(
                "created_at"
            )
        ]

        return {
            "logs": logs,
            "node_status": node_status,
            "total": total,
            "limit": limit,
            "offset": offset,
            "has_more": total > offset + limit,
        }

    # Commands

    async def start_pipeline(self, request: PipelineExecuteRequest) -> Dict[str, Any]:
        """
        Create an execution for a pipeline and start processing it.

        Args:
            request: Nodes and edges from the flow editor plus run settings

        Returns:
            Execution id and name, node count and processing order
        """
        now_ms = _now_ms()
        execution_name = f"pipeline-{to_base36(now_ms)}"

        execution = await Execution.create(
            name=execution_name,
            status=ExecutionStatus.RUNNING.value,
            environment=request.environment or "development",
            branch=request.branch or "main",
            commit_hash=request.commit_hash or format(now_ms, "x")[:7],
            progress=0,
            started_at=_now(),
            metadata={
                "flow_type": request.flow_type,
                "pipeline_id": request.pipeline_id,
                "node_count": len(request.nodes),
                "nodes": [n.model_dump(by_alias=True) for n in request.nodes],
                "edges": [e.model_dump() for e in request.edges],
            },
        )

        for node in request.nodes:
            await ExecutionNode.create(
                execution_id=execution.id,
                node_id=node.id,
                status=NodeStatus.IDLE.value,
                metadata={
                    "label": node.label,
                    "stage_type": node.stage_type,
                    "position": node.position.model_dump(),
                },
            )

        order = execution_order(request.nodes, request.edges)
        log_execution_event(
            execution.id,
            "started",
            execution_name=execution_name,
            execution_order=order,
        )

        self.runner.start(execution.id, request.nodes, order)

        return {
            "execution_id": execution.id,
            "execution_name": execution_name,
            "node_count": len(request.nodes),
            "execution_order": order,
        }

    async def create_test_execution(
        self,
        name: Optional[str] = None,
        environment: Optional[str] = None,
        branch: Optional[str] = None,
    ) -> ExecutionResponse:
        """
        Create and run the seven stage demo pipeline.

        The stages always succeed; on completion a deployment is recorded.
        """
        execution_name = name or f"test-execution-{_now_ms()}"
        environment = environment or "development"
        branch = branch or "main"
        stages = demo_stages(environment)

        nodes = [
            PipelineNode.model_validate(
                {
                    "id": stage.id,
                    "data": {"label": stage.label, "stageType": stage.stage_type},
                    "position": {"x": index * 200, "y": 0},
                }
            )
            for index, stage in enumerate(stages)
        ]
        edges = [
            PipelineEdge(id=f"{a.id}-{b.id}", source=a.id, target=b.id)
            for a, b in zip(stages, stages[1:])
        ]

        execution = await Execution.create(
            name=execution_name,
            status=ExecutionStatus.RUNNING.value,
            environment=environment,
            branch=branch,
            progress=0,
            started_at=_now(),
            metadata={
                "test": True,
                "created_by": "test-execution",
                "nodes": [n.model_dump(by_alias=True) for n in nodes],
                "edges": [e.model_dump() for e in edges],
            },
        )

        for stage in stages:
            await ExecutionNode.create(
                execution_id=execution.id,
                node_id=stage.id,
                status=NodeStatus.IDLE.value,
                metadata={
                    "label": stage.label,
                    "stage_type": stage.stage_type,
                    "is_checkpoint": stage.is_checkpoint,
                    "is_gate": stage.is_gate,
                },
            )

        self.runner.start_job(
            str(execution.id),
            self._run_demo(execution.id, execution_name, environment, stages),
        )

        await self.audit_service.record(
            "create_test_execution",
            "execution",
            execution.id,
            details={
                "name": execution_name,
                "environment": environment,
                "branch": branch,
            },
        )
        log_execution_event(execution.id, "started", execution_name=execution_name)
        return ExecutionResponse.model_validate(execution)

    async def _run_demo(
        self,
        execution_id: UUID,
        execution_name: str,
        environment: str,
        stages: List[DemoStage],
    ) -> None:
        per_stage = 100 // len(stages)

        for index, stage in enumerate(stages):
            node = await ExecutionNode.get(execution_id=execution_id, node_id=stage.id)
            node.status = NodeStatus.RUNNING.value
            node.started_at = _now()
            await node.save()
            await ExecutionLog.create(
                execution_id=execution_id,
                node_id=stage.id,
                level="info",
                message=f"Starting {stage.label}...",
            )

            execution = await Execution.get(id=execution_id)
            execution.progress = min(100, (index + 1) * per_stage - per_stage // 2)
            await execution.save(update_fields=["progress", "updated_at"])

            steps = stage.duration_ms // 1000
            for step in range(steps):
                await self.runner.sleep_ms(1000)
                await ExecutionLog.create(
                    execution_id=execution_id,
                    node_id=stage.id,
                    level="info",
                    message=f"[{stage.id}] Processing step {step + 1}/{steps}...",
                )

            node.status = NodeStatus.SUCCESS.value
            node.completed_at = _now()
            node.duration_ms = stage.duration_ms
            await node.save()
            await ExecutionLog.create(
                execution_id=execution_id,
                node_id=stage.id,
                level="info",
                message=f"{stage.label} completed successfully",
            )

            if stage.is_checkpoint:
                await Checkpoint.create(
                    execution_id=execution_id,
                    node_id=stage.id,
                    name=f"Checkpoint: {stage.label}",
                    state={
                        "completed_stages": [s.id for s in stages[: index + 1]]
                    },
                )

            execution.progress = min(100, (index + 1) * per_stage)
            await execution.save(update_fields=["progress", "updated_at"])

        execution = await Execution.get(id=execution_id)
        execution.status = execution_machine.require_transition(
            execution.status, ExecutionStatus.SUCCESS
        ).value
        execution.progress = 100
        execution.completed_at = _now()
        await execution.save()

        await Deployment.create(
            execution_id=execution_id,
            version=f"v1.0.{_now_ms() % 1000}",
            environment=environment,
            status=DeploymentStatus.SUCCESS.value,
            notes=f"Deployed from test execution {execution_name}",
            deployed_at=_now(),
        )
        log_execution_event(execution_id, "completed")

    async def cancel(
        self,
        execution_id: UUID,
        reason: Optional[str] = None,
        cancelled_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Cancel a running or paused execution.

        Raises:
            NotFoundError: If the execution does not exist
            ValidationFailedError: If the execution already finished
        """
        execution = await self._get_execution(execution_id)
        old_state = execution.status

        if not execution_machine.can_transition(old_state, ExecutionStatus.FAILED):
            raise ValidationFailedError(
                f"Cannot cancel execution with status: {old_state}",
                {"execution_id": str(execution.id), "status": old_state},
            )

        await self.runner.cancel(execution.id)

        cancel_reason = reason or DEFAULT_CANCEL_REASON
        now = _now()

        # The runner may have written while stopping
        await execution.refresh_from_db()
        execution.status = ExecutionStatus.FAILED.value
        execution.completed_at = now
        execution.metadata = {
            **(execution.metadata or {}),
            "cancelled": True,
            "cancel_reason": cancel_reason,
            "cancelled_by": cancelled_by,
            "cancelled_at": now.isoformat(),
        }
        await execution.save()

        for node in await ExecutionNode.filter(
            execution_id=execution.id, status=NodeStatus.RUNNING.value
        ):
            node.status = NodeStatus.FAILED.value
            node.completed_at = now
            node.metadata = {**(node.metadata or {}), "cancelled": True}
            await node.save()

        await ExecutionStateEvent.create(
            execution_id=execution.id,
            old_state=old_state,
            new_state=ExecutionStatus.FAILED.value,
            reason=cancel_reason,
            triggered_by=cancelled_by,
        )
        await self.audit_service.record(
            "cancel_execution",
            "execution",
            execution.id,
            user_id=cancelled_by,
            details={"reason": reason, "old_state": old_state},
        )
        await ExecutionLog.create(
            execution_id=execution.id,
            node_id="system",
            level="warn",
            message=f"Execution cancelled: {cancel_reason}",
        )
        await self.notification_service.notify(
            "execution_cancelled",
            target=cancelled_by,
            payload={"execution_id": str(execution.id), "reason": reason},
        )

        log_execution_event(
            execution.id, "cancelled", level="warning", reason=cancel_reason
        )
        return {
            "execution_id": execution.id,
            "status": ExecutionStatus.FAILED.value,
            "cancelled": True,
        }

    async def rerun_from_checkpoint(self, checkpoint_id: UUID) -> Dict[str, Any]:
        """
        Start a new execution that resumes the pipeline at a checkpoint.

        Nodes declared before the checkpoint node are carried over as
        successful; the checkpoint node and the nodes after it run again.
        """
        checkpoint = await Checkpoint.get_or_none(id=checkpoint_id)
        if checkpoint is None:
            raise NotFoundError("Checkpoint", checkpoint_id)

        original = await checkpoint.execution
        stored_nodes: List[Dict[str, Any]] = original.metadata.get("nodes", [])
        stored_edges: List[Dict[str, Any]] = original.metadata.get("edges", [])

        skipped, to_execute = split_at_checkpoint(stored_nodes, checkpoint.node_id)
        skipped_ids = {node.get("id") for node in skipped}

        execution = await Execution.create(
            name=f"{original.name} (resumed)",
            status=ExecutionStatus.RUNNING.value,
            environment=original.environment,
            branch=original.branch,
            commit_hash=original.commit_hash,
            started_at=_now(),
            metadata={
                "resumed_from_checkpoint": str(checkpoint.id),
                "original_execution_id": str(original.id),
                "nodes": stored_nodes,
                "edges": stored_edges,
            },
        )

        nodes = [PipelineNode.model_validate(node) for node in stored_nodes]
        for node in nodes:
            is_skipped = node.id in skipped_ids
            await ExecutionNode.create(
                execution_id=execution.id,
                node_id=node.id,
                status=(
                    NodeStatus.SUCCESS.value if is_skipped else NodeStatus.IDLE.value
                ),
                metadata={
                    "label": node.label,
                    "stage_type": node.stage_type,
                    "skipped": is_skipped,
                },
            )

        await ExecutionLog.create(
            execution_id=execution.id,
            node_id="system",
            level="info",
            message=f"Resumed from checkpoint: {checkpoint.name}",
        )
        await Checkpoint.create(
            execution_id=execution.id,
            node_id="resume-start",
            name="Resume start",
            state={
                "resumed_from": str(checkpoint.id),
                "checkpoint_node": checkpoint.node_id,
            },
        )

        to_execute_nodes = [PipelineNode.model_validate(node) for node in to_execute]
        to_execute_edges = [
            PipelineEdge.model_validate(edge)
            for edge in edges_within(stored_edges, to_execute)
        ]
        order = execution_order(to_execute_nodes, to_execute_edges)

        log_execution_event(
            execution.id,
            "resumed_from_checkpoint",
            checkpoint_id=str(checkpoint.id),
            original_execution_id=str(original.id),
            skipped=len(skipped),
        )
        self.runner.start(execution.id, nodes, order)

        return {
            "execution_id": execution.id,
            "resumed_from": checkpoint.id,
            "checkpoint_node": checkpoint.node_id,
        }

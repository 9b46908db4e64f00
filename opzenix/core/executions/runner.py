"""
Background processing of pipeline executions.

The runner walks an execution's nodes in dependency order, moving each one
through its lifecycle and recording logs, telemetry, checkpoints and
progress as it goes. Each execution is processed by one asyncio task that
can be cancelled, and an approval stage ends the task until the approval is
granted and the execution is resumed.
"""

import asyncio
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Dict, List, Optional, Sequence, Tuple

from ..config import get_config
from ..errors import NotFoundError
from ..logging import get_logger, log_execution_event, log_node_transition
from ..models import (
    ApprovalRequest,
    Checkpoint,
    Execution,
    ExecutionLog,
    ExecutionNode,
    TelemetrySignal,
)
from .graph import PipelineEdge, PipelineNode, execution_order
from .lifecycle import ExecutionStatus, NodeStatus, execution_machine, node_machine

logger = get_logger(__name__)


@dataclass(frozen=True)
class StageTiming:
    """Simulated duration range (ms) and failure probability of a stage."""

    min_ms: int
    max_ms: int
    fail_rate: float


STAGE_TIMINGS: Dict[str, StageTiming] = {
    "source": StageTiming(1000, 3000, 0.02),
    "build": StageTiming(5000, 15000, 0.05),
    "test": StageTiming(3000, 10000, 0.08),
    "security": StageTiming(4000, 12000, 0.03),
    "checkpoint": StageTiming(500, 1500, 0.01),
    "approval": StageTiming(100, 500, 0.0),  # manual
    "deploy": StageTiming(8000, 20000, 0.04),
    "rollback": StageTiming(2000, 5000, 0.02),
    "parallel": StageTiming(1000, 2000, 0.01),
}

DEFAULT_STAGE_TIMING = StageTiming(2000, 5000, 0.05)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class PipelineRunner:
    """Schedules and tracks background work per execution."""

    def __init__(
        self,
        time_scale: Optional[float] = None,
        simulate_failures: Optional[bool] = None,
        rng: Optional[random.Random] = None,
    ):
        config = get_config().execution
        self.time_scale = config.time_scale if time_scale is None else time_scale
        self.simulate_failures = (
            config.simulate_failures if simulate_failures is None else simulate_failures
        )
        self.rng = rng or random.Random(config.random_seed)
        self.tasks: Dict[str, asyncio.Task] = {}

    # Task tracking

    def start_job(self, key: str, job: Awaitable[Any]) -> asyncio.Task:
        """Run ``job`` in the background, tracked under ``key``."""
        existing = self.tasks.get(key)
        if existing is not None and not existing.done():
            existing.cancel()

        task = asyncio.create_task(job, name=f"opzenix:{key}")
        self.tasks[key] = task
        task.add_done_callback(lambda t: self._on_done(key, t))
        return task

    def _on_done(self, key: str, task: asyncio.Task) -> None:
        if self.tasks.get(key) is task:
            del self.tasks[key]
        if task.cancelled():
            logger.info("Background job cancelled", job=key)
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Background job failed",
                job=key,
                error=str(error),
                error_type=type(error).__name__,
            )

    def is_running(self, key: Any) -> bool:
        task = self.tasks.get(str(key))
        return task is not None and not task.done()

    async def cancel(self, key: Any) -> bool:
        """Cancel the task tracked under ``key``; False if none is running."""
        task = self.tasks.get(str(key))
        if task is None or task.done():
            return False
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        return True

    async def wait(self, key: Any, timeout: Optional[float] = None) -> None:
        """Wait for the task tracked under ``key`` to finish."""
        task = self.tasks.get(str(key))
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout)

    async def shutdown(self) -> None:
        """Cancel every tracked task."""
        tasks = list(self.tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.tasks.clear()
        logger.info("Pipeline runner stopped", cancelled=len(tasks))

    # Pipeline processing

    def start(
        self,
        execution_id: Any,
        nodes: Sequence[PipelineNode],
        order: Sequence[str],
    ) -> asyncio.Task:
        """
        Process ``order`` for an execution in the background.

        Args:
            execution_id: Execution to drive
            nodes: Every node of the pipeline, used for labels and progress
            order: Node ids to process, in order

        Returns:
            The tracking task
        """
        return self.start_job(
            str(execution_id), self.run(execution_id, list(nodes), list(order))
        )

    async def resume(self, execution_id: Any) -> asyncio.Task:
        """
        Continue an execution after its approval gate was granted.

        Paused nodes are marked successful and processing restarts at the
        first node that has not finished.
        """
        execution = await Execution.get_or_none(id=execution_id)
        if execution is None:
            raise NotFoundError("Execution", execution_id)

        metadata = execution.metadata or {}
        nodes = [PipelineNode.model_validate(n) for n in metadata.get("nodes", [])]
        edges = [PipelineEdge.model_validate(e) for e in metadata.get("edges", [])]

        for db_node in await ExecutionNode.filter(
            execution_id=execution.id, status=NodeStatus.PAUSED.value
        ):
            await self._set_node_status(
                execution.id,
                db_node,
                NodeStatus.SUCCESS,
                [f"[{_now().isoformat()}] Approved"],
            )

        if execution.status == ExecutionStatus.PAUSED.value:
            execution.status = execution_machine.require_transition(
                execution.status, ExecutionStatus.RUNNING
            ).value
            await execution.save(update_fields=["status", "updated_at"])

        log_execution_event(execution.id, "resumed")
        return self.start(execution.id, nodes, execution_order(nodes, edges))

    async def run(
        self,
        execution_id: Any,
        nodes: List[PipelineNode],
        order: List[str],
    ) -> None:
        """Process nodes in order until done, failed, paused or cancelled."""
        node_map = {node.id: node for node in nodes}
        db_nodes = {
            n.node_id: n for n in await ExecutionNode.filter(execution_id=execution_id)
        }
        total = len(nodes) or 1
        completed = sum(
            1 for n in db_nodes.values() if n.status == NodeStatus.SUCCESS.value
        )
        failed_node: Optional[str] = None

        log_execution_event(execution_id, "processing", node_count=len(order))

        for node_id in order:
            node = node_map.get(node_id)
            db_node = db_nodes.get(node_id)
            if node is None or db_node is None:
                continue
            if node_machine.is_terminal(db_node.status):
                continue

            execution = await Execution.get(id=execution_id)
            if execution_machine.is_terminal(execution.status) and failed_node is None:
                # Cancelled while a previous node was running
                return

            stage_type = node.stage_type

            if failed_node is not None and stage_type != "rollback":
                continue

            if stage_type == "approval":
                await self._pause_for_approval(
                    execution, db_node, node, completed, total
                )
                return

            success, duration = await self._process_node(execution, db_node, node)

            if failed_node is not None:
                continue

            if not success:
                failed_node = node_id
                await self._set_execution_status(execution, ExecutionStatus.FAILED)
                continue

            completed += 1
            execution.progress = round(completed / total * 100)
            await execution.save(update_fields=["progress", "updated_at"])

            if stage_type == "checkpoint":
                await Checkpoint.create(
                    execution_id=execution.id,
                    node_id=node_id,
                    name=node.label,
                    state={
                        "completed_nodes": completed,
                        "timestamp": _now().isoformat(),
                    },
                )
                logger.info(
                    "Checkpoint created",
                    execution_id=str(execution.id),
                    node_id=node_id,
                )

        if failed_node is None:
            execution = await Execution.get(id=execution_id)
            if not execution_machine.is_terminal(execution.status):
                execution.progress = 100
                await self._set_execution_status(execution, ExecutionStatus.SUCCESS)
                log_execution_event(execution_id, "completed")
        else:
            log_execution_event(
                execution_id, "failed", level="error", node_id=failed_node
            )

    def timing_for(self, stage_type: str) -> StageTiming:
        return STAGE_TIMINGS.get(stage_type, DEFAULT_STAGE_TIMING)

    def draw_duration(self, stage_type: str) -> int:
        """Random stage duration in milliseconds."""
        timing = self.timing_for(stage_type)
        return int(self.rng.random() * (timing.max_ms - timing.min_ms) + timing.min_ms)

    def draw_failure(self, stage_type: str) -> bool:
        if not self.simulate_failures:
            return False
        return self.rng.random() < self.timing_for(stage_type).fail_rate

    async def sleep_ms(self, duration_ms: float) -> None:
        await asyncio.sleep(duration_ms / 1000 * self.time_scale)

    def generate_logs(
        self, stage_type: str, label: str, status: NodeStatus
    ) -> List[str]:
        """Log lines for a stage entering ``status``."""
        timestamp = _now().isoformat()
        lines: List[str] = []
        if status == NodeStatus.RUNNING:
            lines.append(f"[{timestamp}] Starting {label}...")
            lines.append(f"[{timestamp}] Initializing {stage_type} stage")
        elif status == NodeStatus.SUCCESS:
            lines.append(f"[{timestamp}] {label} completed successfully")
            if stage_type == "test":
                count = self.rng.randint(50, 149)
                lines.append(f"[{timestamp}] All tests passed ({count} tests)")
            elif stage_type == "security":
                lines.append(f"[{timestamp}] No vulnerabilities found")
            elif stage_type == "build":
                lines.append(f"[{timestamp}] Build artifacts created")
        elif status == NodeStatus.FAILED:
            lines.append(f"[{timestamp}] ERROR: {label} failed")
            if stage_type == "test":
                lines.append(f"[{timestamp}] {self.rng.randint(1, 5)} tests failed")
            elif stage_type == "build":
                lines.append(f"[{timestamp}] Build error: compilation failed")
        return lines

    async def _process_node(
        self, execution: Execution, db_node: ExecutionNode, node: PipelineNode
    ) -> Tuple[bool, int]:
        stage_type = node.stage_type
        running_logs = self.generate_logs(stage_type, node.label, NodeStatus.RUNNING)
        await self._set_node_status(
            execution.id, db_node, NodeStatus.RUNNING, running_logs
        )

        duration = self.draw_duration(stage_type)
        await self.sleep_ms(duration)

        failed = self.draw_failure(stage_type)
        final_status = NodeStatus.FAILED if failed else NodeStatus.SUCCESS
        final_logs = self.generate_logs(stage_type, node.label, final_status)
        await self._set_node_status(
            execution.id, db_node, final_status, final_logs, duration_ms=duration
        )

        all_logs = running_logs + final_logs
        if failed:
            await TelemetrySignal.create(
                signal_type="log",
                execution_id=execution.id,
                node_id=node.id,
                environment=execution.environment,
                severity="error",
                summary=f"{node.label} failed after {duration}ms",
                payload={"logs": all_logs, "duration": duration},
                created_at=_now(),
            )
        else:
            await TelemetrySignal.create(
                signal_type="trace",
                execution_id=execution.id,
                node_id=node.id,
                environment=execution.environment,
                severity="info",
                summary=f"{node.label} completed in {duration}ms",
                duration_ms=duration,
                payload={"logs": all_logs},
                created_at=_now(),
            )
        return not failed, duration

    async def _pause_for_approval(
        self,
        execution: Execution,
        db_node: ExecutionNode,
        node: PipelineNode,
        completed: int,
        total: int,
    ) -> None:
        logs = self.generate_logs(node.stage_type, node.label, NodeStatus.RUNNING)
        await self._set_node_status(execution.id, db_node, NodeStatus.PAUSED, logs)

        execution.progress = round(completed / total * 100)
        await self._set_execution_status(execution, ExecutionStatus.PAUSED)

        await ApprovalRequest.create(
            execution_id=execution.id,
            node_id=node.id,
            title=f"Approval Required: {node.label}",
            description=(
                f"Pipeline execution requires approval to proceed past {node.label}"
            ),
            required_approvals=1,
        )
        log_execution_event(execution.id, "paused", node_id=node.id)

    async def _set_node_status(
        self,
        execution_id: Any,
        db_node: ExecutionNode,
        status: NodeStatus,
        logs: List[str],
        duration_ms: Optional[int] = None,
    ) -> None:
        old_status = db_node.status
        node_machine.require_transition(old_status, status)

        db_node.status = status.value
        db_node.logs = list(db_node.logs or []) + logs
        if status == NodeStatus.RUNNING:
            db_node.started_at = _now()
        elif status in (NodeStatus.SUCCESS, NodeStatus.FAILED):
            db_node.completed_at = _now()
            if duration_ms is not None:
                db_node.duration_ms = duration_ms
        await db_node.save()

        level = "error" if status == NodeStatus.FAILED else "info"
        for line in logs:
            await ExecutionLog.create(
                execution_id=execution_id,
                node_id=db_node.node_id,
                level=level,
                message=line,
            )
        log_node_transition(execution_id, db_node.node_id, old_status, status.value)

    async def _set_execution_status(
        self, execution: Execution, status: ExecutionStatus
    ) -> None:
        execution.status = execution_machine.require_transition(
            execution.status, status
        ).value
        if status in (ExecutionStatus.SUCCESS, ExecutionStatus.FAILED):
            execution.completed_at = _now()
        await execution.save()


# Global runner instance
_runner: Optional[PipelineRunner] = None


def get_runner() -> PipelineRunner:
    """Get the global pipeline runner instance."""
    global _runner
    if _runner is None:
        _runner = PipelineRunner()
    return _runner


def set_runner(runner: Optional[PipelineRunner]) -> None:
    """Set the global pipeline runner instance."""
    global _runner
    _runner = runner

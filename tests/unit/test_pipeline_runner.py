"""
Tests for background pipeline processing.
"""

import asyncio
import random

from opzenix.core.database.schemas import PipelineExecuteRequest
from opzenix.core.executions.runner import STAGE_TIMINGS, PipelineRunner
from opzenix.core.models import (
    ApprovalRequest,
    Checkpoint,
    Execution,
    ExecutionLog,
    ExecutionNode,
    TelemetrySignal,
)
from opzenix.core.services.execution_service import ExecutionService


def stage(node_id: str, stage_type: str, label: str = None) -> dict:
    return {
        "id": node_id,
        "type": "stage",
        "data": {"label": label or node_id.title(), "stageType": stage_type},
        "position": {"x": 0, "y": 0},
    }


def chain(*node_ids: str) -> list:
    return [
        {"id": f"{a}-{b}", "source": a, "target": b}
        for a, b in zip(node_ids, node_ids[1:])
    ]


async def start(runner: PipelineRunner, nodes: list, edges: list) -> Execution:
    service = ExecutionService(runner=runner)
    result = await service.start_pipeline(
        PipelineExecuteRequest(nodes=nodes, edges=edges)
    )
    await runner.wait(result["execution_id"], timeout=5)
    return await Execution.get(id=result["execution_id"])


async def node_statuses(execution_id) -> dict:
    nodes = await ExecutionNode.filter(execution_id=execution_id)
    return {n.node_id: n.status for n in nodes}


class TestPipelineRunner:
    """Test node processing order and outcomes."""

    async def test_successful_pipeline(self, runner):
        nodes = [
            stage("source", "source"),
            stage("build", "build"),
            stage("cp", "checkpoint", "Ready"),
        ]
        execution = await start(runner, nodes, chain("source", "build", "cp"))

        assert execution.status == "success"
        assert execution.progress == 100
        assert execution.completed_at is not None
        assert set((await node_statuses(execution.id)).values()) == {"success"}

        checkpoint = await Checkpoint.get(execution_id=execution.id)
        assert checkpoint.node_id == "cp"
        assert checkpoint.name == "Ready"
        assert checkpoint.state["completed_nodes"] == 3

        traces = await TelemetrySignal.filter(
            execution_id=execution.id, signal_type="trace"
        ).count()
        assert traces == 3
        assert await ExecutionLog.filter(execution_id=execution.id).count() > 0

    async def test_node_logs_and_duration(self, runner):
        execution = await start(runner, [stage("build", "build")], [])
        node = await ExecutionNode.get(execution_id=execution.id, node_id="build")

        timing = STAGE_TIMINGS["build"]
        assert timing.min_ms <= node.duration_ms <= timing.max_ms
        assert node.started_at is not None
        assert "Starting Build..." in node.logs[0]
        assert any("Build artifacts created" in line for line in node.logs)

    async def test_approval_stage_pauses(self, runner):
        nodes = [
            stage("build", "build"),
            stage("gate", "approval", "Release"),
            stage("deploy", "deploy"),
        ]
        execution = await start(runner, nodes, chain("build", "gate", "deploy"))

        assert execution.status == "paused"
        assert execution.progress == 33
        assert await node_statuses(execution.id) == {
            "build": "success",
            "gate": "paused",
            "deploy": "idle",
        }

        request = await ApprovalRequest.get(execution_id=execution.id)
        assert request.node_id == "gate"
        assert request.title == "Approval Required: Release"
        assert request.status == "pending"

    async def test_resume_after_approval(self, runner):
        nodes = [stage("gate", "approval"), stage("deploy", "deploy")]
        execution = await start(runner, nodes, chain("gate", "deploy"))
        assert execution.status == "paused"

        await runner.resume(execution.id)
        await runner.wait(execution.id, timeout=5)

        execution = await Execution.get(id=execution.id)
        assert execution.status == "success"
        assert await node_statuses(execution.id) == {
            "gate": "success",
            "deploy": "success",
        }

    async def test_failure_runs_rollback_stages_only(self, db):
        runner = PipelineRunner(time_scale=0, simulate_failures=True)
        runner.draw_failure = lambda stage_type: stage_type == "test"
        nodes = [
            stage("build", "build"),
            stage("test", "test"),
            stage("deploy", "deploy"),
            stage("rollback", "rollback"),
        ]
        try:
            execution = await start(
                runner, nodes, chain("build", "test", "deploy", "rollback")
            )
        finally:
            await runner.shutdown()

        assert execution.status == "failed"
        assert await node_statuses(execution.id) == {
            "build": "success",
            "test": "failed",
            "deploy": "idle",
            "rollback": "success",
        }
        error_signals = await TelemetrySignal.filter(
            execution_id=execution.id, severity="error"
        )
        assert len(error_signals) == 1
        assert error_signals[0].node_id == "test"

    async def test_cancel_stops_processing(self, db):
        runner = PipelineRunner(time_scale=1, simulate_failures=False)
        service = ExecutionService(runner=runner)
        try:
            result = await service.start_pipeline(
                PipelineExecuteRequest(nodes=[stage("build", "build")], edges=[])
            )
            await asyncio.sleep(0.2)
            assert runner.is_running(result["execution_id"])

            cancelled = await service.cancel(result["execution_id"], reason="stop")
        finally:
            await runner.shutdown()

        assert cancelled["cancelled"] is True
        assert not runner.is_running(result["execution_id"])
        execution = await Execution.get(id=result["execution_id"])
        assert execution.status == "failed"
        node = await ExecutionNode.get(execution_id=execution.id, node_id="build")
        assert node.status == "failed"
        assert node.metadata["cancelled"] is True


class TestRunnerHelpers:
    """Test simulated timings and log generation."""

    def test_draw_duration_within_range(self):
        runner = PipelineRunner(rng=random.Random(3))
        for stage_type, timing in STAGE_TIMINGS.items():
            duration = runner.draw_duration(stage_type)
            assert timing.min_ms <= duration <= timing.max_ms

    def test_unknown_stage_uses_default_timing(self):
        runner = PipelineRunner(rng=random.Random(3))
        assert 2000 <= runner.draw_duration("custom") <= 5000

    def test_failures_disabled(self):
        runner = PipelineRunner(simulate_failures=False)
        assert not any(runner.draw_failure("test") for _ in range(100))

    def test_failed_test_logs(self):
        from opzenix.core.executions.lifecycle import NodeStatus

        runner = PipelineRunner(rng=random.Random(3))
        lines = runner.generate_logs("test", "Unit Tests", NodeStatus.FAILED)

        assert "ERROR: Unit Tests failed" in lines[0]
        assert "tests failed" in lines[1]

    async def test_start_job_replaces_running_job(self):
        runner = PipelineRunner(time_scale=0)
        first = runner.start_job("key", asyncio.sleep(10))
        second = runner.start_job("key", asyncio.sleep(0))

        await asyncio.sleep(0)
        await second
        await asyncio.sleep(0)
        assert first.cancelled()
        assert not runner.is_running("key")

    async def test_cancel_unknown_job(self):
        assert await PipelineRunner().cancel("missing") is False

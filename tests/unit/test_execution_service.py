"""
Tests for the execution service.
"""

from uuid import uuid4

import pytest

from opzenix.core.database.schemas import PipelineExecuteRequest
from opzenix.core.errors import NotFoundError, ValidationFailedError
from opzenix.core.models import (
    AuditLog,
    Checkpoint,
    Deployment,
    Execution,
    ExecutionLog,
    ExecutionNode,
    ExecutionStateEvent,
    NotificationEvent,
)
from opzenix.core.services.execution_service import ExecutionService, to_base36


def stage(node_id: str, stage_type: str) -> dict:
    return {"id": node_id, "data": {"label": node_id.title(), "stageType": stage_type}}


PIPELINE = PipelineExecuteRequest.model_validate(
    {
        "pipelineId": "pipe-1",
        "flowType": "ci",
        "environment": "staging",
        "nodes": [
            stage("source", "source"),
            stage("build", "build"),
            stage("verify", "checkpoint"),
            stage("deploy", "deploy"),
        ],
        "edges": [
            {"id": "e1", "source": "source", "target": "build"},
            {"id": "e2", "source": "build", "target": "verify"},
            {"id": "e3", "source": "verify", "target": "deploy"},
        ],
    }
)


@pytest.fixture
def service(runner) -> ExecutionService:
    return ExecutionService(runner=runner)


def test_to_base36():
    assert to_base36(0) == "0"
    assert to_base36(35) == "z"
    assert to_base36(36) == "10"


class TestStartPipeline:
    """Test pipeline execution requests."""

    async def test_creates_execution_and_nodes(self, service, runner):
        result = await service.start_pipeline(PIPELINE)

        assert result["node_count"] == 4
        assert result["execution_order"] == ["source", "build", "verify", "deploy"]
        assert result["execution_name"].startswith("pipeline-")

        execution = await Execution.get(id=result["execution_id"])
        assert execution.environment == "staging"
        assert execution.branch == "main"
        assert len(execution.commit_hash) == 7
        assert execution.metadata["pipeline_id"] == "pipe-1"
        assert execution.metadata["flow_type"] == "ci"
        assert len(execution.metadata["nodes"]) == 4

        await runner.wait(execution.id, timeout=5)
        nodes = await service.get_nodes(execution.id)
        by_id = {n.node_id: n for n in nodes}
        assert set(by_id) == {"source", "build", "verify", "deploy"}
        assert by_id["build"].metadata["stage_type"] == "build"
        assert (await service.get(execution.id)).status == "success"

    async def test_list_filters(self, service, runner):
        first = await service.start_pipeline(PIPELINE)
        await runner.wait(first["execution_id"], timeout=5)
        await Execution.create(name="other", environment="production")

        staging = await service.list(environment="staging")
        assert [e.id for e in staging] == [first["execution_id"]]
        assert len(await service.list(status="success")) == 1
        assert len(await service.list(limit=1)) == 1

    async def test_get_missing(self, service):
        with pytest.raises(NotFoundError):
            await service.get(uuid4())


class TestLogs:
    """Test log paging."""

    async def test_logs_grouped_by_node(self, service, runner):
        result = await service.start_pipeline(PIPELINE)
        await runner.wait(result["execution_id"], timeout=5)

        page = await service.fetch_logs(result["execution_id"])

        assert set(page["logs"]) == {"source", "build", "verify", "deploy"}
        assert page["total"] == await ExecutionLog.filter(
            execution_id=result["execution_id"]
        ).count()
        assert {n["node_id"] for n in page["node_status"]} == {
            "source",
            "build",
            "verify",
            "deploy",
        }

    async def test_logs_for_one_node_paged(self, service, runner):
        result = await service.start_pipeline(PIPELINE)
        await runner.wait(result["execution_id"], timeout=5)

        page = await service.fetch_logs(
            result["execution_id"], node_id="build", limit=1
        )

        assert isinstance(page["logs"], list)
        assert len(page["logs"]) == 1
        assert page["logs"][0].node_id == "build"
        assert page["has_more"] is True

    async def test_logs_missing_execution(self, service):
        with pytest.raises(NotFoundError):
            await service.fetch_logs(uuid4())


class TestCancel:
    """Test cancellation."""

    async def test_cancel_paused_execution(self, service):
        execution = await Execution.create(name="held", status="paused")

        result = await service.cancel(
            execution.id, reason="Not today", cancelled_by="alice"
        )

        assert result == {
            "execution_id": execution.id,
            "status": "failed",
            "cancelled": True,
        }
        await execution.refresh_from_db()
        assert execution.status == "failed"
        assert execution.metadata["cancel_reason"] == "Not today"
        assert execution.metadata["cancelled_by"] == "alice"

        event = await ExecutionStateEvent.get(execution_id=execution.id)
        assert (event.old_state, event.new_state) == ("paused", "failed")
        assert await AuditLog.exists(action="cancel_execution", user_id="alice")
        assert await NotificationEvent.exists(
            type="execution_cancelled", target="alice"
        )
        log = await ExecutionLog.get(execution_id=execution.id)
        assert log.level == "warn"
        assert log.message == "Execution cancelled: Not today"

    async def test_default_reason(self, service):
        execution = await Execution.create(name="idle")

        await service.cancel(execution.id)

        await execution.refresh_from_db()
        assert execution.metadata["cancel_reason"] == "User requested cancellation"
        assert await NotificationEvent.exists(
            type="execution_cancelled", target="system"
        )

    async def test_cannot_cancel_finished(self, service):
        execution = await Execution.create(name="done", status="success")

        with pytest.raises(ValidationFailedError):
            await service.cancel(execution.id)

    async def test_cancel_missing(self, service):
        with pytest.raises(NotFoundError):
            await service.cancel(uuid4())


class TestCheckpointRerun:
    """Test reruns from checkpoints."""

    async def test_rerun_skips_earlier_nodes(self, service, runner):
        result = await service.start_pipeline(PIPELINE)
        await runner.wait(result["execution_id"], timeout=5)
        checkpoint = await Checkpoint.get(
            execution_id=result["execution_id"], node_id="verify"
        )

        rerun = await service.rerun_from_checkpoint(checkpoint.id)
        assert rerun["resumed_from"] == checkpoint.id
        assert rerun["checkpoint_node"] == "verify"

        new_id = rerun["execution_id"]
        skipped = await ExecutionNode.filter(execution_id=new_id, node_id="source")
        assert skipped[0].metadata["skipped"] is True

        await runner.wait(new_id, timeout=5)
        execution = await Execution.get(id=new_id)
        assert execution.status == "success"
        assert execution.name.endswith("(resumed)")
        assert execution.metadata["original_execution_id"] == str(
            result["execution_id"]
        )
        assert await Checkpoint.exists(execution_id=new_id, node_id="resume-start")
        assert await ExecutionLog.exists(
            execution_id=new_id, message="Resumed from checkpoint: Verify"
        )

    async def test_rerun_missing_checkpoint(self, service):
        with pytest.raises(NotFoundError):
            await service.rerun_from_checkpoint(uuid4())


class TestDemoExecution:
    """Test the built-in demo pipeline."""

    async def test_demo_completes_with_deployment(self, service, runner):
        execution = await service.create_test_execution(
            name="demo", environment="qa", branch="feature/x"
        )
        assert execution.status == "running"
        assert len(execution.metadata["nodes"]) == 7

        await runner.wait(execution.id, timeout=10)

        stored = await Execution.get(id=execution.id)
        assert stored.status == "success"
        assert stored.progress == 100

        checkpoints = await service.list_checkpoints(execution.id)
        assert [c.node_id for c in checkpoints] == ["source", "security", "health"]

        deployment = await Deployment.get(execution_id=execution.id)
        assert deployment.environment == "qa"
        assert deployment.status == "success"
        assert deployment.version.startswith("v1.0.")
        assert await AuditLog.exists(action="create_test_execution")

    async def test_demo_can_be_rerun(self, service, runner):
        execution = await service.create_test_execution()
        await runner.wait(execution.id, timeout=10)
        checkpoint = await Checkpoint.get(execution_id=execution.id, node_id="security")

        rerun = await service.rerun_from_checkpoint(checkpoint.id)
        await runner.wait(rerun["execution_id"], timeout=10)

        # the demo approval stage pauses a regular run
        resumed = await Execution.get(id=rerun["execution_id"])
        assert resumed.status == "paused"

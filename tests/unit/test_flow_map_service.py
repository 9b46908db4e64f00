"""
Tests for the flow map read model.
"""

from uuid import uuid4

import pytest

from opzenix.core.errors import NotFoundError
from opzenix.core.models import (
    ApprovalRequest,
    ApprovalVote,
    Artifact,
    AuditLog,
    CIEvidence,
    Deployment,
    Execution,
)
from opzenix.core.services.flow_map_service import (
    FlowMapService,
    edge_type,
    map_lane,
    map_state,
    registry_name,
)


def edge_tuples(flow_map):
    return [(e.source, e.to, e.type) for e in flow_map.edges]


class TestMappings:
    """Test status, lane and registry mappings."""

    @pytest.mark.parametrize(
        "status,expected",
        [
            ("success", "PASSED"),
            ("passed", "PASSED"),
            ("Running", "RUNNING"),
            ("failed", "FAILED"),
            ("idle", "PENDING"),
            ("paused", "BLOCKED"),
            ("rolled_back", "PENDING"),
            (None, "PENDING"),
        ],
    )
    def test_map_state(self, status, expected):
        assert map_state(status) == expected

    @pytest.mark.parametrize(
        "environment,expected",
        [
            ("development", "Dev"),
            ("UAT", "UAT"),
            ("staging", "Staging"),
            ("pre-prod", "PreProd"),
            ("Production", "Prod"),
            ("qa", "Dev"),
            (None, "Dev"),
        ],
    )
    def test_map_lane(self, environment, expected):
        assert map_lane(environment) == expected

    def test_edge_type(self):
        assert edge_type("PASSED") == "SUCCESS"
        assert edge_type("FAILED") == "FAILURE"
        assert edge_type("BLOCKED") == "PENDING"

    def test_registry_name(self):
        assert registry_name("ghcr.io/acme/web") == "GHCR"
        assert registry_name("acme.azurecr.io/web") == "ACR"
        assert registry_name(None) == "DockerHub"


class TestBuildFlowMap:
    """Test assembling flow maps from execution rows."""

    async def test_execution_without_related_rows(self, db):
        execution = await Execution.create(name="ci")

        flow_map = await FlowMapService().build(execution.id)

        assert [n.id for n in flow_map.nodes] == ["source", "security-gate"]
        assert edge_tuples(flow_map) == [("source", "security-gate", "SUCCESS")]
        source = flow_map.node("source")
        assert source.data["repo"] == "ci"
        assert source.data["branch"] == "main"
        assert flow_map.meta.environment == "Dev"
        assert flow_map.meta.tenant_id == "default-tenant"
        assert flow_map.meta.immutable is False
        assert [(lane.name, lane.order) for lane in flow_map.lanes] == [
            ("ci", 0),
            ("Dev", 1),
            ("UAT", 2),
            ("Staging", 3),
            ("PreProd", 4),
            ("Prod", 5),
        ]

    async def test_full_production_flow(self, db):
        execution = await Execution.create(
            name="release",
            status="success",
            environment="production",
            branch="main",
            commit_hash="abc1234",
            metadata={
                "repository": "acme/web",
                "pusher": "alice",
                "tenantId": "acme",
            },
        )
        created = await AuditLog.create(
            action="execution_created",
            resource_type="execution",
            resource_id=str(execution.id),
        )
        await CIEvidence.create(
            execution_id=execution.id,
            step_name="Semgrep",
            step_type="sast",
            step_order=1,
            status="passed",
            duration_ms=1500,
        )
        await CIEvidence.create(
            execution_id=execution.id,
            step_name="Integration Tests",
            step_type="test",
            step_order=5,
            status="failed",
        )
        await CIEvidence.create(
            execution_id=execution.id,
            step_name="Cosign",
            step_type="sign",
            step_order=8,
            status="passed",
        )
        await Artifact.create(
            name="web",
            registry_url="ghcr.io/acme/web",
            image_digest="sha256:1",
            image_tag="1.2.3",
            execution_id=execution.id,
        )
        approval = await ApprovalRequest.create(
            execution_id=execution.id,
            node_id="gate",
            title="Deploy to Prod",
            status="approved",
            required_approvals=2,
            current_approvals=2,
        )
        for user in ("alice", "bob"):
            await ApprovalVote.create(
                approval_request_id=approval.id, user_id=user, vote=True, comment="ok"
            )
        await Deployment.create(
            execution_id=execution.id,
            environment="staging",
            version="v0.9.0",
            status="success",
        )
        deployment = await Deployment.create(
            execution_id=execution.id,
            environment="production",
            version="v1.0.0",
            status="success",
        )

        flow_map = await FlowMapService().build(execution.id)

        assert [n.id for n in flow_map.nodes] == [
            "source",
            "ci-sast-0",
            "ci-test-1",
            "ci-sign-2",
            "artifact",
            "security-gate",
            "approval-prod",
            "cd-argo-prod",
            "deploy-prod",
            "runtime-prod",
            "audit-prod",
        ]
        assert edge_tuples(flow_map)[:4] == [
            ("source", "ci-sast-0", "SUCCESS"),
            ("ci-sast-0", "ci-test-1", "FAILURE"),
            ("ci-test-1", "ci-sign-2", "SUCCESS"),
            ("ci-sign-2", "artifact", "SUCCESS"),
        ]
        assert ("approval-prod", "cd-argo-prod", "SUCCESS") in edge_tuples(flow_map)

        source = flow_map.node("source")
        assert source.data["repo"] == "acme/web"
        assert source.data["author"] == "alice"
        assert source.evidence["auditId"] == str(created.id)

        assert flow_map.node("ci-sast-0").data["duration"] == "1.5s"
        assert flow_map.node("ci-test-1").type == "ci.integration-test"
        assert flow_map.node("ci-test-1").state == "FAILED"

        artifact = flow_map.node("artifact")
        assert artifact.data["registry"] == "GHCR"
        assert artifact.data["signed"] is True

        gate = flow_map.node("approval-prod")
        assert gate.state == "PASSED"
        assert gate.lane == "Prod"
        assert [v["user"] for v in gate.data["approvedBy"]] == ["alice", "bob"]
        assert gate.data["rejectedBy"] == []
        assert gate.evidence["policyId"] == "prod-approval-policy-v1"

        deploy = flow_map.node("deploy-prod")
        assert deploy.type == "deploy.bluegreen"
        assert deploy.data["label"] == "Blue/Green Deploy"
        assert deploy.data["version"] == deployment.version
        assert flow_map.node("cd-argo-prod").data["syncMode"] == "manual"
        assert flow_map.node("cd-argo-prod").data["syncResult"] == "Synced"
        assert flow_map.node("runtime-prod").data["readyReplicas"] == 6

        record = flow_map.node("audit-prod")
        assert record.state == "LOCKED"
        assert record.data["digest"] == f"sha256:{execution.id.hex}"
        assert flow_map.meta.environment == "Prod"
        assert flow_map.meta.tenant_id == "acme"
        assert flow_map.meta.immutable is True

    async def test_blocked_execution_awaiting_approval(self, db):
        execution = await Execution.create(
            name="push",
            status="paused",
            environment="staging",
            governance_status="blocked",
            blocked_reason="Environment 'staging' is locked.",
        )
        await ApprovalRequest.create(
            execution_id=execution.id, node_id="governance-gate", title=""
        )
        await Deployment.create(
            execution_id=execution.id,
            environment="staging",
            version="v1",
            status="running",
        )

        flow_map = await FlowMapService().build(execution.id)

        gate = flow_map.node("security-gate")
        assert gate.state == "BLOCKED"
        assert gate.data["description"] == "Environment 'staging' is locked."
        assert ("source", "security-gate", "FAILURE") in edge_tuples(flow_map)

        approval = flow_map.node("approval-staging")
        assert approval.state == "BLOCKED"
        assert approval.data["label"] == "Staging Approval Gate"
        assert ("security-gate", "approval-staging", "PENDING") in edge_tuples(
            flow_map
        )

        assert flow_map.node("deploy-staging").type == "deploy.canary"
        assert flow_map.node("cd-argo-staging").data["syncResult"] == "Syncing..."
        assert flow_map.node("runtime-staging").data["readyReplicas"] == 0
        assert flow_map.node("audit-staging").state == "PENDING"
        assert flow_map.meta.immutable is False

    async def test_deployment_in_other_lane_is_ignored(self, db):
        execution = await Execution.create(name="ci", environment="uat")
        await Deployment.create(
            execution_id=execution.id, environment="production", version="v1"
        )

        flow_map = await FlowMapService().build(execution.id)

        assert flow_map.node("cd-argo-uat") is None
        assert flow_map.node("cd-argo-prod") is None

    async def test_unknown_execution(self, db):
        with pytest.raises(NotFoundError):
            await FlowMapService().build(uuid4())

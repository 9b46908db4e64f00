"""
Flow map read model.

Assembles the lane based graph a dashboard draws for one execution: the
source commit and CI evidence in the ``ci`` lane, the artifact and security
gate in the ``shared`` lane, then the approval gate and deployment chain in
the lane of the execution's environment. Nothing is stored; the map is
rebuilt from the execution's rows on every request.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ..errors import NotFoundError
from ..executions.lifecycle import ExecutionStatus, GovernanceStatus
from ..logging import get_logger
from ..models import (
    ApprovalRequest,
    ApprovalVote,
    Artifact,
    AuditLog,
    CIEvidence,
    Deployment,
    Execution,
)

logger = get_logger(__name__)

# Lanes in display order
ENVIRONMENT_LANES = ("Dev", "UAT", "Staging", "PreProd", "Prod")
LANE_LABELS = {
    "ci": "CI Pipeline",
    "Dev": "Development",
    "UAT": "User Acceptance Testing",
    "Staging": "Staging",
    "PreProd": "Pre-Production",
    "Prod": "Production",
}

STATE_BY_STATUS = {
    "success": "PASSED",
    "completed": "PASSED",
    "passed": "PASSED",
    "warning": "PASSED",
    "running": "RUNNING",
    "failed": "FAILED",
    "pending": "PENDING",
    "idle": "PENDING",
    "blocked": "BLOCKED",
    "paused": "BLOCKED",
}

LANE_BY_ENVIRONMENT = {
    "development": "Dev",
    "dev": "Dev",
    "uat": "UAT",
    "staging": "Staging",
    "preprod": "PreProd",
    "pre-prod": "PreProd",
    "production": "Prod",
    "prod": "Prod",
}

CI_NODE_TYPES = {
    "sast": "ci.sast",
    "dependency": "ci.dependency-scan",
    "secrets": "ci.secrets-scan",
    "unit": "ci.unit-test",
    "test": "ci.unit-test",
    "integration": "ci.integration-test",
    "sbom": "ci.sbom",
    "build": "ci.sbom",
    "sign": "ci.image-sign",
    "scan": "ci.image-scan",
}

STRATEGY_BY_LANE = {
    "Dev": "deploy.rolling",
    "UAT": "deploy.rolling",
    "Staging": "deploy.canary",
    "PreProd": "deploy.canary",
    "Prod": "deploy.bluegreen",
}
STRATEGY_LABELS = {
    "deploy.rolling": "Rolling Update",
    "deploy.canary": "Canary Deploy",
    "deploy.bluegreen": "Blue/Green Deploy",
}
REPLICAS_BY_LANE = {"Prod": 6, "PreProd": 4}
DEFAULT_REPLICAS = 2
DEFAULT_TENANT = "default-tenant"
SECURITY_POLICY_ID = "security-policy-v1"


def map_state(status: Optional[str]) -> str:
    """Node state for an execution, evidence or deployment status."""
    return STATE_BY_STATUS.get((status or "").lower(), "PENDING")


def map_lane(environment: Optional[str]) -> str:
    """Environment lane for an environment name; unknown names map to Dev."""
    return LANE_BY_ENVIRONMENT.get((environment or "").lower(), "Dev")


def edge_type(state: str) -> str:
    if state == "PASSED":
        return "SUCCESS"
    if state == "FAILED":
        return "FAILURE"
    return "PENDING"


def registry_name(registry_url: Optional[str]) -> str:
    url = registry_url or ""
    if "ghcr" in url:
        return "GHCR"
    if "azurecr" in url:
        return "ACR"
    return "DockerHub"


def ci_node_type(evidence: CIEvidence) -> str:
    if evidence.step_type == "test" and evidence.step_name.lower().startswith(
        "integration"
    ):
        return CI_NODE_TYPES["integration"]
    return CI_NODE_TYPES.get(evidence.step_type, "ci.sast")


class FlowNode(BaseModel):
    """A node of the flow map."""

    id: str
    type: str
    state: str
    lane: str
    data: Dict[str, Any] = Field(default_factory=dict)
    evidence: Dict[str, Optional[str]] = Field(default_factory=dict)


class FlowEdge(BaseModel):
    """A directed edge between two flow map nodes."""

    model_config = ConfigDict(populate_by_name=True)

    source: str = Field(..., alias="from")
    to: str
    type: str


class FlowLane(BaseModel):
    name: str
    label: str
    order: int


class FlowMapMeta(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tenant_id: str = Field(..., alias="tenantId")
    environment: str
    pipeline_execution_id: UUID = Field(..., alias="pipelineExecutionId")
    immutable: bool
    generated_at: datetime = Field(..., alias="generatedAt")


class FlowMap(BaseModel):
    """Flow map of one execution."""

    meta: FlowMapMeta
    nodes: List[FlowNode] = Field(default_factory=list)
    edges: List[FlowEdge] = Field(default_factory=list)
    lanes: List[FlowLane] = Field(default_factory=list)

    def node(self, node_id: str) -> Optional[FlowNode]:
        return next((n for n in self.nodes if n.id == node_id), None)


def _lanes() -> List[FlowLane]:
    names = ("ci",) + ENVIRONMENT_LANES
    return [
        FlowLane(name=name, label=LANE_LABELS[name], order=order)
        for order, name in enumerate(names)
    ]


def _audit_id(
    entries: Sequence[AuditLog],
    resource_type: str,
    resource_id: Any,
    latest: bool = False,
) -> Optional[str]:
    matching = [
        e
        for e in entries
        if e.resource_type == resource_type and e.resource_id == str(resource_id)
    ]
    if not matching:
        return None
    return str(matching[-1].id if latest else matching[0].id)


def _vote_entry(vote: ApprovalVote) -> Dict[str, Any]:
    return {"user": vote.user_id, "votedAt": vote.created_at, "comment": vote.comment}


class FlowMapService:
    """Builds flow maps from executions and their related rows."""

    async def build(self, execution_id: UUID) -> FlowMap:
        """
        Build the flow map of an execution.

        Raises:
            NotFoundError: If the execution does not exist
        """
        execution = await Execution.get_or_none(id=execution_id)
        if execution is None:
            raise NotFoundError("Execution", execution_id)

        evidence = await CIEvidence.filter(execution_id=execution.id).order_by(
            "step_order", "created_at"
        )
        artifact = (
            await Artifact.filter(execution_id=execution.id)
            .order_by("created_at")
            .first()
        )
        approval = (
            await ApprovalRequest.filter(execution_id=execution.id)
            .order_by("-created_at")
            .first()
        )
        deployments = await Deployment.filter(execution_id=execution.id).order_by(
            "-created_at"
        )

        resource_ids = [str(execution.id)]
        if artifact is not None:
            resource_ids.append(str(artifact.id))
        if approval is not None:
            resource_ids.append(str(approval.id))
        resource_ids.extend(str(d.id) for d in deployments)
        audit = await AuditLog.filter(resource_id__in=resource_ids).order_by(
            "created_at"
        )

        lane = map_lane(execution.environment)
        is_complete = execution.status in (
            ExecutionStatus.SUCCESS.value,
            ExecutionStatus.FAILED.value,
        )
        nodes: List[FlowNode] = []
        edges: List[FlowEdge] = []

        metadata = execution.metadata or {}
        nodes.append(
            FlowNode(
                id="source",
                type="source.git",
                state="PASSED",
                lane="ci",
                data={
                    "label": "GitHub Commit",
                    "repo": metadata.get("repo")
                    or metadata.get("repository")
                    or execution.name,
                    "branch": execution.branch or "main",
                    "commitSha": execution.commit_hash or "",
                    "author": metadata.get("author") or metadata.get("pusher") or "",
                    "timestamp": execution.started_at,
                },
                evidence={"auditId": _audit_id(audit, "execution", execution.id)},
            )
        )
        last = "source"

        for index, item in enumerate(evidence):
            node_id = f"ci-{item.step_type}-{index}"
            state = map_state(item.status)
            duration = f"{item.duration_ms / 1000:.1f}s" if item.duration_ms else None
            nodes.append(
                FlowNode(
                    id=node_id,
                    type=ci_node_type(item),
                    state=state,
                    lane="ci",
                    data={
                        "label": item.step_name,
                        "description": item.summary or f"{item.step_type} analysis",
                        "duration": duration,
                        "startedAt": item.started_at,
                        "completedAt": item.completed_at,
                        "reportUrl": item.evidence_url,
                        "details": item.details,
                    },
                )
            )
            edges.append(FlowEdge(source=last, to=node_id, type=edge_type(state)))
            last = node_id

        if artifact is not None:
            signed = any(
                e.step_type == "sign" and map_state(e.status) == "PASSED"
                for e in evidence
            )
            nodes.append(
                FlowNode(
                    id="artifact",
                    type="artifact.image",
                    state="PASSED",
                    lane="shared",
                    data={
                        "label": "Container Image",
                        "imageName": artifact.name,
                        "registry": registry_name(artifact.registry_url),
                        "tag": artifact.image_tag or "",
                        "digest": artifact.image_digest,
                        "sizeBytes": artifact.size_bytes,
                        "buildDurationMs": artifact.build_duration_ms,
                        "signed": signed,
                        "createdAt": artifact.created_at,
                    },
                    evidence={"auditId": _audit_id(audit, "artifact", artifact.id)},
                )
            )
            edges.append(FlowEdge(source=last, to="artifact", type="SUCCESS"))
            last = "artifact"

        blocked = execution.governance_status == GovernanceStatus.BLOCKED.value
        nodes.append(
            FlowNode(
                id="security-gate",
                type="security.gate",
                state="BLOCKED" if blocked else "PASSED",
                lane="shared",
                data={
                    "label": "Security Gate",
                    "description": (
                        execution.blocked_reason
                        if blocked
                        else "Policy enforcement passed"
                    ),
                    "severityThreshold": "Critical: 0, High: 0",
                    "blockedReason": execution.blocked_reason,
                    "governanceStatus": execution.governance_status,
                },
                evidence={
                    "policyId": SECURITY_POLICY_ID,
                    "auditId": (
                        _audit_id(audit, "execution", execution.id, latest=True)
                        if blocked
                        else None
                    ),
                },
            )
        )
        edges.append(
            FlowEdge(
                source=last,
                to="security-gate",
                type="FAILURE" if blocked else "SUCCESS",
            )
        )
        last = "security-gate"

        key = lane.lower()
        if approval is not None:
            node_id = f"approval-{key}"
            state = {"approved": "PASSED", "rejected": "FAILED"}.get(
                approval.status, "BLOCKED"
            )
            votes = await ApprovalVote.filter(approval_request_id=approval.id).order_by(
                "created_at"
            )
            nodes.append(
                FlowNode(
                    id=node_id,
                    type="approval.gate",
                    state=state,
                    lane=lane,
                    data={
                        "label": approval.title or f"{lane} Approval Gate",
                        "requiredApprovals": approval.required_approvals,
                        "currentApprovals": approval.current_approvals,
                        "approvedBy": [_vote_entry(v) for v in votes if v.vote],
                        "rejectedBy": [_vote_entry(v) for v in votes if not v.vote],
                        "description": approval.description,
                        "resolvedAt": approval.resolved_at,
                    },
                    evidence={
                        "policyId": f"{key}-approval-policy-v1",
                        "auditId": _audit_id(
                            audit, "approval_request", approval.id, latest=True
                        ),
                    },
                )
            )
            edges.append(
                FlowEdge(source="security-gate", to=node_id, type=edge_type(state))
            )
            last = node_id

        deployment = next(
            (d for d in deployments if map_lane(d.environment) == lane), None
        )
        if deployment is not None:
            self._add_deployment(
                nodes, edges, execution, deployment, lane, last, audit, is_complete
            )

        logger.info(
            "Flow map generated",
            execution_id=str(execution.id),
            nodes=len(nodes),
            edges=len(edges),
        )
        return FlowMap(
            meta=FlowMapMeta(
                tenant_id=metadata.get("tenantId") or DEFAULT_TENANT,
                environment=lane,
                pipeline_execution_id=execution.id,
                immutable=is_complete,
                generated_at=datetime.now(timezone.utc),
            ),
            nodes=nodes,
            edges=edges,
            lanes=_lanes(),
        )

    def _add_deployment(
        self,
        nodes: List[FlowNode],
        edges: List[FlowEdge],
        execution: Execution,
        deployment: Deployment,
        lane: str,
        previous: str,
        audit: Sequence[AuditLog],
        is_complete: bool,
    ) -> None:
        """Append the sync, strategy, runtime and audit chain of a deployment."""
        key = lane.lower()
        state = map_state(deployment.status)
        link = "SUCCESS" if state == "PASSED" else "PENDING"
        deployment_audit = _audit_id(audit, "deployment", deployment.id, latest=True)
        sync_result = {"PASSED": "Synced", "RUNNING": "Syncing..."}.get(state)
        strategy = STRATEGY_BY_LANE[lane]
        replicas = REPLICAS_BY_LANE.get(lane, DEFAULT_REPLICAS)

        chain = [
            FlowNode(
                id=f"cd-argo-{key}",
                type="cd.argo",
                state=state,
                lane=lane,
                data={
                    "label": "Argo CD Sync",
                    "appName": f"opzenix-{key}",
                    "gitRevision": execution.commit_hash or "",
                    "syncMode": "manual" if lane == "Prod" else "auto",
                    "syncResult": sync_result,
                    "deployedAt": deployment.deployed_at,
                },
                evidence={"auditId": deployment_audit},
            ),
            FlowNode(
                id=f"deploy-{key}",
                type=strategy,
                state=state,
                lane=lane,
                data={
                    "label": STRATEGY_LABELS[strategy],
                    "strategy": strategy.split(".")[1],
                    "version": deployment.version,
                },
            ),
            FlowNode(
                id=f"runtime-{key}",
                type="runtime.k8s",
                state=state,
                lane=lane,
                data={
                    "label": "Kubernetes",
                    "namespace": f"opzenix-{key}",
                    "deployment": "opzenix-api",
                    "replicas": replicas,
                    "readyReplicas": replicas if state == "PASSED" else 0,
                },
            ),
            FlowNode(
                id=f"audit-{key}",
                type="audit.record",
                state="LOCKED" if is_complete else "PENDING",
                lane=lane,
                data={
                    "label": "Audit Record",
                    "description": "Immutable deployment record",
                    "digest": f"sha256:{execution.id.hex}",
                    "immutable": is_complete,
                    "lockedAt": execution.completed_at if is_complete else None,
                },
                evidence={"auditId": str(audit[-1].id) if audit else None},
            ),
        ]
        for node in chain:
            nodes.append(node)
            edges.append(FlowEdge(source=previous, to=node.id, type=link))
            previous = node.id

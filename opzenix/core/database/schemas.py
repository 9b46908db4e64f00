"""
Pydantic schemas for Tortoise ORM models.

These schemas provide request/response models for FastAPI endpoints.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ..executions.graph import PipelineEdge, PipelineNode


class ExecutionResponse(BaseModel):
    """Schema for execution responses."""

    id: UUID
    name: str
    status: str
    environment: str
    branch: Optional[str] = None
    commit_hash: Optional[str] = None
    progress: int
    governance_status: Optional[str] = None
    blocked_reason: Optional[str] = None
    github_run_id: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ExecutionNodeResponse(BaseModel):
    """Schema for execution node responses."""

    id: UUID
    execution_id: UUID
    node_id: str
    status: str
    logs: List[str] = Field(default_factory=list)
    duration_ms: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ExecutionLogResponse(BaseModel):
    """Schema for execution log responses."""

    id: UUID
    execution_id: UUID
    node_id: Optional[str] = None
    level: str
    message: str
    created_at: datetime

    model_config = {"from_attributes": True}


class CheckpointResponse(BaseModel):
    """Schema for checkpoint responses."""

    id: UUID
    execution_id: UUID
    node_id: str
    name: str
    state: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    model_config = {"from_attributes": True}


class DeploymentResponse(BaseModel):
    """Schema for deployment responses."""

    id: UUID
    execution_id: Optional[UUID] = None
    environment: str
    version: str
    status: str
    rollback_to: Optional[UUID] = None
    notes: Optional[str] = None
    deployed_by: Optional[str] = None
    deployed_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ApprovalRequestResponse(BaseModel):
    """Schema for approval request responses."""

    id: UUID
    execution_id: UUID
    node_id: str
    title: str
    description: Optional[str] = None
    status: str
    required_approvals: int
    current_approvals: int
    resolved_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ApprovalVoteResponse(BaseModel):
    """Schema for approval vote responses."""

    id: UUID
    approval_request_id: UUID
    user_id: str
    vote: bool
    comment: str
    created_at: datetime

    model_config = {"from_attributes": True}


class AuditLogResponse(BaseModel):
    """Schema for audit log responses."""

    id: UUID
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    user_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    model_config = {"from_attributes": True}


class ArtifactResponse(BaseModel):
    """Schema for artifact responses."""

    id: UUID
    execution_id: Optional[UUID] = None
    name: str
    type: str
    registry_url: str
    image_digest: str
    image_tag: Optional[str] = None
    version: Optional[str] = None
    size_bytes: Optional[int] = None
    build_duration_ms: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    model_config = {"from_attributes": True}


class SbomEntryResponse(BaseModel):
    """Schema for SBOM entry responses."""

    id: UUID
    artifact_id: UUID
    format: str
    generator: str
    packages: List[Dict[str, Any]] = Field(default_factory=list)
    dependencies_count: int
    license_summary: Dict[str, int] = Field(default_factory=dict)
    sbom_url: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class VulnerabilityScanResponse(BaseModel):
    """Schema for vulnerability scan responses."""

    id: UUID
    artifact_id: UUID
    scan_type: str
    scanner: str
    scan_status: str
    total_issues: int
    critical: int
    high: int
    medium: int
    low: int
    cve_details: List[Dict[str, Any]] = Field(default_factory=list)
    scanned_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CIEvidenceResponse(BaseModel):
    """Schema for CI evidence responses."""

    id: UUID
    execution_id: UUID
    step_name: str
    step_type: str
    step_order: int
    status: str
    evidence_url: Optional[str] = None
    summary: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    duration_ms: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class TestResultResponse(BaseModel):
    """Schema for test result responses."""

    __test__ = False

    id: UUID
    execution_id: UUID
    suite_name: str
    test_type: str
    total_tests: int
    passed: int
    failed: int
    skipped: int
    duration_ms: int
    coverage_percent: Optional[float] = None
    report_url: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    model_config = {"from_attributes": True}


class NotificationEventResponse(BaseModel):
    """Schema for notification responses."""

    id: UUID
    type: str
    target: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}


class EnvironmentConfigResponse(BaseModel):
    """Schema for environment config responses."""

    id: UUID
    name: str
    environment: str
    variables: Dict[str, Any] = Field(default_factory=dict)
    secrets_ref: Optional[str] = None
    is_active: bool
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class EnvironmentLockResponse(BaseModel):
    """Schema for environment lock responses."""

    id: UUID
    environment: str
    is_locked: bool
    requires_approval: bool
    required_role: str
    updated_at: datetime

    model_config = {"from_attributes": True}


class BranchMappingResponse(BaseModel):
    """Schema for branch mapping responses."""

    id: UUID
    repository: str
    branch_pattern: str
    environment: str
    is_deployable: bool

    model_config = {"from_attributes": True}


# Request schemas


class PipelineExecuteRequest(BaseModel):
    """Pipeline drawn in the flow editor plus where to run it."""

    model_config = ConfigDict(populate_by_name=True)

    pipeline_id: Optional[str] = Field(default=None, alias="pipelineId")
    nodes: List[PipelineNode]
    edges: List[PipelineEdge] = Field(default_factory=list)
    environment: Optional[str] = None
    branch: Optional[str] = None
    commit_hash: Optional[str] = Field(default=None, alias="commitHash")
    flow_type: Optional[str] = Field(default=None, alias="flowType")


class TestExecutionRequest(BaseModel):
    """Optional overrides for a demo execution."""

    __test__ = False

    name: Optional[str] = None
    environment: Optional[str] = None
    branch: Optional[str] = None


class CancelExecutionRequest(BaseModel):
    """Why and by whom an execution is cancelled."""

    reason: Optional[str] = None
    cancelled_by: Optional[str] = None


class ApprovalVoteRequest(BaseModel):
    """A single approver's vote."""

    user_id: str
    approved: bool
    comment: Optional[str] = None


class RollbackRequest(BaseModel):
    """Target of a rollback."""

    model_config = ConfigDict(populate_by_name=True)

    target_version: str = Field(alias="targetVersion")
    environment: str
    reason: Optional[str] = None


class EnvironmentCreateRequest(BaseModel):
    """Schema for creating an environment config."""

    name: Optional[str] = None
    environment: Optional[str] = None
    variables: Dict[str, Any] = Field(default_factory=dict)
    secrets_ref: Optional[str] = None
    created_by: Optional[str] = None


class EnvironmentUpdateRequest(BaseModel):
    """Schema for updating an environment config; unset fields are kept."""

    variables: Optional[Dict[str, Any]] = None
    secrets_ref: Optional[str] = None
    is_active: Optional[bool] = None
    updated_by: Optional[str] = None


class EnvironmentLockRequest(BaseModel):
    """Schema for setting an environment lock."""

    is_locked: bool = True
    requires_approval: bool = True
    required_role: str = "admin"


class BranchMappingRequest(BaseModel):
    """Schema for adding a branch mapping."""

    repository: str
    branch_pattern: str
    environment: str
    is_deployable: bool = True

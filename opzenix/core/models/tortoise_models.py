"""
Tortoise ORM models for Opzenix.

One model per table of the execution control plane: executions and their
nodes, logs, state events and checkpoints; deployments and approvals; the
supply-chain evidence attached to artifacts; and environment governance.
"""

from uuid import uuid4

from tortoise import fields
from tortoise.models import Model


class Execution(Model):
    """A single pipeline run."""

    # Primary key
    id = fields.UUIDField(primary_key=True, default=uuid4)

    # Basic execution information
    name = fields.CharField(max_length=255)
    status = fields.CharField(max_length=20, default="idle", db_index=True)
    environment = fields.CharField(max_length=100, default="development", db_index=True)
    branch = fields.CharField(max_length=255, null=True)
    commit_hash = fields.CharField(max_length=64, null=True)
    progress = fields.IntField(default=0)

    # Governance
    governance_status = fields.CharField(max_length=30, null=True)
    blocked_reason = fields.TextField(null=True)

    # GitHub Actions run driving this execution
    github_run_id = fields.BigIntField(null=True, db_index=True)

    # Pipeline definition, cancellation details, repository and pusher
    metadata = fields.JSONField(default=dict)

    # Timestamps
    started_at = fields.DatetimeField(null=True)
    completed_at = fields.DatetimeField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    # Relationships
    nodes: fields.ReverseRelation["ExecutionNode"]
    logs: fields.ReverseRelation["ExecutionLog"]
    state_events: fields.ReverseRelation["ExecutionStateEvent"]
    checkpoints: fields.ReverseRelation["Checkpoint"]
    approval_requests: fields.ReverseRelation["ApprovalRequest"]

    class Meta:
        """Meta class for Execution model."""

        table = "executions"

    def __str__(self) -> str:
        """Return string representation of Execution."""
        return f"Execution({self.name})"


class ExecutionNode(Model):
    """Status of one pipeline stage within an execution."""

    id = fields.UUIDField(primary_key=True, default=uuid4)

    execution: fields.ForeignKeyRelation[Execution] = fields.ForeignKeyField(
        "models.Execution", related_name="nodes", db_index=True
    )

    node_id = fields.CharField(max_length=100, db_index=True)
    status = fields.CharField(max_length=20, default="idle")
    logs = fields.JSONField(default=list)
    duration_ms = fields.IntField(null=True)
    metadata = fields.JSONField(default=dict)  # label, stage type, position

    started_at = fields.DatetimeField(null=True)
    completed_at = fields.DatetimeField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        """Meta class for ExecutionNode model."""

        table = "execution_nodes"
        unique_together = (("execution", "node_id"),)

    def __str__(self) -> str:
        """Return string representation of ExecutionNode."""
        return f"ExecutionNode({self.node_id})"


class ExecutionLog(Model):
    """A log line emitted while an execution runs."""

    id = fields.UUIDField(primary_key=True, default=uuid4)

    execution: fields.ForeignKeyRelation[Execution] = fields.ForeignKeyField(
        "models.Execution", related_name="logs", db_index=True
    )

    node_id = fields.CharField(max_length=255, null=True, db_index=True)
    level = fields.CharField(max_length=10, default="info")
    message = fields.TextField()

    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        """Meta class for ExecutionLog model."""

        table = "execution_logs"
        ordering = ["created_at"]


class ExecutionStateEvent(Model):
    """Recorded status change of an execution."""

    id = fields.UUIDField(primary_key=True, default=uuid4)

    execution: fields.ForeignKeyRelation[Execution] = fields.ForeignKeyField(
        "models.Execution", related_name="state_events", db_index=True
    )

    old_state = fields.CharField(max_length=20, null=True)
    new_state = fields.CharField(max_length=20)
    reason = fields.TextField(null=True)
    triggered_by = fields.CharField(max_length=255, null=True)
    metadata = fields.JSONField(default=dict)

    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        """Meta class for ExecutionStateEvent model."""

        table = "execution_state_events"


class Checkpoint(Model):
    """Resumable snapshot taken after a stage completed."""

    id = fields.UUIDField(primary_key=True, default=uuid4)

    execution: fields.ForeignKeyRelation[Execution] = fields.ForeignKeyField(
        "models.Execution", related_name="checkpoints", db_index=True
    )

    node_id = fields.CharField(max_length=100)
    name = fields.CharField(max_length=255)
    state = fields.JSONField(default=dict)

    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        """Meta class for Checkpoint model."""

        table = "checkpoints"

    def __str__(self) -> str:
        """Return string representation of Checkpoint."""
        return f"Checkpoint({self.name})"


class Deployment(Model):
    """A release of a version into an environment."""

    id = fields.UUIDField(primary_key=True, default=uuid4)

    execution: fields.ForeignKeyNullableRelation[Execution] = fields.ForeignKeyField(
        "models.Execution", related_name="deployments", null=True
    )

    environment = fields.CharField(max_length=100, db_index=True)
    version = fields.CharField(max_length=100)
    status = fields.CharField(max_length=20, default="pending")
    rollback_to = fields.UUIDField(null=True)
    notes = fields.TextField(null=True)
    deployed_by = fields.CharField(max_length=255, null=True)

    deployed_at = fields.DatetimeField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        """Meta class for Deployment model."""

        table = "deployments"

    def __str__(self) -> str:
        """Return string representation of Deployment."""
        return f"Deployment({self.environment}@{self.version})"


class ApprovalRequest(Model):
    """Gate that holds an execution until enough approvers agree."""

    id = fields.UUIDField(primary_key=True, default=uuid4)

    execution: fields.ForeignKeyRelation[Execution] = fields.ForeignKeyField(
        "models.Execution", related_name="approval_requests", db_index=True
    )

    node_id = fields.CharField(max_length=100)
    title = fields.CharField(max_length=255)
    description = fields.TextField(null=True)
    status = fields.CharField(max_length=20, default="pending", db_index=True)
    required_approvals = fields.IntField(default=1)
    current_approvals = fields.IntField(default=0)

    resolved_at = fields.DatetimeField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    votes: fields.ReverseRelation["ApprovalVote"]

    class Meta:
        """Meta class for ApprovalRequest model."""

        table = "approval_requests"


class ApprovalVote(Model):
    """One approver's decision on an approval request."""

    id = fields.UUIDField(primary_key=True, default=uuid4)

    approval_request: fields.ForeignKeyRelation[ApprovalRequest] = (
        fields.ForeignKeyField("models.ApprovalRequest", related_name="votes")
    )

    user_id = fields.CharField(max_length=255)
    vote = fields.BooleanField()
    comment = fields.TextField()

    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        """Meta class for ApprovalVote model."""

        table = "approval_votes"
        unique_together = (("approval_request", "user_id"),)


class AuditLog(Model):
    """Append-only record of who did what to which resource."""

    id = fields.UUIDField(primary_key=True, default=uuid4)

    action = fields.CharField(max_length=100, db_index=True)
    resource_type = fields.CharField(max_length=100, db_index=True)
    resource_id = fields.CharField(max_length=255, null=True, db_index=True)
    user_id = fields.CharField(max_length=255, null=True)
    details = fields.JSONField(default=dict)

    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        """Meta class for AuditLog model."""

        table = "audit_logs"


class Artifact(Model):
    """Immutable build output identified by its image digest."""

    id = fields.UUIDField(primary_key=True, default=uuid4)

    execution: fields.ForeignKeyNullableRelation[Execution] = fields.ForeignKeyField(
        "models.Execution", related_name="artifacts", null=True
    )

    name = fields.CharField(max_length=255)
    type = fields.CharField(max_length=50, default="docker")
    registry_url = fields.CharField(max_length=500)
    image_digest = fields.CharField(max_length=255, unique=True)
    image_tag = fields.CharField(max_length=255, null=True)
    version = fields.CharField(max_length=100, null=True)
    size_bytes = fields.BigIntField(null=True)
    build_duration_ms = fields.IntField(null=True)
    metadata = fields.JSONField(default=dict)

    created_at = fields.DatetimeField(auto_now_add=True)

    sbom_entries: fields.ReverseRelation["SbomEntry"]
    vulnerability_scans: fields.ReverseRelation["VulnerabilityScan"]

    class Meta:
        """Meta class for Artifact model."""

        table = "artifacts"

    def __str__(self) -> str:
        """Return string representation of Artifact."""
        return f"Artifact({self.name}@{self.image_digest})"


class SbomEntry(Model):
    """Software bill of materials attached to an artifact."""

    id = fields.UUIDField(primary_key=True, default=uuid4)

    artifact: fields.ForeignKeyRelation[Artifact] = fields.ForeignKeyField(
        "models.Artifact", related_name="sbom_entries"
    )

    format = fields.CharField(max_length=20, default="spdx")
    generator = fields.CharField(max_length=50, default="syft")
    packages = fields.JSONField(default=list)
    dependencies_count = fields.IntField(default=0)
    license_summary = fields.JSONField(default=dict)
    sbom_url = fields.CharField(max_length=500, null=True)

    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        """Meta class for SbomEntry model."""

        table = "sbom_entries"


class VulnerabilityScan(Model):
    """Result of scanning an artifact for known CVEs."""

    id = fields.UUIDField(primary_key=True, default=uuid4)

    artifact: fields.ForeignKeyRelation[Artifact] = fields.ForeignKeyField(
        "models.Artifact", related_name="vulnerability_scans"
    )

    scan_type = fields.CharField(max_length=50, default="image")
    scanner = fields.CharField(max_length=50, default="trivy")
    scan_status = fields.CharField(max_length=20)
    total_issues = fields.IntField(default=0)
    critical = fields.IntField(default=0)
    high = fields.IntField(default=0)
    medium = fields.IntField(default=0)
    low = fields.IntField(default=0)
    cve_details = fields.JSONField(default=list)

    scanned_at = fields.DatetimeField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        """Meta class for VulnerabilityScan model."""

        table = "vulnerability_scans"


class TelemetrySignal(Model):
    """Trace, log or metric correlated to an execution."""

    id = fields.UUIDField(primary_key=True, default=uuid4)

    # Correlation ids are loose references, signals may arrive before the rows
    signal_type = fields.CharField(max_length=30, db_index=True)
    flow_id = fields.CharField(max_length=255, null=True)
    execution_id = fields.UUIDField(null=True, db_index=True)
    checkpoint_id = fields.UUIDField(null=True)
    node_id = fields.CharField(max_length=100, null=True)
    environment = fields.CharField(max_length=100, null=True)
    deployment_version = fields.CharField(max_length=100, null=True)

    severity = fields.CharField(max_length=20, default="info")
    summary = fields.TextField(null=True)
    payload = fields.JSONField(default=dict)

    # OpenTelemetry fields
    otel_trace_id = fields.CharField(max_length=64, null=True)
    otel_span_id = fields.CharField(max_length=32, null=True)
    otel_parent_span_id = fields.CharField(max_length=32, null=True)
    resource_attributes = fields.JSONField(default=dict)
    span_attributes = fields.JSONField(default=dict)
    duration_ms = fields.IntField(null=True)
    status_code = fields.CharField(max_length=20, null=True)

    created_at = fields.DatetimeField()

    class Meta:
        """Meta class for TelemetrySignal model."""

        table = "telemetry_signals"


class CIEvidence(Model):
    """Outcome of one CI step (tests, scans, SBOM, signing) for an execution."""

    id = fields.UUIDField(primary_key=True, default=uuid4)

    execution: fields.ForeignKeyRelation[Execution] = fields.ForeignKeyField(
        "models.Execution", related_name="ci_evidence", db_index=True
    )

    step_name = fields.CharField(max_length=255)
    step_type = fields.CharField(max_length=30)
    step_order = fields.IntField(default=99)
    status = fields.CharField(max_length=20)
    evidence_url = fields.CharField(max_length=500, null=True)
    summary = fields.TextField(null=True)
    details = fields.JSONField(default=dict)
    duration_ms = fields.IntField(null=True)

    started_at = fields.DatetimeField(null=True)
    completed_at = fields.DatetimeField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        """Meta class for CIEvidence model."""

        table = "ci_evidence"
        unique_together = (("execution", "step_name"),)


class TestResult(Model):
    """Parsed test report for an execution."""

    id = fields.UUIDField(primary_key=True, default=uuid4)

    execution: fields.ForeignKeyRelation[Execution] = fields.ForeignKeyField(
        "models.Execution", related_name="test_results", db_index=True
    )

    suite_name = fields.CharField(max_length=255)
    test_type = fields.CharField(max_length=30, default="unit")
    total_tests = fields.IntField(default=0)
    passed = fields.IntField(default=0)
    failed = fields.IntField(default=0)
    skipped = fields.IntField(default=0)
    duration_ms = fields.IntField(default=0)
    coverage_percent = fields.FloatField(null=True)
    report_url = fields.CharField(max_length=500, null=True)
    details = fields.JSONField(default=dict)

    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        """Meta class for TestResult model."""

        table = "test_results"


class NotificationEvent(Model):
    """Notification addressed to a user or the system."""

    id = fields.UUIDField(primary_key=True, default=uuid4)

    type = fields.CharField(max_length=100, db_index=True)
    target = fields.CharField(max_length=255, default="system")
    payload = fields.JSONField(default=dict)
    status = fields.CharField(max_length=20, default="sent")

    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        """Meta class for NotificationEvent model."""

        table = "notification_events"


class EnvironmentConfig(Model):
    """Variables and secret references of a deployment environment."""

    id = fields.UUIDField(primary_key=True, default=uuid4)

    name = fields.CharField(max_length=255)
    environment = fields.CharField(max_length=100, db_index=True)
    variables = fields.JSONField(default=dict)
    secrets_ref = fields.CharField(max_length=500, null=True)
    is_active = fields.BooleanField(default=True)
    created_by = fields.CharField(max_length=255, null=True)

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        """Meta class for EnvironmentConfig model."""

        table = "environment_configs"

    def __str__(self) -> str:
        """Return string representation of EnvironmentConfig."""
        return f"EnvironmentConfig({self.name})"


class EnvironmentLock(Model):
    """Whether deployments into an environment need approval."""

    id = fields.UUIDField(primary_key=True, default=uuid4)

    environment = fields.CharField(max_length=100, unique=True)
    is_locked = fields.BooleanField(default=True)
    requires_approval = fields.BooleanField(default=True)
    required_role = fields.CharField(max_length=50, default="admin")

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        """Meta class for EnvironmentLock model."""

        table = "environment_locks"


class BranchMapping(Model):
    """Maps branch patterns of a repository to target environments."""

    id = fields.UUIDField(primary_key=True, default=uuid4)

    repository = fields.CharField(max_length=255, db_index=True)  # owner/name
    branch_pattern = fields.CharField(max_length=255)
    environment = fields.CharField(max_length=100)
    is_deployable = fields.BooleanField(default=True)

    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        """Meta class for BranchMapping model."""

        table = "branch_mappings"

"""
Tortoise ORM models for Opzenix.
"""

from .tortoise_models import (
    ApprovalRequest,
    ApprovalVote,
    Artifact,
    AuditLog,
    BranchMapping,
    Checkpoint,
    CIEvidence,
    Deployment,
    EnvironmentConfig,
    EnvironmentLock,
    Execution,
    ExecutionLog,
    ExecutionNode,
    ExecutionStateEvent,
    NotificationEvent,
    SbomEntry,
    TelemetrySignal,
    TestResult,
    VulnerabilityScan,
)

__all__ = [
    "ApprovalRequest",
    "ApprovalVote",
    "Artifact",
    "AuditLog",
    "BranchMapping",
    "Checkpoint",
    "CIEvidence",
    "Deployment",
    "EnvironmentConfig",
    "EnvironmentLock",
    "Execution",
    "ExecutionLog",
    "ExecutionNode",
    "ExecutionStateEvent",
    "NotificationEvent",
    "SbomEntry",
    "TelemetrySignal",
    "TestResult",
    "VulnerabilityScan",
]

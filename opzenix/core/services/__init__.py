"""
Service layer for Opzenix.

Services work on Tortoise models directly and raise ``OpzenixError``
subclasses that the API layer turns into HTTP responses.
"""

from .approval_service import ApprovalService
from .artifact_service import ArtifactService
from .audit_service import AuditService
from .deployment_service import DeploymentService
from .environment_service import EnvironmentService
from .evidence_service import EvidenceService
from .execution_service import ExecutionService
from .github_service import GitHubWebhookService
from .notification_service import NotificationService
from .security_service import SecurityService
from .telemetry_service import TelemetryService

__all__ = [
    "ApprovalService",
    "ArtifactService",
    "AuditService",
    "DeploymentService",
    "EnvironmentService",
    "EvidenceService",
    "ExecutionService",
    "GitHubWebhookService",
    "NotificationService",
    "SecurityService",
    "TelemetryService",
]

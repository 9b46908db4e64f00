"""
Artifact registration from CI webhooks.

Artifacts are immutable: a digest that is already registered is reported as
a duplicate instead of being overwritten.
"""

import hmac
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..config import get_config
from ..database.schemas import ArtifactResponse
from ..errors import ValidationFailedError, WebhookAuthenticationError
from ..logging import get_logger
from ..models import Artifact, TelemetrySignal
from .audit_service import AuditService

logger = get_logger(__name__)

REQUIRED_FIELDS = ["name", "registry_url", "image_digest"]


class ArtifactService:
    """Registers pushed container images and lists them."""

    def __init__(
        self,
        audit_service: Optional[AuditService] = None,
        webhook_secret: Optional[str] = None,
    ) -> None:
        self.audit_service = audit_service or AuditService()
        self._webhook_secret = webhook_secret

    @property
    def webhook_secret(self) -> Optional[str]:
        if self._webhook_secret is not None:
            return self._webhook_secret
        return get_config().webhooks.artifact_secret

    def verify_secret(self, provided: Optional[str]) -> None:
        """
        Check the shared webhook secret.

        No check is made when no secret is configured.

        Raises:
            WebhookAuthenticationError: If the secret does not match
        """
        expected = self.webhook_secret
        if not expected:
            return
        if not provided or not hmac.compare_digest(provided, expected):
            logger.warning("Invalid artifact webhook secret")
            raise WebhookAuthenticationError()

    async def register(
        self, payload: Dict[str, Any], secret: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Register an artifact pushed by CI.

        Args:
            payload: Artifact fields as sent by the webhook
            secret: Value of the ``x-webhook-secret`` header

        Returns:
            ``status`` is ``created`` for a new artifact and ``duplicate``
            when the digest was already registered

        Raises:
            WebhookAuthenticationError: If the webhook secret does not match
            ValidationFailedError: If a required field is missing
        """
        self.verify_secret(secret)

        if any(not payload.get(field) for field in REQUIRED_FIELDS):
            raise ValidationFailedError(
                "Missing required fields", {"required": REQUIRED_FIELDS}
            )

        existing = await Artifact.get_or_none(image_digest=payload["image_digest"])
        if existing is not None:
            logger.info(
                "Artifact with this digest already exists",
                artifact_id=str(existing.id),
                image_digest=existing.image_digest,
            )
            return {
                "status": "duplicate",
                "artifact_id": existing.id,
                "message": "Artifact already exists",
            }

        execution_id = payload.get("execution_id")
        artifact = await Artifact.create(
            name=payload["name"],
            type=payload.get("type") or "docker",
            registry_url=payload["registry_url"],
            image_digest=payload["image_digest"],
            image_tag=payload.get("image_tag"),
            version=payload.get("version"),
            size_bytes=payload.get("size_bytes"),
            build_duration_ms=payload.get("build_duration_ms"),
            execution_id=execution_id,
            metadata=payload.get("metadata") or {},
        )
        logger.info(
            "Artifact created", artifact_id=str(artifact.id), name=artifact.name
        )

        if execution_id:
            await self.audit_service.record(
                "artifact_created",
                "artifact",
                artifact.id,
                details={
                    "name": artifact.name,
                    "digest": artifact.image_digest,
                    "execution_id": str(execution_id),
                    "registry_url": artifact.registry_url,
                },
            )

        await TelemetrySignal.create(
            signal_type="artifact_push",
            execution_id=execution_id,
            summary=(
                f"Artifact pushed: {artifact.name}:{artifact.image_tag or 'latest'}"
            ),
            payload={
                "artifact_id": str(artifact.id),
                "digest": artifact.image_digest,
                "registry": artifact.registry_url,
                "size": artifact.size_bytes,
            },
            severity="info",
            created_at=datetime.now(timezone.utc),
        )

        return {
            "status": "created",
            "artifact_id": artifact.id,
            "message": "Artifact registered successfully",
        }

    async def list(
        self, execution_id: Optional[str] = None, limit: int = 50
    ) -> List[ArtifactResponse]:
        """List artifacts, newest first."""
        query = Artifact.all()
        if execution_id:
            query = query.filter(execution_id=execution_id)
        artifacts = await query.order_by("-created_at").limit(limit)
        return [ArtifactResponse.model_validate(a) for a in artifacts]

"""
Deployment environment configuration and locks.
"""

from typing import Any, Dict, List, Optional
from uuid import UUID

from ..database.schemas import EnvironmentConfigResponse, EnvironmentLockResponse
from ..errors import NotFoundError, ValidationFailedError
from ..logging import get_logger
from ..models import EnvironmentConfig, EnvironmentLock
from .audit_service import AuditService
from .notification_service import DEFAULT_TARGET, NotificationService

logger = get_logger(__name__)


class EnvironmentService:
    """Environment config service using Tortoise ORM directly."""

    def __init__(
        self,
        audit_service: Optional[AuditService] = None,
        notification_service: Optional[NotificationService] = None,
    ) -> None:
        self.audit_service = audit_service or AuditService()
        self.notification_service = notification_service or NotificationService()

    async def create(
        self,
        name: Optional[str],
        environment: Optional[str],
        variables: Optional[Dict[str, Any]] = None,
        secrets_ref: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> EnvironmentConfigResponse:
        """
        Create an active environment config.

        Raises:
            ValidationFailedError: If name or environment is missing
        """
        if not name or not environment:
            raise ValidationFailedError(
                "Missing required fields: name, environment",
                {"required": ["name", "environment"]},
            )

        config = await EnvironmentConfig.create(
            name=name,
            environment=environment,
            variables=variables or {},
            secrets_ref=secrets_ref,
            created_by=created_by,
            is_active=True,
        )
        logger.info("Environment created", environment_id=str(config.id), name=name)

        await self.audit_service.record(
            "create_environment",
            "environment_config",
            config.id,
            user_id=created_by,
            details={"name": name, "environment": environment},
        )
        await self.notification_service.notify(
            "environment_created",
            target=created_by or DEFAULT_TARGET,
            payload={
                "environment_id": str(config.id),
                "name": name,
                "environment": environment,
            },
        )
        return EnvironmentConfigResponse.model_validate(config)

    async def update(
        self,
        environment_id: UUID,
        variables: Optional[Dict[str, Any]] = None,
        secrets_ref: Optional[str] = None,
        is_active: Optional[bool] = None,
        updated_by: Optional[str] = None,
    ) -> EnvironmentConfigResponse:
        """
        Update an environment config. Arguments left as None are unchanged.

        Raises:
            NotFoundError: If the environment config does not exist
        """
        config = await EnvironmentConfig.get_or_none(id=environment_id)
        if config is None:
            raise NotFoundError("Environment", environment_id)

        previous = EnvironmentConfigResponse.model_validate(config).model_dump(
            mode="json"
        )
        updated: Dict[str, Any] = {}
        if variables is not None:
            updated["variables"] = variables
        if secrets_ref is not None:
            updated["secrets_ref"] = secrets_ref
        if is_active is not None:
            updated["is_active"] = is_active

        for field, value in updated.items():
            setattr(config, field, value)
        await config.save()
        logger.info(
            "Environment updated",
            environment_id=str(environment_id),
            fields=sorted(updated),
        )

        await self.audit_service.record(
            "update_environment",
            "environment_config",
            environment_id,
            user_id=updated_by,
            details={"previous": previous, "updated": updated},
        )
        return EnvironmentConfigResponse.model_validate(config)

    async def list(self, active_only: bool = False) -> List[EnvironmentConfigResponse]:
        query = EnvironmentConfig.all()
        if active_only:
            query = query.filter(is_active=True)
        configs = await query.order_by("environment", "name")
        return [EnvironmentConfigResponse.model_validate(c) for c in configs]

    async def set_lock(
        self,
        environment: str,
        is_locked: bool = True,
        requires_approval: bool = True,
        required_role: str = "admin",
        updated_by: Optional[str] = None,
    ) -> EnvironmentLockResponse:
        """Create or replace the lock of an environment."""
        lock, created = await EnvironmentLock.get_or_create(
            environment=environment,
            defaults={
                "is_locked": is_locked,
                "requires_approval": requires_approval,
                "required_role": required_role,
            },
        )
        if not created:
            lock.is_locked = is_locked
            lock.requires_approval = requires_approval
            lock.required_role = required_role
            await lock.save()

        logger.info(
            "Environment lock set",
            environment=environment,
            is_locked=is_locked,
            required_role=required_role,
        )
        await self.audit_service.record(
            "lock_environment" if is_locked else "unlock_environment",
            "environment_lock",
            lock.id,
            user_id=updated_by,
            details={
                "environment": environment,
                "requires_approval": requires_approval,
                "required_role": required_role,
            },
        )
        return EnvironmentLockResponse.model_validate(lock)

    async def list_locks(self) -> List[EnvironmentLockResponse]:
        locks = await EnvironmentLock.all().order_by("environment")
        return [EnvironmentLockResponse.model_validate(lock) for lock in locks]

"""
Tortoise signal handlers that publish every model write to the change feed.
"""

from typing import List, Optional, Type

from tortoise.backends.base.client import BaseDBAsyncClient
from tortoise.models import Model
from tortoise.signals import post_delete, post_save

from ..logging import get_logger
from ..models import tortoise_models
from .events import ChangeType, change_from_instance
from .feed import get_change_feed

logger = get_logger(__name__)

WATCHED_MODELS = [
    tortoise_models.Execution,
    tortoise_models.ExecutionNode,
    tortoise_models.ExecutionLog,
    tortoise_models.ExecutionStateEvent,
    tortoise_models.Checkpoint,
    tortoise_models.Deployment,
    tortoise_models.ApprovalRequest,
    tortoise_models.ApprovalVote,
    tortoise_models.AuditLog,
    tortoise_models.Artifact,
    tortoise_models.SbomEntry,
    tortoise_models.VulnerabilityScan,
    tortoise_models.TelemetrySignal,
    tortoise_models.CIEvidence,
    tortoise_models.TestResult,
    tortoise_models.NotificationEvent,
    tortoise_models.EnvironmentConfig,
    tortoise_models.EnvironmentLock,
    tortoise_models.BranchMapping,
]


async def _publish(instance: Model, change: ChangeType) -> None:
    event = change_from_instance(instance, change)
    try:
        await get_change_feed().publish(event)
    except Exception as e:
        # The row is already committed; subscribers catch up on the next read
        logger.error(
            "Failed to publish change event",
            table=event.table,
            change=change.value,
            error=str(e),
        )


@post_save(*WATCHED_MODELS)
async def publish_saved(
    sender: Type[Model],
    instance: Model,
    created: bool,
    using_db: Optional[BaseDBAsyncClient],
    update_fields: List[str],
) -> None:
    await _publish(instance, ChangeType.INSERT if created else ChangeType.UPDATE)


@post_delete(*WATCHED_MODELS)
async def publish_deleted(
    sender: Type[Model],
    instance: Model,
    using_db: Optional[BaseDBAsyncClient],
) -> None:
    await _publish(instance, ChangeType.DELETE)


def watched_tables() -> List[str]:
    """Tables whose writes reach the change feed."""
    return [model._meta.db_table for model in WATCHED_MODELS]

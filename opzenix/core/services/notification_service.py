"""
Notification events addressed to users or to the system.
"""

from typing import Any, Dict, List, Optional

from ..database.schemas import NotificationEventResponse
from ..errors import ValidationFailedError
from ..logging import get_logger
from ..models import NotificationEvent

logger = get_logger(__name__)

DEFAULT_TARGET = "system"


class NotificationService:
    """Creates one sent notification per target."""

    async def notify(
        self,
        type: Optional[str],
        target: Optional[str] = None,
        targets: Optional[List[str]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> List[NotificationEventResponse]:
        """
        Record a notification for each target.

        Args:
            type: Notification type, e.g. ``execution_cancelled``
            target: Single recipient
            targets: Several recipients, takes precedence over ``target``
            payload: Event details

        Returns:
            The created notifications

        Raises:
            ValidationFailedError: If no type is given
        """
        if not type:
            raise ValidationFailedError("type is required", {"required": ["type"]})

        recipients = targets or ([target] if target else [DEFAULT_TARGET])
        created = []
        for recipient in recipients:
            event = await NotificationEvent.create(
                type=type,
                target=recipient,
                payload=payload or {},
                status="sent",
            )
            created.append(NotificationEventResponse.model_validate(event))

        logger.info("Notifications created", type=type, count=len(created))
        return created

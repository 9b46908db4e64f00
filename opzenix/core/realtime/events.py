"""
Change events published for every write to a watched table.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field
from pydantic_core import to_jsonable_python
from tortoise.models import Model


class ChangeType(str, Enum):
    """Kinds of row changes."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    """A row change on one table."""

    table: str
    event: ChangeType
    record: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def record_id(self) -> Optional[str]:
        value = self.record.get("id")
        return str(value) if value is not None else None

    def to_message(self) -> Dict[str, Any]:
        """Wire format sent to subscribers."""
        return self.model_dump(mode="json")


def record_from_instance(instance: Model) -> Dict[str, Any]:
    """Column values of a model instance, converted to JSON types."""
    return {
        name: to_jsonable_python(getattr(instance, name, None))
        for name in instance._meta.fields_db_projection
    }


def change_from_instance(instance: Model, event: ChangeType) -> ChangeEvent:
    """Build the change event for a saved or deleted model instance."""
    return ChangeEvent(
        table=instance._meta.db_table,
        event=event,
        record=record_from_instance(instance),
    )

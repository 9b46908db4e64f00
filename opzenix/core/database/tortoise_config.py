"""
Tortoise ORM configuration for Opzenix.

Simple, single-file configuration for all database operations.
"""

from typing import Any, Dict, Optional

from tortoise import Tortoise

from ..config import get_config
from ..logging import get_logger

logger = get_logger(__name__)

MODEL_MODULES = ["opzenix.core.models.tortoise_models"]


def get_database_url() -> str:
    """Get database connection URL from configuration."""
    return get_config().database.url


def get_tortoise_config(db_url: Optional[str] = None) -> Dict[str, Any]:
    """Build the Tortoise config dict for the given or configured database."""
    return {
        "connections": {"default": db_url or get_database_url()},
        "apps": {
            "models": {
                "models": MODEL_MODULES,
                "default_connection": "default",
            },
        },
        "use_tz": True,
        "timezone": "UTC",
    }


async def init_tortoise(
    db_url: Optional[str] = None, generate_schemas: Optional[bool] = None
) -> None:
    """
    Initialize Tortoise ORM.

    Args:
        db_url: Connection URL, defaults to the configured database
        generate_schemas: Create missing tables, defaults to DB_GENERATE_SCHEMAS
    """
    # Register change-feed signal handlers before any model is written
    from ..realtime import signals  # noqa: F401

    config = get_tortoise_config(db_url)
    await Tortoise.init(config=config)

    if generate_schemas is None:
        generate_schemas = get_config().database.generate_schemas
    if generate_schemas:
        await Tortoise.generate_schemas(safe=True)

    logger.info(
        "Tortoise ORM initialized",
        generate_schemas=generate_schemas,
        backend=config["connections"]["default"].split(":", 1)[0],
    )


async def close_tortoise() -> None:
    """Close Tortoise ORM connections."""
    await Tortoise.close_connections()
    logger.info("Tortoise ORM connections closed")

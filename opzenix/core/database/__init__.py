"""
Database package for Opzenix.

This package provides Tortoise ORM setup and the Pydantic schemas used to
serialize model instances.
"""

from .tortoise_config import (
    close_tortoise,
    get_database_url,
    get_tortoise_config,
    init_tortoise,
)

__all__ = [
    "close_tortoise",
    "get_database_url",
    "get_tortoise_config",
    "init_tortoise",
]

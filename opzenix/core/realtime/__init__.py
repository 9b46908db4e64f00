"""
Realtime change feed for Opzenix.

Model writes are turned into change events by Tortoise signal handlers and
fanned out to dashboard subscribers.
"""

from .events import ChangeEvent, ChangeType
from .feed import (
    ChangeFeed,
    MemoryChangeFeed,
    RedisChangeFeed,
    Subscription,
    create_change_feed,
    get_change_feed,
    set_change_feed,
)

__all__ = [
    "ChangeEvent",
    "ChangeType",
    "ChangeFeed",
    "MemoryChangeFeed",
    "RedisChangeFeed",
    "Subscription",
    "create_change_feed",
    "get_change_feed",
    "set_change_feed",
]

"""
Tests for the realtime change feed and the model signal handlers.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from opzenix.core.config import RedisConfig
from opzenix.core.models import Execution
from opzenix.core.realtime import (
    ChangeEvent,
    ChangeType,
    MemoryChangeFeed,
    RedisChangeFeed,
)
from opzenix.core.realtime.signals import watched_tables


def make_event(table: str = "executions", **record) -> ChangeEvent:
    return ChangeEvent(table=table, event=ChangeType.UPDATE, record=record)


class TestMemoryChangeFeed:
    """Test in-process fan-out."""

    async def test_subscriber_receives_matching_tables(self):
        feed = MemoryChangeFeed()
        subscription = await feed.subscribe(["executions"])

        await feed.publish(make_event("deployments", id="d1"))
        await feed.publish(make_event("executions", id="e1"))

        event = await subscription.get(timeout=1)
        assert event.table == "executions"
        assert event.record_id == "e1"
        assert subscription.queue.empty()

    async def test_empty_table_set_receives_everything(self):
        feed = MemoryChangeFeed()
        subscription = await feed.subscribe()

        await feed.publish(make_event("audit_logs", id=1))

        event = await subscription.get(timeout=1)
        assert event.table == "audit_logs"

    async def test_set_tables(self):
        feed = MemoryChangeFeed()
        subscription = await feed.subscribe(["executions"])
        await subscription.set_tables(["deployments"])

        await feed.publish(make_event("executions"))
        await feed.publish(make_event("deployments", id="d1"))

        event = await subscription.get(timeout=1)
        assert event.table == "deployments"

    async def test_full_queue_drops_oldest(self):
        feed = MemoryChangeFeed(queue_size=2)
        subscription = await feed.subscribe()

        for index in range(3):
            await feed.publish(make_event(id=index))

        assert subscription.dropped == 1
        assert (await subscription.get()).record["id"] == 1
        assert (await subscription.get()).record["id"] == 2

    async def test_close_ends_iteration(self):
        feed = MemoryChangeFeed()
        subscription = await feed.subscribe()
        await feed.publish(make_event(id="e1"))

        async def collect():
            return [event.record_id async for event in subscription]

        collector = asyncio.create_task(collect())
        await asyncio.sleep(0)
        await subscription.close()

        assert await asyncio.wait_for(collector, 1) == ["e1"]
        assert subscription not in feed.subscriptions

    async def test_stop_closes_subscriptions(self):
        feed = MemoryChangeFeed()
        subscription = await feed.subscribe()

        await feed.stop()

        assert subscription.closed
        assert await subscription.get(timeout=1) is None

    async def test_message_format(self):
        message = make_event(id="e1", status="running").to_message()

        assert message["table"] == "executions"
        assert message["event"] == "UPDATE"
        assert message["record"] == {"id": "e1", "status": "running"}
        assert isinstance(message["timestamp"], str)


class TestRedisChangeFeed:
    """Test Redis publishing without a server."""

    async def test_publish_uses_table_channel(self):
        client = MagicMock()
        client.publish = AsyncMock()
        feed = RedisChangeFeed(RedisConfig(), channel_prefix="opz:", client=client)

        event = make_event("deployments", id="d1")
        await feed.publish(event)

        channel, data = client.publish.await_args.args
        assert channel == "opz:deployments"
        assert ChangeEvent.model_validate_json(data).record_id == "d1"

    def test_client_required_before_start(self):
        feed = RedisChangeFeed(RedisConfig())
        with pytest.raises(RuntimeError):
            feed.client


class TestModelSignals:
    """Test that model writes reach the change feed."""

    def test_watched_tables(self):
        tables = watched_tables()
        assert "executions" in tables
        assert "approval_requests" in tables
        assert "branch_mappings" in tables

    async def test_insert_update_delete_published(self, db, change_feed):
        subscription = await change_feed.subscribe(["executions"])

        execution = await Execution.create(name="signals")
        execution.status = "running"
        await execution.save()
        await execution.delete()

        events = [await subscription.get(timeout=1) for _ in range(3)]
        assert [e.event for e in events] == [
            ChangeType.INSERT,
            ChangeType.UPDATE,
            ChangeType.DELETE,
        ]
        assert events[0].record["id"] == str(execution.id)
        assert events[1].record["status"] == "running"

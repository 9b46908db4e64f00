"""
Pytest configuration and fixtures for Opzenix tests.

Unit tests run against an in-memory SQLite database and the in-process
change feed, so no Docker services are needed.
"""

import random

import pytest

from opzenix.core.config import (
    DatabaseConfig,
    ExecutionConfig,
    OpzenixConfig,
    RealtimeConfig,
    WebhookConfig,
    set_config,
)
from opzenix.core.database import close_tortoise, init_tortoise
from opzenix.core.executions.runner import PipelineRunner, set_runner
from opzenix.core.realtime import MemoryChangeFeed, set_change_feed

TEST_DB_URL = "sqlite://:memory:"


def make_test_config(**overrides) -> OpzenixConfig:
    """Configuration used by every test unless a test overrides it."""
    settings = {
        "environment": "testing",
        "database": DatabaseConfig(dsn=TEST_DB_URL, generate_schemas=True),
        "realtime": RealtimeConfig(backend="memory"),
        "webhooks": WebhookConfig(artifact_secret=None, github_secret=None),
        "execution": ExecutionConfig(
            time_scale=0,
            simulate_failures=False,
            rollback_delay_seconds=0,
            random_seed=42,
        ),
    }
    settings.update(overrides)
    return OpzenixConfig(**settings)


@pytest.fixture(autouse=True)
def test_config() -> OpzenixConfig:
    """Install the test configuration as the global config."""
    config = make_test_config()
    set_config(config)
    return config


@pytest.fixture
def change_feed():
    """In-process change feed installed as the global feed."""
    feed = MemoryChangeFeed(queue_size=100)
    set_change_feed(feed)
    yield feed
    set_change_feed(None)


@pytest.fixture
async def db(change_feed):
    """Fresh in-memory database with all tables created."""
    await init_tortoise(TEST_DB_URL, generate_schemas=True)
    yield
    await close_tortoise()


@pytest.fixture
async def runner(db):
    """Pipeline runner without delays or simulated failures."""
    pipeline_runner = PipelineRunner(
        time_scale=0, simulate_failures=False, rng=random.Random(7)
    )
    set_runner(pipeline_runner)
    yield pipeline_runner
    await pipeline_runner.shutdown()
    set_runner(None)


# Test markers
def pytest_collection_modifyitems(config, items):
    """Add markers to tests based on their location."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "api" in str(item.fspath):
            item.add_marker(pytest.mark.api)
        elif "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

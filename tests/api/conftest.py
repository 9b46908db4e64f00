"""
Fixtures for API tests.

Every test gets a fresh application whose lifespan brings up an in-memory
database, the in-process change feed and a pipeline runner without delays.
"""

import time
from typing import Any, Callable, Dict

import pytest
from fastapi.testclient import TestClient

from opzenix.api.app import create_app


@pytest.fixture
def client(test_config):
    """Test client with the application lifespan running."""
    with TestClient(create_app()) as test_client:
        yield test_client


@pytest.fixture
def poll(client) -> Callable[..., Dict[str, Any]]:
    """Poll a GET endpoint until ``predicate`` holds for its JSON body."""

    def _poll(
        url: str, predicate: Callable[[Any], bool], timeout: float = 5.0
    ) -> Any:
        deadline = time.monotonic() + timeout
        while True:
            body = client.get(url).json()
            if predicate(body):
                return body
            if time.monotonic() > deadline:
                raise AssertionError(f"Timed out waiting on {url}: {body}")
            time.sleep(0.02)

    return _poll

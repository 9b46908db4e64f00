"""Tests for the logging helpers."""

import pytest
from structlog.testing import capture_logs

from opzenix.core.logging import get_logger, log_execution_event, log_node_transition


@pytest.mark.unit
class TestLogging:
    """Test logging functionality."""

    def test_get_logger(self) -> None:
        """Test that get_logger returns a structlog logger."""
        logger = get_logger("test_module")
        assert hasattr(logger, "info")
        assert hasattr(logger, "error")
        assert hasattr(logger, "debug")

    def test_execution_event(self) -> None:
        """Test execution lifecycle logging."""
        with capture_logs() as logs:
            log_execution_event("exec-1", "paused", node_id="approval")

        assert len(logs) == 1
        entry = logs[0]
        assert entry["event"] == "Execution event"
        assert entry["execution_id"] == "exec-1"
        assert entry["execution_event"] == "paused"
        assert entry["node_id"] == "approval"
        assert entry["event_type"] == "execution_lifecycle"
        assert entry["log_level"] == "info"

    def test_execution_event_level(self) -> None:
        with capture_logs() as logs:
            log_execution_event("exec-1", "cancelled", level="warning")

        assert logs[0]["log_level"] == "warning"

    def test_node_transition_failure_logged_as_error(self) -> None:
        """Test that a failed node is logged at error level."""
        with capture_logs() as logs:
            log_node_transition("exec-1", "build", "running", "success")
            log_node_transition("exec-1", "test", "running", "failed")

        assert [entry["log_level"] for entry in logs] == ["info", "error"]
        assert logs[1]["node_id"] == "test"
        assert logs[1]["event_type"] == "node_transition"

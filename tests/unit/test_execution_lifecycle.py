"""
Tests for execution, node, deployment and approval state machines.
"""

import pytest

from opzenix.core.errors import InvalidTransitionError
from opzenix.core.executions.lifecycle import (
    ApprovalStatus,
    DeploymentStatus,
    ExecutionStatus,
    NodeStatus,
    approval_machine,
    deployment_machine,
    execution_machine,
    node_machine,
)


class TestExecutionStateMachine:
    """Test execution status transitions."""

    def test_status_values(self):
        """Test that all expected execution states are defined."""
        assert {s.value for s in ExecutionStatus} == {
            "idle",
            "running",
            "paused",
            "success",
            "failed",
        }

    @pytest.mark.parametrize(
        "from_state,to_state",
        [
            ("idle", "running"),
            ("idle", "paused"),
            ("idle", "failed"),
            ("running", "paused"),
            ("running", "success"),
            ("running", "failed"),
            ("paused", "running"),
            ("paused", "idle"),
            ("paused", "failed"),
        ],
    )
    def test_allowed_transitions(self, from_state, to_state):
        assert execution_machine.can_transition(from_state, to_state)

    @pytest.mark.parametrize(
        "from_state,to_state",
        [
            ("success", "running"),
            ("failed", "running"),
            ("failed", "idle"),
            ("idle", "success"),
            ("running", "idle"),
        ],
    )
    def test_rejected_transitions(self, from_state, to_state):
        assert not execution_machine.can_transition(from_state, to_state)

    def test_terminal_states(self):
        """Test that success and failed have no way out."""
        assert execution_machine.is_terminal(ExecutionStatus.SUCCESS)
        assert execution_machine.is_terminal("failed")
        assert not execution_machine.is_terminal(ExecutionStatus.PAUSED)

    def test_require_transition_returns_target(self):
        result = execution_machine.require_transition("running", "success")
        assert result is ExecutionStatus.SUCCESS

    def test_require_transition_raises(self):
        """Test that a forbidden move raises with both states in context."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            execution_machine.require_transition("success", "running")

        error = exc_info.value
        assert error.status_code == 409
        assert error.context == {
            "kind": "execution",
            "from_state": "success",
            "to_state": "running",
        }

    def test_unknown_state_raises_value_error(self):
        with pytest.raises(ValueError):
            execution_machine.can_transition("bogus", "running")


class TestNodeStateMachine:
    """Test node status transitions."""

    def test_skipped_node_goes_straight_to_success(self):
        assert node_machine.can_transition(NodeStatus.IDLE, NodeStatus.SUCCESS)

    def test_paused_node_can_resume(self):
        assert node_machine.can_transition(NodeStatus.PAUSED, NodeStatus.RUNNING)
        assert node_machine.can_transition(NodeStatus.PAUSED, NodeStatus.SUCCESS)

    def test_running_node_cannot_pause(self):
        assert not node_machine.can_transition(NodeStatus.RUNNING, NodeStatus.PAUSED)

    def test_valid_transitions(self):
        assert node_machine.valid_transitions("running") == {
            NodeStatus.SUCCESS,
            NodeStatus.FAILED,
        }


class TestDeploymentStateMachine:
    """Test deployment status transitions."""

    def test_rollback_only_from_finished(self):
        assert deployment_machine.can_transition("success", "rolled_back")
        assert deployment_machine.can_transition("failed", "rolled_back")
        assert not deployment_machine.can_transition("running", "rolled_back")

    def test_rolled_back_is_terminal(self):
        assert deployment_machine.is_terminal(DeploymentStatus.ROLLED_BACK)


class TestApprovalStateMachine:
    """Test approval request status transitions."""

    def test_pending_resolves_once(self):
        assert approval_machine.can_transition("pending", "approved")
        assert approval_machine.can_transition("pending", "rejected")
        assert approval_machine.is_terminal(ApprovalStatus.APPROVED)
        assert not approval_machine.can_transition("approved", "rejected")

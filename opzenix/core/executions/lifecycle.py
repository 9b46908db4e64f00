"""
Execution lifecycle and state management for Opzenix.

This module defines the status vocabularies for executions, nodes,
deployments and approvals together with the transitions allowed between them.
"""

from enum import Enum
from typing import Dict, Generic, Set, Type, TypeVar, Union

from ..errors import InvalidTransitionError


class ExecutionStatus(str, Enum):
    """Pipeline execution states."""

    IDLE = "idle"  # Created, not yet processing
    RUNNING = "running"  # Nodes are being processed
    PAUSED = "paused"  # Waiting on an approval gate
    SUCCESS = "success"  # All nodes completed
    FAILED = "failed"  # A node failed, or cancelled/blocked


class NodeStatus(str, Enum):
    """Execution node states."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    SUCCESS = "success"
    FAILED = "failed"


class DeploymentStatus(str, Enum):
    """Deployment states."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class ApprovalStatus(str, Enum):
    """Approval request states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class GovernanceStatus(str, Enum):
    """Branch/environment governance outcome for an execution."""

    ALLOWED = "allowed"
    AWAITING_APPROVAL = "awaiting_approval"
    BLOCKED = "blocked"


S = TypeVar("S", bound=Enum)


class StateMachine(Generic[S]):
    """Transition table for one status vocabulary."""

    def __init__(self, kind: str, states: Type[S], transitions: Dict[S, Set[S]]):
        self.kind = kind
        self.states = states
        self.transitions = transitions

    def _coerce(self, state: Union[S, str]) -> S:
        return state if isinstance(state, self.states) else self.states(state)

    def can_transition(
        self, from_state: Union[S, str], to_state: Union[S, str]
    ) -> bool:
        """Check if moving from one state to another is allowed."""
        source = self._coerce(from_state)
        target = self._coerce(to_state)
        return target in self.transitions.get(source, set())

    def require_transition(
        self, from_state: Union[S, str], to_state: Union[S, str]
    ) -> S:
        """Return the target state or raise when the move is not allowed."""
        if not self.can_transition(from_state, to_state):
            raise InvalidTransitionError(
                self.kind,
                self._coerce(from_state).value,
                self._coerce(to_state).value,
            )
        return self._coerce(to_state)

    def is_terminal(self, state: Union[S, str]) -> bool:
        """A terminal state has no outgoing transitions."""
        return not self.transitions.get(self._coerce(state))

    def valid_transitions(self, state: Union[S, str]) -> Set[S]:
        """Get all valid transitions from a state."""
        return set(self.transitions.get(self._coerce(state), set()))


EXECUTION_TRANSITIONS: Dict[ExecutionStatus, Set[ExecutionStatus]] = {
    ExecutionStatus.IDLE: {
        ExecutionStatus.RUNNING,
        ExecutionStatus.PAUSED,
        ExecutionStatus.FAILED,
    },
    ExecutionStatus.RUNNING: {
        ExecutionStatus.PAUSED,
        ExecutionStatus.SUCCESS,
        ExecutionStatus.FAILED,
    },
    # paused -> idle releases a governance gate before CI picks the run up
    ExecutionStatus.PAUSED: {
        ExecutionStatus.IDLE,
        ExecutionStatus.RUNNING,
        ExecutionStatus.FAILED,
    },
    ExecutionStatus.SUCCESS: set(),
    ExecutionStatus.FAILED: set(),
}

NODE_TRANSITIONS: Dict[NodeStatus, Set[NodeStatus]] = {
    # idle -> success covers nodes skipped when resuming from a checkpoint
    NodeStatus.IDLE: {
        NodeStatus.RUNNING,
        NodeStatus.PAUSED,
        NodeStatus.SUCCESS,
        NodeStatus.FAILED,
    },
    NodeStatus.RUNNING: {NodeStatus.SUCCESS, NodeStatus.FAILED},
    NodeStatus.PAUSED: {NodeStatus.RUNNING, NodeStatus.SUCCESS, NodeStatus.FAILED},
    NodeStatus.SUCCESS: set(),
    NodeStatus.FAILED: set(),
}

DEPLOYMENT_TRANSITIONS: Dict[DeploymentStatus, Set[DeploymentStatus]] = {
    DeploymentStatus.PENDING: {DeploymentStatus.RUNNING, DeploymentStatus.FAILED},
    DeploymentStatus.RUNNING: {DeploymentStatus.SUCCESS, DeploymentStatus.FAILED},
    DeploymentStatus.SUCCESS: {DeploymentStatus.ROLLED_BACK},
    DeploymentStatus.FAILED: {DeploymentStatus.ROLLED_BACK},
    DeploymentStatus.ROLLED_BACK: set(),
}

APPROVAL_TRANSITIONS: Dict[ApprovalStatus, Set[ApprovalStatus]] = {
    ApprovalStatus.PENDING: {ApprovalStatus.APPROVED, ApprovalStatus.REJECTED},
    ApprovalStatus.APPROVED: set(),
    ApprovalStatus.REJECTED: set(),
}

execution_machine = StateMachine("execution", ExecutionStatus, EXECUTION_TRANSITIONS)
node_machine = StateMachine("node", NodeStatus, NODE_TRANSITIONS)
deployment_machine = StateMachine(
    "deployment", DeploymentStatus, DEPLOYMENT_TRANSITIONS
)
approval_machine = StateMachine("approval", ApprovalStatus, APPROVAL_TRANSITIONS)

TERMINAL_NODE_STATUSES = {NodeStatus.SUCCESS, NodeStatus.FAILED}

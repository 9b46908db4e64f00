"""
Execution state machine and pipeline graph handling for Opzenix.
"""

from .graph import (
    PipelineEdge,
    PipelineNode,
    edges_within,
    execution_order,
    split_at_checkpoint,
)
from .lifecycle import (
    ApprovalStatus,
    DeploymentStatus,
    ExecutionStatus,
    GovernanceStatus,
    NodeStatus,
    StateMachine,
)

__all__ = [
    "PipelineEdge",
    "PipelineNode",
    "edges_within",
    "execution_order",
    "split_at_checkpoint",
    "ApprovalStatus",
    "DeploymentStatus",
    "ExecutionStatus",
    "GovernanceStatus",
    "NodeStatus",
    "StateMachine",
]

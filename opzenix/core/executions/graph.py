"""
Pipeline graph utilities.

Pipelines arrive as the node/edge lists drawn in the flow editor. This module
orders them for processing and splits them when resuming from a checkpoint.
"""

from collections import deque
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field


class NodePosition(BaseModel):
    """Canvas position of a node."""

    x: float = 0
    y: float = 0


class PipelineNodeData(BaseModel):
    """Display and behaviour data attached to a node."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    label: str
    stage_type: str = Field(alias="stageType")
    status: str = "idle"
    description: Optional[str] = None


class PipelineNode(BaseModel):
    """A stage in a pipeline."""

    id: str
    type: str = "stage"
    data: PipelineNodeData
    position: NodePosition = Field(default_factory=NodePosition)

    @property
    def label(self) -> str:
        return self.data.label

    @property
    def stage_type(self) -> str:
        return self.data.stage_type


class PipelineEdge(BaseModel):
    """A dependency between two stages."""

    id: str
    source: str
    target: str


def execution_order(
    nodes: Sequence[PipelineNode], edges: Sequence[PipelineEdge]
) -> List[str]:
    """
    Topologically sort pipeline nodes.

    Ties are broken by declaration order. Edges that reference unknown nodes
    are ignored and nodes caught in a cycle are left out of the result.

    Args:
        nodes: Pipeline nodes in declaration order
        edges: Directed edges between nodes

    Returns:
        Node ids in processing order
    """
    in_degree: Dict[str, int] = {node.id: 0 for node in nodes}
    adjacency: Dict[str, List[str]] = {node.id: [] for node in nodes}

    for edge in edges:
        if edge.source not in adjacency or edge.target not in in_degree:
            continue
        adjacency[edge.source].append(edge.target)
        in_degree[edge.target] += 1

    queue = deque(node_id for node_id, degree in in_degree.items() if degree == 0)
    order: List[str] = []

    while queue:
        current = queue.popleft()
        order.append(current)
        for neighbor in adjacency[current]:
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                queue.append(neighbor)

    return order


def split_at_checkpoint(
    nodes: Sequence[Dict[str, Any]], checkpoint_node_id: str
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """
    Split stored nodes into the ones a resumed run skips and the ones it runs.

    Nodes declared before the checkpoint node are skipped; the checkpoint node
    and everything after it run again. When the checkpoint node is not part of
    the pipeline nothing is skipped.
    """
    ids = [node.get("id") for node in nodes]
    if checkpoint_node_id not in ids:
        return [], list(nodes)

    index = ids.index(checkpoint_node_id)
    return list(nodes[:index]), list(nodes[index:])


def edges_within(
    edges: Sequence[Dict[str, Any]], nodes: Sequence[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    """Keep edges whose source and target are both in ``nodes``."""
    node_ids: Set[str] = {node.get("id") for node in nodes}
    return [
        edge
        for edge in edges
        if edge.get("source") in node_ids and edge.get("target") in node_ids
    ]

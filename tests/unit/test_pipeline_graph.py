"""Tests for pipeline graph ordering and checkpoint splitting."""

from opzenix.core.executions.graph import (
    PipelineEdge,
    PipelineNode,
    edges_within,
    execution_order,
    split_at_checkpoint,
)


def make_node(node_id: str, stage_type: str = "build") -> PipelineNode:
    return PipelineNode.model_validate(
        {"id": node_id, "data": {"label": node_id.title(), "stageType": stage_type}}
    )


def make_edge(source: str, target: str) -> PipelineEdge:
    return PipelineEdge(id=f"{source}-{target}", source=source, target=target)


class TestExecutionOrder:
    """Test topological ordering of pipeline nodes."""

    def test_linear_pipeline(self):
        nodes = [make_node("deploy"), make_node("build"), make_node("source")]
        edges = [make_edge("source", "build"), make_edge("build", "deploy")]

        assert execution_order(nodes, edges) == ["source", "build", "deploy"]

    def test_ties_follow_declaration_order(self):
        nodes = [make_node("a"), make_node("b"), make_node("c"), make_node("d")]
        edges = [make_edge("a", "c"), make_edge("b", "c"), make_edge("c", "d")]

        assert execution_order(nodes, edges) == ["a", "b", "c", "d"]

    def test_no_edges_keeps_declaration_order(self):
        nodes = [make_node("x"), make_node("y")]
        assert execution_order(nodes, []) == ["x", "y"]

    def test_edges_to_unknown_nodes_are_ignored(self):
        nodes = [make_node("a"), make_node("b")]
        edges = [make_edge("a", "b"), make_edge("a", "ghost"), make_edge("ghost", "b")]

        assert execution_order(nodes, edges) == ["a", "b"]

    def test_cycle_nodes_are_left_out(self):
        nodes = [make_node("start"), make_node("a"), make_node("b")]
        edges = [make_edge("a", "b"), make_edge("b", "a")]

        assert execution_order(nodes, edges) == ["start"]


class TestPipelineNode:
    """Test node parsing from the flow editor format."""

    def test_stage_type_alias(self):
        node = make_node("build", "test")
        assert node.stage_type == "test"
        assert node.label == "Build"
        assert node.model_dump(by_alias=True)["data"]["stageType"] == "test"

    def test_extra_data_is_kept(self):
        node = PipelineNode.model_validate(
            {
                "id": "deploy",
                "data": {"label": "Deploy", "stageType": "deploy", "region": "eu"},
            }
        )
        assert node.model_dump(by_alias=True)["data"]["region"] == "eu"


class TestCheckpointSplit:
    """Test splitting stored nodes at a checkpoint."""

    nodes = [{"id": "source"}, {"id": "build"}, {"id": "test"}, {"id": "deploy"}]

    def test_split_at_middle_node(self):
        skipped, to_execute = split_at_checkpoint(self.nodes, "test")

        assert [n["id"] for n in skipped] == ["source", "build"]
        assert [n["id"] for n in to_execute] == ["test", "deploy"]

    def test_unknown_checkpoint_runs_everything(self):
        skipped, to_execute = split_at_checkpoint(self.nodes, "resume-start")

        assert skipped == []
        assert len(to_execute) == 4

    def test_edges_within(self):
        edges = [
            {"id": "e1", "source": "source", "target": "build"},
            {"id": "e2", "source": "test", "target": "deploy"},
        ]
        kept = edges_within(edges, [{"id": "test"}, {"id": "deploy"}])

        assert [e["id"] for e in kept] == ["e2"]

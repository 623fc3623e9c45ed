"""
Tests for pre-run graph validation and editor payload parsing.
"""

import sys
from pathlib import Path

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from nodeflow.models.graph import AiNode, ResultNode, WorkflowGraph
from nodeflow.services.graph_validator import find_cyclic_nodes, validate_graph


def graph(nodes, edges=()) -> WorkflowGraph:
    return WorkflowGraph.model_validate({
        "nodes": nodes,
        "edges": [{"source": s, "target": t} for s, t in edges],
    })


def ai(node_id, prompt="Do it", provider="openai"):
    return {"id": node_id, "kind": "ai", "data": {"provider": provider, "prompt_template": prompt}}


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------


class TestEditorPayload:
    def test_editor_field_names_are_accepted(self):
        g = WorkflowGraph.model_validate({
            "nodes": [
                {
                    "id": "a",
                    "type": "aiNode",
                    "data": {"model": "gemini", "subModel": "gemini-1.5-pro", "prompt": "Hi", "maxTokens": 99},
                },
                {"id": "r", "type": "resultNode", "data": {"label": "Out"}},
            ],
            "edges": [{"id": "e1", "sourceId": "a", "targetId": "r"}],
        })

        node_a, node_r = g.nodes
        assert isinstance(node_a, AiNode)
        assert node_a.data.provider == "gemini"
        assert node_a.data.model_variant == "gemini-1.5-pro"
        assert node_a.data.prompt_template == "Hi"
        assert node_a.data.max_tokens == 99
        assert isinstance(node_r, ResultNode)
        assert g.edges[0].source == "a"
        assert g.get_node("r") is node_r
        assert g.get_node("missing") is None


# ---------------------------------------------------------------------------
# validate_graph
# ---------------------------------------------------------------------------


class TestValidateGraph:
    def test_valid_graph(self):
        result = validate_graph(graph(
            [ai("a"), ai("b"), {"id": "r", "kind": "result"}],
            [("a", "b"), ("b", "r")],
        ))
        assert result.success is True
        assert result.diagnostics == []
        assert result.execution_order == ["a", "b", "r"]
        assert result.cyclic_nodes == []

    def test_duplicate_ids_are_errors(self):
        result = validate_graph(graph([ai("a"), ai("a")]))
        assert result.success is False
        assert result.diagnostics[0].level == "error"
        assert "Duplicate node ID 'a'" in result.diagnostics[0].message
        assert result.execution_order == []

    def test_unknown_edge_endpoint_is_an_error(self):
        result = validate_graph(graph([ai("a")], [("a", "ghost")]))
        assert result.success is False
        assert "unknown target node 'ghost'" in result.diagnostics[0].message

    def test_ai_node_warnings_do_not_block(self):
        result = validate_graph(graph([
            ai("a", provider="mystery"),
            ai("b", prompt="  "),
            ai("speech", prompt=None, provider="elevenlabs"),
        ]))
        assert result.success is True
        messages = {(d.node_id, d.message) for d in result.diagnostics}
        assert ("a", "Provider 'mystery' is not supported for execution") in messages
        assert ("b", "No prompt configured") in messages
        assert not any(d.node_id == "speech" for d in result.diagnostics)

    def test_cycle_is_reported_as_warning(self):
        result = validate_graph(graph(
            [ai("start"), ai("x"), ai("y"), ai("after")],
            [("start", "x"), ("x", "y"), ("y", "x"), ("y", "after")],
        ))
        assert result.success is True
        assert result.execution_order == ["start"]
        assert result.cyclic_nodes == ["x", "y"]
        assert all(d.level == "warning" for d in result.diagnostics)


class TestFindCyclicNodes:
    def test_downstream_of_cycle_is_not_cyclic(self):
        g = graph(
            [ai("a"), ai("b"), ai("c"), ai("d")],
            [("a", "b"), ("b", "a"), ("b", "c"), ("c", "d")],
        )
        assert find_cyclic_nodes(g) == ["a", "b"]

    def test_self_loop(self):
        assert find_cyclic_nodes(graph([ai("a"), ai("b")], [("a", "a")])) == ["a"]

    def test_acyclic(self):
        assert find_cyclic_nodes(graph([ai("a"), ai("b")], [("a", "b")])) == []

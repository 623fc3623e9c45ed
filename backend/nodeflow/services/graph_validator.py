"""
Graph validator: checks a submitted graph before it is run.

The scheduler tolerates most defects (unknown edge endpoints are ignored,
cycle members simply never run), so this module is where they are surfaced
to the editor as diagnostics.
"""

from __future__ import annotations

from collections import Counter, deque
from typing import Literal

from pydantic import BaseModel, Field

from nodeflow.models.graph import AiNode, WorkflowGraph
from nodeflow.models.provider_registry import is_speech_provider, resolve_provider
from nodeflow.services.workflow_executor import build_dependency_graph, topological_order


class GraphDiagnostic(BaseModel):
    level: Literal["error", "warning"]
    message: str
    node_id: str | None = None


class ValidationResult(BaseModel):
    success: bool
    diagnostics: list[GraphDiagnostic] = Field(default_factory=list)
    execution_order: list[str] = Field(default_factory=list)
    cyclic_nodes: list[str] = Field(default_factory=list)


def validate_graph(graph: WorkflowGraph) -> ValidationResult:
    """
    Validate a graph. `success` is False only when an error-level diagnostic
    was produced; warnings never block execution.
    """
    diagnostics: list[GraphDiagnostic] = []

    counts = Counter(node.id for node in graph.nodes)
    for node_id, count in counts.items():
        if count > 1:
            diagnostics.append(GraphDiagnostic(
                level="error",
                message=f"Duplicate node ID '{node_id}'",
                node_id=node_id,
            ))
    if any(d.level == "error" for d in diagnostics):
        return ValidationResult(success=False, diagnostics=diagnostics)

    for edge in graph.edges:
        for endpoint, role in ((edge.source, "source"), (edge.target, "target")):
            if endpoint not in counts:
                diagnostics.append(GraphDiagnostic(
                    level="error",
                    message=f"Edge {edge.id or f'{edge.source}->{edge.target}'} references unknown {role} node '{endpoint}'",
                ))

    for node in graph.nodes:
        if isinstance(node, AiNode):
            diagnostics.extend(_check_ai_node(node))

    order = topological_order(graph.nodes, graph.edges)
    cyclic = find_cyclic_nodes(graph)
    for node_id in cyclic:
        diagnostics.append(GraphDiagnostic(
            level="warning",
            message=f"Node '{node_id}' is part of a cycle and will not run",
            node_id=node_id,
        ))

    return ValidationResult(
        success=not any(d.level == "error" for d in diagnostics),
        diagnostics=diagnostics,
        execution_order=order,
        cyclic_nodes=cyclic,
    )


def _check_ai_node(node: AiNode) -> list[GraphDiagnostic]:
    found: list[GraphDiagnostic] = []
    if resolve_provider(node.data.provider) is None:
        found.append(GraphDiagnostic(
            level="warning",
            message=f"Provider '{node.data.provider}' is not supported for execution",
            node_id=node.id,
        ))
    if not is_speech_provider(node.data.provider) and not (node.data.prompt_template or "").strip():
        found.append(GraphDiagnostic(
            level="warning",
            message="No prompt configured",
            node_id=node.id,
        ))
    return found


def find_cyclic_nodes(graph: WorkflowGraph) -> list[str]:
    """
    Nodes lying on (or between) cycles, in node-list order.

    Kahn's peel removes everything reachable without passing through a
    cycle; peeling sinks from what is left then drops nodes that merely sit
    downstream of one.
    """
    in_degree, adjacency = build_dependency_graph(graph.nodes, graph.edges)
    remaining = set(in_degree)

    queue = deque(nid for nid, degree in in_degree.items() if degree == 0)
    while queue:
        node_id = queue.popleft()
        remaining.discard(node_id)
        for downstream in adjacency[node_id]:
            in_degree[downstream] -= 1
            if in_degree[downstream] == 0:
                queue.append(downstream)

    out_degree = {nid: sum(1 for t in adjacency[nid] if t in remaining) for nid in remaining}
    predecessors: dict[str, list[str]] = {nid: [] for nid in remaining}
    for source in remaining:
        for target in adjacency[source]:
            if target in remaining:
                predecessors[target].append(source)

    sinks = deque(nid for nid, degree in out_degree.items() if degree == 0)
    while sinks:
        node_id = sinks.popleft()
        remaining.discard(node_id)
        for upstream in predecessors[node_id]:
            out_degree[upstream] -= 1
            if out_degree[upstream] == 0:
                sinks.append(upstream)

    return [node.id for node in graph.nodes if node.id in remaining]

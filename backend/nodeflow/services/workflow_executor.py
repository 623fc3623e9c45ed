"""
Workflow execution engine.

Takes the node/edge lists submitted by the canvas, walks them in topological
order (Kahn's algorithm over a FIFO queue), composes each AI node's prompt
from its upstream outputs, dispatches it to its provider and records the
result in the ExecutionContext.

Key concepts:
- Serial execution: exactly one node is in flight at a time, even when
  several are ready. Ready nodes run in discovery order.
- Result nodes are passthrough sinks: their output is the joined upstream text.
- Node failures never escape a run. A failed node gets status "error" and the
  display output "Error: <msg>"; nothing is written to context.outputs.
- Nodes on a cycle never become ready; they stay pending and are reported in
  `unexecuted_nodes`.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Sequence

from nodeflow.models.execution import (
    NodeExecutionResult,
    NodeOutput,
    WorkflowExecutionResult,
)
from nodeflow.models.graph import AiNode, NodeStatus, ResultNode, WorkflowEdge
from nodeflow.providers.dispatch import dispatch
from nodeflow.providers.errors import ProviderError
from nodeflow.services.execution_context import ExecutionContext, call_observer
from nodeflow.services.prompt_compositor import compose, join_upstream

logger = logging.getLogger(__name__)

GraphNode = AiNode | ResultNode


# ---------------------------------------------------------------------------
# Graph helpers
# ---------------------------------------------------------------------------


def build_dependency_graph(
    nodes: Sequence[GraphNode],
    edges: Sequence[WorkflowEdge],
) -> tuple[dict[str, int], dict[str, list[str]]]:
    """
    Build dependency tracking structures from the edge list.

    Every edge counts once, so parallel edges between the same pair add to
    the in-degree and are decremented the same number of times. Edges naming
    unknown nodes are ignored.

    Returns:
        in_degree: count of unsatisfied incoming edges for each node
        adjacency: node -> downstream nodes, one entry per edge
    """
    in_degree: dict[str, int] = {n.id: 0 for n in nodes}
    adjacency: dict[str, list[str]] = {n.id: [] for n in nodes}

    for edge in edges:
        if edge.source not in in_degree or edge.target not in in_degree:
            logger.debug("Ignoring edge %s -> %s with unknown endpoint", edge.source, edge.target)
            continue
        in_degree[edge.target] += 1
        adjacency[edge.source].append(edge.target)

    return in_degree, adjacency


def topological_order(
    nodes: Sequence[GraphNode],
    edges: Sequence[WorkflowEdge],
) -> list[str]:
    """Order the scheduler would run the nodes in. Cycle members are absent."""
    in_degree, adjacency = build_dependency_graph(nodes, edges)
    queue = deque(nid for nid, degree in in_degree.items() if degree == 0)
    order: list[str] = []
    while queue:
        node_id = queue.popleft()
        order.append(node_id)
        for downstream in adjacency[node_id]:
            in_degree[downstream] -= 1
            if in_degree[downstream] == 0:
                queue.append(downstream)
    return order


def gather_upstream(
    node_id: str,
    edges: Sequence[WorkflowEdge],
    outputs: dict[str, str],
) -> list[str]:
    """Outputs feeding `node_id`, in edge order, skipping absent or empty ones."""
    upstream: list[str] = []
    for edge in edges:
        if edge.target != node_id:
            continue
        value = outputs.get(edge.source)
        if value:
            upstream.append(value)
    return upstream


def _check_unique_ids(nodes: Sequence[GraphNode]) -> dict[str, GraphNode]:
    node_map: dict[str, GraphNode] = {}
    for node in nodes:
        if node.id in node_map:
            raise ValueError(f"Duplicate node id: {node.id}")
        node_map[node.id] = node
    return node_map


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


# ---------------------------------------------------------------------------
# Node execution
# ---------------------------------------------------------------------------


async def _fail_node(
    node: GraphNode,
    message: str,
    context: ExecutionContext,
    started: float,
) -> NodeExecutionResult:
    node.status = NodeStatus.ERROR
    node.error = message
    node.output = f"Error: {message}"
    node.completed_at = _now()
    await context.notify_error(node.id, message)
    return NodeExecutionResult(
        node_id=node.id,
        node_kind=node.kind,
        status="error",
        error=message,
        execution_time_ms=_elapsed_ms(started),
        completed_at=node.completed_at,
    )


async def _complete_node(
    node: GraphNode,
    output: NodeOutput,
    context: ExecutionContext,
    started: float,
) -> NodeExecutionResult:
    node.status = NodeStatus.COMPLETE
    node.output = output.value
    node.error = None
    node.completed_at = _now()
    context.outputs[node.id] = output.value
    await context.notify_complete(node.id, output)
    return NodeExecutionResult(
        node_id=node.id,
        node_kind=node.kind,
        status="complete",
        output=output,
        execution_time_ms=_elapsed_ms(started),
        completed_at=node.completed_at,
    )


async def _run_node(
    node: GraphNode,
    upstream: list[str],
    context: ExecutionContext,
) -> NodeExecutionResult:
    """Execute one node against already-gathered upstream text."""
    started = time.perf_counter()
    node.status = NodeStatus.RUNNING
    await context.notify_start(node.id)

    if isinstance(node, ResultNode):
        output = NodeOutput.from_result(join_upstream(upstream))
        return await _complete_node(node, output, context, started)

    try:
        prompt = compose(node, upstream)
        output = await dispatch(node, prompt, context)
    except ProviderError as e:
        logger.warning("Node %s failed: %s", node.id, e.message)
        return await _fail_node(node, e.message, context, started)
    except Exception as e:
        error_msg = f"{type(e).__name__}: {e}"
        logger.exception("Node %s failed: %s", node.id, error_msg)
        return await _fail_node(node, error_msg, context, started)

    return await _complete_node(node, output, context, started)


async def _block_node(
    node: GraphNode,
    failed_upstream: str,
    context: ExecutionContext,
) -> NodeExecutionResult:
    message = f"Upstream node {failed_upstream} failed"
    logger.info("Skipping node %s: %s", node.id, message)
    return await _fail_node(node, message, context, time.perf_counter())


# ---------------------------------------------------------------------------
# Workflow execution
# ---------------------------------------------------------------------------


async def execute_workflow(
    nodes: Sequence[GraphNode],
    edges: Sequence[WorkflowEdge],
    context: ExecutionContext,
) -> WorkflowExecutionResult:
    """
    Execute every reachable node of the graph, one at a time.

    Node errors are recorded and reported through the context's observers;
    they never propagate out of this call.

    Raises:
        ValueError: Two nodes share an id
        RuntimeError: The context is already driving another run
    """
    node_map = _check_unique_ids(nodes)
    context.begin_run()
    try:
        return await _execute(nodes, edges, node_map, context)
    finally:
        context.end_run()


async def _execute(
    nodes: Sequence[GraphNode],
    edges: Sequence[WorkflowEdge],
    node_map: dict[str, GraphNode],
    context: ExecutionContext,
) -> WorkflowExecutionResult:
    start_time = time.perf_counter()
    node_results: list[NodeExecutionResult] = []

    in_degree, adjacency = build_dependency_graph(nodes, edges)
    for node in nodes:
        node.reset_runtime(has_incoming=in_degree[node.id] > 0)

    # node id -> id of the failed node it inherits failure from
    failed_sources: dict[str, str] = {}
    predecessors: dict[str, list[str]] = {n.id: [] for n in nodes}
    for source, targets in adjacency.items():
        for target in targets:
            predecessors[target].append(source)

    queue: deque[str] = deque(nid for nid, degree in in_degree.items() if degree == 0)
    processed: set[str] = set()

    while queue:
        node_id = queue.popleft()
        node = node_map[node_id]

        blocked_by = None
        if context.failure_policy == "block":
            blocked_by = next(
                (failed_sources[p] for p in predecessors[node_id] if p in failed_sources),
                None,
            )

        if blocked_by is not None:
            result = await _block_node(node, blocked_by, context)
        else:
            upstream = gather_upstream(node_id, edges, context.outputs)
            result = await _run_node(node, upstream, context)

        node_results.append(result)
        processed.add(node_id)
        if result.status == "error":
            failed_sources[node_id] = blocked_by or node_id

        for downstream in adjacency[node_id]:
            in_degree[downstream] -= 1
            if in_degree[downstream] == 0:
                queue.append(downstream)
                logger.debug("Node %s now ready (unblocked by %s)", downstream, node_id)

    unexecuted = [n.id for n in nodes if n.id not in processed]
    if unexecuted:
        logger.warning(
            "%d node(s) never became ready (cycle or unreachable): %s",
            len(unexecuted),
            ", ".join(unexecuted),
        )

    return WorkflowExecutionResult(
        success=all(r.status == "complete" for r in node_results),
        outputs=dict(context.outputs),
        node_results=node_results,
        unexecuted_nodes=unexecuted,
        total_execution_time_ms=_elapsed_ms(start_time),
    )


# ---------------------------------------------------------------------------
# Single-node execution
# ---------------------------------------------------------------------------


async def execute_single_node(
    node_id: str,
    nodes: Sequence[GraphNode],
    edges: Sequence[WorkflowEdge],
    context: ExecutionContext,
) -> NodeExecutionResult:
    """
    Re-run one AI node using upstream outputs already known to the context.

    Ancestors are not executed. Upstream text comes from `context.outputs`,
    falling back to the output a completed upstream node already carries.
    On success the output is pushed one hop to directly connected result
    nodes; nothing further downstream runs.

    Raises:
        ValueError: Unknown node id, or the node is not an AI node
    """
    node_map = _check_unique_ids(nodes)
    node = node_map.get(node_id)
    if node is None:
        raise ValueError(f"Node {node_id} not found")
    if not isinstance(node, AiNode):
        raise ValueError(f"Node {node_id} is not an AI node")

    context.begin_run(clear_outputs=False)
    try:
        known = dict(context.outputs)
        for edge in edges:
            source = node_map.get(edge.source)
            if (
                edge.target == node_id
                and source is not None
                and edge.source not in known
                and source.status == NodeStatus.COMPLETE
                and source.output
            ):
                known[edge.source] = source.output

        result = await _run_node(node, gather_upstream(node_id, edges, known), context)
        if result.status == "complete" and result.output is not None:
            await _propagate_to_results(node_id, result.output, edges, node_map, context)
        return result
    finally:
        context.end_run()


async def _propagate_to_results(
    node_id: str,
    output: NodeOutput,
    edges: Sequence[WorkflowEdge],
    node_map: dict[str, GraphNode],
    context: ExecutionContext,
) -> None:
    for edge in edges:
        target = node_map.get(edge.target)
        if edge.source != node_id or not isinstance(target, ResultNode):
            continue
        started = time.perf_counter()
        target.status = NodeStatus.RUNNING
        await context.notify_start(target.id)
        await _complete_node(target, output, context, started)


# ---------------------------------------------------------------------------
# Streaming execution (SSE)
# ---------------------------------------------------------------------------


def _sse(event: dict[str, Any]) -> str:
    return f"data: {json.dumps(event, default=str)}\n\n"


async def execute_workflow_streaming(
    nodes: Sequence[GraphNode],
    edges: Sequence[WorkflowEdge],
    context: ExecutionContext,
) -> AsyncIterator[str]:
    """
    Execute the graph and yield SSE events as nodes start and finish.

    Yields JSON events:
    - {"event": "workflow_start", "execution_order": [...], "total_nodes": N}
    - {"event": "node_start", "node_id": "...", "node_kind": "..."}
    - {"event": "node_complete", "node_id": "...", "output": {"kind": ..., "value": ...}}
    - {"event": "node_error", "node_id": "...", "error": "..."}
    - {"event": "workflow_complete", "success": ..., "outputs": {...}, "node_results": [...], ...}
    - {"event": "workflow_error", "error": "...", "total_execution_time_ms": ...}
    """
    start_time = time.perf_counter()
    node_kinds = {n.id: n.kind for n in nodes}

    # Event queue for SSE - decouples execution from streaming
    event_queue: asyncio.Queue = asyncio.Queue()

    original = (context.on_node_start, context.on_node_complete, context.on_node_error)
    outer_start, outer_complete, outer_error = original

    async def on_start(node_id: str) -> None:
        await event_queue.put(
            {"event": "node_start", "node_id": node_id, "node_kind": node_kinds.get(node_id)}
        )
        await call_observer(outer_start, node_id)

    async def on_complete(node_id: str, output: NodeOutput) -> None:
        await event_queue.put(
            {"event": "node_complete", "node_id": node_id, "output": output.model_dump()}
        )
        await call_observer(outer_complete, node_id, output)

    async def on_error(node_id: str, message: str) -> None:
        await event_queue.put({"event": "node_error", "node_id": node_id, "error": message})
        await call_observer(outer_error, node_id, message)

    async def coordinator() -> None:
        try:
            result = await execute_workflow(nodes, edges, context)
            await event_queue.put({"event": "workflow_complete", **result.model_dump(mode="json")})
        except Exception as e:
            logger.exception("Coordinator error: %s", e)
            await event_queue.put({
                "event": "workflow_error",
                "error": f"Internal error: {type(e).__name__}: {e}",
                "total_execution_time_ms": _elapsed_ms(start_time),
            })
        finally:
            # Signal end of events
            await event_queue.put(None)

    order = topological_order(nodes, edges)
    yield _sse({"event": "workflow_start", "execution_order": order, "total_nodes": len(nodes)})

    context.on_node_start = on_start
    context.on_node_complete = on_complete
    context.on_node_error = on_error
    coordinator_task = asyncio.create_task(coordinator())

    try:
        while True:
            event = await event_queue.get()
            if event is None:
                break
            yield _sse(event)
    finally:
        if not coordinator_task.done():
            coordinator_task.cancel()
            try:
                await coordinator_task
            except asyncio.CancelledError:
                pass
        context.on_node_start, context.on_node_complete, context.on_node_error = original

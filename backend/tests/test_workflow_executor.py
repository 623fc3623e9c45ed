"""
Tests for the serial workflow scheduler.

Provider calls go through a recording fake adapter so the tests can check
which prompts were dispatched, in what order, and how many at once.
"""

import asyncio
import json
import pytest

import sys
from pathlib import Path

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from nodeflow.models.execution import ProviderRequest
from nodeflow.models.graph import AiNode, AiNodeData, NodeStatus, ResultNode, WorkflowEdge
from nodeflow.models.provider_registry import Provider
from nodeflow.providers.base import ProviderAdapter
from nodeflow.providers.errors import NetworkError
from nodeflow.services.execution_context import ExecutionContext
from nodeflow.services.workflow_executor import (
    build_dependency_graph,
    execute_single_node,
    execute_workflow,
    execute_workflow_streaming,
    gather_upstream,
    topological_order,
)


# ---------------------------------------------------------------------------
# Fakes and builders
# ---------------------------------------------------------------------------


class RecordingAdapter(ProviderAdapter):
    """Echoes `out(<prompt>)`; raises for prompts listed in `fail_on`."""

    name = "Fake"

    def __init__(self, fail_on=(), crash_on=(), delay: float = 0.0):
        super().__init__()
        self.calls: list[ProviderRequest] = []
        self.fail_on = set(fail_on)
        self.crash_on = set(crash_on)
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0

    async def invoke(self, request: ProviderRequest, api_key: str) -> str:
        self.calls.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if request.prompt in self.fail_on:
                raise NetworkError("boom")
            if request.prompt in self.crash_on:
                raise RuntimeError("adapter crashed")
            return f"out({request.prompt})"
        finally:
            self.in_flight -= 1

    @property
    def prompts(self) -> list[str]:
        return [c.prompt for c in self.calls]


def ai(node_id: str, prompt: str, provider: str = "openai", **data) -> AiNode:
    return AiNode(id=node_id, data=AiNodeData(provider=provider, prompt_template=prompt, **data))


def result(node_id: str) -> ResultNode:
    return ResultNode(id=node_id)


def edge(source: str, target: str) -> WorkflowEdge:
    return WorkflowEdge(source=source, target=target)


def make_context(adapter: RecordingAdapter, **kwargs) -> ExecutionContext:
    return ExecutionContext(
        credentials={"openai": "sk-test"},
        adapters={Provider.OPENAI: adapter},
        **kwargs,
    )


def wrapped(upstream: str, template: str) -> str:
    return (
        "Here is the context/input from the previous step:\n\n"
        f"{upstream}\n\n---\n\nNow, please do the following:\n\n{template}"
    )


class ObserverLog:
    def __init__(self):
        self.events: list[tuple[str, str]] = []

    def start(self, node_id):
        self.events.append(("start", node_id))

    def complete(self, node_id, output):
        self.events.append(("complete", node_id))

    def error(self, node_id, message):
        self.events.append(("error", node_id))

    def attach(self, context: ExecutionContext) -> ExecutionContext:
        context.on_node_start = self.start
        context.on_node_complete = self.complete
        context.on_node_error = self.error
        return context


# ---------------------------------------------------------------------------
# Graph helpers
# ---------------------------------------------------------------------------


class TestDependencyGraph:
    def test_counts_every_edge(self):
        nodes = [ai("a", "A"), ai("b", "B")]
        in_degree, adjacency = build_dependency_graph(nodes, [edge("a", "b"), edge("a", "b")])

        assert in_degree == {"a": 0, "b": 2}
        assert adjacency == {"a": ["b", "b"], "b": []}

    def test_ignores_edges_to_unknown_nodes(self):
        nodes = [ai("a", "A")]
        in_degree, adjacency = build_dependency_graph(nodes, [edge("a", "ghost"), edge("ghost", "a")])

        assert in_degree == {"a": 0}
        assert adjacency == {"a": []}

    def test_topological_order_is_fifo_in_node_list_order(self):
        nodes = [ai("c", "C"), ai("a", "A"), ai("b", "B")]
        order = topological_order(nodes, [edge("a", "b")])

        assert order == ["c", "a", "b"]

    def test_gather_upstream_follows_edge_order_and_skips_empty(self):
        edges = [edge("y", "t"), edge("x", "t"), edge("z", "t"), edge("x", "other")]
        outputs = {"x": "X", "y": "Y", "z": ""}

        assert gather_upstream("t", edges, outputs) == ["Y", "X"]


# ---------------------------------------------------------------------------
# Full runs
# ---------------------------------------------------------------------------


class TestExecuteWorkflow:
    @pytest.mark.asyncio
    async def test_linear_chain_pipes_outputs(self):
        adapter = RecordingAdapter()
        nodes = [ai("a", "Say A"), ai("b", "Say B"), result("r")]
        edges = [edge("a", "b"), edge("b", "r")]

        run = await execute_workflow(nodes, edges, make_context(adapter))

        first = "out(Say A)"
        second = f"out({wrapped(first, 'Say B')})"
        assert run.success is True
        assert adapter.prompts == ["Say A", wrapped(first, "Say B")]
        assert run.outputs == {"a": first, "b": second, "r": second}
        assert [r.node_id for r in run.node_results] == ["a", "b", "r"]
        assert nodes[2].output == second
        assert run.unexecuted_nodes == []

    @pytest.mark.asyncio
    async def test_every_node_finishes_exactly_once(self):
        adapter = RecordingAdapter(fail_on={"Say B"})
        log = ObserverLog()
        nodes = [ai("a", "Say A"), ai("b", "Say B"), ai("c", "{{input}}"), result("r")]
        edges = [edge("a", "c"), edge("b", "c"), edge("c", "r")]

        await execute_workflow(nodes, edges, log.attach(make_context(adapter)))

        for node in nodes:
            starts = log.events.count(("start", node.id))
            finishes = log.events.count(("complete", node.id)) + log.events.count(("error", node.id))
            assert starts == 1
            assert finishes == 1
            assert node.status in (NodeStatus.COMPLETE, NodeStatus.ERROR)

    @pytest.mark.asyncio
    async def test_fan_in_joins_in_edge_order(self):
        adapter = RecordingAdapter()
        nodes = [ai("a", "A"), ai("b", "B"), ai("c", "Merge: {{input}}")]
        edges = [edge("b", "c"), edge("a", "c")]

        await execute_workflow(nodes, edges, make_context(adapter))

        assert adapter.prompts[-1] == "Merge: out(B)\n\n---\n\nout(A)"

    @pytest.mark.asyncio
    async def test_ready_nodes_never_run_concurrently(self):
        adapter = RecordingAdapter(delay=0.01)
        nodes = [ai("a", "A"), ai("b", "B"), ai("c", "C"), ai("d", "{{input}}")]
        edges = [edge("a", "d"), edge("b", "d"), edge("c", "d")]

        await execute_workflow(nodes, edges, make_context(adapter))

        assert adapter.max_in_flight == 1
        assert adapter.prompts[:3] == ["A", "B", "C"]

    @pytest.mark.asyncio
    async def test_cycle_members_stay_pending_and_run_terminates(self):
        adapter = RecordingAdapter()
        nodes = [ai("a", "A"), ai("x", "X"), ai("y", "Y"), result("after")]
        edges = [edge("x", "y"), edge("y", "x"), edge("y", "after")]

        run = await execute_workflow(nodes, edges, make_context(adapter))

        assert adapter.prompts == ["A"]
        assert run.unexecuted_nodes == ["x", "y", "after"]
        assert nodes[1].status == NodeStatus.PENDING
        assert nodes[2].status == NodeStatus.PENDING
        assert run.success is True

    @pytest.mark.asyncio
    async def test_failed_node_feeds_empty_text_by_default(self):
        adapter = RecordingAdapter(fail_on={"Say A"})
        nodes = [ai("a", "Say A"), ai("b", "Say B")]

        run = await execute_workflow(nodes, [edge("a", "b")], make_context(adapter))

        assert run.success is False
        assert nodes[0].status == NodeStatus.ERROR
        assert nodes[0].output == "Error: boom"
        assert "a" not in run.outputs
        # No upstream text, so the template goes out unwrapped
        assert adapter.prompts == ["Say A", "Say B"]
        assert run.outputs["b"] == "out(Say B)"

    @pytest.mark.asyncio
    async def test_block_policy_skips_dependents_of_failed_node(self):
        adapter = RecordingAdapter(fail_on={"Say A"})
        nodes = [ai("a", "Say A"), ai("b", "Say B"), ai("c", "Say C"), ai("free", "Free")]
        edges = [edge("a", "b"), edge("b", "c")]

        run = await execute_workflow(nodes, edges, make_context(adapter, failure_policy="block"))

        assert adapter.prompts == ["Say A", "Free"]
        results = {r.node_id: r for r in run.node_results}
        assert results["b"].error == "Upstream node a failed"
        assert results["c"].error == "Upstream node a failed"
        assert nodes[2].output == "Error: Upstream node a failed"
        assert results["free"].status == "complete"

    @pytest.mark.asyncio
    async def test_missing_credential_is_a_node_error(self):
        adapter = RecordingAdapter()
        context = ExecutionContext(credentials={}, adapters={Provider.OPENAI: adapter})

        run = await execute_workflow([ai("a", "A")], [], context)

        assert run.node_results[0].error == "No API key configured for openai"
        assert adapter.calls == []

    @pytest.mark.asyncio
    async def test_unknown_provider_is_a_node_error(self):
        run = await execute_workflow(
            [ai("a", "A", provider="mystery")], [], make_context(RecordingAdapter())
        )

        assert run.node_results[0].error == "Provider mystery is not yet supported for execution"

    @pytest.mark.asyncio
    async def test_missing_prompt_is_a_node_error(self):
        run = await execute_workflow([ai("a", "")], [], make_context(RecordingAdapter()))

        assert run.node_results[0].error == "No prompt configured"

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_caught(self):
        adapter = RecordingAdapter(crash_on={"A"})

        run = await execute_workflow([ai("a", "A")], [], make_context(adapter))

        assert run.node_results[0].status == "error"
        assert run.node_results[0].error == "RuntimeError: adapter crashed"

    @pytest.mark.asyncio
    async def test_repeated_runs_give_identical_outputs(self):
        adapter = RecordingAdapter()
        nodes = [ai("a", "A"), ai("b", "B"), result("r")]
        edges = [edge("a", "b"), edge("b", "r")]
        context = make_context(adapter)

        first = await execute_workflow(nodes, edges, context)
        second = await execute_workflow(nodes, edges, context)

        assert first.outputs == second.outputs
        assert len(adapter.calls) == 4

    @pytest.mark.asyncio
    async def test_duplicate_node_ids_are_rejected(self):
        with pytest.raises(ValueError, match="Duplicate node id"):
            await execute_workflow([ai("a", "A"), ai("a", "B")], [], make_context(RecordingAdapter()))

    @pytest.mark.asyncio
    async def test_context_cannot_drive_two_runs(self):
        context = make_context(RecordingAdapter())
        context.begin_run()

        with pytest.raises(RuntimeError):
            await execute_workflow([ai("a", "A")], [], context)

    @pytest.mark.asyncio
    async def test_failing_observer_does_not_stop_the_run(self):
        adapter = RecordingAdapter()
        started = []

        def on_start(node_id):
            started.append(node_id)

        async def on_complete(node_id, output):
            raise RuntimeError("logger down")

        context = make_context(adapter, on_node_start=on_start, on_node_complete=on_complete)
        nodes = [ai("a", "A"), ai("b", "B"), result("r")]

        run = await execute_workflow(nodes, [edge("a", "r")], context)

        assert run.success is True
        assert adapter.prompts == ["A", "B"]
        assert started == ["a", "b", "r"]
        assert [n.status for n in nodes] == [NodeStatus.COMPLETE] * 3
        assert context.outputs["r"] == "out(A)"


# ---------------------------------------------------------------------------
# Single-node runs
# ---------------------------------------------------------------------------


class TestExecuteSingleNode:
    @pytest.mark.asyncio
    async def test_uses_cached_upstream_without_rerunning_it(self):
        adapter = RecordingAdapter()
        nodes = [ai("a", "Say A"), ai("b", "Say B"), result("r"), result("far")]
        edges = [edge("a", "b"), edge("b", "r"), edge("r", "far")]
        context = make_context(adapter)
        context.outputs["a"] = "X"

        node_result = await execute_single_node("b", nodes, edges, context)

        assert adapter.prompts == [wrapped("X", "Say B")]
        assert node_result.status == "complete"
        expected = f"out({wrapped('X', 'Say B')})"
        assert context.outputs["b"] == expected
        # One hop only
        assert context.outputs["r"] == expected
        assert "far" not in context.outputs
        assert nodes[3].status == NodeStatus.READY

    @pytest.mark.asyncio
    async def test_falls_back_to_output_carried_by_completed_node(self):
        adapter = RecordingAdapter()
        upstream = ai("a", "Say A")
        upstream.status = NodeStatus.COMPLETE
        upstream.output = "X"
        nodes = [upstream, ai("b", "{{input}}!")]

        await execute_single_node("b", nodes, [edge("a", "b")], make_context(adapter))

        assert adapter.prompts == ["X!"]

    @pytest.mark.asyncio
    async def test_unknown_node_raises(self):
        with pytest.raises(ValueError, match="not found"):
            await execute_single_node("ghost", [ai("a", "A")], [], make_context(RecordingAdapter()))

    @pytest.mark.asyncio
    async def test_result_node_raises(self):
        with pytest.raises(ValueError, match="not an AI node"):
            await execute_single_node("r", [result("r")], [], make_context(RecordingAdapter()))

    @pytest.mark.asyncio
    async def test_failure_does_not_touch_result_nodes(self):
        adapter = RecordingAdapter(fail_on={"Say B"})
        nodes = [ai("b", "Say B"), result("r")]
        context = make_context(adapter)

        node_result = await execute_single_node("b", nodes, [edge("b", "r")], context)

        assert node_result.status == "error"
        assert "r" not in context.outputs
        assert nodes[1].status == NodeStatus.READY


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


class TestStreaming:
    @pytest.mark.asyncio
    async def test_event_order(self):
        adapter = RecordingAdapter(fail_on={"Bad"})
        nodes = [ai("a", "A"), ai("bad", "Bad")]
        context = make_context(adapter)

        events = []
        async for line in execute_workflow_streaming(nodes, [], context):
            assert line.startswith("data: ") and line.endswith("\n\n")
            events.append(json.loads(line[len("data: "):]))

        assert [(e["event"], e.get("node_id")) for e in events] == [
            ("workflow_start", None),
            ("node_start", "a"),
            ("node_complete", "a"),
            ("node_start", "bad"),
            ("node_error", "bad"),
            ("workflow_complete", None),
        ]
        assert events[0]["execution_order"] == ["a", "bad"]
        assert events[2]["output"] == {"kind": "text", "value": "out(A)"}
        assert events[4]["error"] == "boom"
        assert events[-1]["success"] is False
        assert events[-1]["outputs"] == {"a": "out(A)"}

    @pytest.mark.asyncio
    async def test_caller_observers_still_fire_and_are_restored(self):
        log = ObserverLog()
        context = log.attach(make_context(RecordingAdapter()))
        original_start = context.on_node_start

        async for _ in execute_workflow_streaming([ai("a", "A")], [], context):
            pass

        assert log.events == [("start", "a"), ("complete", "a")]
        assert context.on_node_start == original_start

"""
Workflow execution API endpoints.

Graphs arrive in the canvas editor's shape (see nodeflow.models.graph) and
are executed in-process; nothing is persisted. Credentials supplied with a
request are layered over any provider keys found in the environment.
"""

import logging
from typing import Dict, Literal

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from nodeflow.api.dependencies import get_adapters
from nodeflow.config import EngineConfig
from nodeflow.models.execution import NodeExecutionResult, WorkflowExecutionResult
from nodeflow.models.graph import WorkflowGraph
from nodeflow.models.provider_registry import Provider
from nodeflow.providers.base import ProviderAdapter
from nodeflow.services.execution_context import ExecutionContext
from nodeflow.services.graph_validator import ValidationResult, validate_graph
from nodeflow.services.workflow_executor import (
    execute_single_node,
    execute_workflow,
    execute_workflow_streaming,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflows", tags=["workflows"])


class ExecuteWorkflowRequest(WorkflowGraph):
    credentials: Dict[str, str] = Field(default_factory=dict)
    failure_policy: Literal["continue", "block"] = "continue"


class RunNodeRequest(ExecuteWorkflowRequest):
    # Outputs of nodes that already ran, keyed by node id
    cached_outputs: Dict[str, str] = Field(default_factory=dict)


class RunNodeResponse(BaseModel):
    result: NodeExecutionResult
    outputs: Dict[str, str]


def _build_context(
    request: ExecuteWorkflowRequest,
    adapters: Dict[Provider, ProviderAdapter],
) -> ExecutionContext:
    return ExecutionContext(
        credentials=EngineConfig.merged_credentials(request.credentials),
        adapters=dict(adapters),
        failure_policy=request.failure_policy,
    )


def _require_valid(graph: WorkflowGraph) -> None:
    validation = validate_graph(graph)
    if not validation.success:
        raise HTTPException(
            status_code=422,
            detail={
                "message": "Graph validation failed",
                "diagnostics": [d.model_dump() for d in validation.diagnostics],
            },
        )


@router.post("/validate", response_model=ValidationResult)
async def validate_workflow(graph: WorkflowGraph):
    """Report structural problems (duplicate ids, dangling edges, cycles)."""
    return validate_graph(graph)


@router.post("/execute", response_model=WorkflowExecutionResult)
async def execute_workflow_endpoint(
    request: ExecuteWorkflowRequest,
    adapters: Dict[Provider, ProviderAdapter] = Depends(get_adapters),
):
    """
    Execute a workflow graph synchronously and return all node results.
    """
    _require_valid(request)
    context = _build_context(request, adapters)
    logger.info(
        "Executing workflow with %d nodes and %d edges",
        len(request.nodes),
        len(request.edges),
    )
    return await execute_workflow(request.nodes, request.edges, context)


@router.post("/execute/stream")
async def execute_workflow_stream(
    request: ExecuteWorkflowRequest,
    adapters: Dict[Provider, ProviderAdapter] = Depends(get_adapters),
):
    """
    Execute a workflow with Server-Sent Events (SSE) streaming.

    Returns a stream of events as each node executes:
    - workflow_start: Execution order and node count
    - node_start: Node is about to execute
    - node_complete: Node finished successfully
    - node_error: Node failed
    - workflow_complete: Run finished (carries the full result)
    - workflow_error: The run itself crashed
    """
    _require_valid(request)
    context = _build_context(request, adapters)

    return StreamingResponse(
        execute_workflow_streaming(request.nodes, request.edges, context),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


@router.post("/nodes/{node_id}/run", response_model=RunNodeResponse)
async def run_single_node(
    node_id: str,
    request: RunNodeRequest,
    adapters: Dict[Provider, ProviderAdapter] = Depends(get_adapters),
):
    """
    Re-run one AI node using cached upstream outputs, without running its
    ancestors. Directly connected result nodes receive the new output.
    """
    context = _build_context(request, adapters)
    context.outputs.update(request.cached_outputs)

    if request.get_node(node_id) is None:
        raise HTTPException(status_code=404, detail=f"Node {node_id} not found")
    try:
        result = await execute_single_node(node_id, request.nodes, request.edges, context)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return RunNodeResponse(result=result, outputs=dict(context.outputs))

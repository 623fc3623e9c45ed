"""
Graph models: the node/edge representation the canvas editor submits.

Nodes are a tagged union on `kind` ("ai" | "result"). The editor's own
field names (`type: "aiNode"`, `model`, `subModel`, `prompt`, ...) are
accepted as aliases so raw editor payloads validate unchanged.

Runtime fields (status, output, error, completed_at) are owned by the
scheduler and reset at the start of every run.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class NodeStatus(str, Enum):
    READY = "ready"
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"


# Editor node `type` values -> canonical `kind`
_KIND_ALIASES = {
    "aiNode": "ai",
    "ai": "ai",
    "resultNode": "result",
    "result": "result",
}


class AiNodeData(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    label: str = ""
    provider: str = Field(validation_alias=AliasChoices("provider", "model"))
    model_variant: str | None = Field(
        default=None,
        validation_alias=AliasChoices("model_variant", "modelVariant", "subModel"),
    )
    prompt_template: str | None = Field(
        default=None,
        validation_alias=AliasChoices("prompt_template", "promptTemplate", "prompt"),
    )
    system_prompt: str | None = Field(
        default=None,
        validation_alias=AliasChoices("system_prompt", "systemPrompt"),
    )
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int | None = Field(
        default=None,
        gt=0,
        validation_alias=AliasChoices("max_tokens", "maxTokens"),
    )
    voice_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("voice_id", "voiceId"),
    )
    images: list[str] = Field(default_factory=list)


class ResultNodeData(BaseModel):
    label: str = ""


class _NodeBase(BaseModel):
    id: str = Field(..., min_length=1)
    status: NodeStatus = NodeStatus.READY
    output: str | None = None
    error: str | None = None
    completed_at: datetime | None = None

    def reset_runtime(self, has_incoming: bool) -> None:
        self.status = NodeStatus.PENDING if has_incoming else NodeStatus.READY
        self.output = None
        self.error = None
        self.completed_at = None


class AiNode(_NodeBase):
    kind: Literal["ai"] = "ai"
    data: AiNodeData


class ResultNode(_NodeBase):
    kind: Literal["result"] = "result"
    data: ResultNodeData = Field(default_factory=ResultNodeData)


WorkflowNode = Annotated[Union[AiNode, ResultNode], Field(discriminator="kind")]


class WorkflowEdge(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    source: str = Field(validation_alias=AliasChoices("source", "source_id", "sourceId"))
    target: str = Field(validation_alias=AliasChoices("target", "target_id", "targetId"))


def normalize_node_payload(raw: Any) -> Any:
    """
    Map an editor node payload onto the tagged-union shape.

    Editor nodes carry `type: "aiNode" | "resultNode"`; canonical nodes carry
    `kind`. Anything that is not a dict is returned untouched for pydantic to
    reject.
    """
    if not isinstance(raw, dict):
        return raw
    if "kind" in raw:
        kind = _KIND_ALIASES.get(raw["kind"], raw["kind"])
    else:
        kind = _KIND_ALIASES.get(raw.get("type"), raw.get("type"))
    payload = {k: v for k, v in raw.items() if k != "type"}
    payload["kind"] = kind
    return payload


class WorkflowGraph(BaseModel):
    nodes: list[WorkflowNode] = Field(default_factory=list)
    edges: list[WorkflowEdge] = Field(default_factory=list)

    @field_validator("nodes", mode="before")
    @classmethod
    def _normalize_nodes(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [normalize_node_payload(item) for item in value]
        return value

    def get_node(self, node_id: str) -> AiNode | ResultNode | None:
        return next((n for n in self.nodes if n.id == node_id), None)

"""
Execution models: provider request/response contracts and run results.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


OutputKind = Literal["text", "image", "audio"]


def classify_output(value: str) -> OutputKind:
    """Classify a produced value: image/audio data URLs vs plain text."""
    head = value[:32].lower()
    if head.startswith("data:image/"):
        return "image"
    if head.startswith("data:audio/"):
        return "audio"
    return "text"


class NodeOutput(BaseModel):
    kind: OutputKind
    value: str

    @classmethod
    def from_result(cls, value: str) -> "NodeOutput":
        return cls(kind=classify_output(value), value=value)


class ProviderRequest(BaseModel):
    """Everything an adapter needs besides the credential."""
    model_config = ConfigDict(protected_namespaces=())

    prompt: str = ""
    model_variant: str | None = None
    system_prompt: str | None = None
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2048, gt=0)
    voice_id: str | None = None
    images: list[str] = Field(default_factory=list)


class ProviderResponse(BaseModel):
    success: bool
    result: str | None = None
    error: str | None = None


class NodeExecutionResult(BaseModel):
    node_id: str
    node_kind: Literal["ai", "result"] | None = None
    status: Literal["complete", "error"]
    output: NodeOutput | None = None
    error: str | None = None
    execution_time_ms: int = 0
    completed_at: datetime | None = None


class WorkflowExecutionResult(BaseModel):
    success: bool
    outputs: dict[str, str]
    node_results: list[NodeExecutionResult]
    unexecuted_nodes: list[str] = Field(default_factory=list)
    total_execution_time_ms: int

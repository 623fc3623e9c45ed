"""
Per-run execution context: credentials, observer callbacks, adapter
overrides and the output map shared by the nodes of one run.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Literal, Mapping, Optional, Union

from nodeflow.models.execution import NodeOutput
from nodeflow.models.provider_registry import Provider
from nodeflow.providers.base import ProviderAdapter
from nodeflow.providers.dispatch import ADAPTER_TYPES

logger = logging.getLogger(__name__)

FailurePolicy = Literal["continue", "block"]

# Observers may be plain functions or coroutine functions.
NodeStartCallback = Callable[[str], Union[None, Awaitable[None]]]
NodeCompleteCallback = Callable[[str, NodeOutput], Union[None, Awaitable[None]]]
NodeErrorCallback = Callable[[str, str], Union[None, Awaitable[None]]]


async def call_observer(callback: Optional[Callable], *args) -> None:
    """Invoke an observer; a failing observer is logged and never stops the run."""
    if callback is None:
        return
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.exception("Observer %s failed", getattr(callback, "__name__", callback))


@dataclass
class ExecutionContext:
    """
    Everything a run needs besides the graph.

    `outputs` maps node id to the raw output string of every node that
    completed in this run (failed nodes are never written). It is cleared
    when a full run begins; `execute_single_node` reads it as a cache.
    """

    credentials: Mapping[str, str] = field(default_factory=dict)
    on_node_start: Optional[NodeStartCallback] = None
    on_node_complete: Optional[NodeCompleteCallback] = None
    on_node_error: Optional[NodeErrorCallback] = None
    outputs: dict[str, str] = field(default_factory=dict)
    adapters: dict[Provider, ProviderAdapter] = field(default_factory=dict)
    failure_policy: FailurePolicy = "continue"
    _running: bool = field(default=False, init=False, repr=False)

    def credential_for(self, provider: Provider) -> str | None:
        secret = self.credentials.get(provider.value)
        return secret.strip() if secret and secret.strip() else None

    def adapter_for(self, provider: Provider) -> ProviderAdapter:
        adapter = self.adapters.get(provider)
        if adapter is None:
            adapter = ADAPTER_TYPES[provider]()
            self.adapters[provider] = adapter
        return adapter

    # -- run guard ----------------------------------------------------------

    def begin_run(self, *, clear_outputs: bool = True) -> None:
        if self._running:
            raise RuntimeError("ExecutionContext is already in use by another run")
        self._running = True
        if clear_outputs:
            self.outputs.clear()

    def end_run(self) -> None:
        self._running = False

    # -- observers ----------------------------------------------------------

    async def notify_start(self, node_id: str) -> None:
        await call_observer(self.on_node_start, node_id)

    async def notify_complete(self, node_id: str, output: NodeOutput) -> None:
        await call_observer(self.on_node_complete, node_id, output)

    async def notify_error(self, node_id: str, message: str) -> None:
        await call_observer(self.on_node_error, node_id, message)

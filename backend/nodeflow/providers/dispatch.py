"""
Provider dispatch: routes an AI node to the adapter for its provider.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Mapping

from nodeflow.config import EngineConfig
from nodeflow.models.execution import NodeOutput, ProviderRequest, ProviderResponse
from nodeflow.models.graph import AiNode
from nodeflow.models.provider_registry import Provider, get_default_variant, resolve_provider
from nodeflow.providers.anthropic import AnthropicAdapter
from nodeflow.providers.base import ProviderAdapter
from nodeflow.providers.elevenlabs import ElevenLabsAdapter
from nodeflow.providers.errors import ConfigurationError, ProviderError
from nodeflow.providers.fal import FalAdapter
from nodeflow.providers.gemini import GeminiAdapter
from nodeflow.providers.openai import OpenAIAdapter
from nodeflow.providers.supadata import SupadataAdapter

if TYPE_CHECKING:
    from nodeflow.services.execution_context import ExecutionContext

logger = logging.getLogger(__name__)

AdapterMap = Mapping[Provider, ProviderAdapter]

ADAPTER_TYPES: dict[Provider, type[ProviderAdapter]] = {
    Provider.OPENAI: OpenAIAdapter,
    Provider.ANTHROPIC: AnthropicAdapter,
    Provider.GEMINI: GeminiAdapter,
    Provider.ELEVENLABS: ElevenLabsAdapter,
    Provider.SUPADATA: SupadataAdapter,
    Provider.FAL: FalAdapter,
}

_missing = [p.value for p in Provider if p not in ADAPTER_TYPES]
if _missing:
    raise RuntimeError(f"No adapter registered for providers: {', '.join(_missing)}")


def build_request(node: AiNode, prompt: str) -> ProviderRequest:
    data = node.data
    provider = resolve_provider(data.provider)
    model_variant = data.model_variant
    if not model_variant and provider is not None:
        model_variant = get_default_variant(provider)
    return ProviderRequest(
        prompt=prompt,
        model_variant=model_variant,
        system_prompt=data.system_prompt,
        temperature=data.temperature,
        max_tokens=data.max_tokens or EngineConfig.DEFAULT_MAX_TOKENS,
        voice_id=data.voice_id,
        images=list(data.images),
    )


async def dispatch(node: AiNode, prompt: str, context: "ExecutionContext") -> NodeOutput:
    """
    Run one AI node against its provider.

    Args:
        node: The AI node being executed
        prompt: Composed prompt (upstream context + template)
        context: Run context supplying credentials and adapters

    Returns:
        The classified node output

    Raises:
        ConfigurationError: Unknown provider or missing credential
        ProviderError: Whatever the adapter raised
    """
    provider = resolve_provider(node.data.provider)
    if provider is None:
        raise ConfigurationError(
            f"Provider {node.data.provider} is not yet supported for execution"
        )

    api_key = context.credential_for(provider)
    if not api_key:
        raise ConfigurationError(f"No API key configured for {provider.value}")

    request = build_request(node, prompt)
    logger.info(
        "Dispatching node %s to %s (%s)", node.id, provider.value, request.model_variant
    )
    result = await context.adapter_for(provider).invoke(request, api_key)
    return NodeOutput.from_result(result)


async def run_provider(
    provider_id: str,
    request: ProviderRequest,
    api_key: str | None,
    adapters: AdapterMap | None = None,
) -> ProviderResponse:
    """
    Single provider call outside any workflow. Never raises; failures come
    back as `success=False` with the error message.
    """
    provider = resolve_provider(provider_id)
    if provider is None:
        return ProviderResponse(success=False, error=f"Unknown provider: {provider_id}")
    if not api_key:
        return ProviderResponse(success=False, error="API key is required")
    if not request.prompt and provider is not Provider.ELEVENLABS:
        return ProviderResponse(success=False, error="Prompt is required")

    if not request.model_variant:
        request = request.model_copy(update={"model_variant": get_default_variant(provider)})

    adapter = (adapters or {}).get(provider) or ADAPTER_TYPES[provider]()
    try:
        result = await adapter.invoke(request, api_key)
    except ProviderError as exc:
        logger.warning("%s call failed: %s", provider.value, exc)
        return ProviderResponse(success=False, error=exc.message)
    except Exception as exc:
        logger.exception("Unexpected error calling %s", provider.value)
        return ProviderResponse(success=False, error=f"{type(exc).__name__}: {exc}")
    return ProviderResponse(success=True, result=result)

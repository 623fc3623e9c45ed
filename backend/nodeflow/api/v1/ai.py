"""
One-shot provider endpoints: the model catalogue and a single provider call
outside any workflow.
"""

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from nodeflow.api.dependencies import get_adapters
from nodeflow.config import EngineConfig
from nodeflow.models.execution import ProviderRequest, ProviderResponse
from nodeflow.models.provider_registry import (
    MODEL_VARIANTS,
    SPEECH_PROVIDERS,
    ModelVariant,
    Provider,
    resolve_provider,
)
from nodeflow.providers.base import ProviderAdapter
from nodeflow.providers.dispatch import run_provider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"])


class ProviderInfo(BaseModel):
    id: str
    speech: bool
    has_server_credential: bool
    variants: List[ModelVariant]


class RunProviderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    provider: str = Field(validation_alias=AliasChoices("provider", "model"))
    model_variant: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("model_variant", "modelVariant", "subModel"),
    )
    prompt: str = ""
    api_key: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("api_key", "apiKey")
    )
    system_prompt: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("system_prompt", "systemPrompt")
    )
    temperature: float = Field(default=EngineConfig.DEFAULT_TEMPERATURE, ge=0.0, le=2.0)
    max_tokens: int = Field(
        default=EngineConfig.DEFAULT_MAX_TOKENS,
        gt=0,
        validation_alias=AliasChoices("max_tokens", "maxTokens"),
    )
    voice_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("voice_id", "voiceId")
    )
    images: List[str] = Field(default_factory=list)


@router.get("/providers", response_model=List[ProviderInfo])
async def list_providers():
    """List supported providers and their model variants (first is the default)."""
    env_credentials = EngineConfig.credentials_from_env()
    return [
        ProviderInfo(
            id=provider.value,
            speech=provider in SPEECH_PROVIDERS,
            has_server_credential=provider.value in env_credentials,
            variants=variants,
        )
        for provider, variants in MODEL_VARIANTS.items()
    ]


@router.post("/run", response_model=ProviderResponse)
async def run_provider_endpoint(
    request: RunProviderRequest,
    adapters: Dict[Provider, ProviderAdapter] = Depends(get_adapters),
):
    """
    Call one provider directly. Failures are reported in the body with
    `success: false` rather than as HTTP errors.
    """
    api_key = request.api_key
    if not api_key:
        provider = resolve_provider(request.provider)
        if provider is not None:
            api_key = EngineConfig.credentials_from_env().get(provider.value)

    provider_request = ProviderRequest(
        prompt=request.prompt,
        model_variant=request.model_variant,
        system_prompt=request.system_prompt,
        temperature=request.temperature,
        max_tokens=request.max_tokens,
        voice_id=request.voice_id,
        images=request.images,
    )
    logger.info("One-shot call to %s (%s)", request.provider, request.model_variant)
    return await run_provider(request.provider, provider_request, api_key, adapters)

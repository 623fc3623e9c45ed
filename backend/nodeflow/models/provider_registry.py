"""
Provider catalogue: source of truth for which providers exist and which
model variants each one offers.

Keys match the `provider` values the canvas editor stores on AI nodes.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel


VariantCategory = Literal["text", "image", "audio", "video"]


class Provider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    ELEVENLABS = "elevenlabs"
    SUPADATA = "supadata"
    FAL = "fal"


class ModelVariant(BaseModel):
    id: str
    label: str
    description: str | None = None
    category: VariantCategory


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
# The first variant of each provider is its default.

MODEL_VARIANTS: dict[Provider, list[ModelVariant]] = {
    Provider.OPENAI: [
        ModelVariant(id="gpt-5.1", label="GPT-5.1", description="OpenAI latest flagship model", category="text"),
        ModelVariant(id="gpt-4o", label="GPT-4o", description="Multimodal, web search capable", category="text"),
        ModelVariant(id="gpt-4-turbo", label="GPT-4 Turbo", description="Web search capable", category="text"),
        ModelVariant(id="gpt-image-1", label="GPT Image 1", description="Image generation", category="image"),
        ModelVariant(id="dall-e-3", label="DALL·E 3", description="Image generation", category="image"),
    ],
    Provider.ANTHROPIC: [
        ModelVariant(id="claude-3-5-sonnet-20241022", label="Claude 3.5 Sonnet", description="Balanced quality", category="text"),
        ModelVariant(id="claude-3-5-haiku-20241022", label="Claude 3.5 Haiku", description="Fast and affordable", category="text"),
    ],
    Provider.GEMINI: [
        ModelVariant(id="gemini-1.5-flash", label="Gemini 1.5 Flash", description="Fast and stable (recommended)", category="text"),
        ModelVariant(id="gemini-1.5-pro", label="Gemini 1.5 Pro", description="Most capable", category="text"),
        ModelVariant(id="gemini-2.0-flash", label="Gemini 2.0 Flash", description="Latest (may have rate limits)", category="text"),
        ModelVariant(id="gemini-2.5-flash-image", label="Nano Banana 2.5", description="Latest image generation", category="image"),
        ModelVariant(id="gemini-2.0-flash-exp", label="Nano Banana 2.0", description="Image generation", category="image"),
    ],
    Provider.ELEVENLABS: [
        ModelVariant(id="eleven_multilingual_v2", label="Eleven Multilingual v2", description="29 languages, 10K char limit", category="audio"),
        ModelVariant(id="eleven_turbo_v2_5", label="Eleven Turbo v2.5", description="High quality, low latency", category="audio"),
        ModelVariant(id="eleven_flash_v2_5", label="Eleven Flash v2.5", description="Ultra-fast, affordable", category="audio"),
        ModelVariant(id="eleven_v3", label="Eleven v3", description="Most expressive, 70+ languages", category="audio"),
    ],
    Provider.SUPADATA: [
        ModelVariant(id="web-reader", label="Web Reader", description="Extract content from websites", category="text"),
        ModelVariant(id="transcript", label="Video Transcript", description="Extract transcripts from videos", category="text"),
        ModelVariant(id="metadata", label="Media Metadata", description="Get social media post data", category="text"),
        ModelVariant(id="youtube-metadata", label="YouTube Metadata", description="Extract video/channel metadata", category="text"),
    ],
    Provider.FAL: [
        ModelVariant(id="fal-ai/nano-banana-pro", label="Nano Banana Pro", description="Image generation via fal.ai", category="image"),
        ModelVariant(id="fal-ai/veo2/image-to-video", label="Veo 2", description="Image-to-video via fal.ai", category="video"),
    ],
}

# Providers whose nodes take upstream text as-is instead of a prompt template.
SPEECH_PROVIDERS: frozenset[Provider] = frozenset({Provider.ELEVENLABS})


def resolve_provider(provider_id: str | None) -> Provider | None:
    """Map a provider id to the Provider enum, returning None if unknown."""
    if not provider_id:
        return None
    try:
        return Provider(provider_id)
    except ValueError:
        return None


def get_default_variant(provider: Provider) -> str:
    return MODEL_VARIANTS[provider][0].id


def is_speech_provider(provider_id: str | None) -> bool:
    provider = resolve_provider(provider_id)
    return provider is not None and provider in SPEECH_PROVIDERS

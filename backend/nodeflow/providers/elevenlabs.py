"""
ElevenLabs text-to-speech adapter. Returns the audio as a data URL.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from nodeflow.config import EngineConfig
from nodeflow.models.execution import ProviderRequest
from nodeflow.providers.base import (
    ProviderAdapter,
    classify_http_failure,
    encode_data_url,
    extract_error_message,
)
from nodeflow.providers.errors import ConfigurationError, NetworkError

logger = logging.getLogger(__name__)

DEFAULT_MODEL_ID = "eleven_multilingual_v2"
DEFAULT_VOICE_ID = "21m00Tcm4TlvDq8ikWAM"
DEFAULT_AUDIO_MIME = "audio/mpeg"
VOICE_SETTINGS = {"stability": 0.5, "similarity_boost": 0.5}


class ElevenLabsAdapter(ProviderAdapter):
    name = "ElevenLabs"

    def __init__(self, *, base_url: str | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.base_url = (base_url or EngineConfig.ELEVENLABS_BASE_URL).rstrip("/")

    async def invoke(self, request: ProviderRequest, api_key: str) -> str:
        text = request.prompt.strip()
        if not text:
            raise ConfigurationError("No text provided for speech synthesis")

        async with self.http_client() as client:
            voice_id = request.voice_id or await self._first_voice(client, api_key)
            response = await self.send(
                client,
                "POST",
                f"{self.base_url}/text-to-speech/{voice_id}",
                headers={"Content-Type": "application/json", "xi-api-key": api_key},
                json={
                    "text": text,
                    "model_id": request.model_variant or DEFAULT_MODEL_ID,
                    "voice_settings": VOICE_SETTINGS,
                },
            )

        if not response.is_success:
            message = extract_error_message(response)
            logger.error("ElevenLabs API error %s: %s", response.status_code, message)
            if response.status_code == 404 and "voice" in message.lower():
                raise ConfigurationError(
                    f"Voice '{voice_id}' was not found: {message}",
                    status_code=response.status_code,
                )
            raise classify_http_failure(response.status_code, message, provider=self.name)

        mime_type = response.headers.get("content-type", DEFAULT_AUDIO_MIME).split(";")[0]
        if not mime_type.startswith("audio/"):
            mime_type = DEFAULT_AUDIO_MIME
        return encode_data_url(response.content, mime_type)

    async def _first_voice(self, client: httpx.AsyncClient, api_key: str) -> str:
        """First voice on the account, or the stock default if listing fails."""
        try:
            response = await self.send(
                client, "GET", f"{self.base_url}/voices", headers={"xi-api-key": api_key}
            )
        except NetworkError as exc:
            logger.warning("Error fetching voices, using default voice: %s", exc)
            return DEFAULT_VOICE_ID

        if not response.is_success:
            logger.warning("Failed to fetch voices, using default: %s", response.text[:200])
            return DEFAULT_VOICE_ID

        voices = response.json().get("voices") or []
        if voices and isinstance(voices[0], dict) and voices[0].get("voice_id"):
            return voices[0]["voice_id"]
        return DEFAULT_VOICE_ID

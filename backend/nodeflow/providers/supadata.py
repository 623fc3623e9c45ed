"""
Supadata adapter: scrapes web pages, video transcripts and media metadata.

The node's prompt carries the target URL; the model variant picks the
endpoint.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from nodeflow.config import EngineConfig
from nodeflow.models.execution import ProviderRequest
from nodeflow.providers.base import ProviderAdapter, raise_for_provider_status
from nodeflow.providers.errors import ConfigurationError, ResponseUnparseable

logger = logging.getLogger(__name__)

DEFAULT_MODE = "web-reader"
ENDPOINTS = {
    "transcript": "/transcript",
    "metadata": "/metadata",
    "web-reader": "/web/scrape",
    "youtube-metadata": "/youtube/video",
}

_URL_PATTERN = re.compile(r"https?://[^\s]+")


def extract_target_url(prompt: str) -> str:
    """First http(s) URL in the prompt; raises if there is none."""
    match = _URL_PATTERN.search(prompt)
    target = match.group(0) if match else prompt.strip()
    if not target.startswith("http"):
        raise ConfigurationError(
            "Please provide a valid URL in the prompt (e.g., https://example.com)"
        )
    return target


def _pretty(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False)


def format_result(mode: str, data: Any) -> str:
    if not isinstance(data, dict):
        return _pretty(data)
    if mode == "transcript":
        transcript = data.get("transcript")
        return transcript if isinstance(transcript, str) and transcript else _pretty(data)
    if mode == "web-reader":
        for key in ("content", "text"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
    return _pretty(data)


class SupadataAdapter(ProviderAdapter):
    name = "Supadata"

    def __init__(self, *, base_url: str | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.base_url = (base_url or EngineConfig.SUPADATA_BASE_URL).rstrip("/")

    async def invoke(self, request: ProviderRequest, api_key: str) -> str:
        target = extract_target_url(request.prompt)
        mode = request.model_variant if request.model_variant in ENDPOINTS else DEFAULT_MODE
        url = f"{self.base_url}{ENDPOINTS[mode]}"

        logger.info("Supadata %s request for %s", mode, target)
        async with self.http_client() as client:
            response = await self.send(
                client, "GET", url, params={"url": target}, headers={"x-api-key": api_key}
            )
        raise_for_provider_status(response, provider=self.name)

        try:
            data = response.json()
        except ValueError as exc:
            raise ResponseUnparseable("Supadata returned a non-JSON response") from exc
        return format_result(mode, data)

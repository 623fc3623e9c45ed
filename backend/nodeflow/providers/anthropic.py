"""
Anthropic Messages API adapter.
"""

from __future__ import annotations

import logging
from typing import Any

from nodeflow.config import EngineConfig
from nodeflow.models.execution import ProviderRequest
from nodeflow.providers.base import (
    ProviderAdapter,
    raise_for_provider_status,
    run_fallback_chain,
    split_data_url,
    unique_candidates,
)
from nodeflow.providers.errors import ResponseUnparseable

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
MODEL_FALLBACKS = ["claude-3-5-sonnet-20241022", "claude-3-5-haiku-20241022"]


class AnthropicAdapter(ProviderAdapter):
    name = "Claude"

    def __init__(self, *, base_url: str | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.base_url = (base_url or EngineConfig.ANTHROPIC_BASE_URL).rstrip("/")

    async def invoke(self, request: ProviderRequest, api_key: str) -> str:
        candidates = unique_candidates([request.model_variant, *MODEL_FALLBACKS])
        headers = {
            "Content-Type": "application/json",
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

        async with self.http_client() as client:

            async def attempt(model: str) -> str:
                body: dict[str, Any] = {
                    "model": model,
                    "max_tokens": request.max_tokens,
                    "temperature": request.temperature,
                    "messages": [{"role": "user", "content": self._user_content(request)}],
                }
                if request.system_prompt:
                    body["system"] = request.system_prompt

                response = await self.send(
                    client, "POST", f"{self.base_url}/messages", headers=headers, json=body
                )
                raise_for_provider_status(response, provider=self.name)
                return self._parse(response.json())

            return await run_fallback_chain(
                candidates,
                attempt,
                exhausted_message="No Claude model is available",
                label="Claude model",
            )

    @staticmethod
    def _user_content(request: ProviderRequest) -> Any:
        if not request.images:
            return request.prompt
        blocks: list[dict[str, Any]] = []
        for image in request.images:
            if image.startswith(("http://", "https://")):
                blocks.append({"type": "image", "source": {"type": "url", "url": image}})
                continue
            mime_type, _ = split_data_url(image)
            encoded = image.partition(",")[2] if image.startswith("data:") else image
            blocks.append(
                {
                    "type": "image",
                    "source": {"type": "base64", "media_type": mime_type, "data": encoded},
                }
            )
        blocks.append({"type": "text", "text": request.prompt})
        return blocks

    @staticmethod
    def _parse(data: dict[str, Any]) -> str:
        for block in data.get("content") or []:
            if isinstance(block, dict) and isinstance(block.get("text"), str):
                return block["text"]
        logger.error("Claude response had no text block: %s", data)
        raise ResponseUnparseable("No text content in Claude response")

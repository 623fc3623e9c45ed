"""
OpenAI adapter: Responses API, Chat Completions and Images API.

- gpt-5.1 goes through the Responses API with the web_search tool.
- Other chat models use Chat Completions; web-search capable models get the
  tool, and a tool rejection is retried once without it.
- gpt-image-1 / dall-e-* go through the Images API, falling back to dall-e-3.
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
    extract_error_message,
    retry_without_feature,
    run_fallback_chain,
    to_data_url,
    unique_candidates,
)
from nodeflow.providers.errors import FeatureRejected, ResponseUnparseable
from nodeflow.providers.normalizer import extract_text

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-5.1"
RESPONSES_API_MODELS = {"gpt-5.1"}
WEB_SEARCH_MODELS = {"gpt-4-turbo-web", "gpt-4o", "gpt-4-turbo", "o1-preview", "o1-mini"}
MODEL_ALIASES = {"gpt-4-turbo-web": "gpt-4-turbo"}
IMAGE_FALLBACK_MODEL = "dall-e-3"

WEB_SEARCH_TOOL = {"type": "web_search"}
TOOL_KEYS = ("tools", "tool_choice")
_TOOL_REJECTION_MARKERS = ("tool", "web_search", "not supported")

STRICT_SYSTEM_SUFFIX = (
    "CRITICAL: Follow the system instructions EXACTLY. Do NOT add any conversational "
    'phrases like "Sure", "Here is", "I\'ll", etc. Do NOT add explanations or extra '
    "text. Only provide the direct output requested."
)
TOOL_FOLLOW_UP_FALLBACK = "Web search was initiated but could not complete."


def is_image_model(model: str) -> bool:
    return model.startswith("dall-e") or model == "gpt-image-1"


def _image_request_body(model: str, prompt: str) -> dict[str, Any]:
    body: dict[str, Any] = {"model": model, "prompt": prompt, "n": 1}
    if model in ("gpt-image-1", "dall-e-3"):
        body.update(size="1024x1024", quality="standard")
    else:
        body.update(model="dall-e-2", size="512x512")
    return body


class OpenAIAdapter(ProviderAdapter):
    name = "OpenAI"

    def __init__(self, *, base_url: str | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.base_url = (base_url or EngineConfig.OPENAI_BASE_URL).rstrip("/")

    async def invoke(self, request: ProviderRequest, api_key: str) -> str:
        model = request.model_variant or DEFAULT_MODEL
        async with self.http_client() as client:
            if is_image_model(model):
                return await self._generate_image(client, request, api_key, model)
            if model in RESPONSES_API_MODELS:
                return await self._respond(client, request, api_key, model)
            return await self._chat(client, request, api_key, model)

    async def _post(
        self,
        client: httpx.AsyncClient,
        path: str,
        body: dict[str, Any],
        api_key: str,
    ) -> dict[str, Any]:
        response = await self.send(
            client,
            "POST",
            f"{self.base_url}{path}",
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_key}",
            },
            json=body,
        )
        if response.is_success:
            return response.json()

        message = extract_error_message(response)
        lowered = message.lower()
        if "tools" in body and any(marker in lowered for marker in _TOOL_REJECTION_MARKERS):
            raise FeatureRejected(message, status_code=response.status_code)
        raise classify_http_failure(response.status_code, message, provider=self.name)

    # -- Responses API ------------------------------------------------------

    async def _respond(
        self,
        client: httpx.AsyncClient,
        request: ProviderRequest,
        api_key: str,
        model: str,
    ) -> str:
        body: dict[str, Any] = {
            "model": model,
            "input": self._responses_input(request),
            "temperature": request.temperature,
            "max_output_tokens": request.max_tokens,
            "tools": [WEB_SEARCH_TOOL],
        }
        if request.system_prompt:
            body["instructions"] = request.system_prompt

        async def call(payload: dict[str, Any]) -> dict[str, Any]:
            return await self._post(client, "/responses", payload, api_key)

        data = await retry_without_feature(
            call, body, feature_keys=TOOL_KEYS, label="web_search tool"
        )
        text = extract_text(data)
        if not text:
            logger.error("Could not extract text from %s response: %s", model, data)
            raise ResponseUnparseable("Could not extract text content from API response")
        return text

    @staticmethod
    def _responses_input(request: ProviderRequest) -> Any:
        if not request.images:
            return request.prompt
        content: list[dict[str, Any]] = [{"type": "input_text", "text": request.prompt}]
        for image in request.images:
            content.append({"type": "input_image", "image_url": to_data_url(image)})
        return [{"role": "user", "content": content}]

    # -- Chat Completions ---------------------------------------------------

    async def _chat(
        self,
        client: httpx.AsyncClient,
        request: ProviderRequest,
        api_key: str,
        model: str,
    ) -> str:
        messages: list[dict[str, Any]] = []
        if request.system_prompt:
            messages.append(
                {"role": "system", "content": f"{request.system_prompt}\n\n{STRICT_SYSTEM_SUFFIX}"}
            )
        messages.append({"role": "user", "content": self._chat_user_content(request)})

        body: dict[str, Any] = {
            "model": MODEL_ALIASES.get(model, model),
            "messages": messages,
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }
        if model in WEB_SEARCH_MODELS:
            body["tools"] = [WEB_SEARCH_TOOL]
            body["tool_choice"] = "auto"

        async def call(payload: dict[str, Any]) -> dict[str, Any]:
            return await self._post(client, "/chat/completions", payload, api_key)

        data = await retry_without_feature(
            call, body, feature_keys=TOOL_KEYS, label="web_search tool"
        )
        message = self._first_message(data)

        if message.get("tool_calls"):
            message = await self._follow_up_tool_calls(client, api_key, body, message)
            if isinstance(message, str):
                return message

        content = message.get("content")
        if not isinstance(content, str) or not content:
            raise ResponseUnparseable("No content in OpenAI response")
        return content

    @staticmethod
    def _chat_user_content(request: ProviderRequest) -> Any:
        if not request.images:
            return request.prompt
        parts: list[dict[str, Any]] = [{"type": "text", "text": request.prompt}]
        for image in request.images:
            parts.append({"type": "image_url", "image_url": {"url": to_data_url(image)}})
        return parts

    @staticmethod
    def _first_message(data: dict[str, Any]) -> dict[str, Any]:
        choices = data.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            raise ResponseUnparseable("OpenAI response missing choices")
        return choices[0].get("message") or {}

    async def _follow_up_tool_calls(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        body: dict[str, Any],
        message: dict[str, Any],
    ) -> dict[str, Any] | str:
        """
        Acknowledge the assistant's tool calls and ask once more, without
        tools, for the final answer.
        """
        tool_messages = [
            {"role": "tool", "tool_call_id": call.get("id"), "content": "Web search completed"}
            for call in message.get("tool_calls") or []
        ]
        follow_up = {k: v for k, v in body.items() if k not in TOOL_KEYS}
        follow_up["messages"] = [*body["messages"], message, *tool_messages]

        response = await self.send(
            client,
            "POST",
            f"{self.base_url}/chat/completions",
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_key}",
            },
            json=follow_up,
        )
        if not response.is_success:
            logger.warning(
                "Tool follow-up failed (%s): %s",
                response.status_code,
                extract_error_message(response),
            )
            return message.get("content") or TOOL_FOLLOW_UP_FALLBACK
        return self._first_message(response.json())

    # -- Images API ---------------------------------------------------------

    async def _generate_image(
        self,
        client: httpx.AsyncClient,
        request: ProviderRequest,
        api_key: str,
        model: str,
    ) -> str:
        # Image endpoints have no system role; fold it into the prompt.
        prompt = request.prompt
        if request.system_prompt:
            prompt = f"{request.system_prompt}\n\n{prompt}"

        candidates = [model]
        if model == "gpt-image-1":
            candidates = unique_candidates([model, IMAGE_FALLBACK_MODEL])

        async def attempt(candidate: str) -> str:
            data = await self._post(
                client, "/images/generations", _image_request_body(candidate, prompt), api_key
            )
            return self._image_result(data)

        return await run_fallback_chain(
            candidates,
            attempt,
            exhausted_message="No OpenAI image model is available",
            label="OpenAI image model",
        )

    @staticmethod
    def _image_result(data: dict[str, Any]) -> str:
        items = data.get("data")
        if isinstance(items, list) and items:
            first = items[0] or {}
            if first.get("url"):
                return first["url"]
            if first.get("b64_json"):
                return f"data:image/png;base64,{first['b64_json']}"
        if data.get("url"):
            return data["url"]
        logger.error("Unexpected OpenAI image response format: %s", data)
        raise ResponseUnparseable("No image URL returned from OpenAI")

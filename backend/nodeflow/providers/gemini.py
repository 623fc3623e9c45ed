"""
Gemini adapter built on the google-genai SDK.

Text variants walk a model fallback chain. Image variants (Nano Banana)
additionally try several response-modality shapes per model, since older
models reject `["Image"]` alone.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

import httpx
from google import genai
from google.genai import errors, types

from nodeflow.models.execution import ProviderRequest
from nodeflow.providers.base import (
    ProviderAdapter,
    classify_http_failure,
    encode_data_url,
    run_fallback_chain,
    split_data_url,
    unique_candidates,
)
from nodeflow.providers.errors import (
    NetworkError,
    ParameterRejected,
    ProviderError,
    RateLimited,
    ResponseUnparseable,
    SafetyBlocked,
)
from nodeflow.providers.normalizer import extract_text

logger = logging.getLogger(__name__)

TEXT_FALLBACKS = ["gemini-1.5-flash", "gemini-1.5-pro", "gemini-2.0-flash"]
IMAGE_MODELS = {"gemini-2.5-flash-image", "gemini-2.0-flash-exp"}
IMAGE_FALLBACKS = ["gemini-2.5-flash-image", "gemini-2.0-flash-exp", "gemini-1.5-flash"]

# Tried in order for each image model; None leaves the field unset.
RESPONSE_MODALITY_SHAPES: list[Optional[list[str]]] = [["Image"], ["Text", "Image"], None]

RATE_LIMIT_MESSAGE = (
    "Gemini API rate limit exceeded. Free tier allows 50-150 requests per day. "
    "Please wait or upgrade your API key."
)

ClientFactory = Callable[[str], Any]


def _default_client_factory(api_key: str) -> genai.Client:
    return genai.Client(api_key=api_key)


def is_image_variant(model: str | None) -> bool:
    return model in IMAGE_MODELS


def classify_api_error(exc: errors.APIError) -> ProviderError:
    details = " ".join(part for part in (exc.status, exc.message) if part) or str(exc)
    error = classify_http_failure(exc.code, details, provider="Gemini")
    if isinstance(error, RateLimited):
        return RateLimited(RATE_LIMIT_MESSAGE, status_code=exc.code)
    return error


class GeminiAdapter(ProviderAdapter):
    name = "Gemini"

    def __init__(self, *, client_factory: ClientFactory | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        self._client_factory = client_factory or _default_client_factory

    async def invoke(self, request: ProviderRequest, api_key: str) -> str:
        client = self._client_factory(api_key)
        if is_image_variant(request.model_variant):
            return await self._generate_image(client, request)
        return await self._generate_text(client, request)

    async def _generate_text(self, client: Any, request: ProviderRequest) -> str:
        contents = self._contents(request.prompt, request.images)

        async def attempt(model: str) -> str:
            config = types.GenerateContentConfig(
                temperature=request.temperature,
                max_output_tokens=request.max_tokens,
                system_instruction=request.system_prompt or None,
            )
            response = await self._call(client, model, contents, config)
            return self._parse(response, model)

        return await run_fallback_chain(
            unique_candidates([request.model_variant, *TEXT_FALLBACKS]),
            attempt,
            exhausted_message=(
                "All Gemini models are unavailable. This might be due to rate "
                "limits or regional restrictions."
            ),
            label="Gemini model",
        )

    async def _generate_image(self, client: Any, request: ProviderRequest) -> str:
        # The image models ignore system_instruction; fold it into the prompt.
        prompt = request.prompt
        if request.system_prompt:
            prompt = f"{request.system_prompt}\n\n{prompt}"
        contents = self._contents(prompt, request.images)

        async def attempt_model(model: str) -> str:
            async def attempt_shape(modalities: Optional[list[str]]) -> str:
                config = types.GenerateContentConfig(
                    temperature=request.temperature,
                    response_modalities=modalities,
                )
                response = await self._call(client, model, contents, config)
                return self._parse(response, model)

            return await run_fallback_chain(
                RESPONSE_MODALITY_SHAPES,
                attempt_shape,
                retry_on=(ParameterRejected,),
                exhausted_message=f"Model {model} rejected every response modality shape",
                label=f"{model} response modalities",
            )

        return await run_fallback_chain(
            unique_candidates([request.model_variant, *IMAGE_FALLBACKS]),
            attempt_model,
            exhausted_message=(
                "All Gemini image generation models are unavailable. This might be "
                "due to regional restrictions."
            ),
            label="Gemini image model",
        )

    async def _call(
        self,
        client: Any,
        model: str,
        contents: Any,
        config: types.GenerateContentConfig,
    ) -> Any:
        try:
            return await client.aio.models.generate_content(
                model=model,
                contents=contents,
                config=config,
            )
        except errors.APIError as exc:
            logger.warning("Gemini %s error (%s): %s", model, exc.code, exc.message)
            raise classify_api_error(exc) from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"Gemini request failed: {exc}") from exc

    @staticmethod
    def _contents(prompt: str, images: list[str]) -> Any:
        if not images:
            return prompt
        contents: list[Any] = [prompt]
        for image in images:
            if image.startswith(("http://", "https://")):
                contents.append(types.Part.from_uri(file_uri=image, mime_type="image/png"))
                continue
            mime_type, data = split_data_url(image)
            contents.append(types.Part.from_bytes(data=data, mime_type=mime_type))
        return contents

    @staticmethod
    def _parse(response: Any, model: str) -> str:
        """
        Pull the result out of a generate_content response.

        An inline image wins over text; with neither present the raw
        response body goes through the text normalizer.
        """
        candidates = getattr(response, "candidates", None) or []
        if candidates:
            finish_reason = getattr(candidates[0], "finish_reason", None)
            if getattr(finish_reason, "name", finish_reason) == "SAFETY":
                raise SafetyBlocked("Content was blocked by Gemini safety filters")

            content = getattr(candidates[0], "content", None)
            parts = getattr(content, "parts", None) or []
            texts: list[str] = []
            for part in parts:
                inline = getattr(part, "inline_data", None)
                if inline is not None and getattr(inline, "data", None):
                    return encode_data_url(inline.data, inline.mime_type or "image/png")
                if getattr(part, "text", None):
                    texts.append(part.text)
            if texts:
                return "\n\n".join(texts)

        if hasattr(response, "model_dump"):
            text = extract_text(response.model_dump(mode="json", exclude_none=True))
            if text:
                return text

        logger.error("Gemini %s returned no usable content", model)
        raise ResponseUnparseable("No content in Gemini response")

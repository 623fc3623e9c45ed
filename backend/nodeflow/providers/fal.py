"""
fal.ai adapter for image (Nano Banana Pro) and image-to-video (Veo 2)
generation.

Each call first tries the synchronous endpoint. A 404/405 there means the
model is only served through the queue, so the request is resubmitted as a
two-phase job and polled until it finishes.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable

import httpx

from nodeflow.config import EngineConfig
from nodeflow.models.execution import ProviderRequest
from nodeflow.providers.base import (
    IMAGE_JOB,
    VIDEO_JOB,
    JobSpec,
    ProviderAdapter,
    poll_job,
    raise_for_provider_status,
)
from nodeflow.providers.errors import ConfigurationError, NetworkError, ResponseUnparseable

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_MODEL = "fal-ai/nano-banana-pro"
DEFAULT_VIDEO_MODEL = "fal-ai/veo2/image-to-video"
DEFAULT_ANIMATION_PROMPT = "Animate this image with natural motion"
QUEUE_FALLBACK_STATUSES = {404, 405}

_IMAGE_URL = re.compile(r"(https?://[^\s]+\.(jpg|jpeg|png|gif|webp|bmp))", re.IGNORECASE)


def is_video_model(model: str | None) -> bool:
    return bool(model) and ("veo" in model or "video" in model)


def image_result(data: dict[str, Any]) -> str:
    images = data.get("images")
    if isinstance(images, list) and images and isinstance(images[0], dict):
        if images[0].get("url"):
            return images[0]["url"]
    if data.get("url"):
        return data["url"]
    logger.error("Unexpected fal image response format: %s", data)
    raise ResponseUnparseable("No image URL returned from fal.ai")


def video_result(data: dict[str, Any]) -> str:
    video = data.get("video")
    if isinstance(video, dict) and video.get("url"):
        return video["url"]
    if data.get("url"):
        return data["url"]
    logger.error("Unexpected fal video response format: %s", data)
    raise ResponseUnparseable("No video URL returned from Veo2")


def resolve_video_inputs(request: ProviderRequest) -> tuple[str, str]:
    """
    Find the source image and the animation prompt for an image-to-video job.

    The image URL is taken from the prompt, then the system prompt, then the
    first attached image. Whatever text is left over becomes the animation
    prompt.

    Raises:
        ConfigurationError: If no image can be found
    """
    prompt = request.prompt.strip()
    system_prompt = (request.system_prompt or "").strip()
    image_url = ""
    animation = prompt

    match = _IMAGE_URL.search(prompt)
    if match:
        image_url = match.group(0)
        animation = _IMAGE_URL.sub("", prompt).strip()
    elif system_prompt and _IMAGE_URL.search(system_prompt):
        image_url = _IMAGE_URL.search(system_prompt).group(0)
        remainder = _IMAGE_URL.sub("", system_prompt).strip()
        animation = f"{remainder}\n\n{prompt}".strip()
        system_prompt = ""
    elif request.images:
        image_url = request.images[0]

    if not image_url:
        raise ConfigurationError(
            "Veo2 requires an image URL. Please provide an image URL in the prompt "
            "or system prompt (e.g., https://example.com/image.png)"
        )

    if system_prompt:
        animation = f"{system_prompt}\n\n{animation}".strip()
    return image_url, animation or DEFAULT_ANIMATION_PROMPT


class FalAdapter(ProviderAdapter):
    name = "fal.ai"

    def __init__(
        self,
        *,
        run_url: str | None = None,
        queue_url: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.run_url = (run_url or EngineConfig.FAL_RUN_URL).rstrip("/")
        self.queue_url = (queue_url or EngineConfig.FAL_QUEUE_URL).rstrip("/")

    async def invoke(self, request: ProviderRequest, api_key: str) -> str:
        if is_video_model(request.model_variant):
            model = request.model_variant or DEFAULT_VIDEO_MODEL
            image_url, animation = resolve_video_inputs(request)
            body = {
                "prompt": animation,
                "image_url": image_url,
                "aspect_ratio": "auto",
                "duration": "5s",
            }
            return await self._generate(model, body, api_key, VIDEO_JOB, video_result)

        model = request.model_variant or DEFAULT_IMAGE_MODEL
        prompt = request.prompt
        if request.system_prompt:
            prompt = f"{request.system_prompt}\n\n{prompt}"
        body = {
            "prompt": prompt,
            "num_images": 1,
            "aspect_ratio": "1:1",
            "output_format": "png",
            "resolution": "1K",
        }
        return await self._generate(model, body, api_key, IMAGE_JOB, image_result)

    async def _generate(
        self,
        model: str,
        body: dict[str, Any],
        api_key: str,
        spec: JobSpec,
        parse: Callable[[dict[str, Any]], str],
    ) -> str:
        headers = {"Content-Type": "application/json", "Authorization": f"Key {api_key}"}

        async with self.http_client() as client:
            response = await self.send(
                client, "POST", f"{self.run_url}/{model}", headers=headers, json=body
            )
            if response.status_code in QUEUE_FALLBACK_STATUSES:
                logger.info("fal direct endpoint returned %s for %s, using queue", response.status_code, model)
                data = await self._run_queued(client, model, body, headers, spec)
                return parse(data)

            raise_for_provider_status(response, provider=self.name)
            return parse(response.json())

    async def _run_queued(
        self,
        client: httpx.AsyncClient,
        model: str,
        body: dict[str, Any],
        headers: dict[str, str],
        spec: JobSpec,
    ) -> dict[str, Any]:
        submit = await self.send(
            client, "POST", f"{self.queue_url}/{model}", headers=headers, json=body
        )
        raise_for_provider_status(submit, provider=self.name)

        request_id = submit.json().get("request_id")
        if not request_id:
            raise ResponseUnparseable("No request_id returned from fal.ai")

        job_url = f"{self.queue_url}/{model}/requests/{request_id}"
        poll_headers = {"Authorization": headers["Authorization"]}
        try:
            return await poll_job(
                client,
                status_url=f"{job_url}/status",
                result_url=job_url,
                headers=poll_headers,
                spec=spec,
                provider=self.name,
                sleep=self._sleep,
            )
        except httpx.HTTPError as exc:
            raise NetworkError(f"{self.name} request failed: {exc}") from exc

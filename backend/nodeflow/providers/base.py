"""
Shared adapter machinery: failure classification, fallback chains and the
two-phase (submit/poll) job loop.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Iterable, Sequence, TypeVar

import httpx

from nodeflow.config import EngineConfig
from nodeflow.models.execution import ProviderRequest
from nodeflow.providers.errors import (
    FeatureRejected,
    JobFailed,
    JobTimeout,
    NetworkError,
    ParameterRejected,
    ProviderError,
    ProviderUnavailable,
    RateLimited,
    SafetyBlocked,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]


# ---------------------------------------------------------------------------
# Failure classification
# ---------------------------------------------------------------------------

_RATE_LIMIT_MARKERS = ("quota", "rate limit", "rate_limit", "resource_exhausted")
_UNAVAILABLE_MARKERS = (
    "not found",
    "not supported",
    "not available",
    "does not exist",
    "invalid model",
    "model_not_found",
)
_SAFETY_MARKERS = ("safety", "blocked")


def classify_http_failure(
    status_code: int | None,
    message: str,
    *,
    provider: str,
) -> ProviderError:
    """
    Turn a failed provider call into a typed ProviderError.

    Rate limits are checked before "not found" so a quota error that happens
    to mention a model is never retried.
    """
    lowered = message.lower()
    text = message or f"{provider} API error: {status_code}"

    if status_code == 429 or any(marker in lowered for marker in _RATE_LIMIT_MARKERS):
        return RateLimited(
            f"{provider} API rate limit exceeded: {text}", status_code=status_code
        )
    if "response modalities" in lowered:
        return ParameterRejected(text, status_code=status_code)
    if any(marker in lowered for marker in _UNAVAILABLE_MARKERS) or (
        status_code == 404 and not message.strip()
    ):
        return ProviderUnavailable(text, status_code=status_code)
    if any(marker in lowered for marker in _SAFETY_MARKERS):
        return SafetyBlocked(text, status_code=status_code)
    return NetworkError(text, status_code=status_code)


def extract_error_message(response: httpx.Response) -> str:
    """Best-effort error message from a provider error envelope."""
    raw = response.text or ""
    try:
        data = json.loads(raw) if raw else {}
    except ValueError:
        return raw[:500]

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        detail = data.get("detail")
        if isinstance(detail, dict) and isinstance(detail.get("message"), str):
            return detail["message"]
        if isinstance(detail, str):
            return detail
        if isinstance(error, str):
            return error
        if isinstance(data.get("message"), str):
            return data["message"]
    return raw[:500]


def raise_for_provider_status(response: httpx.Response, *, provider: str) -> None:
    if response.is_success:
        return
    message = extract_error_message(response)
    raise classify_http_failure(response.status_code, message, provider=provider)


# ---------------------------------------------------------------------------
# Fallback chains
# ---------------------------------------------------------------------------


class Outcome(str, Enum):
    SUCCESS = "success"
    RETRYABLE = "retryable"
    FATAL = "fatal"


@dataclass
class Attempt(Generic[T]):
    candidate: T
    outcome: Outcome
    value: str | None = None
    error: ProviderError | None = None


def unique_candidates(candidates: Iterable[T | None]) -> list[T]:
    """Drop empty and repeated candidates, keeping first-seen order."""
    seen: list[T] = []
    for candidate in candidates:
        if candidate is None or candidate == "" or candidate in seen:
            continue
        seen.append(candidate)
    return seen


async def attempt_candidate(
    candidate: T,
    call: Callable[[T], Awaitable[str]],
    retry_on: tuple[type[ProviderError], ...],
) -> Attempt[T]:
    try:
        value = await call(candidate)
    except ProviderError as exc:
        outcome = Outcome.RETRYABLE if isinstance(exc, retry_on) else Outcome.FATAL
        return Attempt(candidate=candidate, outcome=outcome, error=exc)
    return Attempt(candidate=candidate, outcome=Outcome.SUCCESS, value=value)


async def run_fallback_chain(
    candidates: Sequence[T],
    call: Callable[[T], Awaitable[str]],
    *,
    retry_on: tuple[type[ProviderError], ...] = (ProviderUnavailable,),
    exhausted_message: str,
    label: str = "candidate",
) -> str:
    """
    Try each candidate in order until one succeeds.

    Args:
        candidates: Ordered candidates (model names, parameter shapes, ...)
        call: Coroutine function performing one attempt
        retry_on: Error types that advance to the next candidate
        exhausted_message: Message used when no retryable error carried one
        label: Used in log lines

    Returns:
        The first successful result

    Raises:
        ProviderError: The first fatal error, or the last retryable one once
            every candidate has been tried
    """
    last_error: ProviderError | None = None
    for candidate in candidates:
        attempt = await attempt_candidate(candidate, call, retry_on)
        if attempt.outcome is Outcome.SUCCESS:
            return attempt.value or ""
        if attempt.outcome is Outcome.FATAL:
            raise attempt.error
        logger.warning(
            "%s %s unavailable, trying next option: %s",
            label,
            candidate,
            attempt.error,
        )
        last_error = attempt.error

    if last_error is not None and last_error.message:
        raise last_error
    raise ProviderUnavailable(exhausted_message)


async def retry_without_feature(
    call: Callable[[dict[str, Any]], Awaitable[T]],
    body: dict[str, Any],
    *,
    feature_keys: tuple[str, ...],
    label: str,
) -> T:
    """
    Send `body`; if the backend rejects the augmenting feature, send it once
    more with `feature_keys` removed.
    """
    try:
        return await call(body)
    except FeatureRejected as exc:
        logger.warning("%s rejected, retrying without it: %s", label, exc)
        stripped = {k: v for k, v in body.items() if k not in feature_keys}
        return await call(stripped)


# ---------------------------------------------------------------------------
# Media helpers
# ---------------------------------------------------------------------------


def to_data_url(payload: str, default_mime: str = "image/png") -> str:
    """Wrap a bare base64 payload as a data URL; data/http URLs pass through."""
    candidate = payload.strip()
    if candidate.startswith(("data:", "http://", "https://")):
        return candidate
    return f"data:{default_mime};base64,{candidate}"


def split_data_url(data_url: str, default_mime: str = "image/png") -> tuple[str, bytes]:
    """Decode a data URL (or bare base64) into (mime_type, raw bytes)."""
    mime_type = default_mime
    encoded = data_url.strip()
    if encoded.startswith("data:"):
        header, _, encoded = encoded.partition(",")
        declared = header[len("data:"):].split(";")[0]
        if declared:
            mime_type = declared
    return mime_type, base64.b64decode(encoded)


def encode_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('utf-8')}"


# ---------------------------------------------------------------------------
# Two-phase jobs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class JobSpec:
    poll_interval: float
    max_attempts: int

    @property
    def budget_seconds(self) -> int:
        return int(self.poll_interval * self.max_attempts)


IMAGE_JOB = JobSpec(poll_interval=1.0, max_attempts=60)
VIDEO_JOB = JobSpec(poll_interval=2.0, max_attempts=120)


async def poll_job(
    client: httpx.AsyncClient,
    *,
    status_url: str,
    result_url: str,
    headers: dict[str, str],
    spec: JobSpec,
    provider: str,
    sleep: Sleep = asyncio.sleep,
) -> dict[str, Any]:
    """
    Poll a submitted job until it completes, fails or runs out of attempts.

    Returns:
        The decoded result body of the completed job
    """
    for attempt in range(1, spec.max_attempts + 1):
        await sleep(spec.poll_interval)

        status_response = await client.get(status_url, headers=headers)
        if not status_response.is_success:
            message = extract_error_message(status_response)
            raise NetworkError(
                message or f"Failed to check status: {status_response.status_code}",
                status_code=status_response.status_code,
            )

        status_data = status_response.json()
        status = str(status_data.get("status") or "").upper()
        logger.debug("%s job poll %d/%d: %s", provider, attempt, spec.max_attempts, status)

        if status == "COMPLETED":
            result_response = await client.get(result_url, headers=headers)
            if not result_response.is_success:
                raise NetworkError(
                    f"Failed to get result: {result_response.status_code}",
                    status_code=result_response.status_code,
                )
            return result_response.json()
        if status == "FAILED":
            raise JobFailed(str(status_data.get("error") or "Request failed"))

    raise JobTimeout(f"Request timed out after {spec.budget_seconds} seconds")


# ---------------------------------------------------------------------------
# Adapter base class
# ---------------------------------------------------------------------------


class ProviderAdapter(ABC):
    """
    Base class for provider adapters.

    `transport` lets tests swap in an httpx.MockTransport; `sleep` lets them
    skip poll-loop waits.
    """

    name: str = "Provider"

    def __init__(
        self,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
        timeout: float | None = None,
    ):
        self._transport = transport
        self._sleep = sleep
        self._timeout = httpx.Timeout(
            timeout or EngineConfig.PROVIDER_TIMEOUT_SECONDS,
            connect=EngineConfig.PROVIDER_CONNECT_TIMEOUT_SECONDS,
        )

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def send(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Issue a request, mapping transport failures to NetworkError."""
        try:
            return await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise NetworkError(f"{self.name} request failed: {exc}") from exc

    @abstractmethod
    async def invoke(self, request: ProviderRequest, api_key: str) -> str:
        """Run one provider call, returning text or a data URL."""

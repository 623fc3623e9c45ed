"""
Provider error taxonomy.

Every adapter failure is raised as a ProviderError subclass. `retryable`
marks failures a fallback chain may move past; everything else stops the
chain and surfaces to the scheduler.
"""

from __future__ import annotations


class ProviderError(RuntimeError):
    """Base class for failures raised by provider adapters."""

    retryable: bool = False

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ConfigurationError(ProviderError):
    """Missing prompt, credential, URL or voice; unknown provider."""


class ProviderUnavailable(ProviderError):
    """The requested model is not found, unsupported or unavailable."""

    retryable = True


class ParameterRejected(ProviderUnavailable):
    """The model rejected one parameter shape (e.g. response modalities)."""


class FeatureRejected(ProviderError):
    """An augmenting feature (tool/plugin) was rejected by the backend."""


class RateLimited(ProviderError):
    """Quota or rate limit hit. Never retried."""


class SafetyBlocked(ProviderError):
    """Content was blocked by the provider's safety filters. Never retried."""


class ResponseUnparseable(ProviderError):
    """No plausible text or media could be found in the response body."""


class NetworkError(ProviderError):
    """Non-2xx HTTP response or transport failure."""


class JobFailed(ProviderError):
    """A submitted asynchronous job reported a terminal failure."""


class JobTimeout(ProviderError):
    """A submitted asynchronous job did not finish within its attempt cap."""

"""
Tests for provider dispatch and the standalone provider call.
"""

import pytest

import sys
from pathlib import Path

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from nodeflow.api.v1.ai import RunProviderRequest
from nodeflow.models.execution import ProviderRequest
from nodeflow.models.graph import AiNode, AiNodeData
from nodeflow.models.provider_registry import MODEL_VARIANTS, Provider, get_default_variant
from nodeflow.providers.base import ProviderAdapter
from nodeflow.providers.dispatch import ADAPTER_TYPES, build_request, dispatch, run_provider
from nodeflow.providers.errors import ConfigurationError, RateLimited
from nodeflow.services.execution_context import ExecutionContext


class StubAdapter(ProviderAdapter):
    name = "Stub"

    def __init__(self, reply="ok", error=None):
        super().__init__()
        self.reply = reply
        self.error = error
        self.requests = []

    async def invoke(self, request, api_key):
        self.requests.append((request, api_key))
        if self.error is not None:
            raise self.error
        return self.reply


def node(provider="openai", **data) -> AiNode:
    return AiNode(id="n1", data=AiNodeData(provider=provider, prompt_template="p", **data))


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestRegistry:
    def test_every_provider_has_an_adapter(self):
        assert set(ADAPTER_TYPES) == set(Provider)

    def test_every_provider_has_a_default_variant(self):
        for provider in Provider:
            assert MODEL_VARIANTS[provider]
            assert get_default_variant(provider) == MODEL_VARIANTS[provider][0].id

    def test_model_variant_fields_skip_protected_namespace(self):
        for model in (AiNodeData, ProviderRequest, RunProviderRequest):
            assert model.model_config["protected_namespaces"] == ()
        assert RunProviderRequest(provider="openai", subModel="gpt-4o").model_variant == "gpt-4o"


# ---------------------------------------------------------------------------
# build_request / dispatch
# ---------------------------------------------------------------------------


class TestDispatch:
    def test_request_uses_default_variant(self):
        request = build_request(node("gemini"), "hello")
        assert request.model_variant == "gemini-1.5-flash"
        assert request.max_tokens == 2048

    def test_request_keeps_node_settings(self):
        request = build_request(
            node("openai", model_variant="gpt-4o", system_prompt="Be brief", temperature=0.2, max_tokens=64),
            "hello",
        )
        assert request.model_variant == "gpt-4o"
        assert request.system_prompt == "Be brief"
        assert request.temperature == 0.2
        assert request.max_tokens == 64

    @pytest.mark.asyncio
    async def test_routes_to_provider_adapter(self):
        stub = StubAdapter(reply="data:image/png;base64,AAAA")
        context = ExecutionContext(credentials={"fal": "fal-key"}, adapters={Provider.FAL: stub})

        output = await dispatch(node("fal"), "draw a cat", context)

        assert output.kind == "image"
        assert output.value == "data:image/png;base64,AAAA"
        request, api_key = stub.requests[0]
        assert api_key == "fal-key"
        assert request.prompt == "draw a cat"
        assert request.model_variant == "fal-ai/nano-banana-pro"

    @pytest.mark.asyncio
    async def test_unknown_provider(self):
        with pytest.raises(ConfigurationError, match="Provider mystery is not yet supported"):
            await dispatch(node("mystery"), "x", ExecutionContext())

    @pytest.mark.asyncio
    async def test_missing_credential(self):
        context = ExecutionContext(credentials={"anthropic": "   "})
        with pytest.raises(ConfigurationError, match="No API key configured for anthropic"):
            await dispatch(node("anthropic"), "x", context)


# ---------------------------------------------------------------------------
# run_provider
# ---------------------------------------------------------------------------


class TestRunProvider:
    @pytest.mark.asyncio
    async def test_success(self):
        stub = StubAdapter(reply="hi")
        response = await run_provider(
            "anthropic", ProviderRequest(prompt="hello"), "key", {Provider.ANTHROPIC: stub}
        )
        assert response.success is True
        assert response.result == "hi"
        assert stub.requests[0][0].model_variant == "claude-3-5-sonnet-20241022"

    @pytest.mark.asyncio
    async def test_unknown_provider(self):
        response = await run_provider("mystery", ProviderRequest(prompt="x"), "key")
        assert response.success is False
        assert response.error == "Unknown provider: mystery"

    @pytest.mark.asyncio
    async def test_missing_key(self):
        response = await run_provider("openai", ProviderRequest(prompt="x"), None)
        assert response.error == "API key is required"

    @pytest.mark.asyncio
    async def test_missing_prompt(self):
        response = await run_provider("openai", ProviderRequest(prompt=""), "key")
        assert response.error == "Prompt is required"

    @pytest.mark.asyncio
    async def test_provider_error_is_returned(self):
        stub = StubAdapter(error=RateLimited("Slow down"))
        response = await run_provider("openai", ProviderRequest(prompt="x"), "key", {Provider.OPENAI: stub})
        assert response.success is False
        assert response.error == "Slow down"

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_returned(self):
        stub = StubAdapter(error=KeyError("choices"))
        response = await run_provider("openai", ProviderRequest(prompt="x"), "key", {Provider.OPENAI: stub})
        assert response.success is False
        assert response.error.startswith("KeyError")

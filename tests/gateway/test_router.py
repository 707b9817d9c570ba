"""Tests for CompletionRouter failover and provider selection."""

from types import MappingProxyType

import pytest
from fakes import FakeClient, FakeClientFactory, http_error, timeout_error

from better_prompt.gateway.circuit_breaker import CircuitBreakerRegistry
from better_prompt.gateway.errors import (
    ALL_FAILED_PROVIDER_TAG,
    EXPERIMENTAL_PROVIDER_TAG,
    AllProvidersFailedError,
    ConfigurationError,
    IneligibleModelError,
)
from better_prompt.gateway.experimental import ExperimentalAdapter, OutcomeRecordingStream
from better_prompt.gateway.router import CompletionRouter

MESSAGES = [{"role": "user", "content": "hello"}]
NVIDIA_CHUNKS = [
    {"id": "nv-1", "model": "llama-3", "choices": [{"index": 0, "delta": {"role": "assistant", "content": "Hi"}}]},
    {"id": "nv-1", "choices": [{"index": 0, "delta": {"content": " there"}, "finish_reason": "stop"}]},
]


def make_router(providers, clients, experimental=None):
    factory = FakeClientFactory(clients)
    return CompletionRouter(providers, factory, experimental), factory


class TestFailover:
    """Sequential failover across the provider chain."""

    async def test_first_provider_succeeds(self, provider_registry):
        deepseek = FakeClient("deepseek", completion={"id": "ds", "choices": []})
        router, factory = make_router(provider_registry, {"deepseek": deepseek})

        result = await router.route({"model": "deepseek-chat", "messages": MESSAGES})

        assert result.provider_id == "deepseek"
        assert result.completion == {"id": "ds", "choices": []}
        assert len(factory.created) == 1

    async def test_falls_through_to_third(self, provider_registry):
        clients = {
            "deepseek": FakeClient("deepseek", error=http_error(500)),
            "nvidia": FakeClient("nvidia", error=timeout_error()),
            "openrouter": FakeClient("openrouter", completion={"id": "or", "choices": []}),
        }
        router, factory = make_router(provider_registry, clients)

        result = await router.route({"model": "m", "messages": MESSAGES})

        assert result.provider_id == "openrouter"
        assert [p.id for p, _, _ in factory.created] == ["deepseek", "nvidia", "openrouter"]

    async def test_all_fail_surfaces_last_error(self, provider_registry):
        clients = {
            "deepseek": FakeClient("deepseek", error=http_error(500, "ds broke")),
            "nvidia": FakeClient("nvidia", error=timeout_error("nv timed out")),
            "openrouter": FakeClient("openrouter", error=http_error(429, "or rate limited")),
        }
        router, _ = make_router(provider_registry, clients)

        with pytest.raises(AllProvidersFailedError) as exc_info:
            await router.route({"model": "m", "messages": MESSAGES})

        error = exc_info.value
        assert error.message == "or rate limited"
        assert error.status_code == 429
        assert error.provider == ALL_FAILED_PROVIDER_TAG
        assert error.attempted == ["deepseek", "nvidia", "openrouter"]

    async def test_all_fail_without_status_is_500(self, provider_registry):
        clients = {pid: FakeClient(pid, error=timeout_error()) for pid in provider_registry}
        router, _ = make_router(provider_registry, clients)

        with pytest.raises(AllProvidersFailedError) as exc_info:
            await router.route({"model": "m", "messages": MESSAGES})

        assert exc_info.value.status_code == 500

    async def test_empty_registry(self):
        router, _ = make_router(MappingProxyType({}), {})

        with pytest.raises(ConfigurationError) as exc_info:
            await router.route({"model": "m", "messages": MESSAGES})

        assert exc_info.value.status_code == 500


class TestProviderSelection:
    """Model prefix, header override and model id forwarding."""

    async def test_prefix_pins_provider(self, provider_registry):
        router, factory = make_router(provider_registry, {})

        result = await router.route({"model": "openrouter:some/model", "messages": MESSAGES})

        assert result.provider_id == "openrouter"
        assert result.model == "some/model"
        assert factory.clients["openrouter"].sent[0]["model"] == "some/model"

    async def test_override_wins_over_prefix(self, provider_registry):
        router, _ = make_router(provider_registry, {})

        result = await router.route(
            {"model": "deepseek:chat", "messages": MESSAGES},
            provider_override=" OpenRouter ",
        )

        assert result.provider_id == "openrouter"

    async def test_provider_default_model_when_unnamed(self, provider_registry):
        router, factory = make_router(provider_registry, {})

        await router.route({"messages": MESSAGES})

        assert factory.clients["deepseek"].sent[0]["model"] == "deepseek-chat"

    async def test_extra_params_forwarded(self, provider_registry):
        router, factory = make_router(provider_registry, {})

        await router.route({"model": "m", "messages": MESSAGES, "temperature": 0.2, "max_tokens": 10})

        sent = factory.clients["deepseek"].sent[0]
        assert sent["temperature"] == 0.2
        assert sent["max_tokens"] == 10
        assert sent["messages"] == MESSAGES

    async def test_credential_passed_to_factory(self, provider_registry):
        router, factory = make_router(provider_registry, {})

        await router.route({"model": "m", "messages": MESSAGES}, credential="caller-key")

        assert factory.created[0][1] == "caller-key"


class TestStreaming:
    """Streaming callers and the fast-fail provider."""

    async def test_streaming_caller_gets_stream(self, provider_registry):
        router, factory = make_router(provider_registry, {"deepseek": FakeClient("deepseek", chunks=NVIDIA_CHUNKS)})

        result = await router.route({"model": "m", "messages": MESSAGES, "stream": True})

        assert result.is_stream
        assert [chunk async for chunk in result.stream] == NVIDIA_CHUNKS
        assert factory.clients["deepseek"].sent == []

    async def test_fast_fail_provider_streams_for_non_streaming_caller(self, provider_registry):
        nvidia = FakeClient("nvidia", chunks=NVIDIA_CHUNKS)
        router, _ = make_router(provider_registry, {"nvidia": nvidia})

        result = await router.route({"model": "nvidia:llama-3", "messages": MESSAGES})

        assert nvidia.sent == []
        assert len(nvidia.streamed) == 1
        assert not result.is_stream
        assert result.completion["choices"][0]["message"]["content"] == "Hi there"
        assert result.completion["choices"][0]["finish_reason"] == "stop"
        assert nvidia.streams[0].closed is True

    async def test_fast_fail_mid_stream_error_fails_over(self, provider_registry):
        clients = {
            "nvidia": FakeClient("nvidia", chunks=NVIDIA_CHUNKS[:1], stream_error=timeout_error()),
            "deepseek": FakeClient("deepseek", completion={"id": "ds", "choices": []}),
        }
        router, _ = make_router(provider_registry, clients)

        result = await router.route({"model": "nvidia:llama-3", "messages": MESSAGES})

        assert result.provider_id == "deepseek"


class TestExperimentalRoute:
    """Delegation to the experimental adapter."""

    async def test_delegates_without_failover(self, provider_registry, clock):
        factory = FakeClientFactory()
        breaker = CircuitBreakerRegistry(clock=clock)
        adapter = ExperimentalAdapter(factory, breaker, ["ep-1"])
        router = CompletionRouter(provider_registry, factory, adapter)

        with pytest.raises(IneligibleModelError):
            await router.route({"model": f"{EXPERIMENTAL_PROVIDER_TAG}:other", "messages": MESSAGES})

        assert factory.created == []

    async def test_experimental_stream(self, provider_registry, clock):
        factory = FakeClientFactory({EXPERIMENTAL_PROVIDER_TAG: FakeClient(EXPERIMENTAL_PROVIDER_TAG, chunks=NVIDIA_CHUNKS)})
        adapter = ExperimentalAdapter(factory, CircuitBreakerRegistry(clock=clock), ["ep-1"])
        router = CompletionRouter(provider_registry, factory, adapter)

        result = await router.route(
            {"model": f"{EXPERIMENTAL_PROVIDER_TAG}:ep-1", "messages": MESSAGES, "stream": True},
            credential="key",
        )

        assert result.provider_id == EXPERIMENTAL_PROVIDER_TAG
        assert isinstance(result.stream, OutcomeRecordingStream)

    async def test_experimental_via_override(self, provider_registry, clock):
        factory = FakeClientFactory()
        adapter = ExperimentalAdapter(factory, CircuitBreakerRegistry(clock=clock), ["ep-1"])
        router = CompletionRouter(provider_registry, factory, adapter)

        result = await router.route(
            {"model": "ep-1", "messages": MESSAGES},
            credential="key",
            provider_override=EXPERIMENTAL_PROVIDER_TAG,
        )

        assert result.provider_id == EXPERIMENTAL_PROVIDER_TAG
        assert [p.id for p, _, _ in factory.created] == [EXPERIMENTAL_PROVIDER_TAG]

    async def test_experimental_disabled(self, provider_registry):
        router, _ = make_router(provider_registry, {})

        with pytest.raises(ConfigurationError):
            await router.route({"model": f"{EXPERIMENTAL_PROVIDER_TAG}:ep-1", "messages": MESSAGES})

"""Pytest configuration and fixtures."""

from types import MappingProxyType

import pytest

from better_prompt.gateway.providers import ProviderConfig


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    """A fake clock for time-dependent tests."""
    return FakeClock()


@pytest.fixture
def provider_registry():
    """Three providers in failover order, the fast-fail one in the middle."""
    return MappingProxyType(
        {
            "deepseek": ProviderConfig(
                id="deepseek",
                base_url="https://api.deepseek.test/v1",
                api_key="sk-deepseek",
                default_model="deepseek-chat",
            ),
            "nvidia": ProviderConfig(
                id="nvidia",
                base_url="https://integrate.nvidia.test/v1",
                api_key="nv-key",
                default_model="llama-3",
            ),
            "openrouter": ProviderConfig(
                id="openrouter",
                base_url="https://openrouter.test/api/v1",
                api_key="or-key",
            ),
        }
    )


@pytest.fixture
def sse_body():
    """Build an upstream SSE body from JSON chunk strings."""

    def build(*chunks: str, done: bool = True) -> bytes:
        body = b"".join(f"data: {chunk}\n\n".encode() for chunk in chunks)
        if done:
            body += b"data: [DONE]\n\n"
        return body

    return build

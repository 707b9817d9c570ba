"""Resilient HTTP clients for upstream LLM APIs."""

from better_prompt.gateway.clients.llm_client import (
    ClientFactory,
    ErrorKind,
    UpstreamClient,
    UpstreamError,
    UpstreamStream,
)

__all__ = [
    "ClientFactory",
    "ErrorKind",
    "UpstreamClient",
    "UpstreamError",
    "UpstreamStream",
]

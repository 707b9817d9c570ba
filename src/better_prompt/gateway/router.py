"""Completion router: provider selection and ordered failover.

For each request the router:
  1. Parses ``model`` as ``provider:model`` (an explicit provider override
     wins over the prefix).
  2. Sends the reserved experimental route to the ExperimentalAdapter, with
     no fallback.
  3. Otherwise walks the failover chain one provider at a time until one
     succeeds. Any error moves on to the next provider; if all fail, the
     last error is surfaced as ``AllProvidersFailedError``.

Providers are never tried concurrently.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from better_prompt.gateway.clients.llm_client import ClientFactory, UpstreamStream
from better_prompt.gateway.errors import (
    EXPERIMENTAL_PROVIDER_TAG,
    AllProvidersFailedError,
    ConfigurationError,
)
from better_prompt.gateway.experimental import ExperimentalAdapter, OutcomeRecordingStream
from better_prompt.gateway.providers import (
    FAST_FAIL_PROVIDER_ID,
    ProviderConfig,
    build_failover_chain,
    parse_model_spec,
)
from better_prompt.gateway.transforms.sse import assemble_completion

logger = logging.getLogger(__name__)

# Fields the router sets itself; everything else is forwarded upstream as-is
_ROUTING_FIELDS = ("model", "messages", "stream")


@dataclass
class RouteResult:
    """Outcome of a successful route: a whole completion or a chunk stream."""

    provider_id: str
    model: str
    completion: dict[str, Any] | None = None
    stream: UpstreamStream | OutcomeRecordingStream | None = None

    @property
    def is_stream(self) -> bool:
        return self.stream is not None


class CompletionRouter:
    """Routes chat completion requests across configured providers."""

    def __init__(
        self,
        providers: Mapping[str, ProviderConfig],
        client_factory: ClientFactory,
        experimental: ExperimentalAdapter | None = None,
        *,
        experimental_route_id: str = EXPERIMENTAL_PROVIDER_TAG,
        fast_fail_provider_id: str = FAST_FAIL_PROVIDER_ID,
    ):
        self.providers = providers
        self.client_factory = client_factory
        self._experimental = experimental
        self.experimental_route_id = experimental_route_id
        self.fast_fail_provider_id = fast_fail_provider_id

    async def route(
        self,
        body: dict[str, Any],
        credential: str | None = None,
        provider_override: str | None = None,
        trace_id: str | None = None,
    ) -> RouteResult:
        """Serve one chat completion request.

        Args:
            body: Validated request body
            credential: Caller-supplied API key, used instead of provider keys
            provider_override: Explicit provider id (e.g. from a header)
            trace_id: Optional trace ID for log correlation

        Returns:
            RouteResult tagged with the provider that served it

        Raises:
            GatewayError: Experimental route failures (as-is), missing
                configuration, or every provider in the chain failing
        """
        spec = parse_model_spec(body.get("model"))
        provider_id = spec.provider_id
        if provider_override and provider_override.strip():
            provider_id = provider_override.strip().lower()

        messages = body.get("messages") or []
        wants_stream = body.get("stream") is True
        params = {k: v for k, v in body.items() if k not in _ROUTING_FIELDS}

        if provider_id == self.experimental_route_id:
            return await self._route_experimental(spec.model_id, messages, wants_stream, credential, trace_id, params)

        chain = build_failover_chain(self.providers, provider_id)
        if not chain:
            raise ConfigurationError(
                "LLM backend not configured. Set PROVIDERS and {PROVIDER}_BASE_URL, or LLM_BACKEND_URL."
            )

        logger.info(
            "[%s] Routing model=%s stream=%s chain=%s",
            trace_id,
            spec.model_id or "<default>",
            wants_stream,
            ",".join(p.id for p in chain),
        )

        last_error: Exception | None = None
        attempted: list[str] = []
        for provider in chain:
            attempted.append(provider.id)
            model_id = spec.model_id or provider.default_model or ""
            start = time.monotonic()
            try:
                result = await self._attempt(provider, model_id, messages, wants_stream, credential, trace_id, params)
            except Exception as e:
                last_error = e
                logger.warning(
                    "[%s] Provider %s (%s) failed in %dms: %s",
                    trace_id,
                    provider.id,
                    model_id,
                    int((time.monotonic() - start) * 1000),
                    e,
                )
                continue

            logger.info(
                "[%s] Served by %s (%s) in %dms",
                trace_id,
                provider.id,
                model_id,
                int((time.monotonic() - start) * 1000),
            )
            return result

        message = getattr(last_error, "message", None) or str(last_error)
        logger.error("[%s] All providers failed (%s). Last error: %s", trace_id, ",".join(attempted), message)
        raise AllProvidersFailedError(message, getattr(last_error, "status_code", None), attempted)

    async def _attempt(
        self,
        provider: ProviderConfig,
        model_id: str,
        messages: list[dict[str, Any]],
        wants_stream: bool,
        credential: str | None,
        trace_id: str | None,
        params: dict[str, Any],
    ) -> RouteResult:
        """Make one call to one provider."""
        client = self.client_factory.create(provider, credential)
        request_body = {**params, "model": model_id, "messages": messages}

        # The fast-fail provider always streams so a hang is detected quickly
        if provider.id == self.fast_fail_provider_id or wants_stream:
            stream = await client.open_stream(request_body, trace_id)
            if wants_stream:
                return RouteResult(provider_id=provider.id, model=model_id, stream=stream)
            return RouteResult(
                provider_id=provider.id,
                model=model_id,
                completion=await self._drain(stream, model_id),
            )

        completion = await client.send(request_body, trace_id)
        return RouteResult(provider_id=provider.id, model=model_id, completion=completion)

    @staticmethod
    async def _drain(stream: UpstreamStream, model_id: str) -> dict[str, Any]:
        """Read a whole stream and fold it into one completion object."""
        try:
            chunks = [chunk async for chunk in stream]
        finally:
            await stream.aclose()
        return assemble_completion(chunks, model_id)

    async def _route_experimental(
        self,
        model_id: str,
        messages: list[dict[str, Any]],
        wants_stream: bool,
        credential: str | None,
        trace_id: str | None,
        params: dict[str, Any],
    ) -> RouteResult:
        if self._experimental is None:
            raise ConfigurationError(
                "Experimental route is not enabled",
                provider=EXPERIMENTAL_PROVIDER_TAG,
            )

        result = await self._experimental.call(
            model_id,
            messages,
            stream=wants_stream,
            credential=credential,
            trace_id=trace_id,
            params=params,
        )
        if isinstance(result, OutcomeRecordingStream):
            return RouteResult(provider_id=self.experimental_route_id, model=model_id, stream=result)
        return RouteResult(provider_id=self.experimental_route_id, model=model_id, completion=result)

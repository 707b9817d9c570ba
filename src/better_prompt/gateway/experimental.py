"""Adapter for experimental models served by a single fixed upstream.

There is no failover on this route. Each call is gated by an allow-list, a
credential check and the model's circuit breaker; every admitted call
reports exactly one outcome back to the breaker.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any

from better_prompt.gateway.circuit_breaker import CircuitBreakerRegistry
from better_prompt.gateway.clients.llm_client import ClientFactory, UpstreamError, UpstreamStream
from better_prompt.gateway.errors import (
    EXPERIMENTAL_PROVIDER_TAG,
    CircuitOpenError,
    ExperimentalCallError,
    IneligibleModelError,
    MissingCredentialError,
)
from better_prompt.gateway.providers import ProviderConfig

logger = logging.getLogger(__name__)

EXPERIMENTAL_BASE_URL = "https://ark.cn-beijing.volces.com/api/v3"
EXPERIMENTAL_TIMEOUT = 120.0
DEFAULT_EXPERIMENTAL_MODELS = (
    "ep-m-20260104054639-v6dm6",
    "ep-m-20260104055910-gtzqr",
)


def parse_experimental_models(raw: str | None) -> tuple[str, ...]:
    """Parse the comma-separated allow-list, falling back to the defaults."""
    if not raw:
        return DEFAULT_EXPERIMENTAL_MODELS
    return tuple(m.strip() for m in raw.split(",") if m.strip())


class OutcomeRecordingStream:
    """Wraps an upstream stream and reports its outcome to the breaker once.

    Success is recorded only after the upstream stream is fully drained.
    A read error, or closing the stream before it finished (caller went
    away), records a failure. Whichever happens first wins.
    """

    def __init__(
        self,
        stream: UpstreamStream,
        model: str,
        breaker: CircuitBreakerRegistry,
    ):
        self._stream = stream
        self._model = model
        self._breaker = breaker
        self._recorded = False
        self._iterator = self._iterate()

    def __aiter__(self) -> OutcomeRecordingStream:
        return self

    async def __anext__(self) -> dict[str, Any]:
        return await self._iterator.__anext__()

    def _record(self, success: bool) -> None:
        if self._recorded:
            return
        self._recorded = True
        self._breaker.record_outcome(self._model, success)

    async def _iterate(self) -> AsyncIterator[dict[str, Any]]:
        try:
            async for chunk in self._stream:
                yield chunk
        except UpstreamError as e:
            self._record(False)
            raise ExperimentalCallError(e.message, e.status_code) from e
        except BaseException:
            self._record(False)
            raise
        self._record(True)

    async def aclose(self) -> None:
        """Close early; counts as a failure unless the stream completed."""
        try:
            await self._iterator.aclose()
            await self._stream.aclose()
        finally:
            self._record(False)


class ExperimentalAdapter:
    """Routes calls for allow-listed experimental models."""

    def __init__(
        self,
        client_factory: ClientFactory,
        breaker: CircuitBreakerRegistry,
        allowed_models: Sequence[str] = DEFAULT_EXPERIMENTAL_MODELS,
        *,
        base_url: str = EXPERIMENTAL_BASE_URL,
        timeout: float = EXPERIMENTAL_TIMEOUT,
        fallback_credential: str = "",
    ):
        self._client_factory = client_factory
        self._breaker = breaker
        self.allowed_models = frozenset(allowed_models)
        self._provider = ProviderConfig(id=EXPERIMENTAL_PROVIDER_TAG, base_url=base_url)
        self._timeout = timeout
        self._fallback_credential = fallback_credential

    def is_eligible(self, model: str) -> bool:
        return model in self.allowed_models

    async def call(
        self,
        model: str,
        messages: list[dict[str, Any]],
        stream: bool = False,
        credential: str | None = None,
        trace_id: str | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any] | OutcomeRecordingStream:
        """Call an experimental model.

        Checks run in order: allow-list, credential, breaker. A missing
        credential never reaches ``can_call``, so it cannot consume the
        half-open trial; against an open circuit it raises
        MissingCredentialError rather than CircuitOpenError.

        Args:
            model: Model id, must be on the allow-list
            messages: Chat messages
            stream: Whether to return a chunk stream
            credential: Caller-supplied API key (falls back to the configured one)
            trace_id: Optional trace ID for log correlation
            params: Extra completion parameters forwarded upstream

        Returns:
            The completion object, or an OutcomeRecordingStream of chunks

        Raises:
            IneligibleModelError: Model not on the allow-list
            MissingCredentialError: No credential available
            CircuitOpenError: Breaker is rejecting calls for this model
            ExperimentalCallError: The upstream call failed
        """
        if not self.is_eligible(model):
            raise IneligibleModelError(model)

        api_key = credential or self._fallback_credential
        if not api_key:
            raise MissingCredentialError()

        if not self._breaker.can_call(model):
            logger.warning("[%s] Experimental model %s is circuit-open", trace_id, model)
            raise CircuitOpenError(model)

        client = self._client_factory.create(self._provider, api_key, timeout=self._timeout)
        request_body = {**(params or {}), "model": model, "messages": messages}
        logger.info("[%s] Experimental call: model=%s, stream=%s", trace_id, model, stream)

        if stream:
            try:
                upstream = await client.open_stream(request_body, trace_id)
            except UpstreamError as e:
                self._breaker.record_outcome(model, False)
                logger.warning("[%s] Experimental stream failed to start: %s", trace_id, e)
                raise ExperimentalCallError(e.message, e.status_code) from e
            except BaseException:
                self._breaker.record_outcome(model, False)
                raise
            return OutcomeRecordingStream(upstream, model, self._breaker)

        try:
            result = await client.send(request_body, trace_id)
        except UpstreamError as e:
            self._breaker.record_outcome(model, False)
            logger.warning("[%s] Experimental call failed: %s", trace_id, e)
            raise ExperimentalCallError(e.message, e.status_code) from e
        except BaseException:
            self._breaker.record_outcome(model, False)
            raise

        self._breaker.record_outcome(model, True)
        return result

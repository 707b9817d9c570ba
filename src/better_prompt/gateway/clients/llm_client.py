"""Upstream client for OpenAI-compatible chat completion APIs.

Uses aiohttp with one shared ``ClientSession`` per server process; each
``UpstreamClient`` is a cheap binding of that session to one provider's
endpoint, credential and timeout.

There are no transport-level retries. Failover between providers is the
router's job, so every failure surfaces immediately as an ``UpstreamError``
tagged with an ``ErrorKind``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any

import aiohttp

from better_prompt.gateway.providers import FAST_FAIL_PROVIDER_ID, ProviderConfig
from better_prompt.gateway.transforms.sse import STREAM_DONE, parse_sse_line

logger = logging.getLogger(__name__)

PLACEHOLDER_API_KEY = "dummy"

# Timeouts (seconds)
FAST_FAIL_TIMEOUT = 15.0
DEFAULT_TIMEOUT = 180.0


class ErrorKind(Enum):
    """Closed set of upstream failure kinds."""

    TIMEOUT = auto()
    HTTP_STATUS = auto()
    CONNECTION_FAILED = auto()
    UNKNOWN = auto()


class UpstreamError(Exception):
    """Raised when an upstream call fails for any reason."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code
        self.response_body = response_body


def _extract_error_message(body: str) -> str:
    """Pull ``error.message`` out of an OpenAI-style error body if present."""
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        return body[:500]
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if data.get("message"):
            return str(data["message"])
    return body[:500]


def _translate(provider_id: str, timeout: float, exc: BaseException) -> UpstreamError:
    """Map a transport exception onto the tagged UpstreamError."""
    if isinstance(exc, UpstreamError):
        return exc
    if isinstance(exc, asyncio.TimeoutError):
        return UpstreamError(
            ErrorKind.TIMEOUT,
            f"Provider {provider_id} timed out after {timeout:.0f}s",
        )
    if isinstance(exc, aiohttp.ClientError):
        return UpstreamError(
            ErrorKind.CONNECTION_FAILED,
            f"Provider {provider_id} connection failed: {type(exc).__name__}: {exc}",
        )
    return UpstreamError(ErrorKind.UNKNOWN, f"Provider {provider_id} failed: {exc}")


class UpstreamStream:
    """Async iterator over the chunks of one upstream streaming response.

    Chunks are yielded in upstream order. Iteration stops at ``[DONE]`` or
    end of body. Errors while reading are raised as ``UpstreamError``.
    ``aclose()`` releases the connection early (e.g. caller disconnected).
    """

    def __init__(self, response: aiohttp.ClientResponse, provider_id: str, timeout: float):
        self._response = response
        self.provider_id = provider_id
        self._timeout = timeout
        self._iterator = self._iterate()
        self.closed = False

    def __aiter__(self) -> UpstreamStream:
        return self

    async def __anext__(self) -> dict[str, Any]:
        return await self._iterator.__anext__()

    async def _iterate(self) -> AsyncIterator[dict[str, Any]]:
        try:
            async for line in self._response.content:
                parsed = parse_sse_line(line.decode("utf-8").strip())
                if parsed is None:
                    continue
                if parsed is STREAM_DONE:
                    break
                yield parsed
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            raise _translate(self.provider_id, self._timeout, e) from e
        except UnicodeDecodeError as e:
            raise UpstreamError(
                ErrorKind.UNKNOWN,
                f"Provider {self.provider_id} sent an undecodable stream line: {e}",
            ) from e
        finally:
            self._release()

    def _release(self) -> None:
        if not self.closed:
            self.closed = True
            self._response.release()

    async def aclose(self) -> None:
        """Stop iterating and release the upstream connection."""
        await self._iterator.aclose()
        self._release()


@dataclass
class UpstreamClient:
    """Chat completion client bound to a single provider endpoint."""

    session: aiohttp.ClientSession
    provider_id: str
    base_url: str
    api_key: str
    timeout: float = DEFAULT_TIMEOUT

    @property
    def url(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _client_timeout(self) -> aiohttp.ClientTimeout:
        # Bounds connecting and each read gap, not the whole stream
        return aiohttp.ClientTimeout(total=None, sock_connect=self.timeout, sock_read=self.timeout)

    async def _status_error(self, response: aiohttp.ClientResponse) -> UpstreamError:
        try:
            body = await response.text()
        except aiohttp.ClientError:
            body = ""
        detail = _extract_error_message(body) if body else response.reason or ""
        return UpstreamError(
            ErrorKind.HTTP_STATUS,
            f"Provider {self.provider_id} returned {response.status}: {detail}",
            status_code=response.status,
            response_body=body,
        )

    async def send(self, request_body: dict[str, Any], trace_id: str | None = None) -> dict[str, Any]:
        """Non-streaming request.

        Args:
            request_body: OpenAI-format request body (stream is forced off)
            trace_id: Optional trace ID for log correlation

        Returns:
            The upstream completion object

        Raises:
            UpstreamError: On timeout, non-2xx status, connection failure or
                an undecodable body
        """
        request_body = {**request_body, "stream": False}
        logger.debug("[%s] POST %s (provider=%s, stream=False)", trace_id, self.url, self.provider_id)

        try:
            async with self.session.post(
                self.url,
                json=request_body,
                headers=self._headers(),
                timeout=self._client_timeout(),
            ) as response:
                if response.status // 100 != 2:
                    raise await self._status_error(response)
                data = await response.json(content_type=None)
        except UpstreamError:
            raise
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            raise _translate(self.provider_id, self.timeout, e) from e
        except ValueError as e:
            raise UpstreamError(
                ErrorKind.UNKNOWN,
                f"Provider {self.provider_id} returned an invalid body: {e}",
            ) from e

        if not isinstance(data, dict):
            raise UpstreamError(
                ErrorKind.UNKNOWN,
                f"Provider {self.provider_id} returned a non-object completion",
            )
        return data

    async def open_stream(
        self,
        request_body: dict[str, Any],
        trace_id: str | None = None,
    ) -> UpstreamStream:
        """Streaming request.

        Resolves once the upstream has answered with a 2xx status, so
        connection and status failures surface here rather than mid-stream.

        Args:
            request_body: OpenAI-format request body (stream is forced on)
            trace_id: Optional trace ID for log correlation

        Returns:
            UpstreamStream yielding chunk dicts

        Raises:
            UpstreamError: If the request could not be started
        """
        request_body = {**request_body, "stream": True}
        logger.debug("[%s] POST %s (provider=%s, stream=True)", trace_id, self.url, self.provider_id)

        try:
            response = await self.session.post(
                self.url,
                json=request_body,
                headers=self._headers(),
                timeout=self._client_timeout(),
            )
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            raise _translate(self.provider_id, self.timeout, e) from e

        if response.status // 100 != 2:
            try:
                error = await self._status_error(response)
            finally:
                response.release()
            raise error

        return UpstreamStream(response, self.provider_id, self.timeout)


@dataclass
class ClientFactory:
    """Creates UpstreamClients with the provider-specific timeout policy.

    The fast-fail provider gets a short timeout so the router can move on
    quickly; everything else gets a long one to tolerate slow generation.
    """

    session: aiohttp.ClientSession
    fast_fail_provider_id: str = FAST_FAIL_PROVIDER_ID
    fast_fail_timeout: float = FAST_FAIL_TIMEOUT
    default_timeout: float = DEFAULT_TIMEOUT

    def timeout_for(self, provider: ProviderConfig) -> float:
        if provider.id == self.fast_fail_provider_id:
            return self.fast_fail_timeout
        return self.default_timeout

    def create(
        self,
        provider: ProviderConfig,
        override_credential: str | None = None,
        timeout: float | None = None,
    ) -> UpstreamClient:
        """Bind a client to ``provider``.

        The credential is the non-empty override, else the provider's own
        key, else a placeholder that the upstream will reject.
        """
        api_key = override_credential or provider.api_key or PLACEHOLDER_API_KEY
        return UpstreamClient(
            session=self.session,
            provider_id=provider.id,
            base_url=provider.base_url,
            api_key=api_key,
            timeout=timeout if timeout is not None else self.timeout_for(provider),
        )

"""OpenAI-compatible chat completion gateway server.

Exposes ``/v1/chat/completions`` and routes each request through the
CompletionRouter: experimental models go to their dedicated adapter, all
other requests walk the provider failover chain.

Endpoints:
- POST    /v1/chat/completions  Chat completion (JSON or SSE stream)
- OPTIONS /v1/chat/completions  CORS preflight
- GET     /v1/models            Configured providers and models
- GET     /health               Status and experimental circuit states
- POST    /api/shutdown         Stop the server
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

import aiohttp
from aiohttp import web

from better_prompt.gateway.circuit_breaker import CircuitBreakerRegistry, CircuitState
from better_prompt.gateway.clients.llm_client import (
    DEFAULT_TIMEOUT,
    FAST_FAIL_TIMEOUT,
    ClientFactory,
    UpstreamError,
)
from better_prompt.gateway.errors import ERROR_TYPE_MAP, GatewayError
from better_prompt.gateway.experimental import (
    DEFAULT_EXPERIMENTAL_MODELS,
    EXPERIMENTAL_BASE_URL,
    EXPERIMENTAL_TIMEOUT,
    ExperimentalAdapter,
)
from better_prompt.gateway.providers import (
    FAST_FAIL_PROVIDER_ID,
    ProviderConfig,
    describe_providers,
)
from better_prompt.gateway.router import CompletionRouter, RouteResult
from better_prompt.gateway.tracing import RequestTracer
from better_prompt.gateway.transforms.sse import DONE_EVENT, format_error_event, format_sse_event
from better_prompt.gateway.transforms.validation import validate_request
from better_prompt.gateway.warmup import warmup_provider

logger = logging.getLogger(__name__)

PROVIDER_HEADER = "X-Provider-Id"
PLACEHOLDER_KEY_PREFIXES = ("dummy", "sk-placeholder")
LOCAL_ORIGINS = ("http://localhost:3000", "http://127.0.0.1:3000")


def extract_credential(authorization: str | None) -> str | None:
    """Return the bearer token unless it is missing or a known placeholder."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer ") :].strip()
    if not token or token.startswith(PLACEHOLDER_KEY_PREFIXES):
        return None
    return token


@dataclass
class GatewayConfig:
    """Configuration for the completion gateway server."""

    host: str = "127.0.0.1"
    port: int = 3000

    providers: Mapping[str, ProviderConfig] = field(default_factory=lambda: MappingProxyType({}))
    default_provider: str | None = None
    default_model: str | None = None

    # Timeouts (seconds)
    fast_fail_provider_id: str = FAST_FAIL_PROVIDER_ID
    fast_fail_timeout: float = FAST_FAIL_TIMEOUT
    default_timeout: float = DEFAULT_TIMEOUT

    # Experimental route
    experimental_models: tuple[str, ...] = DEFAULT_EXPERIMENTAL_MODELS
    experimental_base_url: str = EXPERIMENTAL_BASE_URL
    experimental_api_key: str = ""
    experimental_timeout: float = EXPERIMENTAL_TIMEOUT

    # Warm up the fast-fail provider at startup
    warmup: bool = False

    # CORS
    allowed_origin: str | None = None
    development: bool = False

    # Request limits
    max_body_size: int = 20 * 1024 * 1024  # 20MB

    # Debug: save raw requests/responses to files
    debug_dir: str | None = None


@dataclass
class CompletionsProxyServer:
    """HTTP front end for the CompletionRouter.

    Example:
        >>> config = GatewayConfig(providers=load_providers(os.environ))
        >>> server = CompletionsProxyServer(config=config)
        >>> await server.serve()
    """

    config: GatewayConfig
    breaker: CircuitBreakerRegistry = field(default_factory=CircuitBreakerRegistry)
    router: CompletionRouter | None = None
    _app: web.Application | None = None
    _runner: web.AppRunner | None = None
    _session: aiohttp.ClientSession | None = None
    _warmup_task: asyncio.Task | None = None
    _shutdown_event: asyncio.Event = field(default_factory=asyncio.Event)
    _tracer: RequestTracer = field(init=False)

    def __post_init__(self) -> None:
        """Initialize tracer with debug directory from config."""
        self._tracer = RequestTracer(debug_dir=self.config.debug_dir)

    def build_router(self, session: aiohttp.ClientSession) -> CompletionRouter:
        """Wire the client factory, experimental adapter and router."""
        factory = ClientFactory(
            session=session,
            fast_fail_provider_id=self.config.fast_fail_provider_id,
            fast_fail_timeout=self.config.fast_fail_timeout,
            default_timeout=self.config.default_timeout,
        )
        experimental = ExperimentalAdapter(
            factory,
            self.breaker,
            self.config.experimental_models,
            base_url=self.config.experimental_base_url,
            timeout=self.config.experimental_timeout,
            fallback_credential=self.config.experimental_api_key,
        )
        return CompletionRouter(
            self.config.providers,
            factory,
            experimental,
            fast_fail_provider_id=self.config.fast_fail_provider_id,
        )

    def build_app(self) -> web.Application:
        """Create the aiohttp application with all routes registered."""
        app = web.Application(client_max_size=self.config.max_body_size)
        app.router.add_post("/v1/chat/completions", self._handle_completions)
        app.router.add_route("OPTIONS", "/v1/chat/completions", self._handle_options)
        app.router.add_get("/v1/models", self._handle_models)
        app.router.add_get("/health", self._handle_health)
        app.router.add_post("/api/shutdown", self._handle_shutdown)
        return app

    async def start(self) -> str:
        """Start listening and return the server's base URL."""
        self._session = aiohttp.ClientSession()
        if self.router is None:
            self.router = self.build_router(self._session)

        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await site.start()

        port = self.config.port
        server = getattr(site, "_server", None)
        if server is not None and server.sockets:
            port = server.sockets[0].getsockname()[1]

        logger.info(
            "Completion gateway listening on %s:%s (providers: %s)",
            self.config.host,
            port,
            ", ".join(self.config.providers) or "none",
        )

        if self.config.warmup and self.config.fast_fail_provider_id in self.config.providers:
            self._warmup_task = asyncio.create_task(
                warmup_provider(
                    self.router.client_factory,
                    self.config.providers,
                    self.config.fast_fail_provider_id,
                )
            )

        return f"http://{self.config.host}:{port}"

    async def serve(self) -> None:
        """Start the server and block until shutdown is requested."""
        await self.start()
        await self._shutdown_event.wait()
        logger.info("Completion gateway shutdown requested")
        await self.stop()

    async def stop(self) -> None:
        """Stop the server and release the upstream session."""
        if self._warmup_task and not self._warmup_task.done():
            self._warmup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._warmup_task
        self._warmup_task = None
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        if self._session:
            await self._session.close()
            self._session = None

    async def _handle_completions(self, request: web.Request) -> web.StreamResponse:
        """Handle POST /v1/chat/completions - main gateway endpoint."""
        content_type = request.headers.get("Content-Type", "")
        if "application/json" not in content_type:
            return self._error_response(
                "invalid_request_error",
                f"Content-Type must be application/json, got: {content_type}",
                400,
            )

        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            return self._error_response("invalid_request_error", f"Invalid JSON: {e}", 400)

        validation_errors = validate_request(body)
        if validation_errors:
            return self._error_response("invalid_request_error", "; ".join(validation_errors), 400)

        trace_id = self._tracer.generate_trace_id(body)
        self._tracer.save_debug(trace_id, "1_request.json", body)
        logger.info(
            "[%s] Request: model=%s, messages=%d, stream=%s",
            trace_id,
            body.get("model"),
            len(body.get("messages", [])),
            body.get("stream", False),
        )

        if self.router is None:
            return self._error_response("api_error", "Router not initialized", 503)

        start_time = time.monotonic()
        try:
            result = await self.router.route(
                body,
                credential=extract_credential(request.headers.get("Authorization")),
                provider_override=request.headers.get(PROVIDER_HEADER),
                trace_id=trace_id,
            )
        except GatewayError as e:
            self._tracer.log_response(trace_id, e.status_code, time.monotonic() - start_time, e.provider, e.message)
            return web.json_response(e.to_dict(), status=e.status_code)
        except Exception as e:
            logger.exception("[%s] Unexpected error", trace_id)
            self._tracer.log_response(trace_id, 500, time.monotonic() - start_time, error=str(e))
            return self._error_response("proxy_error", str(e) or "Internal server error", 500)

        if result.is_stream:
            return await self._handle_streaming(request, result, trace_id, start_time)

        self._tracer.save_debug(trace_id, "2_response.json", result.completion)
        self._tracer.log_response(trace_id, 200, time.monotonic() - start_time, result.provider_id)
        return web.json_response(result.completion, headers={PROVIDER_HEADER: result.provider_id})

    async def _handle_streaming(
        self,
        request: web.Request,
        result: RouteResult,
        trace_id: str,
        start_time: float,
    ) -> web.StreamResponse:
        """Relay an upstream chunk stream as SSE, in upstream order."""
        stream = result.stream
        assert stream is not None

        response = web.StreamResponse(
            status=200,
            headers={
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                PROVIDER_HEADER: result.provider_id,
                "X-Trace-Id": trace_id,
            },
        )

        chunk_count = 0
        error: str | None = None
        try:
            await response.prepare(request)
            async for chunk in stream:
                await response.write(format_sse_event(chunk))
                chunk_count += 1
            await response.write(DONE_EVENT)
        except (ConnectionResetError, BrokenPipeError):
            # Client disconnected; closing the stream below aborts upstream
            logger.debug("[%s] Client disconnected during streaming", trace_id)
            error = "client disconnected"
        except GatewayError as e:
            logger.error("[%s] Stream failed: %s", trace_id, e)
            error = e.message
            await self._write_stream_error(response, e.to_dict())
        except UpstreamError as e:
            logger.error("[%s] Upstream stream failed: %s", trace_id, e)
            error = e.message
            await self._write_stream_error(
                response,
                {
                    "error": {
                        "message": e.message,
                        "type": ERROR_TYPE_MAP.get(e.status_code or 500, "api_error"),
                        "provider": result.provider_id,
                    }
                },
            )
        except Exception as e:
            logger.exception("[%s] Unexpected error while streaming", trace_id)
            error = str(e) or type(e).__name__
            await self._write_stream_error(
                response,
                {
                    "error": {
                        "message": f"Stream failed: {error}",
                        "type": "proxy_error",
                        "provider": result.provider_id,
                    }
                },
            )
        finally:
            await stream.aclose()

        self._tracer.log_response(
            trace_id, 200, time.monotonic() - start_time, result.provider_id, error
        )
        logger.debug("[%s] Relayed %d chunk(s)", trace_id, chunk_count)

        try:
            await response.write_eof()
        except (ConnectionResetError, BrokenPipeError):
            pass  # Client already disconnected

        return response

    async def _write_stream_error(self, response: web.StreamResponse, envelope: dict[str, Any]) -> None:
        try:
            await response.write(format_error_event(envelope))
        except (ConnectionResetError, BrokenPipeError):
            pass  # Client disconnected

    async def _handle_options(self, request: web.Request) -> web.Response:
        """Handle CORS preflight for the completions endpoint."""
        origin = request.headers.get("Origin", "")
        allowed = [o for o in (self.config.allowed_origin, *LOCAL_ORIGINS) if o]
        is_allowed = origin in allowed or self.config.development

        headers = {
            "Access-Control-Allow-Methods": "POST, OPTIONS",
            "Access-Control-Allow-Headers": f"Content-Type, Authorization, {PROVIDER_HEADER}",
        }
        if is_allowed and origin:
            headers["Access-Control-Allow-Origin"] = origin
        return web.Response(status=200, headers=headers)

    async def _handle_models(self, request: web.Request) -> web.Response:
        """Handle GET /v1/models."""
        return web.json_response(
            describe_providers(
                self.config.providers,
                self.config.default_provider,
                self.config.default_model,
            )
        )

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Handle GET /health."""
        circuits = self.breaker.snapshot_all()
        health: dict[str, Any] = {
            "status": "ok" if self.config.providers else "unconfigured",
            "providers": list(self.config.providers),
            "experimental": {model_id: snap.to_dict() for model_id, snap in circuits.items()},
        }
        if any(snap.state is CircuitState.OPEN for snap in circuits.values()):
            health["status"] = "degraded"
        return web.json_response(health)

    async def _handle_shutdown(self, request: web.Request) -> web.Response:
        """Handle POST /api/shutdown."""
        self._shutdown_event.set()
        return web.json_response({"success": True, "message": "Shutdown initiated"})

    def _error_response(self, error_type: str, message: str, status: int) -> web.Response:
        """Return an error envelope response."""
        return web.json_response({"error": {"message": message, "type": error_type}}, status=status)

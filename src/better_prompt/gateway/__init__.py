"""Better Prompt Gateway - completion routing for LLM requests.

Accepts OpenAI-compatible chat completion requests and forwards them to
upstream providers.

Components:
- Completions proxy: aiohttp server exposing /v1/chat/completions
- Router: provider selection and sequential failover
- Experimental adapter: fixed endpoint guarded by a circuit breaker
- Clients: HTTP clients for upstream APIs
- Transforms: request validation and SSE helpers

Usage (via compose.py convenience functions):
    from better_prompt.compose import create_gateway
    import asyncio

    asyncio.run(create_gateway(port=3000))

Usage (direct):
    from better_prompt.gateway.completions_proxy import GatewayConfig, CompletionsProxyServer
    from better_prompt.gateway.providers import load_providers
    import asyncio, os

    async def main():
        config = GatewayConfig(providers=load_providers(os.environ))
        server = CompletionsProxyServer(config=config)
        await server.serve()

    asyncio.run(main())
"""

from better_prompt.gateway.circuit_breaker import CircuitBreakerRegistry, CircuitState
from better_prompt.gateway.errors import ERROR_TYPE_MAP, GatewayError
from better_prompt.gateway.router import CompletionRouter, RouteResult
from better_prompt.gateway.tracing import RequestTracer

__all__ = [
    "ERROR_TYPE_MAP",
    "CircuitBreakerRegistry",
    "CircuitState",
    "CompletionRouter",
    "GatewayError",
    "RequestTracer",
    "RouteResult",
]

"""Better Prompt - OpenAI-compatible completion gateway.

Routes chat completion requests across a set of upstream providers with
ordered failover, plus a dedicated experimental route guarded by a
per-model circuit breaker.

Layers:
    gateway/    HTTP server, router, provider registry, upstream clients
    frontends/  User interfaces (CLI)
    compose     Configuration loading and convenience runners

Quick Start:
    >>> from better_prompt.compose import create_gateway
    >>> import asyncio
    >>> asyncio.run(create_gateway(port=3000))
"""

__version__ = "0.1.0"

__all__ = ["__version__"]

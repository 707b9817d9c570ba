"""Warm-up call for slow-starting providers.

The fast-fail provider is called with a short timeout during routing, so a
cold start there would always fail over. A single patient request at startup
gets it warm. Failures are logged and ignored.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from better_prompt.gateway.clients.llm_client import ClientFactory, UpstreamError
from better_prompt.gateway.providers import FAST_FAIL_PROVIDER_ID, ProviderConfig

logger = logging.getLogger(__name__)

WARMUP_PROMPT = "ping"
WARMUP_TIMEOUT = 120.0


async def warmup_provider(
    client_factory: ClientFactory,
    providers: Mapping[str, ProviderConfig],
    provider_id: str = FAST_FAIL_PROVIDER_ID,
    timeout: float = WARMUP_TIMEOUT,
) -> bool:
    """Send one non-streaming ``ping`` completion to ``provider_id``.

    Returns:
        True if the provider answered, False if it is not configured or failed.
    """
    provider = providers.get(provider_id)
    if provider is None:
        logger.info("[warmup] No %s provider configured", provider_id)
        return False

    logger.info("[warmup] Warming up %s (timeout %.0fs)", provider_id, timeout)
    client = client_factory.create(provider, timeout=timeout)
    try:
        await client.send(
            {
                "model": provider.default_model or "",
                "messages": [{"role": "user", "content": WARMUP_PROMPT}],
            },
            trace_id=f"warmup_{provider_id}",
        )
    except UpstreamError as e:
        logger.warning("[warmup] %s warm-up failed (ignored): %s", provider_id, e)
        return False

    logger.info("[warmup] %s warm-up succeeded", provider_id)
    return True

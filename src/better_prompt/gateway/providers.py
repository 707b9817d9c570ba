"""Provider registry and model-id parsing.

The registry is built once, before any request is routed, from a flat
configuration namespace::

    PROVIDERS=deepseek,nvidia
    DEEPSEEK_BASE_URL=https://api.deepseek.com/v1
    DEEPSEEK_API_KEY=sk-...
    DEEPSEEK_DEFAULT_MODEL=deepseek-chat
    DEEPSEEK_NAME=DeepSeek
    DEEPSEEK_MODELS=deepseek-chat:DeepSeek Chat,deepseek-reasoner:R1

Routing code only ever sees the typed, read-only mapping returned by
``load_providers``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

logger = logging.getLogger(__name__)

# Provider that gets the short timeout and is always called in streaming mode
FAST_FAIL_PROVIDER_ID = "nvidia"

LEGACY_PROVIDER_ID = "default"

_CHAT_COMPLETIONS_SUFFIX = "/chat/completions"


@dataclass(frozen=True)
class ModelInfo:
    """A model advertised by a provider."""

    id: str
    label: str


@dataclass(frozen=True)
class ProviderConfig:
    """Static configuration for one upstream provider."""

    id: str
    base_url: str
    api_key: str = ""
    default_model: str | None = None
    name: str = ""
    models: tuple[ModelInfo, ...] = ()

    @property
    def display_name(self) -> str:
        return self.name or self.id


@dataclass(frozen=True)
class ModelSpec:
    """Provider/model pair parsed from a requested model string."""

    provider_id: str | None
    model_id: str


def normalize_base_url(url: str) -> str:
    """Strip trailing slashes and a trailing ``/chat/completions``."""
    url = url.strip().rstrip("/")
    if url.endswith(_CHAT_COMPLETIONS_SUFFIX):
        url = url[: -len(_CHAT_COMPLETIONS_SUFFIX)].rstrip("/")
    return url


def parse_model_spec(model: str | None) -> ModelSpec:
    """Split ``"provider:model"`` into its parts.

    Only the first colon separates; ``"p:m:n"`` gives provider ``p`` and
    model ``m:n``. Without a colon the provider is ``None``.
    """
    model = model or ""
    if ":" not in model:
        return ModelSpec(provider_id=None, model_id=model)

    provider_id, model_id = model.split(":", 1)
    return ModelSpec(provider_id=provider_id.strip().lower() or None, model_id=model_id)


def parse_models_list(raw: str) -> tuple[ModelInfo, ...]:
    """Parse ``"id:Label,id2:Label 2"`` into ModelInfo entries."""
    models: list[ModelInfo] = []
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        model_id, _, label = entry.partition(":")
        model_id = model_id.strip() or entry
        models.append(ModelInfo(id=model_id, label=label.strip() or model_id))
    return tuple(models)


def _lookup(config: Mapping[str, str], provider_id: str, suffix: str) -> str:
    """Read ``{ID}_{SUFFIX}``, trying the id as written and upper-cased."""
    for key in (f"{provider_id}_{suffix}", f"{provider_id.upper()}_{suffix}"):
        value = config.get(key)
        if value:
            return value.strip()
    return ""


def load_providers(config: Mapping[str, str]) -> Mapping[str, ProviderConfig]:
    """Build the provider registry from a flat configuration mapping.

    A provider is included only when its base URL is set. Missing API keys
    and default models are tolerated. Keys are lowercase provider ids in the
    order listed by ``PROVIDERS``.

    When no provider is configured, the legacy ``LLM_BACKEND_URL`` /
    ``LLM_API_KEY`` pair defines a single provider with id ``default``.

    Returns:
        A read-only mapping of provider id to ProviderConfig.
    """
    providers: dict[str, ProviderConfig] = {}
    listed = [p.strip() for p in config.get("PROVIDERS", "").split(",") if p.strip()]

    for raw_id in listed:
        base_url = _lookup(config, raw_id, "BASE_URL")
        if not base_url:
            logger.debug("Skipping provider %s: no base URL configured", raw_id)
            continue

        provider_id = raw_id.lower()
        if provider_id in providers:
            continue

        providers[provider_id] = ProviderConfig(
            id=provider_id,
            base_url=normalize_base_url(base_url),
            api_key=_lookup(config, raw_id, "API_KEY"),
            default_model=_lookup(config, raw_id, "DEFAULT_MODEL") or None,
            name=_lookup(config, raw_id, "NAME"),
            models=parse_models_list(_lookup(config, raw_id, "MODELS")),
        )

    if not providers and config.get("LLM_BACKEND_URL"):
        legacy_models = parse_models_list(config.get("FREE_MODELS", ""))
        providers[LEGACY_PROVIDER_ID] = ProviderConfig(
            id=LEGACY_PROVIDER_ID,
            base_url=normalize_base_url(config["LLM_BACKEND_URL"]),
            api_key=config.get("LLM_API_KEY", "").strip(),
            default_model=config.get("DEFAULT_MODEL") or None,
            name="Default",
            models=legacy_models,
        )

    logger.info("Loaded %d provider(s): %s", len(providers), ", ".join(providers) or "none")
    return MappingProxyType(providers)


def build_failover_chain(
    providers: Mapping[str, ProviderConfig],
    requested: str | None = None,
) -> tuple[ProviderConfig, ...]:
    """Order providers for one request.

    A known requested provider is pinned first; the rest follow in registry
    order. Unknown or missing ids give the registry order unchanged.
    """
    chain: list[ProviderConfig] = []
    pinned = providers.get(requested.lower()) if requested else None
    if pinned is not None:
        chain.append(pinned)
    for provider in providers.values():
        if provider is not pinned:
            chain.append(provider)
    return tuple(chain)


def describe_providers(
    providers: Mapping[str, ProviderConfig],
    default_provider: str | None = None,
    default_model: str | None = None,
) -> dict[str, Any]:
    """Build the ``GET /v1/models`` listing.

    Each model appears once under its provider and once in the flat
    ``models`` list as ``provider:model``, the form the router accepts.
    """
    first = next(iter(providers.values()), None)
    default_provider = default_provider or (first.id if first else LEGACY_PROVIDER_ID)
    if not default_model and first is not None:
        default_model = first.default_model or (first.models[0].id if first.models else None)

    def provider_default(p: ProviderConfig) -> str:
        return p.default_model or (p.models[0].id if p.models else "")

    return {
        "providers": [
            {
                "id": p.id,
                "name": p.display_name,
                "isConfigured": bool(p.api_key),
                "defaultModel": provider_default(p),
                "models": [
                    {
                        "id": m.id,
                        "label": m.label,
                        "providerId": p.id,
                        "isDefault": m.id == provider_default(p),
                    }
                    for m in p.models
                ],
            }
            for p in providers.values()
        ],
        "defaultProvider": default_provider,
        "defaultModel": default_model or "",
        "models": [
            {
                "id": f"{p.id}:{m.id}",
                "label": f"{m.label} ({p.display_name})",
                "providerId": p.id,
                "modelId": m.id,
                "isDefault": p.id == default_provider and m.id == provider_default(p),
            }
            for p in providers.values()
            for m in p.models
        ],
    }

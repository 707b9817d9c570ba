"""Composition helpers for running the completion gateway.

Configuration is a flat key namespace (``PROVIDERS``, ``{ID}_BASE_URL`` ...)
resolved with priority: explicit argument > environment > YAML config file
> default. The YAML file is found via ``config_file`` or the
``BETTER_PROMPT_CONFIG`` environment variable.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from better_prompt.gateway.providers import load_providers

if TYPE_CHECKING:
    from better_prompt.gateway.completions_proxy import GatewayConfig

logger = logging.getLogger(__name__)

CONFIG_ENV_KEY = "BETTER_PROMPT_CONFIG"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _stringify(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def load_settings(
    config_file: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Merge the YAML config file (if any) with the environment.

    Args:
        config_file: Path to a YAML file of flat ``KEY: value`` pairs.
        environ: Environment mapping (defaults to ``os.environ``).

    Returns:
        Flat settings dict; environment values override file values.
    """
    environ = os.environ if environ is None else environ
    settings: dict[str, str] = {}

    config_path = config_file or environ.get(CONFIG_ENV_KEY)
    if config_path:
        try:
            file_config = yaml.safe_load(Path(config_path).read_text()) or {}
        except FileNotFoundError:
            logger.warning("Config file not found: %s", config_path)
            file_config = {}
        if not isinstance(file_config, dict):
            raise ValueError(f"Config file {config_path} must contain a mapping")
        settings.update({str(k): _stringify(v) for k, v in file_config.items() if v is not None})

    settings.update({k: v for k, v in environ.items() if v})
    return settings


def _is_true(value: str | None) -> bool:
    return (value or "").strip().lower() in _TRUE_VALUES


def build_gateway_config(
    settings: Mapping[str, str],
    host: str | None = None,
    port: int | None = None,
    warmup: bool | None = None,
    debug_dir: str | None = None,
) -> GatewayConfig:
    """Build a GatewayConfig from flat settings plus explicit overrides."""
    from better_prompt.gateway.completions_proxy import GatewayConfig
    from better_prompt.gateway.experimental import parse_experimental_models

    def get_value(arg: Any, key: str, default: str) -> str:
        if arg is not None:
            return str(arg)
        return settings.get(key) or default

    defaults = GatewayConfig()
    return GatewayConfig(
        host=get_value(host, "GATEWAY_HOST", defaults.host),
        port=int(get_value(port, "GATEWAY_PORT", str(defaults.port))),
        providers=load_providers(settings),
        default_provider=settings.get("DEFAULT_PROVIDER") or None,
        default_model=settings.get("DEFAULT_MODEL") or None,
        fast_fail_timeout=float(get_value(None, "FAST_FAIL_TIMEOUT", str(defaults.fast_fail_timeout))),
        default_timeout=float(get_value(None, "PROVIDER_TIMEOUT", str(defaults.default_timeout))),
        experimental_models=parse_experimental_models(settings.get("VOLCES_EXPERIMENTAL_MODELS")),
        experimental_api_key=settings.get("VOLCES_API_KEY", ""),
        warmup=warmup if warmup is not None else _is_true(settings.get("NVIDIA_WARMUP")),
        allowed_origin=settings.get("ALLOWED_ORIGIN") or None,
        development=settings.get("NODE_ENV") == "development" or _is_true(settings.get("GATEWAY_DEV")),
        debug_dir=debug_dir or settings.get("GATEWAY_DEBUG_DIR") or None,
    )


async def create_gateway(
    host: str | None = None,
    port: int | None = None,
    config_file: str | None = None,
    warmup: bool | None = None,
    debug_dir: str | None = None,
) -> None:
    """Create and run the completion gateway.

    This is a convenience function that blocks until stopped.

    Example:
        >>> # export PROVIDERS=deepseek,nvidia
        >>> # export DEEPSEEK_BASE_URL=https://api.deepseek.com/v1
        >>> # export DEEPSEEK_API_KEY=sk-...
        >>> await create_gateway(port=3000)
    """
    from better_prompt.gateway.completions_proxy import CompletionsProxyServer

    settings = load_settings(config_file)
    config = build_gateway_config(settings, host=host, port=port, warmup=warmup, debug_dir=debug_dir)
    if not config.providers:
        logger.warning("No providers configured; only the experimental route is available")

    server = CompletionsProxyServer(config=config)
    await server.serve()

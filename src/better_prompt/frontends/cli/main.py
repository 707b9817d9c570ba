"""CLI entry point."""

from __future__ import annotations

import asyncio
import logging
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def main() -> None:
    """Main entry point for the CLI."""
    import importlib.util

    if importlib.util.find_spec("rich_click") is None:
        print("CLI dependencies not installed. Run: pip install better-prompt")
        sys.exit(1)

    _run_cli()


def _configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
    # aiohttp access logs are noisy at INFO
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


def build_cli():
    """Build the CLI command group."""
    import rich_click as click

    # Configure rich-click styling
    click.rich_click.USE_RICH_MARKUP = True
    click.rich_click.USE_MARKDOWN = True
    click.rich_click.SHOW_ARGUMENTS = True
    click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
    click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
    click.rich_click.ERRORS_SUGGESTION = "Try running '--help' for more information."
    click.rich_click.ERRORS_EPILOGUE = ""
    click.rich_click.MAX_WIDTH = 100

    # =========================================================================
    # Root CLI
    # =========================================================================
    @click.group()
    @click.version_option(package_name="better-prompt")
    def cli():
        """Better Prompt - OpenAI-compatible completion gateway.

        Routes chat completions across upstream providers with failover.

        **Commands:**

            better-prompt serve       Run the gateway server

            better-prompt providers   Show the provider registry

            better-prompt warmup      Warm up a slow-starting provider
        """
        pass

    # =========================================================================
    # Commands
    # =========================================================================
    @cli.command()
    @click.option("--host", "-h", default=None, help="Host to bind (default: 127.0.0.1)")
    @click.option("--port", "-p", type=int, default=None, help="Port to listen on (default: 3000)")
    @click.option("--config", "-c", "config_file", default=None, help="YAML config file")
    @click.option("--warmup/--no-warmup", default=None, help="Warm up the fast-fail provider at startup")
    @click.option("--debug-dir", default=None, help="Save raw requests/responses to this directory")
    @click.option("--log-level", default="INFO", help="Logging level")
    def serve(
        host: str | None,
        port: int | None,
        config_file: str | None,
        warmup: bool | None,
        debug_dir: str | None,
        log_level: str,
    ):
        """Run the completion gateway.

        Providers are read from the environment and the optional YAML
        config file; environment values win.

        **Examples:**

            better-prompt serve

            better-prompt serve --port 8080 --config gateway.yaml

            better-prompt serve --warmup --debug-dir /tmp/gateway-debug
        """
        from better_prompt.compose import create_gateway

        _configure_logging(log_level)
        try:
            asyncio.run(
                create_gateway(
                    host=host,
                    port=port,
                    config_file=config_file,
                    warmup=warmup,
                    debug_dir=debug_dir,
                )
            )
        except KeyboardInterrupt:
            click.echo("\nGateway stopped")

    @cli.command()
    @click.option("--config", "-c", "config_file", default=None, help="YAML config file")
    @click.option("--json", "-j", "json_output", is_flag=True, help="Output as JSON")
    def providers(config_file: str | None, json_output: bool):
        """Show the configured provider registry.

        Lists providers in failover order with their base URL, default
        model and whether an API key is set.

        **Examples:**

            better-prompt providers

            better-prompt providers --json
        """
        import json

        from better_prompt.compose import build_gateway_config, load_settings
        from better_prompt.gateway.providers import describe_providers

        config = build_gateway_config(load_settings(config_file))

        if json_output:
            listing = describe_providers(config.providers, config.default_provider, config.default_model)
            click.echo(json.dumps(listing, indent=2))
            return

        if not config.providers:
            click.echo("No providers configured")
            return

        for index, provider in enumerate(config.providers.values(), start=1):
            key_status = "key set" if provider.api_key else "no key"
            click.echo(
                f"{index}. {provider.id} ({provider.display_name}) {provider.base_url} "
                f"default={provider.default_model or '-'} [{key_status}]"
            )

        click.echo(f"Experimental models: {', '.join(config.experimental_models) or 'none'}")

    @cli.command()
    @click.argument("provider_id", required=False, default=None)
    @click.option("--config", "-c", "config_file", default=None, help="YAML config file")
    @click.option("--timeout", "-t", type=float, default=None, help="Request timeout in seconds")
    def warmup(provider_id: str | None, config_file: str | None, timeout: float | None):
        """Send one warm-up request to a provider.

        Defaults to the fast-fail provider. Exits non-zero if the provider
        is not configured or did not answer.

        **Examples:**

            better-prompt warmup

            better-prompt warmup deepseek --timeout 30
        """
        from better_prompt.compose import build_gateway_config, load_settings

        _configure_logging("INFO")
        config = build_gateway_config(load_settings(config_file))
        target = (provider_id or config.fast_fail_provider_id).lower()

        ok = asyncio.run(_run_warmup(config, target, timeout))
        if ok:
            click.echo(f"{target}: warm")
        else:
            click.echo(f"{target}: warm-up failed", err=True)
            sys.exit(1)

    return cli


async def _run_warmup(config, provider_id: str, timeout: float | None) -> bool:
    import aiohttp

    from better_prompt.gateway.clients.llm_client import ClientFactory
    from better_prompt.gateway.warmup import WARMUP_TIMEOUT, warmup_provider

    async with aiohttp.ClientSession() as session:
        factory = ClientFactory(
            session=session,
            fast_fail_provider_id=config.fast_fail_provider_id,
            fast_fail_timeout=config.fast_fail_timeout,
            default_timeout=config.default_timeout,
        )
        return await warmup_provider(factory, config.providers, provider_id, timeout or WARMUP_TIMEOUT)


def _run_cli() -> None:
    """CLI definition and runner."""
    cli = build_cli()
    cli()


if __name__ == "__main__":
    main()

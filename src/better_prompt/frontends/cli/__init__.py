"""CLI frontend for the completion gateway.

Commands:
    better-prompt serve       Run the gateway server
    better-prompt providers   Show the configured provider registry
    better-prompt warmup      Send a warm-up request to a provider

Example:
    $ export PROVIDERS=deepseek,nvidia
    $ export DEEPSEEK_BASE_URL=https://api.deepseek.com/v1
    $ better-prompt serve --port 3000
"""

from better_prompt.frontends.cli.main import main

__all__ = ["main"]

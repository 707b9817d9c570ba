"""Tests for the better-prompt CLI."""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from better_prompt.frontends.cli.main import build_cli

PROVIDER_ENV = {
    "PROVIDERS": "deepseek,nvidia",
    "DEEPSEEK_BASE_URL": "https://ds.test/v1",
    "DEEPSEEK_API_KEY": "ds-key",
    "DEEPSEEK_MODELS": "deepseek-chat:DeepSeek Chat",
    "NVIDIA_BASE_URL": "https://nv.test/v1",
}


@pytest.fixture
def cli():
    return build_cli()


@pytest.fixture
def clean_env(monkeypatch):
    """Remove provider settings inherited from the host environment."""
    for key in ("PROVIDERS", "LLM_BACKEND_URL", "BETTER_PROMPT_CONFIG"):
        monkeypatch.delenv(key, raising=False)


class TestCLIStructure:
    """Tests for command registration."""

    def test_commands_registered(self, cli):
        """All top-level commands are defined."""
        assert set(cli.commands) >= {"serve", "providers", "warmup"}

    def test_serve_options(self, cli):
        """Serve exposes host, port, config and warmup options."""
        param_names = [p.name for p in cli.commands["serve"].params]
        assert {"host", "port", "config_file", "warmup", "debug_dir", "log_level"} <= set(param_names)

    def test_help(self, cli):
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "serve" in result.output


class TestProvidersCommand:
    """Tests for the providers command."""

    def test_lists_providers_in_order(self, cli, clean_env):
        result = CliRunner().invoke(cli, ["providers"], env=PROVIDER_ENV)

        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert lines[0].startswith("1. deepseek")
        assert "[key set]" in lines[0]
        assert lines[1].startswith("2. nvidia")
        assert "[no key]" in lines[1]

    def test_json_output(self, cli, clean_env):
        result = CliRunner().invoke(cli, ["providers", "--json"], env=PROVIDER_ENV)

        assert result.exit_code == 0
        listing = json.loads(result.output)
        assert [p["id"] for p in listing["providers"]] == ["deepseek", "nvidia"]
        assert listing["models"][0]["id"] == "deepseek:deepseek-chat"

    def test_no_providers(self, cli, clean_env):
        result = CliRunner().invoke(cli, ["providers"])

        assert result.exit_code == 0
        assert "No providers configured" in result.output

    def test_reads_config_file(self, cli, clean_env, tmp_path):
        path = tmp_path / "gateway.yaml"
        path.write_text("PROVIDERS: local\nLOCAL_BASE_URL: http://localhost:8000/v1\n")

        result = CliRunner().invoke(cli, ["providers", "--config", str(path)])

        assert result.exit_code == 0
        assert "1. local" in result.output


class TestWarmupCommand:
    """Tests for the warmup command."""

    def test_unconfigured_provider_fails(self, cli, clean_env):
        result = CliRunner().invoke(cli, ["warmup", "missing"], env=PROVIDER_ENV)

        assert result.exit_code == 1

"""Tests for the command-line interface."""

import logging
import os

import pytest
import structlog

from stampchain_mcp.cli import main, parse_args, print_tools, settings_from_args
from stampchain_mcp.mcp_server.server import MCPServerFactory


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Run each test away from any local .env and STAMPCHAIN_* variables."""
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("STAMPCHAIN_"):
            monkeypatch.delenv(name)
    yield
    structlog.reset_defaults()
    logging.getLogger().handlers.clear()


class TestParseArgs:
    """Tests for argument parsing."""

    def test_defaults(self):
        args = parse_args([])
        assert args.transport == "stdio"
        assert args.config is None
        assert args.list_tools is False

    def test_log_level_is_case_insensitive(self):
        assert parse_args(["--log-level", "DEBUG"]).log_level == "debug"

    def test_rejects_unknown_transport(self):
        with pytest.raises(SystemExit):
            parse_args(["--transport", "carrier-pigeon"])

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            parse_args(["--version"])
        assert exc_info.value.code == 0
        assert "stampchain-mcp 0.1.0" in capsys.readouterr().out


class TestSettingsFromArgs:
    """Tests for applying flags over loaded settings."""

    def test_flags_override(self):
        settings = settings_from_args(
            parse_args(["--api-url", "https://example.test/api", "--port", "9100"])
        )
        assert settings.api_base_url == "https://example.test/api"
        assert settings.http_port == 9100

    def test_debug(self):
        settings = settings_from_args(parse_args(["--debug"]))
        assert settings.is_development
        assert settings.log_level == "debug"

    def test_debug_keeps_explicit_level(self):
        settings = settings_from_args(parse_args(["--debug", "--log-level", "warning"]))
        assert settings.log_level == "warning"


class TestMain:
    """Tests for the entry point."""

    def test_list_tools(self, capsys):
        """Test that --list-tools prints every tool and exits cleanly."""
        assert main(["--list-tools"]) == 0
        out = capsys.readouterr().out
        assert "Bitcoin Stamps:" in out
        assert "get_stamp" in out
        assert "search_tokens" in out

    def test_invalid_configuration(self, capsys):
        assert main(["--api-url", "not-a-url"]) == 2
        assert "Error: STAMPCHAIN_API_URL must be an http(s) URL." in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_print_tools_groups_by_category(self, capsys, settings, routed_api):
        server = MCPServerFactory.create_server(settings, api_client=routed_api)
        print_tools(server)
        lines = capsys.readouterr().out.splitlines()
        assert lines[0] == "Bitcoin Stamps:"
        assert lines[1].split()[0] == "get_stamp"
        assert "SRC-20 Tokens:" in lines

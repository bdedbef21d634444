"""CLI entry point for the Stampchain MCP server.

Usage:
    stampchain-mcp
    stampchain-mcp --log-level debug --api-url https://stampchain.io/api/v2
    stampchain-mcp --transport http --port 8765
    stampchain-mcp --list-tools
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from contextlib import suppress
from pathlib import Path
from typing import Any

import structlog

from .config import SERVER_NAME, SERVER_VERSION, Settings, load_settings
from .core.logging import LOG_LEVELS, configure_logging
from .mcp_server.server import MCPServer, MCPServerFactory

logger = structlog.get_logger(__name__)


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        args: Optional list of arguments (uses sys.argv if None)

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog=SERVER_NAME,
        description="Model Context Protocol server for the Stampchain API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Serve MCP over stdio (for desktop agents and IDEs)
  stampchain-mcp

  # Serve MCP over HTTP
  stampchain-mcp --transport http --host 0.0.0.0 --port 8765

  # Print the registered tools and exit
  stampchain-mcp --list-tools

Configuration:
  Settings come from defaults, --config, STAMPCHAIN_* environment
  variables (a .env file is honoured) and finally these flags.
  Logs are written to stderr.
        """,
    )

    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        help="Path to a JSON configuration file",
    )

    parser.add_argument(
        "--log-level",
        type=str.lower,
        choices=LOG_LEVELS,
        help="Minimum log level (default: info)",
    )

    parser.add_argument(
        "--api-url",
        type=str,
        help="Stampchain API base URL",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Development mode: debug logging, error context and stack traces",
    )

    parser.add_argument(
        "--transport",
        choices=["stdio", "http"],
        default="stdio",
        help="Transport to serve on (default: stdio)",
    )

    parser.add_argument(
        "--host",
        type=str,
        help="HTTP bind address (with --transport http)",
    )

    parser.add_argument(
        "--port",
        type=int,
        help="HTTP port (with --transport http)",
    )

    parser.add_argument(
        "--list-tools",
        action="store_true",
        help="Print the available tools and exit",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {SERVER_VERSION}",
    )

    return parser.parse_args(args)


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Load settings with command-line flags applied last.

    Raises:
        ValueError: If the resulting configuration is invalid
    """
    overrides: dict[str, Any] = {
        "log_level": args.log_level,
        "api_base_url": args.api_url,
        "http_host": args.host,
        "http_port": args.port,
    }
    if args.debug:
        overrides["app_env"] = "development"
        overrides["log_level"] = args.log_level or "debug"
    return load_settings(config_file=args.config, overrides=overrides)


def print_tools(server: MCPServer) -> None:
    for category, names in server.registry.get_tools_by_category().items():
        print(f"{category}:")
        for name in names:
            tool = server.registry.get(name)
            print(f"  {name:<20} {tool.description}")


async def serve_stdio(server: MCPServer) -> None:
    """Serve stdio until EOF or SIGINT/SIGTERM, then shut down."""
    loop = asyncio.get_running_loop()
    await server.start()
    task = asyncio.create_task(server.run_stdio())

    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform (e.g. Windows)
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, task.cancel)

    try:
        await task
    except asyncio.CancelledError:
        logger.info("mcp_shutdown_signal_received")
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            with suppress(NotImplementedError):
                loop.remove_signal_handler(sig)
        await server.stop()


async def serve_http(server: MCPServer) -> None:
    """Serve HTTP with uvicorn; uvicorn handles SIGINT/SIGTERM."""
    import uvicorn

    from .mcp_server.routes import create_app

    app = create_app(server)
    config = uvicorn.Config(
        app,
        host=server.settings.http_host,
        port=server.settings.http_port,
        log_config=None,
    )
    await uvicorn.Server(config).serve()


async def run(args: argparse.Namespace, settings: Settings) -> int:
    """Run the server.

    Args:
        args: Parsed command-line arguments
        settings: Loaded settings

    Returns:
        Exit code (0 for success)
    """
    server = MCPServerFactory.create_server(settings)

    if args.list_tools:
        print_tools(server)
        await server.api_client.aclose()
        return 0

    logger.info(
        "mcp_server_launching",
        transport=args.transport,
        api_url=settings.api_base_url,
        environment=settings.app_env,
    )
    if args.transport == "http":
        await serve_http(server)
    else:
        await serve_stdio(server)
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point.

    Args:
        args: Optional list of arguments (uses sys.argv if None)

    Returns:
        Exit code
    """
    parsed = parse_args(args)
    try:
        settings = settings_from_args(parsed)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    configure_logging(settings.log_level, settings.log_json)
    return asyncio.run(run(parsed, settings))


if __name__ == "__main__":
    sys.exit(main())

"""Stampchain MCP server."""

from .config import SERVER_VERSION

__version__ = SERVER_VERSION

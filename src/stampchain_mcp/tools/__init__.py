"""Stampchain MCP tools.

Tools are grouped by category and built by factory functions that take an
optional default API client.
"""

from __future__ import annotations

from typing import Optional

import structlog

from ..api.client import StampchainClient
from ..mcp_server.registry import ToolRegistry
from ..mcp_server.types import ToolDescriptor
from .collections import CATEGORY as COLLECTIONS_CATEGORY
from .collections import create_collection_tools, register_collection_tools
from .market import CATEGORY as MARKET_CATEGORY
from .market import create_market_tools, register_market_tools
from .stamps import CATEGORY as STAMPS_CATEGORY
from .stamps import create_stamp_tools, register_stamp_tools
from .tokens import CATEGORY as TOKENS_CATEGORY
from .tokens import create_token_tools, register_token_tools

logger = structlog.get_logger(__name__)

TOOL_CATEGORIES: dict[str, list[str]] = {
    STAMPS_CATEGORY: ["get_stamp", "search_stamps", "get_recent_stamps"],
    MARKET_CATEGORY: ["get_recent_sales", "get_market_data", "get_stamp_market_data"],
    COLLECTIONS_CATEGORY: ["get_collection", "search_collections"],
    TOKENS_CATEGORY: ["get_token_info", "search_tokens"],
}


def create_all_tools(client: Optional[StampchainClient] = None) -> dict[str, list[ToolDescriptor]]:
    """Build every tool, keyed by category."""
    return {
        STAMPS_CATEGORY: create_stamp_tools(client),
        MARKET_CATEGORY: create_market_tools(client),
        COLLECTIONS_CATEGORY: create_collection_tools(client),
        TOKENS_CATEGORY: create_token_tools(client),
    }


def register_default_tools(
    registry: ToolRegistry,
    client: Optional[StampchainClient] = None,
) -> list[str]:
    """Register every Stampchain tool.

    Returns:
        List of registered tool names
    """
    registered = [
        *register_stamp_tools(registry, client),
        *register_market_tools(registry, client),
        *register_collection_tools(registry, client),
        *register_token_tools(registry, client),
    ]
    logger.info("default_tools_registered", count=len(registered))
    return registered


__all__ = [
    "TOOL_CATEGORIES",
    "create_all_tools",
    "register_default_tools",
    "register_stamp_tools",
    "register_market_tools",
    "register_collection_tools",
    "register_token_tools",
]

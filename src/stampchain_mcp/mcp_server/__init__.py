"""MCP Server for the Stampchain API.

This module provides a Model Context Protocol (MCP) server that exposes
Bitcoin Stamps, collection and SRC-20 lookups as tools for LLM agents
and IDEs.
"""

from .types import (
    MCP_PROTOCOL_VERSION,
    ToolContext,
    ToolDescriptor,
    ToolMetadata,
    ToolResult,
    MCPRequest,
    MCPResponse,
    MCPCapabilities,
)
from .events import EventEmitter, ServerEvent, SessionEvent
from .registry import RegistryConfig, ToolRegistry
from .sessions import SessionConfig, SessionManager, TransportKind
from .formatter import (
    FormatterConfig,
    ResponseFormatter,
    create_success_response,
    validate_mcp_response,
)
from .rate_limit import MCPRateLimiter
from .server import MCPServer, MCPServerFactory

__all__ = [
    # Types
    "MCP_PROTOCOL_VERSION",
    "ToolContext",
    "ToolDescriptor",
    "ToolMetadata",
    "ToolResult",
    "MCPRequest",
    "MCPResponse",
    "MCPCapabilities",
    # Events
    "EventEmitter",
    "ServerEvent",
    "SessionEvent",
    # Registry
    "RegistryConfig",
    "ToolRegistry",
    # Sessions
    "SessionConfig",
    "SessionManager",
    "TransportKind",
    # Formatting
    "FormatterConfig",
    "ResponseFormatter",
    "create_success_response",
    "validate_mcp_response",
    # Server
    "MCPRateLimiter",
    "MCPServer",
    "MCPServerFactory",
]

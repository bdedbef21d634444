"""SRC-20 token tools."""

from __future__ import annotations

from typing import Any, Literal, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field

from ..api.client import StampchainClient
from ..api.models import Token
from ..mcp_server.registry import ToolRegistry
from ..mcp_server.types import (
    ToolContext,
    ToolDescriptor,
    ToolMetadata,
    ToolResult,
    parse_arguments,
    schema_from_model,
)
from .common import format_list, resolve_client, text_and_json

logger = structlog.get_logger(__name__)

CATEGORY = "SRC-20 Tokens"

TICKER_PATTERN = r"^[A-Za-z0-9]+$"


class GetTokenInfoParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tick: str = Field(
        ...,
        min_length=1,
        max_length=10,
        pattern=TICKER_PATTERN,
        description="Token ticker symbol",
    )


class SearchTokensParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    query: Optional[str] = Field(default=None, max_length=100, description="Ticker search text")
    deployer: Optional[str] = Field(
        default=None, min_length=26, max_length=62, description="Deployer address"
    )
    sort_by: Literal["deploy_timestamp", "holders", "percent_minted"] = Field(
        default="deploy_timestamp", description="Sort field"
    )
    sort_order: Literal["ASC", "DESC"] = Field(default="DESC", description="Sort order")
    page: int = Field(default=1, ge=1, le=10000, description="Page number")
    page_size: int = Field(default=20, ge=1, le=100, description="Results per page")


def _token_line(token: Token) -> str:
    return f"{token.tick} max={token.max} lim={token.lim} deployed in block {token.block_index}"


def create_get_token_info_tool(client: Optional[StampchainClient] = None) -> ToolDescriptor:
    """Create the get_token_info tool."""

    async def execute(arguments: dict[str, Any], context: Optional[ToolContext]) -> ToolResult:
        params = parse_arguments(GetTokenInfoParams, arguments)
        api = resolve_client(client, context)
        token = await api.get_token(params.tick)

        lines = [
            f"Token: {token.tick}",
            f"Protocol: {token.p or 'SRC-20'}",
            f"Max supply: {token.max or 'unknown'}",
            f"Mint limit: {token.lim or 'unknown'}",
            f"Decimals: {token.deci if token.deci is not None else 'unknown'}",
            f"Deployer: {token.creator_name or token.creator or 'unknown'}",
            f"Deploy block: {token.block_index}",
        ]
        return text_and_json("\n".join(lines), token.model_dump())

    return ToolDescriptor(
        name="get_token_info",
        description="Retrieve deployment details for an SRC-20 token by ticker",
        input_schema=schema_from_model(GetTokenInfoParams),
        execute=execute,
        params_model=GetTokenInfoParams,
        metadata=ToolMetadata(
            tags=frozenset({"src20", "lookup"}),
            requires_network=True,
            api_dependencies=frozenset({"stampchain"}),
        ),
    )


def create_search_tokens_tool(client: Optional[StampchainClient] = None) -> ToolDescriptor:
    """Create the search_tokens tool."""

    async def execute(arguments: dict[str, Any], context: Optional[ToolContext]) -> ToolResult:
        params = parse_arguments(SearchTokensParams, arguments)
        api = resolve_client(client, context)
        page = await api.search_tokens(params.model_dump(exclude_none=True))

        summary = page.summary()
        text = format_list("SRC-20 tokens", [_token_line(t) for t in page.data], summary)
        payload = {
            "tokens": [t.model_dump() for t in page.data],
            "pagination": summary,
        }
        return text_and_json(text, payload, {"pagination": summary})

    return ToolDescriptor(
        name="search_tokens",
        description="Search SRC-20 tokens by ticker or deployer",
        input_schema=schema_from_model(SearchTokensParams),
        execute=execute,
        params_model=SearchTokensParams,
        metadata=ToolMetadata(
            tags=frozenset({"src20", "search"}),
            requires_network=True,
            api_dependencies=frozenset({"stampchain"}),
        ),
    )


def create_token_tools(client: Optional[StampchainClient] = None) -> list[ToolDescriptor]:
    return [
        create_get_token_info_tool(client),
        create_search_tokens_tool(client),
    ]


def register_token_tools(
    registry: ToolRegistry,
    client: Optional[StampchainClient] = None,
) -> list[str]:
    registered = [
        registry.register(tool, category=CATEGORY) for tool in create_token_tools(client)
    ]
    logger.info("token_tools_registered", tools=registered, count=len(registered))
    return registered

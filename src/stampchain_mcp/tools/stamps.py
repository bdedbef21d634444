"""Bitcoin Stamp tools."""

from __future__ import annotations

from typing import Any, Literal, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..api.client import StampchainClient
from ..api.models import Stamp
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

CATEGORY = "Bitcoin Stamps"


class GetStampParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    stamp_id: int = Field(..., gt=0, description="Stamp number to retrieve")
    include_base64: bool = Field(
        default=False, description="Include the stamp image as base64 content"
    )

    @field_validator("stamp_id", mode="before")
    @classmethod
    def _parse_numeric_string(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().isdigit():
            return int(value.strip())
        return value


class SearchStampsParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    query: Optional[str] = Field(default=None, max_length=100, description="Search text")
    creator: Optional[str] = Field(default=None, description="Creator address")
    collection_id: Optional[str] = Field(default=None, max_length=50, description="Collection ID")
    cpid: Optional[str] = Field(default=None, description="Counterparty asset ID")
    is_btc_stamp: Optional[bool] = Field(default=None, description="Only classic BTC stamps")
    is_cursed: Optional[bool] = Field(default=None, description="Only cursed stamps")
    sort_order: Literal["ASC", "DESC"] = Field(default="DESC", description="Sort order")
    page: int = Field(default=1, ge=1, description="Page number")
    page_size: int = Field(default=20, ge=1, le=100, description="Results per page")


class GetRecentStampsParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    limit: int = Field(default=20, ge=1, le=100, description="Number of stamps")


def _stamp_line(stamp: Stamp) -> str:
    creator = stamp.creator_name or stamp.creator
    return (
        f"#{stamp.stamp} {stamp.cpid} by {creator} "
        f"(block {stamp.block_index}, {stamp.stamp_mimetype or 'unknown type'})"
    )


def _stamp_text(stamp: Stamp) -> str:
    lines = [
        f"Stamp #{stamp.stamp}",
        f"CPID: {stamp.cpid}",
        f"Creator: {stamp.creator_name or stamp.creator}",
        f"Block: {stamp.block_index}",
        f"Type: {stamp.ident or 'unknown'} ({stamp.stamp_mimetype or 'unknown mimetype'})",
        f"Supply: {stamp.supply if stamp.supply is not None else 'unknown'}",
        f"Locked: {'yes' if stamp.locked else 'no'}",
        f"Transaction: {stamp.tx_hash}",
    ]
    if stamp.stamp_url:
        lines.append(f"URL: {stamp.stamp_url}")
    if stamp.floor_price is not None:
        lines.append(f"Floor price: {stamp.floor_price} BTC")
    return "\n".join(lines)


def create_get_stamp_tool(client: Optional[StampchainClient] = None) -> ToolDescriptor:
    """Create the get_stamp tool."""

    async def execute(arguments: dict[str, Any], context: Optional[ToolContext]) -> ToolResult:
        params = parse_arguments(GetStampParams, arguments)
        api = resolve_client(client, context)
        stamp = await api.get_stamp(params.stamp_id)

        payload = stamp.model_dump(by_alias=True, exclude={"stamp_base64"})
        result = text_and_json(_stamp_text(stamp), payload, {"stamp_id": stamp.stamp})

        mimetype = stamp.stamp_mimetype or ""
        if params.include_base64 and stamp.stamp_base64 and mimetype.startswith("image/"):
            result.content.append(
                {"type": "image", "data": stamp.stamp_base64, "mimeType": mimetype}
            )
        return result

    return ToolDescriptor(
        name="get_stamp",
        description="Retrieve detailed information about a specific Bitcoin stamp by its ID",
        input_schema=schema_from_model(GetStampParams),
        execute=execute,
        params_model=GetStampParams,
        metadata=ToolMetadata(
            tags=frozenset({"stamps", "lookup"}),
            requires_network=True,
            api_dependencies=frozenset({"stampchain"}),
        ),
    )


def create_search_stamps_tool(client: Optional[StampchainClient] = None) -> ToolDescriptor:
    """Create the search_stamps tool."""

    async def execute(arguments: dict[str, Any], context: Optional[ToolContext]) -> ToolResult:
        params = parse_arguments(SearchStampsParams, arguments)
        api = resolve_client(client, context)
        page = await api.search_stamps(params.model_dump(exclude_none=True))

        summary = page.summary()
        text = format_list("Stamps", [_stamp_line(s) for s in page.data], summary)
        payload = {
            "stamps": [s.model_dump(by_alias=True, exclude={"stamp_base64"}) for s in page.data],
            "pagination": summary,
        }
        return text_and_json(text, payload, {"pagination": summary})

    return ToolDescriptor(
        name="search_stamps",
        description="Search for Bitcoin stamps by creator, collection, asset ID and other filters",
        input_schema=schema_from_model(SearchStampsParams),
        execute=execute,
        params_model=SearchStampsParams,
        metadata=ToolMetadata(
            tags=frozenset({"stamps", "search"}),
            requires_network=True,
            api_dependencies=frozenset({"stampchain"}),
        ),
    )


def create_get_recent_stamps_tool(client: Optional[StampchainClient] = None) -> ToolDescriptor:
    """Create the get_recent_stamps tool."""

    async def execute(arguments: dict[str, Any], context: Optional[ToolContext]) -> ToolResult:
        params = parse_arguments(GetRecentStampsParams, arguments)
        api = resolve_client(client, context)
        page = await api.get_recent_stamps(params.limit)

        summary = page.summary()
        text = format_list("Recent stamps", [_stamp_line(s) for s in page.data], summary)
        payload = {
            "stamps": [s.model_dump(by_alias=True, exclude={"stamp_base64"}) for s in page.data],
            "pagination": summary,
        }
        return text_and_json(text, payload)

    return ToolDescriptor(
        name="get_recent_stamps",
        description="Retrieve the most recently created Bitcoin stamps",
        input_schema=schema_from_model(GetRecentStampsParams),
        execute=execute,
        params_model=GetRecentStampsParams,
        metadata=ToolMetadata(
            tags=frozenset({"stamps", "recent"}),
            requires_network=True,
            api_dependencies=frozenset({"stampchain"}),
        ),
    )


def create_stamp_tools(client: Optional[StampchainClient] = None) -> list[ToolDescriptor]:
    return [
        create_get_stamp_tool(client),
        create_search_stamps_tool(client),
        create_get_recent_stamps_tool(client),
    ]


def register_stamp_tools(
    registry: ToolRegistry,
    client: Optional[StampchainClient] = None,
) -> list[str]:
    """Register all stamp tools with the registry.

    Returns:
        List of registered tool names
    """
    registered = [
        registry.register(tool, category=CATEGORY) for tool in create_stamp_tools(client)
    ]
    logger.info("stamp_tools_registered", tools=registered, count=len(registered))
    return registered

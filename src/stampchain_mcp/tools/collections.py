"""Stamp collection tools."""

from __future__ import annotations

from typing import Any, Literal, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field

from ..api.client import StampchainClient
from ..api.models import Collection
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

CATEGORY = "Stamp Collections"


class GetCollectionParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    collection_id: str = Field(..., min_length=1, max_length=50, description="Collection ID")


class SearchCollectionsParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    query: Optional[str] = Field(default=None, max_length=100, description="Search text")
    creator: Optional[str] = Field(default=None, description="Creator address")
    sort_by: Literal["created_at", "stamp_count", "name"] = Field(
        default="created_at", description="Sort field"
    )
    sort_order: Literal["ASC", "DESC"] = Field(default="DESC", description="Sort order")
    page: int = Field(default=1, ge=1, description="Page number")
    page_size: int = Field(default=20, ge=1, le=100, description="Results per page")


def _collection_line(collection: Collection) -> str:
    return (
        f"{collection.collection_name or collection.collection_id} "
        f"({collection.stamp_count} stamps) id={collection.collection_id}"
    )


def create_get_collection_tool(client: Optional[StampchainClient] = None) -> ToolDescriptor:
    """Create the get_collection tool."""

    async def execute(arguments: dict[str, Any], context: Optional[ToolContext]) -> ToolResult:
        params = parse_arguments(GetCollectionParams, arguments)
        api = resolve_client(client, context)
        collection = await api.get_collection(params.collection_id)

        lines = [
            f"Collection: {collection.collection_name or collection.collection_id}",
            f"ID: {collection.collection_id}",
            f"Stamps: {collection.stamp_count}",
            f"Creators: {', '.join(collection.creators) or 'unknown'}",
        ]
        if collection.collection_description:
            lines.append(f"Description: {collection.collection_description}")
        return text_and_json("\n".join(lines), collection.model_dump())

    return ToolDescriptor(
        name="get_collection",
        description="Retrieve details about a stamp collection by its ID",
        input_schema=schema_from_model(GetCollectionParams),
        execute=execute,
        params_model=GetCollectionParams,
        metadata=ToolMetadata(
            tags=frozenset({"collections", "lookup"}),
            requires_network=True,
            api_dependencies=frozenset({"stampchain"}),
        ),
    )


def create_search_collections_tool(client: Optional[StampchainClient] = None) -> ToolDescriptor:
    """Create the search_collections tool."""

    async def execute(arguments: dict[str, Any], context: Optional[ToolContext]) -> ToolResult:
        params = parse_arguments(SearchCollectionsParams, arguments)
        api = resolve_client(client, context)
        page = await api.search_collections(params.model_dump(exclude_none=True))

        summary = page.summary()
        text = format_list("Collections", [_collection_line(c) for c in page.data], summary)
        payload = {
            "collections": [c.model_dump() for c in page.data],
            "pagination": summary,
        }
        return text_and_json(text, payload, {"pagination": summary})

    return ToolDescriptor(
        name="search_collections",
        description="Search stamp collections by name or creator",
        input_schema=schema_from_model(SearchCollectionsParams),
        execute=execute,
        params_model=SearchCollectionsParams,
        metadata=ToolMetadata(
            tags=frozenset({"collections", "search"}),
            requires_network=True,
            api_dependencies=frozenset({"stampchain"}),
        ),
    )


def create_collection_tools(client: Optional[StampchainClient] = None) -> list[ToolDescriptor]:
    return [
        create_get_collection_tool(client),
        create_search_collections_tool(client),
    ]


def register_collection_tools(
    registry: ToolRegistry,
    client: Optional[StampchainClient] = None,
) -> list[str]:
    registered = [
        registry.register(tool, category=CATEGORY) for tool in create_collection_tools(client)
    ]
    logger.info("collection_tools_registered", tools=registered, count=len(registered))
    return registered

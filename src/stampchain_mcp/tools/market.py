"""Stamp market tools: recent sales, floor prices and trading activity."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional

import structlog
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator

from ..api.client import StampchainClient
from ..api.models import MarketData, Sale, SalesMetadata
from ..mcp_server.registry import ToolRegistry
from ..mcp_server.types import (
    ToolContext,
    ToolDescriptor,
    ToolMetadata,
    ToolResult,
    parse_arguments,
    schema_from_model,
)
from .common import resolve_client, text_and_json

logger = structlog.get_logger(__name__)

CATEGORY = "Market Data"

ActivityLevel = Literal["HOT", "WARM", "COOL", "DORMANT", "COLD"]


def _numeric_string(value: Any) -> Any:
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return value


# Accepts numeric strings such as "12345"
StampId = Annotated[int, Field(gt=0), BeforeValidator(_numeric_string)]


class GetRecentSalesParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    stamp_id: Optional[StampId] = Field(default=None, description="Only sales of this stamp")
    dayRange: int = Field(default=30, ge=1, le=365, description="Days to look back")
    fullDetails: bool = Field(default=False, description="Include buyer and dispenser details")
    page: int = Field(default=1, ge=1, description="Page number")
    page_size: int = Field(default=20, ge=1, le=100, description="Results per page")
    sort_order: Literal["ASC", "DESC"] = Field(default="DESC", description="Sort order")


class GetMarketDataParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    stamp_id: Optional[StampId] = Field(default=None, description="Only this stamp")
    activity_level: Optional[ActivityLevel] = Field(
        default=None, description="Trading activity level"
    )
    min_floor_price: Optional[float] = Field(
        default=None, gt=0, description="Minimum floor price in BTC"
    )
    max_floor_price: Optional[float] = Field(
        default=None, gt=0, description="Maximum floor price in BTC"
    )
    include_volume_data: bool = Field(default=True, description="Include trading volumes")
    page: int = Field(default=1, ge=1, description="Page number")
    page_size: int = Field(default=20, ge=1, le=100, description="Results per page")

    @model_validator(mode="after")
    def _check_price_range(self) -> GetMarketDataParams:
        if (
            self.min_floor_price is not None
            and self.max_floor_price is not None
            and self.min_floor_price > self.max_floor_price
        ):
            raise ValueError("min_floor_price must not exceed max_floor_price")
        return self


class GetStampMarketDataParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    stamp_id: StampId = Field(..., description="Stamp to get market data for")


def _iso_time(value: int | float | str) -> str:
    """Render epoch seconds (or an already formatted string) as UTC ISO-8601."""
    if isinstance(value, str):
        return value
    return datetime.fromtimestamp(value, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _sales_text(
    sales: list[Sale],
    day_range: int,
    metadata: SalesMetadata,
    last_block: Optional[int],
) -> str:
    lines = [f"Recent Sales ({len(sales)} results, {day_range} days):", "---"]
    for index, sale in enumerate(sales, start=1):
        lines.append(f"{index}. Stamp #{sale.stamp_id}")
        lines.append(f"   Transaction: {sale.tx_hash}")
        lines.append(f"   Block: {sale.block_index}")
        lines.append(f"   Price: {sale.price_btc} BTC")
        if sale.price_usd:
            lines.append(f"   Price USD: ${sale.price_usd:.2f}")
        if sale.buyer_address:
            lines.append(f"   Buyer: {sale.buyer_address}")
        if sale.time_ago:
            lines.append(f"   Time: {sale.time_ago}")
        if sale.dispenser_address:
            lines.append(f"   Dispenser: {sale.dispenser_address}")
        lines.append("")

    lines.append("Metadata:")
    lines.append(f"- Day Range: {metadata.day_range or day_range} days")
    updated = metadata.last_updated
    if isinstance(updated, int):
        updated = _iso_time(updated / 1000)
    if updated is not None:
        lines.append(f"- Last Updated: {updated}")
    total = metadata.total if metadata.total is not None else len(sales)
    lines.append(f"- Total Results: {total}")
    lines.append(f"- Last Block: {last_block}")
    return "\n".join(lines)


def _volume_lines(data: MarketData, prefix: str, windows: tuple[str, ...]) -> list[str]:
    volumes = {
        "24h": data.volume_24h_btc,
        "7d": data.volume_7d_btc,
        "30d": data.volume_30d_btc,
    }
    return [
        f"{prefix}{window} Volume: {volumes[window]} BTC"
        for window in windows
        if volumes[window]
    ]


def _market_entry_lines(
    index: int, stamp_id: Optional[int], data: MarketData, include_volume: bool
) -> list[str]:
    title = f"Stamp #{stamp_id}" if stamp_id is not None else "Market Data Entry"
    lines = [f"{index}. {title}"]
    lines.append(f"   Floor Price: {data.floor_price_btc or 'N/A'} BTC")
    if data.floor_price_usd:
        lines.append(f"   Floor Price USD: ${data.floor_price_usd:.2f}")
    lines.append(f"   Activity Level: {data.activity_level}")
    if data.last_activity_time:
        lines.append(f"   Last Activity: {_iso_time(data.last_activity_time)}")
    if include_volume:
        lines.extend(_volume_lines(data, "   ", ("24h",)))
    if data.last_sale_tx_hash:
        lines.append(f"   Last Sale TX: {data.last_sale_tx_hash}")
    if data.last_sale_buyer_address:
        lines.append(f"   Last Buyer: {data.last_sale_buyer_address}")
    lines.append("")
    return lines


def _matches(data: MarketData, params: GetMarketDataParams) -> bool:
    if params.activity_level and data.activity_level != params.activity_level:
        return False
    floor = data.floor_price_btc
    if params.min_floor_price is not None and (floor is None or floor < params.min_floor_price):
        return False
    if params.max_floor_price is not None and (floor is None or floor > params.max_floor_price):
        return False
    return True


def _market_payload(data: MarketData, include_volume: bool) -> dict[str, Any]:
    exclude = set() if include_volume else {"volume_24h_btc", "volume_7d_btc", "volume_30d_btc"}
    return data.model_dump(by_alias=True, exclude=exclude)


def create_get_recent_sales_tool(client: Optional[StampchainClient] = None) -> ToolDescriptor:
    """Create the get_recent_sales tool."""

    async def execute(arguments: dict[str, Any], context: Optional[ToolContext]) -> ToolResult:
        params = parse_arguments(GetRecentSalesParams, arguments)
        api = resolve_client(client, context)
        sales = await api.get_recent_sales(params.model_dump(exclude_none=True))

        if not sales.data:
            return ToolResult.text("No recent sales found for the specified criteria")

        text = _sales_text(sales.data, params.dayRange, sales.metadata, sales.last_block)
        payload = {
            "sales": [sale.model_dump() for sale in sales.data],
            "metadata": sales.metadata.model_dump(by_alias=True),
            "last_block": sales.last_block,
        }
        return text_and_json(text, payload, {"day_range": params.dayRange})

    return ToolDescriptor(
        name="get_recent_sales",
        description="Retrieve recent stamp sales with transaction, price and buyer details",
        input_schema=schema_from_model(GetRecentSalesParams),
        execute=execute,
        params_model=GetRecentSalesParams,
        metadata=ToolMetadata(
            tags=frozenset({"stamps", "sales", "market"}),
            requires_network=True,
            api_dependencies=frozenset({"stampchain"}),
        ),
    )


def create_get_market_data_tool(client: Optional[StampchainClient] = None) -> ToolDescriptor:
    """Create the get_market_data tool.

    Entries are filtered on activity level and floor price after retrieval,
    so a page may hold fewer than ``page_size`` results.
    """

    async def execute(arguments: dict[str, Any], context: Optional[ToolContext]) -> ToolResult:
        params = parse_arguments(GetMarketDataParams, arguments)
        api = resolve_client(client, context)
        query: dict[str, Any] = {"page": params.page, "limit": params.page_size}
        if params.stamp_id is not None:
            query["stamp"] = params.stamp_id
        page = await api.get_market_data(query)

        entries = [
            (stamp.stamp, stamp.market_data)
            for stamp in page.data
            if stamp.market_data is not None and _matches(stamp.market_data, params)
        ]
        if not entries:
            return ToolResult.text("No market data found for the specified criteria")

        lines = [f"Market Data ({len(entries)} results):", "---"]
        for index, (stamp_id, data) in enumerate(entries, start=1):
            lines.extend(_market_entry_lines(index, stamp_id, data, params.include_volume_data))
        lines.append("Metadata:")
        lines.append(f"- Total Results: {page.total}")
        lines.append(f"- Page: {page.page}")
        lines.append(f"- Page Size: {page.limit}")
        lines.append(f"- Last Block: {page.last_block}")

        summary = page.summary()
        payload = {
            "market_data": [
                {"stamp": stamp_id, **_market_payload(data, params.include_volume_data)}
                for stamp_id, data in entries
            ],
            "pagination": summary,
        }
        return text_and_json("\n".join(lines), payload, {"pagination": summary})

    return ToolDescriptor(
        name="get_market_data",
        description="Retrieve floor prices, volumes and trading activity across stamps",
        input_schema=schema_from_model(GetMarketDataParams),
        execute=execute,
        params_model=GetMarketDataParams,
        metadata=ToolMetadata(
            tags=frozenset({"stamps", "market", "trading"}),
            requires_network=True,
            api_dependencies=frozenset({"stampchain"}),
        ),
    )


def create_get_stamp_market_data_tool(
    client: Optional[StampchainClient] = None,
) -> ToolDescriptor:
    """Create the get_stamp_market_data tool."""

    async def execute(arguments: dict[str, Any], context: Optional[ToolContext]) -> ToolResult:
        params = parse_arguments(GetStampMarketDataParams, arguments)
        api = resolve_client(client, context)
        data = await api.get_stamp_market_data(params.stamp_id)

        lines = [f"Market Data for Stamp #{params.stamp_id}:", "---"]
        lines.append(f"Floor Price: {data.floor_price_btc or 'N/A'} BTC")
        if data.floor_price_usd:
            lines.append(f"Floor Price USD: ${data.floor_price_usd:.2f}")
        lines.append(f"Activity Level: {data.activity_level}")
        if data.last_activity_time:
            lines.append(f"Last Activity: {_iso_time(data.last_activity_time)}")
        lines.extend(_volume_lines(data, "", ("24h", "7d", "30d")))

        if data.last_sale_tx_hash:
            lines.extend(["", "Last Sale Details:", f"- Transaction: {data.last_sale_tx_hash}"])
            if data.last_sale_buyer_address:
                lines.append(f"- Buyer: {data.last_sale_buyer_address}")
            if data.last_sale_dispenser_address:
                lines.append(f"- Dispenser: {data.last_sale_dispenser_address}")
            if data.last_sale_btc_amount:
                lines.append(f"- Amount: {data.last_sale_btc_amount} BTC")
            if data.last_sale_block_index:
                lines.append(f"- Block: {data.last_sale_block_index}")

        payload = {"stamp": params.stamp_id, **data.model_dump(by_alias=True)}
        return text_and_json("\n".join(lines), payload, {"stamp_id": params.stamp_id})

    return ToolDescriptor(
        name="get_stamp_market_data",
        description="Retrieve detailed market data for a specific stamp",
        input_schema=schema_from_model(GetStampMarketDataParams),
        execute=execute,
        params_model=GetStampMarketDataParams,
        metadata=ToolMetadata(
            tags=frozenset({"stamps", "market", "trading"}),
            requires_network=True,
            api_dependencies=frozenset({"stampchain"}),
        ),
    )


def create_market_tools(client: Optional[StampchainClient] = None) -> list[ToolDescriptor]:
    return [
        create_get_recent_sales_tool(client),
        create_get_market_data_tool(client),
        create_get_stamp_market_data_tool(client),
    ]


def register_market_tools(
    registry: ToolRegistry,
    client: Optional[StampchainClient] = None,
) -> list[str]:
    """Register all market tools with the registry.

    Returns:
        List of registered tool names
    """
    registered = [
        registry.register(tool, category=CATEGORY) for tool in create_market_tools(client)
    ]
    logger.info("market_tools_registered", tools=registered, count=len(registered))
    return registered

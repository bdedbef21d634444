"""Pydantic models for Stampchain API payloads.

Models accept unknown fields so upstream additions do not break parsing.
"""

from __future__ import annotations

from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

ItemT = TypeVar("ItemT")


class _APIModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class MarketData(_APIModel):
    """Market activity for one stamp."""

    cpid: Optional[str] = None
    floor_price_btc: Optional[float] = Field(default=None, alias="floorPriceBTC")
    floor_price_usd: Optional[float] = Field(default=None, alias="floorPriceUSD")
    recent_sale_price_btc: Optional[float] = Field(default=None, alias="recentSalePriceBTC")
    holder_count: Optional[int] = Field(default=None, alias="holderCount")
    volume_24h_btc: Optional[float] = Field(default=None, alias="volume24hBTC")
    volume_7d_btc: Optional[float] = Field(default=None, alias="volume7dBTC")
    volume_30d_btc: Optional[float] = Field(default=None, alias="volume30dBTC")
    activity_level: Optional[str] = Field(default=None, alias="activityLevel")
    # Epoch seconds
    last_activity_time: Optional[int] = Field(default=None, alias="lastActivityTime")
    last_sale_tx_hash: Optional[str] = Field(default=None, alias="lastSaleTxHash")
    last_sale_buyer_address: Optional[str] = Field(default=None, alias="lastSaleBuyerAddress")
    last_sale_dispenser_address: Optional[str] = Field(
        default=None, alias="lastSaleDispenserAddress"
    )
    last_sale_btc_amount: Optional[float] = Field(default=None, alias="lastSaleBtcAmount")
    last_sale_block_index: Optional[int] = Field(default=None, alias="lastSaleBlockIndex")


class Stamp(_APIModel):
    """A Bitcoin Stamp."""

    stamp: Optional[int] = None
    block_index: Optional[int] = None
    cpid: str = ""
    creator: str = ""
    creator_name: Optional[str] = None
    divisible: Optional[int] = None
    keyburn: Optional[int] = None
    locked: Optional[int] = None
    stamp_url: Optional[str] = None
    stamp_mimetype: Optional[str] = None
    supply: Optional[int] = None
    tx_hash: str = ""
    tx_index: Optional[int] = None
    ident: Optional[str] = None
    stamp_hash: Optional[str] = None
    file_hash: Optional[str] = None
    stamp_base64: Optional[str] = None
    floor_price: Optional[float] = Field(default=None, alias="floorPrice")
    floor_price_usd: Optional[float] = Field(default=None, alias="floorPriceUSD")
    market_cap_usd: Optional[float] = Field(default=None, alias="marketCapUSD")
    market_data: Optional[MarketData] = Field(default=None, alias="marketData")


class Collection(_APIModel):
    """A named group of stamps."""

    collection_id: str
    collection_name: str = ""
    collection_description: Optional[str] = None
    creators: list[str] = Field(default_factory=list)
    stamp_count: int = 0
    total_editions: Optional[int] = None
    stamps: list[int] = Field(default_factory=list)


class Token(_APIModel):
    """An SRC-20 token deployment."""

    tick: str
    tx_hash: Optional[str] = None
    block_index: Optional[int] = None
    p: Optional[str] = None
    op: Optional[str] = None
    creator: Optional[str] = None
    amt: Optional[float] = None
    deci: Optional[int] = None
    lim: Optional[str] = None
    max: Optional[str] = None
    destination: Optional[str] = None
    block_time: Optional[str] = None
    creator_name: Optional[str] = None
    destination_name: Optional[str] = None


class Page(_APIModel, Generic[ItemT]):
    """One page of a list endpoint."""

    data: list[ItemT] = Field(default_factory=list)
    last_block: Optional[int] = None
    page: int = 1
    limit: Optional[int] = None
    total_pages: Optional[int] = Field(default=None, alias="totalPages")
    total: Optional[int] = None

    def summary(self) -> dict[str, Any]:
        return {
            "page": self.page,
            "limit": self.limit,
            "total_pages": self.total_pages,
            "total": self.total,
            "returned": len(self.data),
        }


class Sale(_APIModel):
    """A completed stamp sale."""

    stamp_id: Optional[int] = None
    tx_hash: str = ""
    block_index: Optional[int] = None
    price_btc: Optional[float] = None
    price_usd: Optional[float] = None
    buyer_address: Optional[str] = None
    dispenser_address: Optional[str] = None
    time_ago: Optional[str] = None


class SalesMetadata(_APIModel):
    day_range: Optional[int] = Field(default=None, alias="dayRange")
    # Epoch milliseconds or an ISO timestamp
    last_updated: Optional[int | str] = Field(default=None, alias="lastUpdated")
    total: Optional[int] = None


class SalesPage(Page[Sale]):
    """A page of recent sales with the window it covers."""

    metadata: SalesMetadata = Field(default_factory=SalesMetadata)

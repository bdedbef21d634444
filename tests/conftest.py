"""pytest fixtures for the Stampchain MCP server tests."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

import httpx
import pytest
import pytest_asyncio
import structlog

from stampchain_mcp.api.client import StampchainClient
from stampchain_mcp.config import Settings
from stampchain_mcp.core.logging import configure_logging
from stampchain_mcp.mcp_server.types import (
    ToolDescriptor,
    ToolResult,
    create_tool_input_schema,
)

API_URL = "https://stampchain.test/api/v2"


@pytest.fixture(autouse=True)
def stderr_logging():
    """Keep log output off stdout, which the stdio transport owns."""
    configure_logging("warning")
    yield
    structlog.reset_defaults()
    logging.getLogger().handlers.clear()


async def echo_execute(arguments: dict[str, Any], context: Any) -> ToolResult:
    """Echo the message argument back."""
    return ToolResult.text(arguments.get("message", "hello"))


@pytest.fixture
def make_tool() -> Callable[..., ToolDescriptor]:
    """Factory for minimal tool descriptors."""

    def _make(
        name: str = "echo",
        execute: Optional[Callable[..., Any]] = None,
        description: str = "Echo tool for testing",
        **kwargs: Any,
    ) -> ToolDescriptor:
        return ToolDescriptor(
            name=name,
            description=description,
            input_schema=create_tool_input_schema(
                properties={"message": {"type": "string"}},
            ),
            execute=execute or echo_execute,
            **kwargs,
        )

    return _make


@pytest.fixture
def settings() -> Settings:
    """Settings tuned for fast tests."""
    return Settings(
        api_base_url=API_URL,
        api_retries=0,
        api_retry_delay_ms=0,
        request_timeout_ms=2_000,
        rate_limit_per_minute=1_000,
        shutdown_grace_seconds=0.2,
    )


@pytest.fixture
def stamp_payload() -> dict[str, Any]:
    """A stamp as returned by ``GET /stamps/{id}``."""
    return {
        "data": {
            "stamp": {
                "stamp": 12345,
                "block_index": 800000,
                "cpid": "A1234567890",
                "creator": "bc1qcreator000000000000000000000000000",
                "creator_name": "artist",
                "stamp_mimetype": "image/png",
                "stamp_url": "https://stampchain.io/stamps/abc.png",
                "supply": 1,
                "locked": 1,
                "tx_hash": "ab" * 32,
                "ident": "STAMP",
                "stamp_base64": "iVBORw0KGgo=",
                "floorPrice": 0.0015,
            }
        },
        "last_block": 850000,
    }


@pytest.fixture
def stamps_page_payload() -> dict[str, Any]:
    """A page of stamps as returned by ``GET /stamps``."""
    return {
        "data": [
            {"stamp": 2, "cpid": "A2", "creator": "bc1qa", "block_index": 801},
            {"stamp": 1, "cpid": "A1", "creator": "bc1qb", "block_index": 800},
        ],
        "page": 1,
        "limit": 2,
        "totalPages": 5,
        "total": 10,
        "last_block": 850000,
    }


@pytest.fixture
def mock_api() -> Callable[[Callable[[httpx.Request], httpx.Response]], StampchainClient]:
    """Build a StampchainClient backed by an httpx MockTransport."""

    def _build(handler: Callable[[httpx.Request], httpx.Response]) -> StampchainClient:
        return StampchainClient(
            base_url=API_URL,
            timeout_seconds=5,
            retries=2,
            retry_delay_ms=0,
            transport=httpx.MockTransport(handler),
        )

    return _build


@pytest_asyncio.fixture
async def routed_api(mock_api, stamp_payload, stamps_page_payload):
    """Client answering the stamp endpoints with fixture payloads."""

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/stamps/12345"):
            return httpx.Response(200, json=stamp_payload)
        if path.endswith("/stamps"):
            return httpx.Response(200, json=stamps_page_payload)
        return httpx.Response(404, json={"error": "not found"})

    client = mock_api(handler)
    yield client
    await client.aclose()


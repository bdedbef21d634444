"""Tests for the collection and SRC-20 token tools."""

import json

import httpx
import pytest

from stampchain_mcp.core.errors import ResourceNotFoundError, ValidationError
from stampchain_mcp.tools.collections import (
    create_get_collection_tool,
    create_search_collections_tool,
)
from stampchain_mcp.tools.tokens import create_get_token_info_tool, create_search_tokens_tool

COLLECTION = {
    "collection_id": "abc123",
    "collection_name": "Punks",
    "collection_description": "Classic punks",
    "creators": ["bc1qcreator"],
    "stamp_count": 3,
    "stamps": [1, 2, 3],
}

TOKEN = {
    "tick": "KEVIN",
    "p": "SRC-20",
    "max": "2100000",
    "lim": "1000",
    "deci": 18,
    "creator": "bc1qdeployer",
    "block_index": 790000,
}


class TestCollectionTools:
    """Tests for get_collection and search_collections."""

    @pytest.mark.asyncio
    async def test_get_collection(self, mock_api):
        """Test the collection summary."""
        seen = []

        def handler(request):
            seen.append(request.url.path)
            return httpx.Response(200, json={"data": COLLECTION})

        async with mock_api(handler) as client:
            result = await create_get_collection_tool(client).execute(
                {"collection_id": "abc123"}, None
            )

        assert seen == ["/api/v2/collections/abc123"]
        text = result.content[0]["text"]
        assert "Collection: Punks" in text
        assert "Stamps: 3" in text
        assert "Description: Classic punks" in text
        assert json.loads(result.content[1]["text"])["stamps"] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_get_collection_not_found(self, mock_api):
        async with mock_api(lambda request: httpx.Response(404)) as client:
            with pytest.raises(ResourceNotFoundError, match="Collection not found: gone"):
                await create_get_collection_tool(client).execute({"collection_id": "gone"}, None)

    @pytest.mark.asyncio
    async def test_get_collection_requires_id(self, routed_api):
        with pytest.raises(ValidationError, match="collection_id"):
            await create_get_collection_tool(routed_api).execute({"collection_id": ""}, None)

    @pytest.mark.asyncio
    async def test_search_collections(self, mock_api):
        seen = []

        def handler(request):
            seen.append(dict(request.url.params))
            return httpx.Response(200, json={"data": [COLLECTION], "total": 1})

        async with mock_api(handler) as client:
            result = await create_search_collections_tool(client).execute(
                {"sort_by": "stamp_count"}, None
            )

        assert seen[0]["sort_by"] == "stamp_count"
        assert "Punks (3 stamps) id=abc123" in result.content[0]["text"]
        assert result.meta["pagination"]["total"] == 1

    @pytest.mark.asyncio
    async def test_search_collections_rejects_sort_field(self, routed_api):
        with pytest.raises(ValidationError, match="sort_by"):
            await create_search_collections_tool(routed_api).execute({"sort_by": "price"}, None)


class TestTokenTools:
    """Tests for get_token_info and search_tokens."""

    @pytest.mark.asyncio
    async def test_get_token_info(self, mock_api):
        """Test the token deployment summary."""

        def handler(request):
            assert request.url.path == "/api/v2/src20/KEVIN"
            return httpx.Response(200, json={"data": TOKEN})

        async with mock_api(handler) as client:
            result = await create_get_token_info_tool(client).execute({"tick": "KEVIN"}, None)

        text = result.content[0]["text"]
        assert "Token: KEVIN" in text
        assert "Max supply: 2100000" in text
        assert "Decimals: 18" in text
        assert "Deployer: bc1qdeployer" in text

    @pytest.mark.parametrize("tick", ["", "TOO-LONG-TICK", "bad tick"])
    @pytest.mark.asyncio
    async def test_invalid_tick(self, routed_api, tick):
        with pytest.raises(ValidationError, match="tick"):
            await create_get_token_info_tool(routed_api).execute({"tick": tick}, None)

    @pytest.mark.asyncio
    async def test_search_tokens(self, mock_api):
        def handler(request):
            return httpx.Response(200, json={"data": [TOKEN], "page": 2, "total": 21})

        async with mock_api(handler) as client:
            result = await create_search_tokens_tool(client).execute({"page": 2}, None)

        text = result.content[0]["text"]
        assert text.startswith("SRC-20 tokens (page 2, 1 shown of 21)")
        assert "KEVIN max=2100000 lim=1000 deployed in block 790000" in text

    @pytest.mark.asyncio
    async def test_search_tokens_deployer_length(self, routed_api):
        with pytest.raises(ValidationError, match="deployer"):
            await create_search_tokens_tool(routed_api).execute({"deployer": "short"}, None)

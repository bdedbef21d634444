"""Tests for MCP protocol types."""

import json
from typing import Optional

import pytest
from pydantic import BaseModel, Field

from stampchain_mcp.core.errors import ToolNotFoundError, ValidationError
from stampchain_mcp.mcp_server.types import (
    MCPCapabilities,
    MCPRequest,
    MCPResponse,
    ToolResult,
    create_tool_input_schema,
    parse_arguments,
    schema_from_model,
)


class LimitParams(BaseModel):
    limit: int = Field(default=10, ge=1, le=100, description="Max results")
    query: Optional[str] = Field(default=None, description="Search text")


class TestToolResult:
    """Tests for ToolResult."""

    def test_text_result(self):
        """Test creating a text result."""
        result = ToolResult.text("hello")
        assert result.to_dict() == {
            "content": [{"type": "text", "text": "hello"}],
            "isError": False,
        }

    def test_json_result(self):
        """Test creating a JSON result."""
        result = ToolResult.json({"a": 1}, meta={"source": "test"})
        data = result.to_dict()
        assert json.loads(data["content"][0]["text"]) == {"a": 1}
        assert data["_meta"] == {"source": "test"}

    def test_multi_result(self):
        """Test a result with several items."""
        items = [
            {"type": "text", "text": "x"},
            {"type": "image", "data": "AAAA", "mimeType": "image/png"},
        ]
        assert ToolResult.multi(items).content == items


class TestRequestResponse:
    """Tests for JSON-RPC models."""

    def test_notification(self):
        """Test that a request without id is a notification."""
        assert MCPRequest(method="notifications/initialized").is_notification
        assert not MCPRequest(id=1, method="ping").is_notification

    def test_success_wire(self):
        """Test success serialization."""
        wire = MCPResponse.success(1, {"ok": True}).to_wire()
        assert wire == {"jsonrpc": "2.0", "id": 1, "result": {"ok": True}}

    def test_failure_wire_from_error(self):
        """Test failure serialization from an MCPError."""
        wire = MCPResponse.failure("a", ToolNotFoundError("x")).to_wire()
        assert wire["error"]["code"] == -32601
        assert "result" not in wire

    def test_capabilities_defaults(self):
        """Test default capabilities."""
        caps = MCPCapabilities()
        assert caps.tools == {"listChanged": True}
        assert caps.resources is None


class TestSchemas:
    """Tests for schema helpers."""

    def test_create_tool_input_schema(self):
        """Test building an input schema."""
        schema = create_tool_input_schema(
            properties={"q": {"type": "string"}},
            required=["q"],
        )
        assert schema == {
            "type": "object",
            "properties": {"q": {"type": "string"}},
            "additionalProperties": False,
            "required": ["q"],
        }

    def test_schema_from_model(self):
        """Test deriving a schema from a pydantic model."""
        schema = schema_from_model(LimitParams)
        assert schema["type"] == "object"
        assert schema["properties"]["limit"]["maximum"] == 100
        assert "title" not in schema["properties"]["limit"]
        assert "required" not in schema


class TestParseArguments:
    """Tests for parse_arguments."""

    def test_valid(self):
        """Test parsing valid arguments."""
        params = parse_arguments(LimitParams, {"limit": 5})
        assert params.limit == 5

    def test_invalid_lists_fields(self):
        """Test that validation failures name the field."""
        with pytest.raises(ValidationError, match="Invalid parameters: limit") as exc_info:
            parse_arguments(LimitParams, {"limit": 0})
        assert exc_info.value.data["field"] == "limit"
        assert exc_info.value.data["errors"][0]["field"] == "limit"

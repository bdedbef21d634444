"""MCP Server type definitions.

Defines the tool descriptor, the tool result envelope and the JSON-RPC
request/response models exchanged with MCP clients.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..core.errors import MCPError, ValidationError

if TYPE_CHECKING:
    from ..api.client import StampchainClient

MCP_PROTOCOL_VERSION = "2024-11-05"


class ContentType(str, Enum):
    """Content item kinds recognized in a tool result."""

    TEXT = "text"
    IMAGE = "image"
    RESOURCE = "resource"


@dataclass
class ToolContext:
    """Per-call context handed to tool implementations."""

    api_client: Optional[StampchainClient] = None
    logger: Any = None
    session_id: Optional[str] = None
    request_id: str | int | None = None


@dataclass
class ToolResult:
    """Envelope returned by a tool invocation."""

    content: list[dict[str, Any]]
    is_error: bool = False
    meta: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to MCP tool result format."""
        result: dict[str, Any] = {
            "content": self.content,
            "isError": self.is_error,
        }
        if self.meta:
            result["_meta"] = self.meta
        return result

    @classmethod
    def text(cls, text: str, meta: Optional[dict[str, Any]] = None) -> ToolResult:
        """Create a text result."""
        return cls(
            content=[{"type": ContentType.TEXT.value, "text": text}],
            meta=meta or {},
        )

    @classmethod
    def json(cls, data: Any, meta: Optional[dict[str, Any]] = None) -> ToolResult:
        """Create a JSON result (as text for MCP compatibility)."""
        return cls(
            content=[
                {
                    "type": ContentType.TEXT.value,
                    "text": json.dumps(data, indent=2, default=str),
                }
            ],
            meta=meta or {},
        )

    @classmethod
    def multi(cls, items: list[dict[str, Any]], meta: Optional[dict[str, Any]] = None) -> ToolResult:
        """Create a result from several content items."""
        return cls(content=list(items), meta=meta or {})


ToolHandler = Callable[[dict[str, Any], Optional[ToolContext]], Awaitable[ToolResult]]


@dataclass(frozen=True)
class ToolMetadata:
    """Descriptive metadata attached to a tool."""

    version: str = "1.0.0"
    tags: frozenset[str] = frozenset()
    requires_network: bool = False
    api_dependencies: frozenset[str] = frozenset()

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "tags": sorted(self.tags),
            "requires_network": self.requires_network,
            "api_dependencies": sorted(self.api_dependencies),
        }


@dataclass(frozen=True)
class ToolDescriptor:
    """Immutable description of a callable tool.

    Follows the MCP tool definition format with JSON Schema input validation.
    ``params_model`` is an optional pydantic model used to validate and
    coerce arguments before ``execute`` runs.
    """

    name: str
    description: str
    input_schema: dict[str, Any]
    execute: ToolHandler
    metadata: ToolMetadata = field(default_factory=ToolMetadata)
    params_model: Optional[type[BaseModel]] = None
    timeout_seconds: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to MCP tool listing format."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


class MCPRequest(BaseModel):
    """MCP JSON-RPC request."""

    model_config = ConfigDict(str_strip_whitespace=True)

    jsonrpc: str = Field(default="2.0", description="JSON-RPC version")
    id: str | int | None = Field(default=None, description="Request ID")
    method: str = Field(..., min_length=1, description="Method name")
    params: dict[str, Any] = Field(default_factory=dict, description="Method params")

    @property
    def is_notification(self) -> bool:
        """Requests without an id expect no response."""
        return self.id is None


class MCPResponse(BaseModel):
    """MCP JSON-RPC response."""

    model_config = ConfigDict(str_strip_whitespace=True)

    jsonrpc: str = Field(default="2.0", description="JSON-RPC version")
    id: str | int | None = Field(default=None, description="Request ID")
    result: Optional[dict[str, Any]] = Field(default=None, description="Result data")
    error: Optional[dict[str, Any]] = Field(default=None, description="Error data")

    @classmethod
    def success(
        cls,
        request_id: str | int | None,
        result: dict[str, Any],
    ) -> MCPResponse:
        """Create a success response."""
        return cls(id=request_id, result=result)

    @classmethod
    def failure(
        cls,
        request_id: str | int | None,
        error: MCPError | dict[str, Any],
    ) -> MCPResponse:
        """Create an error response."""
        payload = error.to_dict() if isinstance(error, MCPError) else error
        return cls(id=request_id, error=payload)

    def to_wire(self) -> dict[str, Any]:
        """Serialize with exactly one of ``result`` or ``error``."""
        payload: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            payload["error"] = self.error
        else:
            payload["result"] = self.result if self.result is not None else {}
        return payload


class MCPCapabilities(BaseModel):
    """MCP server capabilities declaration."""

    model_config = ConfigDict(str_strip_whitespace=True)

    tools: dict[str, Any] = Field(
        default_factory=lambda: {"listChanged": True},
        description="Tools capability",
    )
    resources: Optional[dict[str, Any]] = Field(
        default=None,
        description="Resources capability (not implemented)",
    )
    prompts: Optional[dict[str, Any]] = Field(
        default=None,
        description="Prompts capability (not implemented)",
    )
    logging: Optional[dict[str, Any]] = Field(
        default_factory=dict,
        description="Logging capability",
    )


class MCPServerInfo(BaseModel):
    """MCP server information."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., description="Server name")
    version: str = Field(..., description="Server version")


class MCPInitializeResult(BaseModel):
    """MCP initialize response result."""

    model_config = ConfigDict(str_strip_whitespace=True)

    protocolVersion: str = Field(default=MCP_PROTOCOL_VERSION, description="MCP protocol version")
    capabilities: MCPCapabilities = Field(
        default_factory=MCPCapabilities,
        description="Server capabilities",
    )
    serverInfo: MCPServerInfo = Field(..., description="Server information")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# Tool input schema helpers
def create_tool_input_schema(
    properties: dict[str, dict[str, Any]],
    required: Optional[list[str]] = None,
    additional_properties: bool = False,
) -> dict[str, Any]:
    """Create a JSON Schema for tool input validation.

    Args:
        properties: Property definitions
        required: List of required property names
        additional_properties: Whether to allow extra properties

    Returns:
        JSON Schema dict for tool input
    """
    schema: dict[str, Any] = {
        "type": "object",
        "properties": properties,
        "additionalProperties": additional_properties,
    }
    if required:
        schema["required"] = required
    return schema


def schema_from_model(model: type[BaseModel]) -> dict[str, Any]:
    """Derive a tool input schema from a pydantic parameters model."""
    schema = model.model_json_schema()
    properties = schema.get("properties", {})
    for prop in properties.values():
        prop.pop("title", None)
    return create_tool_input_schema(
        properties=properties,
        required=schema.get("required"),
        additional_properties=False,
    )


def parse_arguments(model: type[BaseModel], arguments: dict[str, Any]) -> BaseModel:
    """Validate tool arguments against a pydantic model.

    Raises:
        ValidationError: Listing every invalid field
    """
    try:
        return model.model_validate(arguments)
    except PydanticValidationError as e:
        errors = [
            {
                "field": ".".join(str(part) for part in err["loc"]) or "arguments",
                "message": err["msg"],
            }
            for err in e.errors()
        ]
        summary = "; ".join(f"{err['field']}: {err['message']}" for err in errors)
        raise ValidationError(
            f"Invalid parameters: {summary}",
            field=errors[0]["field"] if errors else None,
            data={"errors": errors},
        ) from e

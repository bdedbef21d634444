"""Helpers shared by the Stampchain tools."""

from __future__ import annotations

from typing import Any, Optional

from ..api.client import StampchainClient
from ..core.errors import InternalError
from ..mcp_server.types import ToolContext, ToolResult


def resolve_client(
    default: Optional[StampchainClient],
    context: Optional[ToolContext],
) -> StampchainClient:
    """Prefer the per-call client from the context over the tool's own.

    Raises:
        InternalError: If neither is available
    """
    if context is not None and context.api_client is not None:
        return context.api_client
    if default is not None:
        return default
    raise InternalError("No Stampchain API client configured")


def format_list(title: str, lines: list[str], summary: dict[str, Any]) -> str:
    header = f"{title} (page {summary.get('page')}, {summary.get('returned')} shown"
    if summary.get("total") is not None:
        header += f" of {summary['total']}"
    header += ")"
    if not lines:
        return f"{header}\n\nNo results."
    return header + "\n\n" + "\n".join(lines)


def text_and_json(text: str, data: Any, meta: Optional[dict[str, Any]] = None) -> ToolResult:
    """Human-readable summary followed by the raw JSON payload."""
    result = ToolResult.json(data, meta)
    result.content.insert(0, {"type": "text", "text": text})
    return result

"""Protocol-compliant response formatting.

Every failure is rendered twice from the same classification: as a
JSON-RPC fault for out-of-band signalling and as an in-band tool result
with ``isError`` set. Every envelope leaving the server is checked by
``validate_mcp_response``.
"""

from __future__ import annotations

import json
import traceback
from dataclasses import dataclass, field, replace
from typing import Any, Optional, Union

import structlog

from ..core.context import ErrorContext
from ..core.errors import (
    MCPError,
    ProtocolError,
    ProtocolErrorCode,
    ToolExecutionError,
    fault_code_for,
)
from .types import ContentType, ToolResult

logger = structlog.get_logger(__name__)

TRUNCATION_MARKER = "..."


@dataclass
class FormatterConfig:
    """Configuration for the response formatter.

    Attributes:
        include_context: Append tool/operation context to fault messages
        include_stack_trace: Append the traceback to fault messages
        max_message_length: Fault messages are truncated to this length
        auto_log: Log every formatted error
    """

    include_context: bool = False
    include_stack_trace: bool = False
    max_message_length: int = 1000
    auto_log: bool = True

    @classmethod
    def for_environment(cls, development: bool, **overrides: Any) -> FormatterConfig:
        config = cls(include_context=development, include_stack_trace=development)
        return replace(config, **overrides)


@dataclass(frozen=True)
class ProtocolFault:
    """JSON-RPC error object."""

    code: ProtocolErrorCode
    message: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"code": int(self.code), "message": self.message}
        if self.data:
            result["data"] = self.data
        return result


@dataclass(frozen=True)
class ErrorResponse:
    """Both renderings of one classified failure."""

    fault: ProtocolFault
    tool_result: ToolResult
    error: MCPError


def truncate_message(message: str, max_length: int) -> str:
    if len(message) <= max_length:
        return message
    keep = max(max_length - len(TRUNCATION_MARKER), 0)
    return message[:keep] + TRUNCATION_MARKER


class ResponseFormatter:
    """Builds MCP-compliant success and error envelopes."""

    def __init__(self, config: Optional[FormatterConfig] = None) -> None:
        self._config = config or FormatterConfig()

    @property
    def config(self) -> FormatterConfig:
        return replace(self._config)

    def update_config(self, **changes: Any) -> None:
        self._config = replace(self._config, **changes)

    def create_error_response(self, error: Any, context: ErrorContext) -> ErrorResponse:
        """Classify ``error`` and render it as a fault and a tool result.

        Args:
            error: Any raised value, ``MCPError`` or not
            context: Where the failure happened

        Returns:
            ErrorResponse carrying the protocol fault and the error envelope
        """
        if context is None:
            raise TypeError("create_error_response requires an ErrorContext")

        classified = self._normalize(error, context)
        code = fault_code_for(classified.kind)
        message = self._format_message(classified, context)

        fault = ProtocolFault(code=code, message=message, data=self._fault_data(classified))
        tool_result = self._build_tool_result(classified, context, code)

        if self._config.auto_log:
            self._log_error(classified, context, code)

        return ErrorResponse(fault=fault, tool_result=tool_result, error=classified)

    def create_success_response(
        self,
        content: Union[str, list[dict[str, Any]], ToolResult],
        meta: Optional[dict[str, Any]] = None,
    ) -> ToolResult:
        return create_success_response(content, meta)

    def _normalize(self, error: Any, context: ErrorContext) -> MCPError:
        if isinstance(error, MCPError):
            return error
        prefix = f"{context.tool_name} failed during {context.operation}"
        if isinstance(error, BaseException):
            detail = str(error) or type(error).__name__
            wrapped = ToolExecutionError(
                f"{prefix}: {detail}",
                tool_name=context.tool_name,
                original_error=error,
            )
            wrapped.__cause__ = error
            return wrapped
        return ToolExecutionError(
            f"{prefix}: Unknown error",
            tool_name=context.tool_name,
            original_error=error,
        )

    def _format_message(self, error: MCPError, context: ErrorContext) -> str:
        message = error.message

        if self._config.include_context:
            context_info = " | ".join(
                [
                    f"Tool: {context.tool_name}",
                    f"Operation: {context.operation}",
                    f"Severity: {context.severity.value}",
                    f"Retryable: {str(context.retryable).lower()}",
                    f"Timestamp: {context.timestamp}",
                ]
            )
            message = f"{message}\n\nContext: {context_info}"

        if self._config.include_stack_trace:
            stack = _stack_trace(error)
            if stack:
                message = f"{message}\n\nStack Trace:\n{stack}"

        if error.data:
            try:
                details = json.dumps(error.data, indent=2, default=str)
            except (TypeError, ValueError):
                message = f"{message}\n\nError Details: [Unable to serialize error data]"
            else:
                message = f"{message}\n\nError Details:\n{details}"

        return truncate_message(message, self._config.max_message_length)

    def _fault_data(self, error: MCPError) -> dict[str, Any]:
        return {
            "kind": error.kind.value,
            "severity": error.severity.value,
            "retryable": error.retryable,
        }

    def _build_tool_result(
        self,
        error: MCPError,
        context: ErrorContext,
        code: ProtocolErrorCode,
    ) -> ToolResult:
        content: list[dict[str, Any]] = [
            {"type": ContentType.TEXT.value, "text": f"Error: {error.message}"}
        ]

        summary: dict[str, Any] = {
            "error": type(error).__name__,
            "kind": error.kind.value,
            "message": error.message,
            **context.to_dict(),
        }
        if error.data:
            summary["details"] = _jsonable(error.data)

        if self._config.include_context:
            content.append(
                {
                    "type": ContentType.TEXT.value,
                    "text": "Error Details:\n" + json.dumps(summary, indent=2, default=str),
                }
            )

        meta: dict[str, Any] = {
            "error_kind": error.kind.value,
            "error_type": type(error).__name__,
            "fault_code": int(code),
            "tool": context.tool_name,
            "operation": context.operation,
            "severity": context.severity.value,
            "retryable": context.retryable,
            "timestamp": context.timestamp,
            "mcp_compliant": True,
        }
        if context.request_id is not None:
            meta["request_id"] = context.request_id
        if error.data:
            meta["details"] = _jsonable(error.data)

        return ToolResult(content=content, is_error=True, meta=meta)

    def _log_error(
        self,
        error: MCPError,
        context: ErrorContext,
        code: ProtocolErrorCode,
    ) -> None:
        log_data: dict[str, Any] = {
            "tool": context.tool_name,
            "operation": context.operation,
            "severity": context.severity.value,
            "retryable": context.retryable,
            "error_kind": error.kind.value,
            "error_type": type(error).__name__,
            "fault_code": int(code),
            "error": error.message,
        }
        if error.data:
            log_data["error_data"] = error.data
        if self._config.include_stack_trace:
            log_data["stack"] = _stack_trace(error)
        logger.error("mcp_tool_error", **log_data)


def _jsonable(data: dict[str, Any]) -> Any:
    try:
        return json.loads(json.dumps(data, default=str))
    except (TypeError, ValueError):
        return "[Unable to serialize error data]"


def _stack_trace(error: MCPError) -> str:
    source: BaseException = error
    if error.__traceback__ is None and isinstance(
        getattr(error, "original_error", None), BaseException
    ):
        source = error.original_error
    if source.__traceback__ is None:
        return ""
    return "".join(
        traceback.format_exception(type(source), source, source.__traceback__)
    ).rstrip()


def create_success_response(
    content: Union[str, list[dict[str, Any]], ToolResult],
    meta: Optional[dict[str, Any]] = None,
) -> ToolResult:
    """Wrap content in a compliant success envelope.

    Args:
        content: Plain text, a list of content items, or an existing result
        meta: Extra metadata merged into ``_meta``

    Returns:
        A ToolResult marked as MCP-compliant
    """
    if isinstance(content, ToolResult):
        merged = {**content.meta, "mcp_compliant": True, **(meta or {})}
        return ToolResult(content=list(content.content), is_error=content.is_error, meta=merged)
    if isinstance(content, str):
        items = [{"type": ContentType.TEXT.value, "text": content}]
    else:
        items = list(content)
    return ToolResult(
        content=items,
        is_error=False,
        meta={"mcp_compliant": True, **(meta or {})},
    )


def _valid_item(item: Any) -> bool:
    if not isinstance(item, dict):
        return False
    kind = item.get("type")
    if kind == ContentType.TEXT.value:
        return isinstance(item.get("text"), str)
    if kind == ContentType.IMAGE.value:
        return isinstance(item.get("data"), str) and isinstance(item.get("mimeType"), str)
    if kind == ContentType.RESOURCE.value:
        return isinstance(item.get("resource"), dict)
    return False


def validate_mcp_response(response: Union[ToolResult, dict[str, Any]]) -> bool:
    """Check that an envelope is structurally well-formed.

    Accepts a ``ToolResult`` or its wire dict. The content must be a list
    whose items are each a text, image or resource item carrying the
    fields that kind requires.
    """
    if isinstance(response, ToolResult):
        content: Any = response.content
        is_error: Any = response.is_error
    elif isinstance(response, dict):
        content = response.get("content")
        is_error = response.get("isError", False)
    else:
        return False

    if not isinstance(content, list):
        return False
    if not isinstance(is_error, bool):
        return False
    return all(_valid_item(item) for item in content)


def ensure_valid_response(response: ToolResult, tool_name: Optional[str] = None) -> ToolResult:
    """Return ``response`` unchanged or raise if it is malformed.

    Raises:
        ProtocolError: If the envelope fails validation
    """
    if not validate_mcp_response(response):
        raise ProtocolError(
            "Tool returned a malformed response",
            {"tool": tool_name} if tool_name else None,
        )
    return response


def default_formatter(development: bool = False) -> ResponseFormatter:
    """Formatter with environment-appropriate defaults."""
    return ResponseFormatter(FormatterConfig.for_environment(development))

"""Error taxonomy for the MCP server.

Every fault raised inside the server is an ``MCPError`` tagged with one
``ErrorKind``. Kinds carry default severity and retryability, and map onto
JSON-RPC fault codes through a single table so that adding a kind is a
one-line change.
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Any, Optional


class ErrorKind(str, Enum):
    """Closed set of fault categories."""

    VALIDATION = "validation"
    TOOL_NOT_FOUND = "tool_not_found"
    TOOL_EXECUTION = "tool_execution"
    PROTOCOL = "protocol"
    INTERNAL = "internal"
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    RESOURCE_NOT_FOUND = "resource_not_found"
    CAPACITY_EXCEEDED = "capacity_exceeded"


class Severity(str, Enum):
    """Ordered severity levels, lowest first."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank


_SEVERITY_ORDER = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]


class ProtocolErrorCode(IntEnum):
    """JSON-RPC 2.0 fault codes used on the wire."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603


# Default (severity, retryable) per kind.
KIND_DEFAULTS: dict[ErrorKind, tuple[Severity, bool]] = {
    ErrorKind.VALIDATION: (Severity.LOW, False),
    ErrorKind.TOOL_NOT_FOUND: (Severity.MEDIUM, False),
    ErrorKind.TOOL_EXECUTION: (Severity.HIGH, False),
    ErrorKind.PROTOCOL: (Severity.MEDIUM, False),
    ErrorKind.INTERNAL: (Severity.CRITICAL, False),
    ErrorKind.AUTHENTICATION: (Severity.HIGH, False),
    ErrorKind.RATE_LIMIT: (Severity.MEDIUM, True),
    ErrorKind.RESOURCE_NOT_FOUND: (Severity.LOW, False),
    ErrorKind.CAPACITY_EXCEEDED: (Severity.HIGH, True),
}

PROTOCOL_FAULT_CODES: dict[ErrorKind, ProtocolErrorCode] = {
    ErrorKind.VALIDATION: ProtocolErrorCode.INVALID_PARAMS,
    ErrorKind.RESOURCE_NOT_FOUND: ProtocolErrorCode.INVALID_PARAMS,
    ErrorKind.TOOL_NOT_FOUND: ProtocolErrorCode.METHOD_NOT_FOUND,
    ErrorKind.PROTOCOL: ProtocolErrorCode.INVALID_REQUEST,
    ErrorKind.AUTHENTICATION: ProtocolErrorCode.INVALID_REQUEST,
    ErrorKind.RATE_LIMIT: ProtocolErrorCode.INTERNAL_ERROR,
    ErrorKind.TOOL_EXECUTION: ProtocolErrorCode.INTERNAL_ERROR,
    ErrorKind.INTERNAL: ProtocolErrorCode.INTERNAL_ERROR,
    ErrorKind.CAPACITY_EXCEEDED: ProtocolErrorCode.INTERNAL_ERROR,
}


def fault_code_for(kind: ErrorKind) -> ProtocolErrorCode:
    """Map an error kind to its JSON-RPC fault code.

    Kinds missing from the table fall back to ``INTERNAL_ERROR``.
    """
    return PROTOCOL_FAULT_CODES.get(kind, ProtocolErrorCode.INTERNAL_ERROR)


class MCPError(Exception):
    """Base error for all faults surfaced by the server.

    Attributes:
        kind: Error category used for dispatch
        message: Human-readable error message
        data: Additional structured details
        severity: Severity, defaulting to the kind's default
        retryable: Whether retrying may succeed, defaulting to the kind's default
    """

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(
        self,
        message: str,
        data: Optional[dict[str, Any]] = None,
        *,
        kind: Optional[ErrorKind] = None,
        severity: Optional[Severity] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        if kind is not None:
            self.kind = kind
        default_severity, default_retryable = KIND_DEFAULTS.get(
            self.kind, (Severity.MEDIUM, False)
        )
        self.message = message
        self.data = data or {}
        self.severity = severity if severity is not None else default_severity
        self.retryable = retryable if retryable is not None else default_retryable
        super().__init__(message)

    @property
    def code(self) -> ProtocolErrorCode:
        """JSON-RPC fault code for this error."""
        return fault_code_for(self.kind)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to a JSON-RPC error object."""
        result: dict[str, Any] = {
            "code": int(self.code),
            "message": self.message,
        }
        if self.data:
            result["data"] = self.data
        return result


class ValidationError(MCPError):
    """Raised when input fails validation."""

    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        data: Optional[dict[str, Any]] = None,
        **kwargs: Any,
    ) -> None:
        details = dict(data or {})
        if field:
            details["field"] = field
        super().__init__(message, details, **kwargs)


class ToolNotFoundError(MCPError):
    """Raised when a tool name is not registered."""

    kind = ErrorKind.TOOL_NOT_FOUND

    def __init__(self, tool_name: str, **kwargs: Any) -> None:
        self.tool_name = tool_name
        super().__init__(
            f"Tool '{tool_name}' not found",
            {"tool": tool_name},
            **kwargs,
        )


class ToolExecutionError(MCPError):
    """Raised when a tool fails while running."""

    kind = ErrorKind.TOOL_EXECUTION

    def __init__(
        self,
        message: str,
        tool_name: Optional[str] = None,
        original_error: Any = None,
        data: Optional[dict[str, Any]] = None,
        **kwargs: Any,
    ) -> None:
        self.tool_name = tool_name
        self.original_error = original_error
        details = dict(data or {})
        if tool_name:
            details["tool"] = tool_name
        if original_error is not None and not isinstance(original_error, BaseException):
            details["original_value"] = repr(original_error)
        super().__init__(message, details, **kwargs)


class ProtocolError(MCPError):
    """Raised for malformed or unsupported protocol messages."""

    kind = ErrorKind.PROTOCOL


class InternalError(MCPError):
    """Raised for unexpected server-side faults."""

    kind = ErrorKind.INTERNAL


class AuthenticationError(MCPError):
    """Raised when upstream credentials are rejected."""

    kind = ErrorKind.AUTHENTICATION


class RateLimitError(MCPError):
    """Raised when a request rate limit is exceeded."""

    kind = ErrorKind.RATE_LIMIT

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[float] = None,
        limit: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        self.retry_after = retry_after
        self.limit = limit
        details: dict[str, Any] = {}
        if retry_after is not None:
            details["retry_after_seconds"] = retry_after
        if limit is not None:
            details["limit"] = limit
        super().__init__(message, details, **kwargs)


class ResourceNotFoundError(MCPError):
    """Raised when a requested upstream resource does not exist."""

    kind = ErrorKind.RESOURCE_NOT_FOUND

    def __init__(self, resource_type: str, resource_id: Any, **kwargs: Any) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(
            f"{resource_type} not found: {resource_id}",
            {"resource_type": resource_type, "resource_id": str(resource_id)},
            **kwargs,
        )


class CapacityExceededError(MCPError):
    """Raised when a bounded collection is full."""

    kind = ErrorKind.CAPACITY_EXCEEDED

    def __init__(self, message: str, resource: str, limit: int, **kwargs: Any) -> None:
        self.resource = resource
        self.limit = limit
        super().__init__(message, {"resource": resource, "limit": limit}, **kwargs)


class StampchainAPIError(ToolExecutionError):
    """Raised when the Stampchain API answers with an error status."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Any = None,
        **kwargs: Any,
    ) -> None:
        self.status_code = status_code
        data: dict[str, Any] = {}
        if status_code is not None:
            data["status_code"] = status_code
        if response_body is not None:
            data["response"] = response_body
        kwargs.setdefault(
            "retryable", status_code is not None and status_code >= 500
        )
        super().__init__(message, data=data, **kwargs)


class NetworkError(ToolExecutionError):
    """Raised when the Stampchain API cannot be reached."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("retryable", True)
        super().__init__(message, **kwargs)


class RequestTimeoutError(ToolExecutionError):
    """Raised when an operation exceeds its time budget."""

    def __init__(self, message: str, timeout_seconds: float, **kwargs: Any) -> None:
        self.timeout_seconds = timeout_seconds
        kwargs.setdefault("retryable", True)
        super().__init__(
            message, data={"timeout_seconds": timeout_seconds}, **kwargs
        )


def wrap_error(value: Any, tool_name: Optional[str] = None) -> MCPError:
    """Convert any raised value into an ``MCPError``.

    Args:
        value: An exception or any other value that was thrown
        tool_name: Optional tool to attribute the failure to

    Returns:
        The value itself if already an ``MCPError``, otherwise a
        ``ToolExecutionError`` wrapping it
    """
    if isinstance(value, MCPError):
        return value
    if isinstance(value, BaseException):
        return ToolExecutionError(
            str(value) or type(value).__name__,
            tool_name=tool_name,
            original_error=value,
        )
    return ToolExecutionError(
        "Unknown error",
        tool_name=tool_name,
        original_error=value,
    )

"""Core error taxonomy, error context and logging setup."""

from .context import (
    ErrorContext,
    ErrorContextBuilder,
    ErrorContextPatterns,
    context_for_error,
    create_error_context,
    sanitize_parameters,
)
from .errors import (
    KIND_DEFAULTS,
    PROTOCOL_FAULT_CODES,
    AuthenticationError,
    CapacityExceededError,
    ErrorKind,
    InternalError,
    MCPError,
    NetworkError,
    ProtocolError,
    ProtocolErrorCode,
    RateLimitError,
    RequestTimeoutError,
    ResourceNotFoundError,
    Severity,
    StampchainAPIError,
    ToolExecutionError,
    ToolNotFoundError,
    ValidationError,
    fault_code_for,
    wrap_error,
)

__all__ = [
    "ErrorContext",
    "ErrorContextBuilder",
    "ErrorContextPatterns",
    "context_for_error",
    "create_error_context",
    "sanitize_parameters",
    "KIND_DEFAULTS",
    "PROTOCOL_FAULT_CODES",
    "AuthenticationError",
    "CapacityExceededError",
    "ErrorKind",
    "InternalError",
    "MCPError",
    "NetworkError",
    "ProtocolError",
    "ProtocolErrorCode",
    "RateLimitError",
    "RequestTimeoutError",
    "ResourceNotFoundError",
    "Severity",
    "StampchainAPIError",
    "ToolExecutionError",
    "ToolNotFoundError",
    "ValidationError",
    "fault_code_for",
    "wrap_error",
]

"""Error context construction.

An ``ErrorContext`` records where a fault happened (tool, operation), how
bad it is and whether retrying may help. The response formatter requires
one for every error it renders.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from .errors import KIND_DEFAULTS, ErrorKind, MCPError, Severity

SENSITIVE_KEYS = ("password", "token", "key", "secret", "auth", "credential", "api_key")
REDACTED = "[REDACTED]"
OBJECT_PLACEHOLDER = "[OBJECT]"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def sanitize_parameters(params: dict[str, Any]) -> dict[str, Any]:
    """Redact secret-looking keys and collapse nested values.

    Args:
        params: Raw tool arguments

    Returns:
        A shallow copy that is safe to log and return to clients
    """
    sanitized: dict[str, Any] = {}
    for key, value in params.items():
        lowered = str(key).lower()
        if any(sensitive in lowered for sensitive in SENSITIVE_KEYS):
            sanitized[key] = REDACTED
        elif isinstance(value, (dict, list, tuple, set)):
            sanitized[key] = OBJECT_PLACEHOLDER
        else:
            sanitized[key] = value
    return sanitized


@dataclass(frozen=True)
class ErrorContext:
    """Immutable description of where and how a fault occurred."""

    tool_name: str
    operation: str
    severity: Severity = Severity.MEDIUM
    retryable: bool = False
    timestamp: str = field(default_factory=_utc_now_iso)
    request_id: Optional[str] = None
    parameters: Optional[dict[str, Any]] = None
    context_data: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "tool": self.tool_name,
            "operation": self.operation,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "timestamp": self.timestamp,
        }
        if self.request_id is not None:
            result["request_id"] = self.request_id
        if self.parameters is not None:
            result["parameters"] = self.parameters
        if self.context_data is not None:
            result["context"] = self.context_data
        return result


class ErrorContextBuilder:
    """Fluent builder for ``ErrorContext``.

    Defaults to medium severity, not retryable, stamped with the current
    UTC time.
    """

    def __init__(self, tool_name: str, operation: str) -> None:
        self._tool_name = tool_name
        self._operation = operation
        self._severity = Severity.MEDIUM
        self._retryable = False
        self._timestamp = _utc_now_iso()
        self._request_id: Optional[str] = None
        self._parameters: Optional[dict[str, Any]] = None
        self._context_data: Optional[dict[str, Any]] = None

    def with_request_id(self, request_id: str | int | None) -> ErrorContextBuilder:
        self._request_id = None if request_id is None else str(request_id)
        return self

    def with_parameters(self, parameters: dict[str, Any]) -> ErrorContextBuilder:
        self._parameters = sanitize_parameters(parameters)
        return self

    def with_context_data(self, data: dict[str, Any]) -> ErrorContextBuilder:
        merged = dict(self._context_data or {})
        merged.update(data)
        self._context_data = merged
        return self

    def with_severity(self, severity: Severity) -> ErrorContextBuilder:
        self._severity = Severity(severity)
        return self

    def as_retryable(self, retryable: bool = True) -> ErrorContextBuilder:
        self._retryable = retryable
        return self

    def build(self) -> ErrorContext:
        return ErrorContext(
            tool_name=self._tool_name,
            operation=self._operation,
            severity=self._severity,
            retryable=self._retryable,
            timestamp=self._timestamp,
            request_id=self._request_id,
            parameters=self._parameters,
            context_data=self._context_data,
        )


def create_error_context(tool_name: str, operation: str) -> ErrorContextBuilder:
    """Start building an error context."""
    return ErrorContextBuilder(tool_name, operation)


def context_for_error(
    error: Any,
    tool_name: str,
    operation: str,
    request_id: str | int | None = None,
    parameters: Optional[dict[str, Any]] = None,
) -> ErrorContext:
    """Build a context whose severity and retryability follow the error.

    ``MCPError`` instances contribute their own (possibly overridden)
    severity and retryability; anything else is treated as a tool
    execution failure. ``parameters`` are sanitized before they are kept.
    """
    if isinstance(error, MCPError):
        severity, retryable = error.severity, error.retryable
    else:
        severity, retryable = KIND_DEFAULTS[ErrorKind.TOOL_EXECUTION]
    builder = (
        create_error_context(tool_name, operation)
        .with_severity(severity)
        .as_retryable(retryable)
    )
    if request_id is not None:
        builder.with_request_id(request_id)
    if parameters:
        builder.with_parameters(parameters)
    return builder.build()


class ErrorContextPatterns:
    """Preset builders for common failure scenarios."""

    @staticmethod
    def validation(tool_name: str, invalid_params: list[str]) -> ErrorContextBuilder:
        return (
            create_error_context(tool_name, "parameter_validation")
            .with_severity(Severity.LOW)
            .with_context_data({"invalid_params": invalid_params})
            .as_retryable(False)
        )

    @staticmethod
    def api_call(
        tool_name: str,
        endpoint: str,
        status_code: Optional[int] = None,
    ) -> ErrorContextBuilder:
        severity = (
            Severity.HIGH if status_code is not None and status_code >= 500 else Severity.MEDIUM
        )
        retryable = (
            True if status_code is None else status_code >= 500 or status_code == 429
        )
        return (
            create_error_context(tool_name, "api_call")
            .with_severity(severity)
            .with_context_data({"endpoint": endpoint, "status_code": status_code})
            .as_retryable(retryable)
        )

    @staticmethod
    def network(tool_name: str, operation: str) -> ErrorContextBuilder:
        return (
            create_error_context(tool_name, operation)
            .with_severity(Severity.HIGH)
            .as_retryable(True)
        )

    @staticmethod
    def internal(tool_name: str, operation: str) -> ErrorContextBuilder:
        return (
            create_error_context(tool_name, operation)
            .with_severity(Severity.CRITICAL)
            .as_retryable(False)
        )

    @staticmethod
    def not_found(tool_name: str, resource_type: str, resource_id: str) -> ErrorContextBuilder:
        return (
            create_error_context(tool_name, "resource_lookup")
            .with_severity(Severity.LOW)
            .with_context_data({"resource_type": resource_type, "resource_id": resource_id})
            .as_retryable(False)
        )

    @staticmethod
    def timeout(tool_name: str, operation: str, timeout_ms: int) -> ErrorContextBuilder:
        return (
            create_error_context(tool_name, operation)
            .with_severity(Severity.MEDIUM)
            .with_context_data({"timeout_ms": timeout_ms})
            .as_retryable(True)
        )

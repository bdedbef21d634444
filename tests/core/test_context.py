"""Tests for error context construction."""

import dataclasses
from datetime import datetime

import pytest

from stampchain_mcp.core.context import (
    ErrorContext,
    ErrorContextPatterns,
    context_for_error,
    create_error_context,
    sanitize_parameters,
)
from stampchain_mcp.core.errors import InternalError, RateLimitError, Severity


class TestSanitizeParameters:
    """Tests for sanitize_parameters."""

    def test_redacts_sensitive_keys(self):
        """Test that secret-looking keys are redacted case-insensitively."""
        sanitized = sanitize_parameters(
            {"api_key": "abc", "Password": "x", "authToken": "t", "stamp_id": 5}
        )
        assert sanitized == {
            "api_key": "[REDACTED]",
            "Password": "[REDACTED]",
            "authToken": "[REDACTED]",
            "stamp_id": 5,
        }

    def test_collapses_nested_values(self):
        """Test that nested structures become a placeholder."""
        sanitized = sanitize_parameters({"filters": {"a": 1}, "ids": [1, 2], "q": "x"})
        assert sanitized == {"filters": "[OBJECT]", "ids": "[OBJECT]", "q": "x"}

    def test_does_not_mutate_input(self):
        """Test that the input mapping is left alone."""
        params = {"secret": "s"}
        sanitize_parameters(params)
        assert params == {"secret": "s"}


class TestErrorContextBuilder:
    """Tests for the fluent builder."""

    def test_defaults(self):
        """Test builder defaults."""
        context = create_error_context("get_stamp", "execute").build()
        assert context.tool_name == "get_stamp"
        assert context.operation == "execute"
        assert context.severity == Severity.MEDIUM
        assert context.retryable is False
        assert context.request_id is None
        datetime.fromisoformat(context.timestamp)

    def test_full_build(self):
        """Test every builder option."""
        context = (
            create_error_context("search_stamps", "api_call")
            .with_request_id(7)
            .with_parameters({"query": "cats", "token": "t"})
            .with_context_data({"endpoint": "/stamps"})
            .with_context_data({"status_code": 500})
            .with_severity(Severity.HIGH)
            .as_retryable()
            .build()
        )
        assert context.request_id == "7"
        assert context.parameters == {"query": "cats", "token": "[REDACTED]"}
        assert context.context_data == {"endpoint": "/stamps", "status_code": 500}
        assert context.severity == Severity.HIGH
        assert context.retryable is True

    def test_context_is_frozen(self):
        """Test that built contexts are immutable."""
        context = create_error_context("t", "op").build()
        with pytest.raises(dataclasses.FrozenInstanceError):
            context.tool_name = "other"

    def test_to_dict(self):
        """Test serialization keys."""
        context = (
            create_error_context("t", "op")
            .with_request_id("r1")
            .with_parameters({"a": 1})
            .build()
        )
        data = context.to_dict()
        assert data["tool"] == "t"
        assert data["operation"] == "op"
        assert data["severity"] == "medium"
        assert data["request_id"] == "r1"
        assert data["parameters"] == {"a": 1}
        assert "context" not in data


class TestContextForError:
    """Tests for context_for_error."""

    def test_follows_mcp_error(self):
        """Test that the error's own severity and retryability are used."""
        context = context_for_error(RateLimitError(), "search_stamps", "execute", 3)
        assert context.severity == Severity.MEDIUM
        assert context.retryable is True
        assert context.request_id == "3"

    def test_follows_overrides(self):
        """Test that per-instance overrides are honoured."""
        error = InternalError("x", severity=Severity.LOW)
        assert context_for_error(error, "t", "op").severity == Severity.LOW

    def test_non_mcp_error_uses_execution_defaults(self):
        """Test defaults for foreign exceptions and thrown values."""
        for value in (ValueError("boom"), "boom"):
            context = context_for_error(value, "t", "op")
            assert isinstance(context, ErrorContext)
            assert context.severity == Severity.HIGH
            assert context.retryable is False

    def test_parameters_are_sanitized(self):
        context = context_for_error(
            ValueError("boom"), "t", "execute", parameters={"api_key": "x", "page": 2}
        )
        assert context.parameters == {"api_key": "[REDACTED]", "page": 2}
        assert context_for_error(ValueError("boom"), "t", "execute").parameters is None


class TestErrorContextPatterns:
    """Tests for preset builders."""

    def test_validation(self):
        context = ErrorContextPatterns.validation("get_stamp", ["stamp_id"]).build()
        assert context.operation == "parameter_validation"
        assert context.severity == Severity.LOW
        assert context.context_data == {"invalid_params": ["stamp_id"]}

    def test_api_call_server_error(self):
        context = ErrorContextPatterns.api_call("t", "/stamps", 502).build()
        assert context.severity == Severity.HIGH
        assert context.retryable is True

    def test_api_call_client_error(self):
        context = ErrorContextPatterns.api_call("t", "/stamps", 400).build()
        assert context.severity == Severity.MEDIUM
        assert context.retryable is False

    def test_api_call_rate_limited(self):
        assert ErrorContextPatterns.api_call("t", "/stamps", 429).build().retryable is True

    def test_network_and_internal(self):
        assert ErrorContextPatterns.network("t", "op").build().retryable is True
        assert ErrorContextPatterns.internal("t", "op").build().severity == Severity.CRITICAL

    def test_not_found_and_timeout(self):
        not_found = ErrorContextPatterns.not_found("t", "Stamp", "1").build()
        assert not_found.operation == "resource_lookup"
        timeout = ErrorContextPatterns.timeout("t", "op", 5000).build()
        assert timeout.context_data == {"timeout_ms": 5000}
        assert timeout.retryable is True

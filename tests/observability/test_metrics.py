"""Tests for Prometheus metrics."""

from stampchain_mcp.mcp_server.sessions import SessionManager
from stampchain_mcp.observability.metrics import MCPMetrics, bind_session_metrics


class TestMCPMetrics:
    """Tests for MCPMetrics."""

    def test_instances_are_isolated(self):
        """Test that two holders never share samples."""
        first = MCPMetrics()
        second = MCPMetrics()
        first.record_error("validation")
        assert first.registry.get_sample_value("mcp_errors_total", {"kind": "validation"}) == 1.0
        assert second.registry.get_sample_value("mcp_errors_total", {"kind": "validation"}) is None

    def test_tool_calls(self):
        metrics = MCPMetrics()
        metrics.record_tool_call("get_stamp", "success", 0.2)
        metrics.record_tool_call("get_stamp", "timeout", 3.0)
        registry = metrics.registry
        assert registry.get_sample_value(
            "mcp_tool_calls_total", {"tool": "get_stamp", "status": "success"}
        ) == 1.0
        assert registry.get_sample_value(
            "mcp_tool_call_duration_seconds_count", {"tool": "get_stamp"}
        ) == 2.0
        assert registry.get_sample_value(
            "mcp_tool_call_duration_seconds_bucket", {"tool": "get_stamp", "le": "0.25"}
        ) == 1.0

    def test_render(self):
        metrics = MCPMetrics()
        metrics.record_request("tools/list")
        text = metrics.render().decode()
        assert 'mcp_requests_total{method="tools/list"} 1.0' in text


class TestBindSessionMetrics:
    """Tests for the session gauge binding."""

    def test_gauge_follows_sessions(self):
        metrics = MCPMetrics()
        sessions = SessionManager()
        existing = sessions.register_connection()

        unbind = bind_session_metrics(metrics, sessions)
        assert metrics.registry.get_sample_value("mcp_active_sessions") == 1.0

        second = sessions.register_connection()
        assert metrics.registry.get_sample_value("mcp_active_sessions") == 2.0
        sessions.unregister_connection(existing)
        assert metrics.registry.get_sample_value("mcp_active_sessions") == 1.0

        unbind()
        sessions.unregister_connection(second)
        assert metrics.registry.get_sample_value("mcp_active_sessions") == 1.0

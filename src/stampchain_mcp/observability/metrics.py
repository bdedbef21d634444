"""Prometheus metrics for the MCP server.

Each ``MCPMetrics`` owns a ``CollectorRegistry`` so several servers (or
tests) in one process never collide on metric names.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
import structlog

if TYPE_CHECKING:
    from ..mcp_server.sessions import SessionManager

logger = structlog.get_logger(__name__)

# Buckets for tool latency (seconds)
TOOL_LATENCY_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0)


class MCPMetrics:
    """Counters, histograms and gauges describing server activity."""

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.tool_calls_total = Counter(
            "mcp_tool_calls_total",
            "Total number of tool calls",
            labelnames=["tool", "status"],
            registry=self.registry,
        )
        self.tool_call_duration_seconds = Histogram(
            "mcp_tool_call_duration_seconds",
            "Tool call latency in seconds",
            labelnames=["tool"],
            buckets=TOOL_LATENCY_BUCKETS,
            registry=self.registry,
        )
        self.errors_total = Counter(
            "mcp_errors_total",
            "Total number of formatted errors by kind",
            labelnames=["kind"],
            registry=self.registry,
        )
        self.requests_total = Counter(
            "mcp_requests_total",
            "Total number of JSON-RPC requests by method",
            labelnames=["method"],
            registry=self.registry,
        )
        self.active_sessions = Gauge(
            "mcp_active_sessions",
            "Number of open client sessions",
            registry=self.registry,
        )

    def record_tool_call(self, tool: str, status: str, duration_seconds: float) -> None:
        self.tool_calls_total.labels(tool=tool, status=status).inc()
        self.tool_call_duration_seconds.labels(tool=tool).observe(duration_seconds)

    def record_error(self, kind: str) -> None:
        self.errors_total.labels(kind=kind).inc()

    def record_request(self, method: str) -> None:
        self.requests_total.labels(method=method).inc()

    def render(self) -> bytes:
        """Metrics in the Prometheus text exposition format."""
        return generate_latest(self.registry)


def bind_session_metrics(
    metrics: MCPMetrics,
    sessions: SessionManager,
) -> Callable[[], None]:
    """Keep the active session gauge in step with the session manager.

    Returns:
        Callable that removes both subscriptions
    """
    from ..mcp_server.events import SessionEvent

    metrics.active_sessions.set(len(sessions))
    unsubscribe_connect = sessions.on(
        SessionEvent.CONNECT, lambda _info: metrics.active_sessions.inc()
    )
    unsubscribe_disconnect = sessions.on(
        SessionEvent.DISCONNECT, lambda _session_id: metrics.active_sessions.dec()
    )

    def _unbind() -> None:
        unsubscribe_connect()
        unsubscribe_disconnect()

    logger.debug("session_metrics_bound")
    return _unbind

"""Observability helpers."""

from .metrics import MCPMetrics, bind_session_metrics

__all__ = ["MCPMetrics", "bind_session_metrics"]

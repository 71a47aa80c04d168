"""
Observability components for AgentCommons.

Provides Prometheus metrics for authentication outcomes.
"""

from .metrics import MetricsCollector, get_metrics

__all__ = [
    "MetricsCollector",
    "get_metrics",
]

"""
Monitoring and Observability - in-process metrics with Prometheus export.
"""

from prreview.monitoring.metrics import (
    MetricsCollector,
    get_metrics,
    Counter,
    Histogram,
    Gauge,
)

__all__ = [
    "MetricsCollector",
    "get_metrics",
    "Counter",
    "Histogram",
    "Gauge",
]

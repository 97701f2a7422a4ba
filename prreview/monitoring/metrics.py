"""
Monitoring & Metrics Collection - Prometheus-compatible metrics system

Implements in-process metrics for the review pipeline:
- Counters: Cumulative events (reviews created, files fetched, LLM failures)
- Histograms: Distribution of durations (pipeline run, LLM call)
- Gauges: Point-in-time values (connected real-time clients)

Prometheus Export Format:
- TYPE and HELP comments for discovery
- Cumulative counters (never decrease)
- Histogram bucket counts, count and sum
- Gauge current values
"""

import time
from contextlib import contextmanager
from enum import Enum
from typing import Dict, Iterator, List, Optional


class MetricType(Enum):
    """Types of metrics."""
    COUNTER = "counter"
    HISTOGRAM = "histogram"
    GAUGE = "gauge"


class Metric:
    """Base metric class."""

    def __init__(self, name: str, metric_type: MetricType, help_text: str = ""):
        """
        Initialize metric.

        Args:
            name: Metric name (must be valid Prometheus name)
            metric_type: Type of metric (counter, histogram, gauge)
            help_text: Human-readable description
        """
        self.name = name
        self.metric_type = metric_type
        self.help_text = help_text


class Counter(Metric):
    """Cumulative counter metric."""

    def __init__(self, name: str, help_text: str = ""):
        super().__init__(name, MetricType.COUNTER, help_text)
        self.value = 0

    def increment(self, amount: float = 1) -> None:
        """Increment counter by ``amount``."""
        if amount < 0:
            raise ValueError("counters can only increase")
        self.value += amount


class Histogram(Metric):
    """Histogram metric for distributions."""

    # Pipeline steps wait on network calls, so buckets go up to minutes
    DEFAULT_BUCKETS = [0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0]

    def __init__(
        self, name: str, help_text: str = "", buckets: Optional[List[float]] = None
    ):
        super().__init__(name, MetricType.HISTOGRAM, help_text)
        self.buckets = buckets or self.DEFAULT_BUCKETS
        self.values: List[float] = []
        self.count = 0
        self.sum = 0.0

    def observe(self, value: float) -> None:
        """Record an observation."""
        self.values.append(value)
        self.count += 1
        self.sum += value

    def get_percentile(self, percentile: float) -> float:
        """
        Calculate percentile of recorded values.

        Args:
            percentile: Percentile to calculate (0-100)

        Returns:
            Value at percentile, or 0 if no values recorded
        """
        if not self.values:
            return 0.0
        sorted_values = sorted(self.values)
        index = int((percentile / 100.0) * len(sorted_values))
        index = min(index, len(sorted_values) - 1)
        return sorted_values[index]


class Gauge(Metric):
    """Gauge metric for point-in-time values."""

    def __init__(self, name: str, help_text: str = ""):
        super().__init__(name, MetricType.GAUGE, help_text)
        self.value = 0.0

    def set(self, value: float) -> None:
        self.value = value

    def increment(self, amount: float = 1) -> None:
        self.value += amount

    def decrement(self, amount: float = 1) -> None:
        self.value -= amount


class MetricsCollector:
    """
    Central metrics collection system.

    Provides:
    - Metrics registration and tracking
    - Prometheus-format export
    - Timing context manager for duration measurement
    """

    def __init__(self):
        self.metrics: Dict[str, Metric] = {}
        self._setup_default_metrics()

    def _setup_default_metrics(self) -> None:
        """Set up the review pipeline metrics."""
        # Review lifecycle
        self.register_counter("reviews_created_total", "Reviews created from webhooks")
        self.register_counter("reviews_completed_total", "Reviews that reached completed")
        self.register_counter("reviews_failed_total", "Reviews that reached failed")
        self.register_histogram(
            "review_pipeline_duration_seconds", "Duration of one pipeline run"
        )

        # GitHub
        self.register_counter("files_fetched_total", "File contents fetched from GitHub")
        self.register_counter(
            "file_fetch_failures_total", "File content fetches that failed or were empty"
        )
        self.register_counter("comments_posted_total", "Review comments posted to PRs")
        self.register_counter(
            "comment_failures_total", "Review comments that could not be posted"
        )

        # LLM
        self.register_counter("llm_calls_total", "Per-file LLM analyses attempted")
        self.register_counter("llm_failures_total", "Per-file LLM analyses that failed")
        self.register_histogram(
            "llm_call_duration_seconds", "Duration of a per-file LLM analysis"
        )

        # Real-time notifications
        self.register_counter("notifications_sent_total", "Event deliveries to clients")
        self.register_counter(
            "notification_failures_total", "Event deliveries that failed"
        )
        self.register_gauge("realtime_connections", "Connected real-time clients")

    def register_counter(self, name: str, help_text: str = "") -> Counter:
        """Register or get a counter metric."""
        if name not in self.metrics:
            self.metrics[name] = Counter(name, help_text)
        return self.metrics[name]

    def register_histogram(
        self,
        name: str,
        help_text: str = "",
        buckets: Optional[List[float]] = None,
    ) -> Histogram:
        """Register or get a histogram metric."""
        if name not in self.metrics:
            self.metrics[name] = Histogram(name, help_text, buckets)
        return self.metrics[name]

    def register_gauge(self, name: str, help_text: str = "") -> Gauge:
        """Register or get a gauge metric."""
        if name not in self.metrics:
            self.metrics[name] = Gauge(name, help_text)
        return self.metrics[name]

    def increment(self, name: str, amount: float = 1) -> None:
        """Increment a registered counter or gauge; unknown names are ignored."""
        metric = self.metrics.get(name)
        if isinstance(metric, (Counter, Gauge)):
            metric.increment(amount)

    @contextmanager
    def timer(self, metric_name: str) -> Iterator[None]:
        """
        Measure the duration of a block into a histogram.

        Usage:
            with metrics.timer("llm_call_duration_seconds"):
                await provider.analyze_file(...)
        """
        start = time.monotonic()
        try:
            yield
        finally:
            metric = self.metrics.get(metric_name)
            if isinstance(metric, Histogram):
                metric.observe(time.monotonic() - start)

    def export_prometheus(self) -> str:
        """
        Export metrics in Prometheus text format.

        Format:
        # HELP metric_name help text
        # TYPE metric_name counter|histogram|gauge
        metric_name value
        metric_name_bucket{le="0.1"} count
        metric_name_count value
        metric_name_sum value

        Returns:
            Prometheus-formatted metrics string
        """
        lines = []

        for name, metric in sorted(self.metrics.items()):
            lines.append(f"# HELP {name} {metric.help_text or 'Metric: ' + name}")
            lines.append(f"# TYPE {name} {metric.metric_type.value}")

            if isinstance(metric, (Counter, Gauge)):
                lines.append(f"{name} {metric.value}")

            elif isinstance(metric, Histogram):
                for bucket in metric.buckets:
                    count = sum(1 for v in metric.values if v <= bucket)
                    lines.append(f'{name}_bucket{{le="{bucket}"}} {count}')
                lines.append(f'{name}_bucket{{le="+Inf"}} {metric.count}')
                lines.append(f"{name}_count {metric.count}")
                lines.append(f"{name}_sum {metric.sum}")

            lines.append("")  # Blank line between metrics

        return "\n".join(lines)

    def get_metric(self, name: str) -> Optional[Metric]:
        """Get metric by name."""
        return self.metrics.get(name)

    def clear(self) -> None:
        """Reset all metrics (useful for testing)."""
        self.metrics.clear()
        self._setup_default_metrics()


# Global metrics instance
_metrics_instance: Optional[MetricsCollector] = None


def get_metrics() -> MetricsCollector:
    """Get or create global metrics instance."""
    global _metrics_instance
    if _metrics_instance is None:
        _metrics_instance = MetricsCollector()
    return _metrics_instance

"""In-process metrics for certkeeper."""

from certkeeper.metrics.collector import MetricsCollector

__all__ = ["MetricsCollector"]

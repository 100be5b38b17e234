"""Pipeline metrics counters."""

from .metrics import Counter, Histogram, PipelineMetrics

__all__ = [
    "Counter",
    "Histogram",
    "PipelineMetrics",
]

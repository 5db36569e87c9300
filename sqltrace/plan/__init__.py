"""Canonical plan model, normalization and per-engine adapters."""

from .adapters import adapt_plan, supported_engines
from .metrics import MetricsAggregator, PlanMetrics, aggregate_metrics
from .models import PlanNode, PlanTree
from .normalizer import PlanNormalizer, normalize_plan

__all__ = [
    "PlanNode",
    "PlanTree",
    "PlanNormalizer",
    "normalize_plan",
    "MetricsAggregator",
    "PlanMetrics",
    "aggregate_metrics",
    "adapt_plan",
    "supported_engines",
]

"""Per-state grant metrics and run summaries."""

from neh_grants.metrics.engine import ExclusionSummary, StateMetricsResult, compute_state_metrics
from neh_grants.metrics.summary import build_run_summary

__all__ = [
    "ExclusionSummary",
    "StateMetricsResult",
    "build_run_summary",
    "compute_state_metrics",
]

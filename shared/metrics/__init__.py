"""Metrics module using Prometheus."""

from .prometheus_metrics import AnalysisMetrics

__all__ = ["AnalysisMetrics"]

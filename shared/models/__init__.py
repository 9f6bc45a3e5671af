"""Shared Pydantic models for analysis results."""

from .common import AnalysisSummary, Finding, Severity

__all__ = [
    "AnalysisSummary",
    "Finding",
    "Severity",
]

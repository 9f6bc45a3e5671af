"""Prometheus metrics definitions and helpers.

Provides metric definitions for the analysis phases. Metrics live on a
dedicated registry so repeated runs in one process do not collide with the
default process collectors.
"""

from pathlib import Path
from typing import Optional, Union

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    write_to_textfile,
)


class AnalysisMetrics:
    """Build analysis metrics."""

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        """Initialize analysis metrics.

        Args:
            registry: Prometheus registry to use (a fresh one by default)
        """
        self.registry = registry if registry is not None else CollectorRegistry()

        # Findings emitted
        self.findings = Counter(
            "layerwise_findings_total",
            "Total number of findings reported",
            ["rule", "severity"],
            registry=self.registry,
        )

        # Build context volume
        self.context_bytes = Gauge(
            "layerwise_context_bytes",
            "Bytes in the build context",
            ["disposition"],
            registry=self.registry,
        )

        self.context_files = Gauge(
            "layerwise_context_files",
            "Files in the build context",
            ["disposition"],
            registry=self.registry,
        )

        # Layer cache plan
        self.layers = Counter(
            "layerwise_layers_total",
            "Layers planned by cache status",
            ["status"],
            registry=self.registry,
        )

        # Phase duration
        self.phase_duration = Histogram(
            "layerwise_phase_duration_seconds",
            "Time spent in each analysis phase",
            ["phase"],
            buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0],
            registry=self.registry,
        )

    def render(self) -> bytes:
        """Render metrics in Prometheus text exposition format."""
        return generate_latest(self.registry)

    def write(self, path: Union[str, Path]) -> None:
        """Write metrics to a textfile collector file atomically.

        Args:
            path: Destination file
        """
        write_to_textfile(str(path), self.registry)

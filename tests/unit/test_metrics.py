"""Unit tests for analysis metrics."""

from shared.metrics import AnalysisMetrics


class TestAnalysisMetrics:
    """Test metric registration and export"""

    def test_separate_registries(self):
        """Test two instances do not collide"""
        first = AnalysisMetrics()
        second = AnalysisMetrics()

        first.findings.labels(rule="LW001", severity="warning").inc()

        assert first.registry.get_sample_value(
            "layerwise_findings_total", {"rule": "LW001", "severity": "warning"}
        ) == 1.0
        assert second.registry.get_sample_value(
            "layerwise_findings_total", {"rule": "LW001", "severity": "warning"}
        ) is None

    def test_render(self):
        metrics = AnalysisMetrics()
        metrics.context_bytes.labels(disposition="included").set(2048)

        text = metrics.render().decode("utf-8")

        assert 'layerwise_context_bytes{disposition="included"} 2048.0' in text

    def test_write_textfile(self, tmp_path):
        metrics = AnalysisMetrics()
        metrics.layers.labels(status="hit").inc(3)
        path = tmp_path / "layerwise.prom"

        metrics.write(path)

        assert "layerwise_layers_total" in path.read_text(encoding="utf-8")

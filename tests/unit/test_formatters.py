"""Unit tests for report rendering and exit codes."""

import json

from layerwise.analysis import AnalysisResult
from layerwise.cache import LayerCachePlanner
from layerwise.context import scan_context
from layerwise.parser import parse_dockerfile
from layerwise.report import exit_code, format_json, format_text
from shared.models import Finding, Severity


def finding(rule_id="LW001", severity=Severity.WARNING, line=3, **kwargs):
    return Finding(rule_id=rule_id, severity=severity, message="something is off", line=line, **kwargs)


class TestExitCode:
    """Test the fail-on threshold"""

    def test_no_findings(self):
        assert exit_code([], Severity.INFO) == 0

    def test_threshold(self):
        findings = [finding(severity=Severity.WARNING)]

        assert exit_code(findings, Severity.WARNING) == 1
        assert exit_code(findings, Severity.INFO) == 1
        assert exit_code(findings, Severity.ERROR) == 0


class TestTextFormat:
    """Test terminal output"""

    def test_finding_lines(self):
        """Test location, severity, rule and hint"""
        result = AnalysisResult(
            dockerfile="web/Dockerfile",
            findings=[finding(suggestion="copy manifests first")],
        )

        text = format_text(result)

        assert text.splitlines()[0] == "web/Dockerfile:3: warning LW001 something is off"
        assert "    hint: copy manifests first" in text
        assert text.endswith("1 finding(s): 1 warning\n")

    def test_context_finding_location(self):
        """Test findings without a line use the path or 'context'"""
        result = AnalysisResult(findings=[
            finding(rule_id="LW102", severity=Severity.ERROR, line=None, path=".env"),
            finding(rule_id="LW104", line=None),
        ])

        lines = format_text(result).splitlines()

        assert lines[0] == ".env: error LW102 something is off"
        assert lines[1] == "context: warning LW104 something is off"

    def test_no_findings(self):
        """Test the empty lint report"""
        assert format_text(AnalysisResult(dockerfile="Dockerfile")) == "No findings.\n"

    def test_context_block(self, make_context):
        """Test the context summary and largest entries"""
        root = make_context({"Dockerfile": "FROM alpine:3.20\n", "big.bin": b"0" * 2048})
        result = AnalysisResult(context=scan_context(root))

        text = format_text(result, top=1)

        assert "Build context: 2 files, 2.0 KB (0 files, 0 B excluded)" in text
        assert "Ignore file: none" in text
        assert "big.bin" in text
        assert "Dockerfile\n" not in text
        assert "No findings." not in text

    def test_cache_block(self, make_context):
        """Test layer lines and the cache summary"""
        root = make_context({"Dockerfile": "FROM alpine:3.20\nCOPY app.sh /app.sh\n", "app.sh": "echo hi\n"})
        dockerfile = parse_dockerfile((root / "Dockerfile").read_text(encoding="utf-8"))
        planner = LayerCachePlanner(root)
        previous = planner.plan(dockerfile).to_manifest()
        (root / "app.sh").write_text("echo bye\n", encoding="utf-8")

        plan = LayerCachePlanner(root).plan(dockerfile, previous)
        text = format_text(AnalysisResult(cache=plan))

        assert "Layers: 2 total, 1 cached, 1 to build" in text
        assert "[CACHED ] stage 0 line 1: FROM alpine:3.20" in text
        assert "[REBUILD] stage 0 line 2: COPY app.sh /app.sh  (1 source file(s) changed)" in text
        assert "changed: app.sh" in text

    def test_long_instructions_shortened(self, make_context):
        """Test long instructions are cut with an ellipsis"""
        root = make_context({"Dockerfile": "x"})
        long_run = "RUN " + "echo hello && " * 20 + "true"
        dockerfile = parse_dockerfile(f"FROM alpine:3.20\n{long_run}\n")

        text = format_text(AnalysisResult(cache=LayerCachePlanner(root).plan(dockerfile)))

        assert "..." in text
        assert long_run not in text


class TestJsonFormat:
    """Test machine-readable output"""

    def test_document(self, make_context):
        """Test the JSON document structure"""
        root = make_context({"Dockerfile": "FROM alpine:3.20\n"})
        result = AnalysisResult(
            dockerfile="Dockerfile",
            findings=[finding()],
            context=scan_context(root),
        )

        data = json.loads(format_json(result))

        assert data["dockerfile"] == "Dockerfile"
        assert data["summary"]["findings"] == 1
        assert data["summary"]["by_severity"] == {"warning": 1}
        assert data["findings"][0]["rule_id"] == "LW001"
        assert data["findings"][0]["severity"] == "warning"
        assert data["context"]["files"] == 1
        assert "cache" not in data

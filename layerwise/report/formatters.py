"""Text and JSON rendering of analysis results."""

import json
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from layerwise.cache import CacheStatus
from layerwise.utils.error_handler import EXIT_FINDINGS, EXIT_OK
from layerwise.utils.sizes import format_bytes
from shared.models import Finding, Severity

if TYPE_CHECKING:
    from layerwise.analysis import AnalysisResult


def exit_code(findings: List[Finding], fail_on: Severity) -> int:
    """1 when any finding is at or above ``fail_on``, else 0."""
    if any(f.severity >= fail_on for f in findings):
        return EXIT_FINDINGS
    return EXIT_OK


def _format_finding(finding: Finding, dockerfile: Optional[str]) -> List[str]:
    if finding.line is not None:
        location = f"{dockerfile or 'Dockerfile'}:{finding.line}"
    elif finding.path:
        location = finding.path
    else:
        location = "context"
    lines = [f"{location}: {finding.severity.value} {finding.rule_id} {finding.message}"]
    if finding.suggestion:
        lines.append(f"    hint: {finding.suggestion}")
    return lines


def format_text(result: "AnalysisResult", top: int = 10) -> str:
    """
    Render a result for terminals.

    Args:
        result: Analysis result
        top: Number of largest context entries to list

    Returns:
        Multi-line report ending with a newline
    """
    out: List[str] = []

    for finding in result.findings:
        out.extend(_format_finding(finding, result.dockerfile))

    if result.context is not None:
        report = result.context
        if out:
            out.append("")
        out.append(
            f"Build context: {report.file_count} files, {format_bytes(report.total_bytes)} "
            f"({report.excluded_files} files, {format_bytes(report.excluded_bytes)} excluded)"
        )
        out.append(f"Ignore file: {report.ignore_file or 'none'}")
        largest = report.largest(top)
        if largest:
            out.append("Largest entries:")
            for entry in largest:
                out.append(f"  {format_bytes(entry.size):>10}  {entry.path}")

    if result.cache is not None:
        plan = result.cache
        if out:
            out.append("")
        out.append(
            f"Layers: {len(plan.layers)} total, {plan.count(CacheStatus.HIT)} cached, "
            f"{plan.rebuilt} to build"
        )
        for layer in plan.layers:
            marker = {CacheStatus.HIT: "CACHED", CacheStatus.MISS: "REBUILD", CacheStatus.NEW: "NEW"}[layer.status]
            line = f"  [{marker:<7}] stage {layer.stage} line {layer.instruction.line}: {_shorten(str(layer.instruction))}"
            if layer.status == CacheStatus.MISS and layer.reason:
                line += f"  ({layer.reason})"
            out.append(line)
            for path in layer.changed_sources[:top]:
                out.append(f"              changed: {path}")

    summary = result.summary()
    if result.findings or (result.context is None and result.cache is None):
        if out:
            out.append("")
        if summary.findings:
            counts = ", ".join(f"{n} {sev}" for sev, n in sorted(summary.by_severity.items()))
            out.append(f"{summary.findings} finding(s): {counts}")
        else:
            out.append("No findings.")

    return "\n".join(out) + "\n"


def _shorten(text: str, width: int = 72) -> str:
    text = " ".join(text.split())
    return text if len(text) <= width else text[: width - 3] + "..."


def to_dict(result: "AnalysisResult", top: int = 10) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "dockerfile": result.dockerfile,
        "summary": result.summary().model_dump(mode="json"),
        "findings": [f.model_dump(mode="json") for f in result.findings],
    }
    if result.context is not None:
        data["context"] = result.context.to_dict(top)
    if result.cache is not None:
        data["cache"] = result.cache.to_dict()
    return data


def format_json(result: "AnalysisResult", top: int = 10) -> str:
    """Render a result as a JSON document."""
    return json.dumps(to_dict(result, top), indent=2, sort_keys=True) + "\n"

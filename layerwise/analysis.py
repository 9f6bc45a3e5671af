"""Analysis pipeline tying parsing, linting, context scanning and cache planning together."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import structlog

from layerwise.cache import CacheManifest, CachePlan, CacheStatus, FileManifestStorage, LayerCachePlanner
from layerwise.config import Config
from layerwise.context import ContextReport, context_findings, load_ignore_file, scan_context
from layerwise.lint import Linter
from layerwise.parser import Dockerfile, load_dockerfile
from layerwise.utils.error_handler import BuildContextError
from shared.metrics import AnalysisMetrics
from shared.models import AnalysisSummary, Finding

logger = structlog.get_logger(__name__)


@dataclass
class AnalysisResult:
    """Everything one command produced"""
    dockerfile: Optional[str] = None
    findings: List[Finding] = field(default_factory=list)
    context: Optional[ContextReport] = None
    cache: Optional[CachePlan] = None

    def summary(self) -> AnalysisSummary:
        by_severity: Dict[str, int] = {}
        for finding in self.findings:
            by_severity[finding.severity.value] = by_severity.get(finding.severity.value, 0) + 1
        return AnalysisSummary(
            findings=len(self.findings),
            by_severity=by_severity,
            context_bytes=self.context.total_bytes if self.context is not None else None,
            layers_missed=self.cache.rebuilt if self.cache is not None else None,
            layers_total=len(self.cache.layers) if self.cache is not None else None,
        )


class Analyzer:
    """
    Runs analysis phases for one build context and records metrics.
    """

    def __init__(self, config: Config, metrics: Optional[AnalysisMetrics] = None):
        self.config = config
        self.metrics = metrics or AnalysisMetrics()

    def dockerfile_path(self, context_dir: Union[str, Path], dockerfile: Optional[str] = None) -> Path:
        """Resolve the Dockerfile: an explicit path as given, else relative to the context."""
        if dockerfile:
            return Path(dockerfile)
        return Path(context_dir) / self.config.dockerfile

    def _relative_dockerfile(self, context_dir: Path, path: Path) -> str:
        try:
            return path.resolve().relative_to(context_dir.resolve()).as_posix()
        except ValueError:
            return self.config.dockerfile

    @staticmethod
    def _inside_context(context_dir: Path, paths: Iterable[Path]) -> List[str]:
        root = context_dir.resolve()
        inside = []
        for path in paths:
            try:
                inside.append(path.resolve().relative_to(root).as_posix())
            except ValueError:
                continue
        return inside

    def _check_context(self, context_dir: Union[str, Path]) -> Path:
        context_path = Path(context_dir)
        if not context_path.is_dir():
            raise BuildContextError(f"build context is not a directory: {context_path}")
        return context_path

    def load(self, context_dir: Union[str, Path], dockerfile: Optional[str] = None) -> Dockerfile:
        path = self.dockerfile_path(context_dir, dockerfile)
        with self.metrics.phase_duration.labels(phase="parse").time():
            return load_dockerfile(path)

    def _record_findings(self, findings: Iterable[Finding]) -> None:
        for finding in findings:
            self.metrics.findings.labels(rule=finding.rule_id, severity=finding.severity.value).inc()

    def lint(self, context_dir: Union[str, Path], dockerfile: Optional[str] = None) -> AnalysisResult:
        """Parse and lint the Dockerfile."""
        self._check_context(context_dir)
        parsed = self.load(context_dir, dockerfile)
        with self.metrics.phase_duration.labels(phase="lint").time():
            findings = Linter(self.config.lint).lint(parsed)
        self._record_findings(findings)
        return AnalysisResult(dockerfile=parsed.path, findings=findings)

    def scan(self, context_dir: Union[str, Path], dockerfile: Optional[str] = None) -> AnalysisResult:
        """Scan the build context and report heavy or sensitive content."""
        context_path = self._check_context(context_dir)
        dockerfile_rel = self._relative_dockerfile(context_path, self.dockerfile_path(context_path, dockerfile))
        settings = self.config.context

        with self.metrics.phase_duration.labels(phase="scan").time():
            matcher = load_ignore_file(context_path, settings.ignore_file)
            report = scan_context(
                context_path,
                matcher,
                dockerfile=dockerfile_rel,
                ignore_file=settings.ignore_file,
            )
            findings = context_findings(report, settings.max_context_bytes, settings.heavy_path_min_bytes)

        findings = [f for f in findings if f.rule_id not in self.config.lint.disabled_rules]
        findings = [f for f in findings if f.severity >= self.config.lint.min_severity]

        self.metrics.context_bytes.labels(disposition="included").set(report.total_bytes)
        self.metrics.context_bytes.labels(disposition="excluded").set(report.excluded_bytes)
        self.metrics.context_files.labels(disposition="included").set(report.file_count)
        self.metrics.context_files.labels(disposition="excluded").set(report.excluded_files)
        self._record_findings(findings)

        return AnalysisResult(findings=findings, context=report)

    def check(self, context_dir: Union[str, Path], dockerfile: Optional[str] = None) -> AnalysisResult:
        """Lint and scan together."""
        linted = self.lint(context_dir, dockerfile)
        scanned = self.scan(context_dir, dockerfile)
        findings = sorted(
            linted.findings + scanned.findings,
            key=lambda f: (f.line is None, f.line or 0, f.rule_id),
        )
        return AnalysisResult(dockerfile=linted.dockerfile, findings=findings, context=scanned.context)

    def manifest_storage(self, context_dir: Union[str, Path], manifest: Optional[str] = None) -> FileManifestStorage:
        """Manifest path: explicit as given, configured path relative to the context."""
        if manifest:
            return FileManifestStorage(manifest)
        return FileManifestStorage(Path(context_dir) / self.config.cache.manifest_path)

    def plan_cache(
        self,
        context_dir: Union[str, Path],
        dockerfile: Optional[str] = None,
        manifest: Optional[str] = None,
        build_args: Optional[Dict[str, str]] = None,
        changed: Optional[List[str]] = None,
        save: bool = False,
    ) -> AnalysisResult:
        """
        Plan layer reuse.

        With ``changed`` paths the plan predicts what those changes rebuild;
        otherwise it compares against the stored manifest. ``save`` stores
        the freshly computed keys for the next run.
        """
        context_path = self._check_context(context_dir)
        parsed = self.load(context_path, dockerfile)
        matcher = load_ignore_file(context_path, self.config.context.ignore_file)
        storage = self.manifest_storage(context_path, manifest)
        planner = LayerCachePlanner(
            context_path,
            matcher=matcher,
            build_args=build_args,
            chunk_size=self.config.cache.read_chunk_bytes,
            exclude=self._inside_context(context_path, [storage.path, storage.temp_path]),
        )

        with self.metrics.phase_duration.labels(phase="cache").time():
            if changed:
                plan = planner.impact(parsed, changed)
            else:
                previous: Optional[CacheManifest] = storage.load()
                plan = planner.plan(parsed, previous)

        for status in CacheStatus:
            count = plan.count(status)
            if count:
                self.metrics.layers.labels(status=status.value).inc(count)

        if save:
            storage.save(plan.to_manifest())

        return AnalysisResult(dockerfile=parsed.path, cache=plan)


def parse_build_args(values: Optional[Iterable[str]]) -> Dict[str, str]:
    """Turn ``KEY=VALUE`` pairs into a dict; a bare ``KEY`` takes its value from the environment."""
    build_args: Dict[str, str] = {}
    for value in values or []:
        if "=" in value:
            name, arg = value.split("=", 1)
            build_args[name] = arg
        elif value in os.environ:
            build_args[value] = os.environ[value]
    return build_args

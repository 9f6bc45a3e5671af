"""Build context scanning and ignore-file suggestions.

Walks a context directory the way the builder client would, applies the
ignore file, and reports what would be transmitted along with well-known
heavy or sensitive content that belongs in the ignore file.
"""

import fnmatch
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import structlog

from layerwise.context.ignore_rules import DEFAULT_IGNORE_FILE, IgnoreMatcher, load_ignore_file
from layerwise.utils.error_handler import BuildContextError
from layerwise.utils.sizes import format_bytes
from shared.models import Finding, Severity
from shared.tracing import trace_function

logger = structlog.get_logger(__name__)


# Directory names that are almost never needed inside an image build
HEAVY_DIRECTORIES: Dict[str, str] = {
    "node_modules": "dependencies",
    "bower_components": "dependencies",
    ".venv": "dependencies",
    "venv": "dependencies",
    ".git": "vcs",
    ".svn": "vcs",
    ".hg": "vcs",
    "dist": "build-output",
    "build": "build-output",
    ".next": "build-output",
    ".nuxt": "build-output",
    "coverage": "build-output",
    ".cache": "cache",
    ".parcel-cache": "cache",
    "__pycache__": "cache",
    ".idea": "editor",
    ".vscode": "editor",
}

HEAVY_FILES: List[Tuple[str, str]] = [
    ("*.log", "logs"),
    ("npm-debug.log*", "logs"),
    ("yarn-error.log*", "logs"),
    (".DS_Store", "editor"),
]

SENSITIVE_FILES = [".env", ".env.*", "*.pem", "*.key", "id_rsa", "id_ed25519", ".npmrc"]
SENSITIVE_DIRECTORIES = [".aws", ".ssh"]
SENSITIVE_ALLOWED = [".env.example", ".env.sample", ".env.template"]

# Findings produced from a context scan: (id, severity, name, description)
CONTEXT_RULES = [
    ("LW101", Severity.WARNING, "heavy-path-in-context", "Dependencies, VCS data, build output or caches are sent to the builder."),
    ("LW102", Severity.ERROR, "sensitive-file-in-context", "Credentials or key material are sent to the builder."),
    ("LW103", Severity.WARNING, "missing-ignore-file", "No ignore file while heavy content is present."),
    ("LW104", Severity.WARNING, "context-over-budget", "The build context exceeds the configured size budget."),
]


@dataclass
class ContextEntry:
    """File or symlink sent to the builder"""
    path: str
    size: int
    is_symlink: bool = False


@dataclass
class HeavyPath:
    """Heavy or sensitive content found in the context"""
    path: str
    category: str
    pattern: str
    total_bytes: int = 0
    file_count: int = 0

    @property
    def is_sensitive(self) -> bool:
        return self.category == "secrets"


@dataclass
class ContextReport:
    """Result of scanning a build context"""
    root: str
    entries: List[ContextEntry] = field(default_factory=list)
    excluded_files: int = 0
    excluded_bytes: int = 0
    heavy_paths: List[HeavyPath] = field(default_factory=list)
    ignore_file: Optional[str] = None

    @property
    def total_bytes(self) -> int:
        return sum(entry.size for entry in self.entries)

    @property
    def file_count(self) -> int:
        return len(self.entries)

    @property
    def has_ignore_file(self) -> bool:
        return self.ignore_file is not None

    def largest(self, n: int = 10) -> List[ContextEntry]:
        """The n largest entries, biggest first."""
        return sorted(self.entries, key=lambda e: (-e.size, e.path))[:n]

    def paths(self) -> List[str]:
        return [entry.path for entry in self.entries]

    def to_dict(self, top: int = 10) -> Dict[str, object]:
        return {
            "root": self.root,
            "ignore_file": self.ignore_file,
            "files": self.file_count,
            "total_bytes": self.total_bytes,
            "excluded_files": self.excluded_files,
            "excluded_bytes": self.excluded_bytes,
            "largest": [{"path": e.path, "size": e.size} for e in self.largest(top)],
            "heavy_paths": [
                {
                    "path": h.path,
                    "category": h.category,
                    "pattern": h.pattern,
                    "total_bytes": h.total_bytes,
                    "file_count": h.file_count,
                }
                for h in self.heavy_paths
            ],
        }


def _classify_directory(name: str) -> Optional[str]:
    if name in SENSITIVE_DIRECTORIES:
        return "secrets"
    return HEAVY_DIRECTORIES.get(name)


def _classify_file(name: str) -> Optional[Tuple[str, str]]:
    """Return (category, basename pattern) for a heavy or sensitive file."""
    if name not in SENSITIVE_ALLOWED:
        for pattern in SENSITIVE_FILES:
            if fnmatch.fnmatchcase(name, pattern):
                return "secrets", pattern
    for pattern, category in HEAVY_FILES:
        if fnmatch.fnmatchcase(name, pattern):
            return category, pattern
    return None


def _suggested_pattern(directory: str, pattern: str) -> str:
    # Root-level content gets a literal pattern, nested content a ** pattern
    return pattern if not directory else f"**/{pattern}"


def _find_heavy_paths(entries: List[ContextEntry]) -> List[HeavyPath]:
    found: Dict[str, HeavyPath] = {}

    for entry in entries:
        parts = entry.path.split("/")
        heavy = None
        for depth, part in enumerate(parts[:-1]):
            category = _classify_directory(part)
            if category:
                parent = "/".join(parts[:depth])
                dir_path = "/".join(parts[:depth + 1])
                heavy = found.get(dir_path)
                if heavy is None:
                    heavy = HeavyPath(
                        path=dir_path,
                        category=category,
                        pattern=_suggested_pattern(parent, part),
                    )
                    found[dir_path] = heavy
                break

        if heavy is None:
            classified = _classify_file(parts[-1])
            if classified is None:
                continue
            category, pattern = classified
            parent = "/".join(parts[:-1])
            if category == "secrets":
                key = entry.path
                suggestion = _suggested_pattern(parent, parts[-1])
            else:
                suggestion = _suggested_pattern(parent, pattern)
                key = suggestion
            heavy = found.get(key)
            if heavy is None:
                heavy = HeavyPath(path=key, category=category, pattern=suggestion)
                found[key] = heavy

        heavy.total_bytes += entry.size
        heavy.file_count += 1

    return sorted(found.values(), key=lambda h: (-h.total_bytes, h.path))


def _tree_size(directory: str) -> Tuple[int, int]:
    files = 0
    total = 0
    for dirpath, _dirnames, filenames in os.walk(directory):
        for name in filenames:
            try:
                total += os.lstat(os.path.join(dirpath, name)).st_size
            except OSError:
                continue
            files += 1
    return files, total


@trace_function("scan_context")
def scan_context(
    root: Union[str, Path],
    matcher: Optional[IgnoreMatcher] = None,
    dockerfile: str = "Dockerfile",
    ignore_file: str = DEFAULT_IGNORE_FILE,
    measure_excluded: bool = True,
) -> ContextReport:
    """
    Scan a build context directory.

    Args:
        root: Context directory
        matcher: Ignore patterns (loaded from the context when None)
        dockerfile: Dockerfile path relative to the root, always sent
        ignore_file: Ignore file name, always sent
        measure_excluded: Walk pruned directories to total their size

    Returns:
        ContextReport describing what the builder would receive

    Raises:
        BuildContextError: If the root is not a directory
    """
    root_path = Path(root)
    if not root_path.is_dir():
        raise BuildContextError(f"build context is not a directory: {root_path}")

    if matcher is None:
        matcher = load_ignore_file(root_path, ignore_file)

    always_sent = {dockerfile.replace(os.sep, "/"), ignore_file}
    report = ContextReport(root=str(root_path), ignore_file=matcher.source)

    for dirpath, dirnames, filenames in os.walk(root_path, topdown=True, followlinks=False):
        rel_dir = os.path.relpath(dirpath, root_path).replace(os.sep, "/")
        rel_dir = "" if rel_dir == "." else rel_dir

        kept_dirs = []
        for name in sorted(dirnames):
            rel = f"{rel_dir}/{name}" if rel_dir else name
            full = os.path.join(dirpath, name)
            if os.path.islink(full):
                # Symlinked directories are sent as links, never followed
                filenames.append(name)
                continue
            if matcher.can_prune(rel):
                if measure_excluded:
                    files, size = _tree_size(full)
                    report.excluded_files += files
                    report.excluded_bytes += size
                continue
            kept_dirs.append(name)
        dirnames[:] = kept_dirs

        for name in sorted(filenames):
            rel = f"{rel_dir}/{name}" if rel_dir else name
            full = os.path.join(dirpath, name)
            try:
                stat = os.lstat(full)
            except OSError as e:
                raise BuildContextError(f"cannot read {rel}: {e}") from e

            if matcher.is_ignored(rel) and rel not in always_sent:
                report.excluded_files += 1
                report.excluded_bytes += stat.st_size
                continue

            report.entries.append(
                ContextEntry(path=rel, size=stat.st_size, is_symlink=os.path.islink(full))
            )

    report.entries.sort(key=lambda e: e.path)
    report.heavy_paths = _find_heavy_paths(report.entries)

    logger.info(
        "context_scanned",
        root=str(root_path),
        files=report.file_count,
        total_bytes=report.total_bytes,
        excluded_files=report.excluded_files,
        excluded_bytes=report.excluded_bytes,
        heavy_paths=len(report.heavy_paths),
    )

    return report


def suggest_ignore_patterns(report: ContextReport) -> List[str]:
    """
    Ignore patterns that would drop heavy and sensitive content.

    Args:
        report: Context scan result

    Returns:
        Unique patterns, biggest savings first
    """
    patterns: List[str] = []
    for heavy in report.heavy_paths:
        if heavy.pattern not in patterns:
            patterns.append(heavy.pattern)
    return patterns


def render_ignore_file(existing: Optional[str], patterns: List[str]) -> str:
    """
    Append patterns that are not already present to ignore-file text.

    Args:
        existing: Current ignore-file contents (None when absent)
        patterns: Patterns to add

    Returns:
        New file contents; unchanged when nothing is missing
    """
    text = existing or ""
    present = {line.strip() for line in text.splitlines()}
    missing = [p for p in patterns if p not in present]
    if not missing:
        return text

    if text and not text.endswith("\n"):
        text += "\n"
    if text:
        text += "\n"
    text += "# Added by layerwise\n"
    text += "".join(f"{pattern}\n" for pattern in missing)
    return text


def context_findings(
    report: ContextReport,
    max_context_bytes: int,
    heavy_path_min_bytes: int = 0,
) -> List[Finding]:
    """
    Turn a context scan into findings.

    Args:
        report: Context scan result
        max_context_bytes: Size budget for the whole context
        heavy_path_min_bytes: Ignore heavy paths smaller than this

    Returns:
        Findings LW101 to LW104
    """
    findings: List[Finding] = []
    ignore_name = Path(report.ignore_file).name if report.ignore_file else DEFAULT_IGNORE_FILE

    heavy_present = False
    for heavy in report.heavy_paths:
        if heavy.is_sensitive:
            findings.append(
                Finding(
                    rule_id="LW102",
                    severity=Severity.ERROR,
                    message=f"sensitive file {heavy.path} is sent to the builder",
                    path=heavy.path,
                    suggestion=f"add '{heavy.pattern}' to {ignore_name}",
                )
            )
            continue

        if heavy.total_bytes < heavy_path_min_bytes:
            continue
        heavy_present = True
        findings.append(
            Finding(
                rule_id="LW101",
                severity=Severity.WARNING,
                message=(
                    f"{heavy.path} ({heavy.category}, {format_bytes(heavy.total_bytes)}, "
                    f"{heavy.file_count} files) is sent to the builder"
                ),
                path=heavy.path,
                suggestion=f"add '{heavy.pattern}' to {ignore_name}",
            )
        )

    if not report.has_ignore_file and heavy_present:
        findings.append(
            Finding(
                rule_id="LW103",
                severity=Severity.WARNING,
                message=f"no {ignore_name} while heavy content is present in the context",
                suggestion="run 'layerwise context --write-ignore' to create one",
            )
        )

    if report.total_bytes > max_context_bytes:
        findings.append(
            Finding(
                rule_id="LW104",
                severity=Severity.WARNING,
                message=(
                    f"build context is {format_bytes(report.total_bytes)}, over the "
                    f"{format_bytes(max_context_bytes)} budget"
                ),
            )
        )

    return findings

"""Build context scanning and ignore-file handling."""

from .build_context import (
    CONTEXT_RULES,
    ContextEntry,
    ContextReport,
    HeavyPath,
    context_findings,
    render_ignore_file,
    scan_context,
    suggest_ignore_patterns,
)
from .ignore_rules import IgnoreMatcher, IgnorePattern, load_ignore_file, parse_ignore_file

__all__ = [
    "CONTEXT_RULES",
    "ContextEntry",
    "ContextReport",
    "HeavyPath",
    "IgnoreMatcher",
    "IgnorePattern",
    "context_findings",
    "load_ignore_file",
    "parse_ignore_file",
    "render_ignore_file",
    "scan_context",
    "suggest_ignore_patterns",
]

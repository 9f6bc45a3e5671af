"""Ignore-file pattern matching for build contexts.

Patterns follow the Docker CLI rules: paths are cleaned, ``**`` spans
directories, a pattern also matches every file below a matched directory,
``!`` re-includes, and the last matching pattern decides.
"""

import posixpath
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Pattern, Union

import structlog

from layerwise.utils.error_handler import IgnoreFileError

logger = structlog.get_logger(__name__)


DEFAULT_IGNORE_FILE = ".dockerignore"


@dataclass(frozen=True)
class IgnorePattern:
    """One compiled ignore-file pattern"""
    text: str
    pattern: str
    exclusion: bool
    regex: Pattern[str]

    def matches(self, path: str) -> bool:
        """Match the path itself or any parent directory of it."""
        if self.regex.match(path):
            return True
        parts = path.split("/")[:-1]
        for depth in range(1, len(parts) + 1):
            if self.regex.match("/".join(parts[:depth])):
                return True
        return False


def clean_path(path: str) -> str:
    """Normalize a context-relative path to the form patterns are matched against."""
    cleaned = posixpath.normpath(path.replace("\\", "/"))
    if len(cleaned) > 1 and cleaned.startswith("/"):
        cleaned = cleaned.lstrip("/")
    return cleaned


def compile_pattern(pattern: str) -> Pattern[str]:
    """
    Translate an ignore pattern into an anchored regular expression.

    Args:
        pattern: Cleaned pattern text

    Returns:
        Compiled regex

    Raises:
        IgnoreFileError: If the pattern is malformed
    """
    out = ["^"]
    i = 0
    n = len(pattern)
    while i < n:
        ch = pattern[i]
        if ch == "*":
            if i + 1 < n and pattern[i + 1] == "*":
                i += 1
                if i + 1 < n and pattern[i + 1] == "/":
                    # "**/" matches zero or more directories
                    i += 1
                    out.append("(?:.*/)?")
                else:
                    out.append(".*")
            else:
                out.append("[^/]*")
        elif ch == "?":
            out.append("[^/]")
        elif ch == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                raise IgnoreFileError(f"syntax error in pattern: {pattern}", pattern=pattern)
            body = pattern[i + 1:end]
            if body.startswith("!"):
                body = "^" + body[1:]
            if not body or body == "^":
                raise IgnoreFileError(f"syntax error in pattern: {pattern}", pattern=pattern)
            out.append("[" + body.replace("\\", "\\\\") + "]")
            i = end
        elif ch == "\\":
            if i + 1 >= n:
                raise IgnoreFileError(f"syntax error in pattern: {pattern}", pattern=pattern)
            i += 1
            out.append(re.escape(pattern[i]))
        else:
            out.append(re.escape(ch))
        i += 1
    out.append("$")

    try:
        return re.compile("".join(out))
    except re.error as e:
        raise IgnoreFileError(f"syntax error in pattern: {pattern}: {e}", pattern=pattern) from e


def parse_ignore_file(text: str) -> List[IgnorePattern]:
    """
    Parse ignore-file contents into patterns.

    Args:
        text: File contents

    Returns:
        Ordered list of patterns

    Raises:
        IgnoreFileError: On an empty exclusion or malformed pattern
    """
    patterns = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        exclusion = line.startswith("!")
        if exclusion:
            line = line[1:].strip()
            if not line:
                raise IgnoreFileError('illegal exclusion pattern: "!"', pattern=raw.strip())

        cleaned = clean_path(line)
        if cleaned == ".":
            continue

        patterns.append(
            IgnorePattern(
                text=raw.strip(),
                pattern=cleaned,
                exclusion=exclusion,
                regex=compile_pattern(cleaned),
            )
        )
    return patterns


class IgnoreMatcher:
    """
    Ordered ignore patterns with last-match-wins semantics.
    """

    def __init__(self, patterns: Optional[Iterable[IgnorePattern]] = None, source: Optional[str] = None):
        self.patterns: List[IgnorePattern] = list(patterns or [])
        self.source = source

    @classmethod
    def from_text(cls, text: str, source: Optional[str] = None) -> "IgnoreMatcher":
        return cls(parse_ignore_file(text), source=source)

    @property
    def has_exclusions(self) -> bool:
        return any(p.exclusion for p in self.patterns)

    def __len__(self) -> int:
        return len(self.patterns)

    def is_ignored(self, path: str) -> bool:
        """
        Decide whether a context-relative path is left out of the context.

        Args:
            path: Path relative to the context root, using ``/``

        Returns:
            True if the last matching pattern excludes the path
        """
        path = clean_path(path)
        ignored = False
        for pattern in self.patterns:
            if pattern.matches(path):
                ignored = not pattern.exclusion
        return ignored

    def can_prune(self, directory: str) -> bool:
        """
        Decide whether a directory walk may skip a directory entirely.

        A directory is prunable when it is ignored and no exception pattern
        could re-include something below it.
        """
        directory = clean_path(directory)
        if not self.is_ignored(directory):
            return False
        if not self.has_exclusions:
            return True

        parts = directory.split("/")
        for pattern in self.patterns:
            if pattern.exclusion and _may_match_below(pattern.pattern, parts):
                return False
        return True

    def texts(self) -> List[str]:
        return [p.text for p in self.patterns]


def _may_match_below(pattern: str, parts: List[str]) -> bool:
    """
    Whether a pattern could match a path strictly below the directory 'parts'.

    Patterns no deeper than the directory match it or one of its parents,
    which is already reflected in whether the directory itself is ignored.
    """
    segments = pattern.split("/")
    for depth, segment in enumerate(segments):
        if "**" in segment or "\\" in segment:
            return True
        if depth == len(parts):
            return True
        if not compile_pattern(segment).match(parts[depth]):
            return False
    return False


def load_ignore_file(context_dir: Union[str, Path], name: str = DEFAULT_IGNORE_FILE) -> IgnoreMatcher:
    """
    Load the ignore file from a context root.

    Args:
        context_dir: Build context directory
        name: Ignore file name

    Returns:
        IgnoreMatcher; empty (source None) when the file does not exist
    """
    path = Path(context_dir) / name
    if not path.is_file():
        logger.debug("ignore_file_absent", path=str(path))
        return IgnoreMatcher()

    matcher = IgnoreMatcher.from_text(path.read_text(encoding="utf-8"), source=str(path))
    logger.debug("ignore_file_loaded", path=str(path), patterns=len(matcher))
    return matcher

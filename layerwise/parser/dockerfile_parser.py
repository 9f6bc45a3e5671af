"""Dockerfile parsing into stages and instructions.

The parser follows the classic builder's line handling: parser directives at
the top of the file, escape-character line continuations, comments dropped
(including inside continuations) and case-insensitive keywords.
"""

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Tuple, Union

import structlog

from layerwise.utils.error_handler import DockerfileParseError
from shared.tracing import trace_function

logger = structlog.get_logger(__name__)


KNOWN_INSTRUCTIONS = frozenset({
    "ADD", "ARG", "CMD", "COPY", "ENTRYPOINT", "ENV", "EXPOSE", "FROM",
    "HEALTHCHECK", "LABEL", "MAINTAINER", "ONBUILD", "RUN", "SHELL",
    "STOPSIGNAL", "USER", "VOLUME", "WORKDIR",
})

# Instructions whose arguments may be a JSON array
EXEC_FORM_INSTRUCTIONS = frozenset({"ADD", "CMD", "COPY", "ENTRYPOINT", "RUN", "SHELL", "VOLUME"})

# Instructions accepting leading --flag arguments
FLAG_INSTRUCTIONS = frozenset({"ADD", "COPY", "FROM", "HEALTHCHECK", "RUN"})

KNOWN_DIRECTIVES = frozenset({"escape", "syntax"})

_DIRECTIVE_RE = re.compile(r"^#\s*([a-zA-Z][a-zA-Z0-9_-]*)\s*=\s*(.*?)\s*$")
_SUPPRESS_RE = re.compile(r"^#\s*layerwise:\s*ignore\s*=\s*([A-Za-z0-9_,\s]+)$", re.IGNORECASE)
_FLAG_RE = re.compile(r"^--([a-zA-Z][a-zA-Z0-9_-]*)(?:=(\S*))?(?:\s+|$)")
_KEYWORD_RE = re.compile(r"^\s*(\S+)(?:\s+(.*))?$", re.DOTALL)


@dataclass(frozen=True)
class ImageReference:
    """Base image reference from a FROM line or a --from flag"""
    raw: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    @property
    def is_variable(self) -> bool:
        return "$" in self.raw

    @property
    def is_scratch(self) -> bool:
        return self.repository.lower() == "scratch"

    @property
    def is_pinned(self) -> bool:
        """True when the reference names a digest or a tag other than latest."""
        if self.digest:
            return True
        return bool(self.tag) and self.tag != "latest"

    def __str__(self) -> str:
        return self.raw


@dataclass
class Instruction:
    """One logical Dockerfile instruction"""
    keyword: str
    arguments: str
    line: int
    end_line: int
    stage: Optional[int] = None
    flags: Dict[str, str] = field(default_factory=dict)
    exec_form: Optional[List[str]] = None
    suppressed: FrozenSet[str] = frozenset()

    @property
    def is_exec_form(self) -> bool:
        return self.exec_form is not None

    def words(self) -> List[str]:
        """Arguments split into words (exec form list or whitespace split)."""
        if self.exec_form is not None:
            return list(self.exec_form)
        return self.arguments.split()

    def normalized(self) -> str:
        """Canonical text used for cache keys: keyword, sorted flags and arguments."""
        parts = [self.keyword]
        for name in sorted(self.flags):
            value = self.flags[name]
            parts.append(f"--{name}={value}" if value else f"--{name}")
        if self.exec_form is not None:
            parts.append(json.dumps(self.exec_form))
        else:
            parts.append(" ".join(self.arguments.split()))
        return " ".join(parts)

    def __str__(self) -> str:
        return f"{self.keyword} {self.arguments}".rstrip()


@dataclass
class Stage:
    """Instructions from one FROM up to the next"""
    index: int
    base: ImageReference
    alias: Optional[str] = None
    platform: Optional[str] = None
    instructions: List[Instruction] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.alias or str(self.index)

    def body(self) -> List[Instruction]:
        """Instructions after FROM."""
        return self.instructions[1:]


@dataclass
class Dockerfile:
    """Parsed Dockerfile"""
    stages: List[Stage]
    instructions: List[Instruction]
    directives: Dict[str, str] = field(default_factory=dict)
    global_args: List[Instruction] = field(default_factory=list)
    path: Optional[str] = None

    @property
    def escape(self) -> str:
        return self.directives.get("escape", "\\")

    def stage_by_name(self, name: str) -> Optional[Stage]:
        """Find a stage by alias or numeric index."""
        lowered = name.lower()
        for stage in self.stages:
            if stage.alias == lowered:
                return stage
        if lowered.isdigit():
            index = int(lowered)
            if 0 <= index < len(self.stages):
                return self.stages[index]
        return None

    def stage_names(self) -> List[str]:
        return [stage.alias for stage in self.stages if stage.alias]


def parse_image_reference(text: str) -> ImageReference:
    """
    Split an image reference into repository, tag and digest.

    Args:
        text: Reference such as ``node:20-alpine`` or ``nginx@sha256:...``

    Returns:
        ImageReference
    """
    remainder = text
    digest = None
    if "@" in remainder:
        remainder, digest = remainder.split("@", 1)

    tag = None
    last_slash = remainder.rfind("/")
    colon = remainder.rfind(":")
    # A colon before the last slash is a registry port, not a tag
    if colon > last_slash:
        remainder, tag = remainder[:colon], remainder[colon + 1:]

    return ImageReference(raw=text, repository=remainder, tag=tag or None, digest=digest or None)


def parse_arg_declarations(arguments: str) -> List[Tuple[str, Optional[str]]]:
    """
    Parse the body of an ARG instruction.

    Args:
        arguments: Text after ``ARG``, e.g. ``NODE_ENV=production VERSION``

    Returns:
        List of (name, default) pairs; default is None when absent
    """
    declarations = []
    for token in arguments.split():
        if "=" in token:
            name, default = token.split("=", 1)
            if len(default) >= 2 and default[0] == default[-1] and default[0] in "\"'":
                default = default[1:-1]
            declarations.append((name, default))
        else:
            declarations.append((token, None))
    return declarations


def _parse_directives(lines: List[str]) -> Tuple[Dict[str, str], int]:
    """Read parser directives from the top of the file.

    Returns the directives and the index of the first line after them.
    """
    directives: Dict[str, str] = {}
    for index, raw in enumerate(lines):
        match = _DIRECTIVE_RE.match(raw.strip())
        if not match or match.group(1).lower() not in KNOWN_DIRECTIVES:
            return directives, index
        name = match.group(1).lower()
        if name in directives:
            raise DockerfileParseError(f"only one {name} parser directive can be used", line=index + 1)
        directives[name] = match.group(2)
    return directives, len(lines)


def _parse_flags(arguments: str) -> Tuple[Dict[str, str], str]:
    flags: Dict[str, str] = {}
    remainder = arguments
    while remainder.startswith("--"):
        match = _FLAG_RE.match(remainder)
        if not match:
            break
        flags[match.group(1).lower()] = match.group(2) or ""
        remainder = remainder[match.end():]
    return flags, remainder.strip()


def _parse_exec_form(arguments: str) -> Optional[List[str]]:
    if not arguments.startswith("["):
        return None
    try:
        value = json.loads(arguments)
    except ValueError:
        # Not valid JSON: the builder falls back to shell form
        return None
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return value
    return None


def _suppressions(comments: List[str]) -> FrozenSet[str]:
    rules = set()
    for comment in comments:
        match = _SUPPRESS_RE.match(comment)
        if match:
            rules.update(rule.strip().upper() for rule in match.group(1).split(",") if rule.strip())
    return frozenset(rules)


def _logical_lines(lines: List[str], start: int, escape: str):
    """Yield (first_line, last_line, text, preceding_comments) for each instruction."""
    comments: List[str] = []
    parts: List[str] = []
    first_line = 0

    for index in range(start, len(lines)):
        lineno = index + 1
        raw = lines[index]
        stripped = raw.strip()

        if not parts:
            if not stripped:
                comments = []
                continue
            if stripped.startswith("#"):
                comments.append(stripped)
                continue
            first_line = lineno
        elif not stripped or stripped.startswith("#"):
            # Blank and comment lines inside a continuation are dropped
            continue

        body = raw.rstrip()
        if body.endswith(escape):
            parts.append(body[:-1])
            continue

        parts.append(body)
        yield first_line, lineno, "".join(parts), comments
        parts = []
        comments = []

    if parts:
        yield first_line, len(lines), "".join(parts), comments


@trace_function("parse_dockerfile")
def parse_dockerfile(text: str, path: Optional[str] = None) -> Dockerfile:
    """
    Parse Dockerfile text.

    Args:
        text: Dockerfile contents
        path: Optional path used in error messages

    Returns:
        Parsed Dockerfile

    Raises:
        DockerfileParseError: On unknown instructions, instructions before
            the first FROM, malformed FROM lines or a missing FROM
    """
    lines = text.splitlines()
    directives, start = _parse_directives(lines)

    escape = directives.get("escape", "\\")
    if escape not in ("\\", "`"):
        raise DockerfileParseError(f"invalid escape token '{escape}' does not match ` or \\", line=1, path=path)

    stages: List[Stage] = []
    instructions: List[Instruction] = []
    global_args: List[Instruction] = []

    for first_line, last_line, logical, comments in _logical_lines(lines, start, escape):
        match = _KEYWORD_RE.match(logical)
        if not match:
            continue
        keyword = match.group(1).upper()
        arguments = (match.group(2) or "").strip()

        if keyword not in KNOWN_INSTRUCTIONS:
            raise DockerfileParseError(f"unknown instruction: {match.group(1)}", line=first_line, path=path)

        flags: Dict[str, str] = {}
        if keyword in FLAG_INSTRUCTIONS:
            flags, arguments = _parse_flags(arguments)

        exec_form = _parse_exec_form(arguments) if keyword in EXEC_FORM_INSTRUCTIONS else None

        instruction = Instruction(
            keyword=keyword,
            arguments=arguments,
            line=first_line,
            end_line=last_line,
            flags=flags,
            exec_form=exec_form,
            suppressed=_suppressions(comments),
        )

        if keyword == "FROM":
            stage = _start_stage(instruction, len(stages), path)
            stages.append(stage)
        elif not stages:
            if keyword != "ARG":
                raise DockerfileParseError(
                    f"{keyword} instruction must come after FROM (only ARG may precede it)",
                    line=first_line,
                    path=path,
                )
            global_args.append(instruction)
            instructions.append(instruction)
            continue

        instruction.stage = stages[-1].index
        stages[-1].instructions.append(instruction)
        instructions.append(instruction)

    if not stages:
        raise DockerfileParseError("no FROM instruction found", path=path)

    logger.debug(
        "dockerfile_parsed",
        path=path,
        stages=len(stages),
        instructions=len(instructions),
    )

    return Dockerfile(
        stages=stages,
        instructions=instructions,
        directives=directives,
        global_args=global_args,
        path=path,
    )


def _start_stage(instruction: Instruction, index: int, path: Optional[str]) -> Stage:
    tokens = instruction.arguments.split()
    alias = None
    if len(tokens) == 3 and tokens[1].lower() == "as":
        alias = tokens[2].lower()
    elif len(tokens) != 1:
        raise DockerfileParseError(
            "FROM requires either one or three arguments",
            line=instruction.line,
            path=path,
        )

    return Stage(
        index=index,
        base=parse_image_reference(tokens[0]),
        alias=alias,
        platform=instruction.flags.get("platform"),
        instructions=[instruction],
    )


def load_dockerfile(path: Union[str, Path]) -> Dockerfile:
    """
    Read and parse a Dockerfile from disk.

    Args:
        path: Dockerfile location

    Returns:
        Parsed Dockerfile
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    return parse_dockerfile(text, path=str(path))

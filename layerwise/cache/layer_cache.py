"""Deterministic layer cache keys and incremental-build planning.

Each layer key chains the parent key, the normalized instruction and, for
context copies, the digest of every copied file. Equal keys mean the
builder can reuse the layer; a changed key invalidates every layer after
it in the stage and every stage built on top of it.
"""

import hashlib
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Pattern, Set, Union

import structlog

from layerwise.cache.manifest_store import CacheManifest, LayerRecord
from layerwise.context.build_context import scan_context
from layerwise.context.ignore_rules import IgnoreMatcher, clean_path, compile_pattern, load_ignore_file
from layerwise.parser import Dockerfile, Instruction, Stage, parse_arg_declarations
from shared.tracing import trace_function

logger = structlog.get_logger(__name__)


_VARIABLE_RE = re.compile(r"\$(?:\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}|([A-Za-z_][A-Za-z0-9_]*))")
_WILDCARDS = "*?["


class CacheStatus(str, Enum):
    """Whether the builder would reuse a layer"""
    HIT = "hit"
    MISS = "miss"
    NEW = "new"


@dataclass
class LayerPlan:
    """Cache decision for one layer"""
    stage: int
    offset: int
    instruction: Instruction
    key: str
    status: CacheStatus = CacheStatus.NEW
    reason: Optional[str] = None
    sources: Dict[str, str] = field(default_factory=dict)
    changed_sources: List[str] = field(default_factory=list)
    from_stage: Optional[int] = None

    def to_record(self) -> LayerRecord:
        return LayerRecord(
            stage=self.stage,
            offset=self.offset,
            instruction=self.instruction.normalized(),
            key=self.key,
            sources=dict(self.sources),
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "stage": self.stage,
            "line": self.instruction.line,
            "instruction": str(self.instruction),
            "key": self.key,
            "status": self.status.value,
            "reason": self.reason,
            "changed_sources": list(self.changed_sources),
        }


@dataclass
class CachePlan:
    """Cache decisions for every layer of a Dockerfile"""
    layers: List[LayerPlan] = field(default_factory=list)
    dockerfile: Optional[str] = None

    def count(self, status: CacheStatus) -> int:
        return sum(1 for layer in self.layers if layer.status == status)

    @property
    def rebuilt(self) -> int:
        """Layers that would execute (misses and new layers)."""
        return sum(1 for layer in self.layers if layer.status != CacheStatus.HIT)

    def first_misses(self) -> Dict[int, LayerPlan]:
        """First layer per stage that the builder would not reuse."""
        firsts: Dict[int, LayerPlan] = {}
        for layer in self.layers:
            if layer.status != CacheStatus.HIT and layer.stage not in firsts:
                firsts[layer.stage] = layer
        return firsts

    def stage_keys(self) -> Dict[int, str]:
        """Final key of each stage."""
        keys: Dict[int, str] = {}
        for layer in self.layers:
            keys[layer.stage] = layer.key
        return keys

    def to_manifest(self) -> CacheManifest:
        return CacheManifest(
            layers=[layer.to_record() for layer in self.layers],
            dockerfile=self.dockerfile,
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "dockerfile": self.dockerfile,
            "layers": [layer.to_dict() for layer in self.layers],
            "hits": self.count(CacheStatus.HIT),
            "misses": self.count(CacheStatus.MISS),
            "new": self.count(CacheStatus.NEW),
            "first_misses": {
                str(stage): layer.instruction.line for stage, layer in self.first_misses().items()
            },
        }


def _hash(*parts: str) -> str:
    digest = hashlib.sha256()
    for part in parts:
        digest.update(part.encode("utf-8"))
        digest.update(b"\0")
    return digest.hexdigest()


def expand_variables(text: str, values: Dict[str, Optional[str]]) -> str:
    """Substitute ``$VAR``, ``${VAR}`` and ``${VAR:-default}`` from values."""

    def replace(match: "re.Match[str]") -> str:
        name = match.group(1) or match.group(3)
        value = values.get(name)
        if value:
            return value
        if match.group(2) is not None:
            return match.group(2)
        return value if value is not None else ""

    return _VARIABLE_RE.sub(replace, text)


def _is_remote(source: str) -> bool:
    return source.startswith(("http://", "https://", "git@"))


class LayerCachePlanner:
    """
    Computes layer cache keys for a Dockerfile against its build context.
    """

    def __init__(
        self,
        context_root: Union[str, Path],
        matcher: Optional[IgnoreMatcher] = None,
        build_args: Optional[Dict[str, str]] = None,
        chunk_size: int = 1024 * 1024,
        exclude: Optional[Iterable[str]] = None,
    ):
        """
        Initialize the planner.

        Args:
            context_root: Build context directory
            matcher: Ignore patterns (loaded from the context when None)
            build_args: Values overriding ARG defaults
            chunk_size: Read size when hashing files
            exclude: Context paths never treated as COPY sources (e.g. the manifest itself)
        """
        self.context_root = Path(context_root)
        self.matcher = matcher if matcher is not None else load_ignore_file(self.context_root)
        self.build_args = dict(build_args or {})
        self.chunk_size = chunk_size
        self.exclude = {clean_path(p) for p in exclude or []}
        self._files: Optional[List[str]] = None
        self._digests: Dict[str, str] = {}
        self._patterns: Dict[str, Pattern[str]] = {}

    # Context access

    def context_files(self) -> List[str]:
        """Context files visible to COPY, i.e. not excluded by the ignore file."""
        if self._files is None:
            report = scan_context(self.context_root, self.matcher, measure_excluded=False)
            self._files = [
                p for p in report.paths() if p not in self.exclude and not self.matcher.is_ignored(p)
            ]
        return self._files

    def file_digest(self, path: str) -> str:
        """SHA-256 of a context file's content (link target for symlinks)."""
        if path not in self._digests:
            full = self.context_root / path
            digest = hashlib.sha256()
            if full.is_symlink():
                digest.update(b"symlink:" + os.readlink(full).encode("utf-8"))
            else:
                with open(full, "rb") as f:
                    for chunk in iter(lambda: f.read(self.chunk_size), b""):
                        digest.update(chunk)
            self._digests[path] = digest.hexdigest()
        return self._digests[path]

    def source_matches(self, source: str, path: str) -> bool:
        """Whether a COPY source selects a context path."""
        cleaned = clean_path(source)
        if cleaned in (".", "/"):
            return True
        if any(ch in cleaned for ch in _WILDCARDS):
            regex = self._patterns.get(cleaned)
            if regex is None:
                regex = compile_pattern(cleaned)
                self._patterns[cleaned] = regex
            parts = path.split("/")
            return any(regex.match("/".join(parts[:depth])) for depth in range(1, len(parts) + 1))
        return path == cleaned or path.startswith(cleaned + "/")

    def resolve_sources(self, sources: Iterable[str]) -> Dict[str, str]:
        """Map every context file selected by the sources to its digest."""
        resolved: Dict[str, str] = {}
        for source in sources:
            if _is_remote(source):
                resolved[source] = _hash("remote", source)
                continue
            for path in self.context_files():
                if path not in resolved and self.source_matches(source, path):
                    resolved[path] = self.file_digest(path)
        return dict(sorted(resolved.items()))

    # Planning

    def _global_arg_values(self, dockerfile: Dockerfile) -> Dict[str, Optional[str]]:
        values: Dict[str, Optional[str]] = {}
        for instruction in dockerfile.global_args:
            for name, default in parse_arg_declarations(instruction.arguments):
                values[name] = self.build_args.get(name, default)
        return values

    def _stage_parent(self, dockerfile: Dockerfile, stage: Stage, global_args: Dict[str, Optional[str]]) -> Optional[Stage]:
        reference = expand_variables(stage.base.raw, global_args)
        parent = dockerfile.stage_by_name(reference)
        if parent is not None and parent.index < stage.index:
            return parent
        return None

    def _layer_keys(self, dockerfile: Dockerfile) -> List[LayerPlan]:
        global_args = self._global_arg_values(dockerfile)
        stage_keys: Dict[int, str] = {}
        layers: List[LayerPlan] = []

        for stage in dockerfile.stages:
            parent = self._stage_parent(dockerfile, stage, global_args)
            if parent is not None:
                key = _hash("stage", stage_keys[parent.index])
            else:
                reference = expand_variables(stage.base.raw, global_args)
                key = _hash("image", reference, stage.platform or "")
            layers.append(LayerPlan(stage=stage.index, offset=0, instruction=stage.instructions[0], key=key))

            declared: Dict[str, Optional[str]] = {}
            for offset, instruction in enumerate(stage.body(), start=1):
                parts = [key, instruction.normalized()]
                sources: Dict[str, str] = {}
                from_stage: Optional[int] = None

                if instruction.keyword == "ARG":
                    for name, default in parse_arg_declarations(instruction.arguments):
                        if default is None and name in global_args:
                            default = global_args[name]
                        declared[name] = self.build_args.get(name, default)
                elif instruction.keyword == "RUN":
                    parts.extend(f"{name}={value or ''}" for name, value in sorted(declared.items()))
                elif instruction.keyword in ("COPY", "ADD"):
                    source_stage = instruction.flags.get("from")
                    if source_stage is not None:
                        referenced = dockerfile.stage_by_name(expand_variables(source_stage, declared))
                        if referenced is not None and referenced.index in stage_keys:
                            from_stage = referenced.index
                            parts.append("stage:" + stage_keys[referenced.index])
                        else:
                            parts.append("image:" + source_stage)
                    else:
                        words = instruction.words()
                        sources = self.resolve_sources(words[:-1])
                        parts.extend(f"{path}={digest}" for path, digest in sources.items())

                key = _hash(*parts)
                layers.append(
                    LayerPlan(
                        stage=stage.index,
                        offset=offset,
                        instruction=instruction,
                        key=key,
                        sources=sources,
                        from_stage=from_stage,
                    )
                )

            stage_keys[stage.index] = key

        return layers

    @trace_function("plan_cache")
    def plan(self, dockerfile: Dockerfile, previous: Optional[CacheManifest] = None) -> CachePlan:
        """
        Compute layer keys and compare them with a previous run.

        Args:
            dockerfile: Parsed Dockerfile
            previous: Manifest saved by an earlier run, if any

        Returns:
            CachePlan; every layer is NEW when there is no previous manifest
        """
        layers = self._layer_keys(dockerfile)
        plan = CachePlan(layers=layers, dockerfile=dockerfile.path)

        if previous is None:
            for layer in layers:
                layer.reason = "no previous manifest"
        else:
            known = previous.keys()
            missed_stages: Set[int] = set()
            for layer in layers:
                if layer.key in known:
                    layer.status = CacheStatus.HIT
                    continue
                layer.status = CacheStatus.MISS
                if layer.stage in missed_stages:
                    layer.reason = "earlier layer rebuilt"
                else:
                    missed_stages.add(layer.stage)
                    self._explain_miss(layer, previous.at(layer.stage, layer.offset))

        logger.info(
            "cache_planned",
            dockerfile=dockerfile.path,
            layers=len(layers),
            hits=plan.count(CacheStatus.HIT),
            misses=plan.count(CacheStatus.MISS),
        )
        return plan

    def _explain_miss(self, layer: LayerPlan, record: Optional[LayerRecord]) -> None:
        if record is None:
            layer.reason = "layer not present in previous build"
            return
        if record.instruction != layer.instruction.normalized():
            layer.reason = "instruction changed"
            return
        changed = sorted(
            path
            for path in set(record.sources) | set(layer.sources)
            if record.sources.get(path) != layer.sources.get(path)
        )
        if changed:
            layer.changed_sources = changed
            layer.reason = f"{len(changed)} source file(s) changed"
        elif layer.offset == 0:
            layer.reason = "base image or parent stage changed"
        else:
            layer.reason = "build arguments or referenced stage changed"

    @trace_function("cache_impact")
    def impact(self, dockerfile: Dockerfile, changed_paths: Iterable[str]) -> CachePlan:
        """
        Predict which layers a set of changed context paths would rebuild.

        Args:
            dockerfile: Parsed Dockerfile
            changed_paths: Context-relative paths that change

        Returns:
            CachePlan with HIT for reused layers and MISS for rebuilt ones
        """
        changed = [clean_path(p) for p in changed_paths]
        relevant = [p for p in changed if not self.matcher.is_ignored(p)]
        layers = self._layer_keys(dockerfile)
        global_args = self._global_arg_values(dockerfile)

        invalid_stages: Set[int] = set()
        for stage in dockerfile.stages:
            parent = self._stage_parent(dockerfile, stage, global_args)
            invalid = parent is not None and parent.index in invalid_stages
            invalid_reason = f"stage {parent.name} rebuilt" if invalid and parent is not None else None

            for layer in (item for item in layers if item.stage == stage.index):
                instruction = layer.instruction
                if not invalid and instruction.keyword in ("COPY", "ADD") and layer.offset > 0:
                    if "from" in instruction.flags:
                        if layer.from_stage is not None and layer.from_stage in invalid_stages:
                            invalid = True
                            referenced = dockerfile.stages[layer.from_stage]
                            invalid_reason = f"copies from rebuilt stage {referenced.name}"
                    else:
                        sources = instruction.words()[:-1]
                        hits = sorted(p for p in relevant if any(self.source_matches(s, p) for s in sources))
                        if hits:
                            invalid = True
                            layer.changed_sources = hits
                            invalid_reason = f"{len(hits)} changed path(s) copied"

                if invalid:
                    layer.status = CacheStatus.MISS
                    layer.reason = invalid_reason
                    invalid_reason = "earlier layer rebuilt"
                else:
                    layer.status = CacheStatus.HIT

            if invalid:
                invalid_stages.add(stage.index)

        plan = CachePlan(layers=layers, dockerfile=dockerfile.path)
        logger.info(
            "cache_impact_computed",
            changed=len(changed),
            relevant=len(relevant),
            rebuilt=plan.rebuilt,
        )
        return plan

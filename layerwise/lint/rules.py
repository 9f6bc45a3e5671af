"""Layer-order and cache-hygiene lint rules.

Every rule inspects a parsed Dockerfile and yields findings. Rules register
themselves in a module-level registry keyed by rule id.
"""

import re
from fnmatch import fnmatchcase
from typing import Dict, Iterable, Iterator, List, Optional, Type

from layerwise.parser import Dockerfile, Instruction, Stage
from shared.models import Finding, Severity


_REGISTRY: Dict[str, Type["Rule"]] = {}


DEPENDENCY_MANIFESTS = frozenset({
    "package.json", "package-lock.json", "npm-shrinkwrap.json", "yarn.lock",
    "pnpm-lock.yaml", ".yarnrc", ".yarnrc.yml", ".npmrc",
    "requirements.txt", "Pipfile", "Pipfile.lock", "pyproject.toml", "poetry.lock",
    "go.mod", "go.sum", "Gemfile", "Gemfile.lock", "composer.json", "composer.lock",
    "pom.xml", "build.gradle", "build.gradle.kts", "settings.gradle", "Cargo.toml", "Cargo.lock",
})

_MANIFEST_PATTERNS = [re.compile(r"^requirements[\w.-]*\.txt$"), re.compile(r"^[\w.-]+\.csproj$")]

BROAD_SOURCES = frozenset({".", "./", "*", "./*"})

_LEADING_GLOB_RE = re.compile(r"^[*?\[]")

ARCHIVE_SUFFIXES = (".tar", ".tar.gz", ".tgz", ".tar.bz2", ".tbz2", ".tar.xz", ".txz")

_SHELL_SPLIT_RE = re.compile(r"&&|\|\||;|\|")

_FRONTEND_BUILD_RE = re.compile(
    r"\b(?:npm\s+run\s+build|yarn\s+(?:run\s+)?build|pnpm\s+(?:run\s+)?build|ng\s+build|vite\s+build)\b"
)


def register(cls: Type["Rule"]) -> Type["Rule"]:
    """Class decorator adding a rule to the registry."""
    if cls.rule_id in _REGISTRY:
        raise ValueError(f"duplicate rule id {cls.rule_id}")
    _REGISTRY[cls.rule_id] = cls
    return cls


def available_rules() -> List["Rule"]:
    """Instances of every registered rule, ordered by id."""
    return [_REGISTRY[rule_id]() for rule_id in sorted(_REGISTRY)]


def get_rule(rule_id: str) -> Optional["Rule"]:
    cls = _REGISTRY.get(rule_id.upper())
    return cls() if cls else None


class Rule:
    """Base class for lint rules"""

    rule_id: str = ""
    name: str = ""
    severity: Severity = Severity.INFO
    description: str = ""

    def check(self, dockerfile: Dockerfile) -> Iterable[Finding]:
        raise NotImplementedError

    def finding(
        self,
        instruction: Instruction,
        message: str,
        suggestion: Optional[str] = None,
    ) -> Finding:
        return Finding(
            rule_id=self.rule_id,
            severity=self.severity,
            message=message,
            line=instruction.line,
            stage=instruction.stage,
            suggestion=suggestion,
        )


# Helpers


def shell_commands(instruction: Instruction) -> List[List[str]]:
    """Split a RUN instruction into simple commands, each a list of words."""
    if instruction.exec_form is not None:
        text = " ".join(instruction.exec_form)
    else:
        text = instruction.arguments
    commands = []
    for part in _SHELL_SPLIT_RE.split(text):
        words = [w for w in part.split() if w]
        # Drop leading env assignments and sudo
        while words and ("=" in words[0] and not words[0].startswith("-") or words[0] == "sudo"):
            words = words[1:]
        if words:
            commands.append(words)
    return commands


def run_text(instruction: Instruction) -> str:
    if instruction.exec_form is not None:
        return " ".join(instruction.exec_form)
    return instruction.arguments


def copy_sources(instruction: Instruction) -> List[str]:
    """Context sources of a COPY or ADD; empty when copying from another stage or image."""
    if instruction.keyword not in ("COPY", "ADD") or "from" in instruction.flags:
        return []
    words = instruction.words()
    return words[:-1] if len(words) > 1 else []


def copy_destination(instruction: Instruction) -> Optional[str]:
    words = instruction.words()
    return words[-1] if len(words) > 1 else None


def _basename(source: str) -> str:
    return source.rstrip("/").rsplit("/", 1)[-1]


def source_matches(source: str, name: str) -> bool:
    """Whether a COPY source names the file 'name'.

    Glob sources match on their basename and need a literal prefix, so
    'package*.json' names package.json while '*.json' or 'src/*' names nothing.
    """
    pattern = _basename(source)
    if _LEADING_GLOB_RE.match(pattern):
        return False
    return fnmatchcase(name, pattern)


def is_manifest(source: str) -> bool:
    if is_broad_source(source):
        return False
    name = _basename(source)
    if name in DEPENDENCY_MANIFESTS or any(p.match(name) for p in _MANIFEST_PATTERNS):
        return True
    return any(source_matches(source, manifest) for manifest in DEPENDENCY_MANIFESTS)


def is_broad_source(source: str) -> bool:
    return source in BROAD_SOURCES


def _is_install(words: List[str]) -> bool:
    tool = words[0].rsplit("/", 1)[-1]
    args = words[1:]
    first = args[0] if args else ""

    if tool in ("npm", "pnpm"):
        return first in ("ci", "install", "i")
    if tool == "yarn":
        return not args or first == "install" or all(a.startswith("-") for a in args)
    if tool in ("pip", "pip3") or (tool.startswith("python") and args[:2] == ["-m", "pip"]):
        if tool.startswith("python"):
            args = args[2:]
        return bool(args) and args[0] == "install" and ("-r" in args or "--requirement" in args or any(
            a.startswith("requirements") for a in args))
    if tool in ("poetry", "pipenv", "bundle", "composer"):
        return first == "install"
    if tool == "go":
        return args[:2] == ["mod", "download"]
    if tool == "cargo":
        return first == "fetch"
    if tool == "mvn":
        return any(a.startswith("dependency:") for a in args)
    if tool in ("gradle", "./gradlew"):
        return "dependencies" in args
    if tool == "dotnet":
        return first == "restore"
    return False


def is_dependency_install(instruction: Instruction) -> bool:
    if instruction.keyword != "RUN":
        return False
    return any(_is_install(words) for words in shell_commands(instruction))


def _stage_chain(dockerfile: Dockerfile, stage: Stage) -> Iterator[Stage]:
    """The stage followed by the earlier stages it is built FROM."""
    seen = set()
    current: Optional[Stage] = stage
    while current is not None and current.index not in seen:
        seen.add(current.index)
        yield current
        parent = dockerfile.stage_by_name(current.base.raw)
        current = parent if parent is not None and parent.index < current.index else None


# Rules


@register
class CopySourceBeforeInstall(Rule):
    rule_id = "LW001"
    name = "copy-source-before-install"
    severity = Severity.WARNING
    description = (
        "The whole context is copied before dependencies are installed, so any "
        "source change invalidates the install layer."
    )

    def check(self, dockerfile: Dockerfile) -> Iterable[Finding]:
        for stage in dockerfile.stages:
            broad_copy: Optional[Instruction] = None
            for instruction in stage.body():
                if broad_copy is None and any(is_broad_source(s) for s in copy_sources(instruction)):
                    broad_copy = instruction
                elif broad_copy is not None and is_dependency_install(instruction):
                    yield self.finding(
                        broad_copy,
                        f"'{broad_copy}' precedes the dependency install on line {instruction.line}",
                        suggestion=(
                            "copy only the dependency manifests (e.g. package.json and the lockfile), "
                            "install, then copy the rest of the source"
                        ),
                    )
                    break


@register
class ManifestAfterSource(Rule):
    rule_id = "LW002"
    name = "manifest-after-source"
    severity = Severity.WARNING
    description = "A dependency manifest is copied after application source in the same stage."

    def check(self, dockerfile: Dockerfile) -> Iterable[Finding]:
        for stage in dockerfile.stages:
            source_copy: Optional[Instruction] = None
            for instruction in stage.body():
                sources = copy_sources(instruction)
                if not sources:
                    continue
                if all(is_manifest(s) for s in sources):
                    if source_copy is not None:
                        yield self.finding(
                            instruction,
                            f"manifest copy '{instruction}' comes after source copy on line {source_copy.line}",
                            suggestion="move manifest copies and the install step above source copies",
                        )
                elif source_copy is None:
                    source_copy = instruction


@register
class AptUpdateAlone(Rule):
    rule_id = "LW003"
    name = "apt-update-alone"
    severity = Severity.WARNING
    description = "apt-get update in its own RUN is cached separately and goes stale."

    def check(self, dockerfile: Dockerfile) -> Iterable[Finding]:
        for instruction in dockerfile.instructions:
            if instruction.keyword != "RUN":
                continue
            commands = shell_commands(instruction)
            updates = any(w[0] in ("apt-get", "apt") and "update" in w[1:2] for w in commands)
            installs = any(w[0] in ("apt-get", "apt") and "install" in w[1:] for w in commands)
            if updates and not installs:
                yield self.finding(
                    instruction,
                    "apt-get update runs without an install in the same RUN",
                    suggestion="combine as 'apt-get update && apt-get install -y ...' in one RUN",
                )


@register
class PackageCacheKept(Rule):
    rule_id = "LW004"
    name = "package-cache-kept"
    severity = Severity.INFO
    description = "Package manager caches are left in the layer."

    def check(self, dockerfile: Dockerfile) -> Iterable[Finding]:
        for stage in dockerfile.stages:
            pip_cache_disabled = False
            for instruction in stage.body():
                if instruction.keyword == "ENV" and "PIP_NO_CACHE_DIR" in instruction.arguments:
                    pip_cache_disabled = True
                if instruction.keyword != "RUN":
                    continue
                if "type=cache" in instruction.flags.get("mount", ""):
                    continue

                text = run_text(instruction)
                for words in shell_commands(instruction):
                    tool = words[0]
                    if tool in ("apt-get", "apt") and "install" in words[1:]:
                        if "/var/lib/apt/lists" not in text:
                            yield self.finding(
                                instruction,
                                "apt package lists are kept in the layer",
                                suggestion="end the RUN with 'rm -rf /var/lib/apt/lists/*'",
                            )
                    elif tool == "apk" and "add" in words[1:2]:
                        if "--no-cache" not in words and "/var/cache/apk" not in text:
                            yield self.finding(
                                instruction,
                                "apk index cache is kept in the layer",
                                suggestion="use 'apk add --no-cache'",
                            )
                    elif tool in ("pip", "pip3") and "install" in words[1:2]:
                        if "--no-cache-dir" not in words and not pip_cache_disabled:
                            yield self.finding(
                                instruction,
                                "pip download cache is kept in the layer",
                                suggestion="use 'pip install --no-cache-dir'",
                            )


@register
class UnpinnedBaseImage(Rule):
    rule_id = "LW005"
    name = "unpinned-base-image"
    severity = Severity.WARNING
    description = "Base image has no tag or uses latest, so rebuilds are not reproducible."

    def check(self, dockerfile: Dockerfile) -> Iterable[Finding]:
        for stage in dockerfile.stages:
            base = stage.base
            if base.is_scratch or base.is_variable or base.is_pinned:
                continue
            earlier = dockerfile.stage_by_name(base.raw)
            if earlier is not None and earlier.index < stage.index:
                continue
            detail = "uses the latest tag" if base.tag == "latest" else "has no tag"
            yield self.finding(
                stage.instructions[0],
                f"base image '{base}' {detail}",
                suggestion="pin a version tag or digest, e.g. node:20-alpine",
            )


@register
class AddForLocalFiles(Rule):
    rule_id = "LW006"
    name = "add-for-local-files"
    severity = Severity.INFO
    description = "ADD is used where COPY is enough."

    def check(self, dockerfile: Dockerfile) -> Iterable[Finding]:
        for instruction in dockerfile.instructions:
            if instruction.keyword != "ADD":
                continue
            sources = copy_sources(instruction)
            if not sources:
                continue
            remote = any(s.startswith(("http://", "https://", "git@")) for s in sources)
            archive = any(s.lower().endswith(ARCHIVE_SUFFIXES) for s in sources)
            if not remote and not archive:
                yield self.finding(
                    instruction,
                    "ADD copies local files only",
                    suggestion="use COPY, which has no implicit extraction or download",
                )


@register
class ConsecutiveRun(Rule):
    rule_id = "LW007"
    name = "consecutive-run"
    severity = Severity.INFO
    description = "Consecutive RUN instructions each create a layer."

    def check(self, dockerfile: Dockerfile) -> Iterable[Finding]:
        for stage in dockerfile.stages:
            group: List[Instruction] = []
            for instruction in stage.body() + [None]:  # type: ignore[operator]
                if instruction is not None and instruction.keyword == "RUN":
                    group.append(instruction)
                    continue
                if len(group) > 1:
                    yield self.finding(
                        group[0],
                        f"{len(group)} consecutive RUN instructions (lines {group[0].line}-{group[-1].end_line})",
                        suggestion="merge related commands with '&&' to reduce layers",
                    )
                group = []


@register
class NpmInstallWithLockfile(Rule):
    rule_id = "LW008"
    name = "npm-install-with-lockfile"
    severity = Severity.INFO
    description = "npm install is used although a lockfile is copied."

    def check(self, dockerfile: Dockerfile) -> Iterable[Finding]:
        for stage in dockerfile.stages:
            has_lockfile = False
            for instruction in stage.body():
                if any(is_broad_source(s) or source_matches(s, "package-lock.json")
                       for s in copy_sources(instruction)):
                    has_lockfile = True
                if not has_lockfile or instruction.keyword != "RUN":
                    continue
                for words in shell_commands(instruction):
                    if words[0] == "npm" and words[1:2] in (["install"], ["i"]) and all(
                            a.startswith("-") and a not in ("-g", "--global") for a in words[2:]):
                        yield self.finding(
                            instruction,
                            "npm install may rewrite the lockfile and resolve new versions",
                            suggestion="use 'npm ci' for reproducible installs",
                        )
                        break


@register
class SingleStageFrontendBuild(Rule):
    rule_id = "LW009"
    name = "single-stage-frontend-build"
    severity = Severity.INFO
    description = "A front-end build runs in the final image, shipping the toolchain with it."

    def check(self, dockerfile: Dockerfile) -> Iterable[Finding]:
        if len(dockerfile.stages) != 1:
            return
        for instruction in dockerfile.stages[0].body():
            if instruction.keyword == "RUN" and _FRONTEND_BUILD_RE.search(run_text(instruction)):
                yield self.finding(
                    instruction,
                    "front-end assets are built in a single-stage image",
                    suggestion=(
                        "build in a named stage and COPY --from it into a slim runtime "
                        "image such as nginx"
                    ),
                )
                return


@register
class MissingWorkdir(Rule):
    rule_id = "LW010"
    name = "missing-workdir"
    severity = Severity.INFO
    description = "Files are copied to a relative destination before WORKDIR is set."

    def check(self, dockerfile: Dockerfile) -> Iterable[Finding]:
        for stage in dockerfile.stages:
            inherited = any(
                i.keyword == "WORKDIR"
                for parent in list(_stage_chain(dockerfile, stage))[1:]
                for i in parent.body()
            )
            if inherited:
                continue
            for instruction in stage.body():
                if instruction.keyword == "WORKDIR":
                    break
                if instruction.keyword not in ("COPY", "ADD"):
                    continue
                dest = copy_destination(instruction)
                if dest and not dest.startswith(("/", "$")) and not re.match(r"^[A-Za-z]:[\\/]", dest):
                    yield self.finding(
                        instruction,
                        f"relative destination '{dest}' resolves against / because no WORKDIR is set",
                        suggestion="set WORKDIR (e.g. WORKDIR /app) before copying",
                    )
                    break


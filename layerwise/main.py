"""Command-line entry point for layerwise."""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

import structlog
from pydantic import ValidationError

from layerwise import __version__
from layerwise.analysis import AnalysisResult, Analyzer, parse_build_args
from layerwise.config import Config, get_config
from layerwise.context import CONTEXT_RULES, render_ignore_file, suggest_ignore_patterns
from layerwise.lint import available_rules
from layerwise.report import exit_code, format_json, format_text
from layerwise.utils.error_handler import (
    EXIT_OK,
    ConfigurationError,
    ErrorCategory,
    LayerwiseError,
    classify_error,
    exit_code_for,
)
from shared.logging import bind_context, bind_target, clear_context, configure_logging
from shared.metrics import AnalysisMetrics
from shared.models import Severity
from shared.tracing import configure_tracing

logger = structlog.get_logger(__name__)

SEVERITIES = [s.value for s in Severity]


class _ArgumentParser(argparse.ArgumentParser):
    """ArgumentParser raising instead of exiting, so usage errors share one exit path."""

    def error(self, message: str) -> None:  # type: ignore[override]
        raise ConfigurationError(message)


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--log-level", help="Log level (default from LAYERWISE_LOG_LEVEL or WARNING)")
    common.add_argument("--json-logs", action="store_true", default=None, help="Emit JSON log lines on stderr")
    common.add_argument("--metrics-file", help="Write Prometheus metrics to this file")

    target = argparse.ArgumentParser(add_help=False)
    target.add_argument("context", nargs="?", default=".", help="Build context directory (default: .)")
    target.add_argument("-f", "--file", dest="dockerfile", help="Dockerfile path (default: CONTEXT/Dockerfile)")
    target.add_argument("--format", choices=["text", "json"], default="text", help="Output format")

    findings = argparse.ArgumentParser(add_help=False)
    findings.add_argument("--fail-on", choices=SEVERITIES, help="Exit 1 at or above this severity")
    findings.add_argument("--min-severity", choices=SEVERITIES, help="Hide findings below this severity")
    findings.add_argument("--disable", action="append", default=[], metavar="RULE", help="Skip a rule (repeatable)")

    parser = _ArgumentParser(
        prog="layerwise",
        description="Layer-order linting, build-context scanning and cache planning for Dockerfiles.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    commands = parser.add_subparsers(dest="command", metavar="COMMAND", parser_class=_ArgumentParser)
    commands.required = True

    commands.add_parser("lint", parents=[common, target, findings], help="Lint Dockerfile instruction order")

    context = commands.add_parser("context", parents=[common, target, findings], help="Scan the build context")
    context.add_argument("--top", type=int, help="Number of largest entries to list")
    context.add_argument("--write-ignore", action="store_true", help="Append suggested patterns to the ignore file")

    cache = commands.add_parser("cache", parents=[common, target], help="Plan layer cache reuse")
    cache.add_argument("--manifest", help="Cache manifest path (default: CONTEXT/.layerwise/cache-manifest.json)")
    cache.add_argument("--save", action="store_true", help="Store the computed keys for the next run")
    cache.add_argument("--build-arg", action="append", default=[], metavar="KEY[=VALUE]", help="Build argument")
    cache.add_argument("--changed", action="append", default=[], metavar="PATH", help="Predict the effect of changing PATH")

    commands.add_parser("check", parents=[common, target, findings], help="Lint and scan the context")

    commands.add_parser("rules", parents=[common], help="List available rules")

    return parser


def load_config() -> Config:
    """Load settings from the environment, reporting bad values as usage errors."""
    try:
        return get_config()
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in e.errors()
        )
        raise ConfigurationError(f"invalid settings: {problems}") from e


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Copy the settings and apply command-line overrides."""
    config = config.model_copy(deep=True)

    if args.log_level:
        config.log_level = args.log_level
    if args.json_logs:
        config.json_logs = True

    if getattr(args, "fail_on", None):
        config.lint.fail_on = Severity(args.fail_on)
    if getattr(args, "min_severity", None):
        config.lint.min_severity = Severity(args.min_severity)
    disabled = [rule.strip().upper() for value in getattr(args, "disable", []) for rule in value.split(",")]
    if disabled:
        config.lint.disabled_rules = sorted(set(config.lint.disabled_rules) | {r for r in disabled if r})
    if getattr(args, "top", None) is not None:
        if args.top <= 0:
            raise ConfigurationError("--top must be positive")
        config.context.top_entries = args.top

    return config


def _render(result: AnalysisResult, args: argparse.Namespace, config: Config) -> str:
    if args.format == "json":
        return format_json(result, config.context.top_entries)
    return format_text(result, config.context.top_entries)


def _write_ignore(result: AnalysisResult, args: argparse.Namespace, config: Config) -> Optional[Path]:
    report = result.context
    if report is None:
        return None
    patterns = suggest_ignore_patterns(report)
    path = Path(args.context) / config.context.ignore_file
    existing = path.read_text(encoding="utf-8") if path.is_file() else None
    updated = render_ignore_file(existing, patterns)
    if updated == (existing or ""):
        return None
    path.write_text(updated, encoding="utf-8")
    logger.info("ignore_file_written", path=str(path), patterns=len(patterns))
    return path


def _list_rules() -> str:
    lines = []
    for rule in available_rules():
        lines.append(f"{rule.rule_id}  {rule.severity.value:<7}  {rule.name}: {rule.description}")
    for rule_id, severity, name, description in CONTEXT_RULES:
        lines.append(f"{rule_id}  {severity.value:<7}  {name}: {description}")
    return "\n".join(lines) + "\n"


def run_command(args: argparse.Namespace, config: Config, metrics: AnalysisMetrics) -> int:
    """Execute a parsed command and print its report."""
    if args.command == "rules":
        sys.stdout.write(_list_rules())
        return EXIT_OK

    analyzer = Analyzer(config, metrics)
    bind_target(args.context, analyzer.dockerfile_path(args.context, args.dockerfile))

    if args.command == "lint":
        result = analyzer.lint(args.context, args.dockerfile)
    elif args.command == "context":
        result = analyzer.scan(args.context, args.dockerfile)
    elif args.command == "check":
        result = analyzer.check(args.context, args.dockerfile)
    elif args.command == "cache":
        result = analyzer.plan_cache(
            args.context,
            args.dockerfile,
            manifest=args.manifest,
            build_args=parse_build_args(args.build_arg),
            changed=args.changed,
            save=args.save,
        )
    else:
        raise ConfigurationError(f"unknown command: {args.command}")

    sys.stdout.write(_render(result, args, config))

    if args.command == "context" and args.write_ignore:
        written = _write_ignore(result, args, config)
        if written is not None and args.format == "text":
            sys.stdout.write(f"Updated {written}\n")

    if args.command == "cache":
        return EXIT_OK
    return exit_code(result.findings, config.lint.fail_on)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    try:
        args = build_parser().parse_args(argv)
        config = apply_overrides(load_config(), args)
    except ConfigurationError as e:
        sys.stderr.write(f"layerwise: error: {e}\n")
        return exit_code_for(e)

    configure_logging(log_level=config.log_level, json_logs=config.json_logs, service_name="layerwise")
    if config.tracing_enabled:
        configure_tracing("layerwise", __version__)

    bind_context(command=args.command)
    logger.info("layerwise_starting", version=__version__)
    metrics = AnalysisMetrics()

    try:
        code = run_command(args, config, metrics)
        if args.metrics_file:
            metrics.write(args.metrics_file)
        return code

    except KeyboardInterrupt:
        logger.info("keyboard_interrupt_received")
        return 130
    except Exception as e:
        if classify_error(e) == ErrorCategory.INTERNAL:
            logger.error("fatal_error", error=str(e), exc_info=True)
        else:
            logger.warning("command_failed", error=str(e), error_type=type(e).__name__)
        message = str(e) if isinstance(e, LayerwiseError) else f"{type(e).__name__}: {e}"
        sys.stderr.write(f"layerwise: error: {message}\n")
        return exit_code_for(e)
    finally:
        clear_context()


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()

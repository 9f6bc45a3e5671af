"""Runs the registered lint rules over a parsed Dockerfile."""

from typing import Dict, FrozenSet, List, Optional

import structlog

from layerwise.config import LintConfig
from layerwise.lint.rules import Rule, available_rules
from layerwise.parser import Dockerfile
from shared.models import Finding, Severity
from shared.tracing import trace_function

logger = structlog.get_logger(__name__)


class Linter:
    """
    Dockerfile linter.

    Applies every enabled rule, then drops findings that are suppressed
    inline (``# layerwise: ignore=LW001``) or below the minimum severity.
    """

    def __init__(self, config: Optional[LintConfig] = None, rules: Optional[List[Rule]] = None):
        """
        Initialize the linter.

        Args:
            config: Lint settings (defaults apply when None)
            rules: Rules to run instead of the full registry
        """
        self.config = config or LintConfig()
        disabled = set(self.config.disabled_rules)
        self.rules = [r for r in (rules if rules is not None else available_rules()) if r.rule_id not in disabled]

        logger.debug(
            "linter_initialized",
            rules=[r.rule_id for r in self.rules],
            disabled=sorted(disabled),
            min_severity=self.config.min_severity.value,
        )

    @trace_function("lint")
    def lint(self, dockerfile: Dockerfile) -> List[Finding]:
        """
        Lint a Dockerfile.

        Args:
            dockerfile: Parsed Dockerfile

        Returns:
            Findings sorted by line, then rule id
        """
        suppressed: Dict[int, FrozenSet[str]] = {
            i.line: i.suppressed for i in dockerfile.instructions if i.suppressed
        }

        findings: List[Finding] = []
        dropped = 0
        for rule in self.rules:
            for finding in rule.check(dockerfile):
                if finding.line is not None and finding.rule_id in suppressed.get(finding.line, frozenset()):
                    dropped += 1
                    continue
                if finding.severity < self.config.min_severity:
                    dropped += 1
                    continue
                findings.append(finding)

        findings.sort(key=lambda f: (f.line if f.line is not None else 0, f.rule_id))

        logger.info(
            "dockerfile_linted",
            path=dockerfile.path,
            findings=len(findings),
            suppressed=dropped,
        )
        return findings


def highest_severity(findings: List[Finding]) -> Optional[Severity]:
    """The most severe level among findings, or None when there are none."""
    if not findings:
        return None
    return max((f.severity for f in findings), key=lambda s: s.rank)

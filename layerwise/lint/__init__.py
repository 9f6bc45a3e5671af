"""Dockerfile lint rules and runner."""

from .linter import Linter, highest_severity
from .rules import Rule, available_rules, get_rule

__all__ = ["Linter", "Rule", "available_rules", "get_rule", "highest_severity"]

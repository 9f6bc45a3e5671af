"""Common Pydantic models shared across analysis components."""

from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Severity(str, Enum):
    """Finding severity, ordered info < warning < error."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __ge__(self, other: "Severity") -> bool:  # type: ignore[override]
        return self.rank >= Severity(other).rank

    def __gt__(self, other: "Severity") -> bool:  # type: ignore[override]
        return self.rank > Severity(other).rank

    def __le__(self, other: "Severity") -> bool:  # type: ignore[override]
        return self.rank <= Severity(other).rank

    def __lt__(self, other: "Severity") -> bool:  # type: ignore[override]
        return self.rank < Severity(other).rank


_SEVERITY_RANK = {Severity.INFO: 0, Severity.WARNING: 1, Severity.ERROR: 2}


class Finding(BaseModel):
    """A single problem reported by a lint rule or context check."""

    rule_id: str = Field(..., description="Rule identifier, e.g. LW001")
    severity: Severity = Field(..., description="Finding severity")
    message: str = Field(..., description="Human readable description")
    line: Optional[int] = Field(None, description="1-based Dockerfile line")
    stage: Optional[int] = Field(None, description="Stage index")
    path: Optional[str] = Field(None, description="Context path the finding refers to")
    suggestion: Optional[str] = Field(None, description="Suggested fix")

    @field_validator("rule_id")
    @classmethod
    def validate_rule_id(cls, v: str) -> str:
        """Validate rule id is not empty."""
        if not v:
            raise ValueError("rule_id cannot be empty")
        return v

    model_config = ConfigDict(frozen=True)


class AnalysisSummary(BaseModel):
    """Totals for one analysis run."""

    findings: int = Field(0, description="Number of findings")
    by_severity: Dict[str, int] = Field(default_factory=dict, description="Findings per severity")
    context_bytes: Optional[int] = Field(None, description="Bytes sent to the builder")
    layers_missed: Optional[int] = Field(None, description="Layers that would rebuild")
    layers_total: Optional[int] = Field(None, description="Layers in the plan")

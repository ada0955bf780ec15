"""Data models for findings, validation verdicts and the consolidated report."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Severity = Literal["critical", "warning", "suggestion"]
Category = Literal["security", "quality", "framework", "testing"]
Status = Literal["validated", "downgraded", "rejected", "revised"]
RejectionReason = Literal[
    "code_not_found",
    "malformed_finding",
    "context_invalid",
    "confidence_low",
    "validation_error",
]

CATEGORIES: tuple[str, ...] = ("security", "quality", "framework", "testing")
REJECTION_REASONS: tuple[str, ...] = (
    "code_not_found",
    "malformed_finding",
    "context_invalid",
    "confidence_low",
    "validation_error",
)

SEVERITY_ORDER: dict[str, int] = {
    "critical": 0,
    "warning": 1,
    "suggestion": 2,
}


def severity_rank(severity: str) -> int:
    """Sort key for severities: critical first, unknown values last."""
    return SEVERITY_ORDER.get(severity, len(SEVERITY_ORDER))


def clamp_confidence(value: int) -> int:
    return max(0, min(100, value))


# ---------------------------------------------------------------------------
# Findings
# ---------------------------------------------------------------------------
class Location(BaseModel):
    """File path plus an inclusive 1-based line range.

    Shape is not enforced here; the validator rejects malformed locations.
    """

    model_config = ConfigDict(frozen=True)

    path: str
    start_line: int
    end_line: int

    def malformed_reason(self) -> str | None:
        """Describe why this location cannot point at real code, if it can't."""
        if not self.path.strip():
            return "empty file path"
        if self.start_line < 1 or self.end_line < 1:
            return f"line numbers must be >= 1 (got {self.start_line}-{self.end_line})"
        if self.end_line < self.start_line:
            return f"end line {self.end_line} precedes start line {self.start_line}"
        return None

    def overlaps(self, other: "Location") -> bool:
        return (
            self.path == other.path
            and self.start_line <= other.end_line
            and other.start_line <= self.end_line
        )

    def __str__(self) -> str:
        if self.start_line == self.end_line:
            return f"{self.path}:{self.start_line}"
        return f"{self.path}:{self.start_line}-{self.end_line}"


class Finding(BaseModel):
    """A candidate issue emitted by an analyzer, immutable once emitted."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default="", description="Assigned by the orchestrator")
    category: Category = Field(description="security, quality, framework, testing")
    location: Location
    snippet: str = Field(description="Text the analyzer believes is at location")
    description: str = Field(description="What the issue is")
    suggested_fix: str | None = Field(default=None, description="Replacement text")
    initial_confidence: int = Field(ge=0, le=100)
    severity: Severity = Field(default="warning")
    rule_id: str | None = Field(default=None, description="Analyzer rule that fired")
    analyzer: str | None = Field(
        default=None, description="Emitting analyzer (populated by orchestrator)"
    )


# ---------------------------------------------------------------------------
# Verdicts
# ---------------------------------------------------------------------------
class Adjustment(BaseModel):
    """One scored signal: a named factor and its signed delta."""

    model_config = ConfigDict(frozen=True)

    factor: str
    delta: int

    def __str__(self) -> str:
        return f"{self.factor}({self.delta:+d})"


def score(initial_confidence: int, adjustments: list[Adjustment]) -> int:
    """Apply adjustments to a running sum, then clamp into [0, 100]."""
    total = initial_confidence
    for adjustment in adjustments:
        total += adjustment.delta
    return clamp_confidence(total)


class ValidationVerdict(BaseModel):
    """The validator's judgment on one finding. Superseded, never edited."""

    model_config = ConfigDict(frozen=True)

    finding_id: str
    adjustments: tuple[Adjustment, ...] = ()
    final_confidence: int = Field(ge=0, le=100)
    status: Status
    reason: RejectionReason | None = None
    revised_fix: str | None = None
    fix_passed: bool | None = None
    stages: tuple[str, ...] = ()
    notes: str = ""

    @field_validator("revised_fix")
    @classmethod
    def _revised_fix_only_when_revised(cls, value, info):
        if value is not None and info.data.get("status") != "revised":
            raise ValueError("revised_fix may only be set when status is 'revised'")
        return value


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------
class ReportEntry(BaseModel):
    """One surviving finding, as shown to the consumer."""

    model_config = ConfigDict(frozen=True)

    id: str
    category: Category
    severity: Severity
    file: str
    start_line: int
    end_line: int
    description: str
    final_confidence: int
    status: Status
    revised_fix: str | None = None
    notes: str = ""


class AnalyzerFailureRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    analyzer: str
    category: Category
    status: Literal["failed", "timeout"]
    error: str = ""


class Summary(BaseModel):
    """Counts for every finding considered, itemised or not."""

    model_config = ConfigDict(frozen=True)

    total_findings: int = 0
    validated: int = 0
    downgraded: int = 0
    revised: int = 0
    rejected: int = 0
    rejection_reasons: dict[str, int] = Field(default_factory=dict)
    duplicates_removed: int = 0
    analyzers_run: int = 0
    analyzer_failures: list[AnalyzerFailureRecord] = Field(default_factory=list)


class Report(BaseModel):
    """Complete, immutable result of one review session."""

    model_config = ConfigDict(frozen=True)

    entries: tuple[ReportEntry, ...] = ()
    summary: Summary = Field(default_factory=Summary)

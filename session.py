"""Review session: the shared finding map written during fan-out."""

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Literal

from changeset import Changeset
from models import Finding, ValidationVerdict

logger = logging.getLogger(__name__)

RunStatus = Literal["running", "completed", "failed", "timeout", "skipped"]


@dataclass
class AnalyzerRun:
    """Outcome of one analyzer invocation within a session."""

    name: str
    category: str
    status: RunStatus = "running"
    findings: int = 0
    error: str = ""
    elapsed: float = 0.0

    @property
    def failed(self) -> bool:
        return self.status in ("failed", "timeout")


@dataclass
class ReviewSession:
    """
    State of one review invocation.

    Analyzer threads append findings through ``add_finding``; every other
    method is meant for the orchestrator thread once fan-in is over.
    """

    changeset: Changeset
    findings: dict[str, Finding] = field(default_factory=dict)
    verdicts: dict[str, ValidationVerdict] = field(default_factory=dict)
    runs: dict[str, AnalyzerRun] = field(default_factory=dict)

    def __post_init__(self):
        self._lock = threading.Lock()
        self._sequences: dict[str, int] = defaultdict(int)
        self._closed: set[str] = set()
        self._by_source: dict[str, list[str]] = defaultdict(list)

    # ------------------------------------------------------------------
    # Fan-out side
    # ------------------------------------------------------------------
    def register(self, run: AnalyzerRun) -> None:
        with self._lock:
            if run.name in self.runs:
                raise ValueError(f"Analyzer name {run.name!r} used twice in one session")
            self.runs[run.name] = run

    def add_finding(self, source: str, finding: Finding) -> Finding | None:
        """
        Store *finding* under a fresh ``<category>:<sequence>`` id.

        The analyzer's category is stamped onto the finding. Returns the
        stored finding, or None when *source* was already closed (its
        deadline passed or it failed) and the finding is dropped.
        """
        with self._lock:
            if source in self._closed:
                return None
            run = self.runs[source]
            self._sequences[run.category] += 1
            finding_id = f"{run.category}:{self._sequences[run.category]}"
            stored = finding.model_copy(
                update={"id": finding_id, "category": run.category, "analyzer": source}
            )
            self.findings[finding_id] = stored
            self._by_source[source].append(finding_id)
            run.findings += 1
            return stored

    def close_source(self, source: str, discard: bool = False) -> int:
        """Refuse further findings from *source*, optionally dropping its output.

        Returns the number of findings discarded.
        """
        with self._lock:
            self._closed.add(source)
            if not discard:
                return 0
            dropped = self._by_source.pop(source, [])
            for finding_id in dropped:
                self.findings.pop(finding_id, None)
            if source in self.runs:
                self.runs[source].findings = 0
            return len(dropped)

    # ------------------------------------------------------------------
    # Validation side
    # ------------------------------------------------------------------
    def record_verdict(self, verdict: ValidationVerdict) -> None:
        if verdict.finding_id not in self.findings:
            raise KeyError(f"Verdict for unknown finding {verdict.finding_id!r}")
        self.verdicts[verdict.finding_id] = verdict

    def pending(self) -> list[Finding]:
        """Findings that do not have a verdict yet, in emission order."""
        return [f for fid, f in self.findings.items() if fid not in self.verdicts]

    def failed_runs(self) -> list[AnalyzerRun]:
        return [run for run in self.runs.values() if run.failed]

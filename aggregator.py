"""Merge validated findings into the final report."""

import logging
from collections import Counter

from config import ReviewConfig
from models import (
    AnalyzerFailureRecord,
    Finding,
    Report,
    ReportEntry,
    Summary,
    ValidationVerdict,
    severity_rank,
)
from session import ReviewSession

logger = logging.getLogger(__name__)

REPORTED_STATUSES = frozenset({"validated", "downgraded", "revised"})


def _rank(finding: Finding, verdict: ValidationVerdict) -> tuple:
    """Dedup precedence: most confident first, ties broken deterministically."""
    return (
        -verdict.final_confidence,
        severity_rank(finding.severity),
        finding.location.path,
        finding.location.start_line,
        finding.id,
    )


def dedup_findings(
    candidates: list[tuple[Finding, ValidationVerdict]],
    config: ReviewConfig,
) -> tuple[list[tuple[Finding, ValidationVerdict]], int]:
    """
    Collapse overlapping findings, keeping the most confident of each group.

    Two findings are duplicates when they are in the same file, their line
    ranges overlap and their categories are compatible. The survivor gets a
    superseding verdict whose notes record what was merged into it.

    Returns:
        Tuple of (survivors, number of findings merged away)
    """
    kept: list[tuple[Finding, ValidationVerdict]] = []
    merged_notes: dict[str, list[str]] = {}
    removed = 0

    for finding, verdict in sorted(candidates, key=lambda pair: _rank(*pair)):
        duplicate_of = None
        for survivor, _ in kept:
            if survivor.location.overlaps(finding.location) and config.categories_compatible(
                survivor.category, finding.category
            ):
                duplicate_of = survivor
                break

        if duplicate_of is None:
            kept.append((finding, verdict))
            continue

        removed += 1
        trace = ", ".join(str(a) for a in verdict.adjustments) or "no adjustments"
        merged_notes.setdefault(duplicate_of.id, []).append(
            f"merged {finding.id} ({verdict.final_confidence}): {trace}"
        )
        logger.debug("Dedup: %s merged into %s", finding.id, duplicate_of.id)

    survivors: list[tuple[Finding, ValidationVerdict]] = []
    for finding, verdict in kept:
        extra = merged_notes.get(finding.id)
        if extra:
            notes = "; ".join(filter(None, [verdict.notes, *extra]))
            verdict = verdict.model_copy(update={"notes": notes})
        survivors.append((finding, verdict))
    return survivors, removed


def absorb_rejected(
    survivors: list[tuple[Finding, ValidationVerdict]],
    rejected: list[tuple[Finding, ValidationVerdict]],
    config: ReviewConfig,
) -> tuple[
    list[tuple[Finding, ValidationVerdict]], list[tuple[Finding, ValidationVerdict]], int
]:
    """
    Fold rejected findings that duplicate a surviving finding into it.

    A rejected finding never wins dedup, but when it overlaps a survivor of
    a compatible category it is a duplicate and is counted as removed, not
    as rejected.

    Returns:
        Tuple of (survivors, rejected findings left over, number absorbed)
    """
    merged_notes: dict[str, list[str]] = {}
    remaining: list[tuple[Finding, ValidationVerdict]] = []

    for finding, verdict in rejected:
        owner = next(
            (
                survivor
                for survivor, _ in survivors
                if survivor.location.overlaps(finding.location)
                and config.categories_compatible(survivor.category, finding.category)
            ),
            None,
        )
        if owner is None:
            remaining.append((finding, verdict))
            continue
        merged_notes.setdefault(owner.id, []).append(
            f"merged {finding.id} (rejected: {verdict.reason})"
        )
        logger.debug("Dedup: rejected %s merged into %s", finding.id, owner.id)

    updated: list[tuple[Finding, ValidationVerdict]] = []
    for finding, verdict in survivors:
        extra = merged_notes.get(finding.id)
        if extra:
            notes = "; ".join(filter(None, [verdict.notes, *extra]))
            verdict = verdict.model_copy(update={"notes": notes})
        updated.append((finding, verdict))
    return updated, remaining, len(rejected) - len(remaining)


def sort_key(entry: ReportEntry) -> tuple:
    return (severity_rank(entry.severity), entry.file, entry.start_line, entry.id)


def aggregate(session: ReviewSession, config: ReviewConfig | None = None) -> Report:
    """
    Build the report for a session whose validation is complete.

    This step is sequential and must only run after fan-in and validation
    have both finished.

    1. Deduplicate non-rejected findings, then fold rejected duplicates
       of the survivors into them
    2. Itemise validated, downgraded and revised findings only
    3. Sort by severity, file, line
    4. Count every status, rejection reason and analyzer failure
    """
    config = config or ReviewConfig()

    missing = [fid for fid in session.findings if fid not in session.verdicts]
    if missing:
        raise ValueError(f"{len(missing)} finding(s) have no verdict: {missing[:5]}")

    candidates: list[tuple[Finding, ValidationVerdict]] = []
    rejected: list[tuple[Finding, ValidationVerdict]] = []
    status_counts: Counter = Counter()
    reasons: Counter = Counter()

    for finding_id, finding in session.findings.items():
        verdict = session.verdicts[finding_id]
        if verdict.status == "rejected":
            rejected.append((finding, verdict))
        else:
            candidates.append((finding, verdict))

    survivors, removed = dedup_findings(candidates, config)
    survivors, rejected, absorbed = absorb_rejected(survivors, rejected, config)
    removed += absorbed
    for _, verdict in rejected:
        status_counts["rejected"] += 1
        reasons[verdict.reason or "unknown"] += 1

    entries: list[ReportEntry] = []
    for finding, verdict in survivors:
        status_counts[verdict.status] += 1
        if verdict.status not in REPORTED_STATUSES:
            continue
        entries.append(
            ReportEntry(
                id=finding.id,
                category=finding.category,
                severity=finding.severity,
                file=finding.location.path,
                start_line=finding.location.start_line,
                end_line=finding.location.end_line,
                description=finding.description,
                final_confidence=verdict.final_confidence,
                status=verdict.status,
                revised_fix=verdict.revised_fix,
                notes=verdict.notes,
            )
        )
    entries.sort(key=sort_key)

    failures = [
        AnalyzerFailureRecord(
            analyzer=run.name, category=run.category, status=run.status, error=run.error
        )
        for run in session.failed_runs()
    ]

    summary = Summary(
        total_findings=len(session.findings),
        validated=status_counts["validated"],
        downgraded=status_counts["downgraded"],
        revised=status_counts["revised"],
        rejected=status_counts["rejected"],
        rejection_reasons=dict(sorted(reasons.items())),
        duplicates_removed=removed,
        analyzers_run=sum(1 for run in session.runs.values() if run.status != "skipped"),
        analyzer_failures=failures,
    )

    logger.info(
        "🔀 Aggregated %d finding(s): %d reported, %d rejected, %d duplicate(s) removed",
        summary.total_findings,
        len(entries),
        summary.rejected,
        removed,
    )
    return Report(entries=tuple(entries), summary=summary)

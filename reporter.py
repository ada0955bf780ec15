"""Render a Report for humans (markdown, console) or machines (JSON)."""

from collections.abc import Callable

from models import Report, ReportEntry

BLOCKING_STATUSES = frozenset({"validated", "downgraded"})

_CATEGORY_ICONS = {
    "security": "🔒",
    "quality": "📐",
    "framework": "🧩",
    "testing": "🧪",
}

_STATUS_LABELS = {
    "validated": "validated",
    "downgraded": "low confidence",
    "revised": "needs manual fix",
}


def exit_code(report: Report) -> int:
    """0 when no critical validated/downgraded finding remains, else 1."""
    for entry in report.entries:
        if entry.severity == "critical" and entry.status in BLOCKING_STATUSES:
            return 1
    return 0


def render_json(report: Report) -> str:
    return report.model_dump_json(indent=2)


def _truncate(text: str, limit: int) -> str:
    text = " ".join(text.split())
    return (text[:limit] + "...") if len(text) > limit else text


def _lines(entry: ReportEntry) -> str:
    if entry.start_line == entry.end_line:
        return str(entry.start_line)
    return f"{entry.start_line}-{entry.end_line}"


def _summary_line(report: Report) -> str:
    s = report.summary
    return (
        f"{len(report.entries)} finding(s) reported: {s.validated} validated, "
        f"{s.downgraded} downgraded, {s.revised} revised; {s.rejected} rejected, "
        f"{s.duplicates_removed} duplicate(s) removed"
    )


def render_markdown(report: Report) -> str:
    """Format the report as a PR review comment."""
    lines: list[str] = []
    lines.append("## 🤖 PRVerdict Review\n")
    lines.append(f"**{_summary_line(report)}**\n")

    if report.entries:
        lines.append("| Severity | Category | File | Line | Issue | Confidence | Status |")
        lines.append("|----------|----------|------|------|-------|------------|--------|")
        for e in report.entries:
            severity = f"**{e.severity}**" if e.severity == "critical" else e.severity
            icon = _CATEGORY_ICONS.get(e.category, "❓")
            lines.append(
                f"| {severity} | {icon} {e.category} | {e.file} | {_lines(e)} "
                f"| {_truncate(e.description, 60)} | {e.final_confidence} "
                f"| {_STATUS_LABELS.get(e.status, e.status)} |"
            )
    else:
        lines.append("No issues found. ✨")

    s = report.summary
    if s.rejection_reasons:
        lines.append("\n<details><summary>Rejected findings</summary>\n")
        for reason, count in s.rejection_reasons.items():
            lines.append(f"- `{reason}`: {count}")
        lines.append("\n</details>")

    if s.analyzer_failures:
        lines.append("\n### ⚠️ Analyzer failures\n")
        for failure in s.analyzer_failures:
            lines.append(f"- **{failure.analyzer}** ({failure.status}): {failure.error}")

    lines.append("\n---")
    lines.append("*Generated by PRVerdict 🤖*")
    return "\n".join(lines)


def render_text(report: Report) -> str:
    """Format the report for a terminal."""
    out: list[str] = []
    out.append(f"\n{'=' * 60}")
    out.append("📋 REVIEW VERDICT")
    out.append(f"{'=' * 60}")

    current_file = None
    for e in sorted(report.entries, key=lambda e: (e.file, e.start_line, e.id)):
        if e.file != current_file:
            current_file = e.file
            out.append(f"\n{'─' * 60}")
            out.append(f"📄 {e.file}")
            out.append(f"{'─' * 60}")
        icon = _CATEGORY_ICONS.get(e.category, "❓")
        out.append(
            f"\n  {icon} [{e.severity.upper()}] Line {_lines(e)} "
            f"({e.final_confidence}%, {_STATUS_LABELS.get(e.status, e.status)})"
        )
        out.append(f"     {e.description}")
        if e.revised_fix:
            out.append(f"     💡 Fix: {e.revised_fix}")

    s = report.summary
    out.append(f"\n{'=' * 60}")
    out.append(_summary_line(report))
    for reason, count in s.rejection_reasons.items():
        out.append(f"  rejected ({reason}): {count}")
    for failure in s.analyzer_failures:
        out.append(f"  ⚠️  {failure.analyzer} {failure.status}: {failure.error}")
    out.append(f"{'=' * 60}\n")
    return "\n".join(out)


RENDERERS: dict[str, Callable[[Report], str]] = {
    "json": render_json,
    "markdown": render_markdown,
    "text": render_text,
}


def render(report: Report, fmt: str = "text") -> str:
    try:
        renderer = RENDERERS[fmt]
    except KeyError:
        raise ValueError(f"Unknown report format {fmt!r}; use one of {sorted(RENDERERS)}") from None
    return renderer(report)

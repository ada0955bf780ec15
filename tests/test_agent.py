"""End-to-end tests for the review graph."""

from agent import ReviewState, create_agent, run_review, should_validate
from analyzers import default_analyzers
from changeset import Changeset
from conftest import CONTROLLER_PATH, CrashingAnalyzer, StaticAnalyzer, make_file, make_finding
from reporter import exit_code
from session import ReviewSession


def test_review_reports_raw_sql(changeset):
    report, rendered = run_review(changeset, default_analyzers(), output_format="markdown")

    (entry,) = report.entries
    assert entry.id == "security:1"
    assert entry.file == CONTROLLER_PATH
    assert entry.start_line == 13
    assert entry.final_confidence == 100
    assert entry.status == "validated"
    assert report.summary.total_findings == 1
    assert report.summary.analyzers_run == 4
    assert exit_code(report) == 1
    assert "| **critical** | 🔒 security |" in rendered


def test_failing_analyzer_is_isolated(changeset):
    broken = CrashingAnalyzer(
        "broken", "quality", make_finding(category="quality", severity="warning", finding_id="")
    )

    report, _ = run_review(changeset, default_analyzers() + [broken])

    assert [e.id for e in report.entries] == ["security:1"]
    (failure,) = report.summary.analyzer_failures
    assert failure.analyzer == "broken"
    assert failure.status == "failed"
    assert "rule engine exploded" in failure.error


def test_rejected_findings_are_counted_not_listed(changeset):
    ghost = make_finding(start=40, end=41, finding_id="")

    report, rendered = run_review(changeset, [StaticAnalyzer("ghost", "security", [ghost])])

    assert report.entries == ()
    assert report.summary.rejected == 1
    assert report.summary.rejection_reasons == {"code_not_found": 1}
    assert "rejected (code_not_found): 1" in rendered


def test_clean_changeset_skips_validation():
    clean = Changeset.of([make_file("app/Support/Money.php", "<?php\nreturn 42;")])

    report, rendered = run_review(clean, default_analyzers(), output_format="markdown")

    assert report.entries == ()
    assert report.summary.total_findings == 0
    assert exit_code(report) == 0
    assert "No issues found." in rendered


def test_should_validate(changeset):
    session = ReviewSession(changeset=changeset)
    assert should_validate({"session": session}) == "aggregate"
    assert should_validate(ReviewState(changeset=changeset)) == "aggregate"

    session.findings["security:1"] = make_finding()
    assert should_validate({"session": session}) == "validate"


def test_graph_nodes():
    nodes = set(create_agent().get_graph().nodes)
    assert {"run_analyzers", "validate_findings", "aggregate_findings", "render_report"} <= nodes

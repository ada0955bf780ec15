"""Tests for the four-stage finding validator."""

import pytest

from changeset import Changeset
from config import ReviewConfig
from conftest import (
    CONTROLLER_PATH,
    FIXTURE_PATH,
    SERVICE_PATH,
    make_file,
    make_finding,
)
from rules import ContextRule, RuleTable
from validator import Validator, check_fix, is_balanced

STAGES = ("pending", "existence_checked", "context_checked", "fix_checked", "scored")


def factors(verdict):
    return [a.factor for a in verdict.adjustments]


def service_finding(**kwargs):
    defaults = dict(
        path=SERVICE_PATH,
        start=9,
        snippet="$total = $items->count();",
        category="quality",
        severity="warning",
        finding_id="quality:1",
        description="Count may be null",
    )
    defaults.update(kwargs)
    return make_finding(**defaults)


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------
def test_external_input_and_known_pattern_clamp_to_100(changeset):
    verdict = Validator().validate(make_finding(confidence=85), changeset)

    assert factors(verdict) == ["exact_match", "external_input", "known_pattern"]
    assert verdict.final_confidence == 100
    assert verdict.status == "validated"
    assert verdict.reason is None
    assert verdict.stages == STAGES + ("validated",)


def test_test_fixture_with_safe_builtin_is_context_invalid(changeset):
    finding = make_finding(
        path=FIXTURE_PATH,
        start=9,
        snippet="return Hash::make($value);",
        description="Password hashed without pepper",
    )

    verdict = Validator().validate(finding, changeset)

    assert factors(verdict) == ["context_denies_relevance", "handled_by_safe_builtin"]
    assert verdict.final_confidence == 40
    assert verdict.status == "rejected"
    assert verdict.reason == "context_invalid"


def test_missing_line_range_short_circuits_to_code_not_found(changeset):
    finding = make_finding(start=40, end=42)

    verdict = Validator().validate(finding, changeset)

    assert verdict.status == "rejected"
    assert verdict.reason == "code_not_found"
    assert verdict.adjustments == ()
    assert verdict.stages == ("pending", "rejected")
    assert "out of range" in verdict.notes


# ---------------------------------------------------------------------------
# Existence stage
# ---------------------------------------------------------------------------
def test_file_not_in_changeset(changeset):
    verdict = Validator().validate(make_finding(path="app/Gone.php"), changeset)
    assert verdict.reason == "code_not_found"


def test_snippet_mismatch(changeset):
    verdict = Validator().validate(make_finding(snippet="DB::unprepared($sql)"), changeset)
    assert verdict.reason == "code_not_found"
    assert "snippet not found" in verdict.notes


@pytest.mark.parametrize(
    "start,end,snippet",
    [
        (0, 1, "<?php"),
        (5, 3, "use"),
        (13, 13, "   "),
    ],
)
def test_malformed_findings(changeset, start, end, snippet):
    finding = make_finding(start=start, end=end, snippet=snippet)

    verdict = Validator().validate(finding, changeset)

    assert verdict.status == "rejected"
    assert verdict.reason == "malformed_finding"
    assert verdict.stages == ("pending", "rejected")


def test_whitespace_normalised_match_gets_no_exact_bonus(changeset):
    finding = make_finding(snippet="$users  =  DB::select(\"SELECT * FROM users WHERE name = '$term'\");")

    verdict = Validator().validate(finding, changeset)

    assert verdict.status == "validated"
    assert "exact_match" not in factors(verdict)


def test_multi_line_snippet(changeset):
    finding = make_finding(
        start=12,
        end=13,
        snippet="$term = $request->input('q');\n        $users = DB::select(",
    )
    verdict = Validator().validate(finding, changeset)
    assert verdict.status == "validated"


# ---------------------------------------------------------------------------
# Scoring and status decision
# ---------------------------------------------------------------------------
def test_single_occurrence_without_signal_is_recorded(changeset):
    verdict = Validator().validate(service_finding(confidence=65), changeset)

    assert factors(verdict) == ["exact_match", "single_occurrence"]
    assert verdict.final_confidence == 70
    assert verdict.status == "downgraded"


def test_low_confidence_without_context_penalty(changeset):
    verdict = Validator().validate(service_finding(confidence=50), changeset)

    assert verdict.status == "rejected"
    assert verdict.reason == "confidence_low"


def test_thresholds_come_from_config(changeset):
    strict = ReviewConfig(minConfidence=95, downgradeFloor=90)

    verdict = Validator(strict).validate(service_finding(confidence=85), changeset)

    assert verdict.final_confidence == 90
    assert verdict.status == "downgraded"


def test_additional_occurrences_add_five_each():
    line = "$rows = DB::table('orders')->get();"
    content = f"<?php\n{line}\n{line}\n"
    changeset = Changeset.of(
        [make_file("app/A.php", content), make_file("app/B.php", content)]
    )
    finding = make_finding(
        path="app/A.php", start=2, snippet=line, category="quality", confidence=60
    )

    verdict = Validator().validate(finding, changeset)

    assert factors(verdict).count("additional_occurrence") == 3
    assert verdict.final_confidence == 60 + 5 + 15


@pytest.mark.parametrize("delta,expected", [(-500, 0), (500, 100)])
def test_confidence_is_clamped(changeset, delta, expected):
    rules = RuleTable(
        context_rules=(ContextRule(name="x", factor="x", delta=delta, pattern="DB::"),)
    )
    verdict = Validator(rules=rules).validate(make_finding(), changeset)
    assert verdict.final_confidence == expected


def test_validation_is_idempotent(changeset):
    validator = Validator()
    finding = make_finding(fix="$users = DB::select('SELECT * FROM users WHERE name = ?', [$term]);")

    assert validator.validate(finding, changeset) == validator.validate(finding, changeset)


# ---------------------------------------------------------------------------
# Fix stage
# ---------------------------------------------------------------------------
def test_valid_fix_adds_bonus(changeset):
    finding = service_finding(confidence=80, fix="$total = $items?->count() ?? 0;")

    verdict = Validator().validate(finding, changeset)

    assert factors(verdict)[-1] == "valid_fix"
    assert verdict.fix_passed is True
    assert verdict.final_confidence == 90
    assert verdict.status == "validated"


def test_failed_fix_on_real_issue_is_revised(changeset):
    finding = service_finding(confidence=85, fix="$total = $items->count(;")

    verdict = Validator().validate(finding, changeset)

    assert factors(verdict)[-1] == "invalid_fix"
    assert verdict.final_confidence == 80
    assert verdict.status == "revised"
    assert verdict.revised_fix is None
    assert verdict.fix_passed is False
    assert "unbalanced" in verdict.notes


def test_no_fix_leaves_fix_passed_unset(changeset):
    verdict = Validator().validate(make_finding(), changeset)
    assert verdict.fix_passed is None


def test_check_fix_passes_reasonable_fix():
    flagged = "$users = DB::select(\"SELECT * FROM users WHERE name = '$term'\");"
    fix = "$users = DB::select('SELECT * FROM users WHERE name = ?', [$term]);"
    assert check_fix(fix, flagged, flagged, flagged, RuleTable()) == []


def test_check_fix_reports_every_failed_check():
    from rules import DEFAULT_RULE_TABLE

    flagged = "$x = $request->input('code');"
    failures = check_fix("eval($x . $missing); // TODO", flagged, flagged, flagged, DEFAULT_RULE_TABLE)

    assert "fix contains placeholder text" in failures
    assert "fix references undefined $missing" in failures
    assert "fix introduces eval" in failures


def test_check_fix_rejects_noop_and_unrelated():
    flagged = "$total = $items->count();"
    assert "fix leaves the code unchanged" in check_fix(
        " $total =  $items->count(); ", flagged, flagged, flagged, RuleTable()
    )
    assert "fix shares no identifier with the flagged code" in check_fix(
        "return 0;", flagged, flagged, flagged, RuleTable()
    )


def test_check_fix_allows_variables_assigned_in_fix():
    flagged = "$total = $items->count();"
    fix = "$count = $items->count();\n$total = $count ?? 0;"
    assert check_fix(fix, flagged, flagged, flagged, RuleTable()) == []


@pytest.mark.parametrize(
    "code,expected",
    [
        ("foo($a[1], {b: 2})", True),
        ("{{ $name }}", True),
        ("call(')')", True),
        ("call(", False),
        ("a[1)", False),
        ("'unterminated", False),
        ('"escaped \\" quote"', True),
    ],
)
def test_is_balanced(code, expected):
    assert is_balanced(code) is expected


# ---------------------------------------------------------------------------
# Errors and batch validation
# ---------------------------------------------------------------------------
def test_rule_evaluator_crash_becomes_validation_error(changeset, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("checklist bug")

    monkeypatch.setattr("validator.check_fix", boom)
    finding = service_finding(fix="$total = 0;")

    verdict = Validator().validate(finding, changeset)

    assert verdict.status == "rejected"
    assert verdict.reason == "validation_error"
    assert "context_checked" in verdict.notes
    assert "checklist bug" in verdict.notes


def test_validate_all_keeps_input_order(changeset):
    findings = [
        make_finding(finding_id="security:1"),
        service_finding(finding_id="quality:1", confidence=65),
        make_finding(finding_id="security:2", start=99),
    ]
    validator = Validator(ReviewConfig(validationWorkers=3))

    verdicts = validator.validate_all(findings, changeset)

    assert [v.finding_id for v in verdicts] == ["security:1", "quality:1", "security:2"]
    assert [v.status for v in verdicts] == ["validated", "downgraded", "rejected"]
    assert verdicts == [validator.validate(f, changeset) for f in findings]


def test_controller_path_constant_matches_fixture(controller):
    assert controller.path == CONTROLLER_PATH
    assert controller.lines[12].strip().startswith("$users = DB::select")

"""Finding validation: existence, context, fix and confidence stages.

Each finding moves through

    pending -> existence_checked -> context_checked -> fix_checked -> scored

and ends in one of validated / downgraded / rejected / revised. A failed
existence check short-circuits to rejected, so later adjustments never
apply to code that is not there. The verdict is a pure function of the
finding, the changeset, the configuration and the rule table.
"""

import logging
import re
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor

from changeset import Changeset, FileChange, normalize_whitespace
from config import ReviewConfig
from errors import MalformedFinding, ValidationInternalError
from models import Adjustment, Finding, ValidationVerdict, clamp_confidence, score
from rules import DEFAULT_RULE_TABLE, RuleTable

logger = logging.getLogger(__name__)

# Adjustment deltas that are not driven by the rule table
EXACT_MATCH = 5
KNOWN_PATTERN = 10
ADDITIONAL_OCCURRENCE = 5
SINGLE_OCCURRENCE = 0
VALID_FIX = 5
INVALID_FIX = -10

# Shorter snippets ("}", "return;") repeat everywhere and prove nothing
MIN_OCCURRENCE_SNIPPET = 10

_PAIRS = {")": "(", "]": "[", "}": "{"}
_IDENTIFIER = re.compile(r"\b[A-Za-z_]\w{2,}\b")
_PHP_VARIABLE = re.compile(r"\$[A-Za-z_]\w*")
_ASSIGNMENT = re.compile(r"(\$[A-Za-z_]\w*)\s*=(?!=)")
_PLACEHOLDER = re.compile(r"\.\.\.|\bTODO\b|\bFIXME\b|<your[^>]*>|\byour_\w+", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Fix checklist
# ---------------------------------------------------------------------------
def is_balanced(code: str) -> bool:
    """Brackets pair up and every string literal is closed."""
    stack: list[str] = []
    quote: str | None = None
    escaped = False
    for ch in code:
        if quote:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in "'\"":
            quote = ch
        elif ch in "([{":
            stack.append(ch)
        elif ch in ")]}":
            if not stack or stack.pop() != _PAIRS[ch]:
                return False
    return not stack and quote is None


def check_fix(
    fix: str,
    snippet: str,
    flagged_text: str,
    file_text: str,
    rules: RuleTable,
) -> list[str]:
    """
    Run the fix checklist and return the failed checks (empty list = pass).

    Checks, in order: syntactic plausibility, preserved intent,
    completeness, and no newly introduced critical pattern.
    """
    failures: list[str] = []

    if not is_balanced(fix):
        failures.append("unbalanced brackets or quotes")

    if normalize_whitespace(fix) == normalize_whitespace(snippet):
        failures.append("fix leaves the code unchanged")
    elif not set(_IDENTIFIER.findall(fix)) & set(_IDENTIFIER.findall(flagged_text)):
        failures.append("fix shares no identifier with the flagged code")

    if _PLACEHOLDER.search(fix):
        failures.append("fix contains placeholder text")

    known_vars = set(_PHP_VARIABLE.findall(file_text)) | set(_ASSIGNMENT.findall(fix))
    dangling = set(_PHP_VARIABLE.findall(fix)) - known_vars - {"$this"}
    if dangling:
        failures.append(f"fix references undefined {', '.join(sorted(dangling))}")

    introduced = [
        known.name
        for known in rules.critical_patterns_in(fix)
        if not known.regex.search(flagged_text)
    ]
    if introduced:
        failures.append(f"fix introduces {', '.join(introduced)}")

    return failures


# ---------------------------------------------------------------------------
# Validator
# ---------------------------------------------------------------------------
class Validator:
    """Turns findings into verdicts."""

    def __init__(
        self,
        config: ReviewConfig | None = None,
        rules: RuleTable = DEFAULT_RULE_TABLE,
    ):
        self.config = config or ReviewConfig()
        self.rules = rules

    def validate(self, finding: Finding, changeset: Changeset) -> ValidationVerdict:
        """Validate one finding. Never raises for a broken rule evaluator."""
        trail: list[str] = ["pending"]
        try:
            return self._run(finding, changeset, trail)
        except Exception as e:
            error = ValidationInternalError(finding.id, trail[-1], e)
            logger.exception("Validation error: %s", error)
            return ValidationVerdict(
                finding_id=finding.id,
                final_confidence=clamp_confidence(finding.initial_confidence),
                status="rejected",
                reason="validation_error",
                stages=tuple(trail) + ("rejected",),
                notes=str(error),
            )

    def validate_all(
        self, findings: Sequence[Finding], changeset: Changeset
    ) -> list[ValidationVerdict]:
        """Validate independent findings, in parallel when configured to.

        Verdicts come back in the order of *findings*.
        """
        workers = min(self.config.validation_workers, len(findings))
        if workers <= 1:
            return [self.validate(f, changeset) for f in findings]
        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="validator"
        ) as pool:
            return list(pool.map(lambda f: self.validate(f, changeset), findings))

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------
    def _run(
        self, finding: Finding, changeset: Changeset, trail: list[str]
    ) -> ValidationVerdict:
        notes: list[str] = []

        # 1. Existence
        try:
            change, flagged = self._locate(finding, changeset)
        except MalformedFinding as e:
            return self._reject(finding, (), "malformed_finding", trail, [str(e)])
        if change is None:
            return self._reject(finding, (), "code_not_found", trail, [flagged])

        adjustments: list[Adjustment] = []
        if finding.snippet in flagged:
            adjustments.append(Adjustment(factor="exact_match", delta=EXACT_MATCH))
            notes.append("snippet matched exactly")
        else:
            notes.append("snippet matched after whitespace normalisation")
        trail.append("existence_checked")

        # 2. Context
        context = self._check_context(finding, change, flagged, changeset, notes)
        adjustments.extend(context)
        trail.append("context_checked")

        # 3. Fix
        fix_failures: list[str] | None = None
        fix = (finding.suggested_fix or "").strip()
        if fix:
            fix_failures = check_fix(
                fix, finding.snippet, flagged, "\n".join(change.lines), self.rules
            )
            if fix_failures:
                adjustments.append(Adjustment(factor="invalid_fix", delta=INVALID_FIX))
                notes.append("fix failed: " + "; ".join(fix_failures))
            else:
                adjustments.append(Adjustment(factor="valid_fix", delta=VALID_FIX))
                notes.append("fix passed checklist")
        trail.append("fix_checked")

        # 4. Score
        final = score(finding.initial_confidence, adjustments)
        trail.append("scored")
        return self._decide(finding, adjustments, context, final, fix_failures, trail, notes)

    def _locate(
        self, finding: Finding, changeset: Changeset
    ) -> tuple[FileChange | None, str]:
        """Return (file, flagged text) or (None, reason the code was not found)."""
        location = finding.location
        problem = location.malformed_reason()
        if problem is None and not normalize_whitespace(finding.snippet):
            problem = "empty snippet"
        if problem is not None:
            raise MalformedFinding(f"malformed finding: {problem}")

        change = changeset.get(location.path)
        if change is None:
            return None, f"{location.path} is not in the changeset"

        lines = change.line_range(location.start_line, location.end_line)
        if lines is None:
            return None, (
                f"lines {location.start_line}-{location.end_line} out of range "
                f"({location.path} has {change.line_count} lines)"
            )

        flagged = "\n".join(lines)
        if normalize_whitespace(finding.snippet) not in normalize_whitespace(flagged):
            return None, f"snippet not found at {location}"
        return change, flagged

    def _check_context(
        self,
        finding: Finding,
        change: FileChange,
        flagged: str,
        changeset: Changeset,
        notes: list[str],
    ) -> list[Adjustment]:
        location = finding.location
        targets = {
            "path": change.path,
            "lines": flagged,
            "window": "\n".join(
                change.window(
                    location.start_line, location.end_line, self.config.context_window
                )
            ),
        }

        adjustments: list[Adjustment] = []
        for rule in self.rules.context_rules:
            if not rule.applies_to(finding.category):
                continue
            if rule.regex.search(targets[rule.scope]):
                adjustments.append(Adjustment(factor=rule.factor, delta=rule.delta))
                notes.append(f"context rule {rule.name} matched")

        known = self.rules.match_known(flagged)
        if known is not None:
            adjustments.append(Adjustment(factor="known_pattern", delta=KNOWN_PATTERN))
            notes.append(f"matches catalogued pattern {known.name}")

        extra = 0
        normalized = normalize_whitespace(finding.snippet)
        if len(normalized) >= MIN_OCCURRENCE_SNIPPET:
            extra = max(0, changeset.count_occurrences(normalized) - 1)
        for _ in range(extra):
            adjustments.append(
                Adjustment(factor="additional_occurrence", delta=ADDITIONAL_OCCURRENCE)
            )
        if extra:
            notes.append(f"pattern occurs {extra} more time(s) in the changeset")

        if not adjustments:
            adjustments.append(
                Adjustment(factor="single_occurrence", delta=SINGLE_OCCURRENCE)
            )
        return adjustments

    def _decide(
        self,
        finding: Finding,
        adjustments: list[Adjustment],
        context: list[Adjustment],
        final: int,
        fix_failures: list[str] | None,
        trail: list[str],
        notes: list[str],
    ) -> ValidationVerdict:
        config = self.config
        reason = None
        if final < config.downgrade_floor:
            status = "rejected"
            if sum(a.delta for a in context) < 0:
                reason = "context_invalid"
            else:
                reason = "confidence_low"
        elif final < config.min_confidence:
            status = "downgraded"
        elif fix_failures:
            status = "revised"
            notes.append("no automatic fix; needs a human")
        else:
            status = "validated"

        logger.debug(
            "%s: %d -> %d %s", finding.id, finding.initial_confidence, final, status
        )
        return ValidationVerdict(
            finding_id=finding.id,
            adjustments=tuple(adjustments),
            final_confidence=final,
            status=status,
            reason=reason,
            revised_fix=None,
            fix_passed=None if fix_failures is None else not fix_failures,
            stages=tuple(trail) + (status,),
            notes="; ".join(notes),
        )

    @staticmethod
    def _reject(
        finding: Finding,
        adjustments: tuple[Adjustment, ...],
        reason: str,
        trail: list[str],
        notes: list[str],
    ) -> ValidationVerdict:
        logger.debug("%s rejected at %s: %s", finding.id, trail[-1], reason)
        return ValidationVerdict(
            finding_id=finding.id,
            adjustments=adjustments,
            final_confidence=score(finding.initial_confidence, list(adjustments)),
            status="rejected",
            reason=reason,
            stages=tuple(trail) + ("rejected",),
            notes="; ".join(notes),
        )

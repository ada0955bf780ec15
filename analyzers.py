"""Analyzer contract and the built-in pattern analyzers.

An analyzer turns a changeset into a lazy, finite stream of findings. The
pipeline only relies on this contract; how findings are detected is up to
each variant. The variants here are regex scanners over added lines,
seeded from the checks a Laravel project usually runs in its git hooks.
"""

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass

from changeset import Changeset, FileChange
from models import Category, Finding, Location, Severity

logger = logging.getLogger(__name__)


class Analyzer(ABC):
    """A pluggable unit producing findings over a changeset.

    Implementations must not mutate the changeset and should return
    promptly between findings so cancellation can take effect.
    """

    name: str = "analyzer"
    category: Category = "quality"

    @abstractmethod
    def analyze(self, changeset: Changeset) -> Iterator[Finding]:
        """Yield findings for *changeset*; the iterator is not restartable."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, category={self.category!r})"


# ---------------------------------------------------------------------------
# Pattern-based analyzers
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class PatternRule:
    """One line-level detection rule."""

    rule_id: str
    pattern: str
    description: str
    severity: Severity = "warning"
    confidence: int = 70
    fix: str | None = None  # re.sub replacement for the matched line; empty result = no fix
    path_pattern: str | None = None  # restrict to files whose path matches

    def compiled(self) -> re.Pattern:
        return re.compile(self.pattern)

    def covers(self, path: str) -> bool:
        return self.path_pattern is None or re.search(self.path_pattern, path) is not None


class PatternAnalyzer(Analyzer):
    """Scan the added lines of every file against a list of PatternRules."""

    def __init__(
        self,
        rules: list[PatternRule] | tuple[PatternRule, ...],
        name: str | None = None,
        category: Category | None = None,
    ):
        self.rules = tuple(rules)
        if name is not None:
            self.name = name
        if category is not None:
            self.category = category
        self._compiled = [(rule, rule.compiled()) for rule in self.rules]

    def analyze(self, changeset: Changeset) -> Iterator[Finding]:
        for change in changeset:
            yield from self._scan_file(change)

    def _scan_file(self, change: FileChange) -> Iterator[Finding]:
        applicable = [(r, rx) for r, rx in self._compiled if r.covers(change.path)]
        if not applicable:
            return
        for line_no in change.added_line_numbers():
            if line_no > change.line_count:
                continue
            text = change.lines[line_no - 1]
            for rule, regex in applicable:
                match = regex.search(text)
                if match is None:
                    continue
                fix = None
                if rule.fix is not None:
                    fix = regex.sub(rule.fix, text).strip() or None
                yield Finding(
                    category=self.category,
                    location=Location(
                        path=change.path, start_line=line_no, end_line=line_no
                    ),
                    snippet=text.strip(),
                    description=rule.description,
                    suggested_fix=fix,
                    initial_confidence=rule.confidence,
                    severity=rule.severity,
                    rule_id=rule.rule_id,
                )


SECURITY_RULES: tuple[PatternRule, ...] = (
    PatternRule(
        rule_id="SEC001",
        pattern=r"\beval\s*\(",
        description="eval() executes arbitrary code - potential code injection",
        severity="critical",
        confidence=80,
    ),
    PatternRule(
        rule_id="SEC002",
        pattern=r"DB::(raw|statement|unprepared|select)\s*\([^)]*\$"
        r"|->(whereRaw|selectRaw|orderByRaw|havingRaw)\s*\([^)]*\$",
        description="Raw SQL built from a variable - potential SQL injection",
        severity="critical",
        confidence=75,
    ),
    PatternRule(
        rule_id="SEC003",
        pattern=r"\{!!\s*(\$[^!]*?)\s*!!\}",
        description="Unescaped Blade output - potential XSS",
        severity="critical",
        confidence=75,
        fix=r"{{ \1 }}",
        path_pattern=r"\.blade\.php$",
    ),
    PatternRule(
        rule_id="SEC004",
        pattern=r"\bunserialize\s*\(",
        description="unserialize() on untrusted data allows object injection",
        severity="critical",
        confidence=70,
    ),
    PatternRule(
        rule_id="SEC005",
        pattern=r"AKIA[0-9A-Z]{16}|(sk|rk)_live_[a-zA-Z0-9]{24,}|ghp_[a-zA-Z0-9]{36}",
        description="Hardcoded credential in source",
        severity="critical",
        confidence=85,
    ),
    PatternRule(
        rule_id="SEC006",
        pattern=r"(?i)password['\"]?\s*[=:]>?\s*['\"][^'\"]{8,}",
        description="Hardcoded password",
        severity="critical",
        confidence=70,
    ),
    PatternRule(
        rule_id="SEC007",
        pattern=r"\b(exec|shell_exec|system|passthru|proc_open)\s*\(\s*\$",
        description="Shell command built from a variable - potential command injection",
        severity="critical",
        confidence=75,
    ),
)

QUALITY_RULES: tuple[PatternRule, ...] = (
    PatternRule(
        rule_id="QUA001",
        pattern=r"\b(dd|dump|var_dump|print_r)\s*\(",
        description="Debug function left in code - remove before production",
        severity="warning",
        confidence=80,
    ),
    PatternRule(
        rule_id="QUA002",
        pattern=r"\bdie\s*\(|\bexit\s*\(",
        description="die()/exit() bypasses the framework's response lifecycle",
        severity="warning",
        confidence=65,
    ),
    PatternRule(
        rule_id="QUA003",
        pattern=r"catch\s*\(\s*\\?Exception\s+\$\w+\s*\)\s*\{\s*\}",
        description="Empty catch block swallows every exception",
        severity="warning",
        confidence=75,
    ),
)

FRAMEWORK_RULES: tuple[PatternRule, ...] = (
    PatternRule(
        rule_id="FRM001",
        pattern=r"\$guarded\s*=\s*\[\s*\]",
        description="Model allows mass assignment of every attribute",
        severity="warning",
        confidence=75,
        path_pattern=r"(^|/)app/Models/",
    ),
    PatternRule(
        rule_id="FRM002",
        pattern=r"\benv\s*\(\s*['\"]",
        description="env() outside config files returns null once config is cached",
        severity="warning",
        confidence=80,
        path_pattern=r"^(?!config/).*\.php$",
    ),
    PatternRule(
        rule_id="FRM003",
        pattern=r"->(dropColumn|dropTable|dropIfExists|renameColumn)\s*\(|Schema::drop\w*\s*\(",
        description="Destructive migration operation - may cause data loss",
        severity="warning",
        confidence=70,
        path_pattern=r"(^|/)database/migrations/.*\.php$",
    ),
    PatternRule(
        rule_id="FRM004",
        pattern=r"<form[^>]*method\s*=\s*[\"'](post|put|patch|delete)[\"']",
        description="Form submits state-changing request; make sure @csrf is present",
        severity="warning",
        confidence=60,
        path_pattern=r"\.blade\.php$",
    ),
)

TESTING_RULES: tuple[PatternRule, ...] = (
    PatternRule(
        rule_id="TST001",
        pattern=r"->markTestSkipped\(|->markTestIncomplete\(",
        description="Test is skipped or incomplete",
        severity="suggestion",
        confidence=80,
        path_pattern=r"(^|/)tests/",
    ),
    PatternRule(
        rule_id="TST002",
        pattern=r"->only\(\)",
        description="Focused test (->only()) silently disables the rest of the suite",
        severity="warning",
        confidence=85,
        path_pattern=r"(^|/)tests/",
    ),
    PatternRule(
        rule_id="TST003",
        pattern=r"\bsleep\s*\(\s*\d+\s*\)",
        description="sleep() in tests slows the suite; use time travel helpers",
        severity="suggestion",
        confidence=70,
        path_pattern=r"(^|/)tests/",
    ),
)


class SecurityAnalyzer(PatternAnalyzer):
    name = "security"
    category = "security"

    def __init__(self, rules: tuple[PatternRule, ...] = SECURITY_RULES):
        super().__init__(rules)


class QualityAnalyzer(PatternAnalyzer):
    name = "quality"
    category = "quality"

    def __init__(self, rules: tuple[PatternRule, ...] = QUALITY_RULES):
        super().__init__(rules)


class FrameworkAnalyzer(PatternAnalyzer):
    name = "framework"
    category = "framework"

    def __init__(self, rules: tuple[PatternRule, ...] = FRAMEWORK_RULES):
        super().__init__(rules)


class TestingAnalyzer(PatternAnalyzer):
    __test__ = False
    name = "testing"
    category = "testing"

    def __init__(self, rules: tuple[PatternRule, ...] = TESTING_RULES):
        super().__init__(rules)


def default_analyzers() -> list[Analyzer]:
    """One analyzer per category, with the built-in rule sets."""
    return [SecurityAnalyzer(), QualityAnalyzer(), FrameworkAnalyzer(), TestingAnalyzer()]

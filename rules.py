"""Context rule table and known-pattern catalog used by the validator.

Both are immutable and passed in explicitly, so the validator stays a pure
function of finding, changeset and configuration.
"""

import json
import logging
import re
from functools import cached_property
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from errors import ConfigError
from models import Category, Severity

logger = logging.getLogger(__name__)

Scope = Literal["path", "lines", "window"]


class ContextRule(BaseModel):
    """Regex check over a finding's surroundings that yields one adjustment."""

    model_config = ConfigDict(frozen=True)

    name: str
    factor: str
    delta: int
    pattern: str
    scope: Scope = "window"
    categories: tuple[Category, ...] = ()
    ignore_case: bool = False

    @field_validator("pattern")
    @classmethod
    def _compiles(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"invalid regex {value!r}: {e}") from e
        return value

    @cached_property
    def regex(self) -> re.Pattern:
        return re.compile(self.pattern, re.IGNORECASE if self.ignore_case else 0)

    def applies_to(self, category: str) -> bool:
        return not self.categories or category in self.categories


class KnownPattern(BaseModel):
    """A catalogued vulnerability or anti-pattern."""

    model_config = ConfigDict(frozen=True)

    name: str
    pattern: str
    severity: Severity = "warning"
    ignore_case: bool = False

    @field_validator("pattern")
    @classmethod
    def _compiles(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"invalid regex {value!r}: {e}") from e
        return value

    @cached_property
    def regex(self) -> re.Pattern:
        return re.compile(self.pattern, re.IGNORECASE if self.ignore_case else 0)


class RuleTable(BaseModel):
    model_config = ConfigDict(frozen=True)

    context_rules: tuple[ContextRule, ...] = ()
    known_patterns: tuple[KnownPattern, ...] = ()

    def match_known(self, text: str) -> KnownPattern | None:
        for known in self.known_patterns:
            if known.regex.search(text):
                return known
        return None

    def critical_patterns_in(self, text: str) -> list[KnownPattern]:
        return [
            known
            for known in self.known_patterns
            if known.severity == "critical" and known.regex.search(text)
        ]


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------
DEFAULT_CONTEXT_RULES: tuple[ContextRule, ...] = (
    ContextRule(
        name="external_input",
        factor="external_input",
        delta=10,
        pattern=r"\$request\b|\brequest\(\)|\$_(GET|POST|REQUEST|COOKIE|SERVER)\b"
        r"|->input\(|->query\(|Request::input|->all\(\)",
        scope="window",
    ),
    ContextRule(
        name="test_file",
        factor="context_denies_relevance",
        delta=-20,
        pattern=r"(^|/)tests?/|Test\.php$|\.spec\.[jt]s$|(^|/)database/(factories|seeders)/",
        scope="path",
        categories=("security", "quality", "framework"),
    ),
    ContextRule(
        name="constant_value",
        factor="context_denies_relevance",
        delta=-20,
        pattern=r"^\s*(public\s+|private\s+|protected\s+)?const\s|\bdefine\(",
        scope="lines",
    ),
    ContextRule(
        name="safe_builtin",
        factor="handled_by_safe_builtin",
        delta=-25,
        pattern=r"->validated\(\)|\bhtmlspecialchars\(|\be\(|Hash::make\(|\bbcrypt\("
        r"|@csrf\b|->whereKey\(|\$fillable\b|->authorize\(",
        scope="window",
    ),
    ContextRule(
        name="suppressed",
        factor="unusual_context",
        delta=-15,
        pattern=r"@codeCoverageIgnore|phpcs:ignore|@phpstan-ignore|nosec|noinspection",
        scope="window",
    ),
)

DEFAULT_KNOWN_PATTERNS: tuple[KnownPattern, ...] = (
    KnownPattern(name="eval", pattern=r"\beval\s*\(", severity="critical"),
    KnownPattern(
        name="raw_sql",
        pattern=r"DB::(raw|statement|unprepared|select)\s*\([^)]*\$"
        r"|->(whereRaw|selectRaw|orderByRaw|havingRaw)\s*\([^)]*\$",
        severity="critical",
    ),
    KnownPattern(name="unescaped_blade", pattern=r"\{!!\s*\$", severity="critical"),
    KnownPattern(name="unserialize", pattern=r"\bunserialize\s*\(", severity="critical"),
    KnownPattern(
        name="shell_exec",
        pattern=r"\b(exec|shell_exec|system|passthru|proc_open)\s*\(\s*\$",
        severity="critical",
    ),
    KnownPattern(
        name="aws_key", pattern=r"AKIA[0-9A-Z]{16}", severity="critical"
    ),
    KnownPattern(
        name="stripe_live_key",
        pattern=r"(sk|rk)_live_[a-zA-Z0-9]{24,}",
        severity="critical",
    ),
    KnownPattern(
        name="private_key",
        pattern=r"-----BEGIN (RSA |DSA |EC |OPENSSH )?PRIVATE KEY-----",
        severity="critical",
    ),
    KnownPattern(
        name="hardcoded_password",
        pattern=r"password['\"]?\s*[=:]>?\s*['\"][^'\"]{8,}",
        severity="critical",
        ignore_case=True,
    ),
    KnownPattern(name="mass_assignment", pattern=r"\$guarded\s*=\s*\[\s*\]"),
    KnownPattern(name="debug_call", pattern=r"\b(dd|dump|var_dump|print_r)\s*\("),
    KnownPattern(name="env_outside_config", pattern=r"\benv\s*\(\s*['\"]"),
)

DEFAULT_RULE_TABLE = RuleTable(
    context_rules=DEFAULT_CONTEXT_RULES,
    known_patterns=DEFAULT_KNOWN_PATTERNS,
)


def load_rule_table(path: str | Path) -> RuleTable:
    """
    Load a rule table from JSON.

    Expected shape: ``{"context_rules": [...], "known_patterns": [...]}``.
    A missing key keeps the default for that half of the table.
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read rule table {path}: {e}") from e

    try:
        table = RuleTable(
            context_rules=data.get("context_rules", DEFAULT_CONTEXT_RULES),
            known_patterns=data.get("known_patterns", DEFAULT_KNOWN_PATTERNS),
        )
    except ValidationError as e:
        raise ConfigError(f"Invalid rule table {path}: {e}") from e

    logger.info(
        "Loaded %d context rule(s) and %d known pattern(s) from %s",
        len(table.context_rules),
        len(table.known_patterns),
        path,
    )
    return table

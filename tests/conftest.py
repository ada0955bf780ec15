"""Shared test fixtures for PRVerdict tests."""

from __future__ import annotations

import time
from collections.abc import Iterator

import pytest

from analyzers import Analyzer
from changeset import Changeset, FileChange
from models import Finding, Location

CONTROLLER_PATH = "app/Http/Controllers/UserController.php"
CONTROLLER = """<?php

namespace App\\Http\\Controllers;

use Illuminate\\Http\\Request;
use Illuminate\\Support\\Facades\\DB;

class UserController extends Controller
{
    public function search(Request $request)
    {
        $term = $request->input('q');
        $users = DB::select("SELECT * FROM users WHERE name = '$term'");
        return view('users.index', compact('users'));
    }
}
"""

FIXTURE_PATH = "tests/Fixtures/LegacyHasher.php"
FIXTURE = """<?php

namespace Tests\\Fixtures;

class LegacyHasher
{
    public function hashed($value)
    {
        return   Hash::make($value);
    }
}
"""

SERVICE_PATH = "app/Services/ReportService.php"
SERVICE = """<?php

namespace App\\Services;

class ReportService
{
    public function total($items)
    {
        $total = $items->count();
        return $total;
    }
}
"""


def make_file(path: str, content: str, added: tuple | None = None) -> FileChange:
    lines = tuple(content.splitlines())
    return FileChange(
        path=path,
        status="modified",
        lines=lines,
        added_ranges=added if added is not None else ((1, len(lines)),),
    )


def make_finding(
    path: str = CONTROLLER_PATH,
    start: int = 13,
    end: int | None = None,
    snippet: str = "$users = DB::select(\"SELECT * FROM users WHERE name = '$term'\");",
    category: str = "security",
    confidence: int = 85,
    severity: str = "critical",
    fix: str | None = None,
    finding_id: str = "security:1",
    description: str = "Raw SQL built from request input",
) -> Finding:
    return Finding(
        id=finding_id,
        category=category,
        location=Location(path=path, start_line=start, end_line=end or start),
        snippet=snippet,
        description=description,
        suggested_fix=fix,
        initial_confidence=confidence,
        severity=severity,
    )


class StaticAnalyzer(Analyzer):
    """Yields a fixed list of findings."""

    def __init__(self, name: str, category: str, findings: list[Finding], delay: float = 0.0):
        self.name = name
        self.category = category
        self.findings = findings
        self.delay = delay

    def analyze(self, changeset: Changeset) -> Iterator[Finding]:
        for finding in self.findings:
            if self.delay:
                time.sleep(self.delay)
            yield finding


class CrashingAnalyzer(Analyzer):
    """Yields one finding, then blows up."""

    def __init__(self, name: str, category: str, first: Finding):
        self.name = name
        self.category = category
        self.first = first

    def analyze(self, changeset: Changeset) -> Iterator[Finding]:
        yield self.first
        raise RuntimeError("rule engine exploded")


@pytest.fixture
def controller() -> FileChange:
    return make_file(CONTROLLER_PATH, CONTROLLER)


@pytest.fixture
def changeset(controller: FileChange) -> Changeset:
    return Changeset.of(
        [controller, make_file(FIXTURE_PATH, FIXTURE), make_file(SERVICE_PATH, SERVICE)]
    )

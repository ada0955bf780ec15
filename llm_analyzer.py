"""Gemini-backed analyzer: one LLM review per file chunk and category."""

import json
import logging
import re
from collections.abc import Iterator

from google.api_core.exceptions import GoogleAPIError
from pydantic import BaseModel, Field, ValidationError

from analyzers import Analyzer
from changeset import Changeset, FileChange
from config import DEFAULT_MODEL, USE_MOCK, call_gemini
from mock_data import MOCK_RESPONSE
from models import Category, Finding, Location, Severity
from prompts import build_prompt

logger = logging.getLogger(__name__)

# Token limits (conservative estimates)
MAX_LINES_PER_CHUNK = 200  # Max lines to send in one request
MAX_CHARS_PER_CHUNK = 15000  # Max characters (~3750 tokens)


# ---------------------------------------------------------------------------
# LLM response models
# ---------------------------------------------------------------------------
class LLMFinding(BaseModel):
    """One finding as the model reports it."""

    severity: Severity = "warning"
    line_start: int
    line_end: int | None = None
    snippet: str = ""
    description: str
    fix: str = ""
    confidence: int = Field(default=50, ge=0, le=100)


class LLMResult(BaseModel):
    findings: list[LLMFinding] = Field(default_factory=list)


def parse_llm_json(text: str) -> LLMResult | None:
    """Extract the first JSON object from *text* and validate as LLMResult."""
    start = text.find("{")
    if start == -1:
        logger.warning("No JSON object found in LLM response")
        return None

    try:
        decoder = json.JSONDecoder()
        obj, _ = decoder.raw_decode(text[start:])
        return LLMResult.model_validate(obj)
    except json.JSONDecodeError as e:
        logger.warning("JSON decode error: %s", e)
        return None
    except ValidationError as e:
        logger.warning("Pydantic validation error: %s", e)
        return None


# ---------------------------------------------------------------------------
# Chunking helpers
# ---------------------------------------------------------------------------
def extract_added_code(change: FileChange) -> str:
    """Added lines of *change*, each prefixed with its line number."""
    lines = []
    for line_no in change.added_line_numbers():
        if line_no <= change.line_count:
            lines.append(f"{line_no:4}| {change.lines[line_no - 1]}")
    return "\n".join(lines)


def chunk_code(
    code: str,
    max_lines: int = MAX_LINES_PER_CHUNK,
    max_chars: int = MAX_CHARS_PER_CHUNK,
) -> list[str]:
    """
    Split large code into reviewable chunks.

    Each chunk preserves the line-number prefixes of the original.

    Args:
        code: Code string with line numbers (e.g., "   1| <?php")
        max_lines: Maximum lines per chunk
        max_chars: Maximum characters per chunk

    Returns:
        List of code chunks, each small enough for one API call
    """
    lines = code.split("\n")

    if len(lines) <= max_lines and len(code) <= max_chars:
        return [code]

    chunks: list[str] = []
    current_chunk: list[str] = []
    current_chars = 0

    for line in lines:
        line_with_newline = line + "\n"

        would_exceed_lines = len(current_chunk) >= max_lines
        would_exceed_chars = current_chars + len(line_with_newline) > max_chars

        if current_chunk and (would_exceed_lines or would_exceed_chars):
            chunks.append("\n".join(current_chunk))
            current_chunk = []
            current_chars = 0

        current_chunk.append(line)
        current_chars += len(line_with_newline)

    if current_chunk:
        chunks.append("\n".join(current_chunk))

    return chunks


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------
class LLMAnalyzer(Analyzer):
    """
    Ask Gemini for findings of one category.

    Findings are yielded per chunk as responses arrive, so a deadline hit
    mid-file still cancels cleanly between requests. API errors propagate
    and the orchestrator records the analyzer as failed.
    """

    def __init__(self, category: Category, model: str = DEFAULT_MODEL):
        self.category = category
        self.name = f"llm-{category}"
        self.model = model

    def analyze(self, changeset: Changeset) -> Iterator[Finding]:
        for change in changeset:
            code = extract_added_code(change)
            if not code.strip():
                continue

            chunks = chunk_code(code)
            if len(chunks) > 1:
                logger.info(
                    "  Large file %s - splitting into %d chunks", change.path, len(chunks)
                )
            for chunk in chunks:
                result = self._review_chunk(change.path, chunk)
                if result is None:
                    continue
                for item in result.findings:
                    yield self._to_finding(change.path, item)

    def _review_chunk(self, filename: str, chunk: str) -> LLMResult | None:
        if USE_MOCK:
            return parse_llm_json(MOCK_RESPONSE)

        prompt = build_prompt(self.category, filename, chunk)
        try:
            text = call_gemini(prompt, self.model)
        except GoogleAPIError as e:
            logger.error("%s error reviewing %s: %s", self.name, filename, e)
            raise
        return parse_llm_json(text)

    def _to_finding(self, path: str, item: LLMFinding) -> Finding:
        # Models sometimes echo the "  42| " prefix back into the snippet
        snippet = re.sub(r"^\s*\d+\|\s?", "", item.snippet, flags=re.MULTILINE).strip()
        return Finding(
            category=self.category,
            location=Location(
                path=path,
                start_line=item.line_start,
                end_line=item.line_end if item.line_end is not None else item.line_start,
            ),
            snippet=snippet,
            description=item.description,
            suggested_fix=item.fix or None,
            initial_confidence=item.confidence,
            severity=item.severity,
            rule_id=f"llm:{self.category}",
        )

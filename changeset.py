"""Changeset model and builders (unified diff via unidiff, or JSON descriptor)."""

import json
import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

from unidiff import PatchSet
from unidiff.errors import UnidiffParseError

from errors import ConfigError

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_whitespace(text: str) -> str:
    """Collapse every whitespace run (newlines included) into one space."""
    return _WHITESPACE.sub(" ", text).strip()


def collapse_ranges(line_numbers: Iterable[int]) -> tuple[tuple[int, int], ...]:
    """Turn line numbers into sorted inclusive (start, end) ranges."""
    ranges: list[tuple[int, int]] = []
    for line_no in sorted(set(line_numbers)):
        if ranges and line_no == ranges[-1][1] + 1:
            ranges[-1] = (ranges[-1][0], line_no)
        else:
            ranges.append((line_no, line_no))
    return tuple(ranges)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class FileChange:
    """One file in the changeset, with its full post-change content."""

    path: str
    status: str  # added, deleted, modified, renamed
    lines: tuple[str, ...] = ()
    added_ranges: tuple[tuple[int, int], ...] = ()
    removed_ranges: tuple[tuple[int, int], ...] = ()

    @property
    def line_count(self) -> int:
        return len(self.lines)

    def line_range(self, start: int, end: int) -> tuple[str, ...] | None:
        """Return lines start..end (1-based, inclusive) or None if out of bounds."""
        if start < 1 or end < start or end > len(self.lines):
            return None
        return self.lines[start - 1 : end]

    def window(self, start: int, end: int, radius: int) -> tuple[str, ...]:
        """Lines around start..end, clipped to the file."""
        lo = max(1, start - radius)
        hi = min(len(self.lines), end + radius)
        return self.lines[lo - 1 : hi]

    def added_line_numbers(self) -> list[int]:
        numbers: list[int] = []
        for start, end in self.added_ranges:
            numbers.extend(range(start, end + 1))
        return numbers

    @property
    def normalized_text(self) -> str:
        return normalize_whitespace("\n".join(self.lines))


@dataclass(frozen=True)
class Changeset:
    """Read-only snapshot of every file under review, keyed by path."""

    files: Mapping[str, FileChange] = field(default_factory=dict)

    def __post_init__(self):
        # Shared across analyzer threads, so the mapping itself is frozen too
        object.__setattr__(self, "files", MappingProxyType(dict(self.files)))

    @classmethod
    def of(cls, changes: Iterable[FileChange]) -> "Changeset":
        return cls(files={change.path: change for change in changes})

    def get(self, path: str) -> FileChange | None:
        return self.files.get(path)

    def __iter__(self):
        return iter(self.files.values())

    def __len__(self) -> int:
        return len(self.files)

    def count_occurrences(self, normalized_snippet: str) -> int:
        """Count appearances of a normalised snippet across all files."""
        if not normalized_snippet:
            return 0
        return sum(
            change.normalized_text.count(normalized_snippet) for change in self
        )


# ---------------------------------------------------------------------------
# File filtering
# ---------------------------------------------------------------------------
# File extensions to skip during review
SKIP_EXTENSIONS = {
    '.md', '.txt', '.rst', '.adoc',           # Docs
    '.lock',                                   # Lock files
    '.png', '.jpg', '.jpeg', '.gif', '.svg', '.ico', '.webp',  # Images
    '.woff', '.woff2', '.ttf', '.eot',        # Fonts
    '.min.js', '.min.css', '.map',            # Build artifacts
    '.exe', '.dll', '.so', '.dylib', '.pyc',  # Binary
    '.zip', '.tar', '.gz', '.pdf',            # Archives/docs
}

SKIP_FILENAMES = {
    'package-lock.json', 'yarn.lock', 'pnpm-lock.yaml',
    'composer.lock', 'poetry.lock', 'uv.lock',
    '.gitignore', '.gitattributes', '.editorconfig',
    'LICENSE', 'LICENSE.md', 'LICENSE.txt',
}

SKIP_DIRECTORIES = {'node_modules/', 'vendor/', 'dist/', 'build/', '.git/', 'storage/'}


def should_review_file(filename: str) -> bool:
    """Check if file should be reviewed based on name/extension."""
    for skip_dir in SKIP_DIRECTORIES:
        if filename.startswith(skip_dir) or f'/{skip_dir}' in filename:
            return False

    basename = filename.split('/')[-1]
    if basename in SKIP_FILENAMES:
        return False

    for ext in SKIP_EXTENSIONS:
        if filename.lower().endswith(ext):
            return False

    return True


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------
def parse_diff(
    diff_text: str,
    root: str | Path | None = None,
    contents: Mapping[str, str] | None = None,
) -> Changeset:
    """
    Build a Changeset from a unified diff.

    The diff only carries hunks, so the post-change file content comes from
    *contents* when given, otherwise from the working tree under *root*.
    Deleted files and files filtered by ``should_review_file`` are left out.

    Args:
        diff_text: Raw unified diff string
        root: Directory holding the post-change working tree
        contents: Optional mapping path -> post-change text (wins over root)

    Returns:
        Changeset with one FileChange per reviewable file

    Raises:
        ConfigError: If the diff cannot be parsed
    """
    try:
        patch_set = PatchSet(diff_text)
    except UnidiffParseError as e:
        raise ConfigError(f"Unparseable diff: {e}") from e

    contents = contents or {}
    base = Path(root) if root is not None else None
    changes: list[FileChange] = []

    for patched_file in patch_set:
        path = patched_file.path
        if patched_file.is_removed_file:
            continue
        if not should_review_file(path):
            logger.debug("Skipping %s (filtered)", path)
            continue

        if patched_file.is_added_file:
            status = "added"
        elif patched_file.is_rename:
            status = "renamed"
        else:
            status = "modified"

        added: list[int] = []
        removed: list[int] = []
        hunk_lines: dict[int, str] = {}
        for hunk in patched_file:
            for line in hunk:
                if line.is_added:
                    added.append(line.target_line_no)
                elif line.is_removed:
                    removed.append(line.source_line_no)
                if line.target_line_no is not None:
                    hunk_lines[line.target_line_no] = line.value.rstrip("\n")

        text = _read_content(path, contents, base)
        if text is None:
            # No full content available: fall back to what the hunks show,
            # leaving gaps empty so line numbers stay aligned.
            last = max(hunk_lines, default=0)
            lines = tuple(hunk_lines.get(n, "") for n in range(1, last + 1))
            logger.warning("No post-change content for %s; using hunk text", path)
        else:
            lines = tuple(text.splitlines())

        changes.append(
            FileChange(
                path=path,
                status=status,
                lines=lines,
                added_ranges=collapse_ranges(added),
                removed_ranges=collapse_ranges(removed),
            )
        )

    return Changeset.of(changes)


def _read_content(
    path: str, contents: Mapping[str, str], base: Path | None
) -> str | None:
    if path in contents:
        return contents[path]
    if base is None:
        return None
    candidate = base / path
    if not candidate.is_file():
        return None
    return candidate.read_text(encoding="utf-8", errors="replace")


def changeset_from_dict(data: Mapping) -> Changeset:
    """
    Build a Changeset from a descriptor of the form::

        {"files": [{"path": "app/Foo.php", "content": "...",
                    "added": [[1, 4]], "removed": [], "status": "modified"}]}

    When "added" is missing every line counts as added.
    """
    if not isinstance(data, Mapping):
        raise ConfigError("Changeset descriptor must be a JSON object")
    files = data.get("files")
    if not isinstance(files, list):
        raise ConfigError("Changeset descriptor needs a 'files' list")

    changes: list[FileChange] = []
    for entry in files:
        if not isinstance(entry, Mapping):
            raise ConfigError(f"Invalid changeset entry {entry!r}")
        path = entry.get("path")
        content = entry.get("content", "")
        if not isinstance(path, str) or not path:
            raise ConfigError(f"Changeset entry without a path: {entry!r}")
        if not isinstance(content, str):
            raise ConfigError(f"{path}: 'content' must be a string")

        lines = tuple(content.splitlines())
        added = entry.get("added")
        if added is None:
            added_ranges = ((1, len(lines)),) if lines else ()
        else:
            added_ranges = _parse_ranges(path, "added", added)
        changes.append(
            FileChange(
                path=path,
                status=entry.get("status", "modified"),
                lines=lines,
                added_ranges=added_ranges,
                removed_ranges=_parse_ranges(path, "removed", entry.get("removed", [])),
            )
        )
    return Changeset.of(changes)


def _parse_ranges(path: str, key: str, value) -> tuple[tuple[int, int], ...]:
    """[[start, end], ...] as int pairs; anything else is a ConfigError."""
    try:
        return tuple((int(start), int(end)) for start, end in value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{path}: '{key}' must be a list of [start, end] pairs") from e


def load_changeset(path: str | Path) -> Changeset:
    """Load a JSON changeset descriptor from disk."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read changeset {path}: {e}") from e
    return changeset_from_dict(data)

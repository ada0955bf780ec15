"""Command-line entry point: review a changeset and exit non-zero on critical findings."""

import argparse
import logging
import sys
from pathlib import Path

from config import USE_MOCK, load_config
from agent import run_review
from analyzers import default_analyzers
from changeset import load_changeset, parse_diff
from errors import ConfigError
from llm_analyzer import LLMAnalyzer
from models import CATEGORIES
from reporter import RENDERERS, exit_code
from rules import DEFAULT_RULE_TABLE, load_rule_table

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="prverdict",
        description="Validate analyzer findings over a changeset and report the real ones.",
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--diff", help="Unified diff file ('-' for stdin)")
    source.add_argument("--changeset", help="JSON changeset descriptor")
    parser.add_argument(
        "--root", default=".", help="Working tree holding post-change files (with --diff)"
    )
    parser.add_argument("--config", help="JSON configuration file")
    parser.add_argument("--rules", help="JSON rule table replacing the defaults")
    parser.add_argument(
        "--format", choices=sorted(RENDERERS), default="text", help="Report format"
    )
    parser.add_argument(
        "--timeout", type=float, help="Analyzer deadline in seconds (overrides config)"
    )
    parser.add_argument(
        "--llm", action="store_true", help="Also run the Gemini-backed analyzers"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser


def _read_diff(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    try:
        return Path(source).read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read diff {source}: {e}") from e


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = load_config(args.config)
        rules = load_rule_table(args.rules) if args.rules else DEFAULT_RULE_TABLE
        if args.diff:
            changeset = parse_diff(_read_diff(args.diff), root=args.root)
        else:
            changeset = load_changeset(args.changeset)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 2

    analyzers = default_analyzers()
    if args.llm:
        if USE_MOCK:
            logger.info("[MOCK MODE - No API call made]")
        analyzers.extend(LLMAnalyzer(category) for category in CATEGORIES)

    logger.info("Starting review...")
    report, rendered = run_review(
        changeset,
        analyzers,
        config=config,
        rules=rules,
        timeout=args.timeout,
        output_format=args.format,
    )
    print(rendered)
    return exit_code(report)


if __name__ == "__main__":
    sys.exit(main())

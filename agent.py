"""
PRVerdict Agent - LangGraph-based finding validation pipeline

This module wires the review workflow as a state machine using LangGraph.
Analyzers run in parallel inside the first node, their findings are
validated, deduplicated and aggregated, then rendered into one report.
"""

import logging
from dataclasses import dataclass, field

from langgraph.graph import END, START, StateGraph

import config as _config  # noqa: F401 - ensures env & logging are initialised
from aggregator import aggregate
from analyzers import Analyzer
from changeset import Changeset
from config import ReviewConfig
from models import Report
from orchestrator import Orchestrator
from reporter import render
from rules import DEFAULT_RULE_TABLE, RuleTable
from session import ReviewSession
from validator import Validator

logger = logging.getLogger(__name__)


# =============================================================================
# STATE DEFINITION
# =============================================================================
@dataclass
class ReviewState:
    """
    State that flows through the review graph.

    Each node can read any field and return updates to specific fields.
    LangGraph automatically merges the updates into the state.
    """

    # Input (required)
    changeset: Changeset

    # Input (optional)
    analyzers: list[Analyzer] = field(default_factory=list)
    config: ReviewConfig = field(default_factory=ReviewConfig)
    rules: RuleTable = DEFAULT_RULE_TABLE
    timeout: float | None = None  # seconds; None = config.analyzer_timeout
    output_format: str = "text"

    # Intermediate data (populated by nodes)
    session: ReviewSession | None = None

    # Output
    report: Report | None = None
    rendered: str = ""


# =============================================================================
# NODE FUNCTIONS
# =============================================================================
def run_analyzers(state: ReviewState) -> dict:
    """
    Node 1: Fan out to every analyzer, fan their findings in.

    Reads: changeset, analyzers, config, timeout
    Updates: session
    """
    logger.info(
        "📥 Reviewing %d file(s) with %d analyzer(s)...",
        len(state.changeset),
        len(state.analyzers),
    )
    session = Orchestrator(state.config).run(
        state.changeset, state.analyzers, timeout=state.timeout
    )
    return {"session": session}


def validate_findings(state: ReviewState) -> dict:
    """
    Node 2: Validate every finding of the session.

    Reads: session, config, rules
    Updates: session (verdicts)
    """
    session = state.session
    pending = session.pending()
    logger.info("🔍 Validating %d finding(s)...", len(pending))

    validator = Validator(state.config, state.rules)
    for verdict in validator.validate_all(pending, session.changeset):
        session.record_verdict(verdict)

    return {"session": session}


def aggregate_findings(state: ReviewState) -> dict:
    """
    Node 3: Deduplicate, filter, sort and count.

    Reads: session, config
    Updates: report
    """
    return {"report": aggregate(state.session, state.config)}


def render_report(state: ReviewState) -> dict:
    """
    Node 4: Render the report.

    Reads: report, output_format
    Updates: rendered
    """
    return {"rendered": render(state.report, state.output_format)}


# =============================================================================
# DECISION FUNCTIONS (for conditional edges)
# =============================================================================
def should_validate(state: ReviewState) -> str:
    """
    Decide whether there is anything to validate.

    Returns:
        "validate" if the analyzers produced findings
        "aggregate" otherwise (the report only carries summary counts)
    """
    session = state.get("session") if isinstance(state, dict) else state.session

    if session is not None and session.findings:
        logger.info("🔀 Decision: %d finding(s) → validating", len(session.findings))
        return "validate"

    logger.info("🔀 Decision: No findings → aggregating")
    return "aggregate"


# =============================================================================
# GRAPH CONSTRUCTION
# =============================================================================
def build_review_graph() -> StateGraph:
    """Build the review workflow graph."""
    graph = StateGraph(ReviewState)

    graph.add_node("run_analyzers", run_analyzers)
    graph.add_node("validate_findings", validate_findings)
    graph.add_node("aggregate_findings", aggregate_findings)
    graph.add_node("render_report", render_report)

    graph.add_edge(START, "run_analyzers")

    graph.add_conditional_edges(
        "run_analyzers",
        should_validate,
        {
            "validate": "validate_findings",
            "aggregate": "aggregate_findings",
        },
    )

    graph.add_edge("validate_findings", "aggregate_findings")
    graph.add_edge("aggregate_findings", "render_report")
    graph.add_edge("render_report", END)

    return graph


def create_agent():
    """Create and compile the review agent."""
    graph = build_review_graph()
    return graph.compile()


def run_review(
    changeset: Changeset,
    analyzers: list[Analyzer],
    config: ReviewConfig | None = None,
    rules: RuleTable = DEFAULT_RULE_TABLE,
    timeout: float | None = None,
    output_format: str = "text",
) -> tuple[Report, str]:
    """Run the whole pipeline once and return (report, rendered report)."""
    agent = create_agent()
    final_state = agent.invoke(
        ReviewState(
            changeset=changeset,
            analyzers=list(analyzers),
            config=config or ReviewConfig(),
            rules=rules,
            timeout=timeout,
            output_format=output_format,
        )
    )
    return final_state["report"], final_state["rendered"]

"""Prompt templates for the LLM-backed analyzer."""

# =============================================================================
# SHARED PREAMBLE: injected into every analyzer prompt
# =============================================================================

_SEVERITY_GUIDE = (
    "Severity definitions (use these exactly):\n"
    "- critical: Exploitable in production right now"
    " (data breach, RCE, data loss, auth bypass)\n"
    "- warning: Will cause bugs, crashes or maintenance pain under normal use\n"
    "- suggestion: Nit, stylistic preference, minor improvement\n"
)

_DIFF_CONTEXT = (
    "This code comes from a pull request to a Laravel application. "
    "Lines are prefixed with their number (e.g. '  42| code'). "
    "Use the EXACT line numbers in your findings.\n"
    "Focus on newly added/changed lines.\n"
)

_SNIPPET_RULES = (
    "For every finding copy the offending code into \"snippet\" EXACTLY as it "
    "appears (without the line-number prefix). Findings whose snippet cannot be "
    "found at the given lines are discarded.\n"
)

_CONFIDENCE = (
    "Set \"confidence\" to an integer 0-100 for how sure you are this is a real "
    "issue. Do NOT report theoretical issues that require unlikely conditions.\n"
)

_OUTPUT_RULES = (
    "Respond with ONLY valid JSON. No markdown, no explanation, no extra text.\n"
)

_EMPTY_RESULT = 'If no issues found, return: {"findings":[]}\n'

_FORMAT = (
    "Required format:\n"
    '{"findings":[{"severity":"critical|warning|suggestion",'
    '"line_start":1,"line_end":1,"snippet":"exact code",'
    '"description":"issue","fix":"replacement code or empty",'
    '"confidence":80}]}\n'
)

_FOCUS = {
    "security": (
        "You are a SECURITY EXPERT. Review for vulnerabilities ONLY:\n"
        "- SQL injection (DB::raw, whereRaw with variables)\n"
        "- XSS ({!! !!} output of user data)\n"
        "- Mass assignment, missing authorization\n"
        "- Hardcoded secrets, insecure deserialization, command injection\n"
        "Do NOT flag values read from config() or env files.\n"
    ),
    "quality": (
        "You are a CODE QUALITY EXPERT. Review for maintainability ONLY:\n"
        "- Overly complex methods, poor naming, duplication\n"
        "- Missing or swallowed error handling\n"
        "- Debug leftovers (dd, dump, var_dump)\n"
    ),
    "framework": (
        "You are a LARAVEL EXPERT. Review for framework misuse ONLY:\n"
        "- N+1 queries (relations accessed in loops without eager loading)\n"
        "- env() outside config files, logic in routes, fat controllers\n"
        "- Destructive migrations without a down() path\n"
    ),
    "testing": (
        "You are a TESTING EXPERT. Review the tests ONLY:\n"
        "- Skipped or focused tests, missing assertions\n"
        "- Tests depending on real time, network or ordering\n"
    ),
}


def build_prompt(category: str, filename: str, code: str) -> str:
    """Assemble the analyzer prompt for one category and one chunk of code."""
    return (
        _FOCUS[category]
        + "\n"
        + _DIFF_CONTEXT
        + "\n"
        + _SEVERITY_GUIDE
        + "\n"
        + _SNIPPET_RULES
        + _CONFIDENCE
        + "\n"
        + f"File: {filename}\n"
        + f"```\n{code}\n```\n"
        + "\n"
        + _OUTPUT_RULES
        + _EMPTY_RESULT
        + "\n"
        + _FORMAT
    )

"""Error taxonomy for the review pipeline."""


class PipelineError(Exception):
    """Base class for every error raised by the review pipeline."""


class ConfigError(PipelineError, ValueError):
    """Invalid configuration, rule table or changeset descriptor."""


class AnalyzerFailure(PipelineError):
    """An analyzer crashed; isolated and treated as zero findings."""

    def __init__(self, analyzer: str, message: str):
        super().__init__(f"{analyzer}: {message}")
        self.analyzer = analyzer


class AnalyzerTimeout(AnalyzerFailure):
    """An analyzer missed the session deadline."""


class MalformedFinding(PipelineError):
    """A finding whose location or snippet cannot describe real code."""


class ValidationInternalError(PipelineError):
    """A rule evaluator broke while validating a finding."""

    def __init__(self, finding_id: str, stage: str, cause: Exception):
        super().__init__(f"{finding_id} failed in {stage}: {cause}")
        self.finding_id = finding_id
        self.stage = stage
        self.cause = cause

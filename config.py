"""Shared configuration and utilities for PRVerdict."""

import functools
import json
import logging
import os
import time
from pathlib import Path

from dotenv import load_dotenv
from google import genai
from google.api_core.exceptions import (
    DeadlineExceeded,
    InternalServerError,
    ServiceUnavailable,
    TooManyRequests,
)
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from errors import ConfigError
from models import CATEGORIES, Category

# ---------------------------------------------------------------------------
# Environment & logging (initialised once on first import)
# ---------------------------------------------------------------------------
load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
USE_MOCK: bool = os.getenv("USE_MOCK", "false").lower() == "true"
DEFAULT_MODEL: str = "gemini-2.5-flash-lite"

ENV_PREFIX = "PRVERDICT_"

# Gemini errors worth retrying (transient / rate-limit)
_RETRYABLE_GEMINI_ERRORS: tuple[type[Exception], ...] = (
    ServiceUnavailable,
    TooManyRequests,
    DeadlineExceeded,
    InternalServerError,
)


# ---------------------------------------------------------------------------
# Review configuration
# ---------------------------------------------------------------------------
class ReviewConfig(BaseModel):
    """Thresholds, timeouts and switches for one review session.

    Accepts both the camelCase names used in config files and the
    snake_case attribute names.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    min_confidence: int = Field(default=80, ge=0, le=100, alias="minConfidence")
    downgrade_floor: int = Field(default=60, ge=0, le=100, alias="downgradeFloor")
    analyzer_timeout_ms: int = Field(default=30_000, gt=0, alias="analyzerTimeoutMs")
    enabled_categories: frozenset[Category] = Field(
        default=frozenset(CATEGORIES), alias="enabledCategories"
    )
    context_window: int = Field(default=3, ge=0, alias="contextWindow")
    validation_workers: int = Field(default=4, ge=1, alias="validationWorkers")
    mergeable_categories: tuple[frozenset[Category], ...] = Field(
        default=(frozenset({"security", "framework"}),),
        alias="mergeableCategories",
    )

    @model_validator(mode="after")
    def _thresholds_ordered(self):
        if self.downgrade_floor > self.min_confidence:
            raise ValueError(
                f"downgradeFloor ({self.downgrade_floor}) must not exceed "
                f"minConfidence ({self.min_confidence})"
            )
        return self

    @property
    def analyzer_timeout(self) -> float:
        """Analyzer deadline in seconds."""
        return self.analyzer_timeout_ms / 1000

    def categories_compatible(self, first: str, second: str) -> bool:
        if first == second:
            return True
        return any(
            first in group and second in group for group in self.mergeable_categories
        )


def _env_overrides() -> dict:
    overrides: dict = {}
    for key, field_name in (
        ("MIN_CONFIDENCE", "min_confidence"),
        ("DOWNGRADE_FLOOR", "downgrade_floor"),
        ("ANALYZER_TIMEOUT_MS", "analyzer_timeout_ms"),
        ("VALIDATION_WORKERS", "validation_workers"),
    ):
        raw = os.getenv(ENV_PREFIX + key)
        if raw:
            overrides[field_name] = raw
    raw_categories = os.getenv(ENV_PREFIX + "ENABLED_CATEGORIES")
    if raw_categories:
        overrides["enabled_categories"] = [
            c.strip() for c in raw_categories.split(",") if c.strip()
        ]
    return overrides


def load_config(path: str | Path | None = None) -> ReviewConfig:
    """Build a ReviewConfig from an optional JSON file plus environment overrides.

    Environment variables (``PRVERDICT_*``) win over the file.
    """
    data: dict = {}
    if path is not None:
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot read config {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config {path} must hold a JSON object")

    try:
        config = ReviewConfig.model_validate(data)
        overrides = _env_overrides()
        if overrides:
            config = ReviewConfig.model_validate(
                {**config.model_dump(), **overrides}
            )
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    logger.debug("Review config: %s", config)
    return config


# ---------------------------------------------------------------------------
# Retry decorator
# ---------------------------------------------------------------------------
def with_retry(
    max_retries: int = 3,
    base_delay: float = 1.0,
    retryable: tuple[type[Exception], ...] = (Exception,),
):
    """Decorator: retry a function with exponential back-off."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            last_exc: Exception | None = None
            for attempt in range(max_retries):
                try:
                    return func(*args, **kwargs)
                except retryable as exc:
                    last_exc = exc
                    if attempt < max_retries - 1:
                        delay = base_delay * (2**attempt)
                        logger.warning(
                            "Attempt %d/%d for %s failed: %s. Retrying in %.1fs...",
                            attempt + 1,
                            max_retries,
                            func.__name__,
                            exc,
                            delay,
                        )
                        time.sleep(delay)
            raise last_exc  # type: ignore[misc]

        return wrapper

    return decorator


# ---------------------------------------------------------------------------
# Cached API client
# ---------------------------------------------------------------------------
@functools.lru_cache(maxsize=1)
def get_gemini_client() -> genai.Client:
    """Return a cached Gemini client (created once per process)."""
    api_key = os.getenv("GEMINI_API_KEY")
    if not api_key:
        raise ConfigError("GEMINI_API_KEY not found. Set it in .env file.")
    return genai.Client(api_key=api_key)


# ---------------------------------------------------------------------------
# Gemini API call (with retry)
# ---------------------------------------------------------------------------
@with_retry(max_retries=3, base_delay=2.0, retryable=_RETRYABLE_GEMINI_ERRORS)
def call_gemini(prompt: str, model: str = DEFAULT_MODEL) -> str:
    """Call Gemini and return the raw response text.

    Retries automatically on transient API errors.
    """
    client = get_gemini_client()
    response = client.models.generate_content(
        model=model,
        contents=prompt,
        config={"response_mime_type": "application/json"},
    )
    return response.text

"""Deterministic failure classification for the job retry policy."""

from asyncio import TimeoutError as AsyncioTimeoutError
from collections import Counter
from dataclasses import dataclass, field

import httpx
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError

from worker.core.exceptions import ErrorCategory, GenerationError, StoreError

NON_RETRYABLE_CATEGORIES = frozenset(
    {ErrorCategory.VALIDATION, ErrorCategory.AUTH, ErrorCategory.TIMEOUT}
)

_AI_SERVICE_PATTERNS: tuple[str, ...] = ("openai",)
_DATABASE_PATTERNS: tuple[str, ...] = ("database", "supabase")
_STORAGE_PATTERNS: tuple[str, ...] = ("cloudinary", "storage")
_AUTH_PATTERNS: tuple[str, ...] = ("authentication",)
_VALIDATION_PATTERNS: tuple[str, ...] = ("validation", "invalid")

_MESSAGE_RULES: tuple[tuple[ErrorCategory, tuple[str, ...]], ...] = (
    (ErrorCategory.AI_SERVICE, _AI_SERVICE_PATTERNS),
    (ErrorCategory.DATABASE, _DATABASE_PATTERNS),
    (ErrorCategory.STORAGE, _STORAGE_PATTERNS),
    (ErrorCategory.AUTH, _AUTH_PATTERNS),
    (ErrorCategory.VALIDATION, _VALIDATION_PATTERNS),
)

_COLLABORATOR_CATEGORIES: dict[str, ErrorCategory] = {
    "ai": ErrorCategory.AI_SERVICE,
    "database": ErrorCategory.DATABASE,
    "storage": ErrorCategory.STORAGE,
    "auth": ErrorCategory.AUTH,
}


@dataclass(slots=True)
class FailureClassification:
    """Normalized failure classification result."""

    category: ErrorCategory
    matched_rule: str
    matched_pattern: str | None = None

    @property
    def retryable(self) -> bool:
        return self.category not in NON_RETRYABLE_CATEGORIES


def classify_failure(
    error: BaseException, collaborator: str | None = None
) -> FailureClassification:
    """
    Classify a job failure.

    Error metadata wins over the collaborator that raised it, which in turn
    wins over message heuristics.
    """
    by_type = _classify_by_type(error)
    if by_type is not None:
        return FailureClassification(category=by_type, matched_rule="error_type")

    name = collaborator or getattr(error, "collaborator", None)
    if name in _COLLABORATOR_CATEGORIES:
        return FailureClassification(
            category=_COLLABORATOR_CATEGORIES[name],
            matched_rule="collaborator",
            matched_pattern=name,
        )

    haystack = str(error).lower()
    for category, patterns in _MESSAGE_RULES:
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return FailureClassification(
                category=category,
                matched_rule="message",
                matched_pattern=pattern,
            )

    return FailureClassification(category=ErrorCategory.UNKNOWN, matched_rule="fallback")


def should_retry(category: ErrorCategory, requested: bool = True) -> bool:
    """Whether a failure of this category may go back to pending.

    The retry budget itself (``retry_count + 1 <= max_retries``) is enforced
    by the state tracker when the failure is written.
    """
    return requested and category not in NON_RETRYABLE_CATEGORIES


def _classify_by_type(error: BaseException) -> ErrorCategory | None:
    if isinstance(error, GenerationError):
        if error.category != ErrorCategory.UNKNOWN:
            return error.category
        return None
    if isinstance(error, (TimeoutError, AsyncioTimeoutError, httpx.TimeoutException)):
        return ErrorCategory.TIMEOUT
    if isinstance(error, (SQLAlchemyError, StoreError)):
        return ErrorCategory.DATABASE
    if isinstance(error, PydanticValidationError):
        return ErrorCategory.VALIDATION
    if isinstance(error, httpx.HTTPError):
        return ErrorCategory.AI_SERVICE
    return None


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None


@dataclass
class FailureStats:
    """Failure counts per category and per collaborator."""

    by_category: Counter = field(default_factory=Counter)
    by_collaborator: Counter = field(default_factory=Counter)

    def record(self, category: ErrorCategory, collaborator: str | None = None) -> None:
        self.by_category[category.value] += 1
        if collaborator:
            self.by_collaborator[collaborator] += 1

    @property
    def total(self) -> int:
        return sum(self.by_category.values())

    def to_dict(self) -> dict[str, dict[str, int]]:
        return {
            "by_category": dict(self.by_category),
            "by_collaborator": dict(self.by_collaborator),
        }

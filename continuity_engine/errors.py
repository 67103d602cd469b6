"""Error taxonomy for the reconciliation engine.

Recoverable problems are *reported*, not raised: they are pydantic records
carried inside results (ParseAnomaly, ExtractionFailure, MatchAmbiguity,
MergeConflict).  Only systemic failures are exceptions.
"""
from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field


class ParseAnomaly(BaseModel):
    """A malformed raw record that was excluded or repaired during normalization."""

    record_kind: Literal["scene", "day", "cast", "schedule", "script", "payload"] = Field(
        description="Kind of raw record the anomaly was found in."
    )
    identifier: Optional[str] = Field(
        default=None, description="Scene/day/cast identifier, when one could be read."
    )
    reason: str = Field(description="Human-readable description of the problem.")


class ExtractionFailure(BaseModel):
    """A shooting day whose extraction call failed; retryable on its own."""

    day_number: int
    error: str
    attempts: int = 1


class MatchAmbiguity(BaseModel):
    """A near miss between an unmatched old item and an unmatched new item.

    The pair scored below the match threshold, so it is surfaced as one
    removal plus one addition rather than merged.
    """

    old_key: str
    new_key: str
    score: float
    message: str


class MergeConflict(BaseModel):
    """A continuity record whose scene key no longer resolves after a merge."""

    record_id: str
    scene_number: str
    character_id: str
    message: str


class ExtractionError(RuntimeError):
    """Raised by day extractors when one day cannot be extracted."""


class StoreUnavailableError(Exception):
    """The breakdown store could not be read or written."""


class StaleAmendmentError(ValueError):
    """An amendment no longer applies to the current breakdown state."""


# Exceptions that stop a Stage 2 run instead of failing the current day.
SYSTEMIC_EXCEPTIONS: tuple[type[BaseException], ...] = (StoreUnavailableError,)

# Anything else raised while extracting a day fails that day only.
EXTRACTION_FAILURE_EXCEPTIONS: tuple[type[BaseException], ...] = (Exception,)

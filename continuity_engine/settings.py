"""Matcher and classifier tuning, loaded from the environment or a .env file.

Every value can be overridden with a ``CONTINUITY_`` prefixed variable, e.g.
``CONTINUITY_MATCH_THRESHOLD=0.7``.  The defaults are starting points; tune
them against real revision pairs.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_PATH = Path(".env")


class MatchSettings(BaseSettings):
    """Weights and thresholds for fuzzy identity matching."""

    model_config = SettingsConfigDict(
        env_prefix="CONTINUITY_",
        env_file=_ENV_PATH,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # A fuzzy pair is accepted when its score reaches this value.
    match_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    # Best sub-threshold candidates at or above this are reported as ambiguous.
    ambiguity_floor: float = Field(default=0.4, ge=0.0, le=1.0)

    cast_weight: float = Field(default=0.4, ge=0.0)
    text_weight: float = Field(default=0.4, ge=0.0)
    int_ext_bonus: float = Field(default=0.1, ge=0.0)
    day_night_bonus: float = Field(default=0.1, ge=0.0)
    # Shooting days only: bonus when both days carry the same date.
    date_bonus: float = Field(default=0.2, ge=0.0)

    # Script text similarity (0-100) at or above which content counts as unchanged.
    content_unchanged_threshold: int = Field(default=95, ge=0, le=100)


@lru_cache(maxsize=1)
def get_settings() -> MatchSettings:
    """Return cached settings loaded from the environment."""
    return MatchSettings()

"""Amendment and cross-reference reconciliation for production continuity."""

from continuity_engine.cast_resolver import can_sync_cast, resolve_characters, sync_cast_to_scenes
from continuity_engine.classifier import classify_amendment
from continuity_engine.cross_reference import cross_reference
from continuity_engine.matching import match_days, match_scenes
from continuity_engine.models import (
    AmendmentResult,
    Breakdown,
    CastEntry,
    Character,
    ContinuityRecord,
    Discrepancy,
    Scene,
    SceneChange,
    ShootDay,
    Snapshot,
)
from continuity_engine.normalizer import normalize_schedule, normalize_script

__all__ = [
    "AmendmentResult",
    "Breakdown",
    "CastEntry",
    "Character",
    "ContinuityRecord",
    "Discrepancy",
    "Scene",
    "SceneChange",
    "ShootDay",
    "Snapshot",
    "can_sync_cast",
    "classify_amendment",
    "cross_reference",
    "match_days",
    "match_scenes",
    "normalize_schedule",
    "normalize_script",
    "resolve_characters",
    "sync_cast_to_scenes",
]

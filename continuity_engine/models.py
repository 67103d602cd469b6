"""Canonical data contracts for scenes, schedules, characters and amendments.

extra="ignore" on all models gives forward-compatibility: unknown fields from
newer parsers or stores are dropped rather than rejected.  Scene numbers are
always stored in canonical form (see ids.normalize_scene_number); the
Normalizer is the boundary that guarantees it.
"""
from __future__ import annotations

from typing import Dict, List, Literal, Optional, Set

from pydantic import BaseModel, ConfigDict, Field

from continuity_engine.errors import MatchAmbiguity

IntExt = Literal["INT", "EXT"]
SnapshotKind = Literal["script", "schedule"]
AmendmentStatus = Literal["new", "modified", "deleted", "unchanged"]

# Fields that describe what a scene *is*; a change here is a modification.
CONTENT_FIELDS = ("slugline", "int_ext", "day_night", "synopsis", "script_content")
# Fields that describe how long a scene takes and where it falls in the day.
TIMING_FIELDS = ("pages", "estimated_time", "shoot_order")


# ── Snapshot records ──────────────────────────────────────────────────────────


class Scene(BaseModel):
    """One scene as it appears in a script, a schedule day, or the breakdown.

    cast_refs holds cast numbers (as decimal strings) for schedule scenes and
    character ids for breakdown scenes.  Order is significant; duplicates are
    removed by the Normalizer.
    """

    model_config = ConfigDict(extra="ignore")

    scene_number: str
    slugline: str = ""
    int_ext: IntExt = "INT"
    day_night: str = ""
    synopsis: str = ""
    script_content: Optional[str] = None
    pages: str = ""
    cast_refs: List[str] = []
    estimated_time: str = ""
    shoot_order: Optional[int] = None

    # Breakdown-only review markers, stamped by script merges.
    amendment_status: Optional[AmendmentStatus] = None
    amendment_notes: Optional[str] = None
    previous_script_content: Optional[str] = None


class ShootDay(BaseModel):
    """A shooting day and its scenes in shoot order."""

    model_config = ConfigDict(extra="ignore")

    day_number: int = Field(gt=0)
    date: Optional[str] = None
    location: str = ""
    notes: List[str] = []
    scenes: List[Scene] = []


class CastEntry(BaseModel):
    """A numbered entry of a schedule cast list."""

    model_config = ConfigDict(extra="ignore")

    number: int = Field(gt=0)
    name: str
    character: Optional[str] = None

    @property
    def display_name(self) -> str:
        """Character label when known, actor name otherwise."""
        return self.character or self.name


class Character(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    initials: str = ""
    avatar_colour: str = ""
    actor_number: Optional[int] = None


class Placement(BaseModel):
    """A scene together with the shooting day it sits on (None for scripts)."""

    scene: Scene
    day_number: Optional[int] = None

    @property
    def key(self) -> str:
        return self.scene.scene_number


class Snapshot(BaseModel):
    """A complete normalized script or schedule at one point in time.

    Script snapshots carry ``scenes`` in script order; schedule snapshots
    carry ``days``.  A scene appears at most once per snapshot.
    """

    model_config = ConfigDict(extra="ignore")

    kind: SnapshotKind = "schedule"
    scenes: List[Scene] = []
    days: List[ShootDay] = []
    cast_list: List[CastEntry] = []

    def placements(self) -> List[Placement]:
        """Every scene with its day, days first in list order, then loose scenes."""
        out: List[Placement] = []
        for day in self.days:
            for scene in day.scenes:
                out.append(Placement(scene=scene, day_number=day.day_number))
        for scene in self.scenes:
            out.append(Placement(scene=scene, day_number=None))
        return out

    def scene_numbers(self) -> Set[str]:
        return {p.key for p in self.placements()}

    def find_day(self, day_number: int) -> Optional[ShootDay]:
        for day in self.days:
            if day.day_number == day_number:
                return day
        return None

    def cast_by_number(self) -> Dict[int, CastEntry]:
        return {entry.number: entry for entry in self.cast_list}


# ── Breakdown store document ──────────────────────────────────────────────────


class ContinuityRecord(BaseModel):
    """Captured continuity (notes, photos, events) for one character in one scene.

    Keyed by (scene_number, character_id).  A soft-orphaned record is kept
    with ``orphaned=True`` when its scene leaves every active scene list, so
    re-adding the scene later recovers it.
    """

    model_config = ConfigDict(extra="ignore")

    record_id: str
    scene_number: str
    character_id: str
    notes: str = ""
    photo_ids: List[str] = []
    event_ids: List[str] = []
    orphaned: bool = False
    orphaned_reason: Optional[str] = None


class Breakdown(BaseModel):
    """The authoritative project state the engine reconciles against."""

    model_config = ConfigDict(extra="ignore")

    schema_version: str = "1.0.0"
    project_id: str
    script: Snapshot = Field(default_factory=lambda: Snapshot(kind="script"))
    schedule: Optional[Snapshot] = None
    characters: List[Character] = []
    continuity_records: List[ContinuityRecord] = []
    applied_amendments: List[str] = []

    def active_scene_numbers(self) -> Set[str]:
        """Scene keys that currently resolve in the script or the schedule."""
        active = self.script.scene_numbers()
        if self.schedule is not None:
            active |= self.schedule.scene_numbers()
        return active

    def target_snapshot(self, kind: SnapshotKind) -> Snapshot:
        if kind == "script":
            return self.script
        return self.schedule if self.schedule is not None else Snapshot(kind="schedule")


# ── Comparison outputs ────────────────────────────────────────────────────────


DiscrepancyType = Literal[
    "scene_not_in_breakdown", "scene_not_in_schedule", "character_mismatch", "other"
]


class Discrepancy(BaseModel):
    """One schedule-vs-breakdown difference. Recomputed on demand, never stored."""

    type: DiscrepancyType
    scene_number: str
    message: str
    schedule_value: Optional[str] = None
    breakdown_value: Optional[str] = None
    schedule_cast: List[str] = []
    breakdown_cast: List[str] = []


ChangeType = Literal[
    "scene_added",
    "scene_removed",
    "scene_modified",
    "scene_moved",
    "cast_changed",
    "timing_changed",
]


class SceneChange(BaseModel):
    """A classified change to one scene.

    For renumbered scenes (fuzzy matches) ``old_scene_number`` holds the key
    the scene had in the old snapshot and ``confidence`` is below 1.0.
    """

    scene_number: str
    change_type: ChangeType
    description: str
    old_scene_number: Optional[str] = None
    old_day: Optional[int] = None
    new_day: Optional[int] = None
    old_scene: Optional[Scene] = None
    new_scene: Optional[Scene] = None
    changed_fields: List[str] = []
    confidence: float = 1.0
    content_similarity: Optional[int] = None
    cast_added: List[str] = []
    cast_removed: List[str] = []

    @property
    def source_key(self) -> str:
        """Key of the scene in the old snapshot (or the new one, for additions)."""
        return self.old_scene_number or self.scene_number


DAY_FIELDS = ("date", "location", "notes")


class DayChange(BaseModel):
    day_number: int
    change_type: Literal["day_added", "day_removed", "day_renumbered", "day_modified"]
    description: str
    old_day_number: Optional[int] = None
    scene_count: int = 0
    changed_fields: List[str] = []


class AmendmentResult(BaseModel):
    """Everything that differs between two snapshots of the same artifact.

    Produced once per comparison and consumed by one merge.  The snapshots
    travel with the result so the merge needs no other input.
    """

    model_config = ConfigDict(extra="ignore")

    schema_version: str = "1.0.0"
    amendment_id: str
    kind: SnapshotKind
    old_snapshot: Snapshot
    new_snapshot: Snapshot
    added_scenes: List[SceneChange] = []
    removed_scenes: List[SceneChange] = []
    modified_scenes: List[SceneChange] = []
    moved_scenes: List[SceneChange] = []
    cast_changes: List[SceneChange] = []
    timing_changes: List[SceneChange] = []
    added_days: List[DayChange] = []
    removed_days: List[DayChange] = []
    renumbered_days: List[DayChange] = []
    modified_days: List[DayChange] = []
    ambiguities: List[MatchAmbiguity] = []
    summary: str = "No changes detected"

    @property
    def has_changes(self) -> bool:
        return bool(
            self.added_scenes
            or self.removed_scenes
            or self.modified_scenes
            or self.moved_scenes
            or self.cast_changes
            or self.timing_changes
            or self.added_days
            or self.removed_days
            or self.renumbered_days
            or self.modified_days
        )

    def all_scene_changes(self) -> List[SceneChange]:
        return [
            *self.added_scenes,
            *self.removed_scenes,
            *self.modified_scenes,
            *self.moved_scenes,
            *self.cast_changes,
            *self.timing_changes,
        ]

"""
merge.py: AmendmentResult structural validation and pure selective merge.

validate_amendment: checks the result against its own snapshots; no breakdown-awareness.
merge_snapshot:     rebuilds the target snapshot applying only the included
                     change categories; pure, no side-effects.

Scene markers for script revisions (stamp_amendment_flags / clear_amendment_flags)
live here too since they are applied to merged scenes.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Set, Tuple

from pydantic import BaseModel

from continuity_engine.log import get_logger
from continuity_engine.models import (
    CONTENT_FIELDS,
    DAY_FIELDS,
    TIMING_FIELDS,
    AmendmentResult,
    Breakdown,
    CastEntry,
    Scene,
    SceneChange,
    ShootDay,
    Snapshot,
)

logger = get_logger(__name__)

NEW_SCENE_NOTE = "New scene added in script revision"


class MergeOptions(BaseModel):
    """Inclusion flag per change category.  All included by default."""

    include_added: bool = True
    include_removed: bool = True
    include_modified: bool = True
    include_moved: bool = True
    include_cast_changes: bool = True
    include_timing_changes: bool = True


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_amendment(result: AmendmentResult) -> List[str]:
    """Structural validation of an AmendmentResult.

    Every change must point at scenes that exist in the snapshot it claims
    to come from.  Does not look at breakdown state.

    Returns:
        List of error strings; empty list means the result is structurally valid.
    """
    errors: List[str] = []
    old, new = result.old_snapshot, result.new_snapshot

    if old.kind != result.kind or new.kind != result.kind:
        errors.append(
            f"INVALID_AMENDMENT: kind '{result.kind}' does not match snapshots "
            f"('{old.kind}' -> '{new.kind}')"
        )
        return errors

    old_keys, new_keys = old.scene_numbers(), new.scene_numbers()

    for change in result.added_scenes:
        if change.scene_number not in new_keys:
            errors.append(f"INVALID_AMENDMENT: added scene {change.scene_number} missing from new snapshot")
        if change.scene_number in old_keys:
            errors.append(f"INVALID_AMENDMENT: added scene {change.scene_number} already in old snapshot")

    for change in result.removed_scenes:
        if change.scene_number not in old_keys:
            errors.append(f"INVALID_AMENDMENT: removed scene {change.scene_number} missing from old snapshot")
        if change.scene_number in new_keys:
            errors.append(f"INVALID_AMENDMENT: removed scene {change.scene_number} still in new snapshot")

    for category, changes in (
        ("modified", result.modified_scenes),
        ("moved", result.moved_scenes),
        ("cast", result.cast_changes),
        ("timing", result.timing_changes),
    ):
        for change in changes:
            if change.source_key not in old_keys:
                errors.append(
                    f"INVALID_AMENDMENT: {category} scene {change.source_key} missing from old snapshot"
                )
            if change.scene_number not in new_keys:
                errors.append(
                    f"INVALID_AMENDMENT: {category} scene {change.scene_number} missing from new snapshot"
                )
            if category != "modified" and change.old_scene_number:
                errors.append(
                    f"INVALID_AMENDMENT: {category} scene {change.scene_number} cannot be renumbered"
                )

    return errors


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------

class _Entry:
    """One scene of the merged snapshot while it is being assembled."""

    __slots__ = ("scene", "day", "old_key", "follows_new")

    def __init__(self, scene: Scene, day: Optional[int], old_key: Optional[str], follows_new: bool):
        self.scene = scene
        self.day = day
        self.old_key = old_key
        self.follows_new = follows_new


def _by_key(changes: List[SceneChange]) -> Dict[str, SceneChange]:
    return {c.scene_number: c for c in changes}


def _collect_entries(result: AmendmentResult, options: MergeOptions) -> List[_Entry]:
    old, new = result.old_snapshot, result.new_snapshot
    new_days = {p.key: p.day_number for p in new.placements()}
    new_scenes = {p.key: p.scene for p in new.placements()}

    removed = {c.scene_number for c in result.removed_scenes}
    renumbered = {c.old_scene_number: c for c in result.modified_scenes if c.old_scene_number}
    modified = _by_key([c for c in result.modified_scenes if not c.old_scene_number])
    moved = _by_key(result.moved_scenes)
    cast = _by_key(result.cast_changes)
    timing = _by_key(result.timing_changes)

    entries: List[_Entry] = []
    for placement in old.placements():
        key, day, scene = placement.key, placement.day_number, placement.scene

        if key in removed:
            if not options.include_removed:
                entries.append(_Entry(scene, day, key, False))
            continue

        if key in renumbered:
            change = renumbered[key]
            if options.include_modified:
                entries.append(_Entry(new_scenes[change.scene_number], change.new_day, key, True))
            else:
                entries.append(_Entry(scene, day, key, False))
            continue

        update: Dict[str, object] = {}
        if key in modified and options.include_modified:
            new_scene = new_scenes[key]
            update.update({f: getattr(new_scene, f) for f in CONTENT_FIELDS})
            if "day" in modified[key].changed_fields:
                day = new_days[key]
        if key in moved and options.include_moved:
            day = new_days[key]
        if key in cast and options.include_cast_changes:
            update["cast_refs"] = list(new_scenes[key].cast_refs)
        if key in timing and options.include_timing_changes:
            update.update({f: getattr(new_scenes[key], f) for f in TIMING_FIELDS})
        if update:
            scene = scene.model_copy(update=update)

        # Same-key scenes take the new in-day order only when moves are applied
        # or when the scene has changed day.
        follows = key in new_days and new_days[key] == day
        follows = follows and (options.include_moved or day != placement.day_number)
        entries.append(_Entry(scene, day, key, follows))

    if options.include_added:
        for change in result.added_scenes:
            key = change.scene_number
            entries.append(_Entry(new_scenes[key], new_days[key], None, True))

    return entries


def _order_group(
    entries: List[_Entry], old_order: List[str], new_order: List[str]
) -> List[Scene]:
    """Order the scenes of one day.

    Scenes that follow the new snapshot take the new order.  Scenes kept in
    their old position are re-inserted after the nearest preceding old
    sibling that is still present, or first when there is none.
    """
    new_index = {k: i for i, k in enumerate(new_order)}
    ordered = sorted(
        (e for e in entries if e.follows_new),
        key=lambda e: new_index.get(e.scene.scene_number, len(new_index)),
    )
    old_index = {k: i for i, k in enumerate(old_order)}
    pinned = sorted(
        (e for e in entries if not e.follows_new),
        key=lambda e: old_index.get(e.old_key or "", len(old_index)),
    )

    for entry in pinned:
        position = 0
        at = old_index.get(entry.old_key or "", 0)
        preceding = set(old_order[:at])
        for i, placed in enumerate(ordered):
            if placed.old_key in preceding:
                position = i + 1
        ordered.insert(position, entry)

    return [e.scene for e in ordered]


def _merge_cast_list(
    result: AmendmentResult, options: MergeOptions, scenes: List[Scene]
) -> List[CastEntry]:
    old, new = result.old_snapshot, result.new_snapshot
    if not options.include_cast_changes:
        return list(old.cast_list)
    referenced = {int(r) for s in scenes for r in s.cast_refs if r.isdigit()}
    merged: Dict[int, CastEntry] = {e.number: e for e in new.cast_list}
    for entry in old.cast_list:
        if entry.number in referenced:
            merged.setdefault(entry.number, entry)
    return [merged[n] for n in sorted(merged)]


def merge_snapshot(result: AmendmentResult, options: Optional[MergeOptions] = None) -> Snapshot:
    """Apply the included categories of *result* to its old snapshot.

    Pure function; neither snapshot inside *result* is mutated.  With every
    category included the output equals the new snapshot (scene sets, day
    assignments, order, cast lists).  With a category excluded, all data in
    that category keeps its old value.

    Day metadata (date, location, notes) follows the moved flag; days left
    empty are dropped only when removals are included, and new empty days
    appear only when additions are included.

    Assumes the result is structurally valid (validate_amendment returned []).
    """
    options = options or MergeOptions()
    old, new = result.old_snapshot, result.new_snapshot
    entries = _collect_entries(result, options)

    if result.kind == "script":
        scenes = _order_group(
            entries,
            [s.scene_number for s in old.scenes],
            [s.scene_number for s in new.scenes],
        )
        return Snapshot(
            kind="script",
            scenes=scenes,
            cast_list=_merge_cast_list(result, options, scenes),
        )

    old_days = {d.day_number: d for d in old.days}
    new_days = {d.day_number: d for d in new.days}
    grouped: Dict[int, List[_Entry]] = {}
    for entry in entries:
        grouped.setdefault(entry.day, []).append(entry)

    numbers: Set[int] = set(grouped)
    for number in old_days:
        if number in new_days or not options.include_removed:
            numbers.add(number)
    if options.include_added:
        numbers.update(new_days)

    days: List[ShootDay] = []
    all_scenes: List[Scene] = []
    for number in sorted(numbers):
        old_day, new_day = old_days.get(number), new_days.get(number)
        if old_day is not None and (new_day is None or not options.include_moved):
            source = old_day
        else:
            source = new_day
        scenes = _order_group(
            grouped.get(number, []),
            [s.scene_number for s in old_day.scenes] if old_day else [],
            [s.scene_number for s in new_day.scenes] if new_day else [],
        )
        all_scenes.extend(scenes)
        days.append(
            ShootDay(
                day_number=number,
                scenes=scenes,
                **{f: getattr(source, f) for f in DAY_FIELDS},
            )
        )

    return Snapshot(
        kind="schedule",
        days=days,
        cast_list=_merge_cast_list(result, options, all_scenes),
    )


# ---------------------------------------------------------------------------
# Script revision markers
# ---------------------------------------------------------------------------

def stamp_amendment_flags(
    scenes: List[Scene], result: AmendmentResult, options: MergeOptions
) -> List[Scene]:
    """Mark merged script scenes that a revision added or modified.

    Added scenes get status "new"; modified scenes get "modified" and keep
    their pre-revision text in ``previous_script_content``.
    """
    marks: Dict[str, Tuple[str, str, Optional[str]]] = {}
    if options.include_added:
        for change in result.added_scenes:
            marks[change.scene_number] = ("new", NEW_SCENE_NOTE, None)
    if options.include_modified:
        for change in result.modified_scenes:
            previous = change.old_scene.script_content if change.old_scene else None
            marks[change.scene_number] = ("modified", change.description, previous)

    out: List[Scene] = []
    for scene in scenes:
        mark = marks.get(scene.scene_number)
        if mark is None:
            out.append(scene)
            continue
        status, notes, previous = mark
        out.append(
            scene.model_copy(
                update={
                    "amendment_status": status,
                    "amendment_notes": notes,
                    "previous_script_content": previous,
                }
            )
        )
    return out


def clear_amendment_flags(
    breakdown: Breakdown, scene_numbers: Optional[List[str]] = None
) -> Breakdown:
    """Reset review markers on script scenes (all scenes when *scene_numbers* is None)."""
    wanted = set(scene_numbers) if scene_numbers is not None else None
    scenes = []
    for scene in breakdown.script.scenes:
        if scene.amendment_status is not None and (wanted is None or scene.scene_number in wanted):
            scene = scene.model_copy(
                update={
                    "amendment_status": None,
                    "amendment_notes": None,
                    "previous_script_content": None,
                }
            )
        scenes.append(scene)
    return breakdown.model_copy(
        update={"script": breakdown.script.model_copy(update={"scenes": scenes})}, deep=True
    )


def amendment_counts(breakdown: Breakdown) -> Dict[str, int]:
    """Number of script scenes still carrying each review marker."""
    counts = {"new": 0, "modified": 0, "total": 0}
    for scene in breakdown.script.scenes:
        if scene.amendment_status in ("new", "modified"):
            counts[scene.amendment_status] += 1
            counts["total"] += 1
    return counts

"""Cross-Referencer: a schedule snapshot against the breakdown's scene set.

A one-shot comparison of two different artifacts, not a before/after diff.
The result is recomputed on demand and never stored.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Sequence

from continuity_engine.ids import natural_key
from continuity_engine.log import get_logger
from continuity_engine.models import Character, Discrepancy, Scene, Snapshot

logger = get_logger(__name__)

_TYPE_ORDER = {
    "scene_not_in_breakdown": 0,
    "scene_not_in_schedule": 1,
    "character_mismatch": 2,
    "other": 3,
}


def resolve_schedule_cast(scene: Scene, schedule: Snapshot) -> List[str]:
    """Cast names of a schedule scene: character label, actor name, or "Cast #n"."""
    by_number = schedule.cast_by_number()
    names: List[str] = []
    for ref in scene.cast_refs:
        entry = by_number.get(int(ref)) if ref.isdigit() else None
        names.append(entry.display_name if entry is not None else f"Cast #{ref}")
    return names


def resolve_breakdown_cast(scene: Scene, characters: Iterable[Character]) -> List[str]:
    """Character names of a breakdown scene; unknown refs resolve to themselves."""
    by_id = {c.id: c.name for c in characters}
    return [by_id.get(ref, ref) for ref in scene.cast_refs]


def _name_set(names: Iterable[str]) -> Dict[str, str]:
    """Upper-cased name → first spelling seen."""
    out: Dict[str, str] = {}
    for name in names:
        out.setdefault(name.strip().upper(), name.strip())
    return out


def cross_reference(
    schedule: Snapshot,
    breakdown_scenes: Sequence[Scene],
    *,
    characters: Sequence[Character] = (),
) -> List[Discrepancy]:
    """List every discrepancy between *schedule* and the breakdown scenes.

    Args:
        schedule:          Normalized schedule snapshot.
        breakdown_scenes:  The breakdown's current scenes (cast refs are character ids).
        characters:        Project characters used to name breakdown cast refs.

    Returns:
        Discrepancies ordered by scene number, then type.
    """
    scheduled: Dict[str, Scene] = {p.key: p.scene for p in schedule.placements()}
    broken_down: Dict[str, Scene] = {}
    for scene in breakdown_scenes:
        broken_down.setdefault(scene.scene_number, scene)

    out: List[Discrepancy] = []
    for number in scheduled.keys() - broken_down.keys():
        out.append(
            Discrepancy(
                type="scene_not_in_breakdown",
                scene_number=number,
                message=f"Scene {number} is in the schedule but not in the breakdown",
                schedule_value=scheduled[number].slugline or None,
            )
        )
    for number in broken_down.keys() - scheduled.keys():
        out.append(
            Discrepancy(
                type="scene_not_in_schedule",
                scene_number=number,
                message=f"Scene {number} is in the breakdown but not in the schedule",
                breakdown_value=broken_down[number].slugline or None,
            )
        )

    for number in scheduled.keys() & broken_down.keys():
        s_scene, b_scene = scheduled[number], broken_down[number]
        s_names = _name_set(resolve_schedule_cast(s_scene, schedule))
        b_names = _name_set(resolve_breakdown_cast(b_scene, characters))
        if s_names.keys() != b_names.keys():
            s_list = sorted(s_names.values(), key=str.upper)
            b_list = sorted(b_names.values(), key=str.upper)
            out.append(
                Discrepancy(
                    type="character_mismatch",
                    scene_number=number,
                    message=(
                        f"Scene {number} cast differs. "
                        f"Schedule: {', '.join(s_list) or 'none'}. "
                        f"Breakdown: {', '.join(b_list) or 'none'}"
                    ),
                    schedule_cast=s_list,
                    breakdown_cast=b_list,
                )
            )
        if s_scene.int_ext != b_scene.int_ext:
            out.append(
                Discrepancy(
                    type="other",
                    scene_number=number,
                    message=f"Scene {number} is {s_scene.int_ext} in the schedule but {b_scene.int_ext} in the breakdown",
                    schedule_value=s_scene.int_ext,
                    breakdown_value=b_scene.int_ext,
                )
            )

    out.sort(key=lambda d: (natural_key(d.scene_number), _TYPE_ORDER[d.type]))
    if out:
        logger.info("Cross-reference found %d discrepancies", len(out))
    return out


def discrepancy_counts(discrepancies: Iterable[Discrepancy]) -> Dict[str, int]:
    """Count of discrepancies per type, every type present."""
    counts = {t: 0 for t in _TYPE_ORDER}
    for d in discrepancies:
        counts[d.type] += 1
    return counts

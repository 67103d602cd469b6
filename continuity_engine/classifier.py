"""Change Classifier: matched scene/day pairs → AmendmentResult.

Same-key pairs are diffed field by field:
  - content fields differ              → scene_modified (day change folded in)
  - only the day differs               → scene_moved
  - cast refs differ                   → cast_changed, in addition
  - pages / estimated time / order     → timing_changed, in addition
  - nothing differs                    → no entry

Fuzzy pairs (renumbered scenes) always classify as scene_modified carrying
the match confidence.  Unmatched old scenes are removed, unmatched new scenes
added.  Each category is sorted by natural scene number then day number, so
identical inputs produce identical results.
"""
from __future__ import annotations

import re
from typing import Dict, List, Optional, Tuple

from continuity_engine.ids import make_amendment_id, natural_key
from continuity_engine.log import get_logger
from continuity_engine.matching import Match, match_days, match_scenes
from continuity_engine.models import (
    CONTENT_FIELDS,
    DAY_FIELDS,
    TIMING_FIELDS,
    AmendmentResult,
    DayChange,
    Placement,
    SceneChange,
    Snapshot,
)
from continuity_engine.settings import MatchSettings, get_settings

logger = get_logger(__name__)

_NON_WORD_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")


# ── Script content similarity ─────────────────────────────────────────────────


def content_similarity(old: Optional[str], new: Optional[str]) -> int:
    """Word-level Jaccard similarity of two script texts, 0-100.

    Punctuation is ignored and words of two letters or fewer do not count.
    """
    if not old and not new:
        return 100
    if not old or not new:
        return 0

    def _norm(text: str) -> str:
        return _WHITESPACE_RE.sub(" ", _NON_WORD_RE.sub(" ", text.lower())).strip()

    a, b = _norm(old), _norm(new)
    if a == b:
        return 100
    words_a = {w for w in a.split(" ") if len(w) > 2}
    words_b = {w for w in b.split(" ") if len(w) > 2}
    if not words_a and not words_b:
        return 100
    if not words_a or not words_b:
        return 0
    return round(100 * len(words_a & words_b) / len(words_a | words_b))


def describe_content_change(similarity: int) -> str:
    if similarity >= 95:
        return "Minor formatting changes"
    if similarity >= 80:
        return "Minor dialogue or action changes"
    if similarity >= 50:
        return "Significant content changes"
    return "Major rewrite of scene"


# ── Field diffs ───────────────────────────────────────────────────────────────


def _content_diff(
    old: Placement, new: Placement, threshold: int
) -> Tuple[List[str], Optional[int]]:
    changed = [
        f for f in CONTENT_FIELDS
        if f != "script_content" and getattr(old.scene, f) != getattr(new.scene, f)
    ]
    similarity: Optional[int] = None
    if old.scene.script_content or new.scene.script_content:
        similarity = content_similarity(old.scene.script_content, new.scene.script_content)
        if similarity < threshold:
            changed.append("script_content")
    return changed, similarity


def _timing_diff(old: Placement, new: Placement) -> List[str]:
    return [f for f in TIMING_FIELDS if getattr(old.scene, f) != getattr(new.scene, f)]


def _day_label(day: Optional[int]) -> str:
    return f"Day {day}" if day is not None else "the script"


def _change_sort_key(change: SceneChange):
    day = change.new_day if change.new_day is not None else change.old_day
    return (natural_key(change.scene_number), natural_key(day))


def _classify_same_key(
    old: Placement, new: Placement, threshold: int
) -> List[SceneChange]:
    number = new.key
    changes: List[SceneChange] = []
    day_changed = old.day_number != new.day_number
    content_changed, similarity = _content_diff(old, new, threshold)

    common = dict(
        scene_number=number,
        old_day=old.day_number,
        new_day=new.day_number,
        old_scene=old.scene,
        new_scene=new.scene,
    )

    if content_changed:
        fields = content_changed + (["day"] if day_changed else [])
        if "script_content" in content_changed and similarity is not None:
            description = f"Scene {number}: {describe_content_change(similarity)}"
        else:
            description = f"Scene {number} modified: {', '.join(fields)} changed"
        changes.append(
            SceneChange(
                change_type="scene_modified",
                description=description,
                changed_fields=fields,
                content_similarity=similarity,
                **common,
            )
        )
    elif day_changed:
        changes.append(
            SceneChange(
                change_type="scene_moved",
                description=(
                    f"Scene {number} moved from {_day_label(old.day_number)} "
                    f"to {_day_label(new.day_number)}"
                ),
                changed_fields=["day"],
                **common,
            )
        )

    if old.scene.cast_refs != new.scene.cast_refs:
        old_set, new_set = set(old.scene.cast_refs), set(new.scene.cast_refs)
        added = [r for r in new.scene.cast_refs if r not in old_set]
        removed = [r for r in old.scene.cast_refs if r not in new_set]
        parts = []
        if added:
            parts.append(f"added {', '.join(added)}")
        if removed:
            parts.append(f"removed {', '.join(removed)}")
        changes.append(
            SceneChange(
                change_type="cast_changed",
                description=f"Scene {number} cast changed: {'; '.join(parts) or 'order changed'}",
                changed_fields=["cast_refs"],
                cast_added=added,
                cast_removed=removed,
                **common,
            )
        )

    timing = _timing_diff(old, new)
    if timing:
        detail = ", ".join(
            f"{f} {getattr(old.scene, f) or '-'} → {getattr(new.scene, f) or '-'}" for f in timing
        )
        changes.append(
            SceneChange(
                change_type="timing_changed",
                description=f"Scene {number} timing changed: {detail}",
                changed_fields=timing,
                **common,
            )
        )
    return changes


def _classify_fuzzy(old: Placement, new: Placement, confidence: float, threshold: int) -> SceneChange:
    content_changed, similarity = _content_diff(old, new, threshold)
    fields = ["scene_number"] + content_changed
    if old.day_number != new.day_number:
        fields.append("day")
    if old.scene.cast_refs != new.scene.cast_refs:
        fields.append("cast_refs")
    fields.extend(_timing_diff(old, new))
    return SceneChange(
        scene_number=new.key,
        change_type="scene_modified",
        description=(
            f"Scene {old.key} renumbered to {new.key} "
            f"(match confidence {confidence:.2f}); please confirm"
        ),
        old_scene_number=old.key,
        old_day=old.day_number,
        new_day=new.day_number,
        old_scene=old.scene,
        new_scene=new.scene,
        changed_fields=fields,
        confidence=confidence,
        content_similarity=similarity,
    )


# ── Day changes ───────────────────────────────────────────────────────────────


def classify_days(day_matches: List[Match]) -> Dict[str, List[DayChange]]:
    """Day-level changes: added, removed, renumbered, and date/location/notes edits."""
    out: Dict[str, List[DayChange]] = {"added": [], "removed": [], "renumbered": [], "modified": []}
    for m in day_matches:
        if m.old is not None and m.new is not None and m.old.day_number == m.new.day_number:
            fields = [f for f in DAY_FIELDS if getattr(m.old, f) != getattr(m.new, f)]
            if fields:
                out["modified"].append(
                    DayChange(
                        day_number=m.new.day_number,
                        change_type="day_modified",
                        description=f"Day {m.new.day_number} {', '.join(fields)} changed",
                        old_day_number=m.old.day_number,
                        scene_count=len(m.new.scenes),
                        changed_fields=fields,
                    )
                )
            continue
        if m.old is None:
            out["added"].append(
                DayChange(
                    day_number=m.new.day_number,
                    change_type="day_added",
                    description=f"Day {m.new.day_number} added",
                    scene_count=len(m.new.scenes),
                )
            )
        elif m.new is None:
            out["removed"].append(
                DayChange(
                    day_number=m.old.day_number,
                    change_type="day_removed",
                    description=f"Day {m.old.day_number} removed",
                    scene_count=len(m.old.scenes),
                )
            )
        elif m.old.day_number != m.new.day_number:
            out["renumbered"].append(
                DayChange(
                    day_number=m.new.day_number,
                    change_type="day_renumbered",
                    description=f"Day {m.old.day_number} is now Day {m.new.day_number}",
                    old_day_number=m.old.day_number,
                    scene_count=len(m.new.scenes),
                )
            )
    return out


# ── Summary ───────────────────────────────────────────────────────────────────


def _plural(count: int, noun: str, verb: str) -> str:
    return f"{count} {noun}{'' if count == 1 else 's'} {verb}"


def summarize(result: AmendmentResult) -> str:
    """Human summary, e.g. "1 scene added, 1 scene moved"."""
    parts: List[str] = []
    for items, noun, verb in (
        (result.added_scenes, "scene", "added"),
        (result.removed_scenes, "scene", "removed"),
        (result.modified_scenes, "scene", "modified"),
        (result.moved_scenes, "scene", "moved"),
        (result.cast_changes, "cast change", "detected"),
        (result.timing_changes, "timing change", "detected"),
        (result.added_days, "day", "added"),
        (result.removed_days, "day", "removed"),
        (result.renumbered_days, "day", "renumbered"),
        (result.modified_days, "day", "modified"),
    ):
        if items:
            parts.append(_plural(len(items), noun, verb))
    return ", ".join(parts) if parts else "No changes detected"


# ── Entry point ───────────────────────────────────────────────────────────────


def classify_amendment(
    old: Snapshot, new: Snapshot, settings: Optional[MatchSettings] = None
) -> AmendmentResult:
    """Compare two snapshots of the same artifact and classify every change.

    Raises:
        ValueError: the snapshots are of different kinds (script vs schedule).
    """
    if old.kind != new.kind:
        raise ValueError(f"cannot compare a {old.kind} snapshot with a {new.kind} snapshot")
    s = settings or get_settings()
    threshold = s.content_unchanged_threshold

    scene_matches, ambiguities = match_scenes(old, new, s)
    buckets: Dict[str, List[SceneChange]] = {
        "scene_added": [],
        "scene_removed": [],
        "scene_modified": [],
        "scene_moved": [],
        "cast_changed": [],
        "timing_changed": [],
    }

    for m in scene_matches:
        if m.old is None:
            buckets["scene_added"].append(
                SceneChange(
                    scene_number=m.new.key,
                    change_type="scene_added",
                    description=f"Scene {m.new.key} added to {_day_label(m.new.day_number)}",
                    new_day=m.new.day_number,
                    new_scene=m.new.scene,
                )
            )
        elif m.new is None:
            buckets["scene_removed"].append(
                SceneChange(
                    scene_number=m.old.key,
                    change_type="scene_removed",
                    description=f"Scene {m.old.key} removed from {_day_label(m.old.day_number)}",
                    old_day=m.old.day_number,
                    old_scene=m.old.scene,
                )
            )
        elif m.old.key != m.new.key:
            buckets["scene_modified"].append(_classify_fuzzy(m.old, m.new, m.confidence, threshold))
        else:
            for change in _classify_same_key(m.old, m.new, threshold):
                buckets[change.change_type].append(change)

    for changes in buckets.values():
        changes.sort(key=_change_sort_key)

    days: Dict[str, List[DayChange]] = {"added": [], "removed": [], "renumbered": [], "modified": []}
    if old.kind == "schedule":
        day_matches, day_ambiguities = match_days(old, new, s)
        days = classify_days(day_matches)
        ambiguities = ambiguities + day_ambiguities

    result = AmendmentResult(
        amendment_id=make_amendment_id(old, new),
        kind=old.kind,
        old_snapshot=old,
        new_snapshot=new,
        added_scenes=buckets["scene_added"],
        removed_scenes=buckets["scene_removed"],
        modified_scenes=buckets["scene_modified"],
        moved_scenes=buckets["scene_moved"],
        cast_changes=buckets["cast_changed"],
        timing_changes=buckets["timing_changed"],
        added_days=days["added"],
        removed_days=days["removed"],
        renumbered_days=days["renumbered"],
        modified_days=days["modified"],
        ambiguities=ambiguities,
    )
    result.summary = summarize(result)
    logger.info("Amendment %s (%s): %s", result.amendment_id, result.kind, result.summary)
    return result

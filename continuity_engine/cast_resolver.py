"""Cast Resolver: schedule cast numbers ↔ project characters.

resolve_characters builds the canonical character list from the project's
confirmed characters plus a schedule cast list.  Cast entries with no
character of the same name become placeholder characters with the
deterministic id ``cast-{number}``.  Re-running it on the same inputs never
changes an assigned id or the relative order of characters.

sync_cast_to_scenes writes the resolved characters onto breakdown scenes.
"""
from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from pydantic import BaseModel

from continuity_engine.ids import natural_key, placeholder_character_id
from continuity_engine.log import get_logger
from continuity_engine.models import Breakdown, CastEntry, Character, Snapshot

logger = get_logger(__name__)

AVATAR_PALETTE = (
    "#C9A961",  # gold
    "#8B5CF6",  # purple
    "#EC4899",  # pink
    "#10B981",  # green
    "#F59E0B",  # amber
    "#EF4444",  # red
    "#3B82F6",  # blue
    "#6366F1",  # indigo
    "#14B8A6",  # teal
    "#F97316",  # orange
)

_WHITESPACE_RE = re.compile(r"\s+")


def derive_initials(name: str) -> str:
    """First letters of the first and last words, or the first two characters of a single word."""
    words = name.split()
    if not words:
        return "??"
    if len(words) == 1:
        return words[0][:2].upper()
    return (words[0][0] + words[-1][0]).upper()


def avatar_colour_for(number: int) -> str:
    return AVATAR_PALETTE[number % len(AVATAR_PALETTE)]


def _name_key(name: Optional[str]) -> str:
    return _WHITESPACE_RE.sub(" ", name or "").strip().casefold()


def placeholder_character(entry: CastEntry) -> Character:
    """Character synthesized for a cast entry with no confirmed counterpart."""
    name = entry.display_name
    return Character(
        id=placeholder_character_id(entry.number),
        name=name,
        initials=derive_initials(name),
        avatar_colour=avatar_colour_for(entry.number),
        actor_number=entry.number,
    )


def _character_sort_key(character: Character):
    if character.actor_number is not None:
        return (0, character.actor_number, "", character.id)
    return (1, 0, character.name.casefold(), character.id)


def _bound_elsewhere(character: Character, number: int) -> bool:
    """A placeholder belongs to the cast number in its id."""
    return (
        character.actor_number is not None
        and character.actor_number != number
        and character.id == placeholder_character_id(character.actor_number)
    )


def resolve_characters(
    characters: Iterable[Character], cast_list: Iterable[CastEntry]
) -> List[Character]:
    """Canonical character list for *characters* plus a schedule *cast_list*.

    1. Confirmed characters are kept by id (a repeated id keeps the first).
    2. Each cast entry, ascending by number, is matched by case-insensitive
       exact name (actor name or character label).  A match gets the entry's
       number as ``actor_number``, replacing any earlier number; a character
       already claimed by an earlier entry, or a placeholder of another
       number, is not matched.  Otherwise the ``cast-{number}`` placeholder
       is created, or refreshed if it already exists.
    3. Characters with an actor number sort first, ascending; the rest sort by name.

    Inputs are not mutated.
    """
    resolved: List[Character] = []
    by_id: Dict[str, Character] = {}
    for character in characters:
        if character.id in by_id:
            logger.warning("Duplicate character id %s ignored", character.id)
            continue
        kept = character.model_copy()
        by_id[kept.id] = kept
        resolved.append(kept)

    claimed: Set[str] = set()
    for entry in sorted(cast_list, key=lambda e: e.number):
        names = {_name_key(entry.name)}
        if entry.character:
            names.add(_name_key(entry.character))

        candidates = [
            c for c in resolved
            if c.id not in claimed
            and _name_key(c.name) in names
            and not _bound_elsewhere(c, entry.number)
        ]
        match = next((c for c in candidates if c.actor_number == entry.number), None)
        if match is None and candidates:
            match = candidates[0]
        if match is not None:
            if match.actor_number not in (None, entry.number):
                logger.info("Character %s renumbered from cast #%d to #%d", match.id, match.actor_number, entry.number)
            match.actor_number = entry.number
            claimed.add(match.id)
            continue

        placeholder = placeholder_character(entry)
        existing = by_id.get(placeholder.id)
        claimed.add(placeholder.id)
        if existing is not None:
            existing.name = placeholder.name
            existing.initials = placeholder.initials
            existing.actor_number = entry.number
            continue

        logger.debug("Created placeholder character %s for cast #%d", placeholder.id, entry.number)
        by_id[placeholder.id] = placeholder
        resolved.append(placeholder)

    return sorted(resolved, key=_character_sort_key)


def merge_cast_lists(old: Iterable[CastEntry], new: Iterable[CastEntry]) -> List[CastEntry]:
    """New cast list as the base, plus old entries whose number it lacks; ascending."""
    merged: Dict[int, CastEntry] = {e.number: e for e in new}
    for entry in old:
        merged.setdefault(entry.number, entry)
    return [merged[n] for n in sorted(merged)]


# ── Scene sync ────────────────────────────────────────────────────────────────


class SceneCastSync(BaseModel):
    """What one breakdown scene received from the schedule."""

    scene_number: str
    cast_numbers: List[int]
    character_names: List[str]
    matched_character_ids: List[str]
    new_character_ids: List[str]


class CastSyncResult(BaseModel):
    success: bool = True
    scenes_updated: int = 0
    characters_created: int = 0
    errors: List[str] = []
    scene_results: List[SceneCastSync] = []


def can_sync_cast(schedule: Optional[Snapshot]) -> Tuple[bool, Optional[str]]:
    """Whether *schedule* holds enough data to sync cast onto scenes, and why not."""
    if schedule is None:
        return False, "No schedule uploaded"
    if not schedule.cast_list:
        return False, "Schedule has no cast list"
    if not schedule.days:
        return False, "Schedule has no shooting days. Run AI analysis first."
    if not any(scene.cast_refs for day in schedule.days for scene in day.scenes):
        return False, "No cast data found in schedule scenes"
    return True, None


def sync_cast_to_scenes(
    breakdown: Breakdown,
    schedule: Optional[Snapshot] = None,
    *,
    overwrite_existing: bool = False,
) -> Tuple[Breakdown, CastSyncResult]:
    """Assign characters to breakdown script scenes from schedule cast numbers.

    Characters are first resolved against the schedule cast list, creating
    placeholders where needed.  Scenes that already list characters are left
    alone unless *overwrite_existing* is set.

    Args:
        breakdown: Current breakdown; not mutated.
        schedule:  Schedule to read from; defaults to ``breakdown.schedule``.

    Returns:
        (updated breakdown, sync result).  When the schedule cannot be synced
        the breakdown comes back unchanged with ``success=False``.
    """
    schedule = schedule if schedule is not None else breakdown.schedule
    ok, reason = can_sync_cast(schedule)
    if not ok:
        return breakdown, CastSyncResult(success=False, errors=[reason or "Cannot sync cast"])

    before_ids = {c.id for c in breakdown.characters}
    characters = resolve_characters(breakdown.characters, schedule.cast_list)
    by_number = {c.actor_number: c for c in characters if c.actor_number is not None}
    cast_by_number = schedule.cast_by_number()
    schedule_cast = {p.key: p.scene.cast_refs for p in schedule.placements() if p.scene.cast_refs}

    result = CastSyncResult()
    scenes = []
    for scene in breakdown.script.scenes:
        refs = schedule_cast.get(scene.scene_number)
        if not refs or (scene.cast_refs and not overwrite_existing):
            scenes.append(scene)
            continue

        numbers = [int(r) for r in refs if r.isdigit()]
        names: List[str] = []
        ids: List[str] = []
        created: List[str] = []
        for number in numbers:
            entry = cast_by_number.get(number)
            character = by_number.get(number)
            if entry is None or character is None:
                result.errors.append(f"Scene {scene.scene_number}: Cast #{number} not found in cast list")
                continue
            names.append(entry.display_name)
            if character.id not in ids:
                ids.append(character.id)
            if character.id not in before_ids:
                created.append(character.id)

        if ids:
            scene = scene.model_copy(update={"cast_refs": ids})
            result.scenes_updated += 1
        scenes.append(scene)
        result.scene_results.append(
            SceneCastSync(
                scene_number=scene.scene_number,
                cast_numbers=numbers,
                character_names=names,
                matched_character_ids=[i for i in ids if i not in created],
                new_character_ids=created,
            )
        )

    result.characters_created = len({c.id for c in characters} - before_ids)
    result.scene_results.sort(key=lambda r: natural_key(r.scene_number))
    updated = breakdown.model_copy(
        update={
            "characters": characters,
            "script": breakdown.script.model_copy(update={"scenes": scenes}),
        },
        deep=True,
    )
    logger.info(
        "Cast sync: %d scenes updated, %d characters created, %d errors",
        result.scenes_updated, result.characters_created, len(result.errors),
    )
    return updated, result


def cast_reference(cast_list: Sequence[CastEntry]) -> str:
    """Cast list as text for the extraction prompt: one "N. NAME" line per entry."""
    return "\n".join(f"{e.number}. {e.display_name}" for e in sorted(cast_list, key=lambda e: e.number))

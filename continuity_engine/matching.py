"""Identity matching between an old and a new snapshot.

Two passes:
  1. exact match on the primary key (scene number / day number), confidence 1.0
  2. greedy fuzzy pairing of the leftovers, highest score first, accepting a
     pair only when its score reaches ``match_threshold``

Every old and every new item appears in exactly one Match.  Items left over
after both passes come back as ``Match(old, None, 0.0)`` (removed candidate)
or ``Match(None, new, 0.0)`` (added candidate).  The best sub-threshold
candidate of a leftover old item is reported as a MatchAmbiguity when it
scores at least ``ambiguity_floor``; it is never merged.

Ties between equal scores are broken on the natural-sorted pair of keys, so
``match(A, B)`` and ``match(B, A)`` produce the same pairs with roles swapped.
"""
from __future__ import annotations

import re
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional, Sequence, Set, Tuple

from rapidfuzz import fuzz

from continuity_engine.errors import MatchAmbiguity
from continuity_engine.ids import natural_key
from continuity_engine.log import get_logger
from continuity_engine.models import Placement, Scene, ShootDay, Snapshot
from continuity_engine.settings import MatchSettings, get_settings

logger = get_logger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")

# Fuzzy pairs never report full confidence; they always need confirmation.
FUZZY_CONFIDENCE_CAP = 0.99


class Match(NamedTuple):
    """One matcher output triple.  ``old`` or ``new`` is None when unmatched."""

    old: Any
    new: Any
    confidence: float


# ── Similarity primitives ─────────────────────────────────────────────────────


def jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    """Jaccard overlap of two sets.  Two empty sets score 0.0, not 1.0."""
    sa, sb = set(a), set(b)
    union = sa | sb
    if not union:
        return 0.0
    return len(sa & sb) / len(union)


def text_similarity(a: str, b: str) -> float:
    """Normalized edit similarity in [0, 1] of whitespace-collapsed, upper-cased text."""
    na = _WHITESPACE_RE.sub(" ", a or "").strip().upper()
    nb = _WHITESPACE_RE.sub(" ", b or "").strip().upper()
    if not na or not nb:
        return 0.0
    return fuzz.ratio(na, nb) / 100.0


def _heading(scene: Scene) -> str:
    return scene.slugline or scene.synopsis


def scene_similarity(old: Scene, new: Scene, settings: Optional[MatchSettings] = None) -> float:
    """Weighted similarity of two scenes in [0, 1] with the default weights."""
    s = settings or get_settings()
    score = s.cast_weight * jaccard(old.cast_refs, new.cast_refs)
    score += s.text_weight * text_similarity(_heading(old), _heading(new))
    if old.int_ext == new.int_ext:
        score += s.int_ext_bonus
    if old.day_night and old.day_night == new.day_night:
        score += s.day_night_bonus
    return score


def _day_cast(day: ShootDay) -> Set[str]:
    refs: Set[str] = set()
    for scene in day.scenes:
        refs.update(scene.cast_refs)
    return refs


def day_similarity(old: ShootDay, new: ShootDay, settings: Optional[MatchSettings] = None) -> float:
    """Similarity of two shooting days: cast overlap, location text, same date."""
    s = settings or get_settings()
    score = s.cast_weight * jaccard(_day_cast(old), _day_cast(new))
    score += s.text_weight * text_similarity(old.location, new.location)
    if old.date and old.date == new.date:
        score += s.date_bonus
    return score


# ── Generic matcher ───────────────────────────────────────────────────────────


def match_items(
    old_items: Sequence[Any],
    new_items: Sequence[Any],
    key: Callable[[Any], Any],
    score: Callable[[Any, Any], float],
    settings: Optional[MatchSettings] = None,
    label: str = "item",
) -> Tuple[List[Match], List[MatchAmbiguity]]:
    """Pair *old_items* with *new_items*.

    Args:
        old_items / new_items: Items of one kind.  Keys are expected to be
                               unique per side; a repeated key is matched by
                               the fuzzy pass only.
        key:      Primary key of an item (str or int).
        score:    Similarity of an (old, new) pair in [0, 1].
        settings: Threshold and ambiguity floor; defaults to get_settings().
        label:    Noun used in log lines and ambiguity messages.

    Returns:
        (matches, ambiguities).  Matches are ordered by the natural order of
        the new key (old key for removed candidates).
    """
    s = settings or get_settings()
    matches: List[Match] = []

    old_by_key: Dict[Any, int] = {}
    for i, item in enumerate(old_items):
        k = key(item)
        if k in old_by_key:
            logger.warning("Duplicate %s key %s in old set; matching it by similarity", label, k)
            continue
        old_by_key[k] = i

    used_old: Set[int] = set()
    used_new: Set[int] = set()
    for j, item in enumerate(new_items):
        i = old_by_key.get(key(item))
        if i is not None and i not in used_old:
            matches.append(Match(old_items[i], item, 1.0))
            used_old.add(i)
            used_new.add(j)

    free_old = [i for i in range(len(old_items)) if i not in used_old]
    free_new = [j for j in range(len(new_items)) if j not in used_new]

    candidates: List[Tuple[float, Tuple[Any, Any], int, int]] = []
    for i in free_old:
        for j in free_new:
            pair_score = round(score(old_items[i], new_items[j]), 4)
            tie = tuple(sorted((natural_key(key(old_items[i])), natural_key(key(new_items[j])))))
            candidates.append((pair_score, tie, i, j))
    candidates.sort(key=lambda c: (-c[0], c[1]))

    for pair_score, _, i, j in candidates:
        if pair_score < s.match_threshold:
            break
        if i in used_old or j in used_new:
            continue
        logger.debug(
            "Fuzzy %s match %s -> %s (score %.4f)", label, key(old_items[i]), key(new_items[j]), pair_score
        )
        matches.append(Match(old_items[i], new_items[j], min(pair_score, FUZZY_CONFIDENCE_CAP)))
        used_old.add(i)
        used_new.add(j)

    ambiguities: List[MatchAmbiguity] = []
    for pair_score, _, i, j in candidates:
        if i in used_old or j in used_new or pair_score < s.ambiguity_floor:
            continue
        if any(a.old_key == str(key(old_items[i])) for a in ambiguities):
            continue
        old_key, new_key = str(key(old_items[i])), str(key(new_items[j]))
        ambiguities.append(
            MatchAmbiguity(
                old_key=old_key,
                new_key=new_key,
                score=pair_score,
                message=(
                    f"{label.capitalize()} {old_key} resembles {label} {new_key} "
                    f"(score {pair_score:.2f}) but is below the match threshold; "
                    "reported as one removal and one addition"
                ),
            )
        )

    for i in range(len(old_items)):
        if i not in used_old:
            matches.append(Match(old_items[i], None, 0.0))
    for j in range(len(new_items)):
        if j not in used_new:
            matches.append(Match(None, new_items[j], 0.0))

    matches.sort(key=lambda m: natural_key(key(m.new if m.new is not None else m.old)))
    ambiguities.sort(key=lambda a: natural_key(a.old_key))
    return matches, ambiguities


# ── Entity matchers ───────────────────────────────────────────────────────────


def match_scenes(
    old: Snapshot, new: Snapshot, settings: Optional[MatchSettings] = None
) -> Tuple[List[Match], List[MatchAmbiguity]]:
    """Match the scene placements of two snapshots (items are Placement objects)."""
    s = settings or get_settings()
    return match_items(
        old.placements(),
        new.placements(),
        key=lambda p: p.key,
        score=lambda a, b: scene_similarity(a.scene, b.scene, s),
        settings=s,
        label="scene",
    )


def match_days(
    old: Snapshot, new: Snapshot, settings: Optional[MatchSettings] = None
) -> Tuple[List[Match], List[MatchAmbiguity]]:
    """Match the shooting days of two schedule snapshots (items are ShootDay objects)."""
    s = settings or get_settings()
    return match_items(
        old.days,
        new.days,
        key=lambda d: d.day_number,
        score=lambda a, b: day_similarity(a, b, s),
        settings=s,
        label="day",
    )


def pairs(matches: Iterable[Match]) -> List[Tuple[Optional[str], Optional[str]]]:
    """(old key, new key) pairs of scene placement matches, for comparisons."""
    out: List[Tuple[Optional[str], Optional[str]]] = []
    for m in matches:
        old_key = m.old.key if isinstance(m.old, Placement) else None
        new_key = m.new.key if isinstance(m.new, Placement) else None
        out.append((old_key, new_key))
    return sorted(out, key=lambda p: (natural_key(p[0]), natural_key(p[1])))

"""Deterministic identifier policy.

All functions are pure: no I/O, no wall clock, no randomness.

Formats
-------
- scene key:         scene number with all whitespace removed, upper-cased ("12 a" → "12A")
- placeholder char:  "cast-{number}"
- continuity record: "cr-{scene_key}-{character_id}"
- amendment:         "am_" + SHA-256(canonical JSON of old + new snapshot)[:16]
"""
from __future__ import annotations

import hashlib
import json
import re
from typing import Any, Tuple, Union

from pydantic import BaseModel

_WHITESPACE_RE = re.compile(r"\s+")
_SCENE_NUMBER_RE = re.compile(r"^(\d+)(.*)$")


def normalize_scene_number(raw: Any) -> str:
    """Canonical scene key used for every cross-snapshot comparison."""
    if raw is None:
        return ""
    return _WHITESPACE_RE.sub("", str(raw)).upper()


def natural_key(value: Union[str, int, None]) -> Tuple[int, int, str]:
    """Sort key that orders "2" < "10" < "10A" < "10B" < "X1".

    Integers (day numbers) sort by value. Non-numeric scene numbers sort
    after every numeric one, alphabetically.
    """
    if value is None:
        return (2, 0, "")
    if isinstance(value, int):
        return (0, value, "")
    m = _SCENE_NUMBER_RE.match(value)
    if m:
        return (0, int(m.group(1)), m.group(2))
    return (1, 0, value)


def placeholder_character_id(number: int) -> str:
    """Id of the character synthesized for schedule cast number *number*."""
    return f"cast-{number}"


def continuity_record_id(scene_number: str, character_id: str) -> str:
    """Id assigned to a continuity record when it is first created.

    The id is fixed at creation; re-keying a record to a renumbered scene
    changes its ``scene_number`` but never its id.
    """
    return f"cr-{normalize_scene_number(scene_number)}-{character_id}"


def canonical_json(model: BaseModel) -> str:
    """Compact canonical JSON: sorted keys, no whitespace."""
    raw = json.loads(model.model_dump_json())
    return json.dumps(raw, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def make_amendment_id(old: BaseModel, new: BaseModel) -> str:
    """Deterministic amendment id: "am_" + first 16 hex chars of SHA-256(old ‖ new)."""
    payload = canonical_json(old) + "\n" + canonical_json(new)
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return f"am_{digest[:16]}"

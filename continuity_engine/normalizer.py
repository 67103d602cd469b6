"""Normalizer: raw parser / extraction output → canonical records.

Every function here is a pure transform returning ``(result, anomalies)``.
Malformed records are excluded (or repaired) and reported as ParseAnomaly
entries; nothing in this module raises for a record-level problem.  The one
exception is ``coerce_payload``, which raises ValueError when an extraction
response holds no JSON object at all.  The pipeline controller treats that
as a failure of the day being extracted.

Raw records may use the camelCase keys of the upstream parsers
(``sceneNumber``, ``castNumbers``, ``dayNight`` ...) or snake_case keys.
"""
from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union

from continuity_engine.errors import ParseAnomaly
from continuity_engine.ids import normalize_scene_number
from continuity_engine.log import get_logger
from continuity_engine.models import CastEntry, Scene, ShootDay, Snapshot

logger = get_logger(__name__)

Anomalies = List[ParseAnomaly]

_SCENE_NUMBER_KEYS = ("scene_number", "sceneNumber", "number", "scene")
_DAY_NUMBER_KEYS = ("day_number", "dayNumber", "day", "number")
_CAST_NUMBER_KEYS = ("number", "cast_number", "castNumber", "id")
_CAST_REF_KEYS = ("cast_refs", "castRefs", "cast_numbers", "castNumbers", "cast", "characters")

_CAST_LINE_RE = re.compile(r"^\s*(\d+)\s*[.):\-]?\s*(.+?)\s*$")
_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_WHITESPACE_RE = re.compile(r"\s+")


def _pick(record: Dict[str, Any], *keys: str) -> Any:
    """First non-None value among *keys*."""
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    return _WHITESPACE_RE.sub(" ", str(value)).strip()


def _anomaly(
    anomalies: Anomalies, kind: str, identifier: Optional[str], reason: str
) -> None:
    anomalies.append(ParseAnomaly(record_kind=kind, identifier=identifier, reason=reason))
    logger.warning("Skipped %s record %s: %s", kind, identifier or "<unknown>", reason)


def _positive_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, float) and value.is_integer():
        return int(value) if value > 0 else None
    text = _text(value)
    if text.isdigit() and int(text) > 0:
        return int(text)
    return None


def _as_list(
    value: Any, anomalies: Anomalies, kind: str, identifier: Optional[str], field: str
) -> List[Any]:
    """*value* as a list; any other shape is reported and read as empty."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    _anomaly(anomalies, kind, identifier, f"{field} is {type(value).__name__}, expected a list; ignored")
    return []


# ── Field-level normalizers ───────────────────────────────────────────────────


def parse_cast_numbers(
    raw: Any, scene_number: Optional[str] = None
) -> Tuple[List[str], Anomalies]:
    """Parse cast numbers into an ordered, de-duplicated list of decimal strings.

    Accepts a list of ints / numeric strings or a comma-separated string
    ("1, 2, 4").  Non-numeric and non-positive tokens are dropped with an
    anomaly.
    """
    anomalies: Anomalies = []
    if raw is None or raw == "":
        return [], anomalies
    if isinstance(raw, (str, int)) and not isinstance(raw, bool):
        tokens: Iterable[Any] = str(raw).split(",")
    else:
        tokens = _as_list(raw, anomalies, "cast", scene_number, "cast numbers")

    out: List[str] = []
    for token in tokens:
        if isinstance(token, str) and not token.strip():
            continue
        number = _positive_int(token)
        if number is None:
            _anomaly(anomalies, "cast", scene_number, f"non-numeric cast number {token!r} dropped")
            continue
        ref = str(number)
        if ref not in out:
            out.append(ref)
    return out, anomalies


def _parse_cast_names(raw: Any, anomalies: Anomalies, scene_number: str) -> List[str]:
    if raw is None or raw == "":
        return []
    if isinstance(raw, str):
        tokens = raw.split(",")
    else:
        tokens = _as_list(raw, anomalies, "cast", scene_number, "cast names")
    out: List[str] = []
    for token in tokens:
        text = _text(token)
        if text and text not in out:
            out.append(text)
    return out


def normalize_int_ext(raw: Any, slugline: str = "") -> str:
    """INT or EXT.  "EXT", "EXT." and "EXT/INT" read as EXT, everything else INT."""
    text = _text(raw).upper()
    if not text:
        text = slugline.upper()
    return "EXT" if text.startswith("EXT") else "INT"


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


# ── Record normalizers ────────────────────────────────────────────────────────


def normalize_scene(
    raw: Dict[str, Any], *, numeric_cast: bool = True
) -> Tuple[Optional[Scene], Anomalies]:
    """Normalize one raw scene record.

    Args:
        raw:          Loosely-typed scene dict from a parser or extractor.
        numeric_cast: True for schedule scenes (cast refs are cast numbers),
                      False for script / breakdown scenes (refs kept as text).

    Returns:
        (Scene, anomalies), or (None, anomalies) when the scene number is missing.
    """
    anomalies: Anomalies = []
    if not isinstance(raw, dict):
        _anomaly(anomalies, "scene", None, f"expected an object, got {type(raw).__name__}")
        return None, anomalies

    scene_number = normalize_scene_number(_pick(raw, *_SCENE_NUMBER_KEYS))
    if not scene_number:
        _anomaly(anomalies, "scene", None, "missing scene number")
        return None, anomalies

    slugline = _text(_pick(raw, "slugline", "heading", "set_location", "setLocation", "location"))
    cast_raw = _pick(raw, *_CAST_REF_KEYS)
    if numeric_cast:
        cast_refs, cast_anomalies = parse_cast_numbers(cast_raw, scene_number)
        anomalies.extend(cast_anomalies)
    else:
        cast_refs = _parse_cast_names(cast_raw, anomalies, scene_number)

    shoot_order_raw = _pick(raw, "shoot_order", "shootOrder")
    shoot_order = _optional_int(shoot_order_raw)
    if shoot_order_raw not in (None, "") and shoot_order is None:
        _anomaly(anomalies, "scene", scene_number, f"unreadable shoot order {shoot_order_raw!r} ignored")

    script_content = _pick(raw, "script_content", "scriptContent", "content")
    scene = Scene(
        scene_number=scene_number,
        slugline=slugline,
        int_ext=normalize_int_ext(_pick(raw, "int_ext", "intExt"), slugline),
        day_night=_text(_pick(raw, "day_night", "dayNight", "time_of_day", "timeOfDay")).upper(),
        synopsis=_text(_pick(raw, "synopsis", "description")),
        script_content=str(script_content) if script_content is not None else None,
        pages=_text(_pick(raw, "pages", "page_count", "pageCount")),
        cast_refs=cast_refs,
        estimated_time=_text(_pick(raw, "estimated_time", "estimatedTime")),
        shoot_order=shoot_order,
    )
    return scene, anomalies


def normalize_cast_list(raw: Any) -> Tuple[List[CastEntry], Anomalies]:
    """Normalize a schedule cast list, ascending by number.

    Entries may be dicts (``{"number": 1, "name": "...", "character": "..."}``)
    or strings in the "1. NAME" form the schedule parser emits.  Entries with
    no readable number or no name are dropped; a repeated number keeps the
    first entry.
    """
    anomalies: Anomalies = []
    by_number: Dict[int, CastEntry] = {}
    for item in _as_list(raw, anomalies, "cast", None, "cast list"):
        if isinstance(item, str):
            m = _CAST_LINE_RE.match(item)
            if not m:
                _anomaly(anomalies, "cast", item, "no cast number in entry")
                continue
            number, name, character = int(m.group(1)), _text(m.group(2)), None
        elif isinstance(item, dict):
            number = _positive_int(_pick(item, *_CAST_NUMBER_KEYS))
            name = _text(_pick(item, "name", "actor", "actor_name", "actorName"))
            character = _text(_pick(item, "character", "character_name", "characterName", "role")) or None
            if number is None:
                _anomaly(anomalies, "cast", name or None, "missing or non-numeric cast number")
                continue
        else:
            _anomaly(anomalies, "cast", None, f"expected an object, got {type(item).__name__}")
            continue

        if number <= 0:
            _anomaly(anomalies, "cast", str(number), "cast number must be positive")
            continue
        if not name:
            name = character or ""
        if not name:
            _anomaly(anomalies, "cast", str(number), "cast entry has no name")
            continue
        if number in by_number:
            _anomaly(anomalies, "cast", str(number), "duplicate cast number skipped")
            continue
        by_number[number] = CastEntry(number=number, name=name, character=character)

    return [by_number[n] for n in sorted(by_number)], anomalies


def normalize_day(
    raw: Dict[str, Any], *, numeric_cast: bool = True
) -> Tuple[Optional[ShootDay], Anomalies]:
    """Normalize one raw shooting day and its scenes.

    Scene numbers repeated inside the day keep their first occurrence.
    """
    anomalies: Anomalies = []
    if not isinstance(raw, dict):
        _anomaly(anomalies, "day", None, f"expected an object, got {type(raw).__name__}")
        return None, anomalies

    day_number = _positive_int(_pick(raw, *_DAY_NUMBER_KEYS))
    if day_number is None:
        _anomaly(anomalies, "day", None, "missing or non-numeric day number")
        return None, anomalies

    day_id = str(day_number)
    notes_raw = raw.get("notes")
    if isinstance(notes_raw, str):
        notes_raw = [notes_raw]
    notes = [_text(n) for n in _as_list(notes_raw, anomalies, "day", day_id, "notes") if _text(n)]

    scenes: List[Scene] = []
    seen: Set[str] = set()
    for raw_scene in _as_list(raw.get("scenes"), anomalies, "day", day_id, "scenes"):
        scene, scene_anomalies = normalize_scene(raw_scene, numeric_cast=numeric_cast)
        anomalies.extend(scene_anomalies)
        if scene is None:
            continue
        if scene.scene_number in seen:
            _anomaly(anomalies, "scene", scene.scene_number, f"duplicate scene number on day {day_number} skipped")
            continue
        seen.add(scene.scene_number)
        scenes.append(scene)

    date = _text(raw.get("date")) or None
    day = ShootDay(
        day_number=day_number,
        date=date,
        location=_text(_pick(raw, "location", "set_location", "setLocation")),
        notes=notes,
        scenes=scenes,
    )
    return day, anomalies


def build_schedule_snapshot(
    days: Iterable[ShootDay], cast_list: Iterable[CastEntry] = ()
) -> Tuple[Snapshot, Anomalies]:
    """Assemble a schedule Snapshot, enforcing day and scene uniqueness.

    Days are ordered ascending.  A repeated day number keeps the first day;
    a scene already placed on an earlier day is dropped from later days.
    """
    anomalies: Anomalies = []
    by_number: Dict[int, ShootDay] = {}
    for day in days:
        if day.day_number in by_number:
            _anomaly(anomalies, "day", str(day.day_number), "duplicate day number skipped")
            continue
        by_number[day.day_number] = day

    placed: Set[str] = set()
    ordered: List[ShootDay] = []
    for number in sorted(by_number):
        day = by_number[number]
        kept: List[Scene] = []
        for scene in day.scenes:
            if scene.scene_number in placed:
                _anomaly(
                    anomalies, "scene", scene.scene_number,
                    f"scene already scheduled on an earlier day; dropped from day {number}",
                )
                continue
            placed.add(scene.scene_number)
            kept.append(scene)
        ordered.append(day.model_copy(update={"scenes": kept}))

    return Snapshot(kind="schedule", days=ordered, cast_list=list(cast_list)), anomalies


def normalize_schedule(raw: Union[Dict[str, Any], List[Any]]) -> Tuple[Snapshot, Anomalies]:
    """Normalize a full raw schedule: ``{"cast_list": [...], "days": [...]}``.

    A bare list is read as the list of days.
    """
    anomalies: Anomalies = []
    if isinstance(raw, list):
        raw = {"days": raw}
    elif not isinstance(raw, dict):
        _anomaly(anomalies, "schedule", None, f"expected an object, got {type(raw).__name__}")
        raw = {}

    cast_list, cast_anomalies = normalize_cast_list(_pick(raw, "cast_list", "castList"))
    anomalies.extend(cast_anomalies)

    days: List[ShootDay] = []
    raw_days = _pick(raw, "days", "shooting_days", "shootingDays")
    for raw_day in _as_list(raw_days, anomalies, "schedule", None, "days"):
        day, day_anomalies = normalize_day(raw_day)
        anomalies.extend(day_anomalies)
        if day is not None:
            days.append(day)

    snapshot, build_anomalies = build_schedule_snapshot(days, cast_list)
    anomalies.extend(build_anomalies)
    return snapshot, anomalies


def normalize_script(raw: Union[Dict[str, Any], List[Any]]) -> Tuple[Snapshot, Anomalies]:
    """Normalize a parsed script: ``{"scenes": [...]}`` or a bare list of scenes.

    Script scenes keep script order and carry cast refs as character names.
    """
    anomalies: Anomalies = []
    if isinstance(raw, list):
        raw_scenes = raw
    elif isinstance(raw, dict):
        raw_scenes = _as_list(raw.get("scenes"), anomalies, "script", None, "scenes")
    else:
        _anomaly(anomalies, "script", None, f"expected an object, got {type(raw).__name__}")
        raw_scenes = []

    scenes: List[Scene] = []
    seen: Set[str] = set()
    for raw_scene in raw_scenes:
        scene, scene_anomalies = normalize_scene(raw_scene, numeric_cast=False)
        anomalies.extend(scene_anomalies)
        if scene is None:
            continue
        if scene.scene_number in seen:
            _anomaly(anomalies, "scene", scene.scene_number, "duplicate scene number skipped")
            continue
        seen.add(scene.scene_number)
        scenes.append(scene)

    cast_list: List[CastEntry] = []
    if isinstance(raw, dict):
        cast_list, cast_anomalies = normalize_cast_list(_pick(raw, "cast_list", "castList"))
        anomalies.extend(cast_anomalies)
    return Snapshot(kind="script", scenes=scenes, cast_list=cast_list), anomalies


# ── Extraction responses ──────────────────────────────────────────────────────


def coerce_payload(payload: Union[Dict[str, Any], List[Any], str, bytes]) -> Dict[str, Any]:
    """Turn an extraction response into a dict.

    Text responses are repaired the way model output usually needs: markdown
    code fences stripped, the outermost ``{...}`` taken, trailing commas
    removed.  A bare list is read as a list of scenes.

    Raises:
        ValueError: the response holds no parseable JSON object.
    """
    if isinstance(payload, dict):
        return payload
    if isinstance(payload, list):
        return {"scenes": payload}
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")
    if not isinstance(payload, str):
        raise ValueError(f"unsupported extraction payload type {type(payload).__name__}")

    text = _FENCE_RE.sub("", payload).strip()
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("no JSON object in extraction response")
    text = _TRAILING_COMMA_RE.sub(r"\1", text[start:end + 1])

    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("extraction response is not a JSON object")
    return data


def normalize_extracted_day(
    payload: Union[Dict[str, Any], List[Any], str, bytes],
    day_number: int,
    skeleton: Optional[ShootDay] = None,
) -> Tuple[ShootDay, Anomalies]:
    """Normalize one day returned by the extraction service.

    The day number is always *day_number*; date and location fall back to the
    Stage 1 *skeleton* when the response omits them.

    Raises:
        ValueError: the payload is not parseable at all (see coerce_payload).
    """
    anomalies: Anomalies = []
    data = coerce_payload(payload)

    wrapped = data.get("days")
    if isinstance(wrapped, list) and wrapped:
        match = [d for d in wrapped if isinstance(d, dict) and _positive_int(_pick(d, *_DAY_NUMBER_KEYS)) == day_number]
        data = match[0] if match else wrapped[0]
        if not isinstance(data, dict):
            raise ValueError("extraction response day is not a JSON object")

    reported = _positive_int(_pick(data, *_DAY_NUMBER_KEYS))
    if reported is not None and reported != day_number:
        _anomaly(anomalies, "day", str(day_number), f"extractor reported day {reported}; using {day_number}")

    day, day_anomalies = normalize_day({**data, "day_number": day_number})
    anomalies.extend(day_anomalies)
    if day is None:
        raise ValueError(f"invalid day number {day_number!r}")

    if skeleton is not None:
        update: Dict[str, Any] = {}
        if not day.date and skeleton.date:
            update["date"] = skeleton.date
        if not day.location and skeleton.location:
            update["location"] = skeleton.location
        if not day.notes and skeleton.notes:
            update["notes"] = list(skeleton.notes)
        if update:
            day = day.model_copy(update=update)
    return day, anomalies

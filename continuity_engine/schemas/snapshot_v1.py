"""Snapshot JSON: load, dump, validate.

Snapshots carry no schema_version of their own; they travel inside a
versioned AmendmentResult or Breakdown.  ``validate_snapshot`` adds the
shape rules the model cannot express: script snapshots hold loose scenes,
schedule snapshots hold days, and a scene number appears once.
"""
from __future__ import annotations

import json
from collections import Counter
from pathlib import Path
from typing import List, Optional, Union

from pydantic import ValidationError

from continuity_engine.models import Snapshot, SnapshotKind


def load_snapshot(source: Union[str, bytes, dict, Path], kind: Optional[SnapshotKind] = None) -> Snapshot:
    """Parse a Snapshot from JSON string, bytes, dict, or file Path.

    Raises:
        ValidationError: data does not conform to the Snapshot model.
        ValueError: *kind* is given and the snapshot is of the other kind.
        FileNotFoundError: Path does not exist.
    """
    if isinstance(source, Path):
        data = json.loads(source.read_text(encoding="utf-8"))
    elif isinstance(source, (str, bytes)):
        data = json.loads(source)
    else:
        data = source
    snapshot = Snapshot.model_validate(data)
    if kind is not None and snapshot.kind != kind:
        raise ValueError(f"Expected a {kind} snapshot, got {snapshot.kind}")
    return snapshot


def dump_snapshot(snapshot: Snapshot, *, indent: int = 2) -> str:
    raw = json.loads(snapshot.model_dump_json())
    return json.dumps(raw, sort_keys=True, indent=indent, ensure_ascii=False)


def validate_snapshot(data: dict) -> List[str]:
    """Validate a raw dict as a Snapshot.  Returns error strings; does not raise."""
    try:
        snapshot = Snapshot.model_validate(data)
    except ValidationError as exc:
        return [f"{e['loc']}: {e['msg']}" for e in exc.errors()]

    errors: List[str] = []
    if snapshot.kind == "script" and snapshot.days:
        errors.append("('days',): script snapshots carry scenes, not days")
    if snapshot.kind == "schedule" and snapshot.scenes:
        errors.append("('scenes',): schedule snapshots carry scenes inside days")
    counts = Counter(p.key for p in snapshot.placements())
    for number in sorted(n for n, c in counts.items() if c > 1):
        errors.append(f"('scenes',): scene {number} appears {counts[number]} times")
    return errors

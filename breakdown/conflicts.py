"""
conflicts.py: Merge gate and continuity-record resolution.

check_amendment_applicable refuses amendments that no longer fit the
breakdown: already merged, or computed against a different version of the
target snapshot.

Record rules applied after every merge:
  - NO deletion: a continuity record is never dropped.
  - A record whose scene key no longer resolves to any active scene is
    soft-orphaned (kept with ``orphaned=True``).  When the scene was removed
    by the amendment itself this is expected; otherwise a MergeConflict is
    surfaced for manual review.
  - An orphaned record whose scene key resolves again is recovered.
"""
from __future__ import annotations

import json
from typing import Dict, List, Set, Tuple

from continuity_engine.errors import MergeConflict
from continuity_engine.log import get_logger
from continuity_engine.models import AmendmentResult, Breakdown, ContinuityRecord, Snapshot

logger = get_logger(__name__)

_MARKER_FIELDS = {"amendment_status", "amendment_notes", "previous_script_content"}


def _comparable(snapshot: Snapshot) -> str:
    """Snapshot content without review markers, as canonical JSON."""
    raw = json.loads(snapshot.model_dump_json())
    scenes = list(raw.get("scenes", []))
    for day in raw.get("days", []):
        scenes.extend(day.get("scenes", []))
    for scene in scenes:
        for field in _MARKER_FIELDS:
            scene.pop(field, None)
    return json.dumps(raw, sort_keys=True)


def check_amendment_applicable(breakdown: Breakdown, result: AmendmentResult) -> List[str]:
    """Detect amendments that cannot be merged into *breakdown*.

    Checks performed:
      1. the amendment id is already recorded in ``applied_amendments``
      2. the breakdown's current target snapshot differs from the amendment's
         old snapshot (review markers are ignored)

    Returns:
        List of error strings; empty list means the amendment may be applied.
    """
    errors: List[str] = []
    if result.amendment_id in breakdown.applied_amendments:
        errors.append(f"ALREADY_APPLIED: amendment {result.amendment_id} was already merged")
        return errors

    current = breakdown.target_snapshot(result.kind)
    if _comparable(current) != _comparable(result.old_snapshot):
        errors.append(
            f"STALE_AMENDMENT: the breakdown {result.kind} changed since amendment "
            f"{result.amendment_id} was computed; compare again"
        )
    return errors


def rekey_records(
    records: List[ContinuityRecord], renames: Dict[str, str]
) -> Tuple[List[ContinuityRecord], List[str], List[MergeConflict]]:
    """Move records from old scene keys to new ones.

    All renames apply at once, so chains like 1→2, 2→3 are safe.  A record
    whose target (scene, character) key is already held by another live
    record is soft-orphaned instead, with a conflict.

    Returns:
        (records, re-keyed record ids, conflicts).  Input records are not mutated.
    """
    out = [r.model_copy() for r in records]
    staying: Set[Tuple[str, str]] = {
        (r.scene_number, r.character_id)
        for r in out
        if not r.orphaned and r.scene_number not in renames
    }
    rekeyed: List[str] = []
    conflicts: List[MergeConflict] = []

    for record in out:
        if record.orphaned or record.scene_number not in renames:
            continue
        target = renames[record.scene_number]
        if (target, record.character_id) in staying:
            message = (
                f"Record {record.record_id} cannot move from scene {record.scene_number} "
                f"to {target}: {record.character_id} already has a record there"
            )
            conflicts.append(
                MergeConflict(
                    record_id=record.record_id,
                    scene_number=record.scene_number,
                    character_id=record.character_id,
                    message=message,
                )
            )
            logger.warning(message)
            record.orphaned = True
            record.orphaned_reason = f"re-key to scene {target} collided with an existing record"
            continue
        staying.add((target, record.character_id))
        record.scene_number = target
        rekeyed.append(record.record_id)

    return out, rekeyed, conflicts


def reconcile_records(
    breakdown: Breakdown, expected_removals: Set[str], amendment_id: str
) -> Tuple[Breakdown, List[str], List[str], List[MergeConflict]]:
    """Soft-orphan records of inactive scenes and recover re-activated ones.

    Args:
        breakdown:         Breakdown after the merged snapshot was written.
        expected_removals: Scene keys the amendment removed on purpose.
        amendment_id:      Recorded in the orphan reason.

    Returns:
        (breakdown, orphaned ids, recovered ids, conflicts).  *breakdown* is
        not mutated.
    """
    active = breakdown.active_scene_numbers()
    orphaned: List[str] = []
    recovered: List[str] = []
    conflicts: List[MergeConflict] = []
    records = []

    for record in breakdown.continuity_records:
        live = record.scene_number in active
        if record.orphaned and live:
            record = record.model_copy(update={"orphaned": False, "orphaned_reason": None})
            recovered.append(record.record_id)
        elif not record.orphaned and not live:
            if record.scene_number in expected_removals:
                reason = f"scene {record.scene_number} removed by amendment {amendment_id}"
            else:
                reason = f"scene {record.scene_number} no longer resolves"
                conflicts.append(
                    MergeConflict(
                        record_id=record.record_id,
                        scene_number=record.scene_number,
                        character_id=record.character_id,
                        message=f"Record {record.record_id} lost its scene {record.scene_number}; kept for review",
                    )
                )
                logger.warning("Orphaned record %s: %s", record.record_id, reason)
            record = record.model_copy(update={"orphaned": True, "orphaned_reason": reason})
            orphaned.append(record.record_id)
        records.append(record)

    updated = breakdown.model_copy(update={"continuity_records": records})
    return updated, orphaned, recovered, conflicts

from __future__ import annotations

from typing import List, Optional, Tuple

from pydantic import BaseModel

from continuity_engine.cast_resolver import resolve_characters
from continuity_engine.errors import MergeConflict, StaleAmendmentError
from continuity_engine.log import get_logger
from continuity_engine.models import AmendmentResult, Breakdown

from .conflicts import check_amendment_applicable, reconcile_records, rekey_records
from .merge import MergeOptions, merge_snapshot, stamp_amendment_flags, validate_amendment

logger = get_logger(__name__)


class MergeReport(BaseModel):
    """Outcome of one apply_amendment call."""

    amendment_id: str
    applied: bool = False
    errors: List[str] = []
    conflicts: List[MergeConflict] = []
    rekeyed: List[str] = []
    orphaned: List[str] = []
    recovered: List[str] = []


def apply_amendment(
    breakdown: Breakdown, result: AmendmentResult, options: Optional[MergeOptions] = None
) -> Tuple[Breakdown, MergeReport]:
    """Merge the included categories of *result* into *breakdown*.

    Pipeline:
      1. validate_amendment: structural checks on the result
      2. check_amendment_applicable: already merged or stale old snapshot
      3. merge_snapshot: pure selective merge of the target snapshot
      4. script revision markers, character resolution for schedule cast lists
      5. rekey_records and reconcile_records: records follow renumbered scenes,
         removed scenes soft-orphan their records, re-added scenes recover them

    All included categories land together or not at all.

    Returns:
        (new_breakdown, report): amendment applied.
        (breakdown, report with errors): rejected, the original breakdown is returned unchanged.
    """
    options = options or MergeOptions()
    report = MergeReport(amendment_id=result.amendment_id)

    errors = validate_amendment(result)
    if errors:
        report.errors = errors
        return (breakdown, report)

    errors = check_amendment_applicable(breakdown, result)
    if errors:
        report.errors = errors
        return (breakdown, report)

    merged = merge_snapshot(result, options)
    updated = breakdown.model_copy(deep=True)
    if result.kind == "script":
        merged = merged.model_copy(
            update={"scenes": stamp_amendment_flags(merged.scenes, result, options)}
        )
        updated.script = merged
    else:
        updated.schedule = merged
        if options.include_cast_changes:
            updated.characters = resolve_characters(updated.characters, merged.cast_list)

    if options.include_modified:
        renames = {
            c.old_scene_number: c.scene_number
            for c in result.modified_scenes
            if c.old_scene_number
        }
        if renames:
            records, report.rekeyed, conflicts = rekey_records(updated.continuity_records, renames)
            updated.continuity_records = records
            report.conflicts.extend(conflicts)

    expected = {c.scene_number for c in result.removed_scenes} if options.include_removed else set()
    updated, report.orphaned, report.recovered, conflicts = reconcile_records(
        updated, expected, result.amendment_id
    )
    report.conflicts.extend(conflicts)

    updated.applied_amendments = [*updated.applied_amendments, result.amendment_id]
    report.applied = True
    logger.info(
        "Applied amendment %s: %d re-keyed, %d orphaned, %d recovered, %d conflicts",
        result.amendment_id,
        len(report.rekeyed),
        len(report.orphaned),
        len(report.recovered),
        len(report.conflicts),
    )
    return (updated, report)


def apply_amendment_strict(
    breakdown: Breakdown, result: AmendmentResult, options: Optional[MergeOptions] = None
) -> Tuple[Breakdown, MergeReport]:
    """apply_amendment that raises instead of returning a rejected report.

    Raises:
        StaleAmendmentError: the amendment was rejected; the message lists every error.
    """
    updated, report = apply_amendment(breakdown, result, options)
    if report.errors:
        raise StaleAmendmentError("; ".join(report.errors))
    return updated, report


"""
store.py: Project breakdown store (snapshot + amendment log).

Layout under <base_dir>/<project_id>/:

    Breakdown.json                           ← current state (always latest)
    history/
        0001_<amendment_id>.amendment.json   ← immutable once written; one per merge
        0002_<amendment_id>.amendment.json
        ...

Sequence numbers are supplied by the caller, never computed from file count.
Every write validates against the Breakdown.v1.json contract first.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from continuity_engine.contract_validate import validate_breakdown_model
from continuity_engine.errors import StoreUnavailableError
from continuity_engine.log import get_logger
from continuity_engine.models import AmendmentResult, Breakdown

from .breakdown_io import dump_json, load_breakdown_file, save_breakdown_file
from .contract import MergeReport, apply_amendment
from .merge import MergeOptions

logger = get_logger(__name__)

BaseDir = Union[str, Path]


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _project_dir(project_id: str, base_dir: BaseDir) -> Path:
    return Path(base_dir) / project_id


def _snapshot_path(project_id: str, base_dir: BaseDir) -> Path:
    return _project_dir(project_id, base_dir) / "Breakdown.json"


def _history_dir(project_id: str, base_dir: BaseDir) -> Path:
    return _project_dir(project_id, base_dir) / "history"


def _history_filename(seq: int, amendment_id: str) -> str:
    return f"{seq:04d}_{amendment_id}.amendment.json"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def load_breakdown(project_id: str, base_dir: BaseDir) -> Breakdown:
    """Load the current Breakdown for *project_id*.

    Raises:
        FileNotFoundError: If no Breakdown.json exists for this project.
        StoreUnavailableError: If the file exists but cannot be read.
        jsonschema.ValidationError: If the stored document breaks the contract.
    """
    path = _snapshot_path(project_id, base_dir)
    if not path.exists():
        raise FileNotFoundError(f"No Breakdown found for project '{project_id}' at {path}")
    try:
        breakdown = load_breakdown_file(path)
    except OSError as exc:
        raise StoreUnavailableError(f"Cannot read breakdown for project '{project_id}': {exc}") from exc
    validate_breakdown_model(breakdown)
    return breakdown


def save_breakdown(project_id: str, base_dir: BaseDir, breakdown: Breakdown) -> Path:
    """Validate and overwrite the project's Breakdown.json.

    Raises:
        ValueError: If *breakdown* belongs to a different project.
        jsonschema.ValidationError: If *breakdown* breaks the contract.
        StoreUnavailableError: If the file cannot be written.
    """
    if breakdown.project_id != project_id:
        raise ValueError(
            f"Breakdown belongs to project '{breakdown.project_id}', not '{project_id}'"
        )
    validate_breakdown_model(breakdown)
    path = _snapshot_path(project_id, base_dir)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        save_breakdown_file(path, breakdown)
    except OSError as exc:
        raise StoreUnavailableError(f"Cannot write breakdown for project '{project_id}': {exc}") from exc
    return path


def record_amendment(
    project_id: str,
    base_dir: BaseDir,
    breakdown: Breakdown,
    result: AmendmentResult,
    options: MergeOptions,
    seq: int,
) -> Path:
    """Persist a merged amendment and the resulting breakdown.

    Write order:
      1. Write ``history/<seq:04d>_<amendment_id>.amendment.json`` (immutable).
      2. Overwrite ``Breakdown.json`` with the merged state.

    Step 1 comes first so that a crash between the two leaves the amendment
    on disk; the breakdown can be rebuilt by replaying history.

    Args:
        breakdown: The *merged* breakdown (output of apply_amendment).
        result:    The amendment that was merged.
        options:   The inclusion flags it was merged with.
        seq:       Monotonic sequence number; unique per project.

    Raises:
        FileExistsError: If a history entry with the same sequence number exists.
        StoreUnavailableError: If the store cannot be written.
    """
    history_dir = _history_dir(project_id, base_dir)
    existing = list(history_dir.glob(f"{seq:04d}_*.amendment.json")) if history_dir.exists() else []
    if existing:
        raise FileExistsError(
            f"History entry already exists for seq={seq} in project '{project_id}': {existing[0]}"
        )

    entry = {
        "amendment": json.loads(result.model_dump_json()),
        "options": options.model_dump(),
        "seq": seq,
    }
    path = history_dir / _history_filename(seq, result.amendment_id)
    try:
        history_dir.mkdir(parents=True, exist_ok=True)
        path.write_text(dump_json(entry), encoding="utf-8")
    except OSError as exc:
        raise StoreUnavailableError(f"Cannot write history for project '{project_id}': {exc}") from exc

    save_breakdown(project_id, base_dir, breakdown)
    logger.info("Recorded amendment %s as seq %d for project %s", result.amendment_id, seq, project_id)
    return path


def list_amendment_history(project_id: str, base_dir: BaseDir) -> List[Tuple[int, str]]:
    """(seq, amendment_id) of every recorded amendment, in sequence order."""
    history_dir = _history_dir(project_id, base_dir)
    if not history_dir.exists():
        return []
    out: List[Tuple[int, str]] = []
    for path in sorted(history_dir.glob("*.amendment.json")):
        seq, _, rest = path.name.partition("_")
        out.append((int(seq), rest[: -len(".amendment.json")]))
    return out


def _load_entry(path: Path) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def replay_history(
    project_id: str,
    base_dir: BaseDir,
    initial: Breakdown,
    until: Optional[str] = None,
) -> Breakdown:
    """Rebuild a breakdown by re-merging recorded amendments onto *initial*.

    Amendments are replayed in sequence order, stopping after *until*
    (an amendment id) when given.

    Raises:
        FileNotFoundError: If the project has no history.
        ValueError: If *until* is not in history, or a recorded amendment no
                    longer applies.
    """
    history_dir = _history_dir(project_id, base_dir)
    files = sorted(history_dir.glob("*.amendment.json")) if history_dir.exists() else []
    if not files:
        raise FileNotFoundError(f"No history entries found for project '{project_id}'")

    breakdown = initial
    found = until is None
    for path in files:
        entry = _load_entry(path)
        result = AmendmentResult.model_validate(entry["amendment"])
        options = MergeOptions.model_validate(entry.get("options", {}))
        breakdown, report = apply_amendment(breakdown, result, options)
        if report.errors:
            raise ValueError(f"History entry {path.name} does not apply: {'; '.join(report.errors)}")
        if until is not None and result.amendment_id == until:
            found = True
            break

    if not found:
        raise ValueError(f"Amendment '{until}' not found in history for project '{project_id}'")
    return breakdown


def merge_and_record(
    project_id: str,
    base_dir: BaseDir,
    result: AmendmentResult,
    options: Optional[MergeOptions] = None,
) -> Tuple[Breakdown, MergeReport]:
    """Load, merge and persist in one step.  Nothing is written when the merge is rejected."""
    options = options or MergeOptions()
    breakdown = load_breakdown(project_id, base_dir)
    updated, report = apply_amendment(breakdown, result, options)
    if report.errors:
        return breakdown, report
    history = list_amendment_history(project_id, base_dir)
    seq = history[-1][0] + 1 if history else 1
    record_amendment(project_id, base_dir, updated, result, options, seq)
    return updated, report

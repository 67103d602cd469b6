"""Tests for breakdown/store.py: the per-project Breakdown store.

Covers:
  - load/save round trip, deterministic bytes, project id guard.
  - Contract enforcement on write (jsonschema.ValidationError).
  - Missing and unreadable stores.
  - record_amendment: history written, duplicate seq refused.
  - list_amendment_history / replay_history.
  - merge_and_record: persisted on success, nothing written on rejection.
"""
from __future__ import annotations

import json
from pathlib import Path

import jsonschema
import pytest

from breakdown.merge import MergeOptions
from breakdown.store import (
    list_amendment_history,
    load_breakdown,
    merge_and_record,
    record_amendment,
    replay_history,
    save_breakdown,
)
from breakdown.contract import apply_amendment
from continuity_engine.classifier import classify_amendment
from continuity_engine.errors import StoreUnavailableError
from continuity_engine.models import Breakdown, CastEntry, ContinuityRecord, Scene, ShootDay, Snapshot
from continuity_engine.settings import MatchSettings


# ─────────────────────────────────────────────────────────────────────────────
# Helper factory
# ─────────────────────────────────────────────────────────────────────────────

_SLUGLINES = {
    "1": "INT. HOUSE - DAY",
    "2": "EXT. PARK - DAY",
    "3": "INT. CAR - NIGHT",
    "4": "EXT. MOUNTAIN RIDGE - NIGHT",
}


def _schedule(days) -> Snapshot:
    return Snapshot(
        kind="schedule",
        days=[
            ShootDay(
                day_number=n,
                scenes=[Scene(scene_number=s, slugline=_SLUGLINES[s], cast_refs=["1"]) for s in numbers],
            )
            for n, numbers in days.items()
        ],
        cast_list=[CastEntry(number=1, name="Alice Smith")],
    )


_V1 = {1: ["1", "2", "3"]}
_V2 = {1: ["1", "3"], 2: ["2"]}
_V3 = {1: ["1", "3"], 2: ["2", "4"]}


def _initial() -> Breakdown:
    return Breakdown(
        project_id="p1",
        schedule=_schedule(_V1),
        continuity_records=[
            ContinuityRecord(record_id="cr-2-cast-1", scene_number="2", character_id="cast-1"),
        ],
    )


def _amend(before, after):
    return classify_amendment(_schedule(before), _schedule(after), MatchSettings(_env_file=None))


# ─────────────────────────────────────────────────────────────────────────────
# Load / save
# ─────────────────────────────────────────────────────────────────────────────

class TestLoadSave:

    def test_round_trip(self, tmp_path: Path):
        save_breakdown("p1", tmp_path, _initial())
        assert load_breakdown("p1", tmp_path) == _initial()

    def test_file_layout_and_bytes(self, tmp_path: Path):
        path = save_breakdown("p1", tmp_path, _initial())
        assert path == tmp_path / "p1" / "Breakdown.json"
        first = path.read_bytes()
        save_breakdown("p1", tmp_path, _initial())
        assert path.read_bytes() == first
        assert first.endswith(b"\n")
        data = json.loads(first)
        assert list(data) == sorted(data)

    def test_missing_project(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError, match="No Breakdown found"):
            load_breakdown("nope", tmp_path)

    def test_unreadable_store(self, tmp_path: Path):
        (tmp_path / "p1" / "Breakdown.json").mkdir(parents=True)
        with pytest.raises(StoreUnavailableError):
            load_breakdown("p1", tmp_path)

    def test_project_mismatch(self, tmp_path: Path):
        with pytest.raises(ValueError):
            save_breakdown("other", tmp_path, _initial())

    def test_contract_violation_not_written(self, tmp_path: Path):
        bad = _initial().model_copy(update={"applied_amendments": ["bogus"]})
        with pytest.raises(jsonschema.ValidationError):
            save_breakdown("p1", tmp_path, bad)
        assert not (tmp_path / "p1" / "Breakdown.json").exists()

    def test_tampered_file_rejected_on_load(self, tmp_path: Path):
        path = save_breakdown("p1", tmp_path, _initial())
        data = json.loads(path.read_text(encoding="utf-8"))
        data["applied_amendments"] = ["not-an-id"]
        path.write_text(json.dumps(data), encoding="utf-8")
        with pytest.raises(jsonschema.ValidationError):
            load_breakdown("p1", tmp_path)


# ─────────────────────────────────────────────────────────────────────────────
# History
# ─────────────────────────────────────────────────────────────────────────────

class TestHistory:

    def test_record_writes_history_and_breakdown(self, tmp_path: Path):
        result = _amend(_V1, _V2)
        merged, _ = apply_amendment(_initial(), result)
        path = record_amendment("p1", tmp_path, merged, result, MergeOptions(), seq=1)

        assert path.name == f"0001_{result.amendment_id}.amendment.json"
        entry = json.loads(path.read_text(encoding="utf-8"))
        assert entry["seq"] == 1
        assert entry["amendment"]["amendment_id"] == result.amendment_id
        assert entry["options"]["include_moved"] is True
        assert load_breakdown("p1", tmp_path) == merged

    def test_duplicate_seq_refused(self, tmp_path: Path):
        result = _amend(_V1, _V2)
        merged, _ = apply_amendment(_initial(), result)
        record_amendment("p1", tmp_path, merged, result, MergeOptions(), seq=1)
        with pytest.raises(FileExistsError):
            record_amendment("p1", tmp_path, merged, result, MergeOptions(), seq=1)

    def test_list_history_empty(self, tmp_path: Path):
        assert list_amendment_history("p1", tmp_path) == []

    def test_replay_rebuilds_current_state(self, tmp_path: Path):
        save_breakdown("p1", tmp_path, _initial())
        first = _amend(_V1, _V2)
        second = _amend(_V2, _V3)
        merge_and_record("p1", tmp_path, first)
        current, _ = merge_and_record("p1", tmp_path, second)

        assert list_amendment_history("p1", tmp_path) == [
            (1, first.amendment_id),
            (2, second.amendment_id),
        ]
        assert replay_history("p1", tmp_path, _initial()) == current
        assert load_breakdown("p1", tmp_path) == current

    def test_replay_until(self, tmp_path: Path):
        save_breakdown("p1", tmp_path, _initial())
        first = _amend(_V1, _V2)
        merge_and_record("p1", tmp_path, first)
        merge_and_record("p1", tmp_path, _amend(_V2, _V3))

        partial = replay_history("p1", tmp_path, _initial(), until=first.amendment_id)
        assert partial.applied_amendments == [first.amendment_id]
        assert partial.schedule == _schedule(_V2)

    def test_replay_unknown_until(self, tmp_path: Path):
        save_breakdown("p1", tmp_path, _initial())
        merge_and_record("p1", tmp_path, _amend(_V1, _V2))
        with pytest.raises(ValueError):
            replay_history("p1", tmp_path, _initial(), until="am_0000000000000000")

    def test_replay_without_history(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            replay_history("p1", tmp_path, _initial())


# ─────────────────────────────────────────────────────────────────────────────
# merge_and_record
# ─────────────────────────────────────────────────────────────────────────────

class TestMergeAndRecord:

    def test_options_are_recorded_and_replayed(self, tmp_path: Path):
        save_breakdown("p1", tmp_path, _initial())
        options = MergeOptions(include_moved=False)
        current, report = merge_and_record("p1", tmp_path, _amend(_V1, _V2), options)
        assert report.applied
        assert [s.scene_number for s in current.schedule.days[0].scenes] == ["1", "2", "3"]
        assert replay_history("p1", tmp_path, _initial()) == current

    def test_rejected_merge_writes_nothing(self, tmp_path: Path):
        save_breakdown("p1", tmp_path, _initial())
        result = _amend(_V1, _V2)
        merge_and_record("p1", tmp_path, result)
        before = (tmp_path / "p1" / "Breakdown.json").read_bytes()

        unchanged, report = merge_and_record("p1", tmp_path, result)
        assert not report.applied
        assert report.errors[0].startswith("ALREADY_APPLIED")
        assert list_amendment_history("p1", tmp_path) == [(1, result.amendment_id)]
        assert (tmp_path / "p1" / "Breakdown.json").read_bytes() == before
        assert unchanged.applied_amendments == [result.amendment_id]

    def test_stale_merge_writes_nothing(self, tmp_path: Path):
        save_breakdown("p1", tmp_path, _initial())
        _, report = merge_and_record("p1", tmp_path, _amend(_V2, _V3))
        assert report.errors[0].startswith("STALE_AMENDMENT")
        assert list_amendment_history("p1", tmp_path) == []

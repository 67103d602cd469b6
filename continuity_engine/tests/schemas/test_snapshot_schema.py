"""Tests for the Snapshot JSON load/dump/validate helpers."""
from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from continuity_engine.models import CastEntry, Scene, ShootDay, Snapshot
from continuity_engine.schemas import dump_snapshot, load_snapshot, validate_snapshot


def _snapshot() -> Snapshot:
    return Snapshot(
        kind="schedule",
        days=[
            ShootDay(
                day_number=1,
                date="2024-05-01",
                location="STUDIO",
                scenes=[Scene(scene_number="1", slugline="INT. HOUSE - DAY", cast_refs=["1"])],
            )
        ],
        cast_list=[CastEntry(number=1, name="Alice Smith")],
    )


class TestSnapshotSchema:

    def test_dump_is_sorted_json(self):
        text = dump_snapshot(_snapshot())
        data = json.loads(text)
        assert list(data) == sorted(data)
        assert text == dump_snapshot(_snapshot())

    def test_load_from_string_dict_and_path(self, tmp_path: Path):
        text = dump_snapshot(_snapshot())
        path = tmp_path / "schedule.json"
        path.write_text(text, encoding="utf-8")
        assert load_snapshot(text) == _snapshot()
        assert load_snapshot(json.loads(text)) == _snapshot()
        assert load_snapshot(path) == _snapshot()

    def test_unknown_fields_ignored(self):
        data = json.loads(dump_snapshot(_snapshot()))
        data["parser_version"] = "9.9"
        assert load_snapshot(data) == _snapshot()

    def test_invalid_kind_rejected(self):
        with pytest.raises(ValidationError):
            load_snapshot({"kind": "storyboard"})

    def test_validate_reports_errors(self):
        assert validate_snapshot(json.loads(dump_snapshot(_snapshot()))) == []
        errors = validate_snapshot({"kind": "schedule", "days": [{"day_number": 0}]})
        assert len(errors) == 1
        assert "day_number" in errors[0]

    def test_expected_kind_enforced(self):
        text = dump_snapshot(_snapshot())
        assert load_snapshot(text, kind="schedule") == _snapshot()
        with pytest.raises(ValueError, match="Expected a script snapshot"):
            load_snapshot(text, kind="script")

    def test_validate_reports_shape_problems(self):
        scene = {"scene_number": "4"}
        errors = validate_snapshot(
            {
                "kind": "schedule",
                "scenes": [scene],
                "days": [{"day_number": 1, "scenes": [scene]}, {"day_number": 2, "scenes": [scene]}],
            }
        )
        assert errors == [
            "('scenes',): schedule snapshots carry scenes inside days",
            "('scenes',): scene 4 appears 3 times",
        ]
        assert validate_snapshot({"kind": "script", "days": [{"day_number": 1}]}) == [
            "('days',): script snapshots carry scenes, not days"
        ]

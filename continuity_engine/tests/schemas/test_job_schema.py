"""Tests for the ScheduleJob schema v1.0.0 load/dump/validate helpers."""
from __future__ import annotations

import json

import pytest

from continuity_engine.models import CastEntry, Scene, ShootDay
from continuity_engine.pipeline import DayOutcome, ScheduleJob, StageState
from continuity_engine.schemas import dump_job, load_job, validate_job


def _job() -> ScheduleJob:
    return ScheduleJob(
        schedule_id="sched-1",
        state=StageState.STAGE2_PROCESSING,
        generation=3,
        raw_text="DAY 1 ...",
        cast_list=[CastEntry(number=1, name="Alice Smith")],
        day_texts={1: "DAY 1 TEXT", 2: "DAY 2 TEXT"},
        skeleton={1: ShootDay(day_number=1), 2: ShootDay(day_number=2)},
        days={1: ShootDay(day_number=1, scenes=[Scene(scene_number="1", cast_refs=["1"])])},
        outcomes={1: DayOutcome(status="done", attempts=1), 2: DayOutcome()},
    )


class TestJobSchema:

    def test_reload_restores_int_day_keys(self):
        reloaded = load_job(dump_job(_job()))
        assert reloaded == _job()
        assert sorted(reloaded.skeleton) == [1, 2]
        assert reloaded.state is StageState.STAGE2_PROCESSING

    def test_reloaded_job_knows_what_is_pending(self):
        reloaded = load_job(dump_job(_job()))
        assert reloaded.pending_days() == [2]
        assert reloaded.needs_resume()

    def test_validate(self):
        data = json.loads(dump_job(_job()))
        assert validate_job(data) == []
        data["state"] = "stage3"
        assert validate_job(data) != []

    def test_other_schema_version_rejected(self):
        data = json.loads(dump_job(_job()))
        data["schema_version"] = "2.0.0"
        with pytest.raises(ValueError, match="schema_version"):
            load_job(data)
        assert validate_job(data) == ["('schema_version',): expected 1.0.0, got 2.0.0"]

"""Unit tests for the Change Classifier.

Covers:
  - Reordering across days: moved + added, with day additions and summary.
  - Same-key diffs: content, cast and timing changes reported separately;
    day change folded into a modification.
  - Renumbered scenes classified as modified with the match confidence;
    near misses left as a removal plus an addition.
  - Script text similarity bands and the unchanged threshold.
  - Idempotence: comparing a snapshot with itself yields no changes.
  - Deterministic ordering and amendment ids; kind mismatch rejected.
"""
from __future__ import annotations

import pytest

from continuity_engine.classifier import (
    classify_amendment,
    content_similarity,
    describe_content_change,
    summarize,
)
from continuity_engine.matching import FUZZY_CONFIDENCE_CAP
from continuity_engine.models import CastEntry, Scene, ShootDay, Snapshot
from continuity_engine.settings import MatchSettings


# ─────────────────────────────────────────────────────────────────────────────
# Helper factory
# ─────────────────────────────────────────────────────────────────────────────

_SLUGLINES = {
    "1": "INT. HOUSE - DAY",
    "2": "EXT. PARK - DAY",
    "3": "INT. CAR - NIGHT",
    "4": "EXT. BEACH - DAY",
}


def _settings() -> MatchSettings:
    return MatchSettings(_env_file=None)


def _scene(number: str, **overrides) -> Scene:
    data = {
        "scene_number": number,
        "slugline": _SLUGLINES.get(number, f"INT. SET {number} - DAY"),
        "cast_refs": ["1"],
    }
    data.update(overrides)
    return Scene(**data)


def _schedule(days) -> Snapshot:
    """*days* maps day number → list of scenes (or scene numbers)."""
    return Snapshot(
        kind="schedule",
        days=[
            ShootDay(
                day_number=n,
                date=f"2024-05-0{n}",
                location="STUDIO",
                scenes=[s if isinstance(s, Scene) else _scene(s) for s in scenes],
            )
            for n, scenes in days.items()
        ],
        cast_list=[CastEntry(number=1, name="Alice Smith")],
    )


def _script(*scenes) -> Snapshot:
    return Snapshot(kind="script", scenes=list(scenes))


def _numbers(changes):
    return [c.scene_number for c in changes]


# ─────────────────────────────────────────────────────────────────────────────
# Reordering across days
# ─────────────────────────────────────────────────────────────────────────────

class TestScheduleReorder:

    def _result(self):
        old = _schedule({1: ["1", "2", "3"]})
        new = _schedule({1: ["1", "3"], 2: ["2", "4"]})
        return classify_amendment(old, new, _settings())

    def test_scene_moved_between_days(self):
        result = self._result()
        assert _numbers(result.moved_scenes) == ["2"]
        moved = result.moved_scenes[0]
        assert (moved.old_day, moved.new_day) == (1, 2)
        assert moved.description == "Scene 2 moved from Day 1 to Day 2"

    def test_new_scene_added(self):
        result = self._result()
        assert _numbers(result.added_scenes) == ["4"]
        assert result.added_scenes[0].description == "Scene 4 added to Day 2"

    def test_nothing_else_reported(self):
        result = self._result()
        assert result.removed_scenes == []
        assert result.modified_scenes == []
        assert result.cast_changes == []
        assert result.timing_changes == []
        assert result.ambiguities == []

    def test_day_added(self):
        result = self._result()
        assert [d.day_number for d in result.added_days] == [2]
        assert result.added_days[0].scene_count == 2

    def test_summary(self):
        assert self._result().summary == "1 scene added, 1 scene moved, 1 day added"

    def test_scene_removed(self):
        old = _schedule({1: ["1", "2"]})
        new = _schedule({1: ["1"]})
        result = classify_amendment(old, new, _settings())
        assert _numbers(result.removed_scenes) == ["2"]
        assert result.removed_scenes[0].description == "Scene 2 removed from Day 1"


# ─────────────────────────────────────────────────────────────────────────────
# Same-key diffs
# ─────────────────────────────────────────────────────────────────────────────

class TestSameKeyChanges:

    def test_content_cast_and_timing_reported_separately(self):
        old = _schedule({1: [_scene("1", synopsis="Alice arrives", cast_refs=["1", "2"], pages="1")]})
        new = _schedule({1: [_scene("1", synopsis="Alice leaves", cast_refs=["1", "3"], pages="1 4/8")]})
        result = classify_amendment(old, new, _settings())

        assert _numbers(result.modified_scenes) == ["1"]
        assert result.modified_scenes[0].changed_fields == ["synopsis"]

        assert _numbers(result.cast_changes) == ["1"]
        assert result.cast_changes[0].cast_added == ["3"]
        assert result.cast_changes[0].cast_removed == ["2"]

        assert _numbers(result.timing_changes) == ["1"]
        assert result.timing_changes[0].changed_fields == ["pages"]
        assert result.moved_scenes == []

    def test_day_change_folded_into_modification(self):
        old = _schedule({1: [_scene("1", synopsis="Before")], 2: ["2"]})
        new = _schedule({1: ["2"], 2: [_scene("1", synopsis="After")]})
        result = classify_amendment(old, new, _settings())
        modified = {c.scene_number: c for c in result.modified_scenes}
        assert modified["1"].changed_fields == ["synopsis", "day"]
        assert _numbers(result.moved_scenes) == ["2"]

    def test_cast_order_change_is_a_cast_change(self):
        old = _script(_scene("1", cast_refs=["ALICE", "BOB"]))
        new = _script(_scene("1", cast_refs=["BOB", "ALICE"]))
        result = classify_amendment(old, new, _settings())
        assert _numbers(result.cast_changes) == ["1"]
        assert result.cast_changes[0].description == "Scene 1 cast changed: order changed"

    def test_timing_change_without_day_change(self):
        old = _schedule({1: [_scene("1", shoot_order=1), _scene("2", shoot_order=2)]})
        new = _schedule({1: [_scene("2", shoot_order=1), _scene("1", shoot_order=2)]})
        result = classify_amendment(old, new, _settings())
        assert _numbers(result.timing_changes) == ["1", "2"]
        assert result.moved_scenes == []


# ─────────────────────────────────────────────────────────────────────────────
# Renumbering
# ─────────────────────────────────────────────────────────────────────────────

class TestRenumbered:

    def test_renumbered_scene_is_modified_with_confidence(self):
        kitchen = dict(slugline="INT. KITCHEN - NIGHT", day_night="NIGHT", cast_refs=["ALICE", "BOB"])
        old = _script(_scene("12", **kitchen))
        new = _script(_scene("12A", **kitchen))
        result = classify_amendment(old, new, _settings())

        assert result.added_scenes == []
        assert result.removed_scenes == []
        assert len(result.modified_scenes) == 1
        change = result.modified_scenes[0]
        assert change.scene_number == "12A"
        assert change.old_scene_number == "12"
        assert change.source_key == "12"
        assert change.confidence == FUZZY_CONFIDENCE_CAP
        assert change.changed_fields == ["scene_number"]
        assert "please confirm" in change.description

    def test_near_miss_stays_added_and_removed(self):
        old = _script(_scene("5", slugline="INT. OFFICE", cast_refs=["1", "2"]))
        new = _script(_scene("9", slugline="INT. OFFICE LOBBY", cast_refs=["1", "3"]))
        result = classify_amendment(old, new, _settings())

        assert _numbers(result.removed_scenes) == ["5"]
        assert _numbers(result.added_scenes) == ["9"]
        assert result.modified_scenes == []
        assert [(a.old_key, a.new_key) for a in result.ambiguities] == [("5", "9")]


# ─────────────────────────────────────────────────────────────────────────────
# Script content
# ─────────────────────────────────────────────────────────────────────────────

class TestScriptContent:

    def test_punctuation_ignored(self):
        assert content_similarity("The quick brown fox jumps", "The quick brown fox jumps!") == 100

    def test_word_overlap(self):
        assert content_similarity("alpha beta gamma delta", "alpha beta gamma omega") == 60

    def test_empty_texts(self):
        assert content_similarity("", "") == 100
        assert content_similarity("Some words here", "") == 0

    @pytest.mark.parametrize(
        "similarity,expected",
        [
            (97, "Minor formatting changes"),
            (85, "Minor dialogue or action changes"),
            (60, "Significant content changes"),
            (10, "Major rewrite of scene"),
        ],
    )
    def test_describe_bands(self, similarity, expected):
        assert describe_content_change(similarity) == expected

    def test_rewrite_is_modified_with_similarity(self):
        old = _script(
            _scene("1", script_content="Alice walks into the kitchen and makes coffee."),
            _scene("2"),
        )
        new = _script(
            _scene("1", script_content="Thunder rolls over empty hills at midnight."),
            _scene("2"),
            _scene("3"),
        )
        result = classify_amendment(old, new, _settings())
        assert _numbers(result.modified_scenes) == ["1"]
        change = result.modified_scenes[0]
        assert change.changed_fields == ["script_content"]
        assert change.content_similarity == 0
        assert change.description == "Scene 1: Major rewrite of scene"
        assert _numbers(result.added_scenes) == ["3"]
        assert result.added_scenes[0].description == "Scene 3 added to the script"

    def test_formatting_change_is_not_a_modification(self):
        old = _script(_scene("1", script_content="ALICE: Where were you last night?"))
        new = _script(_scene("1", script_content="ALICE:  Where were you last night ?"))
        result = classify_amendment(old, new, _settings())
        assert not result.has_changes


# ─────────────────────────────────────────────────────────────────────────────
# Determinism
# ─────────────────────────────────────────────────────────────────────────────

class TestDeterminism:

    @pytest.mark.parametrize(
        "snapshot",
        [
            _schedule({1: ["1", "2", "3"]}),
            _schedule({1: ["1", "3"], 2: ["2", "4"]}),
            _script(_scene("1"), _scene("2A"), _scene("10")),
        ],
    )
    def test_self_comparison_has_no_changes(self, snapshot):
        result = classify_amendment(snapshot, snapshot.model_copy(deep=True), _settings())
        assert not result.has_changes
        assert result.all_scene_changes() == []
        assert result.summary == "No changes detected"

    def test_categories_sorted_naturally(self):
        old = _script(_scene("5"))
        new = _script(
            _scene("5"),
            _scene("10", slugline="EXT. DOCKS - NIGHT", cast_refs=["X"]),
            _scene("2", slugline="INT. ATTIC - DAY", cast_refs=["Y"]),
            _scene("1A", slugline="EXT. ROOF - DUSK", cast_refs=["Z"]),
        )
        result = classify_amendment(old, new, _settings())
        assert _numbers(result.added_scenes) == ["1A", "2", "10"]

    def test_same_inputs_same_result(self):
        old = _schedule({1: ["1", "2", "3"]})
        new = _schedule({1: ["1", "3"], 2: ["2", "4"]})
        first = classify_amendment(old, new, _settings())
        second = classify_amendment(old, new, _settings())
        assert first.amendment_id == second.amendment_id
        assert first.model_dump() == second.model_dump()

    def test_kind_mismatch_rejected(self):
        with pytest.raises(ValueError):
            classify_amendment(_script(_scene("1")), _schedule({1: ["1"]}), _settings())

    def test_summary_of_empty_result(self):
        snap = _script(_scene("1"))
        result = classify_amendment(snap, snap, _settings())
        assert summarize(result) == "No changes detected"

"""Unit tests for the Cast Resolver.

Covers:
  - Placeholder characters: id, initials, avatar colour, actor number.
  - Matching confirmed characters by actor name or character label.
  - Ordering, id uniqueness and idempotence of resolve_characters.
  - Cast list merging.
  - can_sync_cast reasons and sync_cast_to_scenes results.
"""
from __future__ import annotations

import pytest

from continuity_engine.cast_resolver import (
    AVATAR_PALETTE,
    can_sync_cast,
    cast_reference,
    derive_initials,
    merge_cast_lists,
    resolve_characters,
    sync_cast_to_scenes,
)
from continuity_engine.models import Breakdown, CastEntry, Character, Scene, ShootDay, Snapshot


# ─────────────────────────────────────────────────────────────────────────────
# Helper factory
# ─────────────────────────────────────────────────────────────────────────────

def _cast(*entries) -> list:
    return [CastEntry(number=n, name=name) for n, name in entries]


def _schedule(scenes, cast=None) -> Snapshot:
    return Snapshot(
        kind="schedule",
        days=[ShootDay(day_number=1, scenes=scenes)],
        cast_list=cast if cast is not None else _cast((1, "Alice Smith"), (2, "Bob")),
    )


def _breakdown(*scenes) -> Breakdown:
    return Breakdown(project_id="p1", script=Snapshot(kind="script", scenes=list(scenes)))


# ─────────────────────────────────────────────────────────────────────────────
# Placeholders
# ─────────────────────────────────────────────────────────────────────────────

class TestPlaceholders:

    def test_single_cast_entry_becomes_placeholder(self):
        out = resolve_characters([], _cast((1, "Alice Smith")))
        assert len(out) == 1
        character = out[0]
        assert character.id == "cast-1"
        assert character.name == "Alice Smith"
        assert character.initials == "AS"
        assert character.avatar_colour == AVATAR_PALETTE[1]
        assert character.actor_number == 1

    @pytest.mark.parametrize(
        "name,expected",
        [("Alice Smith", "AS"), ("jean luc picard", "JP"), ("Madonna", "MA"), ("", "??")],
    )
    def test_initials(self, name, expected):
        assert derive_initials(name) == expected

    def test_character_label_preferred_for_name(self):
        out = resolve_characters([], [CastEntry(number=4, name="Jane Doe", character="DETECTIVE")])
        assert out[0].name == "DETECTIVE"

    def test_existing_placeholder_refreshed_not_duplicated(self):
        existing = [Character(id="cast-1", name="Old Name", actor_number=1)]
        out = resolve_characters(existing, _cast((1, "New Name")))
        assert [(c.id, c.name, c.initials) for c in out] == [("cast-1", "New Name", "NN")]


# ─────────────────────────────────────────────────────────────────────────────
# Matching confirmed characters
# ─────────────────────────────────────────────────────────────────────────────

class TestMatching:

    def test_name_match_is_case_insensitive(self):
        characters = [Character(id="char-1", name="alice  smith")]
        out = resolve_characters(characters, _cast((3, "ALICE SMITH")))
        assert [(c.id, c.actor_number) for c in out] == [("char-1", 3)]

    def test_match_by_character_label(self):
        characters = [Character(id="c-det", name="Detective")]
        out = resolve_characters(characters, [CastEntry(number=2, name="Jane Doe", character="DETECTIVE")])
        assert [(c.id, c.actor_number) for c in out] == [("c-det", 2)]

    def test_character_bound_to_another_number_not_rematched(self):
        characters = [Character(id="char-1", name="Alice", actor_number=1)]
        out = resolve_characters(characters, _cast((1, "Alice"), (2, "Alice")))
        assert [c.id for c in out] == ["char-1", "cast-2"]

    def test_renumbered_actor_keeps_confirmed_character(self):
        characters = [Character(id="char-alice", name="Alice Smith", actor_number=1)]
        out = resolve_characters(characters, _cast((3, "Alice Smith")))
        assert [(c.id, c.name, c.actor_number) for c in out] == [("char-alice", "Alice Smith", 3)]

    def test_renumbering_frees_the_old_number(self):
        characters = [Character(id="char-alice", name="Alice Smith", actor_number=1)]
        out = resolve_characters(characters, _cast((1, "Zed Moore"), (3, "Alice Smith")))
        assert [(c.id, c.actor_number) for c in out] == [("cast-1", 1), ("char-alice", 3)]

    def test_placeholder_stays_with_its_number(self):
        characters = [Character(id="cast-2", name="Bob", actor_number=2)]
        out = resolve_characters(characters, _cast((1, "Bob"), (2, "Carol")))
        assert [(c.id, c.name, c.actor_number) for c in out] == [
            ("cast-1", "Bob", 1),
            ("cast-2", "Carol", 2),
        ]

    def test_inputs_not_mutated(self):
        characters = [Character(id="char-1", name="Alice Smith")]
        resolve_characters(characters, _cast((1, "Alice Smith")))
        assert characters[0].actor_number is None


# ─────────────────────────────────────────────────────────────────────────────
# Ordering and stability
# ─────────────────────────────────────────────────────────────────────────────

class TestOrdering:

    def test_numbered_first_then_by_name(self):
        characters = [Character(id="z", name="Zed"), Character(id="a", name="Amy")]
        out = resolve_characters(characters, _cast((2, "Bob"), (1, "Carol")))
        assert [c.id for c in out] == ["cast-1", "cast-2", "a", "z"]

    def test_ids_unique(self):
        cast = _cast(*[(n, f"Actor {n}") for n in range(1, 15)])
        out = resolve_characters([Character(id="x", name="Actor 3")], cast)
        ids = [c.id for c in out]
        assert len(ids) == len(set(ids)) == 14

    def test_idempotent(self):
        cast = _cast((2, "Bob"), (1, "Alice Smith"), (3, "Carol"))
        first = resolve_characters([Character(id="char-carol", name="carol")], cast)
        second = resolve_characters(first, cast)
        assert second == first

    def test_merge_cast_lists(self):
        merged = merge_cast_lists(_cast((1, "A"), (2, "B")), _cast((2, "B2"), (3, "C")))
        assert [(e.number, e.name) for e in merged] == [(1, "A"), (2, "B2"), (3, "C")]

    def test_cast_reference_lines(self):
        cast = [CastEntry(number=2, name="Jane", character="DETECTIVE"), CastEntry(number=1, name="Alice Smith")]
        assert cast_reference(cast) == "1. Alice Smith\n2. DETECTIVE"


# ─────────────────────────────────────────────────────────────────────────────
# Scene sync
# ─────────────────────────────────────────────────────────────────────────────

class TestCanSync:

    def test_no_schedule(self):
        assert can_sync_cast(None) == (False, "No schedule uploaded")

    def test_no_cast_list(self):
        ok, reason = can_sync_cast(_schedule([Scene(scene_number="1", cast_refs=["1"])], cast=[]))
        assert not ok
        assert reason == "Schedule has no cast list"

    def test_no_days(self):
        ok, reason = can_sync_cast(Snapshot(kind="schedule", cast_list=_cast((1, "A"))))
        assert not ok
        assert reason.startswith("Schedule has no shooting days")

    def test_no_cast_data(self):
        ok, reason = can_sync_cast(_schedule([Scene(scene_number="1")]))
        assert (ok, reason) == (False, "No cast data found in schedule scenes")

    def test_ready(self):
        assert can_sync_cast(_schedule([Scene(scene_number="1", cast_refs=["1"])])) == (True, None)


class TestSyncCastToScenes:

    def _inputs(self):
        schedule = _schedule(
            [
                Scene(scene_number="1", cast_refs=["1", "2"]),
                Scene(scene_number="2", cast_refs=["1"]),
                Scene(scene_number="3", cast_refs=["9"]),
            ]
        )
        breakdown = _breakdown(
            Scene(scene_number="1"),
            Scene(scene_number="2", cast_refs=["char-x"]),
            Scene(scene_number="3"),
        )
        return breakdown, schedule

    def test_empty_scenes_filled(self):
        breakdown, schedule = self._inputs()
        updated, result = sync_cast_to_scenes(breakdown, schedule)
        scenes = {s.scene_number: s for s in updated.script.scenes}
        assert scenes["1"].cast_refs == ["cast-1", "cast-2"]
        assert scenes["2"].cast_refs == ["char-x"]
        assert scenes["3"].cast_refs == []
        assert result.success
        assert result.scenes_updated == 1
        assert result.characters_created == 2

    def test_unknown_cast_number_reported(self):
        breakdown, schedule = self._inputs()
        _, result = sync_cast_to_scenes(breakdown, schedule)
        assert result.errors == ["Scene 3: Cast #9 not found in cast list"]

    def test_scene_results(self):
        breakdown, schedule = self._inputs()
        _, result = sync_cast_to_scenes(breakdown, schedule)
        assert [r.scene_number for r in result.scene_results] == ["1", "3"]
        first = result.scene_results[0]
        assert first.cast_numbers == [1, 2]
        assert first.character_names == ["Alice Smith", "Bob"]
        assert first.new_character_ids == ["cast-1", "cast-2"]
        assert first.matched_character_ids == []

    def test_overwrite_existing(self):
        breakdown, schedule = self._inputs()
        updated, result = sync_cast_to_scenes(breakdown, schedule, overwrite_existing=True)
        scenes = {s.scene_number: s for s in updated.script.scenes}
        assert scenes["2"].cast_refs == ["cast-1"]
        assert result.scenes_updated == 2

    def test_input_not_mutated(self):
        breakdown, schedule = self._inputs()
        before = breakdown.model_dump()
        sync_cast_to_scenes(breakdown, schedule)
        assert breakdown.model_dump() == before

    def test_defaults_to_breakdown_schedule(self):
        breakdown, schedule = self._inputs()
        breakdown = breakdown.model_copy(update={"schedule": schedule})
        _, result = sync_cast_to_scenes(breakdown)
        assert result.scenes_updated == 1

    def test_unsyncable_schedule(self):
        breakdown, _ = self._inputs()
        updated, result = sync_cast_to_scenes(breakdown)
        assert updated is breakdown
        assert not result.success
        assert result.errors == ["No schedule uploaded"]

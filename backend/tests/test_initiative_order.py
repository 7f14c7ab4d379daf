from dataclasses import replace
from random import Random

from dndtracker.core.engine.state import (
    CombatantEntry,
    CombatantState,
    EncounterState,
    LairMarker,
    visible_order,
)
from dndtracker.core.engine.rules.sequencer import (
    build_order,
    insert_new,
    lair_initiatives,
    place_marker,
    prune_orphan_markers,
    reconcile_turn_index,
)


def _c(cid, init, tie=0.0, lair=None):
    return CombatantState(
        id=cid,
        name=cid,
        hp_current=10,
        hp_max=10,
        initiative=init,
        initiative_tie_breaker=tie,
        lair_initiative=lair,
    )


def _ids(order):
    return [e.entry_id for e in order]


def test_equal_initiative_higher_tie_breaker_first():
    combatants = {"low": _c("low", 15, 3), "high": _c("high", 15, 7)}

    assert _ids(build_order(combatants, [])) == ["high", "low"]


def test_order_is_sorted_by_initiative_then_tie_breaker():
    rng = Random(7)
    combatants = {}
    for i in range(30):
        combatants[f"c{i}"] = _c(f"c{i}", rng.randint(1, 20), round(rng.random(), 3))

    order = build_order(combatants, [])
    keys = [combatants[e.combatant_id].initiative_key for e in order]

    assert keys == sorted(keys, reverse=True)


def test_unrolled_initiative_sorts_as_zero():
    combatants = {"none": _c("none", None), "neg": _c("neg", -1), "one": _c("one", 1)}

    assert _ids(build_order(combatants, [])) == ["one", "none", "neg"]


def test_lair_marker_loses_ties():
    combatants = {
        "dragon": _c("dragon", 20, 2.0, lair=20),
        "fighter": _c("fighter", 20, 1.0),
        "rogue": _c("rogue", 18),
    }

    order = build_order(combatants, lair_initiatives(combatants))

    assert _ids(order) == ["dragon", "fighter", "lair-20", "rogue"]


def test_lair_marker_with_nobody_above_goes_last():
    combatants = {"a": _c("a", 12, lair=20), "b": _c("b", 5)}

    order = build_order(combatants, lair_initiatives(combatants))

    assert _ids(order) == ["a", "b", "lair-20"]


def test_markers_sharing_an_anchor_keep_initiative_order():
    combatants = {"a": _c("a", 20, lair=15), "b": _c("b", 10, lair=18)}

    order = build_order(combatants, lair_initiatives(combatants))

    assert _ids(order) == ["a", "lair-18", "lair-15", "b"]


def test_insert_new_slots_in_before_first_lower_entry():
    combatants = {"a": _c("a", 20), "b": _c("b", 10), "c": _c("c", 14, 0.5)}
    order = (CombatantEntry("a"), CombatantEntry("b"))

    assert _ids(insert_new(order, combatants["c"], combatants)) == ["a", "c", "b"]

    combatants["d"] = _c("d", 1)
    assert _ids(insert_new(order, combatants["d"], combatants)) == ["a", "b", "d"]


def test_insert_new_goes_ahead_of_an_equal_marker():
    combatants = {"a": _c("a", 20, lair=15), "n": _c("n", 15)}
    order = (CombatantEntry("a"), LairMarker(15))

    assert _ids(insert_new(order, combatants["n"], combatants)) == ["a", "n", "lair-15"]


def test_place_marker_is_idempotent():
    combatants = {"a": _c("a", 20), "b": _c("b", 5)}
    order = (CombatantEntry("a"), CombatantEntry("b"))

    once = place_marker(order, 20, combatants)
    twice = place_marker(once, 20, combatants)

    assert _ids(twice) == ["a", "lair-20", "b"]


def test_orphan_markers_are_pruned():
    combatants = {"a": _c("a", 10)}
    order = (CombatantEntry("a"), LairMarker(20))

    kept, pruned = prune_orphan_markers(order, combatants)

    assert _ids(kept) == ["a"]
    assert pruned == ["lair-20"]


def test_turn_pointer_follows_active_entry():
    old = (CombatantEntry("a"), CombatantEntry("b"), CombatantEntry("c"))

    assert reconcile_turn_index(old, 1, (CombatantEntry("x"),) + old) == 2
    # active entry gone -> its successor
    assert reconcile_turn_index(old, 1, (CombatantEntry("a"), CombatantEntry("c"))) == 1
    # last entry gone -> wrap to the top
    assert reconcile_turn_index(old, 2, (CombatantEntry("a"), CombatantEntry("b"))) == 0


def test_markers_hidden_outside_active_combat():
    state = EncounterState(
        id="e1",
        combatants={"a": _c("a", 10, lair=20)},
        turn_order=(CombatantEntry("a"), LairMarker(20)),
    )

    assert _ids(visible_order(state)) == ["a"]
    assert _ids(visible_order(replace(state, status="active"))) == ["a", "lair-20"]

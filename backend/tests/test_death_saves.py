import pytest

from dndtracker.core.engine.state import CombatantState, EncounterState
from dndtracker.core.engine.commands import RecordDeathSave
from dndtracker.core.engine.rules import ledger
from dndtracker.core.engine.rules.apply import apply_command
from dndtracker.core.errors import ValidationError


def _down():
    return CombatantState(id="P", name="Paladin", hp_current=0, hp_max=30, is_player_character=True)


def test_three_failures_is_dead():
    c = _down()
    for _ in range(3):
        c = ledger.record_death_save(c, success=False)

    assert c.is_dead is True
    with pytest.raises(ValidationError) as exc:
        ledger.record_death_save(c, success=True)
    assert exc.value.code == "DEATH_SAVES_DONE"


def test_natural_one_counts_twice():
    c = ledger.record_death_save(_down(), success=False, critical=True)

    assert c.death_save_failures == 2


def test_natural_20_revives_with_one_hp():
    state = EncounterState(id="e1", combatants={"P": _down()})
    state, _ = apply_command(state, RecordDeathSave(combatant_id="P", success=False))

    state, ev = apply_command(
        state, RecordDeathSave(combatant_id="P", success=True, critical=True)
    )

    p = state.combatants["P"]
    assert ev[0]["type"] == "DeathSaveRecorded"
    assert p.hp_current == 1
    assert p.death_save_failures == 0


def test_death_saves_only_at_zero_hp():
    state = EncounterState(
        id="e1",
        combatants={"P": CombatantState(id="P", name="Paladin", hp_current=5, hp_max=30)},
    )

    _, ev = apply_command(state, RecordDeathSave(combatant_id="P", success=True))

    assert ev[0]["payload"]["code"] == "NOT_DYING"

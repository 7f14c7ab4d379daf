import pytest

from dndtracker.config import TrackerSettings
from dndtracker.core.engine.commands import AddCombatant, ChangeHP, StartCombat
from dndtracker.core.engine.rules.ledger import HPChange
from dndtracker.core.engine.state import ConcentrationPrompt
from dndtracker.core.errors import PersistenceError, ValidationError
from dndtracker.core.persistence.runtime_store import (
    InMemoryEncounterStore,
    is_temporary_id,
)
from dndtracker.core.runtime import EncounterRuntime
from dndtracker.core.schemas import CombatantData


class FlakyStore(InMemoryEncounterStore):
    def __init__(self):
        super().__init__()
        self.fail = False

    def save(self, encounter_id, state, **kwargs):
        if self.fail:
            raise PersistenceError("store unreachable", encounter_id)
        return super().save(encounter_id, state, **kwargs)


class FailOnSave(InMemoryEncounterStore):
    """Fails only the n-th save (1-based)."""

    def __init__(self, n):
        super().__init__()
        self.n = n
        self.calls = 0

    def save(self, encounter_id, state, **kwargs):
        self.calls += 1
        if self.calls == self.n:
            raise PersistenceError("store unreachable", encounter_id)
        return super().save(encounter_id, state, **kwargs)


class NoLoadStore(InMemoryEncounterStore):
    def load(self, encounter_id):
        raise AssertionError("temporary encounters must not be loaded")


def _add(rt, cid, **kw):
    data = dict(id=cid, name=cid.title(), hp_max=30)
    data.update(kw)
    return rt.dispatch(AddCombatant(combatant=CombatantData(**data)))


def test_temporary_encounter_gets_durable_id_on_first_save(settings):
    store = InMemoryEncounterStore()
    rt = EncounterRuntime.create(store, "Ambush", settings=settings)
    assert is_temporary_id(rt.state.id)

    _add(rt, "orc")

    assert not is_temporary_id(rt.state.id)
    assert list(store.saves) == [rt.state.id]

    reopened = EncounterRuntime.open(store, rt.state.id, settings=settings)
    assert reopened.state == rt.state


def test_opening_a_temporary_id_skips_the_store(settings):
    rt = EncounterRuntime.open(NoLoadStore(), "temp_abc", settings=settings)

    assert rt.state.id == "temp_abc"
    assert rt.state.combatants == {}


def test_failed_save_restores_previous_snapshot(settings):
    store = FlakyStore()
    rt = EncounterRuntime.create(store, settings=settings)
    _add(rt, "orc")
    before = rt.state

    seen = []
    rt.subscribe(lambda state, events: seen.append((state, events)))
    store.fail = True

    with pytest.raises(PersistenceError) as exc:
        rt.dispatch(ChangeHP(combatant_id="orc", change=HPChange(kind="damage", amount=5)))

    assert exc.value.retryable is True
    assert rt.state is before
    # optimistic update, then the rollback
    assert seen[0][0].combatants["orc"].hp_current == 25
    assert seen[-1] == (before, [])


def test_rejected_intent_raises_and_saves_nothing(settings):
    store = InMemoryEncounterStore()
    rt = EncounterRuntime.create(store, settings=settings)
    _add(rt, "orc")
    saves = len(store.saves[rt.state.id])
    before = rt.state

    with pytest.raises(ValidationError) as exc:
        rt.dispatch(StartCombat())
        rt.dispatch(StartCombat())

    assert exc.value.code == "COMBAT_ALREADY_ACTIVE"
    assert rt.state.status == "active"
    assert before.status == "preparing"
    assert len(store.saves[rt.state.id]) == saves + 1


def test_raw_dict_commands(settings):
    rt = EncounterRuntime.create(InMemoryEncounterStore(), settings=settings)

    events = rt.dispatch(
        {"type": "AddCombatant", "combatant": {"id": "x", "name": "X", "hp_max": 9}}
    )
    assert events[0]["type"] == "CombatantAdded"

    with pytest.raises(ValidationError) as exc:
        rt.dispatch({"type": "Teleport", "combatant_id": "x"})
    assert exc.value.code == "MALFORMED_COMMAND"

    with pytest.raises(ValidationError) as exc:
        rt.dispatch({"type": "UpdateCombatant", "combatant_id": "x", "patch": {"hp_max": -1}})
    assert exc.value.code == "MALFORMED_COMMAND"


def test_npc_concentration_is_rolled_automatically(settings, scripted_dice):
    rt = EncounterRuntime.create(
        InMemoryEncounterStore(), settings=settings, dice=scripted_dice([9])
    )
    _add(rt, "mage", concentration=True)

    events = rt.change_hp("mage", "-10")

    assert [e["type"] for e in events] == [
        "HPChanged",
        "ConcentrationCheckRequired",
        "ConcentrationBroken",
    ]
    assert rt.state.combatants["mage"].concentration is False
    assert rt.pending_prompts() == []


def test_npc_concentration_kept_on_high_roll(settings, scripted_dice):
    rt = EncounterRuntime.create(
        InMemoryEncounterStore(), settings=settings, dice=scripted_dice([12])
    )
    _add(rt, "mage", concentration=True)

    rt.change_hp("mage", "-10")

    assert rt.state.combatants["mage"].concentration is True
    assert rt.state.pending_concentration == ()


def test_player_concentration_waits_for_the_table(settings, scripted_dice):
    dice = scripted_dice([])
    rt = EncounterRuntime.create(InMemoryEncounterStore(), settings=settings, dice=dice)
    _add(rt, "cleric", concentration=True, is_player_character=True)

    rt.change_hp("cleric", "-22")

    assert dice.calls == []
    assert rt.pending_prompts() == [
        ConcentrationPrompt(combatant_id="cleric", dc=11, damage=22, is_player_character=True)
    ]

    rt.dispatch({"type": "ResolveConcentration", "combatant_id": "cleric", "maintained": True})
    assert rt.pending_prompts() == []
    assert rt.state.combatants["cleric"].concentration is True


def test_player_reminder_can_be_switched_off():
    settings = TrackerSettings(concentration_check_reminder=False)
    rt = EncounterRuntime.create(InMemoryEncounterStore(), settings=settings)
    _add(rt, "cleric", concentration=True, is_player_character=True)

    rt.change_hp("cleric", "-5")

    assert len(rt.state.pending_concentration) == 1
    assert rt.pending_prompts() == []


def test_dice_failure_leaves_prompt_pending(settings, broken_dice):
    rt = EncounterRuntime.create(InMemoryEncounterStore(), settings=settings, dice=broken_dice)
    _add(rt, "mage", concentration=True)

    events = rt.change_hp("mage", "-4")

    assert [e["type"] for e in events] == ["HPChanged", "ConcentrationCheckRequired"]
    assert rt.state.combatants["mage"].hp_current == 26
    assert len(rt.pending_prompts()) == 1


def test_recharge_rolled_at_turn_start(settings, scripted_dice):
    dice = scripted_dice([6])
    rt = EncounterRuntime.create(InMemoryEncounterStore(), settings=settings, dice=dice)
    _add(
        rt,
        "hydra",
        initiative=15,
        recharge_abilities=[{"name": "Breath", "recharge": "5-6", "available": False}],
    )

    events = rt.dispatch(StartCombat())

    assert dice.calls == ["1d6"]
    assert events[-1]["type"] == "RechargeRolled"
    assert rt.state.combatants["hydra"].recharge_abilities["Breath"].available is True
    assert rt.pending_prompts() == []


def test_recharge_left_for_the_table_when_auto_resolve_is_off():
    settings = TrackerSettings(auto_resolve_recharge=False)
    rt = EncounterRuntime.create(InMemoryEncounterStore(), settings=settings)
    _add(
        rt,
        "hydra",
        initiative=15,
        recharge_abilities=[{"name": "Breath", "available": False}],
    )

    rt.dispatch(StartCombat())

    assert [p.ability for p in rt.pending_prompts()] == ["Breath"]


def test_unsubscribe_stops_notifications(settings):
    rt = EncounterRuntime.create(InMemoryEncounterStore(), settings=settings)
    seen = []
    unsubscribe = rt.subscribe(lambda state, events: seen.append(events))

    _add(rt, "orc")
    unsubscribe()
    _add(rt, "goblin")

    assert len(seen) == 1
    assert seen[0][0]["type"] == "CombatantAdded"


def test_failed_follow_up_save_keeps_the_applied_intent(settings, scripted_dice):
    # add -> save 1, damage -> save 2, automatic concentration roll -> save 3
    store = FailOnSave(3)
    rt = EncounterRuntime.create(store, settings=settings, dice=scripted_dice([4]))
    _add(rt, "mage", hp_max=20, concentration=True)

    events = rt.dispatch(
        ChangeHP(combatant_id="mage", change=HPChange(kind="damage", amount=10))
    )

    assert [e["type"] for e in events] == ["HPChanged", "ConcentrationCheckRequired"]
    mage = rt.state.combatants["mage"]
    assert mage.hp_current == 10
    assert mage.concentration is True
    assert [p.combatant_id for p in rt.pending_prompts()] == ["mage"]

    saved = store.load(rt.state.id)
    assert saved.combatants["mage"].hp_current == 10
    assert len(saved.pending_concentration) == 1


def test_unknown_recharge_range_is_malformed(settings):
    rt = EncounterRuntime.create(InMemoryEncounterStore(), settings=settings)

    with pytest.raises(ValidationError) as exc:
        rt.dispatch(
            {
                "type": "AddCombatant",
                "combatant": {
                    "id": "wyrm",
                    "name": "Wyrm",
                    "hp_max": 40,
                    "recharge_abilities": [{"name": "Breath", "recharge": "short rest"}],
                },
            }
        )

    assert exc.value.code == "MALFORMED_COMMAND"
    assert rt.state.combatants == {}

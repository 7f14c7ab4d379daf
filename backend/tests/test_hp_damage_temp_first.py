from dndtracker.core.engine.state import CombatantState
from dndtracker.core.engine.rules.ledger import HPChange, apply_hp_delta, apply_hp_change


def _c(hp=20, temp=0, hp_max=20, modifier=0):
    return CombatantState(
        id="A",
        name="A",
        hp_current=hp,
        hp_max=hp_max,
        temp_hp=temp,
        max_hp_modifier=modifier,
    )


def test_damage_spills_over_temp_hp():
    # 5 temp absorb the first 5 of 8, the rest comes off hp
    result = apply_hp_delta(_c(hp=20, temp=5), HPChange(kind="damage", amount=8))

    assert result.hp == 17
    assert result.temp_hp == 0


def test_damage_within_temp_hp_leaves_hp_alone():
    for temp in range(1, 10):
        for d in range(1, temp + 1):
            result = apply_hp_delta(_c(hp=12, temp=temp), HPChange(kind="damage", amount=d))
            assert result.hp == 12
            assert result.temp_hp == temp - d


def test_damage_past_temp_hp_never_goes_below_zero():
    for hp in (0, 1, 7, 20):
        for temp in (0, 3):
            for d in (temp + 1, temp + 10, temp + 50):
                result = apply_hp_delta(
                    _c(hp=hp, temp=temp), HPChange(kind="damage", amount=d)
                )
                assert result.temp_hp == 0
                assert result.hp == max(0, hp - (d - temp))


def test_heal_caps_at_effective_max():
    c = _c(hp=10, hp_max=20, modifier=-5)

    assert apply_hp_delta(c, HPChange(kind="heal", amount=3)).hp == 13
    assert apply_hp_delta(c, HPChange(kind="heal", amount=100)).hp == 15

    buffed = _c(hp=20, hp_max=20, modifier=10)
    assert apply_hp_delta(buffed, HPChange(kind="heal", amount=100)).hp == 30


def test_heal_leaves_temp_hp_untouched():
    result = apply_hp_delta(_c(hp=5, temp=4), HPChange(kind="heal", amount=3))

    assert result.hp == 8
    assert result.temp_hp == 4


def test_set_clamps_to_range():
    c = _c(hp=5, temp=2)

    assert apply_hp_delta(c, HPChange(kind="set", amount=12)).hp == 12
    assert apply_hp_delta(c, HPChange(kind="set", amount=99)).hp == 20
    assert apply_hp_delta(c, HPChange(kind="set", amount=0)).hp == 0
    assert apply_hp_delta(c, HPChange(kind="set", amount=12)).temp_hp == 2


def test_zero_amount_is_a_no_op():
    c = _c(hp=9, temp=3)
    for kind in ("heal", "damage"):
        updated, outcome = apply_hp_change(c, HPChange(kind=kind, amount=0))
        assert updated == c
        assert outcome.bloodied is False
        assert outcome.concentration.required is False


def test_healing_from_zero_clears_death_saves():
    c = CombatantState(
        id="A",
        name="A",
        hp_current=0,
        hp_max=10,
        death_save_successes=1,
        death_save_failures=2,
    )

    updated, _ = apply_hp_change(c, HPChange(kind="heal", amount=4))

    assert updated.hp_current == 4
    assert updated.death_save_successes == 0
    assert updated.death_save_failures == 0

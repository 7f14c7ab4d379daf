import pytest

from dndtracker.core.engine.dice import RandomDiceRoller, notation_with_bonus, parse_dice
from dndtracker.core.errors import RollCollaboratorError


@pytest.mark.parametrize(
    "notation,parsed",
    [("2d6+3", (2, 6, 3)), ("d20", (1, 20, 0)), ("1d20 - 1", (1, 20, -1)), ("4D8", (4, 8, 0))],
)
def test_parse_dice(notation, parsed):
    assert parse_dice(notation) == parsed


def test_notation_with_bonus():
    assert notation_with_bonus(20, 0) == "1d20"
    assert notation_with_bonus(20, 3) == "1d20+3"
    assert notation_with_bonus(20, -2) == "1d20-2"


def test_seeded_rolls_repeat():
    a = RandomDiceRoller(seed=5).roll("3d6+2")
    b = RandomDiceRoller(seed=5).roll("3d6+2")

    assert a == b
    assert len(a.rolls) == 3
    assert a.total == sum(a.rolls) + 2
    assert all(1 <= r <= 6 for r in a.rolls)


def test_bad_notation_is_a_collaborator_error():
    with pytest.raises(RollCollaboratorError) as exc:
        RandomDiceRoller().roll("fireball")
    assert exc.value.notation == "fireball"

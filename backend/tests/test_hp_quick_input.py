import pytest
from pydantic import ValidationError

from dndtracker.core.engine.rules.ledger import HPChange
from dndtracker.core.errors import ValidationError as TrackerValidationError


@pytest.mark.parametrize(
    "raw,kind,amount",
    [
        ("+5", "heal", 5),
        ("-8", "damage", 8),
        ("12", "set", 12),
        ("  +3 ", "heal", 3),
        ("-0", "damage", 0),
    ],
)
def test_quick_input_parses(raw, kind, amount):
    change = HPChange.parse(raw)

    assert change.kind == kind
    assert change.amount == amount


@pytest.mark.parametrize("raw", ["abc", "", "  ", "-", "+x"])
def test_quick_input_without_a_number_is_rejected(raw):
    with pytest.raises(TrackerValidationError) as exc:
        HPChange.parse(raw)

    assert exc.value.code == "MALFORMED_HP_INPUT"


def test_negative_amount_rejected():
    with pytest.raises(ValidationError):
        HPChange(kind="damage", amount=-3)

from __future__ import annotations

import re
from typing import Iterable

from dndtracker.config import NamingMode

_ROMAN = [
    (1000, "M"), (900, "CM"), (500, "D"), (400, "CD"),
    (100, "C"), (90, "XC"), (50, "L"), (40, "XL"),
    (10, "X"), (9, "IX"), (5, "V"), (4, "IV"), (1, "I"),
]


def to_roman(num: int) -> str:
    out = ""
    for value, numeral in _ROMAN:
        while num >= value:
            out += numeral
            num -= value
    return out


def _letter(index: int) -> str:
    # A..Z, then AA, AB, ...
    if index <= 26:
        return chr(64 + index)
    return chr(64 + (index - 1) // 26) + chr(65 + (index - 1) % 26)


def unique_name(
    base_name: str, existing_names: Iterable[str], mode: NamingMode = "letter"
) -> str:
    """'Goblin' with two goblins already present -> 'Goblin C' (or 'Goblin 3', 'Goblin III')."""
    pattern = re.compile(rf"^{re.escape(base_name)}(\s+\S+)?$")
    taken = [n for n in existing_names if pattern.match(n)]
    if not taken:
        return base_name
    index = len(taken) + 1
    if mode == "number":
        suffix = str(index)
    elif mode == "roman":
        suffix = to_roman(index)
    else:
        suffix = _letter(index)
    return f"{base_name} {suffix}"

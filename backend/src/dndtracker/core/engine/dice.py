from __future__ import annotations

import re
from random import Random
from typing import Optional, Protocol, Tuple

from pydantic import BaseModel, Field

from dndtracker.core.errors import RollCollaboratorError

_DICE_RE = re.compile(r"^\s*(\d*)d(\d+)\s*([+-]\s*\d+)?\s*$", re.IGNORECASE)


class DiceRoll(BaseModel):
    notation: str
    rolls: list[int] = Field(default_factory=list)
    modifier: int = 0
    total: int


class DiceRoller(Protocol):
    def roll(self, notation: str) -> DiceRoll: ...


def parse_dice(notation: str) -> Tuple[int, int, int]:
    """'2d6+3' -> (2, 6, 3); 'd20' -> (1, 20, 0)."""
    m = _DICE_RE.match(notation)
    if not m:
        raise ValueError(f"Unsupported dice formula: {notation!r}")
    n = int(m.group(1)) if m.group(1) else 1
    d = int(m.group(2))
    mod = m.group(3)
    k = int(mod.replace(" ", "")) if mod else 0
    if n < 1 or d < 1:
        raise ValueError(f"Unsupported dice formula: {notation!r}")
    return n, d, k


def notation_with_bonus(sides: int, bonus: int, count: int = 1) -> str:
    if bonus == 0:
        return f"{count}d{sides}"
    sign = "+" if bonus > 0 else "-"
    return f"{count}d{sides}{sign}{abs(bonus)}"


class RandomDiceRoller:
    """Uniform rolls from a (seedable) Random instance."""

    def __init__(self, seed: Optional[int] = None) -> None:
        self.rng = Random(seed)

    def roll(self, notation: str) -> DiceRoll:
        try:
            n, d, k = parse_dice(notation)
        except ValueError as e:
            raise RollCollaboratorError(str(e), notation=notation) from e
        rolls = [self.rng.randint(1, d) for _ in range(n)]
        return DiceRoll(notation=notation, rolls=rolls, modifier=k, total=sum(rolls) + k)

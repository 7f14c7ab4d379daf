"""Resource ledger: hit points, temporary hit points and limited-use resources.

Every function here is pure. It takes a combatant and returns a new one (or a plain
result object) and never touches the encounter.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from dndtracker.core.engine.dice import DiceRoll, DiceRoller, notation_with_bonus
from dndtracker.core.engine.state import CombatantState
from dndtracker.core.errors import ValidationError

HPKind = Literal["heal", "damage", "set"]

_LEADING_INT_RE = re.compile(r"^\s*(\d+)")
_RECHARGE_TAG_RE = re.compile(r"\{@recharge\s*(\d*)\s*\}", re.IGNORECASE)
_FIRST_INT_RE = re.compile(r"(\d+)")


class HPChange(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: HPKind
    amount: int = Field(ge=0)

    @classmethod
    def parse(cls, raw: str) -> "HPChange":
        """Quick-entry form: '+5' heals, '-8' damages, '12' sets hp to 12."""
        trimmed = raw.strip()
        if trimmed.startswith("+"):
            return cls(kind="heal", amount=_leading_int(trimmed[1:], raw))
        if trimmed.startswith("-"):
            return cls(kind="damage", amount=_leading_int(trimmed[1:], raw))
        return cls(kind="set", amount=_leading_int(trimmed, raw))


def _leading_int(text: str, raw: str) -> int:
    m = _LEADING_INT_RE.match(text)
    if not m:
        raise ValidationError("MALFORMED_HP_INPUT", "Expected a number", {"input": raw})
    return int(m.group(1))


@dataclass(frozen=True)
class HPResult:
    hp: int
    temp_hp: int


@dataclass(frozen=True)
class ConcentrationCheck:
    required: bool
    dc: int = 0
    damage: int = 0


@dataclass(frozen=True)
class HPOutcome:
    hp_before: int
    hp_after: int
    temp_before: int
    temp_after: int
    bloodied: bool
    concentration: ConcentrationCheck


NO_CHECK = ConcentrationCheck(required=False)


def apply_hp_delta(c: CombatantState, change: HPChange) -> HPResult:
    """
    heal   -> hp up to effective max, temp hp untouched
    damage -> temp hp absorbs first, the rest comes off hp (never below 0)
    set    -> hp replaced (clamped to [0, max]), temp hp untouched
    """
    hp, temp = c.hp_current, c.temp_hp
    max_hp = c.effective_max_hp

    if change.kind == "set":
        return HPResult(hp=max(0, min(max_hp, change.amount)), temp_hp=temp)

    if change.amount == 0:
        return HPResult(hp=hp, temp_hp=temp)

    if change.kind == "heal":
        return HPResult(hp=min(max_hp, hp + change.amount), temp_hp=temp)

    damage = change.amount
    if temp >= damage:
        return HPResult(hp=hp, temp_hp=temp - damage)
    remaining = damage - temp
    return HPResult(hp=max(0, hp - remaining), temp_hp=0)


def hp_percent(hp: int, effective_max: int) -> float:
    if effective_max <= 0:
        return 100.0
    return max(0.0, min(100.0, hp / effective_max * 100))


def detect_bloodied(before_pct: float, after_pct: float) -> bool:
    return before_pct >= 50 and 0 < after_pct < 50


def check_concentration(
    c: CombatantState,
    hp_before: int,
    temp_before: int,
    hp_after: int,
    temp_after: int,
) -> ConcentrationCheck:
    if not c.concentration:
        return NO_CHECK
    hp_drop = max(0, hp_before - hp_after)
    temp_drop = max(0, temp_before - temp_after)
    if hp_drop == 0 and temp_drop == 0:
        return NO_CHECK
    damage = max(hp_drop, temp_drop, hp_drop + temp_drop)
    return ConcentrationCheck(required=True, dc=max(10, damage // 2), damage=damage)


def apply_hp_change(
    c: CombatantState, change: HPChange
) -> Tuple[CombatantState, HPOutcome]:
    """Apply a change and work out the notifications it triggers."""
    result = apply_hp_delta(c, change)
    max_hp = c.effective_max_hp

    updated = replace(c, hp_current=result.hp, temp_hp=result.temp_hp)
    # back above 0 -> no longer dying
    if c.hp_current == 0 and result.hp > 0:
        updated = clear_death_saves(updated)

    outcome = HPOutcome(
        hp_before=c.hp_current,
        hp_after=result.hp,
        temp_before=c.temp_hp,
        temp_after=result.temp_hp,
        bloodied=detect_bloodied(
            hp_percent(c.hp_current, max_hp), hp_percent(result.hp, max_hp)
        ),
        concentration=check_concentration(
            c, c.hp_current, c.temp_hp, result.hp, result.temp_hp
        ),
    )
    return updated, outcome


def clamp_hp(c: CombatantState) -> CombatantState:
    """Re-establish 0 <= hp <= effective max after a max-hp edit."""
    hp = max(0, min(c.effective_max_hp, c.hp_current))
    if hp == c.hp_current:
        return c
    return replace(c, hp_current=hp)


def set_temp_hp(
    c: CombatantState, temp_hp: int
) -> Tuple[CombatantState, ConcentrationCheck]:
    """Overwrite temp hp. Losing some counts as damage for concentration."""
    updated = replace(c, temp_hp=temp_hp)
    check = check_concentration(c, c.hp_current, c.temp_hp, c.hp_current, temp_hp)
    return updated, check


# ---------- concentration ----------


def resolve_concentration(
    c: CombatantState, dc: int, total: int
) -> Tuple[CombatantState, bool]:
    maintained = total >= dc
    if maintained or not c.concentration:
        return c, maintained
    return replace(c, concentration=False), False


def roll_concentration_save(
    c: CombatantState, dc: int, dice: DiceRoller
) -> Tuple[CombatantState, DiceRoll, bool]:
    roll = dice.roll(notation_with_bonus(20, c.concentration_bonus))
    updated, maintained = resolve_concentration(c, dc, roll.total)
    return updated, roll, maintained


# ---------- limited-use resources ----------


def spend_spell_slot(c: CombatantState, level: int) -> CombatantState:
    pool = c.spell_slots.get(level)
    if pool is None:
        raise ValidationError(
            "NO_SUCH_SLOT", "Combatant has no slots of that level", {"level": level}
        )
    if pool.current <= 0:
        raise ValidationError(
            "SLOT_EXHAUSTED", "No spell slots left at that level", {"level": level}
        )
    slots = dict(c.spell_slots)
    slots[level] = pool.spend()
    return replace(c, spell_slots=slots)


def restore_spell_slot(c: CombatantState, level: int) -> CombatantState:
    pool = c.spell_slots.get(level)
    if pool is None:
        raise ValidationError(
            "NO_SUCH_SLOT", "Combatant has no slots of that level", {"level": level}
        )
    slots = dict(c.spell_slots)
    slots[level] = pool.restore()
    return replace(c, spell_slots=slots)


def use_daily_ability(c: CombatantState, name: str) -> CombatantState:
    pool = c.daily_uses.get(name)
    if pool is None:
        raise ValidationError("NO_SUCH_ABILITY", "Unknown daily ability", {"ability": name})
    if pool.current <= 0:
        raise ValidationError(
            "ABILITY_EXHAUSTED", "No uses left today", {"ability": name}
        )
    uses = dict(c.daily_uses)
    uses[name] = pool.spend()
    return replace(c, daily_uses=uses)


def restore_daily_ability(c: CombatantState, name: str) -> CombatantState:
    pool = c.daily_uses.get(name)
    if pool is None:
        raise ValidationError("NO_SUCH_ABILITY", "Unknown daily ability", {"ability": name})
    uses = dict(c.daily_uses)
    uses[name] = pool.restore()
    return replace(c, daily_uses=uses)


def parse_recharge_threshold(recharge: str) -> int:
    """'5-6' -> 5, '6' -> 6, '{@recharge 4}' -> 4, '{@recharge}' -> 5."""
    tag = _RECHARGE_TAG_RE.search(recharge)
    if tag:
        threshold = int(tag.group(1)) if tag.group(1) else 5
    else:
        m = _FIRST_INT_RE.search(recharge)
        if not m:
            raise ValueError(f"Unsupported recharge range: {recharge!r}")
        threshold = int(m.group(1))
    if not 1 <= threshold <= 6:
        raise ValueError(f"Unsupported recharge range: {recharge!r}")
    return threshold


def use_recharge_ability(c: CombatantState, name: str) -> CombatantState:
    ability = c.recharge_abilities.get(name)
    if ability is None:
        raise ValidationError(
            "NO_SUCH_ABILITY", "Unknown recharge ability", {"ability": name}
        )
    if not ability.available:
        raise ValidationError(
            "ABILITY_RECHARGING", "Ability has not recharged yet", {"ability": name}
        )
    return set_recharge_available(c, name, False)


def set_recharge_available(
    c: CombatantState, name: str, available: bool
) -> CombatantState:
    abilities = dict(c.recharge_abilities)
    abilities[name] = replace(abilities[name], available=available)
    return replace(c, recharge_abilities=abilities)


def spend_legendary_action(c: CombatantState, cost: int = 1) -> CombatantState:
    if c.legendary_actions is None:
        raise ValidationError("NO_LEGENDARY_ACTIONS", "Combatant has no legendary actions")
    if c.legendary_actions < cost:
        raise ValidationError(
            "LEGENDARY_EXHAUSTED",
            "Not enough legendary actions left",
            {"remaining": c.legendary_actions, "cost": cost},
        )
    return replace(c, legendary_actions=c.legendary_actions - cost)


def spend_legendary_points(c: CombatantState, cost: int = 1) -> CombatantState:
    if c.legendary_points < cost:
        raise ValidationError(
            "LEGENDARY_EXHAUSTED",
            "Not enough legendary points left",
            {"remaining": c.legendary_points, "cost": cost},
        )
    return replace(c, legendary_points=c.legendary_points - cost)


def spend_legendary_resistance(c: CombatantState) -> CombatantState:
    if c.legendary_resistances <= 0:
        raise ValidationError(
            "LEGENDARY_EXHAUSTED", "No legendary resistances left"
        )
    return replace(c, legendary_resistances=c.legendary_resistances - 1)


def use_reaction(c: CombatantState) -> CombatantState:
    if c.reaction_used:
        raise ValidationError("REACTION_USED", "Reaction already used this round")
    return replace(c, reaction_used=True)


# ---------- death saves ----------


def record_death_save(
    c: CombatantState, success: bool, critical: bool = False
) -> CombatantState:
    """
    critical success (natural 20) -> back to 1 hp, saves cleared
    critical failure (natural 1)  -> counts as two failures
    """
    if c.hp_current > 0:
        raise ValidationError("NOT_DYING", "Death saves only apply at 0 hp")
    if c.is_dead or c.is_stable:
        raise ValidationError("DEATH_SAVES_DONE", "Combatant is already stable or dead")

    if success and critical:
        return clear_death_saves(replace(c, hp_current=min(1, c.effective_max_hp)))
    if success:
        return replace(c, death_save_successes=min(3, c.death_save_successes + 1))
    step = 2 if critical else 1
    return replace(c, death_save_failures=min(3, c.death_save_failures + step))


def clear_death_saves(c: CombatantState) -> CombatantState:
    return replace(c, death_save_successes=0, death_save_failures=0)


def restore_legendary(
    c: CombatantState, actions_per_round: int
) -> Optional[CombatantState]:
    """New-round refill; returns None for combatants without legendary resources."""
    if not c.has_legendary_actions and c.legendary_points_max == 0:
        return None
    return replace(
        c,
        legendary_actions=actions_per_round if c.has_legendary_actions else None,
        legendary_points=c.legendary_points_max,
    )

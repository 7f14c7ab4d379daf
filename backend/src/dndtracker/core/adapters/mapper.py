from __future__ import annotations

import re
import uuid
from collections.abc import Mapping as ABCMapping
from dataclasses import dataclass
from typing import Any, Optional, Protocol, cast

from dndtracker.core.engine.state import CombatantState, RechargeAbility, ResourcePool
from dndtracker.core.schemas import CombatantData, RechargeSpec, ResourcePoolSpec

# lair actions happen on initiative count 20 (losing ties)
LAIR_INITIATIVE = 20

_RECHARGE_TAG_RE = re.compile(r"\{@recharge\s*(\d*)\s*\}", re.IGNORECASE)
_PER_DAY_RE = re.compile(r"\((\d+)\s*/\s*day\)", re.IGNORECASE)
_SLUG_RE = re.compile(r"[^a-z0-9]+")


class CreatureLookup(Protocol):
    """Content collaborator: monster records by id (5etools-shaped dicts)."""

    def get(self, creature_id: str) -> Optional[ABCMapping[str, Any]]: ...


@dataclass(frozen=True)
class CombatantOverrides:
    name: Optional[str] = None
    hp_current: Optional[int] = None
    hp_max: Optional[int] = None
    temp_hp: Optional[int] = None
    initiative_bonus: Optional[int] = None
    is_player_character: Optional[bool] = None
    linked_to: Optional[str] = None


def _as_dict(obj: Any) -> dict[str, Any]:
    if obj is None:
        return {}

    if isinstance(obj, dict):
        return cast(dict[str, Any], obj)

    dump = getattr(obj, "model_dump", None)
    if callable(dump):
        res = dump()
        if isinstance(res, dict):
            return cast(dict[str, Any], res)
        return {}

    if isinstance(obj, ABCMapping):
        return dict(cast(ABCMapping[str, Any], obj))
    return {}


def _first_present(d: ABCMapping[str, Any], *keys: str, default: Any = None) -> Any:
    for k in keys:
        if k in d and d[k] is not None:
            return d[k]
    return default


def _as_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


def _hp_value(raw: Any) -> int:
    # {"average": 60, "formula": "8d10+16"} | 60
    if isinstance(raw, dict):
        return _as_int(raw.get("average"), 1)
    return _as_int(raw, 1)


def _ac_value(raw: Any) -> int:
    # [{"ac": 16, "from": [...]}] | [16] | {"value": 16} | 16
    if isinstance(raw, list) and raw:
        raw = raw[0]
    if isinstance(raw, dict):
        return _as_int(_first_present(raw, "ac", "value"), 10)
    return _as_int(raw, 10)


def _ability_mod(score: Any) -> int:
    return (_as_int(score, 10) - 10) // 2


def _entry_names(c: ABCMapping[str, Any], *keys: str) -> list[str]:
    names: list[str] = []
    for key in keys:
        for item in c.get(key) or []:
            if isinstance(item, dict):
                name = _first_present(item, "name", "n")
                if name:
                    names.append(str(name))
    return names


def _recharge_specs(c: ABCMapping[str, Any]) -> list[RechargeSpec]:
    out: list[RechargeSpec] = []
    for name in _entry_names(c, "action", "actions", "bonus", "bonusActions"):
        m = _RECHARGE_TAG_RE.search(name)
        if not m:
            continue
        num = int(m.group(1)) if m.group(1) else 5
        if not 1 <= num <= 6:
            continue
        clean = _RECHARGE_TAG_RE.sub("", name).strip()
        out.append(RechargeSpec(name=clean, recharge="6" if num == 6 else f"{num}-6"))
    return out


def _daily_uses(c: ABCMapping[str, Any]) -> dict[str, ResourcePoolSpec]:
    out: dict[str, ResourcePoolSpec] = {}
    for name in _entry_names(c, "trait", "traits", "action", "actions"):
        if name.lower().startswith("legendary resistance"):
            continue
        m = _PER_DAY_RE.search(name)
        if m:
            n = int(m.group(1))
            clean = _PER_DAY_RE.sub("", name).strip()
            out[clean] = ResourcePoolSpec(current=n, max=n)
    return out


def _legendary_resistances(c: ABCMapping[str, Any]) -> int:
    explicit = _first_present(c, "legendary_resistances", "legendaryResistances")
    if explicit is not None:
        return _as_int(explicit, 0)
    for name in _entry_names(c, "trait", "traits"):
        if name.lower().startswith("legendary resistance"):
            m = _PER_DAY_RE.search(name)
            return int(m.group(1)) if m else 3
    return 0


def _spell_slots(c: ABCMapping[str, Any]) -> dict[int, ResourcePoolSpec]:
    raw = _first_present(c, "spell_slots", "spellSlots", default=None)
    if raw is None:
        for sc in c.get("spellcasting") or []:
            if isinstance(sc, dict) and isinstance(sc.get("spells"), dict):
                raw = {
                    lvl: block.get("slots")
                    for lvl, block in sc["spells"].items()
                    if isinstance(block, dict) and block.get("slots")
                }
                break
    out: dict[int, ResourcePoolSpec] = {}
    if not isinstance(raw, dict):
        return out
    for k, v in raw.items():
        level = _as_int(k, 0)
        if level < 1:
            continue
        if isinstance(v, dict):
            mx = _as_int(v.get("max"), 0)
            cur = min(mx, _as_int(v.get("current"), mx))
        else:
            mx = cur = _as_int(v, 0)
        out[level] = ResourcePoolSpec(current=cur, max=mx)
    return out


def _concentration_bonus(c: ABCMapping[str, Any]) -> int:
    saves = _first_present(c, "save", "save_bonuses", default={}) or {}
    if isinstance(saves, dict) and saves.get("con") is not None:
        return _as_int(str(saves["con"]).replace("+", ""), 0)
    return _ability_mod(_first_present(c, "con", default=10))


def combatant_data_from_creature(
    creature: ABCMapping[str, Any] | Any,
    *,
    overrides: CombatantOverrides | None = None,
) -> CombatantData:
    """Map a content record onto the combatant shape; everything else is ignored."""
    c = _as_dict(creature)
    ov = overrides or CombatantOverrides()

    name = ov.name or str(_first_present(c, "name", "title", default="Unknown"))
    hp_max = ov.hp_max if ov.hp_max is not None else _hp_value(
        _first_present(c, "hp_max", "hp", "hit_points", default=1)
    )
    hp_current = ov.hp_current if ov.hp_current is not None else hp_max

    initiative_bonus = _first_present(c, "initiative_bonus", "initiativeMod")
    if ov.initiative_bonus is not None:
        initiative_bonus = ov.initiative_bonus
    elif initiative_bonus is None:
        initiative_bonus = _ability_mod(
            _first_present(c, "dex", default=(c.get("abilities") or {}).get("dex", 10))
        )

    is_pc = bool(_first_present(c, "is_player_character", "player", "is_pc", default=False))
    if ov.is_player_character is not None:
        is_pc = ov.is_player_character

    legendary = _first_present(c, "legendary", "legendaryActions")
    legendary_actions: Optional[int] = None
    if isinstance(legendary, list) and legendary:
        legendary_actions = _as_int(c.get("legendaryActionsCount"), 3)
    elif isinstance(legendary, int) and legendary > 0:
        legendary_actions = legendary

    lair = _first_present(c, "lair_initiative", default=None)
    if lair is None and c.get("legendaryGroup"):
        lair = LAIR_INITIATIVE

    points_max = _as_int(_first_present(c, "legendary_points", "legendaryPoints"), 0)
    resistances = _legendary_resistances(c)

    return CombatantData(
        name=name,
        hp_max=hp_max,
        hp_current=hp_current,
        temp_hp=ov.temp_hp if ov.temp_hp is not None else 0,
        ac=_ac_value(_first_present(c, "ac", "armor_class", default=10)),
        initiative_bonus=_as_int(initiative_bonus, 0),
        is_player_character=is_pc,
        linked_to=ov.linked_to,
        concentration_bonus=_concentration_bonus(c),
        spell_slots=_spell_slots(c),
        daily_uses=_daily_uses(c),
        recharge_abilities=_recharge_specs(c),
        legendary_actions=legendary_actions,
        legendary_points_max=points_max,
        legendary_resistances_max=resistances,
        lair_initiative=None if lair is None else _as_int(lair, LAIR_INITIATIVE),
    )


def new_combatant_id(name: str) -> str:
    slug = _SLUG_RE.sub("-", name.lower()).strip("-") or "combatant"
    return f"{slug}-{uuid.uuid4().hex[:8]}"


def combatant_from_data(data: CombatantData, *, combatant_id: str) -> CombatantState:
    effective_max = data.hp_max + data.max_hp_modifier
    hp_current = effective_max if data.hp_current is None else data.hp_current
    return CombatantState(
        id=combatant_id,
        name=data.name,
        hp_current=max(0, min(effective_max, hp_current)),
        hp_max=data.hp_max,
        temp_hp=data.temp_hp,
        max_hp_modifier=data.max_hp_modifier,
        ac=data.ac,
        initiative=data.initiative,
        initiative_tie_breaker=data.initiative_tie_breaker,
        initiative_bonus=data.initiative_bonus,
        is_player_character=data.is_player_character,
        linked_to=data.linked_to,
        concentration=data.concentration,
        concentration_bonus=data.concentration_bonus,
        spell_slots=pools_from_specs(data.spell_slots),
        daily_uses=pools_from_specs(data.daily_uses),
        recharge_abilities=recharges_from_specs(data.recharge_abilities),
        legendary_actions=data.legendary_actions,
        legendary_points=data.legendary_points_max,
        legendary_points_max=data.legendary_points_max,
        legendary_resistances=data.legendary_resistances_max,
        legendary_resistances_max=data.legendary_resistances_max,
        conditions=frozenset(data.conditions),
        lair_initiative=data.lair_initiative,
    )


def pools_from_specs(specs: ABCMapping[Any, ResourcePoolSpec]) -> dict[Any, ResourcePool]:
    return {k: ResourcePool(current=s.current, max=s.max) for k, s in specs.items()}


def recharges_from_specs(specs: list[RechargeSpec]) -> dict[str, RechargeAbility]:
    return {
        s.name: RechargeAbility(name=s.name, recharge=s.recharge, available=s.available)
        for s in specs
    }


def combatant_from_creature(
    creature: ABCMapping[str, Any] | Any,
    *,
    overrides: CombatantOverrides | None = None,
    combatant_id: Optional[str] = None,
) -> CombatantState:
    data = combatant_data_from_creature(creature, overrides=overrides)
    return combatant_from_data(data, combatant_id=combatant_id or new_combatant_id(data.name))

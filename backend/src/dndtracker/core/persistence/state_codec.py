from __future__ import annotations

from dataclasses import asdict, is_dataclass
from typing import Any, cast

from dndtracker.core.engine.state import (
    CombatantEntry,
    CombatantState,
    ConcentrationPrompt,
    EncounterState,
    LairMarker,
    RechargeAbility,
    RechargePrompt,
    ResourcePool,
    TurnEntry,
)

SCHEMA_VERSION = 1


def _jsonable(v: Any) -> Any:
    """set/frozenset/tuple -> list, dataclass -> dict, dict keys -> str."""
    if v is None or isinstance(v, (str, int, float, bool)):
        return v
    if isinstance(v, (set, frozenset)):
        return sorted(_jsonable(x) for x in v)
    if isinstance(v, (list, tuple)):
        return [_jsonable(x) for x in v]
    if isinstance(v, dict):
        return {str(k): _jsonable(val) for k, val in v.items()}
    if is_dataclass(v) and not isinstance(v, type):
        return _jsonable(asdict(cast(Any, v)))
    raise TypeError(f"Cannot serialise {type(v).__name__}")


def _pool(d: Any) -> ResourcePool:
    d = d if isinstance(d, dict) else {}
    return ResourcePool(current=int(d.get("current", 0)), max=int(d.get("max", 0)))


def _int_key_pools(v: Any) -> dict[int, ResourcePool]:
    if not isinstance(v, dict):
        return {}
    out: dict[int, ResourcePool] = {}
    for k, val in v.items():
        try:
            out[int(k)] = _pool(val)
        except (TypeError, ValueError):
            continue
    return out


def _as_set(v: Any) -> frozenset[str]:
    if v is None:
        return frozenset()
    if isinstance(v, (list, tuple, set, frozenset)):
        return frozenset(str(x) for x in v)
    return frozenset({str(v)})


# ---------- Combatant codec ----------


def combatant_to_dict(c: CombatantState) -> dict[str, Any]:
    return cast(dict[str, Any], _jsonable(c))


def combatant_from_dict(d: dict[str, Any]) -> CombatantState:
    dd = dict(d)
    dd["spell_slots"] = _int_key_pools(dd.get("spell_slots"))
    dd["daily_uses"] = {
        str(k): _pool(v) for k, v in (dd.get("daily_uses") or {}).items()
    }
    dd["recharge_abilities"] = {
        str(k): RechargeAbility(
            name=str(v.get("name", k)),
            recharge=str(v.get("recharge", "5-6")),
            available=bool(v.get("available", True)),
        )
        for k, v in (dd.get("recharge_abilities") or {}).items()
        if isinstance(v, dict)
    }
    dd["conditions"] = _as_set(dd.get("conditions"))

    # unknown keys from newer snapshots are dropped
    allowed = set(CombatantState.__dataclass_fields__)
    return CombatantState(**{k: v for k, v in dd.items() if k in allowed})


# ---------- turn order ----------


def entry_to_dict(e: TurnEntry) -> dict[str, Any]:
    if isinstance(e, LairMarker):
        return {"kind": "lair", "initiative": e.initiative}
    return {"kind": "combatant", "combatant_id": e.combatant_id}


def entry_from_dict(d: dict[str, Any]) -> TurnEntry:
    if d.get("kind") == "lair":
        return LairMarker(initiative=int(d["initiative"]))
    return CombatantEntry(combatant_id=str(d["combatant_id"]))


# ---------- EncounterState codec ----------


def encounter_state_to_dict(state: EncounterState) -> dict[str, Any]:
    return {
        "schema_version": SCHEMA_VERSION,
        "id": state.id,
        "name": state.name,
        "combatants": {cid: combatant_to_dict(c) for cid, c in state.combatants.items()},
        "turn_order": [entry_to_dict(e) for e in state.turn_order],
        "round": state.round,
        "turn_index": state.turn_index,
        "status": state.status,
        "pending_recharges": _jsonable(state.pending_recharges),
        "pending_concentration": _jsonable(state.pending_concentration),
        "seq": state.seq,
    }


def encounter_state_from_dict(d: dict[str, Any]) -> EncounterState:
    combatants_raw = d.get("combatants") or {}
    combatants = {
        str(cid): combatant_from_dict(cd)
        for cid, cd in combatants_raw.items()
        if isinstance(cd, dict)
    }
    order = tuple(entry_from_dict(e) for e in d.get("turn_order") or [])
    turn_index = int(d.get("turn_index", 0))
    if not order or not 0 <= turn_index < len(order):
        turn_index = 0

    return EncounterState(
        id=str(d["id"]),
        name=str(d.get("name", "Encounter")),
        combatants=combatants,
        turn_order=order,
        round=max(1, int(d.get("round", 1))),
        turn_index=turn_index,
        status=d.get("status", "preparing"),
        pending_recharges=tuple(
            RechargePrompt(**p) for p in d.get("pending_recharges") or []
        ),
        pending_concentration=tuple(
            ConcentrationPrompt(**p) for p in d.get("pending_concentration") or []
        ),
        seq=int(d.get("seq", 0)),
    )

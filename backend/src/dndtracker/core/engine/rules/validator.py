from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from dndtracker.core.engine.commands import (
    AddCombatant,
    Command,
    EndCombat,
    NextTurn,
    PrevTurn,
    ResolveConcentration,
    ResolveRecharge,
    SetInitiatives,
    StartCombat,
    UpdateCombatant,
)
from dndtracker.core.engine.state import CombatantState, EncounterState


@dataclass
class ValidationIssue:
    code: str
    message: str
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ValidationResult:
    ok: bool
    errors: List[ValidationIssue] = field(default_factory=list)


_OK = ValidationResult(ok=True)


def _err(code: str, message: str, **meta: Any) -> ValidationResult:
    return ValidationResult(
        ok=False, errors=[ValidationIssue(code=code, message=message, meta=meta)]
    )


def _creates_cycle(
    combatants: Mapping[str, CombatantState], combatant_id: str, linked_to: str
) -> bool:
    seen = set()
    cur: Optional[str] = linked_to
    while cur is not None and cur not in seen:
        if cur == combatant_id:
            return True
        seen.add(cur)
        nxt = combatants.get(cur)
        cur = nxt.linked_to if nxt is not None else None
    return False


def _validate_link(
    state: EncounterState, combatant_id: Optional[str], linked_to: Optional[str]
) -> ValidationResult:
    if linked_to is None:
        return _OK
    if combatant_id is not None and linked_to == combatant_id:
        return _err("SELF_LINK", "A combatant cannot be its own sidekick")
    if linked_to not in state.combatants:
        return _err("UNKNOWN_LINK", "Linked combatant not found", linked_to=linked_to)
    if combatant_id is not None and _creates_cycle(
        state.combatants, combatant_id, linked_to
    ):
        return _err("LINK_CYCLE", "Sidekick links must not form a cycle", linked_to=linked_to)
    return _OK


def _validate_add(state: EncounterState, cmd: AddCombatant) -> ValidationResult:
    data = cmd.combatant
    if data.id is not None and data.id in state.combatants:
        return _err("DUPLICATE_COMBATANT", "combatant id already exists", combatant_id=data.id)
    if data.hp_current is not None and data.hp_current > data.hp_max + data.max_hp_modifier:
        return _err(
            "HP_OUT_OF_RANGE",
            "hp_current exceeds effective max hp",
            hp_current=data.hp_current,
        )
    return _validate_link(state, data.id, data.linked_to)


def _validate_update(state: EncounterState, cmd: UpdateCombatant) -> ValidationResult:
    c = state.combatants[cmd.combatant_id]
    patch = cmd.patch
    sent = patch.sent_fields()

    hp_max = patch.hp_max if "hp_max" in sent and patch.hp_max is not None else c.hp_max
    modifier = (
        patch.max_hp_modifier
        if "max_hp_modifier" in sent and patch.max_hp_modifier is not None
        else c.max_hp_modifier
    )
    if hp_max + modifier < 0:
        return _err(
            "NEGATIVE_MAX_HP",
            "Effective max hp must not be negative",
            hp_max=hp_max,
            max_hp_modifier=modifier,
        )

    points = patch.legendary_points if patch.legendary_points is not None else c.legendary_points
    points_max = (
        patch.legendary_points_max
        if patch.legendary_points_max is not None
        else c.legendary_points_max
    )
    if points > points_max:
        return _err(
            "LEGENDARY_OUT_OF_RANGE",
            "legendary_points must not exceed legendary_points_max",
            legendary_points=points,
            legendary_points_max=points_max,
        )

    if "linked_to" in sent:
        return _validate_link(state, c.id, patch.linked_to)
    return _OK


def validate_command(state: EncounterState, cmd: Command) -> ValidationResult:
    cid = getattr(cmd, "combatant_id", None)
    if cid is not None and cid not in state.combatants:
        return _err("UNKNOWN_COMBATANT", "Combatant not found", combatant_id=cid)

    if isinstance(cmd, AddCombatant):
        return _validate_add(state, cmd)

    if isinstance(cmd, UpdateCombatant):
        return _validate_update(state, cmd)

    if isinstance(cmd, SetInitiatives):
        unknown = [k for k in cmd.values if k not in state.combatants]
        if unknown:
            return _err("UNKNOWN_COMBATANT", "Combatant not found", combatant_ids=unknown)
        return _OK

    if isinstance(cmd, StartCombat):
        if state.status == "active":
            return _err("COMBAT_ALREADY_ACTIVE", "Combat is already running")
        if not state.combatants:
            return _err("EMPTY_ENCOUNTER", "Cannot start combat without combatants")
        return _OK

    if isinstance(cmd, (NextTurn, PrevTurn, EndCombat)):
        if state.status != "active" or not state.turn_order:
            return _err(
                "COMBAT_NOT_ACTIVE", "Combat is not running", status=state.status
            )
        return _OK

    if isinstance(cmd, ResolveRecharge):
        if not any(
            p.combatant_id == cmd.combatant_id and p.ability == cmd.ability
            for p in state.pending_recharges
        ):
            return _err(
                "NO_PENDING_RECHARGE",
                "No recharge roll is pending for that ability",
                combatant_id=cmd.combatant_id,
                ability=cmd.ability,
            )
        return _OK

    if isinstance(cmd, ResolveConcentration):
        if (cmd.total is None) == (cmd.maintained is None):
            return _err(
                "BAD_RESOLUTION", "Send exactly one of total or maintained"
            )
        if not any(p.combatant_id == cmd.combatant_id for p in state.pending_concentration):
            return _err(
                "NO_PENDING_CONCENTRATION",
                "No concentration check is pending",
                combatant_id=cmd.combatant_id,
            )
        return _OK

    return _OK

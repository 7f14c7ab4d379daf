from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple

from dndtracker.core.adapters.mapper import (
    combatant_from_data,
    new_combatant_id,
    pools_from_specs,
    recharges_from_specs,
)
from dndtracker.core.engine.commands import (
    AddCombatant,
    ChangeHP,
    Command,
    EndCombat,
    NextTurn,
    PrevTurn,
    RecordDeathSave,
    RemoveCombatant,
    ResetCombat,
    ResolveConcentration,
    ResolveRecharge,
    RestoreDailyAbility,
    RestoreSpellSlot,
    SetInitiatives,
    SpendSpellSlot,
    StartCombat,
    UpdateCombatant,
    UseDailyAbility,
    UseLegendaryAction,
    UseLegendaryResistance,
    UseReaction,
    UseRechargeAbility,
)
from dndtracker.core.engine.events import (
    EventLog,
    ev_bloodied,
    ev_combatant_added,
    ev_combatant_removed,
    ev_combatant_updated,
    ev_command_rejected,
    ev_concentration_broken,
    ev_concentration_check_required,
    ev_concentration_maintained,
    ev_death_save_recorded,
    ev_hp_changed,
    ev_initiative_set,
    ev_resource_changed,
)
from dndtracker.core.engine.rules import clock, ledger, sequencer
from dndtracker.core.engine.rules.ledger import HPChange
from dndtracker.core.engine.rules.validator import validate_command
from dndtracker.core.engine.state import (
    LEGENDARY_ACTIONS_PER_ROUND,
    CombatantState,
    ConcentrationPrompt,
    EncounterState,
    with_combatant,
)
from dndtracker.core.errors import ValidationError

# fields whose change can move a combatant in the turn order
ORDERING_FIELDS = frozenset(
    {"initiative", "initiative_tie_breaker", "linked_to", "lair_initiative"}
)

_PLAIN_FIELDS = (
    "name",
    "ac",
    "hp_max",
    "max_hp_modifier",
    "initiative",
    "initiative_tie_breaker",
    "initiative_bonus",
    "is_player_character",
    "linked_to",
    "concentration",
    "concentration_bonus",
    "legendary_actions",
    "legendary_points",
    "legendary_points_max",
    "legendary_resistances",
    "legendary_resistances_max",
    "reaction_used",
    "death_save_successes",
    "death_save_failures",
    "lair_initiative",
)


def _actor_id(cmd: Command) -> Optional[str]:
    return getattr(cmd, "combatant_id", None)


def _rejected(
    state: EncounterState, cmd: Command, code: str, message: str, meta: dict
) -> Tuple[EncounterState, List[dict]]:
    rej = ev_command_rejected(
        seq=state.seq + 1,
        round_=state.round,
        actor_id=_actor_id(cmd),
        command=cmd.model_dump(mode="json"),
        code=code,
        message=message,
        meta=meta,
    ).model_dump(mode="json")
    return state, [rej]


# ---------- hp ----------


def _record_hp_change(
    state: EncounterState,
    c: CombatantState,
    change: HPChange,
    log: EventLog,
) -> EncounterState:
    updated, outcome = ledger.apply_hp_change(c, change)
    state = with_combatant(state, updated)

    log.add(
        ev_hp_changed(
            seq=log.next_seq(),
            round_=state.round,
            combatant_id=c.id,
            kind=change.kind,
            amount=change.amount,
            hp_before=outcome.hp_before,
            hp_after=outcome.hp_after,
            temp_before=outcome.temp_before,
            temp_after=outcome.temp_after,
        )
    )
    if outcome.bloodied:
        log.add(
            ev_bloodied(
                seq=log.next_seq(),
                round_=state.round,
                combatant_id=c.id,
                hp_percent=ledger.hp_percent(outcome.hp_after, updated.effective_max_hp),
            )
        )

    return _require_concentration(state, updated, outcome.concentration, log)


def _require_concentration(
    state: EncounterState,
    c: CombatantState,
    check: ledger.ConcentrationCheck,
    log: EventLog,
) -> EncounterState:
    if check.required:
        prompt = ConcentrationPrompt(
            combatant_id=c.id,
            dc=check.dc,
            damage=check.damage,
            is_player_character=c.is_player_character,
        )
        # one open check per combatant: the latest hit replaces an unresolved one
        others = tuple(p for p in state.pending_concentration if p.combatant_id != c.id)
        state = replace(state, pending_concentration=others + (prompt,))
        log.add(
            ev_concentration_check_required(
                seq=log.next_seq(),
                round_=state.round,
                combatant_id=c.id,
                dc=check.dc,
                damage=check.damage,
                is_player_character=c.is_player_character,
            )
        )
    return state


def _resolve_concentration(
    state: EncounterState, cmd: ResolveConcentration, log: EventLog
) -> EncounterState:
    prompt = next(p for p in state.pending_concentration if p.combatant_id == cmd.combatant_id)
    c = state.combatants[cmd.combatant_id]

    if cmd.total is not None:
        updated, maintained = ledger.resolve_concentration(c, prompt.dc, cmd.total)
    else:
        maintained = bool(cmd.maintained)
        updated = c if maintained else replace(c, concentration=False)

    builder = ev_concentration_maintained if maintained else ev_concentration_broken
    log.add(
        builder(
            seq=log.next_seq(),
            round_=state.round,
            combatant_id=c.id,
            dc=prompt.dc,
            total=cmd.total,
        )
    )
    state = with_combatant(state, updated)
    return replace(
        state,
        pending_concentration=tuple(
            p for p in state.pending_concentration if p is not prompt
        ),
    )


# ---------- combatants ----------


def _add_combatant(state: EncounterState, cmd: AddCombatant, log: EventLog) -> EncounterState:
    data = cmd.combatant
    cid = data.id or new_combatant_id(data.name)
    c = combatant_from_data(data, combatant_id=cid)

    combatants = dict(state.combatants)
    combatants[cid] = c
    if c.linked_to is not None:
        combatants, _ = sequencer.propagate_sidekicks(combatants, c.linked_to)
        c = combatants[cid]

    if state.status == "active" and state.turn_order:
        order = sequencer.insert_new(state.turn_order, c, combatants)
        if c.lair_initiative is not None:
            order = sequencer.place_marker(order, c.lair_initiative, combatants)
        index = sequencer.reconcile_turn_index(state.turn_order, state.turn_index, order)
        state = replace(state, combatants=combatants, turn_order=order, turn_index=index)
    else:
        state = sequencer.rebuild(replace(state, combatants=combatants))

    position = next(
        (i for i, e in enumerate(state.turn_order) if e.entry_id == cid), None
    )
    log.add(
        ev_combatant_added(
            seq=log.next_seq(),
            round_=state.round,
            combatant_id=cid,
            name=c.name,
            index=position,
        )
    )
    return state


def _remove_combatant(
    state: EncounterState, cmd: RemoveCombatant, log: EventLog
) -> EncounterState:
    cid = cmd.combatant_id
    combatants = {k: v for k, v in state.combatants.items() if k != cid}
    # sidekicks of the removed combatant keep their initiative but lose the link
    for k, v in list(combatants.items()):
        if v.linked_to == cid:
            combatants[k] = replace(v, linked_to=None)

    order = sequencer.remove_entry(state.turn_order, cid)
    order, pruned = sequencer.prune_orphan_markers(order, combatants)
    index = sequencer.reconcile_turn_index(state.turn_order, state.turn_index, order)

    log.add(
        ev_combatant_removed(
            seq=log.next_seq(),
            round_=state.round,
            combatant_id=cid,
            pruned_markers=pruned,
        )
    )
    return replace(
        state,
        combatants=combatants,
        turn_order=order,
        turn_index=index,
        pending_recharges=tuple(p for p in state.pending_recharges if p.combatant_id != cid),
        pending_concentration=tuple(
            p for p in state.pending_concentration if p.combatant_id != cid
        ),
    )


def _patched(c: CombatantState, cmd: UpdateCombatant) -> Tuple[CombatantState, List[str]]:
    patch = cmd.patch
    sent = patch.sent_fields()
    changes: Dict[str, Any] = {}

    for name in _PLAIN_FIELDS:
        if name not in sent:
            continue
        value = getattr(patch, name)
        # None only means "clear" for the optional fields
        if value is None and name not in ("linked_to", "lair_initiative", "initiative", "legendary_actions"):
            continue
        if getattr(c, name) != value:
            changes[name] = value

    if "spell_slots" in sent and patch.spell_slots is not None:
        changes["spell_slots"] = pools_from_specs(patch.spell_slots)
    if "daily_uses" in sent and patch.daily_uses is not None:
        changes["daily_uses"] = pools_from_specs(patch.daily_uses)
    if "recharge_abilities" in sent and patch.recharge_abilities is not None:
        changes["recharge_abilities"] = recharges_from_specs(patch.recharge_abilities)
    if "conditions" in sent and patch.conditions is not None:
        changes["conditions"] = frozenset(patch.conditions)

    updated = replace(c, **changes) if changes else c
    if "hp_max" in changes or "max_hp_modifier" in changes:
        updated = ledger.clamp_hp(updated)
    return updated, sorted(changes)


def _update_combatant(
    state: EncounterState,
    cmd: UpdateCombatant,
    log: EventLog,
) -> EncounterState:
    c = state.combatants[cmd.combatant_id]
    updated, fields = _patched(c, cmd)
    state = with_combatant(state, updated)

    patch = cmd.patch
    if "temp_hp" in patch.sent_fields() and patch.temp_hp is not None:
        if patch.temp_hp != updated.temp_hp:
            updated, check = ledger.set_temp_hp(updated, patch.temp_hp)
            state = with_combatant(state, updated)
            state = _require_concentration(state, updated, check, log)
            fields.append("temp_hp")

    change = patch.resolved_hp_change()
    if change is not None:
        state = _record_hp_change(state, updated, change, log)
        fields.append("hp")

    ordering = ORDERING_FIELDS.intersection(fields)
    if ordering:
        state = _resync_initiative(state, updated.id, log)

    log.add(
        ev_combatant_updated(
            seq=log.next_seq(),
            round_=state.round,
            combatant_id=c.id,
            fields=fields,
        )
    )
    return state


def _resync_initiative(state: EncounterState, cid: str, log: EventLog) -> EncounterState:
    combatants = dict(state.combatants)
    changed: List[str] = []

    # a sidekick always follows its leader, even if edited directly
    leader = combatants[cid].linked_to
    if leader is not None and leader in combatants:
        combatants, ch = sequencer.propagate_sidekicks(combatants, leader)
        changed.extend(ch)
    combatants, ch = sequencer.propagate_sidekicks(combatants, cid)
    changed.extend(ch)

    for sid in changed:
        sk = combatants[sid]
        log.add(
            ev_initiative_set(
                seq=log.next_seq(),
                round_=state.round,
                combatant_id=sid,
                initiative=sk.initiative,
                tie_breaker=sk.initiative_tie_breaker,
                source="sidekick",
            )
        )
    return sequencer.rebuild(replace(state, combatants=combatants))


# ---------- resources ----------


def _spend(
    state: EncounterState,
    cid: str,
    updated: CombatantState,
    log: EventLog,
    *,
    resource: str,
    key: Optional[str],
    remaining: int,
    spent: bool = True,
) -> EncounterState:
    log.add(
        ev_resource_changed(
            seq=log.next_seq(),
            round_=state.round,
            combatant_id=cid,
            resource=resource,
            key=key,
            remaining=remaining,
            spent=spent,
        )
    )
    return with_combatant(state, updated)


def _dispatch(
    state: EncounterState,
    cmd: Command,
    log: EventLog,
    legendary_actions_per_round: int,
) -> EncounterState:
    if isinstance(cmd, AddCombatant):
        return _add_combatant(state, cmd, log)

    if isinstance(cmd, RemoveCombatant):
        return _remove_combatant(state, cmd, log)

    if isinstance(cmd, UpdateCombatant):
        return _update_combatant(state, cmd, log)

    if isinstance(cmd, ChangeHP):
        return _record_hp_change(state, state.combatants[cmd.combatant_id], cmd.change, log)

    if isinstance(cmd, SetInitiatives):
        values = {
            cid: clock.InitiativeValue(initiative=v.initiative, tie_breaker=v.tie_breaker)
            for cid, v in cmd.values.items()
        }
        return clock.commit_initiatives(state, values, log, source=cmd.source)

    if isinstance(cmd, StartCombat):
        return clock.start_combat(state, log)

    if isinstance(cmd, NextTurn):
        return clock.next_turn(
            state, log, legendary_actions_per_round=legendary_actions_per_round
        )

    if isinstance(cmd, PrevTurn):
        return clock.prev_turn(state, log)

    if isinstance(cmd, EndCombat):
        return clock.end_combat(state, log)

    if isinstance(cmd, ResetCombat):
        return clock.reset_combat(
            state, log, legendary_actions_per_round=legendary_actions_per_round
        )

    if isinstance(cmd, ResolveRecharge):
        return clock.resolve_recharge(state, cmd.combatant_id, cmd.ability, cmd.total, log)

    if isinstance(cmd, ResolveConcentration):
        return _resolve_concentration(state, cmd, log)

    c = state.combatants[cmd.combatant_id]

    if isinstance(cmd, SpendSpellSlot):
        updated = ledger.spend_spell_slot(c, cmd.level)
        return _spend(
            state, c.id, updated, log,
            resource="spell_slot",
            key=str(cmd.level),
            remaining=updated.spell_slots[cmd.level].current,
        )

    if isinstance(cmd, RestoreSpellSlot):
        updated = ledger.restore_spell_slot(c, cmd.level)
        return _spend(
            state, c.id, updated, log,
            resource="spell_slot",
            key=str(cmd.level),
            remaining=updated.spell_slots[cmd.level].current,
            spent=False,
        )

    if isinstance(cmd, UseDailyAbility):
        updated = ledger.use_daily_ability(c, cmd.ability)
        return _spend(
            state, c.id, updated, log,
            resource="daily_use",
            key=cmd.ability,
            remaining=updated.daily_uses[cmd.ability].current,
        )

    if isinstance(cmd, RestoreDailyAbility):
        updated = ledger.restore_daily_ability(c, cmd.ability)
        return _spend(
            state, c.id, updated, log,
            resource="daily_use",
            key=cmd.ability,
            remaining=updated.daily_uses[cmd.ability].current,
            spent=False,
        )

    if isinstance(cmd, UseRechargeAbility):
        updated = ledger.use_recharge_ability(c, cmd.ability)
        return _spend(
            state, c.id, updated, log, resource="recharge", key=cmd.ability, remaining=0
        )

    if isinstance(cmd, UseLegendaryAction):
        if cmd.pool == "points":
            updated = ledger.spend_legendary_points(c, cmd.cost)
            remaining = updated.legendary_points
        else:
            updated = ledger.spend_legendary_action(c, cmd.cost)
            remaining = updated.legendary_actions or 0
        return _spend(
            state, c.id, updated, log,
            resource=f"legendary_{cmd.pool}",
            key=None,
            remaining=remaining,
        )

    if isinstance(cmd, UseLegendaryResistance):
        updated = ledger.spend_legendary_resistance(c)
        return _spend(
            state, c.id, updated, log,
            resource="legendary_resistance",
            key=None,
            remaining=updated.legendary_resistances,
        )

    if isinstance(cmd, UseReaction):
        updated = ledger.use_reaction(c)
        return _spend(state, c.id, updated, log, resource="reaction", key=None, remaining=0)

    if isinstance(cmd, RecordDeathSave):
        updated = ledger.record_death_save(c, cmd.success, cmd.critical)
        log.add(
            ev_death_save_recorded(
                seq=log.next_seq(),
                round_=state.round,
                combatant_id=c.id,
                success=cmd.success,
                successes=updated.death_save_successes,
                failures=updated.death_save_failures,
            )
        )
        return with_combatant(state, updated)

    raise ValidationError("UNKNOWN_COMMAND", "Unhandled command", {"type": cmd.type})


def apply_command(
    state: EncounterState,
    cmd: Command,
    *,
    legendary_actions_per_round: int = LEGENDARY_ACTIONS_PER_ROUND,
) -> Tuple[EncounterState, List[dict]]:
    """
    Returns (new_state, events_as_dicts). The input state is never modified.
    On a validation failure the same state comes back with a single CommandRejected.
    """
    vr = validate_command(state, cmd)
    if not vr.ok:
        e = vr.errors[0]
        return _rejected(state, cmd, e.code, e.message, e.meta)

    log = EventLog(state)
    try:
        new_state = _dispatch(state, cmd, log, legendary_actions_per_round)
    except ValidationError as e:
        return _rejected(state, cmd, e.code, e.message, e.meta)

    return replace(new_state, seq=log.seq), log.events


def is_rejection(events: List[dict]) -> bool:
    return len(events) == 1 and events[0]["type"] == "CommandRejected"

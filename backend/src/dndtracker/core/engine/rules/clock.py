"""Turn clock: turn pointer, round counter and the resets tied to them.

idle (no order) -> start_combat -> active -> end_combat -> completed
reset_combat from any state -> idle
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from random import Random
from typing import Dict, List, Mapping, Optional, Tuple

from dndtracker.core.engine.dice import DiceRoller, notation_with_bonus
from dndtracker.core.engine.events import (
    EventLog,
    ev_combat_ended,
    ev_combat_reset,
    ev_combat_started,
    ev_initiative_order_built,
    ev_initiative_set,
    ev_legendary_reset,
    ev_recharge_rolled,
    ev_recharge_scheduled,
    ev_round_started,
    ev_turn_reverted,
    ev_turn_started,
)
from dndtracker.core.engine.rules import ledger, sequencer
from dndtracker.core.engine.state import (
    LEGENDARY_ACTIONS_PER_ROUND,
    CombatantEntry,
    CombatantState,
    EncounterState,
    RechargePrompt,
    TurnEntry,
)
from dndtracker.core.errors import ValidationError

logger = logging.getLogger(__name__)


def _order_ids(order: Tuple[TurnEntry, ...]) -> list[str]:
    return [e.entry_id for e in order]


def _begin_turn(
    state: EncounterState,
    combatants: Dict[str, CombatantState],
    index: int,
    round_: int,
    log: EventLog,
) -> Tuple[RechargePrompt, ...]:
    """Start-of-turn effects for the entry at index; returns the pending recharges."""
    entry = state.turn_order[index]
    prompts = list(state.pending_recharges)

    log.add(
        ev_turn_started(
            seq=log.next_seq(), round_=round_, entry_id=entry.entry_id, turn_index=index
        )
    )
    if not isinstance(entry, CombatantEntry):
        return tuple(prompts)

    c = combatants[entry.combatant_id]
    if c.reaction_used:
        c = replace(c, reaction_used=False)
        combatants[c.id] = c

    pending = {(p.combatant_id, p.ability) for p in prompts}
    for ability in c.recharge_abilities.values():
        if ability.available or (c.id, ability.name) in pending:
            continue
        threshold = ledger.parse_recharge_threshold(ability.recharge)
        prompts.append(
            RechargePrompt(
                combatant_id=c.id, ability=ability.name, threshold=threshold, round=round_
            )
        )
        log.add(
            ev_recharge_scheduled(
                seq=log.next_seq(),
                round_=round_,
                combatant_id=c.id,
                ability=ability.name,
                threshold=threshold,
            )
        )
    return tuple(prompts)


def start_combat(state: EncounterState, log: EventLog) -> EncounterState:
    state = sequencer.rebuild(state)
    if not state.turn_order:
        raise ValidationError("EMPTY_ENCOUNTER", "Cannot start combat without combatants")

    state = replace(state, status="active", round=1, turn_index=0)
    log.add(ev_combat_started(seq=log.next_seq(), round_=1))
    log.add(
        ev_initiative_order_built(
            seq=log.next_seq(), round_=1, order=_order_ids(state.turn_order)
        )
    )

    combatants = dict(state.combatants)
    prompts = _begin_turn(state, combatants, 0, 1, log)
    logger.info("combat started in %s with %d entries", state.id, len(state.turn_order))
    return replace(state, combatants=combatants, pending_recharges=prompts)


def next_turn(
    state: EncounterState,
    log: EventLog,
    *,
    legendary_actions_per_round: int = LEGENDARY_ACTIONS_PER_ROUND,
) -> EncounterState:
    n = len(state.turn_order)
    if n == 0:
        raise ValidationError("NO_TURN_ORDER", "Turn order is empty")

    index = (state.turn_index + 1) % n
    round_ = state.round
    combatants = dict(state.combatants)

    if index == 0:
        round_ += 1
        log.add(ev_round_started(seq=log.next_seq(), round_=round_))

        reset_ids: List[str] = []
        for cid, c in state.combatants.items():
            refreshed = ledger.restore_legendary(c, legendary_actions_per_round)
            if refreshed is not None:
                c = refreshed
                reset_ids.append(cid)
            if c.reaction_used:
                c = replace(c, reaction_used=False)
            combatants[cid] = c
        if reset_ids:
            log.add(
                ev_legendary_reset(
                    seq=log.next_seq(), round_=round_, combatant_ids=reset_ids
                )
            )
        logger.info("round %d started in %s", round_, state.id)

    prompts = _begin_turn(state, combatants, index, round_, log)
    return replace(
        state,
        combatants=combatants,
        round=round_,
        turn_index=index,
        pending_recharges=prompts,
    )


def prev_turn(state: EncounterState, log: EventLog) -> EncounterState:
    n = len(state.turn_order)
    if n == 0:
        raise ValidationError("NO_TURN_ORDER", "Turn order is empty")

    index = (state.turn_index - 1 + n) % n
    round_ = max(1, state.round - 1) if index == n - 1 else state.round
    entry = state.turn_order[index]
    log.add(
        ev_turn_reverted(
            seq=log.next_seq(), round_=round_, entry_id=entry.entry_id, turn_index=index
        )
    )
    return replace(state, round=round_, turn_index=index)


def end_combat(state: EncounterState, log: EventLog) -> EncounterState:
    log.add(ev_combat_ended(seq=log.next_seq(), round_=state.round))
    logger.info("combat ended in %s after %d rounds", state.id, state.round)
    return replace(
        state, status="completed", pending_recharges=(), pending_concentration=()
    )


def _fresh_combatant(c: CombatantState, legendary_actions_per_round: int) -> CombatantState:
    c = replace(
        c,
        initiative=None,
        initiative_tie_breaker=0.0,
        max_hp_modifier=0,
        temp_hp=0,
        conditions=frozenset(),
        concentration=False,
        reaction_used=False,
        death_save_successes=0,
        death_save_failures=0,
        legendary_resistances=c.legendary_resistances_max,
        recharge_abilities={
            name: replace(a, available=True) for name, a in c.recharge_abilities.items()
        },
    )
    c = replace(c, hp_current=c.effective_max_hp)
    refreshed = ledger.restore_legendary(c, legendary_actions_per_round)
    return refreshed if refreshed is not None else c


def reset_combat(
    state: EncounterState,
    log: EventLog,
    *,
    legendary_actions_per_round: int = LEGENDARY_ACTIONS_PER_ROUND,
) -> EncounterState:
    combatants = {
        cid: _fresh_combatant(c, legendary_actions_per_round)
        for cid, c in state.combatants.items()
    }
    log.add(ev_combat_reset(seq=log.next_seq()))
    return replace(
        state,
        combatants=combatants,
        turn_order=(),
        round=1,
        turn_index=0,
        status="preparing",
        pending_recharges=(),
        pending_concentration=(),
    )


def resolve_recharge(
    state: EncounterState, combatant_id: str, ability: str, total: int, log: EventLog
) -> EncounterState:
    prompt = next(
        (
            p
            for p in state.pending_recharges
            if p.combatant_id == combatant_id and p.ability == ability
        ),
        None,
    )
    if prompt is None:
        raise ValidationError(
            "NO_PENDING_RECHARGE",
            "No recharge roll is pending for that ability",
            {"combatant_id": combatant_id, "ability": ability},
        )

    recharged = total >= prompt.threshold
    c = state.combatants[combatant_id]
    if recharged and ability in c.recharge_abilities:
        c = ledger.set_recharge_available(c, ability, True)

    log.add(
        ev_recharge_rolled(
            seq=log.next_seq(),
            round_=state.round,
            combatant_id=combatant_id,
            ability=ability,
            threshold=prompt.threshold,
            total=total,
            recharged=recharged,
        )
    )
    combatants = dict(state.combatants)
    combatants[combatant_id] = c
    return replace(
        state,
        combatants=combatants,
        pending_recharges=tuple(p for p in state.pending_recharges if p is not prompt),
    )


# ---------- initiative ----------


@dataclass(frozen=True)
class InitiativeValue:
    initiative: int
    tie_breaker: Optional[float] = None


@dataclass
class InitiativePlan:
    """Monster rolls made up front; players still owe a value."""

    rolled: Dict[str, InitiativeValue] = field(default_factory=dict)
    players: List[str] = field(default_factory=list)
    sidekicks: List[str] = field(default_factory=list)

    def complete(
        self, player_values: Mapping[str, InitiativeValue]
    ) -> Dict[str, InitiativeValue]:
        missing = [pid for pid in self.players if pid not in player_values]
        if missing:
            raise ValidationError(
                "MISSING_INITIATIVE",
                "Initiative values missing for player characters",
                {"combatant_ids": missing},
            )
        values = dict(self.rolled)
        for pid in self.players:
            values[pid] = player_values[pid]
        return values


def _tie_breaker(c: CombatantState, rng: Random) -> float:
    # higher initiative bonus wins, random among equals
    return c.initiative_bonus + round(rng.random(), 3)


def plan_initiative_rolls(
    state: EncounterState, dice: DiceRoller, rng: Optional[Random] = None
) -> InitiativePlan:
    """
    Roll d20 + bonus for every non-player; list players (they roll at the table) and
    sidekicks (they follow their leader). Nothing is written to the state here.
    """
    rng = rng or Random()
    plan = InitiativePlan()
    for c in state.combatants.values():
        if c.linked_to is not None and c.linked_to in state.combatants:
            plan.sidekicks.append(c.id)
        elif c.is_player_character:
            plan.players.append(c.id)
        else:
            roll = dice.roll(notation_with_bonus(20, c.initiative_bonus))
            plan.rolled[c.id] = InitiativeValue(
                initiative=roll.total, tie_breaker=_tie_breaker(c, rng)
            )
    return plan


def commit_initiatives(
    state: EncounterState,
    values: Mapping[str, InitiativeValue],
    log: EventLog,
    *,
    source: str = "rolled",
) -> EncounterState:
    combatants = dict(state.combatants)
    for cid, v in values.items():
        c = combatants[cid]
        tie = c.initiative_tie_breaker if v.tie_breaker is None else v.tie_breaker
        combatants[cid] = replace(c, initiative=v.initiative, initiative_tie_breaker=tie)
        log.add(
            ev_initiative_set(
                seq=log.next_seq(),
                round_=state.round,
                combatant_id=cid,
                initiative=v.initiative,
                tie_breaker=tie,
                source="player" if c.is_player_character else source,
            )
        )

    combatants, changed = sequencer.propagate_all_sidekicks(combatants)
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

    state = sequencer.rebuild(replace(state, combatants=combatants))
    log.add(
        ev_initiative_order_built(
            seq=log.next_seq(), round_=state.round, order=_order_ids(state.turn_order)
        )
    )
    return state

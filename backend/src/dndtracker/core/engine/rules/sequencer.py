"""Initiative sequencer: builds and maintains the turn order."""

from __future__ import annotations

from dataclasses import replace
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from dndtracker.core.engine.state import (
    CombatantEntry,
    CombatantState,
    EncounterState,
    LairMarker,
    TurnEntry,
    entry_initiative,
)

Order = Tuple[TurnEntry, ...]

SIDEKICK_TIE_OFFSET = 0.5


def lair_initiatives(combatants: Mapping[str, CombatantState]) -> List[int]:
    return sorted(
        {c.lair_initiative for c in combatants.values() if c.lair_initiative is not None},
        reverse=True,
    )


def rank_combatants(combatants: Iterable[CombatantState]) -> List[CombatantState]:
    # stable: full ties keep insertion order
    return sorted(
        combatants,
        key=lambda c: (-(c.initiative or 0), -c.initiative_tie_breaker),
    )


def build_order(
    combatants: Mapping[str, CombatantState], lair_inits: Iterable[int]
) -> Order:
    """
    Combatants by (initiative desc, tie-breaker desc). A lair marker goes right after
    the last combatant whose initiative is >= its own, so it loses every tie; with
    nobody at or above it, it goes to the end.
    """
    ranked = rank_combatants(combatants.values())

    anchored: Dict[Optional[int], List[int]] = {}
    for k in sorted(set(lair_inits), reverse=True):
        anchor: Optional[int] = None
        for i, c in enumerate(ranked):
            if (c.initiative or 0) >= k:
                anchor = i
        anchored.setdefault(anchor, []).append(k)

    order: List[TurnEntry] = []
    for i, c in enumerate(ranked):
        order.append(CombatantEntry(c.id))
        order.extend(LairMarker(k) for k in anchored.get(i, []))
    order.extend(LairMarker(k) for k in anchored.get(None, []))
    return tuple(order)


def insert_new(
    order: Sequence[TurnEntry],
    combatant: CombatantState,
    combatants: Mapping[str, CombatantState],
) -> Order:
    """Mid-combat addition: slot in before the first entry that ranks lower."""
    key = combatant.initiative_key
    out = list(order)
    for i, entry in enumerate(out):
        if _ranks_below(entry, key, combatants):
            out.insert(i, CombatantEntry(combatant.id))
            return tuple(out)
    out.append(CombatantEntry(combatant.id))
    return tuple(out)


def _ranks_below(
    entry: TurnEntry, key: Tuple[int, float], combatants: Mapping[str, CombatantState]
) -> bool:
    if isinstance(entry, LairMarker):
        # markers lose ties against combatants
        return entry.initiative <= key[0]
    return entry_initiative(entry, combatants) < key


def place_marker(
    order: Sequence[TurnEntry],
    initiative: int,
    combatants: Mapping[str, CombatantState],
) -> Order:
    out = list(order)
    if any(isinstance(e, LairMarker) and e.initiative == initiative for e in out):
        return tuple(out)

    anchor: Optional[int] = None
    for i, entry in enumerate(out):
        if isinstance(entry, CombatantEntry):
            if entry_initiative(entry, combatants)[0] >= initiative:
                anchor = i
    if anchor is None:
        out.append(LairMarker(initiative))
        return tuple(out)

    pos = anchor + 1
    while (
        pos < len(out)
        and isinstance(out[pos], LairMarker)
        and out[pos].initiative > initiative
    ):
        pos += 1
    out.insert(pos, LairMarker(initiative))
    return tuple(out)


def prune_orphan_markers(
    order: Sequence[TurnEntry], combatants: Mapping[str, CombatantState]
) -> Tuple[Order, List[str]]:
    groups = set(lair_initiatives(combatants))
    kept: List[TurnEntry] = []
    pruned: List[str] = []
    for entry in order:
        if isinstance(entry, LairMarker) and entry.initiative not in groups:
            pruned.append(entry.entry_id)
            continue
        kept.append(entry)
    return tuple(kept), pruned


def remove_entry(order: Sequence[TurnEntry], combatant_id: str) -> Order:
    return tuple(
        e
        for e in order
        if not (isinstance(e, CombatantEntry) and e.combatant_id == combatant_id)
    )


# ---------- sidekicks ----------


def sidekick_index(combatants: Mapping[str, CombatantState]) -> Dict[str, Tuple[str, ...]]:
    """leader id -> ids of the combatants linked to it."""
    index: Dict[str, List[str]] = {}
    for c in combatants.values():
        if c.linked_to is not None and c.linked_to in combatants and c.linked_to != c.id:
            index.setdefault(c.linked_to, []).append(c.id)
    return {k: tuple(v) for k, v in index.items()}


def propagate_sidekicks(
    combatants: Mapping[str, CombatantState], leader_id: str
) -> Tuple[Dict[str, CombatantState], List[str]]:
    """
    Force every sidekick of leader_id (and theirs, transitively) onto the leader's
    initiative with tie-breaker - 0.5, so it always acts right after its leader.
    """
    out = dict(combatants)
    index = sidekick_index(out)
    changed: List[str] = []
    seen = {leader_id}
    queue = [leader_id]
    while queue:
        lid = queue.pop(0)
        leader = out[lid]
        for sid in index.get(lid, ()):
            if sid in seen:
                continue
            seen.add(sid)
            sk = out[sid]
            tie = leader.initiative_tie_breaker - SIDEKICK_TIE_OFFSET
            if sk.initiative != leader.initiative or sk.initiative_tie_breaker != tie:
                out[sid] = replace(
                    sk, initiative=leader.initiative, initiative_tie_breaker=tie
                )
                changed.append(sid)
            queue.append(sid)
    return out, changed


def propagate_all_sidekicks(
    combatants: Mapping[str, CombatantState],
) -> Tuple[Dict[str, CombatantState], List[str]]:
    out = dict(combatants)
    changed: List[str] = []
    roots = [
        cid
        for cid in sidekick_index(out)
        if out[cid].linked_to is None or out[cid].linked_to not in out
    ]
    for root in roots:
        out, ch = propagate_sidekicks(out, root)
        changed.extend(ch)
    return out, changed


# ---------- turn pointer ----------


def reconcile_turn_index(
    old_order: Sequence[TurnEntry], old_index: int, new_order: Sequence[TurnEntry]
) -> int:
    """Keep the pointer on the active entry; if it vanished, on its successor."""
    if not new_order:
        return 0
    if not old_order:
        return 0
    active = old_order[min(old_index, len(old_order) - 1)]
    ids = [e.entry_id for e in new_order]
    if active.entry_id in ids:
        return ids.index(active.entry_id)
    survivors = {e.entry_id for e in new_order}
    preceding = sum(1 for e in old_order[:old_index] if e.entry_id in survivors)
    return preceding if preceding < len(new_order) else 0


def rebuild(state: EncounterState) -> EncounterState:
    order = build_order(state.combatants, lair_initiatives(state.combatants))
    index = reconcile_turn_index(state.turn_order, state.turn_index, order)
    return replace(state, turn_order=order, turn_index=index)

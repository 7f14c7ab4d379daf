from __future__ import annotations

from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from dndtracker.core.engine.state import EncounterState


class EventEnvelope(BaseModel):
    model_config = ConfigDict(extra="forbid")

    event_id: UUID = Field(default_factory=uuid4)
    seq: int
    type: str

    round: int
    actor_id: Optional[str] = None

    payload: dict[str, Any] = Field(default_factory=dict)


class EventLog:
    """Collects the events of one intent and hands out sequence numbers."""

    def __init__(self, state: EncounterState) -> None:
        self.seq = state.seq
        self.events: list[dict] = []

    def next_seq(self) -> int:
        self.seq += 1
        return self.seq

    def add(self, ev: EventEnvelope) -> None:
        self.events.append(ev.model_dump(mode="json"))

    def types(self) -> list[str]:
        return [e["type"] for e in self.events]


def ev_command_rejected(
    *,
    seq: int,
    round_: int,
    actor_id: Optional[str],
    command: dict,
    code: str,
    message: str,
    meta: dict,
) -> EventEnvelope:
    return EventEnvelope(
        seq=seq,
        type="CommandRejected",
        round=round_,
        actor_id=actor_id,
        payload={
            "command": command,
            "code": code,
            "message": message,
            "meta": meta,
        },
    )


def ev_combatant_added(
    *, seq: int, round_: int, combatant_id: str, name: str, index: Optional[int]
) -> EventEnvelope:
    return EventEnvelope(
        seq=seq,
        type="CombatantAdded",
        round=round_,
        actor_id=combatant_id,
        payload={"combatant_id": combatant_id, "name": name, "index": index},
    )


def ev_combatant_removed(
    *, seq: int, round_: int, combatant_id: str, pruned_markers: list[str]
) -> EventEnvelope:
    return EventEnvelope(
        seq=seq,
        type="CombatantRemoved",
        round=round_,
        actor_id=combatant_id,
        payload={"combatant_id": combatant_id, "pruned_markers": pruned_markers},
    )


def ev_combatant_updated(
    *, seq: int, round_: int, combatant_id: str, fields: list[str]
) -> EventEnvelope:
    return EventEnvelope(
        seq=seq,
        type="CombatantUpdated",
        round=round_,
        actor_id=combatant_id,
        payload={"combatant_id": combatant_id, "fields": fields},
    )


def ev_hp_changed(
    *,
    seq: int,
    round_: int,
    combatant_id: str,
    kind: str,
    amount: int,
    hp_before: int,
    hp_after: int,
    temp_before: int,
    temp_after: int,
) -> EventEnvelope:
    return EventEnvelope(
        seq=seq,
        type="HPChanged",
        round=round_,
        actor_id=combatant_id,
        payload={
            "combatant_id": combatant_id,
            "kind": kind,
            "amount": amount,
            "hp_before": hp_before,
            "hp_after": hp_after,
            "temp_before": temp_before,
            "temp_after": temp_after,
        },
    )


def ev_bloodied(
    *, seq: int, round_: int, combatant_id: str, hp_percent: float
) -> EventEnvelope:
    return EventEnvelope(
        seq=seq,
        type="Bloodied",
        round=round_,
        actor_id=combatant_id,
        payload={"combatant_id": combatant_id, "hp_percent": hp_percent},
    )


def ev_concentration_check_required(
    *,
    seq: int,
    round_: int,
    combatant_id: str,
    dc: int,
    damage: int,
    is_player_character: bool,
) -> EventEnvelope:
    return EventEnvelope(
        seq=seq,
        type="ConcentrationCheckRequired",
        round=round_,
        actor_id=combatant_id,
        payload={
            "combatant_id": combatant_id,
            "dc": dc,
            "damage": damage,
            "is_player_character": is_player_character,
        },
    )


def ev_concentration_maintained(
    *, seq: int, round_: int, combatant_id: str, dc: int, total: Optional[int]
) -> EventEnvelope:
    return EventEnvelope(
        seq=seq,
        type="ConcentrationMaintained",
        round=round_,
        actor_id=combatant_id,
        payload={"combatant_id": combatant_id, "dc": dc, "total": total},
    )


def ev_concentration_broken(
    *, seq: int, round_: int, combatant_id: str, dc: int, total: Optional[int]
) -> EventEnvelope:
    return EventEnvelope(
        seq=seq,
        type="ConcentrationBroken",
        round=round_,
        actor_id=combatant_id,
        payload={"combatant_id": combatant_id, "dc": dc, "total": total},
    )


def ev_initiative_set(
    *,
    seq: int,
    round_: int,
    combatant_id: str,
    initiative: Optional[int],
    tie_breaker: float,
    source: str,
) -> EventEnvelope:
    # source: "manual" | "rolled" | "player" | "sidekick"
    return EventEnvelope(
        seq=seq,
        type="InitiativeSet",
        round=round_,
        actor_id=combatant_id,
        payload={
            "combatant_id": combatant_id,
            "initiative": initiative,
            "tie_breaker": tie_breaker,
            "source": source,
        },
    )


def ev_initiative_order_built(
    *, seq: int, round_: int, order: list[str]
) -> EventEnvelope:
    return EventEnvelope(
        seq=seq,
        type="InitiativeOrderBuilt",
        round=round_,
        payload={"order": order},
    )


def ev_combat_started(*, seq: int, round_: int) -> EventEnvelope:
    return EventEnvelope(seq=seq, type="CombatStarted", round=round_, payload={})


def ev_round_started(*, seq: int, round_: int) -> EventEnvelope:
    return EventEnvelope(
        seq=seq, type="RoundStarted", round=round_, payload={"round": round_}
    )


def ev_turn_started(
    *, seq: int, round_: int, entry_id: str, turn_index: int
) -> EventEnvelope:
    return EventEnvelope(
        seq=seq,
        type="TurnStarted",
        round=round_,
        actor_id=entry_id,
        payload={"entry_id": entry_id, "turn_index": turn_index},
    )


def ev_turn_reverted(
    *, seq: int, round_: int, entry_id: str, turn_index: int
) -> EventEnvelope:
    return EventEnvelope(
        seq=seq,
        type="TurnReverted",
        round=round_,
        actor_id=entry_id,
        payload={"entry_id": entry_id, "turn_index": turn_index},
    )


def ev_legendary_reset(
    *, seq: int, round_: int, combatant_ids: list[str]
) -> EventEnvelope:
    return EventEnvelope(
        seq=seq,
        type="LegendaryResourcesReset",
        round=round_,
        payload={"combatant_ids": combatant_ids},
    )


def ev_recharge_scheduled(
    *, seq: int, round_: int, combatant_id: str, ability: str, threshold: int
) -> EventEnvelope:
    return EventEnvelope(
        seq=seq,
        type="RechargeScheduled",
        round=round_,
        actor_id=combatant_id,
        payload={"combatant_id": combatant_id, "ability": ability, "threshold": threshold},
    )


def ev_recharge_rolled(
    *,
    seq: int,
    round_: int,
    combatant_id: str,
    ability: str,
    threshold: int,
    total: int,
    recharged: bool,
) -> EventEnvelope:
    return EventEnvelope(
        seq=seq,
        type="RechargeRolled",
        round=round_,
        actor_id=combatant_id,
        payload={
            "combatant_id": combatant_id,
            "ability": ability,
            "threshold": threshold,
            "total": total,
            "recharged": recharged,
        },
    )


def ev_resource_changed(
    *,
    seq: int,
    round_: int,
    combatant_id: str,
    resource: str,
    key: Optional[str],
    remaining: int,
    spent: bool,
) -> EventEnvelope:
    return EventEnvelope(
        seq=seq,
        type="ResourceSpent" if spent else "ResourceRestored",
        round=round_,
        actor_id=combatant_id,
        payload={
            "combatant_id": combatant_id,
            "resource": resource,
            "key": key,
            "remaining": remaining,
        },
    )


def ev_death_save_recorded(
    *,
    seq: int,
    round_: int,
    combatant_id: str,
    success: bool,
    successes: int,
    failures: int,
) -> EventEnvelope:
    return EventEnvelope(
        seq=seq,
        type="DeathSaveRecorded",
        round=round_,
        actor_id=combatant_id,
        payload={
            "combatant_id": combatant_id,
            "success": success,
            "successes": successes,
            "failures": failures,
        },
    )


def ev_combat_ended(*, seq: int, round_: int) -> EventEnvelope:
    return EventEnvelope(seq=seq, type="CombatEnded", round=round_, payload={})


def ev_combat_reset(*, seq: int) -> EventEnvelope:
    return EventEnvelope(seq=seq, type="CombatReset", round=1, payload={})

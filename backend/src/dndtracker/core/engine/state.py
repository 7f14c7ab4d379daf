from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, Literal, Optional, Tuple, Union

CombatStatus = Literal["preparing", "active", "completed"]

LEGENDARY_ACTIONS_PER_ROUND = 3


@dataclass(frozen=True)
class ResourcePool:
    current: int
    max: int

    def spend(self, amount: int = 1) -> "ResourcePool":
        return replace(self, current=max(0, self.current - amount))

    def restore(self, amount: int = 1) -> "ResourcePool":
        return replace(self, current=min(self.max, self.current + amount))


@dataclass(frozen=True)
class RechargeAbility:
    name: str
    recharge: str = "5-6"  # "5-6" | "6" | "{@recharge 4}"
    available: bool = True


@dataclass(frozen=True)
class CombatantState:
    id: str
    name: str
    hp_current: int
    hp_max: int
    temp_hp: int = 0
    max_hp_modifier: int = 0
    ac: int = 10

    # initiative
    initiative: Optional[int] = None
    initiative_tie_breaker: float = 0.0
    initiative_bonus: int = 0

    is_player_character: bool = False

    # sidekick: id of the combatant whose initiative this one shares
    linked_to: Optional[str] = None

    concentration: bool = False
    concentration_bonus: int = 0

    # limited-use resources
    spell_slots: Dict[int, ResourcePool] = field(default_factory=dict)
    daily_uses: Dict[str, ResourcePool] = field(default_factory=dict)
    recharge_abilities: Dict[str, RechargeAbility] = field(default_factory=dict)

    # None -> no legendary actions at all
    legendary_actions: Optional[int] = None
    legendary_points: int = 0
    legendary_points_max: int = 0
    legendary_resistances: int = 0
    legendary_resistances_max: int = 0

    reaction_used: bool = False

    death_save_successes: int = 0
    death_save_failures: int = 0

    conditions: frozenset[str] = frozenset()

    # lair group: initiative count of this creature's lair actions
    lair_initiative: Optional[int] = None

    @property
    def effective_max_hp(self) -> int:
        return self.hp_max + self.max_hp_modifier

    @property
    def initiative_key(self) -> Tuple[int, float]:
        return (self.initiative or 0, self.initiative_tie_breaker)

    @property
    def has_legendary_actions(self) -> bool:
        return self.legendary_actions is not None

    @property
    def is_dead(self) -> bool:
        return self.death_save_failures >= 3

    @property
    def is_stable(self) -> bool:
        return self.death_save_successes >= 3


@dataclass(frozen=True)
class CombatantEntry:
    combatant_id: str
    kind: Literal["combatant"] = "combatant"

    @property
    def entry_id(self) -> str:
        return self.combatant_id


@dataclass(frozen=True)
class LairMarker:
    """Synthetic turn for lair actions; identity is its initiative count."""

    initiative: int
    kind: Literal["lair"] = "lair"

    @property
    def entry_id(self) -> str:
        return lair_marker_id(self.initiative)


TurnEntry = Union[CombatantEntry, LairMarker]


def lair_marker_id(initiative: int) -> str:
    return f"lair-{initiative}"


@dataclass(frozen=True)
class RechargePrompt:
    combatant_id: str
    ability: str
    threshold: int
    round: int


@dataclass(frozen=True)
class ConcentrationPrompt:
    combatant_id: str
    dc: int
    damage: int
    is_player_character: bool


@dataclass(frozen=True)
class EncounterState:
    id: str
    name: str = "Encounter"
    combatants: Dict[str, CombatantState] = field(default_factory=dict)
    turn_order: Tuple[TurnEntry, ...] = ()
    round: int = 1
    turn_index: int = 0
    status: CombatStatus = "preparing"

    pending_recharges: Tuple[RechargePrompt, ...] = ()
    pending_concentration: Tuple[ConcentrationPrompt, ...] = ()

    seq: int = 0

    @property
    def active_entry(self) -> Optional[TurnEntry]:
        if not self.turn_order:
            return None
        return self.turn_order[self.turn_index]

    @property
    def active_combatant(self) -> Optional[CombatantState]:
        entry = self.active_entry
        if isinstance(entry, CombatantEntry):
            return self.combatants.get(entry.combatant_id)
        return None

    @property
    def clock_state(self) -> str:
        # idle | active | completed
        if self.status == "completed":
            return "completed"
        if not self.turn_order or self.status != "active":
            return "idle"
        return "active"


def entry_initiative(
    entry: TurnEntry, combatants: Dict[str, CombatantState]
) -> Tuple[int, float]:
    if isinstance(entry, LairMarker):
        return (entry.initiative, 0.0)
    c = combatants.get(entry.combatant_id)
    if c is None:
        return (0, 0.0)
    return c.initiative_key


def visible_order(state: EncounterState) -> Tuple[TurnEntry, ...]:
    """Turn order as shown to the table: lair markers only during active combat."""
    if state.status == "active":
        return state.turn_order
    return tuple(e for e in state.turn_order if not isinstance(e, LairMarker))


def with_combatant(state: EncounterState, c: CombatantState) -> EncounterState:
    combatants = dict(state.combatants)
    combatants[c.id] = c
    return replace(state, combatants=combatants)

from __future__ import annotations

import logging
from dataclasses import replace
from random import Random
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from dndtracker.config import TrackerSettings, get_settings
from dndtracker.core.adapters.mapper import (
    CombatantOverrides,
    CreatureLookup,
    combatant_data_from_creature,
)
from dndtracker.core.adapters.naming import unique_name
from dndtracker.core.engine.commands import (
    AddCombatant,
    ChangeHP,
    Command,
    InitiativeInput,
    ResolveConcentration,
    ResolveRecharge,
    SetInitiatives,
)
from dndtracker.core.engine.dice import (
    DiceRoll,
    DiceRoller,
    RandomDiceRoller,
    notation_with_bonus,
)
from dndtracker.core.engine.rules import clock
from dndtracker.core.engine.rules.apply import apply_command, is_rejection
from dndtracker.core.engine.rules.ledger import HPChange
from dndtracker.core.engine.state import (
    CombatantState,
    ConcentrationPrompt,
    EncounterState,
    RechargePrompt,
)
from dndtracker.core.errors import (
    PersistenceError,
    RollCollaboratorError,
    TrackerError,
    ValidationError,
)
from dndtracker.core.persistence.runtime_store import (
    EncounterStore,
    is_temporary_id,
    new_temporary_id,
)

logger = logging.getLogger(__name__)

_command_adapter: TypeAdapter[Command] = TypeAdapter(Command)

Listener = Callable[[EncounterState, List[dict]], None]
Prompt = Union[RechargePrompt, ConcentrationPrompt]

# players -> {combatant_id: initiative}; None cancels the whole roll
PlayerInitiativeCollector = Callable[
    [List[CombatantState]],
    Optional[Mapping[str, Union[int, clock.InitiativeValue]]],
]


def parse_command(raw: Union[Command, Mapping[str, Any]]) -> Command:
    if not isinstance(raw, Mapping):
        return raw
    try:
        return _command_adapter.validate_python(raw)
    except PydanticValidationError as e:
        raise ValidationError(
            "MALFORMED_COMMAND",
            "Command could not be parsed",
            {"errors": e.errors(include_url=False, include_context=False)},
        ) from e


class _GuardedDice:
    """Any collaborator failure surfaces as RollCollaboratorError."""

    def __init__(self, dice: DiceRoller) -> None:
        self.dice = dice

    def roll(self, notation: str) -> DiceRoll:
        try:
            return self.dice.roll(notation)
        except TrackerError:
            raise
        except Exception as e:
            raise RollCollaboratorError(f"Dice roll failed: {e}", notation=notation) from e


class EncounterRuntime:
    """
    Owns the current snapshot of one encounter.

    Every intent is validated and applied in memory, listeners see the new snapshot,
    then the store persists it. A failed save puts the previous snapshot back.
    """

    def __init__(
        self,
        store: EncounterStore,
        state: EncounterState,
        *,
        dice: Optional[DiceRoller] = None,
        settings: Optional[TrackerSettings] = None,
        rng: Optional[Random] = None,
    ) -> None:
        self.store = store
        self.dice = _GuardedDice(dice or RandomDiceRoller())
        self.settings = settings or get_settings()
        self.rng = rng or Random()
        self._state = state
        self._listeners: List[Listener] = []

    @classmethod
    def create(
        cls, store: EncounterStore, name: str = "Encounter", **kwargs: Any
    ) -> "EncounterRuntime":
        """New local encounter under a temporary id; the first save makes it durable."""
        return cls(store, EncounterState(id=new_temporary_id(), name=name), **kwargs)

    @classmethod
    def open(
        cls, store: EncounterStore, encounter_id: str, **kwargs: Any
    ) -> "EncounterRuntime":
        if is_temporary_id(encounter_id):
            # never been saved; nothing to fetch
            return cls(store, EncounterState(id=encounter_id), **kwargs)
        return cls(store, store.load(encounter_id), **kwargs)

    @property
    def state(self) -> EncounterState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, events: List[dict]) -> None:
        for listener in list(self._listeners):
            listener(self._state, events)

    def pending_prompts(self) -> List[Prompt]:
        prompts: List[Prompt] = list(self._state.pending_recharges)
        for p in self._state.pending_concentration:
            if p.is_player_character and not self.settings.concentration_check_reminder:
                continue
            prompts.append(p)
        return prompts

    # ---------- intents ----------

    def dispatch(self, raw: Union[Command, Mapping[str, Any]]) -> List[dict]:
        """Apply one intent plus any automatic dice follow-ups; returns all events."""
        cmd = parse_command(raw)
        events = self._commit(cmd)
        events.extend(self._run_follow_ups())
        return events

    def _commit(self, cmd: Command) -> List[dict]:
        previous = self._state
        new_state, events = apply_command(
            previous,
            cmd,
            legendary_actions_per_round=self.settings.legendary_actions_per_round,
        )
        if is_rejection(events):
            payload = events[0]["payload"]
            logger.debug("%s rejected: %s", cmd.type, payload["code"])
            raise ValidationError(payload["code"], payload["message"], payload["meta"])

        self._state = new_state
        logger.debug("%s applied to %s (%d events)", cmd.type, new_state.id, len(events))
        self._notify(events)

        try:
            durable_id = self.store.save(
                new_state.id, new_state, events=events, label=cmd.type
            )
        except PersistenceError:
            logger.warning(
                "save of %s failed after %s; restoring previous snapshot",
                new_state.id,
                cmd.type,
            )
            self._state = previous
            self._notify([])
            raise

        if durable_id != new_state.id:
            logger.info("encounter %s is now %s", new_state.id, durable_id)
            self._state = replace(self._state, id=durable_id)
        return list(events)

    def _run_follow_ups(self) -> List[dict]:
        events: List[dict] = []

        if self.settings.auto_roll_concentration_npcs:
            for prompt in self._state.pending_concentration:
                if prompt.is_player_character:
                    continue
                c = self._state.combatants[prompt.combatant_id]
                roll = self._try_roll(notation_with_bonus(20, c.concentration_bonus))
                if roll is None:
                    continue
                events.extend(
                    self._try_commit(
                        ResolveConcentration(combatant_id=c.id, total=roll.total)
                    )
                )

        if self.settings.auto_resolve_recharge:
            for recharge in self._state.pending_recharges:
                roll = self._try_roll("1d6")
                if roll is None:
                    continue
                events.extend(
                    self._try_commit(
                        ResolveRecharge(
                            combatant_id=recharge.combatant_id,
                            ability=recharge.ability,
                            total=roll.total,
                        )
                    )
                )
        return events

    def _try_roll(self, notation: str) -> Optional[DiceRoll]:
        try:
            return self.dice.roll(notation)
        except RollCollaboratorError as e:
            logger.warning("roll %s failed, prompt left pending: %s", notation, e)
            return None

    def _try_commit(self, cmd: Command) -> List[dict]:
        # a failed save keeps the prompt pending
        try:
            return self._commit(cmd)
        except PersistenceError as e:
            logger.warning("%s not saved, prompt left pending: %s", cmd.type, e)
            return []

    # ---------- conveniences ----------

    def change_hp(self, combatant_id: str, raw: str) -> List[dict]:
        """Quick input: '+5' heals, '-8' damages, '12' sets."""
        return self.dispatch(ChangeHP(combatant_id=combatant_id, change=HPChange.parse(raw)))

    def add_from_content(
        self,
        creature_id: str,
        lookup: CreatureLookup,
        overrides: Optional[CombatantOverrides] = None,
    ) -> List[dict]:
        record = lookup.get(creature_id)
        if record is None:
            raise ValidationError(
                "UNKNOWN_CREATURE", "Creature not found", {"creature_id": creature_id}
            )
        data = combatant_data_from_creature(record, overrides=overrides)
        if overrides is None or overrides.name is None:
            name = unique_name(
                data.name,
                [c.name for c in self._state.combatants.values()],
                self.settings.creature_naming_mode,
            )
            data = data.model_copy(update={"name": name})
        return self.dispatch(AddCombatant(combatant=data))

    def roll_initiative_all(
        self, collect_players: Optional[PlayerInitiativeCollector] = None
    ) -> Optional[List[dict]]:
        """
        Roll every monster, ask the table for player values, commit in one intent.
        Returns None when the collection was cancelled; the encounter is untouched then.
        """
        plan = clock.plan_initiative_rolls(self._state, self.dice, self.rng)

        player_values: Dict[str, clock.InitiativeValue] = {}
        if plan.players:
            if collect_players is None:
                raise ValidationError(
                    "MISSING_INITIATIVE",
                    "Player initiative values are required",
                    {"combatant_ids": list(plan.players)},
                )
            collected = collect_players(
                [self._state.combatants[pid] for pid in plan.players]
            )
            if collected is None:
                logger.info("initiative roll cancelled for %s", self._state.id)
                return None
            player_values = _initiative_values(collected)

        values = plan.complete(player_values)
        return self.dispatch(
            SetInitiatives(
                values={
                    cid: InitiativeInput(initiative=v.initiative, tie_breaker=v.tie_breaker)
                    for cid, v in values.items()
                },
                source="rolled",
            )
        )


def _initiative_values(
    collected: Mapping[str, Union[int, clock.InitiativeValue]],
) -> Dict[str, clock.InitiativeValue]:
    out: Dict[str, clock.InitiativeValue] = {}
    for cid, v in collected.items():
        out[cid] = v if isinstance(v, clock.InitiativeValue) else clock.InitiativeValue(int(v))
    return out


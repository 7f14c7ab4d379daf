# backend/src/dndtracker/core/engine/commands.py

from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from dndtracker.core.engine.rules.ledger import HPChange
from dndtracker.core.schemas import CombatantData, CombatantPatch


class CommandBase(BaseModel):
    model_config = ConfigDict(extra="forbid")
    type: str


class AddCombatant(CommandBase):
    type: Literal["AddCombatant"] = "AddCombatant"
    combatant: CombatantData


class RemoveCombatant(CommandBase):
    type: Literal["RemoveCombatant"] = "RemoveCombatant"
    combatant_id: str


class UpdateCombatant(CommandBase):
    type: Literal["UpdateCombatant"] = "UpdateCombatant"
    combatant_id: str
    patch: CombatantPatch


class ChangeHP(CommandBase):
    type: Literal["ChangeHP"] = "ChangeHP"
    combatant_id: str
    change: HPChange


class InitiativeInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    initiative: int
    tie_breaker: Optional[float] = None


class SetInitiatives(CommandBase):
    """Commit a whole initiative roll at once (monsters rolled, players entered)."""

    type: Literal["SetInitiatives"] = "SetInitiatives"
    values: dict[str, InitiativeInput]
    source: Literal["rolled", "manual"] = "manual"


class StartCombat(CommandBase):
    type: Literal["StartCombat"] = "StartCombat"


class NextTurn(CommandBase):
    type: Literal["NextTurn"] = "NextTurn"


class PrevTurn(CommandBase):
    type: Literal["PrevTurn"] = "PrevTurn"


class EndCombat(CommandBase):
    type: Literal["EndCombat"] = "EndCombat"


class ResetCombat(CommandBase):
    type: Literal["ResetCombat"] = "ResetCombat"


class ResolveRecharge(CommandBase):
    type: Literal["ResolveRecharge"] = "ResolveRecharge"
    combatant_id: str
    ability: str
    total: int


class ResolveConcentration(CommandBase):
    """Outcome of a concentration save: either the roll total or a verdict."""

    type: Literal["ResolveConcentration"] = "ResolveConcentration"
    combatant_id: str
    total: Optional[int] = None
    maintained: Optional[bool] = None


class SpendSpellSlot(CommandBase):
    type: Literal["SpendSpellSlot"] = "SpendSpellSlot"
    combatant_id: str
    level: int = Field(ge=1, le=9)


class RestoreSpellSlot(CommandBase):
    type: Literal["RestoreSpellSlot"] = "RestoreSpellSlot"
    combatant_id: str
    level: int = Field(ge=1, le=9)


class UseDailyAbility(CommandBase):
    type: Literal["UseDailyAbility"] = "UseDailyAbility"
    combatant_id: str
    ability: str


class RestoreDailyAbility(CommandBase):
    type: Literal["RestoreDailyAbility"] = "RestoreDailyAbility"
    combatant_id: str
    ability: str


class UseRechargeAbility(CommandBase):
    type: Literal["UseRechargeAbility"] = "UseRechargeAbility"
    combatant_id: str
    ability: str


class UseLegendaryAction(CommandBase):
    type: Literal["UseLegendaryAction"] = "UseLegendaryAction"
    combatant_id: str
    cost: int = Field(default=1, ge=1)
    pool: Literal["actions", "points"] = "actions"


class UseLegendaryResistance(CommandBase):
    type: Literal["UseLegendaryResistance"] = "UseLegendaryResistance"
    combatant_id: str


class UseReaction(CommandBase):
    type: Literal["UseReaction"] = "UseReaction"
    combatant_id: str


class RecordDeathSave(CommandBase):
    type: Literal["RecordDeathSave"] = "RecordDeathSave"
    combatant_id: str
    success: bool
    critical: bool = False  # natural 20 / natural 1


Command = Union[
    AddCombatant,
    RemoveCombatant,
    UpdateCombatant,
    ChangeHP,
    SetInitiatives,
    StartCombat,
    NextTurn,
    PrevTurn,
    EndCombat,
    ResetCombat,
    ResolveRecharge,
    ResolveConcentration,
    SpendSpellSlot,
    RestoreSpellSlot,
    UseDailyAbility,
    RestoreDailyAbility,
    UseRechargeAbility,
    UseLegendaryAction,
    UseLegendaryResistance,
    UseReaction,
    RecordDeathSave,
]

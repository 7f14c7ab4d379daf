from __future__ import annotations

from typing import Dict, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from dndtracker.core.engine.rules.ledger import HPChange, parse_recharge_threshold


class ResourcePoolSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    current: int = Field(ge=0)
    max: int = Field(ge=0)

    @model_validator(mode="after")
    def _current_within_max(self) -> "ResourcePoolSpec":
        if self.current > self.max:
            raise ValueError("current must not exceed max")
        return self


class RechargeSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    recharge: str = "5-6"
    available: bool = True

    @field_validator("recharge")
    @classmethod
    def _known_range(cls, v: str) -> str:
        parse_recharge_threshold(v)
        return v


class CombatantData(BaseModel):
    """A new combatant as the caller describes it (custom creation or mapped content)."""

    model_config = ConfigDict(extra="forbid")

    id: Optional[str] = None
    name: str = Field(min_length=1)
    hp_max: int = Field(ge=0)
    hp_current: Optional[int] = Field(default=None, ge=0)
    temp_hp: int = Field(default=0, ge=0)
    max_hp_modifier: int = 0
    ac: int = Field(default=10, ge=0)

    initiative: Optional[int] = None
    initiative_tie_breaker: float = 0.0
    initiative_bonus: int = 0

    is_player_character: bool = False
    linked_to: Optional[str] = None

    concentration: bool = False
    concentration_bonus: int = 0

    spell_slots: Dict[int, ResourcePoolSpec] = Field(default_factory=dict)
    daily_uses: Dict[str, ResourcePoolSpec] = Field(default_factory=dict)
    recharge_abilities: list[RechargeSpec] = Field(default_factory=list)

    legendary_actions: Optional[int] = Field(default=None, ge=0)
    legendary_points_max: int = Field(default=0, ge=0)
    legendary_resistances_max: int = Field(default=0, ge=0)

    conditions: Set[str] = Field(default_factory=set)
    lair_initiative: Optional[int] = None

    @model_validator(mode="after")
    def _effective_max_not_negative(self) -> "CombatantData":
        if self.hp_max + self.max_hp_modifier < 0:
            raise ValueError("effective max hp must not be negative")
        return self


class CombatantPatch(BaseModel):
    """Partial update. Only the fields that were sent are applied."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1)
    ac: Optional[int] = Field(default=None, ge=0)

    hp_change: Optional[HPChange] = None
    # quick-entry string ("+5", "-8", "12"); alternative to hp_change
    hp_input: Optional[str] = None
    hp_max: Optional[int] = Field(default=None, ge=0)
    max_hp_modifier: Optional[int] = None
    temp_hp: Optional[int] = Field(default=None, ge=0)

    initiative: Optional[int] = None
    initiative_tie_breaker: Optional[float] = None
    initiative_bonus: Optional[int] = None

    is_player_character: Optional[bool] = None
    linked_to: Optional[str] = None

    concentration: Optional[bool] = None
    concentration_bonus: Optional[int] = None

    spell_slots: Optional[Dict[int, ResourcePoolSpec]] = None
    daily_uses: Optional[Dict[str, ResourcePoolSpec]] = None
    recharge_abilities: Optional[list[RechargeSpec]] = None

    legendary_actions: Optional[int] = Field(default=None, ge=0)
    legendary_points: Optional[int] = Field(default=None, ge=0)
    legendary_points_max: Optional[int] = Field(default=None, ge=0)
    legendary_resistances: Optional[int] = Field(default=None, ge=0)
    legendary_resistances_max: Optional[int] = Field(default=None, ge=0)

    reaction_used: Optional[bool] = None
    death_save_successes: Optional[int] = Field(default=None, ge=0, le=3)
    death_save_failures: Optional[int] = Field(default=None, ge=0, le=3)

    conditions: Optional[Set[str]] = None
    lair_initiative: Optional[int] = None

    @model_validator(mode="after")
    def _one_hp_form(self) -> "CombatantPatch":
        if self.hp_change is not None and self.hp_input is not None:
            raise ValueError("send either hp_change or hp_input, not both")
        return self

    def resolved_hp_change(self) -> Optional[HPChange]:
        if self.hp_input is not None:
            return HPChange.parse(self.hp_input)
        return self.hp_change

    def sent_fields(self) -> set[str]:
        return set(self.model_fields_set)

from .mapper import (
    CombatantOverrides,
    CreatureLookup,
    combatant_data_from_creature,
    combatant_from_creature,
    combatant_from_data,
)
from .naming import unique_name

__all__ = [
    "CombatantOverrides",
    "CreatureLookup",
    "combatant_data_from_creature",
    "combatant_from_creature",
    "combatant_from_data",
    "unique_name",
]

from __future__ import annotations

import os
from typing import Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

NamingMode = Literal["letter", "number", "roman"]

ENV_PREFIX = "DNDTRACKER_"


class TrackerSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    database_url: str = "sqlite:///./dndtracker.sqlite3"

    # player characters get a prompt instead of an automatic roll
    concentration_check_reminder: bool = True
    auto_roll_concentration_npcs: bool = True
    auto_resolve_recharge: bool = True

    legendary_actions_per_round: int = Field(default=3, ge=0)
    creature_naming_mode: NamingMode = "letter"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "TrackerSettings":
        env = os.environ if environ is None else environ
        data: dict[str, str] = {}
        for name in cls.model_fields:
            key = ENV_PREFIX + name.upper()
            if key in env:
                data[name] = env[key]
        # pydantic coerces "true"/"0"/"5" in lax mode
        return cls.model_validate(data)


_settings: Optional[TrackerSettings] = None


def get_settings() -> TrackerSettings:
    global _settings
    if _settings is None:
        _settings = TrackerSettings.from_env()
    return _settings

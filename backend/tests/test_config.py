import pytest
from pydantic import ValidationError

from dndtracker.config import TrackerSettings


def test_defaults():
    s = TrackerSettings()

    assert s.database_url.startswith("sqlite")
    assert s.legendary_actions_per_round == 3
    assert s.concentration_check_reminder is True
    assert s.creature_naming_mode == "letter"


def test_from_env_reads_prefixed_variables():
    s = TrackerSettings.from_env(
        {
            "DNDTRACKER_DATABASE_URL": "sqlite:///:memory:",
            "DNDTRACKER_AUTO_ROLL_CONCENTRATION_NPCS": "false",
            "DNDTRACKER_LEGENDARY_ACTIONS_PER_ROUND": "2",
            "DNDTRACKER_CREATURE_NAMING_MODE": "roman",
            "UNRELATED": "x",
        }
    )

    assert s.database_url == "sqlite:///:memory:"
    assert s.auto_roll_concentration_npcs is False
    assert s.legendary_actions_per_round == 2
    assert s.creature_naming_mode == "roman"


def test_bad_naming_mode_rejected():
    with pytest.raises(ValidationError):
        TrackerSettings.from_env({"DNDTRACKER_CREATURE_NAMING_MODE": "greek"})

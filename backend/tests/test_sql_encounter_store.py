import pytest
from sqlalchemy import inspect, select
from sqlalchemy.exc import OperationalError

from dndtracker.core.engine.commands import AddCombatant, StartCombat
from dndtracker.core.errors import EncounterNotFound, PersistenceError
from dndtracker.core.persistence.runtime_store import (
    DbCreatureLookup,
    SqlEncounterStore,
    new_temporary_id,
)
from dndtracker.core.runtime import EncounterRuntime
from dndtracker.core.schemas import CombatantData
from dndtracker.db import init_db as db_init
from dndtracker.db.models import Creature, Encounter, EncounterSave


def test_runtime_round_trip_through_sql(TestingSessionLocal, settings):
    store = SqlEncounterStore(TestingSessionLocal)
    rt = EncounterRuntime.create(store, "Crypt", settings=settings)

    rt.dispatch(
        AddCombatant(
            combatant=CombatantData(id="z", name="Zombie", hp_max=22, initiative=8)
        )
    )
    rt.dispatch(StartCombat())
    eid = rt.state.id

    with TestingSessionLocal() as db:
        enc = db.get(Encounter, eid)
        assert enc is not None
        assert enc.name == "Crypt"
        saves = db.execute(
            select(EncounterSave)
            .where(EncounterSave.encounter_id == eid)
            .order_by(EncounterSave.id)
        ).scalars().all()
        assert [s.label for s in saves] == ["AddCombatant", "StartCombat"]
        assert saves[-1].state_json["schema_version"] == 1
        assert saves[-1].state_json["events"][0]["type"] == "CombatStarted"

    loaded = store.load(eid)
    assert loaded == rt.state
    assert [label for _, label, _ in store.list_saves(eid)] == ["StartCombat", "AddCombatant"]


def test_unknown_encounter(TestingSessionLocal):
    store = SqlEncounterStore(TestingSessionLocal)

    with pytest.raises(EncounterNotFound) as exc:
        store.load("00000000-0000-0000-0000-000000000000")
    assert exc.value.retryable is False

    with pytest.raises(EncounterNotFound):
        store.load(new_temporary_id())


def test_database_errors_become_persistence_errors(settings):
    class BrokenSession:
        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def add(self, obj):
            pass

        def flush(self):
            raise OperationalError("INSERT", {}, Exception("database is locked"))

    store = SqlEncounterStore(lambda: BrokenSession())
    rt = EncounterRuntime.create(store, settings=settings)
    before = rt.state

    with pytest.raises(PersistenceError):
        rt.dispatch(AddCombatant(combatant=CombatantData(name="Rat", hp_max=1)))
    assert rt.state is before


def test_creature_lookup_reads_content_rows(TestingSessionLocal):
    with TestingSessionLocal() as db:
        row = Creature(name="Goblin", data_json={"hp": {"average": 7}, "ac": [15]})
        db.add(row)
        db.commit()
        cid = row.id

    lookup = DbCreatureLookup(TestingSessionLocal)

    record = lookup.get(cid)
    assert record["name"] == "Goblin"
    assert record["ac"] == [15]
    assert lookup.get("missing") is None


def test_init_db_and_default_session(TestingSessionLocal):
    db_init.init_db()
    tables = set(inspect(db_init.engine).get_table_names())
    assert {"creatures", "encounters", "encounter_saves"} <= tables

    # falls back to the configured session factory
    store = SqlEncounterStore()
    assert store.session_factory is TestingSessionLocal

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dndtracker.core.engine.state import EncounterState
from dndtracker.core.errors import EncounterNotFound, PersistenceError
from dndtracker.core.persistence.state_codec import (
    SCHEMA_VERSION,
    encounter_state_from_dict,
    encounter_state_to_dict,
)
from dndtracker.db import session as db_session
from dndtracker.db.models import Creature, Encounter, EncounterSave

logger = logging.getLogger(__name__)

TEMP_ID_PREFIX = "temp_"


def is_temporary_id(encounter_id: str) -> bool:
    return encounter_id.startswith(TEMP_ID_PREFIX)


def new_temporary_id() -> str:
    return f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"


class EncounterStore(Protocol):
    def load(self, encounter_id: str) -> EncounterState: ...

    def save(
        self,
        encounter_id: str,
        state: EncounterState,
        *,
        events: Optional[List[dict]] = None,
        label: Optional[str] = None,
    ) -> str:
        """Persist a snapshot and return the durable id (new for temp ids)."""
        ...


def _pack_save_payload(*, schema_version: int, state: dict, events: list[dict]) -> dict:
    return {
        "schema_version": int(schema_version),
        "state": state,
        "events": events,
    }


def _unpack_save_payload(state_json: dict) -> tuple[int, dict, list[dict]]:
    if isinstance(state_json, dict) and "state" in state_json:
        sv = int(state_json.get("schema_version", 1) or 1)
        st = state_json.get("state") or {}
        ev = state_json.get("events") or []
        if not isinstance(ev, list):
            ev = []
        return sv, st, ev

    # bare state without the wrapper
    return 1, (state_json if isinstance(state_json, dict) else {}), []


class InMemoryEncounterStore:
    """Dict-backed store; keeps every snapshot, serialised like the SQL store."""

    def __init__(self) -> None:
        self.saves: Dict[str, List[dict]] = {}

    def load(self, encounter_id: str) -> EncounterState:
        history = self.saves.get(encounter_id)
        if not history:
            raise EncounterNotFound(f"Encounter {encounter_id} not found", encounter_id)
        _sv, state, _events = _unpack_save_payload(history[-1])
        return encounter_state_from_dict(state)

    def save(
        self,
        encounter_id: str,
        state: EncounterState,
        *,
        events: Optional[List[dict]] = None,
        label: Optional[str] = None,
    ) -> str:
        durable_id = str(uuid.uuid4()) if is_temporary_id(encounter_id) else encounter_id
        payload = _pack_save_payload(
            schema_version=SCHEMA_VERSION,
            state=encounter_state_to_dict(replace(state, id=durable_id)),
            events=list(events or []),
        )
        self.saves.setdefault(durable_id, []).append(payload)
        return durable_id


class SqlEncounterStore:
    """Snapshots in encounter_saves; the latest row of an encounter wins."""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None) -> None:
        self.session_factory = session_factory or db_session.SessionLocal

    def load(self, encounter_id: str) -> EncounterState:
        if is_temporary_id(encounter_id):
            raise EncounterNotFound(
                f"Encounter {encounter_id} has not been persisted yet", encounter_id
            )
        try:
            with self.session_factory() as db:
                row = db.execute(
                    select(EncounterSave)
                    .where(EncounterSave.encounter_id == encounter_id)
                    .order_by(EncounterSave.id.desc())
                    .limit(1)
                ).scalar_one_or_none()
                if row is None:
                    raise EncounterNotFound(
                        f"Encounter {encounter_id} not found", encounter_id
                    )
                _sv, state, _events = _unpack_save_payload(row.state_json)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not load encounter: {e}", encounter_id) from e
        return encounter_state_from_dict(state)

    def save(
        self,
        encounter_id: str,
        state: EncounterState,
        *,
        events: Optional[List[dict]] = None,
        label: Optional[str] = None,
    ) -> str:
        try:
            with self.session_factory() as db:
                enc = None if is_temporary_id(encounter_id) else db.get(Encounter, encounter_id)
                if enc is None:
                    enc = Encounter(name=state.name)
                    if not is_temporary_id(encounter_id):
                        enc.id = encounter_id
                    db.add(enc)
                    db.flush()
                elif enc.name != state.name:
                    enc.name = state.name

                durable_id = enc.id
                db.add(
                    EncounterSave(
                        encounter_id=durable_id,
                        label=label,
                        state_json=_pack_save_payload(
                            schema_version=SCHEMA_VERSION,
                            state=encounter_state_to_dict(replace(state, id=durable_id)),
                            events=list(events or []),
                        ),
                    )
                )
                db.commit()
        except SQLAlchemyError as e:
            logger.warning("save of encounter %s failed: %s", encounter_id, e)
            raise PersistenceError(f"Could not save encounter: {e}", encounter_id) from e

        if durable_id != encounter_id:
            logger.info("encounter %s persisted as %s", encounter_id, durable_id)
        return durable_id

    def list_saves(self, encounter_id: str) -> List[Tuple[int, Optional[str], int]]:
        """(save id, label, schema version), newest first."""
        with self.session_factory() as db:
            rows = db.execute(
                select(EncounterSave)
                .where(EncounterSave.encounter_id == encounter_id)
                .order_by(EncounterSave.id.desc())
            ).scalars()
            return [(r.id, r.label, _unpack_save_payload(r.state_json)[0]) for r in rows]


class DbCreatureLookup:
    """Content lookup backed by the creatures table."""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None) -> None:
        self.session_factory = session_factory or db_session.SessionLocal

    def get(self, creature_id: str) -> Optional[Dict[str, Any]]:
        with self.session_factory() as db:
            row = db.get(Creature, creature_id)
            if row is None:
                return None
            data = dict(row.data_json or {})
            data.setdefault("name", row.name)
            return data

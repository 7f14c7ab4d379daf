from __future__ import annotations

from typing import Iterable, List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from dndtracker.config import TrackerSettings
from dndtracker.core.engine.dice import DiceRoll, parse_dice
from dndtracker.db.base import Base
import dndtracker.db.session as db_session
import dndtracker.db.init_db as db_init


@pytest.fixture(scope="session")
def engine():
    # SQLite in-memory, one connection for the whole test session
    eng = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    return eng


@pytest.fixture(scope="session")
def TestingSessionLocal(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture(scope="session", autouse=True)
def _patch_db(engine, TestingSessionLocal):
    db_session.engine = engine
    db_session.SessionLocal = TestingSessionLocal

    db_init.engine = engine

    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


class ScriptedDice:
    """Hands out the given natural rolls in order; modifiers from the notation apply."""

    def __init__(self, naturals: Iterable[int] = ()) -> None:
        self.naturals: List[int] = list(naturals)
        self.calls: List[str] = []

    def roll(self, notation: str) -> DiceRoll:
        self.calls.append(notation)
        n, _d, k = parse_dice(notation)
        rolls = [self.naturals.pop(0) for _ in range(n)]
        return DiceRoll(notation=notation, rolls=rolls, modifier=k, total=sum(rolls) + k)


class BrokenDice:
    def roll(self, notation: str) -> DiceRoll:
        raise ConnectionError("dice service unavailable")


@pytest.fixture()
def scripted_dice():
    return ScriptedDice


@pytest.fixture()
def broken_dice():
    return BrokenDice()


@pytest.fixture()
def settings():
    return TrackerSettings()

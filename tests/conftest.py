"""
Shared fixtures for the bracket engine test suite.

Every test gets its own SQLite file under tmp_path: the engine opens a
fresh connection per invocation, and :memory: databases are per-connection.
"""

import random

import pytest

from database import db_session, init_db, reset_db_init_flag
from services.match_service import MatchService
from services.override_service import OverrideService
from services.progression_service import CompletionTrigger, ProgressionEngine
from services.timeline_service import TimelineService
from services.tournament_service import TournamentService

# NOTE: With `asyncio_mode = auto` in pyproject.toml, pytest-asyncio manages
# the event loop automatically. Do NOT define a custom event_loop fixture.


@pytest.fixture
async def db_path(tmp_path):
    """Initialized database file for one test."""
    reset_db_init_flag()
    path = str(tmp_path / "bracket_test.db")
    await init_db(path)
    return path


@pytest.fixture
async def db(db_path):
    async with db_session(db_path) as conn:
        yield conn


@pytest.fixture
def timeline(db_path):
    return TimelineService(db_path)


@pytest.fixture
def engine(db_path, timeline):
    return ProgressionEngine(db_path, timeline, rng=random.Random(7))


@pytest.fixture
def trigger(engine):
    return CompletionTrigger(engine)


@pytest.fixture
def match_service(db, trigger, timeline):
    return MatchService(db, trigger, timeline)


@pytest.fixture
def override_service(db, engine, trigger):
    return OverrideService(db, engine, trigger)


@pytest.fixture
def make_bracket(db):
    """Create and seed a tournament with players in the given seed order."""

    async def _make(players, auto_progress=True, simulation_mode=False, name="Test Cup"):
        service = TournamentService(db)
        tournament, error = await service.create_tournament(
            name,
            len(players),
            auto_progress=auto_progress,
            simulation_mode=simulation_mode,
        )
        assert error is None, error

        matches, error = await service.seed_bracket(
            tournament.id, players, seed_order=players
        )
        assert error is None, error
        return tournament, matches

    return _make


def players(n):
    return [f"p{i}" for i in range(1, n + 1)]


@pytest.fixture
def roster():
    """Player IDs p1..pN."""
    return players

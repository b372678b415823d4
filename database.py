"""
database.py — Bracket Engine Database Module
---------------------------------------------
Provides DB initialization for the bracket auto-progression engine.

Tables:
- meta: Schema version tracking
- tournaments: Tournament records, settings and champion
- matches: Single elimination bracket matches
- round_progressions: One marker per (tournament, round) that has progressed
- match_reports: Per-participant result reports awaiting reconciliation
- match_overrides: Operator override audit history
- timeline: Advisory audit events (never read back by the engine)

Every handler invocation opens its own connection through db_session(),
so concurrent completions never share a transaction.
"""

from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import aiosqlite

log = logging.getLogger(__name__)

DB_NAME = os.getenv("BRACKET_DB", "bracket_engine.db")

# Seconds a writer waits on a locked database before giving up
DB_TIMEOUT = float(os.getenv("BRACKET_DB_TIMEOUT", "30"))

SCHEMA_VERSION = 3

# Idempotency flag
_db_initialized = False


@asynccontextmanager
async def db_session(
    db_path: Optional[str] = None,
    *,
    autocommit: bool = False,
) -> AsyncIterator[aiosqlite.Connection]:
    """
    Open a connection with Row factory and busy timeout applied.

    autocommit=True disables the sqlite3 implicit transactions so callers
    can issue BEGIN IMMEDIATE / COMMIT themselves.
    """
    target_db = db_path or DB_NAME
    kwargs = {"timeout": DB_TIMEOUT}
    if autocommit:
        kwargs["isolation_level"] = None

    async with aiosqlite.connect(target_db, **kwargs) as db:
        db.row_factory = aiosqlite.Row
        await db.execute("PRAGMA foreign_keys = ON")
        yield db


async def init_db_once(db_path: Optional[str] = None) -> float:
    """
    Idempotent database initialization. Safe to call multiple times.

    Returns the time taken in seconds (0 if already initialized).
    """
    global _db_initialized
    if _db_initialized:
        log.debug("Database already initialized, skipping")
        return 0.0

    start = time.perf_counter()
    await init_db(db_path)
    _db_initialized = True
    elapsed = time.perf_counter() - start
    return elapsed


def reset_db_init_flag():
    """Reset the initialization flag (for testing only)."""
    global _db_initialized
    _db_initialized = False


async def create_schema(db: aiosqlite.Connection) -> None:
    """Create every table on an open connection."""
    # ------------------------------------------------------------------
    # META - Schema version tracking
    # ------------------------------------------------------------------
    await db.execute(
        """
        CREATE TABLE IF NOT EXISTS meta (
            key   TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
        """
    )

    await db.execute(
        """
        INSERT OR REPLACE INTO meta (key, value)
        VALUES ('schema_version', ?)
        """,
        (str(SCHEMA_VERSION),),
    )

    # ------------------------------------------------------------------
    # TOURNAMENTS - Single Elimination tournament records
    # ------------------------------------------------------------------
    await db.execute(
        """
        CREATE TABLE IF NOT EXISTS tournaments (
            id                      INTEGER PRIMARY KEY AUTOINCREMENT,
            name                    TEXT NOT NULL,
            status                  TEXT NOT NULL DEFAULT 'setup',
            current_round           INTEGER NOT NULL DEFAULT 0,
            total_rounds            INTEGER NOT NULL DEFAULT 0,
            max_players             INTEGER NOT NULL,
            champion                TEXT,
            auto_progress           INTEGER NOT NULL DEFAULT 1,
            simulation_mode         INTEGER NOT NULL DEFAULT 0,
            force_advance           INTEGER NOT NULL DEFAULT 0,
            created_at              INTEGER DEFAULT (strftime('%s', 'now')),
            completed_at            INTEGER,
            archived_at             INTEGER
        )
        """
    )

    await db.execute(
        "CREATE INDEX IF NOT EXISTS idx_tournaments_status ON tournaments(status)"
    )

    # ------------------------------------------------------------------
    # MATCHES - SE bracket matches
    # ------------------------------------------------------------------
    await db.execute(
        """
        CREATE TABLE IF NOT EXISTS matches (
            id                      INTEGER PRIMARY KEY AUTOINCREMENT,
            tournament_id           INTEGER NOT NULL,
            match_key               TEXT NOT NULL,
            round                   INTEGER NOT NULL,
            match_index             INTEGER NOT NULL,
            player_a                TEXT,
            player_b                TEXT,
            score_a                 INTEGER NOT NULL DEFAULT 0,
            score_b                 INTEGER NOT NULL DEFAULT 0,
            winner                  TEXT,
            status                  TEXT NOT NULL DEFAULT 'pending',
            reported_by             TEXT,
            submitted_at            INTEGER,
            created_at              INTEGER DEFAULT (strftime('%s', 'now')),
            override_admin_id       TEXT,
            override_reason         TEXT,
            override_at             INTEGER,
            UNIQUE (tournament_id, round, match_index),
            FOREIGN KEY (tournament_id) REFERENCES tournaments(id)
        )
        """
    )

    await db.execute(
        "CREATE INDEX IF NOT EXISTS idx_matches_tournament ON matches(tournament_id, round)"
    )

    # ------------------------------------------------------------------
    # ROUND_PROGRESSIONS - At most one row per (tournament, round)
    # ------------------------------------------------------------------
    await db.execute(
        """
        CREATE TABLE IF NOT EXISTS round_progressions (
            tournament_id           INTEGER NOT NULL,
            round                   INTEGER NOT NULL,
            outcome                 TEXT NOT NULL,
            forced                  INTEGER NOT NULL DEFAULT 0,
            created_at              INTEGER DEFAULT (strftime('%s', 'now')),
            PRIMARY KEY (tournament_id, round),
            FOREIGN KEY (tournament_id) REFERENCES tournaments(id)
        )
        """
    )

    # ------------------------------------------------------------------
    # MATCH_REPORTS - Participant reports pending reconciliation
    # ------------------------------------------------------------------
    await db.execute(
        """
        CREATE TABLE IF NOT EXISTS match_reports (
            match_id                INTEGER NOT NULL,
            reporter_id             TEXT NOT NULL,
            score_a                 INTEGER NOT NULL,
            score_b                 INTEGER NOT NULL,
            winner                  TEXT NOT NULL,
            reported_at             INTEGER DEFAULT (strftime('%s', 'now')),
            PRIMARY KEY (match_id, reporter_id),
            FOREIGN KEY (match_id) REFERENCES matches(id)
        )
        """
    )

    # ------------------------------------------------------------------
    # MATCH_OVERRIDES - Operator audit history (append only)
    # ------------------------------------------------------------------
    await db.execute(
        """
        CREATE TABLE IF NOT EXISTS match_overrides (
            id                      INTEGER PRIMARY KEY AUTOINCREMENT,
            match_id                INTEGER NOT NULL,
            admin_id                TEXT NOT NULL,
            reason                  TEXT NOT NULL,
            previous_winner         TEXT,
            new_winner              TEXT NOT NULL,
            created_at              INTEGER DEFAULT (strftime('%s', 'now')),
            FOREIGN KEY (match_id) REFERENCES matches(id)
        )
        """
    )

    # ------------------------------------------------------------------
    # TIMELINE - Advisory audit events
    # ------------------------------------------------------------------
    await db.execute(
        """
        CREATE TABLE IF NOT EXISTS timeline (
            id                      INTEGER PRIMARY KEY AUTOINCREMENT,
            tournament_id           INTEGER NOT NULL,
            action                  TEXT NOT NULL,
            actor                   TEXT NOT NULL,
            detail                  TEXT,
            created_at              INTEGER DEFAULT (strftime('%s', 'now'))
        )
        """
    )

    await db.execute(
        "CREATE INDEX IF NOT EXISTS idx_timeline_tournament ON timeline(tournament_id)"
    )

    await db.commit()


async def init_db(db_path: Optional[str] = None) -> None:
    """Initialize the database with the bracket engine schema."""
    target_db = db_path or DB_NAME

    async with aiosqlite.connect(target_db) as db:
        # WAL lets readers proceed while a round is being generated
        if target_db != ":memory:":
            await db.execute("PRAGMA journal_mode = WAL")
        await db.execute("PRAGMA foreign_keys = ON")
        await create_schema(db)
        log.info("[DB] Schema initialized at %s (v%s)", target_db, SCHEMA_VERSION)


async def run_migrations(db: aiosqlite.Connection) -> None:
    """
    Run bracket engine migrations.

    Uses the hardcoded MIGRATIONS list from migrations/__init__.py.
    """
    log.debug("[DB] Starting migration runner...")

    try:
        from migrations import run_migrations as run_core_migrations

        await run_core_migrations(db)
    except Exception as e:
        log.error(f"[DB] Migration error: {e}", exc_info=True)
        raise


async def validate_db_connectivity(db_path: Optional[str] = None) -> bool:
    """
    Validate database connectivity.
    Returns True if connection succeeds, raises exception otherwise.
    """
    target_db = db_path or DB_NAME
    try:
        async with aiosqlite.connect(target_db) as db:
            await db.execute("SELECT 1")
        return True
    except Exception as e:
        log.error(f"[DB] Database connectivity check failed: {e}")
        raise


async def get_core_tables() -> list[str]:
    """Return list of core tables that should exist."""
    return [
        "meta",
        "tournaments",
        "matches",
        "round_progressions",
        "match_reports",
        "match_overrides",
        "timeline",
    ]


async def validate_schema(db_path: Optional[str] = None) -> dict:
    """
    Validate all core tables exist.
    Returns dict with table names and their existence status.
    """
    target_db = db_path or DB_NAME
    core_tables = await get_core_tables()
    result = {}

    async with aiosqlite.connect(target_db) as db:
        for table in core_tables:
            async with db.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
            ) as cursor:
                row = await cursor.fetchone()
                result[table] = row is not None

    return result

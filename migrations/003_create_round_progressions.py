"""
Migration 003: Create round_progressions
-----------------------------------------
Databases created before the progression marker existed get the table
here, then get one marker per round that already has a successor round so
the guard never regenerates it.
"""

import logging
import aiosqlite

log = logging.getLogger(__name__)


async def run(db: aiosqlite.Connection) -> None:
    """Create round_progressions and backfill markers."""
    try:
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS round_progressions (
                tournament_id   INTEGER NOT NULL,
                round           INTEGER NOT NULL,
                outcome         TEXT NOT NULL,
                forced          INTEGER NOT NULL DEFAULT 0,
                created_at      INTEGER DEFAULT (strftime('%s', 'now')),
                PRIMARY KEY (tournament_id, round)
            )
            """
        )

        cursor = await db.execute(
            """
            INSERT OR IGNORE INTO round_progressions (tournament_id, round, outcome)
            SELECT DISTINCT tournament_id, round - 1, 'next_round'
            FROM matches
            WHERE round > 1
            """
        )
        if cursor.rowcount:
            log.info(f"[MIGRATION-003] Backfilled {cursor.rowcount} round markers")

        await db.commit()
        log.info("[MIGRATION-003] Round progression markers complete")

    except Exception as e:
        log.error(f"[MIGRATION-003] Failed: {e}")
        raise

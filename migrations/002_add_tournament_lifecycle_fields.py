"""
Migration 002: Add lifecycle fields to tournaments
---------------------------------------------------
Adds force_advance (operator flag), completed_at and archived_at.
"""

import logging
import aiosqlite

log = logging.getLogger(__name__)


async def run(db: aiosqlite.Connection) -> None:
    """Add lifecycle fields to tournaments table."""
    try:
        cursor = await db.execute("PRAGMA table_info(tournaments)")
        columns = [row[1] for row in await cursor.fetchall()]

        if "force_advance" not in columns:
            await db.execute(
                "ALTER TABLE tournaments ADD COLUMN force_advance INTEGER NOT NULL DEFAULT 0"
            )
            log.info("[MIGRATION-002] Added force_advance column")

        if "completed_at" not in columns:
            await db.execute("ALTER TABLE tournaments ADD COLUMN completed_at INTEGER")
            log.info("[MIGRATION-002] Added completed_at column")

        if "archived_at" not in columns:
            await db.execute("ALTER TABLE tournaments ADD COLUMN archived_at INTEGER")
            log.info("[MIGRATION-002] Added archived_at column")

        await db.commit()
        log.info("[MIGRATION-002] Tournament lifecycle fields complete")

    except Exception as e:
        log.error(f"[MIGRATION-002] Failed: {e}")
        raise

"""
Migration 001: Add override audit fields to matches
----------------------------------------------------
Adds override_admin_id, override_reason, override_at so the most recent
operator override is visible on the match row itself.
"""

import logging
import aiosqlite

log = logging.getLogger(__name__)


async def run(db: aiosqlite.Connection) -> None:
    """Add override fields to matches table."""
    try:
        cursor = await db.execute("PRAGMA table_info(matches)")
        columns = [row[1] for row in await cursor.fetchall()]

        if "override_admin_id" not in columns:
            await db.execute("ALTER TABLE matches ADD COLUMN override_admin_id TEXT")
            log.info("[MIGRATION-001] Added override_admin_id column")

        if "override_reason" not in columns:
            await db.execute("ALTER TABLE matches ADD COLUMN override_reason TEXT")
            log.info("[MIGRATION-001] Added override_reason column")

        if "override_at" not in columns:
            await db.execute("ALTER TABLE matches ADD COLUMN override_at INTEGER")
            log.info("[MIGRATION-001] Added override_at column")

        await db.commit()
        log.info("[MIGRATION-001] Match override fields complete")

    except Exception as e:
        log.error(f"[MIGRATION-001] Failed: {e}")
        raise

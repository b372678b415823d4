"""
Bracket Engine Migrations Package
---------------------------------
Brings databases created by older schema versions up to date.
init_db() already creates the current schema, so every migration here is
idempotent and safe to run on a fresh database.
"""

import importlib
import logging
import aiosqlite

log = logging.getLogger(__name__)

_add_override_fields = importlib.import_module(
    ".001_add_match_override_fields", package="migrations"
)
_add_lifecycle_fields = importlib.import_module(
    ".002_add_tournament_lifecycle_fields", package="migrations"
)
_create_round_progressions = importlib.import_module(
    ".003_create_round_progressions", package="migrations"
)

# List of migrations in order
MIGRATIONS = [
    _add_override_fields,  # override_admin_id/reason/at on matches
    _add_lifecycle_fields,  # force_advance/completed_at/archived_at
    _create_round_progressions,  # idempotency markers + backfill
]


async def run_migrations(db: aiosqlite.Connection) -> None:
    """
    Run bracket engine migrations.

    This runner uses the hard-coded MIGRATIONS list above.
    It does NOT scan for migration files dynamically.
    """
    log.debug("[MIGRATIONS] Starting migration runner...")
    migrations_run = 0

    for migration in MIGRATIONS:
        module_name = getattr(migration, "__name__", "unknown")
        try:
            await migration.run(db)
            migrations_run += 1
            log.debug(f"[MIGRATIONS] Ran {module_name}")
        except Exception as e:
            log.error(f"[MIGRATIONS] Migration {module_name} failed: {e}", exc_info=True)
            raise

    log.info(f"[MIGRATIONS] Complete ({migrations_run} migrations checked)")


__all__ = ["run_migrations", "MIGRATIONS"]

"""
bot.py — Bracket Engine Bot Entry Point
----------------------------------------
Startup sequence with pre-flight checks, lockfile handling, and clean
shutdown. The progression engine and its completion trigger are built once
here and shared with the bracket cog.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

import aiosqlite
import discord
from discord.ext import commands

from database import (
    DB_NAME,
    init_db_once,
    run_migrations,
    validate_db_connectivity,
    validate_schema,
)
from services.progression_service import CompletionTrigger, ProgressionEngine
from services.timeline_service import TimelineService

# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------

DISCORD_TOKEN: str = os.getenv("DISCORD_TOKEN", "").strip()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s | %(levelname)-5s | %(name)s: %(message)s",
)
log = logging.getLogger("bracket-bot")

LOCKFILE = Path(__file__).parent / "bot.lock"

# -----------------------------------------------------------------------------
# Bot Setup
# -----------------------------------------------------------------------------

intents = discord.Intents.default()
# Slash commands only; no privileged intents
intents.presences = False
intents.members = False
intents.message_content = False


class BracketBot(commands.Bot):
    """Discord front end for the bracket auto-progression engine."""

    def __init__(self, db_path: Optional[str] = None):
        super().__init__(command_prefix="!", intents=intents)
        self.db_path = db_path or DB_NAME
        self.engine: Optional[ProgressionEngine] = None
        self.trigger: Optional[CompletionTrigger] = None
        self._startup_complete = False

    async def run_startup_checks(self) -> None:
        """
        Pre-flight checks before Discord login.
        Fails fast with clear errors if anything is missing.
        """
        print("\n" + "=" * 60)
        print(">> Bracket Engine — Pre-flight Checks")
        print("=" * 60)

        if not DISCORD_TOKEN:
            raise RuntimeError(
                "❌ DISCORD_TOKEN not set in environment.\n"
                "   Set it in your .env file or environment variables."
            )
        print("[✓] DISCORD_TOKEN present ............. OK")

        try:
            await validate_db_connectivity(self.db_path)
            print(f"[✓] Database connectivity ............. OK ({self.db_path})")
        except aiosqlite.Error as e:
            raise RuntimeError(
                f"❌ Database connection failed: {e}\n"
                f"   Check that {self.db_path} is accessible and not locked."
            ) from e

        try:
            await init_db_once(self.db_path)
            print("[✓] Schema initialization ............. OK")
        except aiosqlite.Error as e:
            raise RuntimeError(f"❌ Schema initialization failed: {e}") from e

        schema_status = await validate_schema(self.db_path)
        missing = [t for t, exists in schema_status.items() if not exists]
        if missing:
            raise RuntimeError(f"❌ Schema validation failed: missing {', '.join(missing)}")
        print("[✓] Core tables validated ............. OK")

        print("-" * 60)
        print("[+] Pre-flight checks complete")
        print("-" * 60 + "\n")

    async def setup_hook(self):
        """4-phase startup sequence."""
        print("\n" + "=" * 60)
        print(">> Bracket Bot Startup")
        print("=" * 60)

        # Phase 1: Migrations
        phase1_start = time.perf_counter()
        async with aiosqlite.connect(self.db_path) as db:
            await run_migrations(db)
        phase1_elapsed = time.perf_counter() - phase1_start
        print(f"[1/4] Database & migrations ........... OK ({phase1_elapsed:.2f}s)")

        # Phase 2: Engine
        phase2_start = time.perf_counter()
        self._init_engine()
        phase2_elapsed = time.perf_counter() - phase2_start
        print(f"[2/4] Progression engine .............. OK ({phase2_elapsed:.2f}s)")

        # Phase 3: Cogs
        phase3_start = time.perf_counter()
        await self._load_cogs()
        phase3_elapsed = time.perf_counter() - phase3_start
        print(f"[3/4] Cogs loaded ..................... OK ({phase3_elapsed:.2f}s)")

        # Phase 4: Sync commands
        phase4_start = time.perf_counter()
        synced = await self.tree.sync()
        log.info(f"Synced {len(synced)} global commands")
        phase4_elapsed = time.perf_counter() - phase4_start
        print(f"[4/4] Command sync .................... OK ({phase4_elapsed:.2f}s)")

        total = phase1_elapsed + phase2_elapsed + phase3_elapsed + phase4_elapsed
        print("-" * 60)
        print(f"[+] Startup complete in {total:.2f}s")
        print("-" * 60)

        self._startup_complete = True

    def _init_engine(self):
        timeline = TimelineService(self.db_path)
        self.engine = ProgressionEngine(self.db_path, timeline)
        self.trigger = CompletionTrigger(self.engine)

    async def _load_cogs(self):
        cogs = ["cogs.brackets"]

        for cog_path in cogs:
            print(f"    Loading {cog_path}...", end=" ")
            try:
                await self.load_extension(cog_path)
            except commands.ExtensionError as e:
                print(f"FAILED: {e}")
                log.error(f"Failed to load {cog_path}: {e}", exc_info=True)
                continue
            print("OK")
            log.info(f"Loaded cog: {cog_path}")


bot = BracketBot()


@bot.event
async def on_ready():
    log.info(f"Logged in as {bot.user} (ID: {bot.user.id if bot.user else 'n/a'})")
    print("\n" + "-" * 60)
    print("[+] BRACKET BOT IS FULLY ONLINE")
    print("-" * 60 + "\n")


# -----------------------------------------------------------------------------
# Shutdown
# -----------------------------------------------------------------------------


async def shutdown():
    """Graceful shutdown: let in-flight progressions finish first."""
    log.info("Shutdown: starting graceful shutdown")

    if bot.trigger is not None:
        await bot.trigger.drain()
        log.info("Shutdown: pending progressions drained")

    try:
        await bot.close()
    except Exception:
        log.exception("Error closing bot")

    log.info("Shutdown: complete")


def cleanup_lockfile():
    """Remove lockfile if it exists."""
    if LOCKFILE.exists():
        try:
            LOCKFILE.unlink()
            log.debug("Lockfile removed")
        except OSError as e:
            log.warning(f"Could not remove lockfile: {e}")


# -----------------------------------------------------------------------------
# Main Entry
# -----------------------------------------------------------------------------


async def main():
    """Main entry point with lockfile handling and pre-flight checks."""

    if LOCKFILE.exists():
        pid = LOCKFILE.read_text().strip()
        log.warning(
            f"⚠️  Lockfile exists (PID: {pid}). "
            "Previous instance may not have shut down cleanly. Continuing anyway."
        )

    try:
        LOCKFILE.write_text(str(os.getpid()))
        log.debug(f"Created lockfile: {LOCKFILE}")

        await bot.run_startup_checks()

        log.info("Starting Bracket Bot...")
        await bot.start(DISCORD_TOKEN)

    except asyncio.CancelledError:
        log.info("Shutdown signal received (cancelled)")
        await shutdown()
    except Exception as e:
        log.exception(f"Fatal error: {e}")
        await shutdown()
        raise
    finally:
        cleanup_lockfile()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        cleanup_lockfile()
        print("\nBot stopped.")

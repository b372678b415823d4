"""
services/round_guard.py — At-most-once round progression
---------------------------------------------------------
Several matches of one round can complete within milliseconds of each
other, and every one of those completions may conclude "round complete".
RoundGuard makes the check ("has this round already progressed?") and the
creation of whatever the progression produces a single transaction:

  BEGIN IMMEDIATE                      -- takes the write lock up front
  SELECT marker / round n+1 matches    -- re-read under the lock
  INSERT round_progressions marker     -- PK(tournament_id, round)
  <create callback on same connection> -- round n+1 matches, if any,
                                       -- and the tournament record
  COMMIT

Exactly one caller per (tournament_id, round) gets True back.
"""

from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable, Optional

import aiosqlite

from database import db_session
from services.status_enums import ProgressionOutcome

log = logging.getLogger(__name__)

CreateCallback = Callable[[aiosqlite.Connection], Awaitable[None]]


async def _rollback(db: aiosqlite.Connection) -> None:
    if db.in_transaction:
        await db.execute("ROLLBACK")


class RoundGuard:
    """Serializes progression of a round across concurrent invocations."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path

    @staticmethod
    async def _already_progressed(
        db: aiosqlite.Connection, tournament_id: int, round_num: int
    ) -> bool:
        cursor = await db.execute(
            "SELECT 1 FROM round_progressions WHERE tournament_id = ? AND round = ?",
            (tournament_id, round_num),
        )
        if await cursor.fetchone():
            return True

        cursor = await db.execute(
            "SELECT 1 FROM matches WHERE tournament_id = ? AND round = ? LIMIT 1",
            (tournament_id, round_num + 1),
        )
        return await cursor.fetchone() is not None

    async def has_progressed(self, tournament_id: int, round_num: int) -> bool:
        """Read-only check, for callers that only want to report state."""
        async with db_session(self.db_path) as db:
            return await self._already_progressed(db, tournament_id, round_num)

    async def claim(
        self,
        tournament_id: int,
        round_num: int,
        outcome: ProgressionOutcome,
        create: Optional[CreateCallback] = None,
        *,
        forced: bool = False,
    ) -> bool:
        """
        Atomically record that round_num progressed and run create().

        Returns False, with nothing written, when another invocation already
        progressed the round. Any other failure rolls back and propagates.
        """
        async with db_session(self.db_path, autocommit=True) as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                if await self._already_progressed(db, tournament_id, round_num):
                    await _rollback(db)
                    log.info(
                        f"[GUARD] Round {round_num} of tournament {tournament_id} "
                        "already progressed; skipping"
                    )
                    return False

                await db.execute(
                    """
                    INSERT INTO round_progressions (
                        tournament_id, round, outcome, forced, created_at
                    ) VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        tournament_id,
                        round_num,
                        outcome.value,
                        int(forced),
                        int(time.time()),
                    ),
                )

                if create is not None:
                    await create(db)

                await db.execute("COMMIT")

            except aiosqlite.IntegrityError as e:
                # Marker or (round, match_index) collision: someone else won
                await _rollback(db)
                log.info(
                    f"[GUARD] Round {round_num} of tournament {tournament_id} "
                    f"claimed concurrently ({e}); skipping"
                )
                return False
            except BaseException:
                await _rollback(db)
                raise

        log.info(
            f"[GUARD] Claimed round {round_num} of tournament {tournament_id} "
            f"→ {outcome.value}{' (forced)' if forced else ''}"
        )
        return True

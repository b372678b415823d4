"""
services/tournament_progress.py — Tournament status updates
------------------------------------------------------------
Moves the tournament record forward as part of a round progression:
current_round/status after a new round, champion/status at the end.
Both writes are conditional so replays and races leave the row unchanged.

Pass the round guard's connection as db to write inside its transaction;
the caller then owns the commit.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

import aiosqlite

from database import db_session
from services.errors import NotFoundError
from services.status_enums import TournamentStatus
from services.status_helpers import check_tournament_transition
from services.tournament_service import fetch_tournament

log = logging.getLogger(__name__)


class TournamentProgressUpdater:
    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path

    async def advance_round(
        self,
        tournament_id: int,
        new_round: int,
        db: Optional[aiosqlite.Connection] = None,
    ) -> bool:
        """
        Record that new_round now exists.

        current_round only ever moves forward; status becomes live once the
        bracket is past round 1.
        """
        if db is not None:
            return await self._advance_round(db, tournament_id, new_round)

        async with db_session(self.db_path) as conn:
            advanced = await self._advance_round(conn, tournament_id, new_round)
            await conn.commit()
        return advanced

    async def declare_champion(
        self,
        tournament_id: int,
        champion: str,
        db: Optional[aiosqlite.Connection] = None,
    ) -> bool:
        """Set the champion and complete the tournament, exactly once."""
        if db is not None:
            return await self._declare_champion(db, tournament_id, champion)

        async with db_session(self.db_path) as conn:
            declared = await self._declare_champion(conn, tournament_id, champion)
            await conn.commit()
        return declared

    async def _advance_round(
        self, db: aiosqlite.Connection, tournament_id: int, new_round: int
    ) -> bool:
        tournament = await fetch_tournament(db, tournament_id)
        if tournament is None:
            raise NotFoundError(f"Tournament {tournament_id} not found")

        status = tournament.status
        if new_round > 1 and status != TournamentStatus.LIVE.value:
            status = check_tournament_transition(status, TournamentStatus.LIVE).value

        cursor = await db.execute(
            """
            UPDATE tournaments
            SET current_round = ?, status = ?
            WHERE id = ? AND status = ? AND current_round < ?
            """,
            (new_round, status, tournament_id, tournament.status, new_round),
        )

        if cursor.rowcount != 1:
            log.info(
                f"[PROGRESSION] Tournament {tournament_id} already at round "
                f"{tournament.current_round}; not moving to {new_round}"
            )
            return False

        log.info(
            f"[PROGRESSION] Tournament {tournament_id} → round {new_round} ({status})"
        )
        return True

    async def _declare_champion(
        self, db: aiosqlite.Connection, tournament_id: int, champion: str
    ) -> bool:
        tournament = await fetch_tournament(db, tournament_id)
        if tournament is None:
            raise NotFoundError(f"Tournament {tournament_id} not found")

        if tournament.champion is not None:
            log.info(
                f"[PROGRESSION] Tournament {tournament_id} already has "
                f"champion {tournament.champion}"
            )
            return False

        check_tournament_transition(tournament.status, TournamentStatus.COMPLETED)

        cursor = await db.execute(
            """
            UPDATE tournaments
            SET champion = ?, status = ?, completed_at = ?
            WHERE id = ? AND status = ? AND champion IS NULL
            """,
            (
                champion,
                TournamentStatus.COMPLETED.value,
                int(time.time()),
                tournament_id,
                tournament.status,
            ),
        )

        if cursor.rowcount != 1:
            log.warning(
                f"[PROGRESSION] Tournament {tournament_id} changed while declaring champion"
            )
            return False

        log.info(f"[PROGRESSION] Tournament {tournament_id} completed! Champion: {champion}")
        return True

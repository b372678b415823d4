"""
services/override_service.py — Operator overrides and force-advance
--------------------------------------------------------------------
Admin-only corrections that bypass the player submission contract:

- force_set_winner(): set or replace a match winner, scores optional,
  with an append-only audit row per override
- request_force_advance(): raise the tournament's force_advance flag so
  the next completion pushes the round through
- force_advance(): push the current round through now
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import List, Optional

import aiosqlite

from services.errors import BracketError, NotFoundError, ValidationError
from services.match_store import load_match, write_result
from services.progression_service import (
    CompletionTrigger,
    ProgressionEngine,
    ProgressionResult,
)
from services.status_enums import TimelineEvent, TournamentStatus
from services.status_helpers import tournament_status_in
from services.tournament_service import Match, fetch_tournament

log = logging.getLogger(__name__)


@dataclass
class MatchOverride:
    id: int
    match_id: int
    admin_id: str
    reason: str
    previous_winner: Optional[str]
    new_winner: str
    created_at: Optional[int] = None


class OverrideService:
    """Operator corrections for matches and rounds."""

    def __init__(
        self,
        db: aiosqlite.Connection,
        engine: ProgressionEngine,
        trigger: Optional[CompletionTrigger] = None,
    ):
        self.db = db
        self.db.row_factory = aiosqlite.Row
        self.engine = engine
        self.trigger = trigger

    # -------------------------------------------------------------------------
    # Winner override
    # -------------------------------------------------------------------------

    async def force_set_winner(
        self,
        match_id: int,
        winner: str,
        admin_id: str,
        reason: str,
        score_a: Optional[int] = None,
        score_b: Optional[int] = None,
    ) -> tuple[Optional[Match], Optional[str]]:
        """
        Set a match winner regardless of scores.

        Works on pending, live, disputed and completed matches. Scores not
        given are kept as stored. A match completed by this call triggers
        progression like any other completion.

        Returns: (Match, None) on success, (None, error_message) on failure.
        """
        if not reason or not reason.strip():
            return None, "A reason is required for overrides."

        try:
            before = await load_match(self.db, match_id)
        except NotFoundError:
            return None, "Match not found."

        round_progressed = before.is_completed and await self.engine.guard.has_progressed(
            before.tournament_id, before.round
        )
        if round_progressed and before.winner != winner:
            log.warning(
                f"[OVERRIDE] {before.match_key} (tournament {before.tournament_id}) "
                f"winner changed after round {before.round} already progressed; "
                "later rounds are not rewritten"
            )

        try:
            await write_result(
                self.db,
                before,
                score_a=before.score_a if score_a is None else score_a,
                score_b=before.score_b if score_b is None else score_b,
                winner=winner,
                reported_by=admin_id,
                require_score_margin=False,
                allow_rewrite=True,
                commit=False,
            )
            now = int(time.time())
            await self.db.execute(
                """
                UPDATE matches
                SET override_admin_id = ?, override_reason = ?, override_at = ?
                WHERE id = ?
                """,
                (admin_id, reason, now, match_id),
            )
            await self.db.execute(
                """
                INSERT INTO match_overrides (
                    match_id, admin_id, reason, previous_winner, new_winner, created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (match_id, admin_id, reason, before.winner, winner, now),
            )
            await self.db.commit()
        except ValidationError as e:
            if self.db.in_transaction:
                await self.db.rollback()
            return None, str(e)
        except aiosqlite.Error as e:
            await self.db.rollback()
            log.error(f"[OVERRIDE] Failed to override match {match_id}: {e}")
            return None, f"Database error: {e}"

        after = await load_match(self.db, match_id)
        log.info(
            f"[OVERRIDE] {after.match_key} (tournament {after.tournament_id}) winner "
            f"{before.winner} → {winner} by {admin_id}: {reason}"
        )
        await self.engine.timeline.record(
            after.tournament_id,
            TimelineEvent.MATCH_OVERRIDDEN,
            actor=admin_id,
            detail=f"{after.match_key}: {before.winner} → {winner} ({reason})",
        )

        if self.trigger is not None:
            if not before.is_completed:
                self.trigger.dispatch(before, after)
            elif not round_progressed:
                # Already completed but its round is still open: rerun
                # detection with the corrected winner
                self.trigger.dispatch(None, after)

        return after, None

    async def list_overrides(self, match_id: int) -> List[MatchOverride]:
        cursor = await self.db.execute(
            "SELECT * FROM match_overrides WHERE match_id = ? ORDER BY id ASC",
            (match_id,),
        )
        rows = await cursor.fetchall()
        return [MatchOverride(**dict(row)) for row in rows]

    # -------------------------------------------------------------------------
    # Force advance
    # -------------------------------------------------------------------------

    async def _running_tournament(self, tournament_id: int):
        tournament = await fetch_tournament(self.db, tournament_id)
        if tournament is None:
            return None, "Tournament not found."
        if tournament_status_in(
            tournament.status, (TournamentStatus.COMPLETED, TournamentStatus.ARCHIVED)
        ):
            return None, f"Tournament is already {tournament.status}."
        if tournament.current_round < 1:
            return None, "Bracket has not been seeded yet."
        return tournament, None

    async def request_force_advance(
        self, tournament_id: int, admin_id: str
    ) -> tuple[bool, Optional[str]]:
        """
        Flag the tournament so the next match completion force-advances.

        Returns: (success, error_message)
        """
        tournament, error = await self._running_tournament(tournament_id)
        if error:
            return False, error

        await self.db.execute(
            "UPDATE tournaments SET force_advance = 1 WHERE id = ?",
            (tournament_id,),
        )
        await self.db.commit()
        log.info(
            f"[OVERRIDE] Force-advance requested for tournament {tournament_id} "
            f"(round {tournament.current_round}) by {admin_id}"
        )
        return True, None

    async def force_advance(
        self,
        tournament_id: int,
        admin_id: str,
        reason: str,
        round_num: Optional[int] = None,
    ) -> tuple[Optional[ProgressionResult], Optional[str]]:
        """
        Close the round now and generate what follows.

        Returns: (ProgressionResult, None) on success, (None, error_message)
        on failure or when the round had already progressed.
        """
        if not reason or not reason.strip():
            return None, "A reason is required for force-advance."

        _, error = await self._running_tournament(tournament_id)
        if error:
            return None, error

        try:
            result = await self.engine.force_advance(
                tournament_id, admin_id, reason, round_num=round_num
            )
        except BracketError as e:
            log.error(f"[OVERRIDE] Force-advance failed for tournament {tournament_id}: {e}")
            return None, str(e)

        if result is None:
            return None, "Round already progressed."
        return result, None

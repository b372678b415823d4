"""
services/match_service.py — Match result submission
----------------------------------------------------
Player-facing write boundary. Results are validated here and written with
a compare-and-swap; a write that moves a match into completed then hands
off to the completion trigger without waiting for it.

Two submission paths:
- submit_result(): a single trusted report (organizer, bot, simulation)
- file_report():   each participant reports; agreeing reports complete the
                   match, disagreeing ones mark it disputed
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import List, Optional

import aiosqlite

from services.errors import NotFoundError, ValidationError
from services.match_store import load_match, validate_result, write_result, write_status
from services.progression_service import CompletionTrigger
from services.status_enums import MatchStatus, TimelineEvent
from services.timeline_service import TimelineService
from services.tournament_service import Match

log = logging.getLogger(__name__)


@dataclass
class MatchReport:
    match_id: int
    reporter_id: str
    score_a: int
    score_b: int
    winner: str
    reported_at: Optional[int] = None

    @property
    def result(self) -> tuple:
        return (self.score_a, self.score_b, self.winner)


class MatchService:
    """Service for recording match results."""

    def __init__(
        self,
        db: aiosqlite.Connection,
        trigger: Optional[CompletionTrigger] = None,
        timeline: Optional[TimelineService] = None,
    ):
        self.db = db
        self.db.row_factory = aiosqlite.Row
        self.trigger = trigger
        self.timeline = timeline

    def _notify(self, before: Match, after: Match) -> None:
        if self.trigger is not None:
            self.trigger.dispatch(before, after)

    # -------------------------------------------------------------------------
    # Direct submission
    # -------------------------------------------------------------------------

    async def submit_result(
        self,
        match_id: int,
        score_a: int,
        score_b: int,
        winner: str,
        reported_by: str,
    ) -> tuple[Optional[Match], Optional[str]]:
        """
        Complete a pending, live or disputed match.

        Returns: (Match, None) on success, (None, error_message) on failure.
        Progression runs afterwards and never affects the result returned.
        """
        try:
            before = await load_match(self.db, match_id)
            after = await write_result(
                self.db,
                before,
                score_a=score_a,
                score_b=score_b,
                winner=winner,
                reported_by=reported_by,
            )
        except NotFoundError:
            return None, "Match not found."
        except ValidationError as e:
            log.info(f"[MATCH] Rejected result for match {match_id}: {e}")
            return None, str(e)
        except aiosqlite.Error as e:
            log.error(f"[MATCH] Failed to record result for match {match_id}: {e}")
            return None, f"Database error: {e}"

        log.info(
            f"[MATCH] {after.match_key} (tournament {after.tournament_id}) completed: "
            f"{after.player_a} {after.score_a}-{after.score_b} {after.player_b}, "
            f"winner {after.winner} (by {reported_by})"
        )
        self._notify(before, after)
        return after, None

    async def mark_live(self, match_id: int) -> tuple[Optional[Match], Optional[str]]:
        """Flag a pending match as being played."""
        try:
            match = await load_match(self.db, match_id)
            match = await write_status(self.db, match, MatchStatus.LIVE)
        except NotFoundError:
            return None, "Match not found."
        except ValidationError as e:
            return None, str(e)

        log.info(f"[MATCH] {match.match_key} (tournament {match.tournament_id}) is live")
        return match, None

    # -------------------------------------------------------------------------
    # Participant reports
    # -------------------------------------------------------------------------

    async def list_reports(self, match_id: int) -> List[MatchReport]:
        cursor = await self.db.execute(
            "SELECT * FROM match_reports WHERE match_id = ? ORDER BY reported_at ASC",
            (match_id,),
        )
        rows = await cursor.fetchall()
        return [MatchReport(**dict(row)) for row in rows]

    async def file_report(
        self,
        match_id: int,
        reporter_id: str,
        score_a: int,
        score_b: int,
        winner: str,
    ) -> tuple[Optional[Match], Optional[str]]:
        """
        Store one participant's report and reconcile once both are in.

        - Only the two participants may report; a second report from the
          same player replaces their first.
        - Matching reports complete the match (reported_by "auto").
        - Conflicting reports move the match to disputed for an operator.

        Returns: (Match, None) on success, (None, error_message) on failure.
        """
        try:
            match = await load_match(self.db, match_id)
        except NotFoundError:
            return None, "Match not found."

        if match.is_completed:
            return None, f"Match {match.match_key} is already completed."
        if not match.has_participant(reporter_id):
            return None, "Only the two players in this match can report it."
        if match.player_b is None:
            return None, "This match has no opponent to report against."

        try:
            validate_result(match, score_a, score_b, winner)
        except ValidationError as e:
            return None, str(e)

        try:
            await self.db.execute(
                """
                INSERT OR REPLACE INTO match_reports (
                    match_id, reporter_id, score_a, score_b, winner, reported_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (match_id, reporter_id, score_a, score_b, winner, int(time.time())),
            )
            await self.db.commit()
        except aiosqlite.Error as e:
            log.error(f"[MATCH] Failed to store report for match {match_id}: {e}")
            return None, f"Database error: {e}"

        reports = {
            r.reporter_id: r
            for r in await self.list_reports(match_id)
            if match.has_participant(r.reporter_id)
        }
        if len(reports) < 2:
            log.info(
                f"[MATCH] {match.match_key}: report from {reporter_id} stored, "
                "waiting for opponent"
            )
            return match, None

        report_a, report_b = reports[match.player_a], reports[match.player_b]
        if report_a.result == report_b.result:
            return await self.submit_result(
                match_id, score_a, score_b, winner, reported_by="auto"
            )

        return await self._dispute(match, report_a, report_b)

    async def _dispute(
        self, match: Match, report_a: MatchReport, report_b: MatchReport
    ) -> tuple[Optional[Match], Optional[str]]:
        if match.status != MatchStatus.DISPUTED.value:
            try:
                match = await write_status(self.db, match, MatchStatus.DISPUTED)
            except ValidationError as e:
                return None, str(e)

        log.warning(
            f"[MATCH] {match.match_key} (tournament {match.tournament_id}) disputed: "
            f"{report_a.reporter_id} says {report_a.result}, "
            f"{report_b.reporter_id} says {report_b.result}"
        )
        if self.timeline is not None:
            await self.timeline.record(
                match.tournament_id,
                TimelineEvent.MATCH_DISPUTED,
                detail=f"{match.match_key}: reports disagree",
            )
        return match, None

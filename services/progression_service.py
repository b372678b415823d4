"""
services/progression_service.py — Bracket auto-progression
===========================================================
Entry point for everything that happens after a match completes.

  match write → CompletionTrigger.dispatch(before, after)
              → ProgressionEngine.run(match, ctx)
                  1. WinnerResolver      (explicit or simulation strategy)
                  2. RoundCompletionDetector
                  3. RoundGuard + NextRoundGenerator, or the champion path
                  4. TournamentProgressUpdater
                  5. Timeline events

Tournament settings are read once per invocation into a ProgressionContext
and passed down explicitly. Errors never travel back to the writer: the
trigger catches and logs them, and the match stays completed.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Set

import aiosqlite

from database import db_session
from services.bracket_generator import NextRoundGenerator, PairingPolicy
from services.errors import (
    BracketError,
    NotFoundError,
    OddWinnerCountError,
    StorageError,
    UndeterminedWinnerError,
    ValidationError,
)
from services.match_store import close_unresolved
from services.round_detector import RoundCompletionDetector, RoundResult
from services.round_guard import RoundGuard
from services.status_enums import MatchStatus, ProgressionOutcome, TimelineEvent
from services.status_helpers import is_match_active
from services.timeline_service import TimelineService
from services.tournament_progress import TournamentProgressUpdater
from services.tournament_service import (
    Match,
    Tournament,
    TournamentSettings,
    fetch_round,
    fetch_tournament,
)
from services.winner_resolver import WinnerResolver, resolver_for

log = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Data Classes
# -----------------------------------------------------------------------------


@dataclass
class ProgressionContext:
    """Everything one pipeline invocation needs, read once up front."""

    tournament: Tournament
    resolver: WinnerResolver
    db_path: Optional[str] = None

    @property
    def settings(self) -> TournamentSettings:
        return self.tournament.settings

    @property
    def tournament_id(self) -> int:
        return self.tournament.id


@dataclass
class ProgressionResult:
    """What a single invocation changed, if anything."""

    tournament_id: int
    round: int
    outcome: ProgressionOutcome
    new_matches: List[Match] = field(default_factory=list)
    champion: Optional[str] = None
    forced: bool = False


# -----------------------------------------------------------------------------
# Progression Engine
# -----------------------------------------------------------------------------


class ProgressionEngine:
    """Runs the resolve → detect → generate → update pipeline."""

    def __init__(
        self,
        db_path: Optional[str] = None,
        timeline: Optional[TimelineService] = None,
        policy: PairingPolicy = PairingPolicy.ADJACENT,
        rng: Optional[random.Random] = None,
    ):
        self.db_path = db_path
        self.rng = rng
        self.timeline = timeline or TimelineService(db_path)
        self.guard = RoundGuard(db_path)
        self.detector = RoundCompletionDetector(db_path)
        self.generator = NextRoundGenerator(db_path, self.guard, policy, rng)
        self.updater = TournamentProgressUpdater(db_path)

    async def load_context(self, tournament_id: int) -> ProgressionContext:
        async with db_session(self.db_path) as db:
            tournament = await fetch_tournament(db, tournament_id)
        if tournament is None:
            raise NotFoundError(f"Tournament {tournament_id} not found")

        return ProgressionContext(
            tournament=tournament,
            resolver=resolver_for(tournament.settings, self.rng),
            db_path=self.db_path,
        )

    async def run(
        self, match: Match, ctx: ProgressionContext
    ) -> Optional[ProgressionResult]:
        """Full pipeline for one completed match."""
        try:
            await ctx.resolver.resolve(match, ctx.db_path)
            return await self.progress_round(ctx, match.round)
        except aiosqlite.Error as e:
            raise StorageError(
                f"Store failure while progressing match {match.id}: {e}"
            ) from e

    async def progress_round(
        self, ctx: ProgressionContext, round_num: int
    ) -> Optional[ProgressionResult]:
        """
        Progress round_num if it is decided and nobody has done so yet.

        Safe to call any number of times: once the round has progressed
        every further call returns None without writing.
        """
        result = await self.detector.check(ctx.tournament_id, round_num)
        if result is None:
            return None

        if len(result.winners) != len(result.matches):
            # Double losses left by a force-advance stay winnerless
            if await self.guard.has_progressed(ctx.tournament_id, round_num):
                return None
            # Completed without a winner: simulation fills it in, otherwise
            # the round waits for an override or force-advance
            result.winners = await self._resolved_winners(result.matches, ctx)

        log.info(
            f"[PROGRESSION] Round {round_num} of tournament {ctx.tournament_id} "
            f"complete with {len(result.winners)} winner(s)"
        )

        if len(result.winners) == 1:
            return await self._declare_champion(result)

        new_matches = await self.generator.generate(
            result, on_created=self._round_recorder(result)
        )
        if new_matches is None:
            return None

        return await self._finish_round(result, new_matches)

    async def force_advance(
        self,
        tournament_id: int,
        admin_id: str,
        reason: str = "Force advance",
        round_num: Optional[int] = None,
    ) -> Optional[ProgressionResult]:
        """
        Progress a round even though matches are still unresolved.

        Unresolved matches count as losses for both players. An odd number of
        survivors gives the last one a bye; a single survivor is champion.
        The tournament's force_advance flag is cleared whatever happens.
        """
        try:
            ctx = await self.load_context(tournament_id)
            round_num = round_num or ctx.tournament.current_round or 1

            async with db_session(self.db_path) as db:
                matches = await fetch_round(db, tournament_id, round_num)
            if not matches:
                raise NotFoundError(
                    f"Round {round_num} of tournament {tournament_id} has no matches"
                )

            unresolved = [m for m in matches if is_match_active(m.status)]
            winners = await self._resolved_winners(matches, ctx, forced=True)
            result = RoundResult(tournament_id, round_num, winners, matches)

            log.warning(
                f"[PROGRESSION] Force-advancing round {round_num} of tournament "
                f"{tournament_id} by {admin_id}: {len(winners)} winner(s), "
                f"{len(unresolved)} unresolved match(es) closed"
            )

            if len(winners) == 1:
                outcome = await self._declare_champion(
                    result, forced=True, unresolved=unresolved
                )
            else:
                new_matches = await self.generator.generate(
                    result,
                    forced=True,
                    unresolved=unresolved,
                    on_created=self._round_recorder(result),
                )
                outcome = (
                    await self._finish_round(result, new_matches, forced=True)
                    if new_matches is not None
                    else None
                )

            if outcome is not None:
                await self.timeline.record(
                    tournament_id,
                    TimelineEvent.FORCE_ADVANCE,
                    actor=admin_id,
                    detail=f"Round {round_num}: {reason}",
                )
            return outcome

        except aiosqlite.Error as e:
            raise StorageError(
                f"Store failure while force-advancing tournament {tournament_id}: {e}"
            ) from e
        finally:
            await self._reset_force_flag(tournament_id)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _resolved_winners(
        self,
        matches: Sequence[Match],
        ctx: ProgressionContext,
        *,
        forced: bool = False,
    ) -> List[str]:
        winners = []
        for match in sorted(matches, key=lambda m: m.match_index):
            if match.status != MatchStatus.COMPLETED.value:
                continue
            try:
                winners.append(await ctx.resolver.resolve(match, ctx.db_path))
            except UndeterminedWinnerError:
                if not forced:
                    raise
                log.warning(
                    f"[PROGRESSION] Match {match.match_key} has no winner; "
                    "treated as a double loss"
                )
        return winners

    def _round_recorder(self, result: RoundResult):
        async def record(db: aiosqlite.Connection) -> None:
            await self.updater.advance_round(
                result.tournament_id, result.next_round, db=db
            )

        return record

    async def _finish_round(
        self,
        result: RoundResult,
        new_matches: List[Match],
        *,
        forced: bool = False,
    ) -> ProgressionResult:
        await self.timeline.record(
            result.tournament_id,
            TimelineEvent.ROUND_GENERATED,
            detail=f"Round {result.next_round} generated ({len(new_matches)} matches)",
        )
        return ProgressionResult(
            tournament_id=result.tournament_id,
            round=result.round,
            outcome=ProgressionOutcome.NEXT_ROUND,
            new_matches=new_matches,
            forced=forced,
        )

    async def _declare_champion(
        self,
        result: RoundResult,
        *,
        forced: bool = False,
        unresolved: Sequence[Match] = (),
    ) -> Optional[ProgressionResult]:
        champion = result.winners[0]

        async def close_round(db: aiosqlite.Connection) -> None:
            for match in unresolved:
                await close_unresolved(db, match, reported_by="force_advance")
            await self.updater.declare_champion(result.tournament_id, champion, db=db)

        claimed = await self.guard.claim(
            result.tournament_id,
            result.round,
            ProgressionOutcome.CHAMPION,
            close_round,
            forced=forced,
        )
        if not claimed:
            return None

        await self.timeline.record(
            result.tournament_id,
            TimelineEvent.TOURNAMENT_COMPLETED,
            detail=f"Champion: {champion}",
        )
        return ProgressionResult(
            tournament_id=result.tournament_id,
            round=result.round,
            outcome=ProgressionOutcome.CHAMPION,
            champion=champion,
            forced=forced,
        )

    async def _reset_force_flag(self, tournament_id: int) -> None:
        async with db_session(self.db_path) as db:
            cursor = await db.execute(
                "UPDATE tournaments SET force_advance = 0 WHERE id = ? AND force_advance = 1",
                (tournament_id,),
            )
            await db.commit()
        if cursor.rowcount:
            log.info(f"[PROGRESSION] force_advance reset for tournament {tournament_id}")


# -----------------------------------------------------------------------------
# Completion Trigger
# -----------------------------------------------------------------------------


class CompletionTrigger:
    """
    Fires the pipeline when a match write moves a match into completed.

    dispatch() is fire-and-forget; each invocation runs as its own task
    with its own connections, so a slow or failing one never holds up
    another match.
    """

    def __init__(self, engine: ProgressionEngine):
        self.engine = engine
        self._tasks: Set[asyncio.Task] = set()

    @staticmethod
    def is_completion(before: Optional[Match], after: Optional[Match]) -> bool:
        if after is None or after.status != MatchStatus.COMPLETED.value:
            return False
        return before is None or before.status != MatchStatus.COMPLETED.value

    def dispatch(
        self, before: Optional[Match], after: Optional[Match]
    ) -> Optional[asyncio.Task]:
        if not self.is_completion(before, after):
            return None

        task = asyncio.create_task(self.on_match_written(before, after))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every dispatched invocation to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def on_match_written(
        self, before: Optional[Match], after: Optional[Match]
    ) -> Optional[ProgressionResult]:
        if not self.is_completion(before, after):
            return None

        tournament_id = after.tournament_id
        try:
            await self.engine.timeline.record(
                tournament_id,
                TimelineEvent.MATCH_COMPLETED,
                actor=after.reported_by or "system",
                detail=f"{after.match_key}: {after.score_a}-{after.score_b}",
            )

            ctx = await self.engine.load_context(tournament_id)
            if not ctx.settings.auto_progress:
                log.info(
                    f"[PROGRESSION] Auto-progression disabled for tournament {tournament_id}"
                )
                return None

            if ctx.tournament.force_advance:
                await ctx.resolver.resolve(after, ctx.db_path)
                return await self.engine.force_advance(
                    tournament_id,
                    admin_id="system",
                    reason="force_advance flag",
                    round_num=after.round,
                )

            return await self.engine.run(after, ctx)

        except UndeterminedWinnerError as e:
            log.warning(f"[PROGRESSION] {e}; needs operator follow-up")
        except OddWinnerCountError as e:
            log.error(f"[PROGRESSION] {e}; use force-advance to resolve")
        except ValidationError as e:
            log.error(f"[PROGRESSION] Contract violation: {e}")
        except StorageError as e:
            log.error(f"[PROGRESSION] {e}; nothing was committed, a replay will redo it")
        except (BracketError, aiosqlite.Error) as e:
            log.error(f"[PROGRESSION] Auto-progression failed for match {after.id}: {e}")
        except Exception:
            log.exception(f"[PROGRESSION] Unexpected failure for match {after.id}")
        return None

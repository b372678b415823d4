"""
services/bracket_generator.py — Next-round generation
------------------------------------------------------
Pairs the winners of a decided round into the matches of the next round.

Pairing policy: ADJACENT is the default and what the engine uses unless a
caller asks otherwise. Winners keep the order of the matches they came from,
so the winner of r1_0 meets the winner of r1_1, r1_2 meets r1_3, and so on.
Brackets are therefore reproducible from round 1 alone. SHUFFLED re-draws
pairings with a caller-supplied RNG.
"""

from __future__ import annotations

import logging
import random
import time
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import aiosqlite

from database import db_session
from services.errors import BracketError, OddWinnerCountError
from services.match_store import close_unresolved
from services.round_detector import RoundResult
from services.round_guard import CreateCallback, RoundGuard
from services.status_enums import MatchStatus, ProgressionOutcome
from services.tournament_service import Match, fetch_round, match_key_for

log = logging.getLogger(__name__)

Pairing = Tuple[str, Optional[str]]


class PairingPolicy(str, Enum):
    ADJACENT = "adjacent"
    SHUFFLED = "shuffled"


def pair_winners(
    winners: Sequence[str],
    policy: PairingPolicy = PairingPolicy.ADJACENT,
    rng: Optional[random.Random] = None,
    allow_bye: bool = False,
) -> List[Pairing]:
    """
    Pair winners two at a time.

    An odd count is only accepted with allow_bye, in which case the last
    winner is paired with None.
    """
    ordered = list(winners)
    if policy == PairingPolicy.SHUFFLED:
        (rng or random.Random()).shuffle(ordered)

    if len(ordered) % 2 and not allow_bye:
        raise ValueError(f"Cannot pair {len(ordered)} winners without a bye")

    pairs: List[Pairing] = []
    for i in range(0, len(ordered), 2):
        player_b = ordered[i + 1] if i + 1 < len(ordered) else None
        pairs.append((ordered[i], player_b))
    return pairs


class NextRoundGenerator:
    """Creates round n+1 inside the round guard."""

    def __init__(
        self,
        db_path: Optional[str] = None,
        guard: Optional[RoundGuard] = None,
        policy: PairingPolicy = PairingPolicy.ADJACENT,
        rng: Optional[random.Random] = None,
    ):
        self.db_path = db_path
        self.guard = guard or RoundGuard(db_path)
        self.policy = policy
        self.rng = rng

    def plan(self, result: RoundResult, *, forced: bool = False) -> List[Pairing]:
        """Pairings for the next round, or raise when the round cannot be paired."""
        count = len(result.winners)
        if count == 0:
            raise BracketError(
                f"Round {result.round} of tournament {result.tournament_id} "
                "has no winners to advance"
            )
        if count == 1:
            raise BracketError(
                f"Round {result.round} of tournament {result.tournament_id} "
                "has a single winner; declare a champion instead"
            )
        if count % 2 and not forced:
            raise OddWinnerCountError(result.tournament_id, result.round, count)

        return pair_winners(result.winners, self.policy, self.rng, allow_bye=forced)

    async def _insert_pairings(
        self,
        db: aiosqlite.Connection,
        tournament_id: int,
        round_num: int,
        pairings: Sequence[Pairing],
    ) -> None:
        now = int(time.time())
        for i, (player_a, player_b) in enumerate(pairings):
            if player_b is None:
                # Forced bye: the lone player advances without playing
                status, winner, reported_by, submitted_at = (
                    MatchStatus.COMPLETED.value,
                    player_a,
                    "bye",
                    now,
                )
            else:
                status, winner, reported_by, submitted_at = (
                    MatchStatus.PENDING.value,
                    None,
                    None,
                    None,
                )

            await db.execute(
                """
                INSERT INTO matches (
                    tournament_id, match_key, round, match_index,
                    player_a, player_b, score_a, score_b, winner,
                    status, reported_by, submitted_at, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, 0, 0, ?, ?, ?, ?, ?)
                """,
                (
                    tournament_id,
                    match_key_for(round_num, i),
                    round_num,
                    i,
                    player_a,
                    player_b,
                    winner,
                    status,
                    reported_by,
                    submitted_at,
                    now,
                ),
            )

    async def generate(
        self,
        result: RoundResult,
        *,
        forced: bool = False,
        unresolved: Sequence[Match] = (),
        on_created: Optional[CreateCallback] = None,
    ) -> Optional[List[Match]]:
        """
        Create the next round's matches at most once.

        unresolved matches (force-advance only) are closed as double losses in
        the same transaction, and on_created runs on that transaction after the
        inserts. Returns the new matches, or None when another
        invocation already progressed this round.
        """
        pairings = self.plan(result, forced=forced)
        next_round = result.next_round

        async def create(db: aiosqlite.Connection) -> None:
            for match in unresolved:
                await close_unresolved(db, match, reported_by="force_advance")
            await self._insert_pairings(db, result.tournament_id, next_round, pairings)
            if on_created is not None:
                await on_created(db)

        claimed = await self.guard.claim(
            result.tournament_id,
            result.round,
            ProgressionOutcome.NEXT_ROUND,
            create,
            forced=forced,
        )
        if not claimed:
            return None

        async with db_session(self.db_path) as db:
            matches = await fetch_round(db, result.tournament_id, next_round)

        log.info(
            f"[PROGRESSION] Generated round {next_round} for tournament "
            f"{result.tournament_id}: {len(matches)} matches ({self.policy.value})"
        )
        for m in matches:
            log.debug(
                f"[PROGRESSION] {m.match_key}: {m.player_a} vs {m.player_b or 'BYE'}"
            )
        return matches

"""
services/round_detector.py — Round completion detection
--------------------------------------------------------
A round is decided when none of its matches is pending, live or disputed.
Most completions find their round still open; that is the normal outcome,
not an error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from database import db_session
from services.status_helpers import is_match_active
from services.tournament_service import Match, fetch_round

log = logging.getLogger(__name__)


@dataclass
class RoundResult:
    """A decided round and its winners in bracket position order."""

    tournament_id: int
    round: int
    winners: List[str]
    matches: List[Match] = field(default_factory=list)

    @property
    def next_round(self) -> int:
        return self.round + 1


def summarize_round(
    tournament_id: int, round_num: int, matches: List[Match]
) -> Optional[RoundResult]:
    """RoundResult when every match is concluded, else None."""
    if not matches:
        return None

    if any(is_match_active(m.status) for m in matches):
        return None

    ordered = sorted(matches, key=lambda m: m.match_index)
    winners = [m.winner for m in ordered if m.winner is not None]

    missing = len(ordered) - len(winners)
    if missing:
        log.debug(
            f"[PROGRESSION] Round {round_num} of tournament {tournament_id} "
            f"has {missing} completed match(es) without a winner"
        )

    return RoundResult(
        tournament_id=tournament_id,
        round=round_num,
        winners=winners,
        matches=ordered,
    )


class RoundCompletionDetector:
    """Loads a round and decides whether it is complete."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path

    async def check(self, tournament_id: int, round_num: int) -> Optional[RoundResult]:
        async with db_session(self.db_path) as db:
            matches = await fetch_round(db, tournament_id, round_num)

        result = summarize_round(tournament_id, round_num, matches)
        if result is None:
            log.info(
                f"[PROGRESSION] Round {round_num} of tournament {tournament_id} "
                "not yet complete, waiting for other matches"
            )
        return result

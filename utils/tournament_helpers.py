"""
Helper functions for bracket queries.

Progression runs after the write that triggered it has returned, so callers
that need to see its effects (tests, the status command) poll for them.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from database import db_session
from services.status_enums import MatchStatus
from services.tournament_service import Match, fetch_round, fetch_tournament

log = logging.getLogger(__name__)


async def wait_for_round_matches(
    db_path: Optional[str],
    tournament_id: int,
    round_num: int,
    attempts: int = 12,
    interval: float = 0.25,
) -> List[Match]:
    """
    Poll until round_num has matches, or give up.

    Args:
        db_path: Database file (None for the configured default).
        tournament_id: Tournament to watch.
        round_num: Round expected to appear.
        attempts: Number of reads before giving up.
        interval: Seconds between reads.

    Returns:
        The round's matches, or an empty list if it never appeared.
    """
    for attempt in range(attempts):
        async with db_session(db_path) as db:
            matches = await fetch_round(db, tournament_id, round_num)
        if matches:
            return matches
        if attempt < attempts - 1:
            await asyncio.sleep(interval)

    log.debug(
        f"[BRACKET] Round {round_num} of tournament {tournament_id} "
        f"not generated after {attempts} attempts"
    )
    return []


async def get_bracket_snapshot(
    db_path: Optional[str], tournament_id: int
) -> Optional[dict]:
    """
    Read a tournament and its matches grouped by round.

    Returns:
        None if the tournament does not exist, otherwise:
        {
            'tournament': Tournament,
            'rounds': {round: [Match, ...]},
            'open_matches': int
        }
    """
    async with db_session(db_path) as db:
        tournament = await fetch_tournament(db, tournament_id)
        if tournament is None:
            return None

        rounds: Dict[int, List[Match]] = {}
        for round_num in range(1, tournament.current_round + 1):
            matches = await fetch_round(db, tournament_id, round_num)
            if matches:
                rounds[round_num] = matches

    open_matches = sum(
        1
        for matches in rounds.values()
        for m in matches
        if m.status != MatchStatus.COMPLETED.value
    )
    return {
        "tournament": tournament,
        "rounds": rounds,
        "open_matches": open_matches,
    }

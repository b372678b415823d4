"""
services/winner_resolver.py — Winner resolution strategies
-----------------------------------------------------------
The progression pipeline asks a resolver for the winner of a match that
just completed. Which resolver it gets is decided once per invocation from
the tournament settings (see resolver_for), so production reporting and
simulation never share a code path.
"""

from __future__ import annotations

import logging
import random
from typing import Optional

from database import db_session
from services.errors import UndeterminedWinnerError, ValidationError
from services.match_store import write_simulated_winner
from services.tournament_service import Match, TournamentSettings

log = logging.getLogger(__name__)


class WinnerResolver:
    """Returns the winner of a completed match or raises."""

    async def resolve(self, match: Match, db_path: Optional[str] = None) -> str:
        raise NotImplementedError


class ExplicitWinnerResolver(WinnerResolver):
    """Uses the winner already written by a report or an override."""

    async def resolve(self, match: Match, db_path: Optional[str] = None) -> str:
        if match.winner is None:
            raise UndeterminedWinnerError(match.id, match.tournament_id)

        # The write boundary already enforces this
        if not match.has_participant(match.winner):
            raise ValidationError(
                f"Match {match.match_key} winner {match.winner!r} is not a participant"
            )
        return match.winner


class SimulationWinnerResolver(ExplicitWinnerResolver):
    """
    Falls back to a uniformly random participant when no winner was reported.

    The chosen winner is written onto the match before the caller moves on,
    so round detection always sees a resolved winner.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    async def resolve(self, match: Match, db_path: Optional[str] = None) -> str:
        if match.winner is not None:
            return await super().resolve(match, db_path)

        if not match.participants:
            raise UndeterminedWinnerError(match.id, match.tournament_id)

        choice = self.rng.choice(match.participants)
        async with db_session(db_path) as db:
            winner = await write_simulated_winner(db, match, choice)

        match.winner = winner
        log.info(
            f"[PROGRESSION] Simulation mode: match {match.match_key} "
            f"(tournament {match.tournament_id}) winner → {winner}"
        )
        return winner


def resolver_for(
    settings: TournamentSettings, rng: Optional[random.Random] = None
) -> WinnerResolver:
    """Pick the resolver strategy for a tournament's settings."""
    if settings.simulation_mode:
        return SimulationWinnerResolver(rng)
    return ExplicitWinnerResolver()

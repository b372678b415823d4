"""
Status Enums for the Bracket Engine

Canonical definitions for tournament and match lifecycle states, plus the
allowed-transition tables every writer is checked against.
All services should import from here.
"""

from enum import Enum


class TournamentStatus(str, Enum):
    """Tournament lifecycle states."""

    SETUP = "setup"  # Created, bracket may be seeded, round 1 in play
    LIVE = "live"  # Past round 1
    COMPLETED = "completed"  # Champion declared
    ARCHIVED = "archived"  # Completed and put away


class MatchStatus(str, Enum):
    """Match lifecycle states."""

    PENDING = "pending"  # Match created, waiting for result
    LIVE = "live"  # Match actively being played
    DISPUTED = "disputed"  # Participants reported conflicting results
    COMPLETED = "completed"  # Result recorded


class TimelineEvent(str, Enum):
    """Advisory audit events written to the tournament timeline."""

    MATCH_COMPLETED = "match_completed"
    MATCH_DISPUTED = "match_disputed"
    MATCH_OVERRIDDEN = "match_overridden"
    ROUND_GENERATED = "round_generated"
    FORCE_ADVANCE = "force_advance"
    TOURNAMENT_COMPLETED = "tournament_completed"


class ProgressionOutcome(str, Enum):
    """What a round's single successful progression produced."""

    NEXT_ROUND = "next_round"
    CHAMPION = "champion"


# A 2-player bracket goes straight from setup to completed.
TOURNAMENT_TRANSITIONS: dict[TournamentStatus, frozenset[TournamentStatus]] = {
    TournamentStatus.SETUP: frozenset(
        {TournamentStatus.LIVE, TournamentStatus.COMPLETED}
    ),
    TournamentStatus.LIVE: frozenset({TournamentStatus.COMPLETED}),
    TournamentStatus.COMPLETED: frozenset({TournamentStatus.ARCHIVED}),
    TournamentStatus.ARCHIVED: frozenset(),
}

MATCH_TRANSITIONS: dict[MatchStatus, frozenset[MatchStatus]] = {
    MatchStatus.PENDING: frozenset(
        {MatchStatus.LIVE, MatchStatus.DISPUTED, MatchStatus.COMPLETED}
    ),
    MatchStatus.LIVE: frozenset({MatchStatus.DISPUTED, MatchStatus.COMPLETED}),
    MatchStatus.DISPUTED: frozenset({MatchStatus.COMPLETED}),
    MatchStatus.COMPLETED: frozenset(),
}

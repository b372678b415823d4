# services/status_helpers.py
from __future__ import annotations

from typing import Iterable

from services.errors import InvalidTransitionError
from services.status_enums import (
    MATCH_TRANSITIONS,
    TOURNAMENT_TRANSITIONS,
    MatchStatus,
    TournamentStatus,
)


# ── Tournament status helpers ──────────────────────────────────────────────


def is_tournament_running(status: str) -> bool:
    return status in (
        TournamentStatus.SETUP.value,
        TournamentStatus.LIVE.value,
    )


def is_tournament_finished(status: str) -> bool:
    return status in (
        TournamentStatus.COMPLETED.value,
        TournamentStatus.ARCHIVED.value,
    )


def tournament_status_in(status: str, statuses: Iterable[TournamentStatus]) -> bool:
    return status in {s.value for s in statuses}


def check_tournament_transition(current: str, target: str) -> TournamentStatus:
    """Return the target status, or raise if the move is not in the table."""
    try:
        src = TournamentStatus(current)
        dst = TournamentStatus(target)
    except ValueError as e:
        raise InvalidTransitionError(f"Unknown tournament status: {e}") from e

    if dst not in TOURNAMENT_TRANSITIONS[src]:
        raise InvalidTransitionError(
            f"Tournament cannot move from '{src.value}' to '{dst.value}'"
        )
    return dst


# ── Match status helpers ───────────────────────────────────────────────────


def is_match_pending(status: str) -> bool:
    return status == MatchStatus.PENDING.value


def is_match_completed(status: str) -> bool:
    return status == MatchStatus.COMPLETED.value


def is_match_active(status: str) -> bool:
    """Pending, live or disputed: the round cannot close yet."""
    return status in (
        MatchStatus.PENDING.value,
        MatchStatus.LIVE.value,
        MatchStatus.DISPUTED.value,
    )


def match_status_in(status: str, statuses: Iterable[MatchStatus]) -> bool:
    return status in {s.value for s in statuses}


def check_match_transition(current: str, target: str) -> MatchStatus:
    """Return the target status, or raise if the move is not in the table."""
    try:
        src = MatchStatus(current)
        dst = MatchStatus(target)
    except ValueError as e:
        raise InvalidTransitionError(f"Unknown match status: {e}") from e

    if dst not in MATCH_TRANSITIONS[src]:
        raise InvalidTransitionError(
            f"Match cannot move from '{src.value}' to '{dst.value}'"
        )
    return dst

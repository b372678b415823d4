"""
services/match_store.py — Validated match writes
-------------------------------------------------
Every writer (player submissions, the engine's own simulation writes,
operator overrides and force-advance) changes match rows through the
functions here, so the match invariants hold regardless of who writes.

All updates are compare-and-swap on the status the caller validated
against: a write that lost a race affects zero rows and is rejected.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

import aiosqlite

from services.errors import NotFoundError, ValidationError
from services.status_enums import MatchStatus
from services.status_helpers import check_match_transition
from services.tournament_service import Match, fetch_match

log = logging.getLogger(__name__)


def _check_score(value, label: str) -> int:
    # bool is an int subclass; True is not a score
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{label} must be an integer, got {value!r}")
    if value < 0:
        raise ValidationError(f"{label} must be non-negative, got {value}")
    return value


def validate_result(
    match: Match,
    score_a: int,
    score_b: int,
    winner: Optional[str],
    *,
    require_score_margin: bool = True,
) -> None:
    """
    Check a result against the submission contract.

    - scores are non-negative integers
    - winner is player_a or player_b
    - the winner's score strictly exceeds the opponent's (unless an
      operator override waives it)
    """
    _check_score(score_a, "score_a")
    _check_score(score_b, "score_b")

    if not match.has_participant(winner):
        raise ValidationError(
            f"Winner {winner!r} is not a participant in match {match.match_key}"
        )

    if require_score_margin:
        winner_score, loser_score = (
            (score_a, score_b) if winner == match.player_a else (score_b, score_a)
        )
        if winner_score <= loser_score:
            raise ValidationError(
                f"Winner's score ({winner_score}) must exceed opponent's ({loser_score})"
            )


async def load_match(db: aiosqlite.Connection, match_id: int) -> Match:
    match = await fetch_match(db, match_id)
    if match is None:
        raise NotFoundError(f"Match {match_id} not found")
    return match


async def write_result(
    db: aiosqlite.Connection,
    match: Match,
    *,
    score_a: int,
    score_b: int,
    winner: str,
    reported_by: str,
    require_score_margin: bool = True,
    allow_rewrite: bool = False,
    commit: bool = True,
) -> Match:
    """
    Complete a match (or, for overrides, rewrite a completed one).

    Returns the match as stored after the write. With commit=False the
    caller owns the transaction and must commit or roll back.
    """
    if match.is_completed:
        if not allow_rewrite:
            raise ValidationError(f"Match {match.match_key} is already completed")
    else:
        check_match_transition(match.status, MatchStatus.COMPLETED)

    validate_result(
        match, score_a, score_b, winner, require_score_margin=require_score_margin
    )

    cursor = await db.execute(
        """
        UPDATE matches
        SET score_a = ?,
            score_b = ?,
            winner = ?,
            status = ?,
            reported_by = ?,
            submitted_at = ?
        WHERE id = ? AND status = ?
        """,
        (
            score_a,
            score_b,
            winner,
            MatchStatus.COMPLETED.value,
            reported_by,
            int(time.time()),
            match.id,
            match.status,
        ),
    )
    if cursor.rowcount != 1:
        await db.rollback()
        raise ValidationError(
            f"Match {match.match_key} changed concurrently; result rejected"
        )
    if commit:
        await db.commit()

    return await load_match(db, match.id)


async def write_status(
    db: aiosqlite.Connection,
    match: Match,
    target: MatchStatus,
    *,
    commit: bool = True,
) -> Match:
    """Move a match to a non-completed status (live, disputed)."""
    check_match_transition(match.status, target)

    cursor = await db.execute(
        "UPDATE matches SET status = ? WHERE id = ? AND status = ?",
        (target.value, match.id, match.status),
    )
    if cursor.rowcount != 1:
        if commit:
            await db.rollback()
        raise ValidationError(
            f"Match {match.match_key} changed concurrently; status not updated"
        )
    if commit:
        await db.commit()

    return await load_match(db, match.id)


async def write_simulated_winner(
    db: aiosqlite.Connection,
    match: Match,
    winner: str,
) -> str:
    """
    Fill in the winner of a completed match that has none.

    Only writes when the stored winner is still NULL; if another invocation
    got there first, its winner is returned instead.
    """
    if not match.is_completed:
        raise ValidationError(
            f"Match {match.match_key} is not completed; cannot simulate a winner"
        )
    if not match.has_participant(winner):
        raise ValidationError(
            f"Winner {winner!r} is not a participant in match {match.match_key}"
        )

    cursor = await db.execute(
        """
        UPDATE matches
        SET winner = ?
        WHERE id = ? AND status = ? AND winner IS NULL
        """,
        (winner, match.id, MatchStatus.COMPLETED.value),
    )
    await db.commit()

    if cursor.rowcount == 1:
        return winner

    stored = await load_match(db, match.id)
    log.debug(
        f"[MATCH] Match {match.id} winner already set to {stored.winner}; "
        f"discarding simulated {winner}"
    )
    return stored.winner


async def close_unresolved(
    db: aiosqlite.Connection,
    match: Match,
    reported_by: str,
) -> None:
    """
    Close an unresolved match with no winner (a double loss).

    Used by force-advance inside its guarded transaction, so it never
    commits on its own.
    """
    check_match_transition(match.status, MatchStatus.COMPLETED)

    cursor = await db.execute(
        """
        UPDATE matches
        SET status = ?, winner = NULL, reported_by = ?, submitted_at = ?
        WHERE id = ? AND status = ?
        """,
        (
            MatchStatus.COMPLETED.value,
            reported_by,
            int(time.time()),
            match.id,
            match.status,
        ),
    )
    if cursor.rowcount != 1:
        raise ValidationError(
            f"Match {match.match_key} changed concurrently; cannot close it"
        )

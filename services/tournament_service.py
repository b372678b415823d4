"""
services/tournament_service.py — Tournament Management for the Bracket Engine
==============================================================================
Handles tournament records, round-1 seeding and archiving for power-of-two
Single Elimination brackets. Later rounds are never created here; they are
generated by the progression engine.

Status progression:
  setup → live → completed → archived
       ↘ completed (2-player bracket)
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Optional, List, Sequence

import aiosqlite

from services.errors import InvalidTransitionError
from services.status_enums import MatchStatus, TournamentStatus
from services.status_helpers import check_tournament_transition

log = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Data Classes
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class TournamentSettings:
    """Per-tournament configuration, read-only to the engine."""

    auto_progress: bool = True
    simulation_mode: bool = False


@dataclass
class Tournament:
    """Tournament record."""

    id: int
    name: str
    status: str
    max_players: int
    current_round: int = 0
    total_rounds: int = 0
    champion: Optional[str] = None
    auto_progress: bool = True
    simulation_mode: bool = False
    force_advance: bool = False
    created_at: Optional[int] = None
    completed_at: Optional[int] = None
    archived_at: Optional[int] = None

    @property
    def settings(self) -> TournamentSettings:
        return TournamentSettings(
            auto_progress=self.auto_progress,
            simulation_mode=self.simulation_mode,
        )


@dataclass
class Match:
    """Bracket match."""

    id: int
    tournament_id: int
    match_key: str  # "r{round}_{index}"
    round: int
    match_index: int
    player_a: Optional[str] = None
    player_b: Optional[str] = None  # None = BYE or slot not yet filled
    score_a: int = 0
    score_b: int = 0
    winner: Optional[str] = None
    status: str = MatchStatus.PENDING.value
    reported_by: Optional[str] = None
    submitted_at: Optional[int] = None
    created_at: Optional[int] = None
    override_admin_id: Optional[str] = None
    override_reason: Optional[str] = None
    override_at: Optional[int] = None

    @property
    def participants(self) -> tuple:
        return tuple(p for p in (self.player_a, self.player_b) if p is not None)

    @property
    def is_completed(self) -> bool:
        return self.status == MatchStatus.COMPLETED.value

    def has_participant(self, player_id: Optional[str]) -> bool:
        return player_id is not None and player_id in self.participants


def match_key_for(round_num: int, match_index: int) -> str:
    return f"r{round_num}_{match_index}"


def is_power_of_two(n: int) -> bool:
    return n >= 2 and (n & (n - 1)) == 0


def rounds_for(max_players: int) -> int:
    """Number of rounds in a clean bracket: 8 players → 3."""
    return max_players.bit_length() - 1


def matches_in_round(max_players: int, round_num: int) -> int:
    """Round n of a P-player bracket holds P / 2^n matches."""
    return max_players >> round_num


def row_to_tournament(row) -> Tournament:
    """Convert a DB row to Tournament object."""
    return Tournament(
        id=row["id"],
        name=row["name"],
        status=row["status"],
        max_players=row["max_players"],
        current_round=row["current_round"],
        total_rounds=row["total_rounds"],
        champion=row["champion"],
        auto_progress=bool(row["auto_progress"]),
        simulation_mode=bool(row["simulation_mode"]),
        force_advance=bool(row["force_advance"]),
        created_at=row["created_at"],
        completed_at=row["completed_at"],
        archived_at=row["archived_at"],
    )


def row_to_match(row) -> Match:
    """Convert a DB row to Match object."""
    return Match(**dict(row))


async def fetch_tournament(
    db: aiosqlite.Connection, tournament_id: int
) -> Optional[Tournament]:
    cursor = await db.execute(
        "SELECT * FROM tournaments WHERE id = ?",
        (tournament_id,),
    )
    row = await cursor.fetchone()
    return row_to_tournament(row) if row else None


async def fetch_match(db: aiosqlite.Connection, match_id: int) -> Optional[Match]:
    cursor = await db.execute(
        "SELECT * FROM matches WHERE id = ?",
        (match_id,),
    )
    row = await cursor.fetchone()
    return row_to_match(row) if row else None


async def fetch_round(
    db: aiosqlite.Connection, tournament_id: int, round_num: int
) -> List[Match]:
    """All matches of one round, in bracket position order."""
    cursor = await db.execute(
        """
        SELECT * FROM matches
        WHERE tournament_id = ? AND round = ?
        ORDER BY match_index ASC
        """,
        (tournament_id, round_num),
    )
    rows = await cursor.fetchall()
    return [row_to_match(row) for row in rows]


# -----------------------------------------------------------------------------
# Tournament Service
# -----------------------------------------------------------------------------


class TournamentService:
    """
    Service for managing Single Elimination tournaments.

    Provides:
    - Tournament creation with power-of-two size enforcement
    - Round-1 seeding (admin order or random shuffle)
    - Status transitions checked against TOURNAMENT_TRANSITIONS
    - Archiving
    """

    VALID_SIZES = (2, 4, 8, 16, 32, 64, 128)

    def __init__(self, db: aiosqlite.Connection):
        self.db = db
        self.db.row_factory = aiosqlite.Row

    # -------------------------------------------------------------------------
    # Tournament CRUD
    # -------------------------------------------------------------------------

    async def create_tournament(
        self,
        name: str,
        max_players: int,
        auto_progress: bool = True,
        simulation_mode: bool = False,
    ) -> tuple[Optional[Tournament], Optional[str]]:
        """
        Create a new tournament in 'setup'.

        Returns: (Tournament, None) on success, (None, error_message) on failure.
        """
        if max_players not in self.VALID_SIZES:
            return None, (
                f"Invalid size: {max_players}. Must be one of "
                f"{', '.join(str(s) for s in self.VALID_SIZES)}."
            )

        try:
            now = int(time.time())
            cursor = await self.db.execute(
                """
                INSERT INTO tournaments (
                    name, status, current_round, total_rounds, max_players,
                    auto_progress, simulation_mode, created_at
                )
                VALUES (?, ?, 0, ?, ?, ?, ?, ?)
                """,
                (
                    name,
                    TournamentStatus.SETUP.value,
                    rounds_for(max_players),
                    max_players,
                    int(auto_progress),
                    int(simulation_mode),
                    now,
                ),
            )
            await self.db.commit()

            tournament_id = cursor.lastrowid
            log.info(
                f"[TOURNAMENT] Created tournament {tournament_id}: {name} "
                f"(size={max_players}, auto_progress={auto_progress}, "
                f"simulation={simulation_mode})"
            )

            return await self.get_by_id(tournament_id), None

        except aiosqlite.Error as e:
            log.error(f"[TOURNAMENT] Failed to create tournament: {e}")
            return None, f"Database error: {e}"

    async def get_by_id(self, tournament_id: int) -> Optional[Tournament]:
        """Get tournament by ID."""
        return await fetch_tournament(self.db, tournament_id)

    async def update_settings(
        self,
        tournament_id: int,
        auto_progress: Optional[bool] = None,
        simulation_mode: Optional[bool] = None,
    ) -> bool:
        """Toggle auto-progression / simulation mode."""
        fields = []
        params: list = []
        if auto_progress is not None:
            fields.append("auto_progress = ?")
            params.append(int(auto_progress))
        if simulation_mode is not None:
            fields.append("simulation_mode = ?")
            params.append(int(simulation_mode))
        if not fields:
            return False

        params.append(tournament_id)
        cursor = await self.db.execute(
            f"UPDATE tournaments SET {', '.join(fields)} WHERE id = ?",
            params,
        )
        await self.db.commit()
        log.info(
            f"[TOURNAMENT] Tournament {tournament_id} settings updated: "
            f"auto_progress={auto_progress}, simulation_mode={simulation_mode}"
        )
        return cursor.rowcount == 1

    async def archive_tournament(
        self,
        tournament_id: int,
    ) -> tuple[bool, Optional[str]]:
        """
        Archive a completed tournament.

        Matches and the champion are preserved; only the status moves.

        Returns: (success, error_message)
        """
        tournament = await self.get_by_id(tournament_id)
        if not tournament:
            return False, "Tournament not found."

        try:
            check_tournament_transition(tournament.status, TournamentStatus.ARCHIVED)
        except InvalidTransitionError:
            return False, "Only completed tournaments can be archived."

        cursor = await self.db.execute(
            """
            UPDATE tournaments
            SET status = ?, archived_at = ?
            WHERE id = ? AND status = ?
            """,
            (
                TournamentStatus.ARCHIVED.value,
                int(time.time()),
                tournament_id,
                TournamentStatus.COMPLETED.value,
            ),
        )
        await self.db.commit()
        if cursor.rowcount != 1:
            return False, "Tournament status changed while archiving."

        log.info(f"[TOURNAMENT] Archived tournament {tournament_id}")
        return True, None

    # -------------------------------------------------------------------------
    # Bracket Seeding
    # -------------------------------------------------------------------------

    async def seed_bracket(
        self,
        tournament_id: int,
        players: Sequence[str],
        seed_order: Optional[Sequence[str]] = None,
        rng: Optional[random.Random] = None,
    ) -> tuple[List[Match], Optional[str]]:
        """
        Seed round 1 of the bracket.

        1. Require exactly max_players distinct players and no existing matches
        2. Use seed_order when it is a permutation of players, else shuffle
        3. Pair adjacent slots into r1_0, r1_1, ...

        Returns: (list of matches, error_message)
        """
        tournament = await self.get_by_id(tournament_id)
        if not tournament:
            return [], "Tournament not found."

        if tournament.status != TournamentStatus.SETUP.value:
            return (
                [],
                f"Cannot seed bracket. Tournament status is '{tournament.status}'.",
            )

        if len(set(players)) != len(players):
            return [], "Player list contains duplicates."

        if len(players) != tournament.max_players or not is_power_of_two(
            len(players)
        ):
            return [], (
                f"Need exactly {tournament.max_players} players to seed "
                f"(got {len(players)})."
            )

        if seed_order is not None and sorted(seed_order) == sorted(players):
            slots = list(seed_order)
            log.info(f"[TOURNAMENT] Using admin seeding for {tournament_id}")
        else:
            slots = list(players)
            (rng or random).shuffle(slots)
            log.info(f"[TOURNAMENT] Using random seeding for {tournament_id}")

        try:
            cursor = await self.db.execute(
                "SELECT 1 FROM matches WHERE tournament_id = ? LIMIT 1",
                (tournament_id,),
            )
            if await cursor.fetchone():
                return [], "Bracket already seeded."

            now = int(time.time())
            for i in range(len(slots) // 2):
                await self.db.execute(
                    """
                    INSERT INTO matches (
                        tournament_id, match_key, round, match_index,
                        player_a, player_b, status, created_at
                    ) VALUES (?, ?, 1, ?, ?, ?, ?, ?)
                    """,
                    (
                        tournament_id,
                        match_key_for(1, i),
                        i,
                        slots[i * 2],
                        slots[i * 2 + 1],
                        MatchStatus.PENDING.value,
                        now,
                    ),
                )

            await self.db.execute(
                "UPDATE tournaments SET current_round = 1, total_rounds = ? WHERE id = ?",
                (rounds_for(len(slots)), tournament_id),
            )
            await self.db.commit()

        except aiosqlite.Error as e:
            await self.db.rollback()
            log.error(f"[TOURNAMENT] Failed to seed bracket: {e}")
            return [], f"Database error: {e}"

        matches = await self.list_matches(tournament_id, round_num=1)
        log.info(
            f"[TOURNAMENT] Seeded tournament {tournament_id}: "
            f"{len(slots)} players, {len(matches)} round 1 matches"
        )
        return matches, None

    # -------------------------------------------------------------------------
    # Match Queries
    # -------------------------------------------------------------------------

    async def list_matches(
        self,
        tournament_id: int,
        round_num: Optional[int] = None,
    ) -> List[Match]:
        """List matches for a tournament, optionally filtered by round."""
        if round_num:
            return await fetch_round(self.db, tournament_id, round_num)

        cursor = await self.db.execute(
            """
            SELECT * FROM matches
            WHERE tournament_id = ?
            ORDER BY round ASC, match_index ASC
            """,
            (tournament_id,),
        )
        rows = await cursor.fetchall()

        return [row_to_match(row) for row in rows]

    async def get_match(self, match_id: int) -> Optional[Match]:
        """Get a match by ID."""
        return await fetch_match(self.db, match_id)

    async def get_match_by_key(
        self, tournament_id: int, match_key: str
    ) -> Optional[Match]:
        """Get a match by its bracket key, e.g. 'r2_0'."""
        cursor = await self.db.execute(
            "SELECT * FROM matches WHERE tournament_id = ? AND match_key = ?",
            (tournament_id, match_key),
        )
        row = await cursor.fetchone()
        return row_to_match(row) if row else None

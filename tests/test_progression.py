"""
tests/test_progression.py — Auto-progression pipeline
======================================================
Tests cover:
- Next-round generation on round completion (adjacent pairing)
- Concurrent completions of the last matches in a round
- Full runs to a champion
- Idempotent replays
- Simulation mode and auto-progress off
- Error paths caught at the completion trigger
"""

import asyncio
import random

import aiosqlite
import pytest

from database import db_session
from services.bracket_generator import NextRoundGenerator, PairingPolicy, pair_winners
from services.errors import OddWinnerCountError, UndeterminedWinnerError
from services.match_service import MatchService
from services.round_detector import RoundResult, summarize_round
from services.status_enums import ProgressionOutcome
from services.tournament_progress import TournamentProgressUpdater
from services.tournament_service import Match, TournamentService
from utils.tournament_helpers import get_bracket_snapshot, wait_for_round_matches


async def _complete_without_winner(db, match_id):
    """Mark a match completed with no winner, as an external writer might."""
    await db.execute(
        "UPDATE matches SET status = 'completed', reported_by = 'external' WHERE id = ?",
        (match_id,),
    )
    await db.commit()


async def _play_round(match_service, trigger, round_matches):
    """player_a wins every match 2-1."""
    for m in round_matches:
        _, error = await match_service.submit_result(m.id, 2, 1, m.player_a, m.player_a)
        assert error is None, error
    await trigger.drain()


async def _marker_count(db, tournament_id):
    cursor = await db.execute(
        "SELECT COUNT(*) AS n FROM round_progressions WHERE tournament_id = ?",
        (tournament_id,),
    )
    return (await cursor.fetchone())["n"]


# -----------------------------------------------------------------------------
# Test: Pairing
# -----------------------------------------------------------------------------


class TestPairing:
    def test_adjacent_pairing_keeps_bracket_order(self):
        assert pair_winners(["a", "b", "c", "d"]) == [("a", "b"), ("c", "d")]

    def test_shuffled_pairing_uses_every_winner(self):
        pairs = pair_winners(
            ["a", "b", "c", "d"], PairingPolicy.SHUFFLED, random.Random(1)
        )
        assert sorted(p for pair in pairs for p in pair) == ["a", "b", "c", "d"]

    def test_odd_count_needs_bye(self):
        with pytest.raises(ValueError):
            pair_winners(["a", "b", "c"])
        assert pair_winners(["a", "b", "c"], allow_bye=True) == [("a", "b"), ("c", None)]

    def test_odd_winner_count_is_not_paired(self):
        generator = NextRoundGenerator()
        result = RoundResult(tournament_id=1, round=1, winners=["a", "b", "c"])

        with pytest.raises(OddWinnerCountError):
            generator.plan(result)

    def test_round_not_decided_while_a_match_is_open(self):
        matches = [
            Match(id=1, tournament_id=1, match_key="r1_0", round=1, match_index=0,
                  player_a="a", player_b="b", winner="a", status="completed"),
            Match(id=2, tournament_id=1, match_key="r1_1", round=1, match_index=1,
                  player_a="c", player_b="d", status="disputed"),
        ]
        assert summarize_round(1, 1, matches) is None


# -----------------------------------------------------------------------------
# Test: Round Progression
# -----------------------------------------------------------------------------


class TestRoundProgression:
    @pytest.mark.asyncio
    async def test_four_player_concurrent_completion(
        self, db, db_path, trigger, make_bracket, roster
    ):
        """Both round-1 matches complete at once; exactly one final appears."""
        tournament, matches = await make_bracket(roster(4))
        r1_0, r1_1 = matches

        async def submit(match, winner, score_a, score_b):
            async with db_session(db_path) as conn:
                return await MatchService(conn, trigger).submit_result(
                    match.id, score_a, score_b, winner, winner
                )

        results = await asyncio.gather(
            submit(r1_0, "p1", 10, 5), submit(r1_1, "p3", 9, 6)
        )
        assert all(error is None for _, error in results)
        await trigger.drain()

        round_2 = await wait_for_round_matches(db_path, tournament.id, 2)
        assert len(round_2) == 1
        final = round_2[0]
        assert final.match_key == "r2_0"
        assert {final.player_a, final.player_b} == {"p1", "p3"}
        assert final.status == "pending"
        assert final.winner is None

        assert await _marker_count(db, tournament.id) == 1

        updated = await TournamentService(db).get_by_id(tournament.id)
        assert updated.status == "live"
        assert updated.current_round == 2

    @pytest.mark.asyncio
    async def test_eight_player_full_run(
        self, db, db_path, match_service, trigger, make_bracket, roster
    ):
        tournament, matches = await make_bracket(roster(8))
        service = TournamentService(db)

        round_matches = matches
        for round_num in (1, 2, 3):
            assert len(round_matches) == 8 >> round_num
            await _play_round(match_service, trigger, round_matches)
            if round_num < 3:
                round_matches = await wait_for_round_matches(
                    db_path, tournament.id, round_num + 1
                )

        final = await service.get_by_id(tournament.id)
        assert final.status == "completed"
        assert final.champion == "p1"
        assert final.current_round == 3
        assert final.completed_at is not None

        all_matches = await service.list_matches(tournament.id)
        assert len(all_matches) == 7
        assert [m.match_key for m in all_matches if m.round == 2] == ["r2_0", "r2_1"]
        assert ("p1", "p3") == (all_matches[4].player_a, all_matches[4].player_b)
        assert ("p5", "p7") == (all_matches[5].player_a, all_matches[5].player_b)
        for m in all_matches:
            assert m.status == "completed"
            assert m.winner in (m.player_a, m.player_b)

        # The final never spawns a round 4
        assert await wait_for_round_matches(db_path, tournament.id, 4, attempts=2, interval=0.01) == []

    @pytest.mark.asyncio
    async def test_two_player_bracket_goes_straight_to_completed(
        self, db, match_service, trigger, make_bracket, roster
    ):
        tournament, matches = await make_bracket(roster(2))

        await _play_round(match_service, trigger, matches)

        final = await TournamentService(db).get_by_id(tournament.id)
        assert final.status == "completed"
        assert final.champion == "p1"

    @pytest.mark.asyncio
    async def test_incomplete_round_does_not_progress(
        self, db, db_path, match_service, trigger, make_bracket, roster
    ):
        tournament, matches = await make_bracket(roster(4))

        await _play_round(match_service, trigger, matches[:1])

        assert await wait_for_round_matches(db_path, tournament.id, 2, attempts=2, interval=0.01) == []
        assert await _marker_count(db, tournament.id) == 0

        updated = await TournamentService(db).get_by_id(tournament.id)
        assert updated.status == "setup"
        assert updated.current_round == 1

    @pytest.mark.asyncio
    async def test_disputed_match_holds_round_open(
        self, db, db_path, match_service, trigger, make_bracket, roster
    ):
        tournament, matches = await make_bracket(roster(4))

        await match_service.file_report(matches[1].id, "p3", 2, 1, "p3")
        await match_service.file_report(matches[1].id, "p4", 1, 2, "p4")
        await _play_round(match_service, trigger, matches[:1])

        assert await wait_for_round_matches(db_path, tournament.id, 2, attempts=2, interval=0.01) == []

    @pytest.mark.asyncio
    async def test_replays_create_round_once(self, db, engine, make_bracket, roster):
        tournament, matches = await make_bracket(roster(8), auto_progress=False)
        service = MatchService(db)
        for m in matches:
            await service.submit_result(m.id, 1, 0, m.player_a, m.player_a)

        ctx = await engine.load_context(tournament.id)
        results = await asyncio.gather(
            *(engine.progress_round(ctx, 1) for _ in range(6))
        )

        produced = [r for r in results if r is not None]
        assert len(produced) == 1
        assert produced[0].outcome == ProgressionOutcome.NEXT_ROUND
        assert len(produced[0].new_matches) == 2

        round_2 = await TournamentService(db).list_matches(tournament.id, round_num=2)
        assert len(round_2) == 2

        # Later replays are no-ops too
        assert await engine.progress_round(ctx, 1) is None


# -----------------------------------------------------------------------------
# Test: Settings
# -----------------------------------------------------------------------------


class TestSettings:
    @pytest.mark.asyncio
    async def test_auto_progress_off_is_a_no_op(
        self, db, db_path, match_service, trigger, make_bracket, roster
    ):
        tournament, matches = await make_bracket(roster(4), auto_progress=False)

        await _play_round(match_service, trigger, matches)

        assert await wait_for_round_matches(db_path, tournament.id, 2, attempts=2, interval=0.01) == []
        for m in await TournamentService(db).list_matches(tournament.id):
            assert m.status == "completed"

    @pytest.mark.asyncio
    async def test_simulation_mode_picks_winners(
        self, db, db_path, trigger, make_bracket, roster
    ):
        tournament, matches = await make_bracket(roster(4), simulation_mode=True)
        service = TournamentService(db)

        for m in matches:
            await _complete_without_winner(db, m.id)
        for m in matches:
            after = await service.get_match(m.id)
            await trigger.on_match_written(m, after)

        round_1 = await service.list_matches(tournament.id, round_num=1)
        for m in round_1:
            assert m.winner in (m.player_a, m.player_b)

        round_2 = await wait_for_round_matches(db_path, tournament.id, 2)
        assert len(round_2) == 1
        assert {round_2[0].player_a, round_2[0].player_b} == {m.winner for m in round_1}

    @pytest.mark.asyncio
    async def test_missing_winner_without_simulation_waits(
        self, db, db_path, trigger, make_bracket, roster
    ):
        tournament, matches = await make_bracket(roster(4))
        service = TournamentService(db)

        await _complete_without_winner(db, matches[0].id)
        after = await service.get_match(matches[0].id)

        # Logged and swallowed at the trigger
        assert await trigger.on_match_written(matches[0], after) is None
        assert await wait_for_round_matches(db_path, tournament.id, 2, attempts=2, interval=0.01) == []

    @pytest.mark.asyncio
    async def test_undetermined_sibling_blocks_progression(
        self, db, engine, make_bracket, roster
    ):
        tournament, matches = await make_bracket(roster(4), auto_progress=False)
        await MatchService(db).submit_result(matches[0].id, 2, 0, "p1", "p1")
        await _complete_without_winner(db, matches[1].id)

        ctx = await engine.load_context(tournament.id)
        with pytest.raises(UndeterminedWinnerError):
            await engine.progress_round(ctx, 1)

        assert await _marker_count(db, tournament.id) == 0


# -----------------------------------------------------------------------------
# Test: Recovery After Store Failures
# -----------------------------------------------------------------------------


def _fail_once(monkeypatch, name):
    """Make TournamentProgressUpdater.<name> raise a store error on its first call."""
    original = getattr(TournamentProgressUpdater, name)
    calls = []

    async def flaky(self, *args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            raise aiosqlite.OperationalError("disk I/O error")
        return await original(self, *args, **kwargs)

    monkeypatch.setattr(TournamentProgressUpdater, name, flaky)
    return calls


class TestRecovery:
    @pytest.mark.asyncio
    async def test_failed_champion_write_is_replayed(
        self, db, engine, match_service, trigger, make_bracket, roster, monkeypatch
    ):
        tournament, matches = await make_bracket(roster(2))
        calls = _fail_once(monkeypatch, "declare_champion")

        await _play_round(match_service, trigger, matches)

        assert len(calls) == 1
        # The failure rolled back the round marker with the tournament update
        assert await _marker_count(db, tournament.id) == 0
        assert (await TournamentService(db).get_by_id(tournament.id)).champion is None

        ctx = await engine.load_context(tournament.id)
        result = await engine.progress_round(ctx, 1)

        assert result.outcome == ProgressionOutcome.CHAMPION
        assert result.champion == "p1"
        final = await TournamentService(db).get_by_id(tournament.id)
        assert final.status == "completed"
        assert final.champion == "p1"
        assert await _marker_count(db, tournament.id) == 1

    @pytest.mark.asyncio
    async def test_failed_round_update_is_replayed(
        self, db, db_path, engine, make_bracket, roster, monkeypatch
    ):
        tournament, matches = await make_bracket(roster(4), auto_progress=False)
        service = MatchService(db)
        for m in matches:
            await service.submit_result(m.id, 2, 1, m.player_a, m.player_a)
        _fail_once(monkeypatch, "advance_round")

        ctx = await engine.load_context(tournament.id)
        with pytest.raises(aiosqlite.OperationalError):
            await engine.progress_round(ctx, 1)

        # Neither the new round nor the marker survived the failure
        assert await wait_for_round_matches(db_path, tournament.id, 2, attempts=2, interval=0.01) == []
        assert await _marker_count(db, tournament.id) == 0

        result = await engine.progress_round(ctx, 1)

        assert result.outcome == ProgressionOutcome.NEXT_ROUND
        assert len(result.new_matches) == 1
        updated = await TournamentService(db).get_by_id(tournament.id)
        assert updated.status == "live"
        assert updated.current_round == 2


# -----------------------------------------------------------------------------
# Test: Timeline
# -----------------------------------------------------------------------------


class TestTimeline:
    @pytest.mark.asyncio
    async def test_events_for_a_full_run(
        self, db_path, match_service, trigger, timeline, make_bracket, roster
    ):
        tournament, matches = await make_bracket(roster(4))
        seen = []

        async def listener(entry):
            seen.append(entry.action)

        timeline.subscribe(listener)

        await _play_round(match_service, trigger, matches)
        round_2 = await wait_for_round_matches(db_path, tournament.id, 2)
        await _play_round(match_service, trigger, round_2)

        actions = [e.action for e in await timeline.list_events(tournament.id)]
        assert actions.count("match_completed") == 3
        assert actions.count("round_generated") == 1
        assert actions.count("tournament_completed") == 1
        assert actions[-1] == "tournament_completed"
        assert sorted(seen) == sorted(actions)

    @pytest.mark.asyncio
    async def test_snapshot_groups_rounds(
        self, db_path, match_service, trigger, make_bracket, roster
    ):
        tournament, matches = await make_bracket(roster(4))
        await _play_round(match_service, trigger, matches)

        snapshot = await get_bracket_snapshot(db_path, tournament.id)

        assert sorted(snapshot["rounds"]) == [1, 2]
        assert snapshot["open_matches"] == 1
        assert await get_bracket_snapshot(db_path, 999) is None

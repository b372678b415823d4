"""
tests/test_overrides.py — Operator overrides and force-advance
"""

import logging

import pytest

from services.status_enums import ProgressionOutcome
from services.tournament_service import TournamentService
from utils.tournament_helpers import wait_for_round_matches


async def _win(match_service, match, winner=None):
    winner = winner or match.player_a
    score_a, score_b = (2, 1) if winner == match.player_a else (1, 2)
    _, error = await match_service.submit_result(match.id, score_a, score_b, winner, winner)
    assert error is None, error


# -----------------------------------------------------------------------------
# Test: Winner Override
# -----------------------------------------------------------------------------


class TestForceSetWinner:
    @pytest.mark.asyncio
    async def test_override_resolves_dispute_and_progresses(
        self, db_path, match_service, override_service, trigger, make_bracket, roster
    ):
        tournament, matches = await make_bracket(roster(4))
        await _win(match_service, matches[0])
        await match_service.file_report(matches[1].id, "p3", 2, 1, "p3")
        await match_service.file_report(matches[1].id, "p4", 1, 2, "p4")

        match, error = await override_service.force_set_winner(
            matches[1].id, "p4", admin_id="admin1", reason="Video evidence"
        )
        await trigger.drain()

        assert error is None
        assert match.status == "completed"
        assert match.winner == "p4"
        assert match.reported_by == "admin1"
        assert match.override_admin_id == "admin1"
        assert match.override_reason == "Video evidence"
        assert match.override_at is not None

        round_2 = await wait_for_round_matches(db_path, tournament.id, 2)
        assert [(m.player_a, m.player_b) for m in round_2] == [("p1", "p4")]

    @pytest.mark.asyncio
    async def test_override_ignores_score_margin(self, override_service, make_bracket, roster):
        _, matches = await make_bracket(roster(4), auto_progress=False)

        match, error = await override_service.force_set_winner(
            matches[0].id, "p2", "admin1", "Opponent disqualified", score_a=3, score_b=0
        )

        assert error is None
        assert match.winner == "p2"
        assert (match.score_a, match.score_b) == (3, 0)

    @pytest.mark.asyncio
    async def test_override_rewrites_completed_match_with_audit(
        self, match_service, override_service, make_bracket, roster
    ):
        _, matches = await make_bracket(roster(4), auto_progress=False)
        await _win(match_service, matches[0])

        match, error = await override_service.force_set_winner(
            matches[0].id, "p2", "admin1", "Wrong winner reported"
        )

        assert error is None
        assert match.winner == "p2"
        # Scores kept when not given
        assert (match.score_a, match.score_b) == (2, 1)

        history = await override_service.list_overrides(matches[0].id)
        assert len(history) == 1
        assert history[0].previous_winner == "p1"
        assert history[0].new_winner == "p2"
        assert history[0].admin_id == "admin1"

    @pytest.mark.asyncio
    async def test_override_requires_reason(self, override_service, make_bracket, roster):
        _, matches = await make_bracket(roster(4), auto_progress=False)

        match, error = await override_service.force_set_winner(matches[0].id, "p1", "admin1", "  ")

        assert match is None
        assert "reason" in error

    @pytest.mark.asyncio
    async def test_override_rejects_non_participant(self, override_service, make_bracket, roster):
        _, matches = await make_bracket(roster(4), auto_progress=False)

        match, error = await override_service.force_set_winner(
            matches[0].id, "p3", "admin1", "Typo"
        )

        assert match is None
        assert "not a participant" in error
        assert await override_service.list_overrides(matches[0].id) == []

    @pytest.mark.asyncio
    async def test_override_after_progression_warns(
        self, db_path, match_service, override_service, trigger, make_bracket, roster, caplog
    ):
        tournament, matches = await make_bracket(roster(4))
        for m in matches:
            await _win(match_service, m)
        await trigger.drain()
        assert await wait_for_round_matches(db_path, tournament.id, 2)

        with caplog.at_level(logging.WARNING, logger="services.override_service"):
            match, error = await override_service.force_set_winner(
                matches[0].id, "p2", "admin1", "Late correction"
            )
        await trigger.drain()

        assert error is None
        assert match.winner == "p2"
        assert "already progressed" in caplog.text

        # Round 2 is left as generated
        round_2 = await wait_for_round_matches(db_path, tournament.id, 2)
        assert len(round_2) == 1
        assert round_2[0].player_a == "p1"


# -----------------------------------------------------------------------------
# Test: Force Advance
# -----------------------------------------------------------------------------


class TestForceAdvance:
    @pytest.mark.asyncio
    async def test_force_advance_closes_round_with_bye(
        self, db, db_path, match_service, override_service, trigger, timeline, make_bracket, roster
    ):
        tournament, matches = await make_bracket(roster(8))
        for m in matches[:3]:
            await _win(match_service, m)
        await trigger.drain()

        result, error = await override_service.force_advance(
            tournament.id, "admin1", "p7 and p8 no-show"
        )

        assert error is None
        assert result.outcome == ProgressionOutcome.NEXT_ROUND
        assert result.forced is True

        service = TournamentService(db)
        closed = await service.get_match(matches[3].id)
        assert closed.status == "completed"
        assert closed.winner is None
        assert closed.reported_by == "force_advance"

        round_2 = await service.list_matches(tournament.id, round_num=2)
        assert [(m.player_a, m.player_b) for m in round_2] == [("p1", "p3"), ("p5", None)]
        assert round_2[0].status == "pending"
        assert round_2[1].status == "completed"
        assert round_2[1].winner == "p5"
        assert round_2[1].reported_by == "bye"

        updated = await service.get_by_id(tournament.id)
        assert updated.force_advance is False
        assert updated.current_round == 2

        actions = [e.action for e in await timeline.list_events(tournament.id)]
        assert "force_advance" in actions

        # The bracket carries on normally from the bye
        await _win(match_service, round_2[0])
        await trigger.drain()
        final = await wait_for_round_matches(db_path, tournament.id, 3)
        assert [(m.player_a, m.player_b) for m in final] == [("p1", "p5")]

    @pytest.mark.asyncio
    async def test_flag_forces_next_completion(
        self, db, db_path, match_service, override_service, trigger, make_bracket, roster
    ):
        tournament, matches = await make_bracket(roster(8))
        for m in matches[:2]:
            await _win(match_service, m)
        await trigger.drain()

        ok, error = await override_service.request_force_advance(tournament.id, "admin1")
        assert ok is True and error is None
        assert (await TournamentService(db).get_by_id(tournament.id)).force_advance is True

        await _win(match_service, matches[2])
        await trigger.drain()

        round_2 = await wait_for_round_matches(db_path, tournament.id, 2)
        assert [(m.player_a, m.player_b) for m in round_2] == [("p1", "p3"), ("p5", None)]

        updated = await TournamentService(db).get_by_id(tournament.id)
        assert updated.force_advance is False

    @pytest.mark.asyncio
    async def test_single_survivor_is_champion(
        self, db, match_service, override_service, trigger, make_bracket, roster
    ):
        tournament, matches = await make_bracket(roster(4))
        await _win(match_service, matches[0])
        await trigger.drain()

        result, error = await override_service.force_advance(tournament.id, "admin1", "Forfeit")

        assert error is None
        assert result.outcome == ProgressionOutcome.CHAMPION
        assert result.champion == "p1"

        updated = await TournamentService(db).get_by_id(tournament.id)
        assert updated.status == "completed"
        assert updated.champion == "p1"

    @pytest.mark.asyncio
    async def test_no_winners_is_rejected_and_flag_cleared(
        self, db, override_service, make_bracket, roster
    ):
        tournament, matches = await make_bracket(roster(4))
        await override_service.request_force_advance(tournament.id, "admin1")

        result, error = await override_service.force_advance(tournament.id, "admin1", "Nobody played")

        assert result is None
        assert "no winners" in error

        service = TournamentService(db)
        assert (await service.get_by_id(tournament.id)).force_advance is False
        # Nothing was closed
        for m in await service.list_matches(tournament.id):
            assert m.status == "pending"

    @pytest.mark.asyncio
    async def test_force_advance_on_finished_tournament(
        self, match_service, override_service, trigger, make_bracket, roster
    ):
        tournament, matches = await make_bracket(roster(2))
        await _win(match_service, matches[0])
        await trigger.drain()

        result, error = await override_service.force_advance(tournament.id, "admin1", "Again")
        assert result is None
        assert "already completed" in error

        ok, error = await override_service.request_force_advance(tournament.id, "admin1")
        assert ok is False

    @pytest.mark.asyncio
    async def test_force_advance_after_round_progressed(
        self, db, match_service, override_service, trigger, make_bracket, roster
    ):
        tournament, matches = await make_bracket(roster(4))
        for m in matches:
            await _win(match_service, m)
        await trigger.drain()

        # current_round is now 2; round 1 is already done
        result, error = await override_service.force_advance(
            tournament.id, "admin1", "Replay", round_num=1
        )

        assert result is None
        assert error == "Round already progressed."

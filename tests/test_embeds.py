"""
tests/test_embeds.py — Bracket embed builders
"""

from services.progression_service import ProgressionResult
from services.status_enums import ProgressionOutcome
from services.timeline_service import TimelineEntry
from services.tournament_service import Match, Tournament
from ui.bracket_embeds import (
    build_bracket_embed,
    build_force_advance_embed,
    build_timeline_embed,
    format_match_line,
)
from ui.brand import Colors


def _tournament(**overrides):
    fields = dict(
        id=1,
        name="Friday Cup",
        status="live",
        max_players=4,
        current_round=2,
        total_rounds=2,
    )
    fields.update(overrides)
    return Tournament(**fields)


def _match(key, a, b, **overrides):
    round_num, index = (int(x) for x in key[1:].split("_"))
    return Match(
        id=index + 10 * round_num,
        tournament_id=1,
        match_key=key,
        round=round_num,
        match_index=index,
        player_a=a,
        player_b=b,
        **overrides,
    )


class TestBracketEmbed:
    def test_unseeded(self):
        embed = build_bracket_embed(_tournament(current_round=0), {})
        assert embed.description == "Bracket not seeded yet."

    def test_current_round_listed(self):
        rounds = {
            1: [
                _match("r1_0", "p1", "p2", winner="p1", status="completed", score_a=2, score_b=1),
                _match("r1_1", "p3", "p4", winner="p3", status="completed", score_a=2, score_b=0),
            ],
            2: [_match("r2_0", "p1", "p3")],
        }

        embed = build_bracket_embed(_tournament(), rounds)

        assert "Round 1: 2/2 complete" in embed.description
        assert "Round 2: 0/1 complete" in embed.description
        assert "`r2_0` p1 vs p3" in embed.description
        assert "CHAMPION" not in embed.description

    def test_champion_shown(self):
        rounds = {1: [_match("r1_0", "p1", "p2", winner="p2", status="completed", score_a=0, score_b=2)]}

        embed = build_bracket_embed(
            _tournament(status="completed", current_round=1, total_rounds=1, champion="p2"),
            rounds,
        )

        assert "CHAMPION**: p2" in embed.description
        assert embed.color == Colors.CHAMPION

    def test_disputed_match_colors_warning(self):
        rounds = {1: [_match("r1_0", "p1", "p2", status="disputed")]}
        embed = build_bracket_embed(_tournament(current_round=1), rounds)
        assert embed.color == Colors.NEEDS_ADMIN


class TestMatchLines:
    def test_bye_and_double_loss(self):
        bye = _match("r2_1", "p5", None, winner="p5", status="completed")
        double_loss = _match("r1_3", "p7", "p8", status="completed")

        assert "BYE" in format_match_line(bye)
        assert "no winner" in format_match_line(double_loss)


class TestAnnouncements:
    def test_timeline_embed(self):
        entry = TimelineEntry(
            id=1,
            tournament_id=1,
            action="tournament_completed",
            actor="system",
            detail="Champion: p1",
        )

        embed = build_timeline_embed(entry, "Friday Cup")

        assert embed.title == "Tournament Completed"
        assert embed.description == "Champion: p1"
        assert embed.fields[0].value == "Friday Cup"
        assert len(embed.fields) == 1

    def test_force_advance_embed(self):
        result = ProgressionResult(
            tournament_id=1,
            round=1,
            outcome=ProgressionOutcome.NEXT_ROUND,
            new_matches=[_match("r2_0", "p1", "p3"), _match("r2_1", "p5", None)],
            forced=True,
        )

        embed = build_force_advance_embed(result)

        assert embed.title == "Round 2 Generated"
        assert "p5 vs BYE" in embed.description

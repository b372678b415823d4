"""
Bracket Embed Builders.

These functions build Discord embeds for bracket display and timeline
announcements.

NOTE: These are pure UI functions - no database access or business logic.
"""

from typing import Dict, List, Optional

import discord

from services.progression_service import ProgressionResult
from services.status_enums import MatchStatus, ProgressionOutcome, TimelineEvent
from services.timeline_service import TimelineEntry
from services.tournament_service import Match, Tournament
from ui.brand import Colors, create_embed

STATUS_EMOJI = {
    MatchStatus.PENDING.value: "⏳",
    MatchStatus.LIVE.value: "⚔️",
    MatchStatus.DISPUTED.value: "⚠️",
    MatchStatus.COMPLETED.value: "✅",
}

EVENT_TITLES = {
    TimelineEvent.MATCH_COMPLETED.value: "Match Completed",
    TimelineEvent.MATCH_DISPUTED.value: "Match Disputed",
    TimelineEvent.MATCH_OVERRIDDEN.value: "Match Overridden",
    TimelineEvent.ROUND_GENERATED.value: "Next Round Generated",
    TimelineEvent.FORCE_ADVANCE.value: "Round Force-Advanced",
    TimelineEvent.TOURNAMENT_COMPLETED.value: "Tournament Completed",
}

# Discord caps embed descriptions; keep the current round readable
MAX_LISTED_MATCHES = 20


def format_match_line(match: Match) -> str:
    """One line per match: status, key, players, score."""
    emoji = STATUS_EMOJI.get(match.status, "•")
    player_b = match.player_b or "BYE"

    if match.status != MatchStatus.COMPLETED.value:
        return f"{emoji} `{match.match_key}` {match.player_a} vs {player_b}"

    if match.winner is None:
        return f"❌ `{match.match_key}` {match.player_a} vs {player_b} (no winner)"

    return (
        f"{emoji} `{match.match_key}` {match.player_a} "
        f"{match.score_a}-{match.score_b} {player_b} → **{match.winner}**"
    )


def build_bracket_embed(
    tournament: Tournament,
    rounds: Dict[int, List[Match]],
) -> discord.Embed:
    """
    Render the bracket as a Discord Embed.

    Args:
        tournament: Tournament record.
        rounds: Matches grouped by round number.

    Returns:
        discord.Embed with a round summary and the current round's matches.
    """
    if tournament.champion:
        color = Colors.CHAMPION
    elif any(
        m.status == MatchStatus.DISPUTED.value
        for matches in rounds.values()
        for m in matches
    ):
        color = Colors.NEEDS_ADMIN
    else:
        color = Colors.IN_PROGRESS

    embed = create_embed(f"🏆 Bracket: {tournament.name}", color=color)

    if not rounds:
        embed.description = "Bracket not seeded yet."
        return embed

    current_round = tournament.current_round or max(rounds)
    desc = (
        f"**Status**: {tournament.status} • Round {current_round} of "
        f"{tournament.total_rounds}\n\n"
    )

    for r in sorted(rounds):
        round_matches = rounds[r]
        completed = sum(1 for m in round_matches if m.is_completed)

        if r < current_round:
            emoji = "✅"
        elif r == current_round:
            emoji = "▶️"
        else:
            emoji = "⏸️"
        desc += f"{emoji} Round {r}: {completed}/{len(round_matches)} complete\n"

    current_matches = rounds.get(current_round, [])
    if current_matches:
        desc += f"\n**Round {current_round} Matches:**\n"
        for m in current_matches[:MAX_LISTED_MATCHES]:
            desc += format_match_line(m) + "\n"
        if len(current_matches) > MAX_LISTED_MATCHES:
            desc += f"*...and {len(current_matches) - MAX_LISTED_MATCHES} more*\n"

    if tournament.champion:
        desc += f"\n🏆 **CHAMPION**: {tournament.champion}!"

    embed.description = desc

    settings = tournament.settings
    embed.add_field(
        name="Auto-progress",
        value="On" if settings.auto_progress else "Off",
        inline=True,
    )
    if settings.simulation_mode:
        embed.add_field(name="Simulation", value="On", inline=True)
    if tournament.force_advance:
        embed.add_field(name="Force-advance", value="Pending", inline=True)

    return embed


def build_timeline_embed(
    entry: TimelineEntry,
    tournament_name: Optional[str] = None,
) -> discord.Embed:
    """Announcement for one timeline event."""
    title = EVENT_TITLES.get(entry.action, entry.action)
    if entry.action == TimelineEvent.TOURNAMENT_COMPLETED.value:
        color = Colors.CHAMPION
    elif entry.action in (
        TimelineEvent.MATCH_DISPUTED.value,
        TimelineEvent.MATCH_OVERRIDDEN.value,
        TimelineEvent.FORCE_ADVANCE.value,
    ):
        color = Colors.NEEDS_ADMIN
    else:
        color = Colors.IN_PROGRESS

    embed = create_embed(title, entry.detail, color)
    embed.add_field(
        name="Tournament",
        value=tournament_name or f"#{entry.tournament_id}",
        inline=True,
    )
    if entry.actor != "system":
        embed.add_field(name="By", value=entry.actor, inline=True)
    return embed


def build_override_embed(match: Match, reason: str) -> discord.Embed:
    """Confirmation shown to the admin after a winner override."""
    embed = create_embed(
        "Match Overridden",
        format_match_line(match),
        Colors.ADVANCED,
    )
    embed.add_field(name="Reason", value=reason, inline=False)
    return embed


def build_force_advance_embed(result: ProgressionResult) -> discord.Embed:
    """Confirmation shown to the admin after a force-advance."""
    if result.outcome == ProgressionOutcome.CHAMPION:
        return create_embed(
            "Tournament Completed",
            f"Round {result.round} closed. 🏆 Champion: **{result.champion}**",
            Colors.CHAMPION,
        )

    lines = [format_match_line(m) for m in result.new_matches[:MAX_LISTED_MATCHES]]
    return create_embed(
        f"Round {result.round + 1} Generated",
        "\n".join(lines) or "No matches created.",
        Colors.ADVANCED,
    )

"""
BracketCog - Tournament Bracket Management

Admin slash commands for creating and seeding brackets, reporting results,
operator overrides and force-advance. Timeline events are announced to
ANNOUNCE_CHANNEL_ID when it is set.

All progression happens in services/; this cog only translates between
Discord interactions and the (result, error) service calls.
"""

import logging
import os
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from config.dev_flags import is_dev_user
from database import db_session
from services.match_service import MatchService
from services.override_service import OverrideService
from services.progression_service import CompletionTrigger, ProgressionEngine
from services.status_enums import MatchStatus
from services.timeline_service import TimelineEntry
from services.tournament_service import TournamentService
from ui.bracket_embeds import (
    build_bracket_embed,
    build_force_advance_embed,
    build_override_embed,
    build_timeline_embed,
)
from ui.brand import error_embed, success_embed
from utils.tournament_helpers import get_bracket_snapshot

log = logging.getLogger(__name__)


class BracketCog(commands.Cog):
    """
    Manages tournament brackets and operator tools.
    """

    def __init__(
        self,
        bot: commands.Bot,
        engine: ProgressionEngine,
        trigger: CompletionTrigger,
        db_path: Optional[str] = None,
    ):
        self.bot = bot
        self.engine = engine
        self.trigger = trigger
        self.db_path = db_path
        channel_id = os.getenv("ANNOUNCE_CHANNEL_ID")
        self.announce_channel_id = int(channel_id) if channel_id else None

    async def cog_load(self):
        self.engine.timeline.subscribe(self.announce)

    async def cog_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ):
        if isinstance(error, app_commands.MissingPermissions):
            message = "❌ You need administrator permissions for bracket commands."
        else:
            log.error(f"[BRACKET] Command failed: {error}", exc_info=error)
            message = "❌ Something went wrong running that command."

        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)

    # -------------------------------------------------------------------------
    # Announcements
    # -------------------------------------------------------------------------

    async def announce(self, entry: TimelineEntry):
        """Timeline listener: post the event to the announcement channel."""
        if self.announce_channel_id is None:
            return

        channel = self.bot.get_channel(self.announce_channel_id)
        if channel is None:
            log.warning(
                f"[BRACKET] Announcement channel {self.announce_channel_id} not found"
            )
            return

        async with db_session(self.db_path) as db:
            tournament = await TournamentService(db).get_by_id(entry.tournament_id)
        name = tournament.name if tournament else None

        try:
            await channel.send(embed=build_timeline_embed(entry, name))
        except discord.HTTPException as e:
            log.warning(f"[BRACKET] Failed to announce {entry.action}: {e}")

    # -------------------------------------------------------------------------
    # Setup commands
    # -------------------------------------------------------------------------

    @app_commands.command(
        name="bracket_create",
        description="Create a single elimination bracket (admin only).",
    )
    @app_commands.checks.has_permissions(administrator=True)
    async def bracket_create(
        self,
        interaction: discord.Interaction,
        name: str,
        size: int,
        auto_progress: bool = True,
    ):
        async with db_session(self.db_path) as db:
            tournament, error = await TournamentService(db).create_tournament(
                name, size, auto_progress=auto_progress
            )

        if error:
            await interaction.response.send_message(
                embed=error_embed("Create failed", error), ephemeral=True
            )
            return

        await interaction.response.send_message(
            embed=success_embed(
                "Tournament created",
                f"**{tournament.name}** (ID `{tournament.id}`, {tournament.max_players} players)",
            ),
            ephemeral=True,
        )

    @app_commands.command(
        name="bracket_seed",
        description="Seed round 1. Players are comma-separated, in seed order.",
    )
    @app_commands.checks.has_permissions(administrator=True)
    async def bracket_seed(
        self,
        interaction: discord.Interaction,
        tournament_id: int,
        players: str,
        shuffle: bool = False,
    ):
        entrants = [p.strip() for p in players.split(",") if p.strip()]
        seed_order = None if shuffle else entrants

        async with db_session(self.db_path) as db:
            service = TournamentService(db)
            matches, error = await service.seed_bracket(
                tournament_id, entrants, seed_order=seed_order
            )

        if error:
            await interaction.response.send_message(
                embed=error_embed("Seeding failed", error), ephemeral=True
            )
            return

        await interaction.response.send_message(
            f"✅ Seeded {len(matches)} round 1 matches.", ephemeral=True
        )

    @app_commands.command(
        name="bracket_settings",
        description="Toggle auto-progression (and simulation for dev users).",
    )
    @app_commands.checks.has_permissions(administrator=True)
    async def bracket_settings(
        self,
        interaction: discord.Interaction,
        tournament_id: int,
        auto_progress: Optional[bool] = None,
        simulation_mode: Optional[bool] = None,
    ):
        if simulation_mode is not None and not is_dev_user(interaction.user.id):
            await interaction.response.send_message(
                "⚠️ Simulation mode is available only to authorized dev users.",
                ephemeral=True,
            )
            return

        async with db_session(self.db_path) as db:
            updated = await TournamentService(db).update_settings(
                tournament_id,
                auto_progress=auto_progress,
                simulation_mode=simulation_mode,
            )

        await interaction.response.send_message(
            "✅ Settings updated." if updated else "❌ Nothing to update.",
            ephemeral=True,
        )

    # -------------------------------------------------------------------------
    # Results
    # -------------------------------------------------------------------------

    @app_commands.command(
        name="bracket_report",
        description="Report the result of your match.",
    )
    async def bracket_report(
        self,
        interaction: discord.Interaction,
        tournament_id: int,
        match_key: str,
        score_a: app_commands.Range[int, 0],
        score_b: app_commands.Range[int, 0],
        winner: str,
    ):
        reporter = str(interaction.user.id)

        async with db_session(self.db_path) as db:
            match = await TournamentService(db).get_match_by_key(tournament_id, match_key)
            if match is None:
                await interaction.response.send_message(
                    f"❌ No match `{match_key}` in tournament {tournament_id}.",
                    ephemeral=True,
                )
                return

            service = MatchService(db, self.trigger, self.engine.timeline)
            match, error = await service.file_report(
                match.id, reporter, score_a, score_b, winner
            )

        if error:
            await interaction.response.send_message(f"❌ {error}", ephemeral=True)
        elif match.is_completed:
            await interaction.response.send_message(
                f"✅ Both reports agree. `{match.match_key}` won by **{match.winner}**.",
                ephemeral=True,
            )
        elif match.status == MatchStatus.DISPUTED.value:
            await interaction.response.send_message(
                "⚠️ Reports disagree. Admins have been notified.", ephemeral=True
            )
        else:
            await interaction.response.send_message(
                "✅ Score reported! Waiting for your opponent.", ephemeral=True
            )

    # -------------------------------------------------------------------------
    # Operator commands
    # -------------------------------------------------------------------------

    @app_commands.command(
        name="bracket_status",
        description="Show the bracket and current round.",
    )
    @app_commands.checks.has_permissions(administrator=True)
    async def bracket_status(self, interaction: discord.Interaction, tournament_id: int):
        snapshot = await get_bracket_snapshot(self.db_path, tournament_id)
        if snapshot is None:
            await interaction.response.send_message(
                "❌ Tournament not found.", ephemeral=True
            )
            return

        embed = build_bracket_embed(snapshot["tournament"], snapshot["rounds"])
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(
        name="bracket_override",
        description="Force the winner of a match (admin only).",
    )
    @app_commands.checks.has_permissions(administrator=True)
    async def bracket_override(
        self,
        interaction: discord.Interaction,
        tournament_id: int,
        match_key: str,
        winner: str,
        reason: str,
        score_a: Optional[app_commands.Range[int, 0]] = None,
        score_b: Optional[app_commands.Range[int, 0]] = None,
    ):
        await interaction.response.defer(ephemeral=True, thinking=True)

        async with db_session(self.db_path) as db:
            match = await TournamentService(db).get_match_by_key(tournament_id, match_key)
            if match is None:
                await interaction.followup.send(
                    f"❌ No match `{match_key}` in tournament {tournament_id}.",
                    ephemeral=True,
                )
                return

            service = OverrideService(db, self.engine, self.trigger)
            match, error = await service.force_set_winner(
                match.id,
                winner,
                admin_id=str(interaction.user.id),
                reason=reason,
                score_a=score_a,
                score_b=score_b,
            )

        if error:
            await interaction.followup.send(
                embed=error_embed("Override failed", error), ephemeral=True
            )
            return

        await interaction.followup.send(
            embed=build_override_embed(match, reason), ephemeral=True
        )

    @app_commands.command(
        name="bracket_force_advance",
        description="Close the current round now, or on the next completion.",
    )
    @app_commands.checks.has_permissions(administrator=True)
    async def bracket_force_advance(
        self,
        interaction: discord.Interaction,
        tournament_id: int,
        reason: str,
        on_next_completion: bool = False,
    ):
        await interaction.response.defer(ephemeral=True, thinking=True)
        admin_id = str(interaction.user.id)

        async with db_session(self.db_path) as db:
            service = OverrideService(db, self.engine, self.trigger)
            if on_next_completion:
                _, error = await service.request_force_advance(tournament_id, admin_id)
                result = None
            else:
                result, error = await service.force_advance(
                    tournament_id, admin_id, reason
                )

        if error:
            await interaction.followup.send(
                embed=error_embed("Force-advance failed", error), ephemeral=True
            )
            return

        if result is None:
            await interaction.followup.send(
                "✅ The next match completion will force-advance this round.",
                ephemeral=True,
            )
            return

        await interaction.followup.send(
            embed=build_force_advance_embed(result), ephemeral=True
        )

    @app_commands.command(
        name="bracket_archive",
        description="Archive a completed tournament (admin only).",
    )
    @app_commands.checks.has_permissions(administrator=True)
    async def bracket_archive(self, interaction: discord.Interaction, tournament_id: int):
        async with db_session(self.db_path) as db:
            ok, error = await TournamentService(db).archive_tournament(tournament_id)

        if not ok:
            await interaction.response.send_message(f"❌ {error}", ephemeral=True)
            return
        await interaction.response.send_message("✅ Tournament archived.", ephemeral=True)


async def setup(bot: commands.Bot):
    engine = getattr(bot, "engine", None) or ProgressionEngine()
    trigger = getattr(bot, "trigger", None) or CompletionTrigger(engine)
    await bot.add_cog(BracketCog(bot, engine, trigger, getattr(bot, "db_path", None)))

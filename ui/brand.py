"""
ui/brand.py — Bracket Engine palette and embed factory
"""

import discord

FOOTER_TEXT = "Bracket Engine • auto-progression"


class Colors:
    """Embed colours keyed to bracket state."""

    IN_PROGRESS = discord.Color(0x2A6FDB)
    # Disputes, overrides and force-advances
    NEEDS_ADMIN = discord.Color(0xFAA61A)
    ADVANCED = discord.Color(0x3BA55D)
    CHAMPION = discord.Color(0xF1C40F)
    FAILED = discord.Color(0xED4245)


def create_embed(
    title: str,
    description: str = None,
    color: discord.Color = None,
) -> discord.Embed:
    """Embed with the engine footer; colour defaults to IN_PROGRESS."""
    embed = discord.Embed(
        title=title,
        description=description,
        color=color or Colors.IN_PROGRESS,
    )
    embed.set_footer(text=FOOTER_TEXT)
    return embed


def error_embed(title: str, description: str = None) -> discord.Embed:
    return create_embed(f"❌ {title}", description, Colors.FAILED)


def success_embed(title: str, description: str = None) -> discord.Embed:
    return create_embed(f"✅ {title}", description, Colors.ADVANCED)

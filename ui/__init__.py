"""
ui/ — Discord UI components for the Bracket Engine
===================================================
Contains:
- Embed builder functions
- Brand constants
- No database access or business logic
"""

from ui.brand import Colors, create_embed, error_embed, success_embed

from ui.bracket_embeds import (
    build_bracket_embed,
    build_force_advance_embed,
    build_override_embed,
    build_timeline_embed,
    format_match_line,
)

__all__ = [
    "Colors",
    "create_embed",
    "error_embed",
    "success_embed",
    "build_bracket_embed",
    "build_force_advance_embed",
    "build_override_embed",
    "build_timeline_embed",
    "format_match_line",
]

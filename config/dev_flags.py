"""
config/dev_flags.py

Central configuration for dev-only access control.

Simulation mode (random winners) is a dev tool; the bracket cog checks
access here before letting anyone toggle it.
"""

import os
from typing import Set


# =============================================================================
# DEV USERS
# =============================================================================
# Comma-separated Discord user IDs in DEV_USERS, e.g.
#   DEV_USERS=123456789012345678,987654321098765432
def _parse_dev_users(raw: str) -> Set[int]:
    users = set()
    for part in raw.split(","):
        part = part.strip()
        if part.isdigit():
            users.add(int(part))
    return users


DEV_USERS: Set[int] = _parse_dev_users(os.getenv("DEV_USERS", ""))


# =============================================================================
# ENVIRONMENT FLAGS
# =============================================================================
def is_dev_mode() -> bool:
    """
    Check if the bot is running in dev mode.

    Set DEV_MODE=1 in your .env file to enable dev mode.
    This is a global kill-switch for all dev features.
    """
    return os.getenv("DEV_MODE") == "1"


# =============================================================================
# ACCESS CONTROL HELPERS
# =============================================================================
def is_dev_user(user_id: int) -> bool:
    """Check if a user may use dev-only tools (dev mode on and listed)."""
    return is_dev_mode() and user_id in DEV_USERS

"""
services/errors.py — Bracket engine error taxonomy
---------------------------------------------------
ValidationError is raised at the write boundary and never reaches the
progression pipeline. The remaining errors are raised inside the pipeline
and caught at the completion trigger.
"""


class BracketError(Exception):
    """Base class for all bracket engine errors."""


class ValidationError(BracketError):
    """A write violated the match/tournament contract."""


class InvalidTransitionError(ValidationError):
    """A status change is not in the allowed-transition table."""


class NotFoundError(BracketError):
    """A tournament or match record does not exist."""


class UndeterminedWinnerError(BracketError):
    """A completed match has no winner and simulation mode is off."""

    def __init__(self, match_id: int, tournament_id: int):
        super().__init__(
            f"Match {match_id} in tournament {tournament_id} is completed "
            "without a winner"
        )
        self.match_id = match_id
        self.tournament_id = tournament_id


class OddWinnerCountError(BracketError):
    """A decided round produced an odd number of winners."""

    def __init__(self, tournament_id: int, round_num: int, count: int):
        super().__init__(
            f"Round {round_num} of tournament {tournament_id} produced "
            f"{count} winners; cannot pair"
        )
        self.tournament_id = tournament_id
        self.round_num = round_num
        self.count = count


class StorageError(BracketError):
    """A read or write against the store failed."""

"""
Error taxonomy for the tournament engine.

Every failure raised by LeagueService is a LeagueError subclass.  None of
them are retried; the message carries the ids and state needed to diagnose
the problem without re-deriving anything.
"""

from __future__ import annotations


class LeagueError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str, *, league_id: int | None = None) -> None:
        self.league_id = league_id
        if league_id is not None:
            message = f"[league {league_id}] {message}"
        super().__init__(message)


class ValidationError(LeagueError):
    """Input or precondition rejected: too few players, bad bracket size, round not complete, ..."""


class StateError(LeagueError):
    """Operation attempted from the wrong lifecycle state."""

    def __init__(
        self,
        message: str,
        *,
        league_id: int | None = None,
        status: str | None = None,
    ) -> None:
        self.status = status
        if status is not None:
            message = f"{message} (status: {status})"
        super().__init__(message, league_id=league_id)


class NotFoundError(LeagueError):
    """Unknown league, match, or player id."""

    def __init__(self, entity: str, entity_id: object, *, league_id: int | None = None) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id!r} not found", league_id=league_id)


class PermissionDeniedError(LeagueError):
    """A creator-only action was requested by someone else."""


class SchedulerMiss(LeagueError):
    """
    A timer callback fired after its (league, round) key was superseded.

    Expected race, never surfaced to users; the scheduler logs and absorbs it.
    """

    def __init__(self, league_id: int, round_number: int) -> None:
        self.round_number = round_number
        super().__init__(
            f"timer for round {round_number} is no longer active", league_id=league_id
        )

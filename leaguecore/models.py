"""
Persisted entities — the rows the storage layer owns.

The engine is the authority on the values in these rows; the repositories
are the authority on their durability.  Plain mutable dataclasses so an
in-memory store can hand out copies and a database-backed one can map them
onto its own schema.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class CompetitionType(str, Enum):
    SWISS = "SWISS"
    SWISS_WITH_TOP_CUT = "SWISS_WITH_TOP_CUT"
    SINGLE_ELIMINATION = "SINGLE_ELIMINATION"
    DOUBLE_ELIMINATION = "DOUBLE_ELIMINATION"

    @property
    def is_elimination(self) -> bool:
        return self in (CompetitionType.SINGLE_ELIMINATION, CompetitionType.DOUBLE_ELIMINATION)


class LeagueStatus(str, Enum):
    REGISTRATION = "REGISTRATION"
    IN_PROGRESS = "IN_PROGRESS"
    TOP_CUT = "TOP_CUT"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (LeagueStatus.COMPLETED, LeagueStatus.CANCELLED)


VALID_TOP_CUT_SIZES = (2, 4, 8)


@dataclass
class League:
    id: int
    guild_id: str
    created_by: str
    name: str
    format: str
    competition_type: CompetitionType
    status: LeagueStatus = LeagueStatus.REGISTRATION
    current_round: int = 0
    total_rounds: int | None = None
    round_timer_minutes: int | None = None
    has_top_cut: bool = False
    top_cut_size: int | None = None
    announcement_channel_id: str | None = None
    description: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)


@dataclass
class CreateLeagueOptions:
    guild_id: str
    created_by: str
    name: str
    format: str
    competition_type: CompetitionType
    description: str | None = None
    top_cut_size: int | None = None
    total_rounds: int | None = None
    round_timer_minutes: int | None = None
    announcement_channel_id: str | None = None


@dataclass
class Player:
    id: int
    user_id: str     # platform identity (e.g. a chat user id)
    username: str


@dataclass
class Registration:
    id: int
    league_id: int
    player_id: int
    username: str = ""
    wins: int = 0
    losses: int = 0
    draws: int = 0
    match_points: int = 0
    omw_percent: float = 0.0
    gw_percent: float = 0.0
    ogw_percent: float = 0.0
    is_active: bool = True
    is_dropped: bool = False
    registered_at: datetime = field(default_factory=datetime.now)


@dataclass
class Round:
    id: int
    league_id: int
    round_number: int
    is_top_cut: bool = False
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: datetime | None = None
    timer_starts_at: datetime | None = None
    timer_ends_at: datetime | None = None


@dataclass
class Match:
    id: int
    league_id: int
    round_id: int
    player1_id: int
    player2_id: int | None = None
    player1_wins: int = 0
    player2_wins: int = 0
    draws: int = 0
    winner_id: int | None = None
    is_draw: bool = False
    is_bye: bool = False
    is_completed: bool = False
    table_number: int | None = None
    bracket_position: str | None = None   # e.g. "W2-M1", "L3-M2", "GF", "GF-RESET"
    is_losers_bracket: bool = False
    is_grand_finals: bool = False
    is_bracket_reset: bool = False
    reported_at: datetime | None = None

    @property
    def loser_id(self) -> int | None:
        if self.winner_id is None or self.player2_id is None:
            return None
        return self.player2_id if self.winner_id == self.player1_id else self.player1_id


@dataclass(frozen=True)
class MatchResult:
    """Game score reported for a match, from player1's point of view."""

    player1_wins: int
    player2_wins: int
    draws: int = 0

    @property
    def is_draw(self) -> bool:
        return self.player1_wins == self.player2_wins


# The fixed score recorded for a bye: two game wins for player1.
BYE_RESULT = MatchResult(player1_wins=2, player2_wins=0, draws=0)


@dataclass
class AuditLog:
    id: int
    league_id: int
    user_id: str
    username: str
    action: str
    entity_type: str
    description: str
    entity_id: int | None = None
    old_value: str | None = None
    new_value: str | None = None
    created_at: datetime = field(default_factory=datetime.now)

"""
Tournament abstractions — the in-memory types shared by the pairing,
standings, and bracket engines.

PlayerRecord is the engine's working copy of a participant.  Pairing and
BracketMatch are what the engines hand back to LeagueService, which turns
them into persisted Match rows.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

BracketTag = Literal["winners", "losers", "grand_finals", "reset"]
SlotName = Literal["player1", "player2"]


@dataclass
class PlayerRecord:
    """Running tally for one participant across all completed matches."""

    id: int
    name: str
    wins: int = 0
    losses: int = 0
    draws: int = 0
    match_points: int = 0
    opponent_match_win_percent: float = 0.0
    game_win_percent: float = 0.0
    opponent_game_win_percent: float = 0.0
    opponents: list[int] = field(default_factory=list)
    dropped: bool = False

    @property
    def matches_played(self) -> int:
        return self.wins + self.losses + self.draws

    def add_opponent(self, opponent_id: int) -> None:
        if opponent_id not in self.opponents:
            self.opponents.append(opponent_id)


@dataclass(frozen=True)
class Pairing:
    """One table of a Swiss round.  player2 absent means a bye."""

    table_number: int
    player1_id: int
    player1_name: str
    player2_id: int | None = None
    player2_name: str | None = None

    @property
    def is_bye(self) -> bool:
        return self.player2_id is None


@dataclass(frozen=True)
class Seed:
    """A bracket entrant.  seed 1 is the top seed."""

    id: int
    name: str
    seed: int


@dataclass
class BracketMatch:
    """A single elimination-bracket match and where its winner goes next."""

    round_number: int           # relative to the start of its bracket
    match_number: int           # position within the round, 1-based
    bracket: BracketTag = "winners"
    player1: Seed | None = None
    player2: Seed | None = None
    winner_id: int | None = None
    feeds_into_match_number: int | None = None
    feeds_into_position: SlotName | None = None

    @property
    def is_complete(self) -> bool:
        return self.winner_id is not None

    @property
    def winner(self) -> Seed | None:
        if self.winner_id is None:
            return None
        for p in (self.player1, self.player2):
            if p is not None and p.id == self.winner_id:
                return p
        return None

    @property
    def loser(self) -> Seed | None:
        if self.winner_id is None:
            return None
        for p in (self.player1, self.player2):
            if p is not None and p.id != self.winner_id:
                return p
        return None

    @property
    def label(self) -> str:
        """Stable position label, persisted on Match.bracket_position."""
        match self.bracket:
            case "grand_finals":
                return "GF"
            case "reset":
                return "GF-RESET"
            case "losers":
                return f"L{self.round_number}-M{self.match_number}"
            case _:
                return f"W{self.round_number}-M{self.match_number}"


@dataclass(frozen=True)
class StandingEntry:
    """One ranked row of the standings table."""

    rank: int
    player_id: int
    player_name: str
    wins: int
    losses: int
    draws: int
    match_points: int
    omw_percent: float
    gw_percent: float
    ogw_percent: float
    dropped: bool = False

    @property
    def record(self) -> str:
        return f"{self.wins}-{self.losses}-{self.draws}"

"""
Repository contracts.

The engine decides values; a repository only makes them durable.  Every
method is async so a database-backed implementation can await its driver.
Implementations return detached copies: changing a returned object does
nothing until it is written back with update().
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from leaguecore.models import (
    AuditLog,
    CreateLeagueOptions,
    League,
    Match,
    Player,
    Registration,
    Round,
)


class LeagueRepository(ABC):
    @abstractmethod
    async def create(self, options: CreateLeagueOptions) -> League: ...

    @abstractmethod
    async def find_by_id(self, league_id: int) -> League | None: ...

    @abstractmethod
    async def find_by_guild(self, guild_id: str) -> list[League]: ...

    @abstractmethod
    async def find_all(self) -> list[League]: ...

    @abstractmethod
    async def update(self, league_id: int, **fields: Any) -> League: ...

    @abstractmethod
    async def delete(self, league_id: int) -> None: ...


class PlayerRepository(ABC):
    @abstractmethod
    async def find_or_create(self, user_id: str, username: str) -> Player: ...

    @abstractmethod
    async def find_by_user_id(self, user_id: str) -> Player | None: ...

    @abstractmethod
    async def find_by_id(self, player_id: int) -> Player | None: ...


class RegistrationRepository(ABC):
    @abstractmethod
    async def create(self, league_id: int, player_id: int, username: str) -> Registration: ...

    @abstractmethod
    async def find_by_league_and_player(self, league_id: int, player_id: int) -> Registration | None: ...

    @abstractmethod
    async def find_by_league(self, league_id: int) -> list[Registration]:
        """All registrations of a league, in registration order."""

    @abstractmethod
    async def update(self, registration_id: int, **fields: Any) -> Registration: ...

    @abstractmethod
    async def delete_by_league(self, league_id: int) -> None: ...


class RoundRepository(ABC):
    @abstractmethod
    async def create(self, league_id: int, round_number: int, is_top_cut: bool = False) -> Round: ...

    @abstractmethod
    async def find_by_league_and_round(self, league_id: int, round_number: int) -> Round | None: ...

    @abstractmethod
    async def find_by_league(self, league_id: int) -> list[Round]:
        """All rounds of a league, ordered by round number."""

    @abstractmethod
    async def update(self, round_id: int, **fields: Any) -> Round: ...

    @abstractmethod
    async def delete(self, round_id: int) -> None: ...

    @abstractmethod
    async def delete_by_league(self, league_id: int) -> None: ...


class MatchRepository(ABC):
    @abstractmethod
    async def create(self, league_id: int, round_id: int, player1_id: int, **fields: Any) -> Match: ...

    @abstractmethod
    async def find_by_id(self, match_id: int) -> Match | None: ...

    @abstractmethod
    async def find_by_round(self, round_id: int) -> list[Match]:
        """Matches of a round, ordered by table number."""

    @abstractmethod
    async def find_by_league(self, league_id: int) -> list[Match]:
        """Matches of a league, in creation order."""

    @abstractmethod
    async def update(self, match_id: int, **fields: Any) -> Match: ...

    @abstractmethod
    async def delete_by_round(self, round_id: int) -> None: ...

    @abstractmethod
    async def delete_by_league(self, league_id: int) -> None: ...


class AuditLogRepository(ABC):
    @abstractmethod
    async def create(
        self,
        *,
        league_id: int,
        user_id: str,
        username: str,
        action: str,
        entity_type: str,
        description: str,
        entity_id: int | None = None,
        old_value: str | None = None,
        new_value: str | None = None,
    ) -> AuditLog: ...

    @abstractmethod
    async def find_recent(self, league_id: int, limit: int = 50) -> list[AuditLog]:
        """Newest first."""


@dataclass
class Repositories:
    """The full set of repositories LeagueService talks to."""

    leagues: LeagueRepository
    players: PlayerRepository
    registrations: RegistrationRepository
    rounds: RoundRepository
    matches: MatchRepository
    audit_logs: AuditLogRepository

"""
In-memory repositories.

Used by the tests and the demo entry point.  Rows live in plain dicts keyed
by id; ids are handed out sequentially per table.  Every read returns a copy
so callers see the same detached-row semantics a database would give them.
"""

from __future__ import annotations

import itertools
from dataclasses import fields as dc_fields
from dataclasses import replace
from datetime import datetime
from typing import Any, Generic, TypeVar

from leaguecore.errors import NotFoundError
from leaguecore.models import (
    AuditLog,
    CreateLeagueOptions,
    League,
    LeagueStatus,
    Match,
    Player,
    Registration,
    Round,
)
from leaguecore.storage.base import (
    AuditLogRepository,
    LeagueRepository,
    MatchRepository,
    PlayerRepository,
    RegistrationRepository,
    Repositories,
    RoundRepository,
)

T = TypeVar("T")


class _Table(dict, Generic[T]):
    """id -> row mapping with a sequence and copy-on-read helpers."""

    def __init__(self, entity: str) -> None:
        super().__init__()
        self.entity = entity
        self._ids = itertools.count(1)

    def next_id(self) -> int:
        return next(self._ids)

    def copy_of(self, row_id: int) -> T | None:
        row = self.get(row_id)
        return replace(row) if row is not None else None

    def rows(self, predicate=lambda row: True) -> list[T]:
        return [replace(r) for r in self.values() if predicate(r)]

    def patch(self, row_id: int, changes: dict[str, Any]) -> T:
        row = self.get(row_id)
        if row is None:
            raise NotFoundError(self.entity, row_id)
        allowed = {f.name for f in dc_fields(row)}
        unknown = set(changes) - allowed
        if unknown:
            raise TypeError(f"{self.entity} has no field(s): {', '.join(sorted(unknown))}")
        updated = replace(row, **changes)
        if hasattr(updated, "updated_at"):
            updated.updated_at = datetime.now()
        self[row_id] = updated
        return replace(updated)


class InMemoryLeagueRepository(LeagueRepository):
    def __init__(self) -> None:
        self._rows: _Table[League] = _Table("League")

    async def create(self, options: CreateLeagueOptions) -> League:
        league = League(
            id=self._rows.next_id(),
            guild_id=options.guild_id,
            created_by=options.created_by,
            name=options.name,
            format=options.format,
            competition_type=options.competition_type,
            status=LeagueStatus.REGISTRATION,
            current_round=0,
            total_rounds=options.total_rounds,
            round_timer_minutes=options.round_timer_minutes,
            has_top_cut=options.top_cut_size is not None,
            top_cut_size=options.top_cut_size,
            announcement_channel_id=options.announcement_channel_id,
            description=options.description,
        )
        self._rows[league.id] = league
        return replace(league)

    async def find_by_id(self, league_id: int) -> League | None:
        return self._rows.copy_of(league_id)

    async def find_by_guild(self, guild_id: str) -> list[League]:
        return self._rows.rows(lambda lg: lg.guild_id == guild_id)

    async def find_all(self) -> list[League]:
        return self._rows.rows()

    async def update(self, league_id: int, **fields: Any) -> League:
        return self._rows.patch(league_id, fields)

    async def delete(self, league_id: int) -> None:
        self._rows.pop(league_id, None)


class InMemoryPlayerRepository(PlayerRepository):
    def __init__(self) -> None:
        self._rows: _Table[Player] = _Table("Player")

    async def find_or_create(self, user_id: str, username: str) -> Player:
        existing = await self.find_by_user_id(user_id)
        if existing is not None:
            return existing
        player = Player(id=self._rows.next_id(), user_id=user_id, username=username)
        self._rows[player.id] = player
        return replace(player)

    async def find_by_user_id(self, user_id: str) -> Player | None:
        found = self._rows.rows(lambda p: p.user_id == user_id)
        return found[0] if found else None

    async def find_by_id(self, player_id: int) -> Player | None:
        return self._rows.copy_of(player_id)


class InMemoryRegistrationRepository(RegistrationRepository):
    def __init__(self) -> None:
        self._rows: _Table[Registration] = _Table("Registration")

    async def create(self, league_id: int, player_id: int, username: str) -> Registration:
        reg = Registration(
            id=self._rows.next_id(), league_id=league_id, player_id=player_id, username=username
        )
        self._rows[reg.id] = reg
        return replace(reg)

    async def find_by_league_and_player(self, league_id: int, player_id: int) -> Registration | None:
        found = self._rows.rows(lambda r: r.league_id == league_id and r.player_id == player_id)
        return found[0] if found else None

    async def find_by_league(self, league_id: int) -> list[Registration]:
        return self._rows.rows(lambda r: r.league_id == league_id)

    async def update(self, registration_id: int, **fields: Any) -> Registration:
        return self._rows.patch(registration_id, fields)

    async def delete_by_league(self, league_id: int) -> None:
        for reg_id in [k for k, r in self._rows.items() if r.league_id == league_id]:
            del self._rows[reg_id]


class InMemoryRoundRepository(RoundRepository):
    def __init__(self) -> None:
        self._rows: _Table[Round] = _Table("Round")

    async def create(self, league_id: int, round_number: int, is_top_cut: bool = False) -> Round:
        rnd = Round(
            id=self._rows.next_id(),
            league_id=league_id,
            round_number=round_number,
            is_top_cut=is_top_cut,
        )
        self._rows[rnd.id] = rnd
        return replace(rnd)

    async def find_by_league_and_round(self, league_id: int, round_number: int) -> Round | None:
        found = self._rows.rows(
            lambda r: r.league_id == league_id and r.round_number == round_number
        )
        return found[0] if found else None

    async def find_by_league(self, league_id: int) -> list[Round]:
        return sorted(
            self._rows.rows(lambda r: r.league_id == league_id), key=lambda r: r.round_number
        )

    async def update(self, round_id: int, **fields: Any) -> Round:
        return self._rows.patch(round_id, fields)

    async def delete(self, round_id: int) -> None:
        self._rows.pop(round_id, None)

    async def delete_by_league(self, league_id: int) -> None:
        for round_id in [k for k, r in self._rows.items() if r.league_id == league_id]:
            del self._rows[round_id]


class InMemoryMatchRepository(MatchRepository):
    def __init__(self) -> None:
        self._rows: _Table[Match] = _Table("Match")

    async def create(self, league_id: int, round_id: int, player1_id: int, **fields: Any) -> Match:
        match = Match(
            id=self._rows.next_id(),
            league_id=league_id,
            round_id=round_id,
            player1_id=player1_id,
            **fields,
        )
        self._rows[match.id] = match
        return replace(match)

    async def find_by_id(self, match_id: int) -> Match | None:
        return self._rows.copy_of(match_id)

    async def find_by_round(self, round_id: int) -> list[Match]:
        return sorted(
            self._rows.rows(lambda m: m.round_id == round_id),
            key=lambda m: (m.table_number or 0, m.id),
        )

    async def find_by_league(self, league_id: int) -> list[Match]:
        return sorted(self._rows.rows(lambda m: m.league_id == league_id), key=lambda m: m.id)

    async def update(self, match_id: int, **fields: Any) -> Match:
        return self._rows.patch(match_id, fields)

    async def delete_by_round(self, round_id: int) -> None:
        for match_id in [k for k, m in self._rows.items() if m.round_id == round_id]:
            del self._rows[match_id]

    async def delete_by_league(self, league_id: int) -> None:
        for match_id in [k for k, m in self._rows.items() if m.league_id == league_id]:
            del self._rows[match_id]


class InMemoryAuditLogRepository(AuditLogRepository):
    def __init__(self) -> None:
        self._rows: _Table[AuditLog] = _Table("AuditLog")

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
    ) -> AuditLog:
        entry = AuditLog(
            id=self._rows.next_id(),
            league_id=league_id,
            user_id=user_id,
            username=username,
            action=action,
            entity_type=entity_type,
            description=description,
            entity_id=entity_id,
            old_value=old_value,
            new_value=new_value,
        )
        self._rows[entry.id] = entry
        return replace(entry)

    async def find_recent(self, league_id: int, limit: int = 50) -> list[AuditLog]:
        rows = self._rows.rows(lambda a: a.league_id == league_id)
        return sorted(rows, key=lambda a: a.id, reverse=True)[:limit]


def create_memory_repositories() -> Repositories:
    return Repositories(
        leagues=InMemoryLeagueRepository(),
        players=InMemoryPlayerRepository(),
        registrations=InMemoryRegistrationRepository(),
        rounds=InMemoryRoundRepository(),
        matches=InMemoryMatchRepository(),
        audit_logs=InMemoryAuditLogRepository(),
    )

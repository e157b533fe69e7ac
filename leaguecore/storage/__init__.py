"""
Storage package.

LeagueService only ever talks to the Repositories bundle.  To back it with
a real database, implement the ABCs in storage/base.py and build a
Repositories from them.
"""

from __future__ import annotations

from leaguecore.storage.base import (
    AuditLogRepository,
    LeagueRepository,
    MatchRepository,
    PlayerRepository,
    RegistrationRepository,
    Repositories,
    RoundRepository,
)
from leaguecore.storage.memory import create_memory_repositories

__all__ = [
    "AuditLogRepository",
    "LeagueRepository",
    "MatchRepository",
    "PlayerRepository",
    "RegistrationRepository",
    "Repositories",
    "RoundRepository",
    "create_memory_repositories",
]

"""
leaguecore — tournament progression for community game leagues.

LeagueService is the entry point for everything a command layer needs;
the tournaments package holds the pure pairing, standings, and bracket
engines it drives.
"""

from __future__ import annotations

from leaguecore.errors import (
    LeagueError,
    NotFoundError,
    PermissionDeniedError,
    SchedulerMiss,
    StateError,
    ValidationError,
)
from leaguecore.league import LeagueService
from leaguecore.models import (
    CompetitionType,
    CreateLeagueOptions,
    League,
    LeagueStatus,
    Match,
    MatchResult,
)
from leaguecore.notifications import LoggingSink, NotificationSink, RecordingSink
from leaguecore.timers import RoundTimerScheduler, plan_announcements

__all__ = [
    "CompetitionType",
    "CreateLeagueOptions",
    "League",
    "LeagueError",
    "LeagueService",
    "LeagueStatus",
    "LoggingSink",
    "Match",
    "MatchResult",
    "NotFoundError",
    "NotificationSink",
    "PermissionDeniedError",
    "RecordingSink",
    "RoundTimerScheduler",
    "SchedulerMiss",
    "StateError",
    "ValidationError",
    "plan_announcements",
]

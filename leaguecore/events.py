"""
Event dataclasses — the shared language between the engine and whatever
delivers messages (chat bot, console, tests).

All events are frozen so they are safe to hand to scheduled tasks and
across async boundaries.  format_announcement() renders the text the
notification sink receives.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

AnnouncementKind = Literal["start", "remaining", "expired"]


@dataclass(frozen=True)
class TimerContext:
    """Immutable snapshot handed to every scheduled announcement of a round."""

    league_id: int
    league_name: str
    round_number: int
    scope_id: str           # guild / community id
    destination_id: str     # announcement channel id
    duration_minutes: int


@dataclass(frozen=True)
class ScheduledAnnouncement:
    """One planned firing, offset in minutes from when the timer was scheduled."""

    offset_minutes: int
    kind: AnnouncementKind
    minutes_remaining: int


@dataclass(frozen=True)
class RoundTimerStartedEvent:
    league_name: str
    round_number: int
    duration_minutes: int
    interval_minutes: int = 15
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class TimeRemainingEvent:
    league_name: str
    round_number: int
    minutes_remaining: int
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class RoundTimerExpiredEvent:
    league_name: str
    round_number: int
    timestamp: datetime = field(default_factory=datetime.now)


# Union type for type-safe pattern matching in consumers
TimerEvent = RoundTimerStartedEvent | TimeRemainingEvent | RoundTimerExpiredEvent


def format_announcement(event: TimerEvent) -> str:
    match event:
        case RoundTimerStartedEvent():
            return (
                f"⏰ **{event.league_name} - Round {event.round_number}**\n"
                f"The round timer has started! You have **{event.duration_minutes} minutes** "
                f"to complete your matches.\n"
                f"Time remaining announcements will be posted every {event.interval_minutes} minutes."
            )
        case TimeRemainingEvent():
            m = event.minutes_remaining
            icon = "🚨" if m <= 5 else "⚠️" if m <= 10 else "⏰"
            return (
                f"{icon} **{event.league_name} - Round {event.round_number}**\n"
                f"**{m} minutes** remaining in this round!"
            )
        case RoundTimerExpiredEvent():
            return (
                f"⏱️ **{event.league_name} - Round {event.round_number}**\n"
                "Time is up! Please finish your current game and report your results.\n"
                "Tournament organizers will complete the round when all matches are reported."
            )
    raise TypeError(f"Unknown timer event: {event!r}")


# --------------------------------------------------------------------------- #
# League lifecycle events                                                      #
# --------------------------------------------------------------------------- #

@dataclass(frozen=True)
class RoundGeneratedEvent:
    """Fired after a round's matches are stored (including repaired rounds)."""

    league_id: int
    league_name: str
    round_number: int
    is_top_cut: bool
    # Each entry: (table_number, player1_name, player2_name | "BYE", bracket_position | None)
    tables: tuple[tuple[int, str, str, str | None], ...]
    repaired: bool = False
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class TournamentCompletedEvent:
    """Fired once when a league reaches COMPLETED, manually or automatically."""

    league_id: int
    league_name: str
    champion_id: int | None
    champion_name: str
    rounds_played: int
    automatic: bool
    timestamp: datetime = field(default_factory=datetime.now)


LeagueEvent = RoundGeneratedEvent | TournamentCompletedEvent

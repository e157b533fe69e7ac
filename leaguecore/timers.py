"""
Round timer — scheduled announcements for a timed round.

For a round of D minutes, with a grace period G (default 5):
  G          start announcement
  G + 15k    remaining-time announcement, for every 15k < D
  G + D - m  forced warning for each m in (15, 10, 5) with m < D
  G + D      time is up

Periodic slots that would repeat a forced warning are skipped, so each
offset fires once.  Every announcement is an asyncio task; all tasks of a
(league, round) are tracked together and cancelled together.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from leaguecore.config import TimerConfig
from leaguecore.errors import SchedulerMiss
from leaguecore.events import (
    RoundTimerExpiredEvent,
    RoundTimerStartedEvent,
    ScheduledAnnouncement,
    TimeRemainingEvent,
    TimerContext,
    TimerEvent,
    format_announcement,
)
from leaguecore.notifications import NotificationSink

logger = logging.getLogger(__name__)

TimerKey = tuple[int, int]   # (league_id, round_number)


def plan_announcements(
    duration_minutes: int,
    grace_minutes: int = 5,
    interval_minutes: int = 15,
    warning_minutes: tuple[int, ...] = (15, 10, 5),
) -> list[ScheduledAnnouncement]:
    """Return the announcements for one round, ordered by offset, one per offset."""
    plan: dict[int, ScheduledAnnouncement] = {}

    def add(offset: int, kind, remaining: int) -> None:
        plan.setdefault(offset, ScheduledAnnouncement(offset, kind, remaining))

    add(grace_minutes, "start", duration_minutes)

    warnings = {m for m in warning_minutes if m < duration_minutes}
    for elapsed in range(interval_minutes, duration_minutes, interval_minutes):
        remaining = duration_minutes - elapsed
        if remaining in warnings:
            continue
        add(grace_minutes + elapsed, "remaining", remaining)

    for m in sorted(warnings, reverse=True):
        add(grace_minutes + duration_minutes - m, "remaining", m)

    add(grace_minutes + duration_minutes, "expired", 0)
    return sorted(plan.values(), key=lambda a: a.offset_minutes)


@dataclass
class ActiveTimer:
    league_id: int
    round_number: int
    scope_id: str
    destination_id: str
    plan: list[ScheduledAnnouncement]
    tasks: list[asyncio.Task] = field(default_factory=list)

    @property
    def pending(self) -> list[asyncio.Task]:
        return [t for t in self.tasks if not t.done()]


class RoundTimerScheduler:
    """
    Owns every active round timer.  Construct one per process and share it;
    all access goes through the methods below.
    """

    def __init__(self, sink: NotificationSink, config: TimerConfig | None = None) -> None:
        self.sink = sink
        self.config = config or TimerConfig()
        self._timers: dict[TimerKey, ActiveTimer] = {}

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    def start_round_timer(self, context: TimerContext) -> tuple[datetime, datetime]:
        """
        Schedule all announcements for a round; replaces any timer already
        running for the same (league, round).  Must be called from a running
        event loop.  Returns the (starts_at, ends_at) window of the clock.
        """
        key = (context.league_id, context.round_number)
        self.cancel_round_timer(*key)

        cfg = self.config
        plan = plan_announcements(
            context.duration_minutes,
            cfg.grace_minutes,
            cfg.interval_minutes,
            cfg.warning_minutes,
        )
        timer = ActiveTimer(
            league_id=context.league_id,
            round_number=context.round_number,
            scope_id=context.scope_id,
            destination_id=context.destination_id,
            plan=plan,
        )
        self._timers[key] = timer
        for announcement in plan:
            timer.tasks.append(
                asyncio.create_task(
                    self._run(key, timer, context, announcement),
                    name=f"round-timer-{key[0]}-{key[1]}-{announcement.offset_minutes}",
                )
            )

        now = datetime.now()
        starts_at = now + timedelta(minutes=cfg.grace_minutes)
        ends_at = starts_at + timedelta(minutes=context.duration_minutes)
        logger.info(
            "Round timer scheduled for league %d round %d: %d min, %d announcements",
            context.league_id, context.round_number, context.duration_minutes, len(plan),
        )
        return starts_at, ends_at

    def cancel_round_timer(self, league_id: int, round_number: int) -> bool:
        timer = self._timers.pop((league_id, round_number), None)
        if timer is None:
            return False
        for task in timer.tasks:
            task.cancel()
        logger.debug("Cancelled round timer for league %d round %d", league_id, round_number)
        return True

    def cancel_league_timers(self, league_id: int) -> int:
        keys = [k for k in self._timers if k[0] == league_id]
        for key in keys:
            self.cancel_round_timer(*key)
        return len(keys)

    def is_active(self, league_id: int, round_number: int) -> bool:
        return (league_id, round_number) in self._timers

    def get_timer(self, league_id: int, round_number: int) -> ActiveTimer | None:
        return self._timers.get((league_id, round_number))

    def active_keys(self) -> list[TimerKey]:
        return list(self._timers)

    async def shutdown(self) -> None:
        """Cancel every timer and wait for the tasks to unwind."""
        tasks = [t for timer in self._timers.values() for t in timer.tasks]
        for key in list(self._timers):
            self.cancel_round_timer(*key)
        await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------ #
    # Internal helpers                                                     #
    # ------------------------------------------------------------------ #

    async def _run(
        self,
        key: TimerKey,
        timer: ActiveTimer,
        context: TimerContext,
        announcement: ScheduledAnnouncement,
    ) -> None:
        await asyncio.sleep(announcement.offset_minutes * self.config.seconds_per_minute)
        try:
            self._ensure_live(key, timer)
        except SchedulerMiss as exc:
            logger.debug("Skipping %s announcement: %s", announcement.kind, exc)
            return

        if announcement.kind == "expired":
            self._timers.pop(key, None)

        message = format_announcement(self._event_for(context, announcement))
        try:
            await self.sink.announce(context.scope_id, context.destination_id, message)
        except Exception:
            logger.warning(
                "Timer announcement for league %d round %d could not be delivered to %s/%s",
                context.league_id, context.round_number,
                context.scope_id, context.destination_id,
                exc_info=True,
            )

    def _ensure_live(self, key: TimerKey, timer: ActiveTimer) -> None:
        # the key may have been cancelled, restarted, or expired while we slept
        if self._timers.get(key) is not timer:
            raise SchedulerMiss(*key)

    def _event_for(self, context: TimerContext, a: ScheduledAnnouncement) -> TimerEvent:
        match a.kind:
            case "start":
                return RoundTimerStartedEvent(
                    league_name=context.league_name,
                    round_number=context.round_number,
                    duration_minutes=context.duration_minutes,
                    interval_minutes=self.config.interval_minutes,
                )
            case "remaining":
                return TimeRemainingEvent(
                    league_name=context.league_name,
                    round_number=context.round_number,
                    minutes_remaining=a.minutes_remaining,
                )
            case _:
                return RoundTimerExpiredEvent(
                    league_name=context.league_name,
                    round_number=context.round_number,
                )

"""
League lifecycle — the orchestrator.

    REGISTRATION -> IN_PROGRESS -> [TOP_CUT] -> COMPLETED
    REGISTRATION | IN_PROGRESS | TOP_CUT -> CANCELLED

LeagueService owns the in-memory tournament state of every running league
(player records, the elimination bracket) and the per-league locks.  It
calls the Swiss engine or the bracket engine to build each round, re-derives
standings after every result, and hands timed rounds to the
RoundTimerScheduler.

In-memory state is a cache of what the repositories hold.  It is rebuilt
from registrations and completed matches whenever it is missing, and
restore() does that eagerly for every running league at startup.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from leaguecore.errors import (
    NotFoundError,
    PermissionDeniedError,
    StateError,
    ValidationError,
)
from leaguecore.events import (
    LeagueEvent,
    RoundGeneratedEvent,
    TimerContext,
    TournamentCompletedEvent,
)
from leaguecore.models import (
    BYE_RESULT,
    VALID_TOP_CUT_SIZES,
    AuditLog,
    CompetitionType,
    CreateLeagueOptions,
    League,
    LeagueStatus,
    Match,
    MatchResult,
    Registration,
    Round,
)
from leaguecore.storage.base import Repositories
from leaguecore.timers import RoundTimerScheduler
from leaguecore.tournaments import create_bracket
from leaguecore.tournaments.base import BracketMatch, Pairing, PlayerRecord, Seed, StandingEntry
from leaguecore.tournaments.elimination import (
    Bracket,
    previous_power_of_two,
    require_power_of_two,
    seeds_from_first_round,
)
from leaguecore.tournaments.standings import compute_standings, top_cut_seeds
from leaguecore.tournaments.swiss import generate_pairings, recommended_swiss_rounds
from leaguecore.tournaments.tiebreakers import recompute_tiebreakers

logger = logging.getLogger(__name__)

SYSTEM_USER = ("system", "system")

EventListener = Callable[[LeagueEvent], None]


@dataclass
class LeagueState:
    """Working state of one running league."""

    league_id: int
    records: dict[int, PlayerRecord]          # player id -> record, registration order
    bracket: Bracket | None = None

    def active_records(self) -> list[PlayerRecord]:
        return [r for r in self.records.values() if not r.dropped]


@dataclass(frozen=True)
class _Outcome:
    winner_id: int | None
    is_draw: bool


class LeagueService:
    """
    Every command-layer call maps onto one coroutine here.  Construct once
    per process with the repositories and (optionally) a timer scheduler.
    """

    def __init__(
        self,
        repos: Repositories,
        scheduler: RoundTimerScheduler | None = None,
        listeners: list[EventListener] | None = None,
    ) -> None:
        self.repos = repos
        self.scheduler = scheduler
        self.listeners: list[EventListener] = list(listeners or [])
        self._states: dict[int, LeagueState] = {}
        self._locks: defaultdict[int, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._advancing: set[int] = set()

    # ------------------------------------------------------------------ #
    # Leagues and registration                                             #
    # ------------------------------------------------------------------ #

    async def create_league(self, options: CreateLeagueOptions) -> League:
        name = options.name.strip()
        if not name:
            raise ValidationError("League name must not be empty.")
        existing = await self.repos.leagues.find_by_guild(options.guild_id)
        if any(lg.name.lower() == name.lower() for lg in existing):
            raise ValidationError(f'A league named "{name}" already exists in this server.')

        ct = CompetitionType(options.competition_type)
        if ct == CompetitionType.SWISS_WITH_TOP_CUT:
            if options.top_cut_size not in VALID_TOP_CUT_SIZES:
                raise ValidationError(
                    f"Swiss with top cut needs a top cut size of {VALID_TOP_CUT_SIZES}, "
                    f"got {options.top_cut_size}."
                )
        elif options.top_cut_size is not None:
            raise ValidationError(f"A top cut only applies to {CompetitionType.SWISS_WITH_TOP_CUT.value} leagues.")
        if options.total_rounds is not None and options.total_rounds < 1:
            raise ValidationError("Total rounds must be at least 1.")
        if options.round_timer_minutes is not None and options.round_timer_minutes < 1:
            raise ValidationError("Round timer must be at least 1 minute.")

        options.name = name
        options.competition_type = ct
        league = await self.repos.leagues.create(options)
        logger.info("Created league %d %r (%s) in guild %s", league.id, league.name, ct.value, league.guild_id)
        return league

    async def get_league(self, league_id: int) -> League:
        league = await self.repos.leagues.find_by_id(league_id)
        if league is None:
            raise NotFoundError("League", league_id)
        return league

    async def get_league_by_name(self, guild_id: str, name: str) -> League:
        for league in await self.repos.leagues.find_by_guild(guild_id):
            if league.name == name:
                return league
        raise NotFoundError("League", name)

    async def list_leagues(self, guild_id: str, *, active_only: bool = False) -> list[League]:
        leagues = await self.repos.leagues.find_by_guild(guild_id)
        if active_only:
            leagues = [lg for lg in leagues if not lg.status.is_terminal]
        return leagues

    async def register_player(self, league_id: int, user_id: str, username: str) -> Registration:
        league = await self.get_league(league_id)
        if league.status != LeagueStatus.REGISTRATION:
            raise ValidationError(
                f"League registration is closed (status: {league.status.value}).", league_id=league_id
            )
        player = await self.repos.players.find_or_create(user_id, username)
        if await self.repos.registrations.find_by_league_and_player(league_id, player.id):
            raise ValidationError(f"{username} is already registered.", league_id=league_id)
        reg = await self.repos.registrations.create(league_id, player.id, player.username)
        logger.info("Registered %s for league %d", player.username, league_id)
        return reg

    async def start_league(self, league_id: int, user_id: str, username: str) -> League:
        league = await self.get_league(league_id)
        _require_creator(league, user_id, "start the tournament")
        if league.status != LeagueStatus.REGISTRATION:
            raise StateError("League has already started", league_id=league_id, status=league.status.value)

        active = [r for r in await self.repos.registrations.find_by_league(league_id) if r.is_active]
        if len(active) < 2:
            raise ValidationError(
                f"Need at least 2 players to start league (have {len(active)}).", league_id=league_id
            )

        changes: dict = {"status": LeagueStatus.IN_PROGRESS}
        ct = league.competition_type
        if ct == CompetitionType.SINGLE_ELIMINATION:
            require_power_of_two(len(active), "Single elimination")
        elif ct == CompetitionType.DOUBLE_ELIMINATION:
            require_power_of_two(len(active), "Double elimination")
        elif ct == CompetitionType.SWISS_WITH_TOP_CUT:
            if league.top_cut_size and league.top_cut_size > len(active):
                raise ValidationError(
                    f"Top cut of {league.top_cut_size} needs at least that many players "
                    f"(have {len(active)}).",
                    league_id=league_id,
                )
            if league.total_rounds is None:
                changes["total_rounds"] = recommended_swiss_rounds(len(active))

        self._states[league_id] = LeagueState(
            league_id=league_id,
            records={r.player_id: PlayerRecord(id=r.player_id, name=r.username) for r in active},
        )
        league = await self.repos.leagues.update(league_id, **changes)

        await self.repos.audit_logs.create(
            league_id=league_id,
            user_id=user_id,
            username=username,
            action="START_TOURNAMENT",
            entity_type="LEAGUE",
            entity_id=league_id,
            old_value=json.dumps({"status": LeagueStatus.REGISTRATION.value}),
            new_value=json.dumps({"status": league.status.value, "playerCount": len(active)}),
            description=f"Started tournament with {len(active)} players",
        )
        logger.info("League %d started with %d players", league_id, len(active))
        return league

    # ------------------------------------------------------------------ #
    # Rounds                                                               #
    # ------------------------------------------------------------------ #

    async def generate_next_round(self, league_id: int) -> list[Match]:
        """Pair the next round.  Rejects a second request while one is in flight."""
        async with self._advancement(league_id):
            return await self._advance(league_id)

    async def repair_current_round(self, league_id: int, user_id: str, username: str) -> list[Match]:
        """Throw away the current round's matches and pair the same round again."""
        async with self._advancement(league_id):
            league = await self.get_league(league_id)
            _require_creator(league, user_id, "repair rounds")
            _require_running(league, "repair a round")
            if league.current_round == 0:
                raise ValidationError("No active round to repair.", league_id=league_id)

            number = league.current_round
            rnd = await self.repos.rounds.find_by_league_and_round(league_id, number)
            if rnd is None:
                raise NotFoundError("Round", number, league_id=league_id)
            deleted = await self.repos.matches.find_by_round(rnd.id)

            await self.repos.matches.delete_by_round(rnd.id)
            await self.repos.rounds.delete(rnd.id)
            await self.repos.leagues.update(league_id, current_round=number - 1)
            self._cancel_timer(league_id, number)
            # results in the deleted round are gone; rebuild from what is left
            self._states.pop(league_id, None)
            await self._refresh_standings(league_id, await self._ensure_state(league))

            await self.repos.audit_logs.create(
                league_id=league_id,
                user_id=user_id,
                username=username,
                action="REPAIR_ROUND",
                entity_type="ROUND",
                entity_id=rnd.id,
                old_value=json.dumps({
                    "roundNumber": number,
                    "matchCount": len(deleted),
                    "matches": [
                        {
                            "id": m.id,
                            "player1Id": m.player1_id,
                            "player2Id": m.player2_id,
                            "tableNumber": m.table_number,
                        }
                        for m in deleted
                    ],
                }),
                new_value=json.dumps({"roundNumber": number, "status": "regenerated"}),
                description=f"Repaired round {number} - deleted {len(deleted)} matches and regenerated pairings",
            )
            logger.info("Repairing round %d of league %d (%d matches deleted)", number, league_id, len(deleted))
            return await self._advance(league_id, repaired=True)

    async def _advance(self, league_id: int, *, repaired: bool = False) -> list[Match]:
        league = await self.get_league(league_id)
        _require_running(league, "generate a round")
        state = await self._ensure_state(league)

        if league.current_round > 0:
            current = await self.repos.rounds.find_by_league_and_round(league_id, league.current_round)
            if current is not None:
                matches = await self.repos.matches.find_by_round(current.id)
                pending = [m for m in matches if not m.is_completed]
                if pending:
                    raise ValidationError(
                        f"Round {league.current_round} is not complete: "
                        f"{len(pending)} of {len(matches)} matches still unreported.",
                        league_id=league_id,
                    )

        number = league.current_round + 1
        rnd = await self.repos.rounds.find_by_league_and_round(league_id, number)
        if rnd is not None and await self.repos.matches.find_by_round(rnd.id):
            raise StateError(
                f"Round {number} already exists with matches. Cannot regenerate.",
                league_id=league_id,
                status=league.status.value,
            )

        if _in_bracket_phase(league):
            stage, league = await self._next_bracket_stage(league, state)
            is_top_cut = league.competition_type == CompetitionType.SWISS_WITH_TOP_CUT
            if rnd is None:
                rnd = await self.repos.rounds.create(league_id, number, is_top_cut=is_top_cut)
            created = await self._store_bracket_stage(league, rnd, stage)
        else:
            if (
                league.competition_type == CompetitionType.SWISS
                and league.total_rounds is not None
                and league.current_round >= league.total_rounds
            ):
                raise StateError(
                    f"All {league.total_rounds} Swiss rounds have been played; end the tournament.",
                    league_id=league_id,
                    status=league.status.value,
                )
            recompute_tiebreakers(state.records.values())
            pairings = generate_pairings(state.active_records())
            if rnd is None:
                rnd = await self.repos.rounds.create(league_id, number)
            created = await self._store_pairings(league, rnd, state, pairings)

        if league.current_round > 0:
            self._cancel_timer(league_id, league.current_round)
        league = await self.repos.leagues.update(league_id, current_round=number)
        await self._start_timer(league, rnd)

        logger.info(
            "League %d round %d generated: %d match(es)%s",
            league_id, number, len(created), " (repaired)" if repaired else "",
        )
        self._emit(RoundGeneratedEvent(
            league_id=league_id,
            league_name=league.name,
            round_number=number,
            is_top_cut=rnd.is_top_cut,
            tables=tuple(
                (
                    m.table_number or 0,
                    state.records[m.player1_id].name if m.player1_id in state.records else "Unknown",
                    state.records[m.player2_id].name if m.player2_id in state.records else "BYE",
                    m.bracket_position,
                )
                for m in created
            ),
            repaired=repaired,
        ))

        # a dropped player can still be placed by the bracket; they forfeit
        for m in created:
            if m.is_completed or m.player2_id is None:
                continue
            if state.records[m.player1_id].dropped:
                await self._record(league, m, MatchResult(0, 2))
            elif state.records[m.player2_id].dropped:
                await self._record(league, m, MatchResult(2, 0))

        # a round of nothing but byes has no result to report
        if created and all(m.is_completed for m in created):
            await self._after_result(league, state, created[0])
        return created

    async def _store_pairings(
        self,
        league: League,
        rnd: Round,
        state: LeagueState,
        pairings: list[Pairing],
    ) -> list[Match]:
        created: list[Match] = []
        byes = False
        for p in pairings:
            if p.is_bye:
                match = await self.repos.matches.create(
                    league.id,
                    rnd.id,
                    p.player1_id,
                    table_number=p.table_number,
                    is_bye=True,
                    is_completed=True,
                    player1_wins=BYE_RESULT.player1_wins,
                    player2_wins=BYE_RESULT.player2_wins,
                    draws=BYE_RESULT.draws,
                    winner_id=p.player1_id,
                    reported_at=datetime.now(),
                )
                _apply_to_records(state, match, BYE_RESULT, +1)
                byes = True
            else:
                match = await self.repos.matches.create(
                    league.id, rnd.id, p.player1_id, player2_id=p.player2_id, table_number=p.table_number
                )
            created.append(match)
        if byes:
            await self._refresh_standings(league.id, state)
        return created

    async def _next_bracket_stage(
        self, league: League, state: LeagueState
    ) -> tuple[list[BracketMatch], League]:
        if state.bracket is None:
            seeds = self._bracket_seeds(league, state)
            state.bracket = create_bracket(league.competition_type, seeds)
            if league.competition_type == CompetitionType.SWISS_WITH_TOP_CUT:
                league = await self.repos.leagues.update(league.id, status=LeagueStatus.TOP_CUT)
                logger.info("League %d enters a top cut of %d", league.id, len(seeds))

        stage = state.bracket.next_round()
        if not stage:
            raise StateError(
                "The bracket is already decided; end the tournament.",
                league_id=league.id,
                status=league.status.value,
            )
        return stage, league

    def _bracket_seeds(self, league: League, state: LeagueState) -> list[Seed]:
        if league.competition_type.is_elimination:
            return [Seed(r.id, r.name, i) for i, r in enumerate(state.active_records(), 1)]

        standings = compute_standings(state.records.values())
        active = len(state.active_records())
        size = league.top_cut_size or 8
        if active < size:
            size = previous_power_of_two(active)
            logger.warning(
                "League %d: only %d active players, top cut reduced to %d", league.id, active, size
            )
        if size < 2:
            raise ValidationError("Not enough active players for a top cut.", league_id=league.id)
        return [
            Seed(s.player_id, s.player_name, i)
            for i, s in enumerate(top_cut_seeds(standings, size), 1)
        ]

    async def _store_bracket_stage(
        self, league: League, rnd: Round, stage: list[BracketMatch]
    ) -> list[Match]:
        created = []
        for table, bm in enumerate(stage, 1):
            created.append(
                await self.repos.matches.create(
                    league.id,
                    rnd.id,
                    bm.player1.id,
                    player2_id=bm.player2.id,
                    table_number=table,
                    bracket_position=bm.label,
                    is_losers_bracket=bm.bracket == "losers",
                    is_grand_finals=bm.bracket == "grand_finals",
                    is_bracket_reset=bm.bracket == "reset",
                )
            )
        return created

    # ------------------------------------------------------------------ #
    # Results                                                              #
    # ------------------------------------------------------------------ #

    async def report_match_result(self, match_id: int, result: MatchResult) -> Match:
        match = await self.get_match(match_id)
        async with self._locks[match.league_id]:
            league = await self.get_league(match.league_id)
            _require_running(league, "report results")
            match = await self.get_match(match_id)
            if match.is_completed:
                raise StateError("Match already reported", league_id=league.id, status=league.status.value)
            return await self._record(league, match, result)

    async def report_for_player(
        self,
        league_id: int,
        user_id: str,
        own_wins: int,
        opponent_wins: int,
        draws: int = 0,
    ) -> Match:
        """Report from one player's point of view, for their current-round match."""
        match = await self.find_player_active_match(league_id, user_id)
        if match is None:
            raise NotFoundError("Active match for user", user_id, league_id=league_id)
        player = await self.repos.players.find_by_user_id(user_id)
        if match.player1_id == player.id:
            result = MatchResult(own_wins, opponent_wins, draws)
        else:
            result = MatchResult(opponent_wins, own_wins, draws)
        return await self.report_match_result(match.id, result)

    async def modify_match_result(
        self,
        match_id: int,
        result: MatchResult,
        user_id: str,
        username: str,
    ) -> Match:
        """Creator override: replace a match result, reversing the old tallies first."""
        old = await self.get_match(match_id)
        async with self._locks[old.league_id]:
            league = await self.get_league(old.league_id)
            _require_creator(league, user_id, "modify match results")
            _require_running(league, "modify results")
            old = await self.get_match(match_id)
            if old.is_bye:
                raise ValidationError(f"Match {match_id} is a bye and cannot be modified.", league_id=league.id)
            if old.bracket_position is not None:
                rnd = await self._round_of(old)
                if rnd.round_number != league.current_round:
                    raise StateError(
                        f"Bracket match {old.bracket_position} belongs to an earlier round and is locked.",
                        league_id=league.id,
                        status=league.status.value,
                    )

            _check_result(league, old, result)
            state = await self._ensure_state(league)
            if old.is_completed:
                previous = MatchResult(old.player1_wins, old.player2_wins, old.draws)
                _apply_to_records(state, old, previous, -1)
            updated = await self._record(league, old, result)

            await self.repos.audit_logs.create(
                league_id=league.id,
                user_id=user_id,
                username=username,
                action="MODIFY_MATCH",
                entity_type="MATCH",
                entity_id=match_id,
                old_value=json.dumps({
                    "player1Wins": old.player1_wins,
                    "player2Wins": old.player2_wins,
                    "draws": old.draws,
                    "isCompleted": old.is_completed,
                }),
                new_value=json.dumps({
                    "player1Wins": result.player1_wins,
                    "player2Wins": result.player2_wins,
                    "draws": result.draws,
                    "isCompleted": True,
                }),
                description=(
                    f"Modified match {match_id} from {old.player1_wins}-{old.player2_wins} "
                    f"to {result.player1_wins}-{result.player2_wins}"
                ),
            )
            return updated

    async def _record(self, league: League, match: Match, result: MatchResult) -> Match:
        """Store a result, update records and bracket, refresh standings, maybe finish."""
        _check_result(league, match, result)
        state = await self._ensure_state(league)
        outcome = _outcome(match, result)
        updated = await self.repos.matches.update(
            match.id,
            player1_wins=result.player1_wins,
            player2_wins=result.player2_wins,
            draws=result.draws,
            is_completed=True,
            is_draw=outcome.is_draw,
            winner_id=outcome.winner_id,
            reported_at=datetime.now(),
        )
        _apply_to_records(state, updated, result, +1)
        if updated.bracket_position is not None and state.bracket is not None:
            state.bracket.record_result(updated.bracket_position, outcome.winner_id)

        await self._refresh_standings(league.id, state)
        logger.info(
            "League %d match %d reported %d-%d-%d",
            league.id, match.id, result.player1_wins, result.player2_wins, result.draws,
        )
        await self._after_result(league, state, updated)
        return updated

    async def _after_result(self, league: League, state: LeagueState, match: Match) -> None:
        rnd = await self._round_of(match)
        if rnd.round_number != league.current_round:
            return
        matches = await self.repos.matches.find_by_round(rnd.id)
        if not all(m.is_completed for m in matches):
            return

        await self.repos.rounds.update(rnd.id, completed_at=datetime.now())
        self._cancel_timer(league.id, rnd.round_number)
        logger.info("League %d round %d complete", league.id, rnd.round_number)

        finished = False
        if state.bracket is not None and _in_bracket_phase(league):
            finished = state.bracket.is_complete
        elif league.competition_type == CompetitionType.SWISS and league.total_rounds is not None:
            finished = league.current_round >= league.total_rounds
        if finished:
            await self._complete(league, *SYSTEM_USER, automatic=True)

    # ------------------------------------------------------------------ #
    # Players                                                              #
    # ------------------------------------------------------------------ #

    async def drop_player(self, league_id: int, user_id: str) -> Registration:
        """
        Withdraw a player.  Their results stay in the tiebreak pool; an
        unreported current-round match is conceded 0-2.
        """
        async with self._locks[league_id]:
            league = await self.get_league(league_id)
            if league.status.is_terminal:
                raise StateError("Cannot drop from a finished league", league_id=league_id, status=league.status.value)
            player = await self.repos.players.find_by_user_id(user_id)
            if player is None:
                raise NotFoundError("Player", user_id, league_id=league_id)
            reg = await self.repos.registrations.find_by_league_and_player(league_id, player.id)
            if reg is None:
                raise NotFoundError("Registration", user_id, league_id=league_id)
            if reg.is_dropped:
                raise ValidationError(f"{player.username} has already dropped.", league_id=league_id)

            reg = await self.repos.registrations.update(reg.id, is_active=False, is_dropped=True)
            logger.info("Player %s dropped from league %d", player.username, league_id)
            if league.status == LeagueStatus.REGISTRATION:
                return reg

            state = await self._ensure_state(league)
            record = state.records.get(player.id)
            if record is not None:
                record.dropped = True

            pending = await self._pending_match_for(league, player.id)
            if pending is not None:
                concede = MatchResult(0, 2) if pending.player1_id == player.id else MatchResult(2, 0)
                logger.info("Match %d conceded by dropping player %s", pending.id, player.username)
                await self._record(league, pending, concede)
            else:
                await self._refresh_standings(league_id, state)
            return reg

    async def _pending_match_for(self, league: League, player_id: int) -> Match | None:
        if league.current_round == 0:
            return None
        rnd = await self.repos.rounds.find_by_league_and_round(league.id, league.current_round)
        if rnd is None:
            return None
        for m in await self.repos.matches.find_by_round(rnd.id):
            if not m.is_completed and player_id in (m.player1_id, m.player2_id):
                return m
        return None

    # ------------------------------------------------------------------ #
    # Ending                                                               #
    # ------------------------------------------------------------------ #

    async def end_tournament(self, league_id: int, user_id: str, username: str) -> TournamentCompletedEvent:
        async with self._locks[league_id]:
            league = await self.get_league(league_id)
            _require_creator(league, user_id, "end the tournament")
            if league.status not in (LeagueStatus.IN_PROGRESS, LeagueStatus.TOP_CUT):
                raise StateError("League is not in progress", league_id=league_id, status=league.status.value)
            return await self._complete(league, user_id, username, automatic=False)

    async def _complete(
        self, league: League, user_id: str, username: str, *, automatic: bool
    ) -> TournamentCompletedEvent:
        state = await self._ensure_state(league)
        standings = await self._refresh_standings(league.id, state)

        champion_id, champion_name = None, "N/A"
        if state.bracket is not None and state.bracket.champion is not None:
            champion_id, champion_name = state.bracket.champion.id, state.bracket.champion.name
        elif standings:
            champion_id, champion_name = standings[0].player_id, standings[0].player_name
        winner = next((s for s in standings if s.player_id == champion_id), None)

        old_status = league.status
        league = await self.repos.leagues.update(league.id, status=LeagueStatus.COMPLETED)
        self._cancel_all_timers(league.id)
        self._states.pop(league.id, None)

        await self.repos.audit_logs.create(
            league_id=league.id,
            user_id=user_id,
            username=username,
            action="END_TOURNAMENT",
            entity_type="LEAGUE",
            entity_id=league.id,
            old_value=json.dumps({"status": old_status.value}),
            new_value=json.dumps({
                "status": LeagueStatus.COMPLETED.value,
                "winner": champion_name,
                "winnerRecord": winner.record if winner else "N/A",
                "totalRounds": league.current_round,
                "playerCount": len(standings),
            }),
            description=(
                f"Ended tournament. Winner: {champion_name}"
                + (f" with {winner.record} record" if winner else "")
            ),
        )
        logger.info(
            "League %d completed%s; champion %s", league.id, " automatically" if automatic else "", champion_name
        )
        event = TournamentCompletedEvent(
            league_id=league.id,
            league_name=league.name,
            champion_id=champion_id,
            champion_name=champion_name,
            rounds_played=league.current_round,
            automatic=automatic,
        )
        self._emit(event)
        return event

    async def cancel_league(self, league_id: int, user_id: str = "system", username: str = "system") -> League:
        async with self._locks[league_id]:
            league = await self.get_league(league_id)
            if league.status.is_terminal:
                raise StateError("League is already finished", league_id=league_id, status=league.status.value)
            old_status = league.status
            league = await self.repos.leagues.update(league_id, status=LeagueStatus.CANCELLED)
            cancelled = self._cancel_all_timers(league_id)
            self._states.pop(league_id, None)
            await self.repos.audit_logs.create(
                league_id=league_id,
                user_id=user_id,
                username=username,
                action="CANCEL_LEAGUE",
                entity_type="LEAGUE",
                entity_id=league_id,
                old_value=json.dumps({"status": old_status.value}),
                new_value=json.dumps({"status": LeagueStatus.CANCELLED.value}),
                description=f"Cancelled league {league.name}",
            )
            logger.info("League %d cancelled (%d timer(s) stopped)", league_id, cancelled)
            return league

    async def delete_league(self, league_id: int, user_id: str, username: str) -> None:
        """Remove a league and all its rows.  Audit history is kept."""
        async with self._locks[league_id]:
            league = await self.get_league(league_id)
            _require_creator(league, user_id, "delete the league")
            self._cancel_all_timers(league_id)
            self._states.pop(league_id, None)
            await self.repos.audit_logs.create(
                league_id=league_id,
                user_id=user_id,
                username=username,
                action="DELETE_LEAGUE",
                entity_type="LEAGUE",
                entity_id=league_id,
                old_value=json.dumps({"name": league.name, "status": league.status.value}),
                description=f"Deleted league {league.name}",
            )
            await self.repos.matches.delete_by_league(league_id)
            await self.repos.rounds.delete_by_league(league_id)
            await self.repos.registrations.delete_by_league(league_id)
            await self.repos.leagues.delete(league_id)
        self._locks.pop(league_id, None)
        logger.info("League %d deleted", league_id)

    # ------------------------------------------------------------------ #
    # Queries                                                              #
    # ------------------------------------------------------------------ #

    async def get_standings(self, league_id: int) -> list[StandingEntry]:
        """
        Live standings for a running league; the frozen persisted values once
        it is completed or cancelled.
        """
        league = await self.get_league(league_id)
        if league.status in (LeagueStatus.IN_PROGRESS, LeagueStatus.TOP_CUT):
            state = await self._ensure_state(league)
            return compute_standings(state.records.values())

        regs = await self.repos.registrations.find_by_league(league_id)
        records = [
            PlayerRecord(
                id=r.player_id,
                name=r.username,
                wins=r.wins,
                losses=r.losses,
                draws=r.draws,
                match_points=r.match_points,
                opponent_match_win_percent=r.omw_percent,
                game_win_percent=r.gw_percent,
                opponent_game_win_percent=r.ogw_percent,
                dropped=r.is_dropped,
            )
            for r in regs
            if r.is_active or r.wins + r.losses + r.draws > 0
        ]
        return compute_standings(records, refresh=False)

    async def get_match(self, match_id: int) -> Match:
        match = await self.repos.matches.find_by_id(match_id)
        if match is None:
            raise NotFoundError("Match", match_id)
        return match

    async def get_current_round_matches(self, league_id: int) -> list[Match]:
        league = await self.get_league(league_id)
        if league.current_round == 0:
            return []
        rnd = await self.repos.rounds.find_by_league_and_round(league_id, league.current_round)
        if rnd is None:
            return []
        return await self.repos.matches.find_by_round(rnd.id)

    async def find_player_active_match(self, league_id: int, user_id: str) -> Match | None:
        player = await self.repos.players.find_by_user_id(user_id)
        if player is None:
            return None
        for m in await self.get_current_round_matches(league_id):
            if player.id in (m.player1_id, m.player2_id):
                return m
        return None

    async def find_matches_by_player_name(self, league_id: int, name: str) -> list[Match]:
        """Case-insensitive partial match on either player's name."""
        regs = await self.repos.registrations.find_by_league(league_id)
        needle = name.lower()
        ids = {r.player_id for r in regs if needle in r.username.lower()}
        return [
            m for m in await self.repos.matches.find_by_league(league_id)
            if m.player1_id in ids or m.player2_id in ids
        ]

    async def get_bracket(self, league_id: int) -> Bracket | None:
        league = await self.get_league(league_id)
        if league.status not in (LeagueStatus.IN_PROGRESS, LeagueStatus.TOP_CUT):
            return None
        return (await self._ensure_state(league)).bracket

    async def get_audit_logs(self, league_id: int, limit: int = 50) -> list[AuditLog]:
        return await self.repos.audit_logs.find_recent(league_id, limit)

    # ------------------------------------------------------------------ #
    # State rebuild                                                        #
    # ------------------------------------------------------------------ #

    async def restore(self) -> int:
        """
        Rebuild in-memory state for every running league.  Call once at
        startup before serving any command.
        """
        restored = 0
        for league in await self.repos.leagues.find_all():
            if league.status in (LeagueStatus.IN_PROGRESS, LeagueStatus.TOP_CUT):
                self._states.pop(league.id, None)
                await self._ensure_state(league)
                restored += 1
        logger.info("Restored tournament state for %d running league(s)", restored)
        return restored

    async def _ensure_state(self, league: League) -> LeagueState:
        state = self._states.get(league.id)
        if state is None:
            state = await self._rebuild(league)
            self._states[league.id] = state
        return state

    async def _rebuild(self, league: League) -> LeagueState:
        regs = await self.repos.registrations.find_by_league(league.id)
        matches = await self.repos.matches.find_by_league(league.id)
        rounds = {r.id: r.round_number for r in await self.repos.rounds.find_by_league(league.id)}

        seen = {m.player1_id for m in matches} | {m.player2_id for m in matches if m.player2_id}
        state = LeagueState(
            league_id=league.id,
            records={
                r.player_id: PlayerRecord(id=r.player_id, name=r.username, dropped=r.is_dropped)
                for r in regs
                if r.is_active or r.player_id in seen
            },
        )

        ordered = sorted(matches, key=lambda m: (rounds.get(m.round_id, 0), m.table_number or 0))
        completed = 0
        for m in ordered:
            if m.is_completed:
                _apply_to_records(state, m, MatchResult(m.player1_wins, m.player2_wins, m.draws), +1)
                completed += 1
        recompute_tiebreakers(state.records.values())

        bracket_rounds: dict[int, list[Match]] = defaultdict(list)
        for m in ordered:
            if m.bracket_position is not None:
                bracket_rounds[rounds.get(m.round_id, 0)].append(m)
        if bracket_rounds:
            first = min(bracket_rounds)
            names = {pid: r.name for pid, r in state.records.items()}
            seeds = seeds_from_first_round(bracket_rounds[first], names)
            state.bracket = create_bracket(league.competition_type, seeds)
            state.bracket.replay([bracket_rounds[n] for n in sorted(bracket_rounds)])

        logger.info(
            "Rebuilt league %d from %d registration(s) and %d completed match(es)",
            league.id, len(state.records), completed,
        )
        return state

    async def _refresh_standings(self, league_id: int, state: LeagueState) -> list[StandingEntry]:
        """Re-derive standings from scratch and write the values back to registrations."""
        standings = compute_standings(state.records.values())
        for reg in await self.repos.registrations.find_by_league(league_id):
            rec = state.records.get(reg.player_id)
            if rec is None:
                continue
            await self.repos.registrations.update(
                reg.id,
                wins=rec.wins,
                losses=rec.losses,
                draws=rec.draws,
                match_points=rec.match_points,
                omw_percent=rec.opponent_match_win_percent,
                gw_percent=rec.game_win_percent,
                ogw_percent=rec.opponent_game_win_percent,
            )
        return standings

    # ------------------------------------------------------------------ #
    # Internal helpers                                                     #
    # ------------------------------------------------------------------ #

    def _advancement(self, league_id: int) -> "_Advancement":
        return _Advancement(self, league_id)

    async def _round_of(self, match: Match) -> Round:
        for rnd in await self.repos.rounds.find_by_league(match.league_id):
            if rnd.id == match.round_id:
                return rnd
        raise NotFoundError("Round", match.round_id, league_id=match.league_id)

    async def _start_timer(self, league: League, rnd: Round) -> None:
        if self.scheduler is None or not league.round_timer_minutes:
            return
        context = TimerContext(
            league_id=league.id,
            league_name=league.name,
            round_number=rnd.round_number,
            scope_id=league.guild_id,
            destination_id=league.announcement_channel_id or "",
            duration_minutes=league.round_timer_minutes,
        )
        starts_at, ends_at = self.scheduler.start_round_timer(context)
        await self.repos.rounds.update(rnd.id, timer_starts_at=starts_at, timer_ends_at=ends_at)

    def _cancel_timer(self, league_id: int, round_number: int) -> None:
        if self.scheduler is not None:
            self.scheduler.cancel_round_timer(league_id, round_number)

    def _cancel_all_timers(self, league_id: int) -> int:
        if self.scheduler is None:
            return 0
        return self.scheduler.cancel_league_timers(league_id)

    def _emit(self, event: LeagueEvent) -> None:
        for listener in self.listeners:
            try:
                listener(event)
            except Exception:
                logger.warning("Event listener failed for %s", type(event).__name__, exc_info=True)


class _Advancement:
    """
    Per-league guard for round advancement: a second request while one is
    in flight is rejected, and the work itself runs under the league lock.
    """

    def __init__(self, service: LeagueService, league_id: int) -> None:
        self.service = service
        self.league_id = league_id

    async def __aenter__(self) -> None:
        if self.league_id in self.service._advancing:
            raise StateError(
                "A round is already being generated for this league; try again shortly.",
                league_id=self.league_id,
            )
        self.service._advancing.add(self.league_id)
        try:
            await self.service._locks[self.league_id].acquire()
        except BaseException:
            self.service._advancing.discard(self.league_id)
            raise

    async def __aexit__(self, *exc) -> None:
        self.service._locks[self.league_id].release()
        self.service._advancing.discard(self.league_id)


# ------------------------------------------------------------------ #
# Module helpers                                                       #
# ------------------------------------------------------------------ #

def _require_creator(league: League, user_id: str, action: str) -> None:
    if league.created_by != user_id:
        raise PermissionDeniedError(f"Only the league creator can {action}.", league_id=league.id)


def _require_running(league: League, action: str) -> None:
    if league.status not in (LeagueStatus.IN_PROGRESS, LeagueStatus.TOP_CUT):
        raise StateError(f"Cannot {action}: league is not in progress", league_id=league.id, status=league.status.value)


def _in_bracket_phase(league: League) -> bool:
    ct = league.competition_type
    if ct.is_elimination or league.status == LeagueStatus.TOP_CUT:
        return True
    return (
        ct == CompetitionType.SWISS_WITH_TOP_CUT
        and league.total_rounds is not None
        and league.current_round >= league.total_rounds
    )


def _check_result(league: League, match: Match, result: MatchResult) -> None:
    """Reject a result before any tally is touched."""
    values = (result.player1_wins, result.player2_wins, result.draws)
    if any(not isinstance(v, int) or v < 0 for v in values):
        raise ValidationError(f"Game counts must be non-negative integers, got {values}.", league_id=league.id)
    if match.player2_id is None:
        raise ValidationError(f"Match {match.id} is a bye and needs no report.", league_id=league.id)
    if match.bracket_position is not None and result.is_draw:
        raise ValidationError("Elimination matches cannot end in a draw.", league_id=league.id)


def _outcome(match: Match, result: MatchResult) -> _Outcome:
    if result.player1_wins > result.player2_wins:
        return _Outcome(match.player1_id, False)
    if result.player2_wins > result.player1_wins:
        return _Outcome(match.player2_id, False)
    return _Outcome(None, True)


def _apply_to_records(state: LeagueState, match: Match, result: MatchResult, sign: int) -> None:
    """Add (sign=+1) or reverse (sign=-1) one match result on the player records."""
    r1 = state.records.get(match.player1_id)
    r2 = state.records.get(match.player2_id) if match.player2_id is not None else None

    if match.is_bye or match.player2_id is None:
        if r1 is not None:
            r1.wins += sign
        return

    if sign > 0:
        if r1 is not None:
            r1.add_opponent(match.player2_id)
        if r2 is not None:
            r2.add_opponent(match.player1_id)

    if result.player1_wins > result.player2_wins:
        if r1 is not None:
            r1.wins += sign
        if r2 is not None:
            r2.losses += sign
    elif result.player2_wins > result.player1_wins:
        if r1 is not None:
            r1.losses += sign
        if r2 is not None:
            r2.wins += sign
    else:
        if r1 is not None:
            r1.draws += sign
        if r2 is not None:
            r2.draws += sign

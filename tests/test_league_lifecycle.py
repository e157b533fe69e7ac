"""
Tests for LeagueService — the league state machine end to end on the
in-memory repositories: registration, Swiss rounds with byes, reporting,
corrections, repair, drops, top cut, elimination brackets, automatic
completion, rebuild after restart, and round timers.
"""

from __future__ import annotations

import asyncio
import json
import unittest

from leaguecore.config import TimerConfig
from leaguecore.errors import (
    NotFoundError,
    PermissionDeniedError,
    StateError,
    ValidationError,
)
from leaguecore.events import RoundGeneratedEvent, TournamentCompletedEvent
from leaguecore.league import LeagueService
from leaguecore.models import CompetitionType, CreateLeagueOptions, LeagueStatus, MatchResult
from leaguecore.notifications import RecordingSink
from leaguecore.storage import create_memory_repositories
from leaguecore.timers import RoundTimerScheduler

NAMES = [
    "Alpha", "Bravo", "Charlie", "Delta",
    "Echo", "Foxtrot", "Golf", "Hotel",
]
CREATOR = ("creator-1", "Organiser")

P1_WINS = MatchResult(2, 0)
P2_WINS = MatchResult(0, 2)


# --------------------------------------------------------------------------- #
# Helpers                                                                      #
# --------------------------------------------------------------------------- #

class LeagueTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.repos = create_memory_repositories()
        self.events = []
        self.service = LeagueService(self.repos, listeners=[self.events.append])

    async def create(self, competition_type=CompetitionType.SWISS, players=4, **options):
        league = await self.service.create_league(
            CreateLeagueOptions(
                guild_id="guild-1",
                created_by=CREATOR[0],
                name=options.pop("name", "Friday Night"),
                format="Modern",
                competition_type=competition_type,
                **options,
            )
        )
        for i in range(players):
            await self.service.register_player(league.id, f"user-{i + 1}", NAMES[i])
        return league

    async def started(self, competition_type=CompetitionType.SWISS, players=4, **options):
        league = await self.create(competition_type, players, **options)
        return await self.service.start_league(league.id, *CREATOR)

    async def player_id(self, index: int) -> int:
        player = await self.repos.players.find_by_user_id(f"user-{index}")
        return player.id

    async def name_of(self, player_id: int | None) -> str | None:
        if player_id is None:
            return None
        return (await self.repos.players.find_by_id(player_id)).username

    async def pairs(self, matches) -> list[tuple[str, str | None]]:
        return [(await self.name_of(m.player1_id), await self.name_of(m.player2_id)) for m in matches]

    async def report_all(self, matches, result=P1_WINS):
        for m in matches:
            if not m.is_completed:
                await self.service.report_match_result(m.id, result)


# --------------------------------------------------------------------------- #
# Creation and registration                                                    #
# --------------------------------------------------------------------------- #

class TestCreateAndRegister(LeagueTestCase):
    async def test_new_league_is_in_registration(self):
        league = await self.create(players=0)
        self.assertEqual(league.status, LeagueStatus.REGISTRATION)
        self.assertEqual(league.current_round, 0)

    async def test_duplicate_name_in_guild_rejected(self):
        await self.create(players=0)
        with self.assertRaises(ValidationError):
            await self.create(players=0)

    async def test_top_cut_size_validated(self):
        with self.assertRaises(ValidationError):
            await self.create(CompetitionType.SWISS_WITH_TOP_CUT, 0, top_cut_size=3)
        with self.assertRaises(ValidationError):
            await self.create(CompetitionType.SWISS, 0, top_cut_size=4)

    async def test_duplicate_registration_rejected(self):
        league = await self.create(players=2)
        with self.assertRaises(ValidationError):
            await self.service.register_player(league.id, "user-1", "Alpha")

    async def test_registration_closes_on_start(self):
        league = await self.started(players=2)
        with self.assertRaises(ValidationError):
            await self.service.register_player(league.id, "user-9", "Late")

    async def test_lookup_by_name(self):
        league = await self.create(players=0)
        found = await self.service.get_league_by_name("guild-1", "Friday Night")
        self.assertEqual(found.id, league.id)
        with self.assertRaises(NotFoundError):
            await self.service.get_league_by_name("guild-1", "Nope")

    async def test_list_leagues(self):
        first = await self.create(players=0)
        second = await self.create(players=0, name="Saturday")
        await self.service.cancel_league(second.id)
        await self.service.create_league(
            CreateLeagueOptions("guild-2", CREATOR[0], "Elsewhere", "Modern", CompetitionType.SWISS)
        )

        everything = await self.service.list_leagues("guild-1")
        self.assertEqual([lg.id for lg in everything], [first.id, second.id])
        active = await self.service.list_leagues("guild-1", active_only=True)
        self.assertEqual([lg.id for lg in active], [first.id])


# --------------------------------------------------------------------------- #
# Start                                                                        #
# --------------------------------------------------------------------------- #

class TestStart(LeagueTestCase):
    async def test_start_moves_to_in_progress(self):
        league = await self.started(players=4)
        self.assertEqual(league.status, LeagueStatus.IN_PROGRESS)
        logs = await self.service.get_audit_logs(league.id)
        self.assertEqual(logs[0].action, "START_TOURNAMENT")
        self.assertEqual(json.loads(logs[0].new_value)["playerCount"], 4)

    async def test_only_creator_can_start(self):
        league = await self.create(players=4)
        with self.assertRaises(PermissionDeniedError):
            await self.service.start_league(league.id, "someone-else", "Mallory")

    async def test_needs_two_players(self):
        league = await self.create(players=1)
        with self.assertRaises(ValidationError):
            await self.service.start_league(league.id, *CREATOR)

    async def test_cannot_start_twice(self):
        league = await self.started(players=2)
        with self.assertRaises(StateError) as exc:
            await self.service.start_league(league.id, *CREATOR)
        self.assertIn("IN_PROGRESS", str(exc.exception))

    async def test_elimination_requires_power_of_two(self):
        league = await self.create(CompetitionType.SINGLE_ELIMINATION, players=3)
        with self.assertRaises(ValidationError) as exc:
            await self.service.start_league(league.id, *CREATOR)
        self.assertIn("power of 2", str(exc.exception))

    async def test_top_cut_league_gets_recommended_rounds(self):
        league = await self.started(CompetitionType.SWISS_WITH_TOP_CUT, players=8, top_cut_size=4)
        self.assertEqual(league.total_rounds, 3)

    async def test_generate_before_start_rejected(self):
        league = await self.create(players=4)
        with self.assertRaises(StateError):
            await self.service.generate_next_round(league.id)


# --------------------------------------------------------------------------- #
# Swiss rounds                                                                 #
# --------------------------------------------------------------------------- #

class TestSwissRounds(LeagueTestCase):
    async def test_three_players_bye_and_standings(self):
        league = await self.started(players=3, total_rounds=2)

        round1 = await self.service.generate_next_round(league.id)
        self.assertEqual(await self.pairs(round1), [("Alpha", "Bravo"), ("Charlie", None)])
        bye = round1[1]
        self.assertTrue(bye.is_bye)
        self.assertTrue(bye.is_completed)
        self.assertEqual((bye.player1_wins, bye.player2_wins, bye.draws), (2, 0, 0))
        self.assertEqual(bye.winner_id, await self.player_id(3))

        await self.service.report_match_result(round1[0].id, MatchResult(2, 1))
        standings = await self.service.get_standings(league.id)
        # Alpha and Charlie both 1-0; Alpha's opponent counts 0.33, Charlie has none
        self.assertEqual([s.player_name for s in standings], ["Alpha", "Charlie", "Bravo"])
        self.assertEqual(standings[1].record, "1-0-0")
        self.assertAlmostEqual(standings[0].omw_percent, 0.33)
        self.assertEqual(standings[1].omw_percent, 0.0)

        round2 = await self.service.generate_next_round(league.id)
        self.assertEqual(await self.pairs(round2), [("Alpha", "Charlie"), ("Bravo", None)])

    async def test_round_must_be_complete_before_next(self):
        league = await self.started(players=4)
        await self.service.generate_next_round(league.id)
        with self.assertRaises(ValidationError) as exc:
            await self.service.generate_next_round(league.id)
        self.assertIn("2 of 2", str(exc.exception))

    async def test_results_persist_to_registrations(self):
        league = await self.started(players=4, total_rounds=3)
        round1 = await self.service.generate_next_round(league.id)
        await self.report_all(round1)
        regs = {r.username: r for r in await self.repos.registrations.find_by_league(league.id)}
        self.assertEqual((regs["Alpha"].wins, regs["Alpha"].match_points), (1, 3))
        self.assertEqual(regs["Bravo"].losses, 1)
        self.assertAlmostEqual(regs["Alpha"].omw_percent, 0.33)

    async def test_wins_balance_losses_without_byes(self):
        league = await self.started(players=4, total_rounds=3)
        for _ in range(2):
            matches = await self.service.generate_next_round(league.id)
            await self.report_all(matches)
        standings = await self.service.get_standings(league.id)
        self.assertEqual(sum(s.wins for s in standings), sum(s.losses for s in standings))

    async def test_second_round_avoids_rematches(self):
        league = await self.started(players=4, total_rounds=3)
        round1 = await self.service.generate_next_round(league.id)
        await self.report_all(round1)
        round2 = await self.service.generate_next_round(league.id)
        first = {frozenset(p) for p in await self.pairs(round1)}
        second = {frozenset(p) for p in await self.pairs(round2)}
        self.assertFalse(first & second)

    async def test_draws_score_one_point(self):
        league = await self.started(players=2, total_rounds=2)
        round1 = await self.service.generate_next_round(league.id)
        match = await self.service.report_match_result(round1[0].id, MatchResult(1, 1, 1))
        self.assertTrue(match.is_draw)
        self.assertIsNone(match.winner_id)
        standings = await self.service.get_standings(league.id)
        self.assertEqual([s.match_points for s in standings], [1, 1])

    async def test_report_twice_rejected(self):
        league = await self.started(players=2, total_rounds=2)
        round1 = await self.service.generate_next_round(league.id)
        await self.service.report_match_result(round1[0].id, P1_WINS)
        with self.assertRaises(StateError):
            await self.service.report_match_result(round1[0].id, P2_WINS)

    async def test_report_unknown_match(self):
        with self.assertRaises(NotFoundError):
            await self.service.report_match_result(999, P1_WINS)

    async def test_negative_score_rejected(self):
        league = await self.started(players=2, total_rounds=2)
        round1 = await self.service.generate_next_round(league.id)
        with self.assertRaises(ValidationError):
            await self.service.report_match_result(round1[0].id, MatchResult(-1, 2))

    async def test_report_for_player_orients_score(self):
        league = await self.started(players=4, total_rounds=3)
        await self.service.generate_next_round(league.id)
        # Bravo is player2 at table 1
        match = await self.service.report_for_player(league.id, "user-2", 2, 1)
        self.assertEqual((match.player1_wins, match.player2_wins), (1, 2))
        self.assertEqual(match.winner_id, await self.player_id(2))

    async def test_round_generated_event(self):
        league = await self.started(players=3, total_rounds=2)
        await self.service.generate_next_round(league.id)
        event = self.events[-1]
        self.assertIsInstance(event, RoundGeneratedEvent)
        self.assertEqual(event.round_number, 1)
        self.assertEqual(event.tables, ((1, "Alpha", "Bravo", None), (2, "Charlie", "BYE", None)))

    async def test_player_queries(self):
        league = await self.started(players=4, total_rounds=3)
        round1 = await self.service.generate_next_round(league.id)
        active = await self.service.find_player_active_match(league.id, "user-4")
        self.assertEqual(active.id, round1[1].id)
        self.assertIsNone(await self.service.find_player_active_match(league.id, "nobody"))
        found = await self.service.find_matches_by_player_name(league.id, "alp")
        self.assertEqual([m.id for m in found], [round1[0].id])
        current = await self.service.get_current_round_matches(league.id)
        self.assertEqual([m.id for m in current], [m.id for m in round1])


# --------------------------------------------------------------------------- #
# Completion                                                                   #
# --------------------------------------------------------------------------- #

class TestCompletion(LeagueTestCase):
    async def test_swiss_ends_after_last_round(self):
        league = await self.started(players=3, total_rounds=2)
        for _ in range(2):
            await self.report_all(await self.service.generate_next_round(league.id))

        league = await self.service.get_league(league.id)
        self.assertEqual(league.status, LeagueStatus.COMPLETED)
        done = self.events[-1]
        self.assertIsInstance(done, TournamentCompletedEvent)
        self.assertTrue(done.automatic)
        self.assertEqual(done.champion_name, "Alpha")
        logs = await self.service.get_audit_logs(league.id)
        self.assertEqual(logs[0].action, "END_TOURNAMENT")
        self.assertEqual(json.loads(logs[0].new_value)["winner"], "Alpha")

    async def test_completed_standings_are_frozen(self):
        league = await self.started(players=3, total_rounds=1)
        await self.report_all(await self.service.generate_next_round(league.id))
        standings = await self.service.get_standings(league.id)
        self.assertEqual([s.player_name for s in standings], ["Alpha", "Charlie", "Bravo"])
        with self.assertRaises(StateError):
            await self.service.generate_next_round(league.id)

    async def test_round_of_only_byes_completes_itself(self):
        league = await self.started(players=2, total_rounds=3)
        await self.report_all(await self.service.generate_next_round(league.id))

        # Alpha and Bravo have met, so the next round is two byes
        round2 = await self.service.generate_next_round(league.id)
        self.assertEqual(await self.pairs(round2), [("Alpha", None), ("Bravo", None)])
        rnd = await self.repos.rounds.find_by_league_and_round(league.id, 2)
        self.assertIsNotNone(rnd.completed_at)
        league = await self.service.get_league(league.id)
        self.assertEqual(league.status, LeagueStatus.IN_PROGRESS)

        await self.service.generate_next_round(league.id)
        league = await self.service.get_league(league.id)
        self.assertEqual(league.status, LeagueStatus.COMPLETED)
        self.assertIsInstance(self.events[-1], TournamentCompletedEvent)
        self.assertEqual(self.events[-1].champion_name, "Alpha")

    async def test_manual_end(self):
        league = await self.started(players=4, total_rounds=5)
        await self.report_all(await self.service.generate_next_round(league.id))
        with self.assertRaises(PermissionDeniedError):
            await self.service.end_tournament(league.id, "someone-else", "Mallory")
        event = await self.service.end_tournament(league.id, *CREATOR)
        self.assertFalse(event.automatic)
        self.assertEqual(event.champion_name, "Alpha")
        with self.assertRaises(StateError):
            await self.service.end_tournament(league.id, *CREATOR)

    async def test_cancel(self):
        league = await self.started(players=4)
        await self.service.generate_next_round(league.id)
        league = await self.service.cancel_league(league.id, *CREATOR)
        self.assertEqual(league.status, LeagueStatus.CANCELLED)
        with self.assertRaises(StateError):
            await self.service.cancel_league(league.id, *CREATOR)
        with self.assertRaises(StateError):
            await self.service.generate_next_round(league.id)

    async def test_cancel_from_registration(self):
        league = await self.create(players=2)
        league = await self.service.cancel_league(league.id)
        self.assertEqual(league.status, LeagueStatus.CANCELLED)

    async def test_delete_removes_rows_but_keeps_audit(self):
        league = await self.started(players=4)
        await self.service.generate_next_round(league.id)
        with self.assertRaises(PermissionDeniedError):
            await self.service.delete_league(league.id, "someone-else", "Mallory")
        await self.service.delete_league(league.id, *CREATOR)

        with self.assertRaises(NotFoundError):
            await self.service.get_league(league.id)
        self.assertEqual(await self.repos.matches.find_by_league(league.id), [])
        self.assertEqual(await self.repos.registrations.find_by_league(league.id), [])
        logs = await self.service.get_audit_logs(league.id)
        self.assertEqual(logs[0].action, "DELETE_LEAGUE")


# --------------------------------------------------------------------------- #
# Corrections                                                                  #
# --------------------------------------------------------------------------- #

class TestCorrections(LeagueTestCase):
    async def test_modify_reverses_previous_result(self):
        league = await self.started(players=4, total_rounds=3)
        round1 = await self.service.generate_next_round(league.id)
        await self.report_all(round1)

        await self.service.modify_match_result(round1[0].id, P2_WINS, *CREATOR)

        regs = {r.username: r for r in await self.repos.registrations.find_by_league(league.id)}
        self.assertEqual((regs["Alpha"].wins, regs["Alpha"].losses), (0, 1))
        self.assertEqual((regs["Bravo"].wins, regs["Bravo"].losses), (1, 0))
        standings = await self.service.get_standings(league.id)
        self.assertEqual(sum(s.wins for s in standings), sum(s.losses for s in standings))

        log = (await self.service.get_audit_logs(league.id))[0]
        self.assertEqual(log.action, "MODIFY_MATCH")
        self.assertEqual(json.loads(log.old_value)["player1Wins"], 2)
        self.assertEqual(json.loads(log.new_value)["player2Wins"], 2)

    async def test_modify_pending_match_records_it(self):
        league = await self.started(players=4, total_rounds=3)
        round1 = await self.service.generate_next_round(league.id)
        match = await self.service.modify_match_result(round1[0].id, P1_WINS, *CREATOR)
        self.assertTrue(match.is_completed)

    async def test_modify_requires_creator(self):
        league = await self.started(players=4, total_rounds=3)
        round1 = await self.service.generate_next_round(league.id)
        with self.assertRaises(PermissionDeniedError):
            await self.service.modify_match_result(round1[0].id, P1_WINS, "user-1", "Alpha")

    async def test_bye_cannot_be_modified(self):
        league = await self.started(players=3, total_rounds=2)
        round1 = await self.service.generate_next_round(league.id)
        with self.assertRaises(ValidationError):
            await self.service.modify_match_result(round1[1].id, P2_WINS, *CREATOR)

    async def test_rejected_correction_leaves_tallies_alone(self):
        league = await self.started(CompetitionType.SINGLE_ELIMINATION, players=4)
        round1 = await self.service.generate_next_round(league.id)
        await self.service.report_match_result(round1[0].id, P1_WINS)   # Alpha beats Delta
        before = await self.service.get_standings(league.id)

        with self.assertRaises(ValidationError):
            await self.service.modify_match_result(round1[0].id, MatchResult(1, 1), *CREATOR)
        with self.assertRaises(ValidationError):
            await self.service.modify_match_result(round1[0].id, MatchResult(-1, 2), *CREATOR)

        self.assertEqual(await self.service.get_standings(league.id), before)
        regs = {r.username: r for r in await self.repos.registrations.find_by_league(league.id)}
        self.assertEqual((regs["Alpha"].wins, regs["Delta"].losses), (1, 1))

        # a valid correction afterwards still swaps exactly one win and one loss
        await self.service.modify_match_result(round1[0].id, P2_WINS, *CREATOR)
        records = {s.player_name: (s.wins, s.losses) for s in await self.service.get_standings(league.id)}
        self.assertEqual(records["Alpha"], (0, 1))
        self.assertEqual(records["Delta"], (1, 0))

    async def test_repair_regenerates_same_round(self):
        league = await self.started(players=4, total_rounds=3)
        round1 = await self.service.generate_next_round(league.id)
        await self.service.report_match_result(round1[0].id, P1_WINS)

        repaired = await self.service.repair_current_round(league.id, *CREATOR)

        league = await self.service.get_league(league.id)
        self.assertEqual(league.current_round, 1)
        self.assertEqual(await self.pairs(repaired), await self.pairs(round1))
        self.assertTrue(set(m.id for m in repaired).isdisjoint(m.id for m in round1))
        self.assertFalse(any(m.is_completed for m in repaired))
        # the deleted result no longer counts
        standings = await self.service.get_standings(league.id)
        self.assertEqual(sum(s.wins for s in standings), 0)

        log = (await self.service.get_audit_logs(league.id))[0]
        self.assertEqual(log.action, "REPAIR_ROUND")
        self.assertEqual(json.loads(log.old_value)["matchCount"], 2)
        self.assertTrue(self.events[-1].repaired)

    async def test_repair_needs_a_round(self):
        league = await self.started(players=4)
        with self.assertRaises(ValidationError):
            await self.service.repair_current_round(league.id, *CREATOR)

    async def test_repair_requires_creator(self):
        league = await self.started(players=4)
        await self.service.generate_next_round(league.id)
        with self.assertRaises(PermissionDeniedError):
            await self.service.repair_current_round(league.id, "user-1", "Alpha")


# --------------------------------------------------------------------------- #
# Drops                                                                        #
# --------------------------------------------------------------------------- #

class TestDrops(LeagueTestCase):
    async def test_drop_concedes_pending_match(self):
        league = await self.started(players=4, total_rounds=3)
        round1 = await self.service.generate_next_round(league.id)

        reg = await self.service.drop_player(league.id, "user-4")
        self.assertTrue(reg.is_dropped)
        self.assertFalse(reg.is_active)

        conceded = await self.service.get_match(round1[1].id)
        self.assertTrue(conceded.is_completed)
        self.assertEqual(conceded.winner_id, await self.player_id(3))
        self.assertEqual((conceded.player1_wins, conceded.player2_wins), (2, 0))

    async def test_dropped_player_not_paired_again(self):
        league = await self.started(players=4, total_rounds=3)
        round1 = await self.service.generate_next_round(league.id)
        await self.service.drop_player(league.id, "user-4")
        await self.service.report_match_result(round1[0].id, P1_WINS)

        round2 = await self.service.generate_next_round(league.id)
        names = {n for pair in await self.pairs(round2) for n in pair if n}
        self.assertNotIn("Delta", names)
        self.assertEqual(sum(m.is_bye for m in round2), 1)

        standings = await self.service.get_standings(league.id)
        delta = next(s for s in standings if s.player_name == "Delta")
        self.assertTrue(delta.dropped)
        self.assertEqual(delta.record, "0-1-0")

    async def test_drop_twice_rejected(self):
        league = await self.started(players=4)
        await self.service.drop_player(league.id, "user-4")
        with self.assertRaises(ValidationError):
            await self.service.drop_player(league.id, "user-4")

    async def test_drop_during_registration(self):
        league = await self.create(players=3)
        await self.service.drop_player(league.id, "user-3")
        league = await self.service.start_league(league.id, *CREATOR)
        round1 = await self.service.generate_next_round(league.id)
        self.assertEqual(await self.pairs(round1), [("Alpha", "Bravo")])


# --------------------------------------------------------------------------- #
# Elimination formats                                                          #
# --------------------------------------------------------------------------- #

class TestElimination(LeagueTestCase):
    async def test_single_elimination_runs_to_champion(self):
        league = await self.started(CompetitionType.SINGLE_ELIMINATION, players=4)
        round1 = await self.service.generate_next_round(league.id)
        self.assertEqual(await self.pairs(round1), [("Alpha", "Delta"), ("Bravo", "Charlie")])
        self.assertEqual([m.bracket_position for m in round1], ["W1-M1", "W1-M2"])

        with self.assertRaises(ValidationError):
            await self.service.report_match_result(round1[0].id, MatchResult(1, 1, 1))

        await self.report_all(round1)
        final = await self.service.generate_next_round(league.id)
        self.assertEqual(await self.pairs(final), [("Alpha", "Bravo")])
        await self.report_all(final, P2_WINS)

        league = await self.service.get_league(league.id)
        self.assertEqual(league.status, LeagueStatus.COMPLETED)
        self.assertEqual(self.events[-1].champion_name, "Bravo")

    async def test_double_elimination_with_bracket_reset(self):
        league = await self.started(CompetitionType.DOUBLE_ELIMINATION, players=4)

        round1 = await self.service.generate_next_round(league.id)
        await self.report_all(round1)                            # Alpha, Bravo advance

        round2 = await self.service.generate_next_round(league.id)
        self.assertEqual([m.bracket_position for m in round2], ["W2-M1", "L1-M1"])
        self.assertTrue(round2[1].is_losers_bracket)
        await self.report_all(round2, P2_WINS)                   # Bravo beats Alpha, Charlie beats Delta

        round3 = await self.service.generate_next_round(league.id)
        self.assertEqual(await self.pairs(round3), [("Charlie", "Alpha")])
        await self.report_all(round3, P2_WINS)                   # Alpha survives

        round4 = await self.service.generate_next_round(league.id)
        self.assertTrue(round4[0].is_grand_finals)
        self.assertEqual(await self.pairs(round4), [("Bravo", "Alpha")])
        await self.report_all(round4, P2_WINS)                   # Alpha wins from the losers bracket

        league = await self.service.get_league(league.id)
        self.assertEqual(league.status, LeagueStatus.IN_PROGRESS)

        round5 = await self.service.generate_next_round(league.id)
        self.assertTrue(round5[0].is_bracket_reset)
        self.assertEqual(round5[0].bracket_position, "GF-RESET")
        await self.report_all(round5, P2_WINS)

        league = await self.service.get_league(league.id)
        self.assertEqual(league.status, LeagueStatus.COMPLETED)
        self.assertEqual(self.events[-1].champion_name, "Alpha")

    async def test_bracket_match_locked_after_round(self):
        league = await self.started(CompetitionType.SINGLE_ELIMINATION, players=4)
        round1 = await self.service.generate_next_round(league.id)
        await self.report_all(round1)
        await self.service.generate_next_round(league.id)
        with self.assertRaises(StateError):
            await self.service.modify_match_result(round1[0].id, P2_WINS, *CREATOR)

    async def test_swiss_then_top_cut(self):
        league = await self.started(CompetitionType.SWISS_WITH_TOP_CUT, players=8, top_cut_size=4)
        for _ in range(3):
            await self.report_all(await self.service.generate_next_round(league.id))

        standings = await self.service.get_standings(league.id)
        top_four = [s.player_id for s in standings[:4]]

        cut = await self.service.generate_next_round(league.id)
        league = await self.service.get_league(league.id)
        self.assertEqual(league.status, LeagueStatus.TOP_CUT)
        self.assertEqual(len(cut), 2)
        self.assertEqual((cut[0].player1_id, cut[0].player2_id), (top_four[0], top_four[3]))
        self.assertEqual((cut[1].player1_id, cut[1].player2_id), (top_four[1], top_four[2]))
        rnd = await self.repos.rounds.find_by_league_and_round(league.id, 4)
        self.assertTrue(rnd.is_top_cut)

        await self.report_all(cut)
        final = await self.service.generate_next_round(league.id)
        self.assertEqual([m.bracket_position for m in final], ["W2-M1"])
        await self.report_all(final)

        league = await self.service.get_league(league.id)
        self.assertEqual(league.status, LeagueStatus.COMPLETED)
        self.assertEqual(self.events[-1].champion_id, top_four[0])

    async def test_plain_swiss_ends_after_total_rounds(self):
        league = await self.started(players=4, total_rounds=1)
        await self.report_all(await self.service.generate_next_round(league.id))
        league = await self.service.get_league(league.id)
        self.assertEqual(league.status, LeagueStatus.COMPLETED)

    async def test_get_bracket(self):
        league = await self.started(CompetitionType.SINGLE_ELIMINATION, players=4)
        self.assertIsNone(await self.service.get_bracket(league.id))
        await self.service.generate_next_round(league.id)
        bracket = await self.service.get_bracket(league.id)
        self.assertEqual([m.label for m in bracket.current_stage], ["W1-M1", "W1-M2"])


# --------------------------------------------------------------------------- #
# Rebuild after restart                                                        #
# --------------------------------------------------------------------------- #

class TestRestore(LeagueTestCase):
    async def test_restore_rebuilds_swiss_records(self):
        league = await self.started(players=4, total_rounds=3)
        round1 = await self.service.generate_next_round(league.id)
        await self.report_all(round1)
        before = await self.service.get_standings(league.id)

        restarted = LeagueService(self.repos)
        self.assertEqual(await restarted.restore(), 1)
        self.assertEqual(await restarted.get_standings(league.id), before)

        round2 = await restarted.generate_next_round(league.id)
        first = {frozenset(p) for p in await self.pairs(round1)}
        second = {frozenset(p) for p in await self.pairs(round2)}
        self.assertFalse(first & second)

    async def test_restore_rebuilds_bracket(self):
        league = await self.started(CompetitionType.DOUBLE_ELIMINATION, players=4)
        await self.report_all(await self.service.generate_next_round(league.id))
        round2 = await self.service.generate_next_round(league.id)
        await self.service.report_match_result(round2[0].id, P1_WINS)

        restarted = LeagueService(self.repos)
        await restarted.restore()
        bracket = await restarted.get_bracket(league.id)
        self.assertEqual(len(bracket.stages), 2)
        self.assertEqual(
            [(m.label, m.is_complete) for m in bracket.current_stage],
            [("W2-M1", True), ("L1-M1", False)],
        )

        await restarted.report_match_result(round2[1].id, P1_WINS)
        round3 = await restarted.generate_next_round(league.id)
        self.assertEqual([m.bracket_position for m in round3], ["L2-M1"])

    async def test_lazy_rebuild_without_restore(self):
        league = await self.started(players=4, total_rounds=3)
        await self.report_all(await self.service.generate_next_round(league.id))
        restarted = LeagueService(self.repos)
        round2 = await restarted.generate_next_round(league.id)
        self.assertEqual(len(round2), 2)

    async def test_restore_skips_finished_leagues(self):
        league = await self.started(players=2, total_rounds=1)
        await self.report_all(await self.service.generate_next_round(league.id))
        await self.create(players=2, name="Second")
        self.assertEqual(await LeagueService(self.repos).restore(), 0)


# --------------------------------------------------------------------------- #
# Concurrency                                                                  #
# --------------------------------------------------------------------------- #

class TestConcurrency(LeagueTestCase):
    async def test_concurrent_advancement_rejected(self):
        league = await self.started(players=4)
        async with self.service._advancement(league.id):
            with self.assertRaises(StateError):
                await self.service.generate_next_round(league.id)
            with self.assertRaises(StateError):
                await self.service.repair_current_round(league.id, *CREATOR)
        matches = await self.service.generate_next_round(league.id)
        self.assertEqual(len(matches), 2)

    async def test_other_leagues_unaffected(self):
        first = await self.started(players=4)
        second = await self.started(players=4, name="Saturday")
        async with self.service._advancement(first.id):
            matches = await self.service.generate_next_round(second.id)
        self.assertEqual(len(matches), 2)


# --------------------------------------------------------------------------- #
# Timers                                                                       #
# --------------------------------------------------------------------------- #

class TestLeagueTimers(LeagueTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.sink = RecordingSink()
        self.scheduler = RoundTimerScheduler(self.sink, TimerConfig(seconds_per_minute=0.001))
        self.service = LeagueService(self.repos, self.scheduler, [self.events.append])

    async def asyncTearDown(self):
        await self.scheduler.shutdown()

    async def test_round_starts_timer_and_stores_window(self):
        league = await self.started(players=4, round_timer_minutes=50, announcement_channel_id="chan")
        await self.service.generate_next_round(league.id)
        self.assertTrue(self.scheduler.is_active(league.id, 1))
        rnd = await self.repos.rounds.find_by_league_and_round(league.id, 1)
        self.assertEqual((rnd.timer_ends_at - rnd.timer_starts_at).total_seconds(), 50 * 60)

    async def test_untimed_league_has_no_timer(self):
        league = await self.started(players=4)
        await self.service.generate_next_round(league.id)
        self.assertEqual(self.scheduler.active_keys(), [])

    async def test_completed_round_stops_timer(self):
        league = await self.started(players=4, total_rounds=3, round_timer_minutes=50)
        matches = await self.service.generate_next_round(league.id)
        await self.report_all(matches)
        self.assertFalse(self.scheduler.is_active(league.id, 1))
        rnd = await self.repos.rounds.find_by_league_and_round(league.id, 1)
        self.assertIsNotNone(rnd.completed_at)

    async def test_cancelled_league_stays_silent(self):
        league = await self.started(players=4, round_timer_minutes=50)
        await self.service.generate_next_round(league.id)
        await self.service.cancel_league(league.id, *CREATOR)
        self.assertEqual(self.scheduler.active_keys(), [])
        await asyncio.sleep(0.2)
        self.assertEqual(self.sink.messages, [])

    async def test_repair_restarts_timer(self):
        league = await self.started(players=4, round_timer_minutes=50)
        await self.service.generate_next_round(league.id)
        before = self.scheduler.get_timer(league.id, 1)
        await self.service.repair_current_round(league.id, *CREATOR)
        after = self.scheduler.get_timer(league.id, 1)
        self.assertIsNotNone(after)
        self.assertIsNot(before, after)

    async def test_final_round_of_byes_stops_timer_and_ends_league(self):
        league = await self.started(players=2, total_rounds=2, round_timer_minutes=30)
        await self.report_all(await self.service.generate_next_round(league.id))
        await self.service.generate_next_round(league.id)

        league = await self.service.get_league(league.id)
        self.assertEqual(league.status, LeagueStatus.COMPLETED)
        self.assertEqual(self.scheduler.active_keys(), [])
        await asyncio.sleep(0.1)
        self.assertEqual(self.sink.messages, [])

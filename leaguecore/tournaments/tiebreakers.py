"""
Tiebreaker maths: match points and the OMW% / GW% / OGW% percentages.

All functions are pure.  Because one player's percentage feeds every
opponent's tiebreaker, recompute_tiebreakers() must run over the whole
record set whenever any result changes.
"""

from __future__ import annotations

from typing import Iterable, Mapping

from leaguecore.tournaments.base import PlayerRecord

# Minimum percentage credited for any opponent (and for a player's own GW%).
PERCENT_FLOOR = 0.33


def match_points(wins: int, losses: int, draws: int) -> int:
    """3 for a win, 1 for a draw, 0 for a loss."""
    return wins * 3 + draws


def game_win_percent(wins: int, losses: int) -> float:
    total = wins + losses
    if total == 0:
        return 0.0
    return max(wins / total, PERCENT_FLOOR)


def _index(all_players: Iterable[PlayerRecord] | Mapping[int, PlayerRecord]) -> Mapping[int, PlayerRecord]:
    if isinstance(all_players, Mapping):
        return all_players
    return {p.id: p for p in all_players}


def _opponent_average(opponent_ids, all_players, percent_of) -> float:
    by_id = _index(all_players)
    known = [by_id[oid] for oid in opponent_ids if oid in by_id]
    if not known:
        return 0.0
    return sum(percent_of(opp) for opp in known) / len(known)


def _floored_match_win(opp: PlayerRecord) -> float:
    total = opp.matches_played
    if total == 0:
        return PERCENT_FLOOR
    return max(opp.wins / total, PERCENT_FLOOR)


def _floored_game_win(opp: PlayerRecord) -> float:
    total = opp.wins + opp.losses
    if total == 0:
        return PERCENT_FLOOR
    return max(opp.wins / total, PERCENT_FLOOR)


def opponent_match_win_percent(
    opponent_ids: Iterable[int],
    all_players: Iterable[PlayerRecord] | Mapping[int, PlayerRecord],
) -> float:
    """Average of each opponent's match-win %, floored at 0.33 per opponent."""
    return _opponent_average(list(opponent_ids), all_players, _floored_match_win)


def opponent_game_win_percent(
    opponent_ids: Iterable[int],
    all_players: Iterable[PlayerRecord] | Mapping[int, PlayerRecord],
) -> float:
    """Average of each opponent's game-win %, floored at 0.33 per opponent."""
    return _opponent_average(list(opponent_ids), all_players, _floored_game_win)


def recompute_tiebreakers(records: Iterable[PlayerRecord]) -> None:
    """Refresh match points and all three percentages for every record, in place."""
    records = list(records)
    by_id = {r.id: r for r in records}
    for r in records:
        r.match_points = match_points(r.wins, r.losses, r.draws)
        r.game_win_percent = game_win_percent(r.wins, r.losses)
        r.opponent_match_win_percent = opponent_match_win_percent(r.opponents, by_id)
        r.opponent_game_win_percent = opponent_game_win_percent(r.opponents, by_id)

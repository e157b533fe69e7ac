"""
Swiss pairing — score-ordered greedy matching with rematch avoidance.

The matcher walks the ranked list once.  Each unpaired player takes the
first later candidate it has not already played; a player left with no
such candidate receives the bye.  It never backtracks or swaps existing
pairs, so an adversarial opponent history can yield a bye or a rematch a
global matcher would have avoided.  That is the behaviour players already
know from tournament nights and is kept as-is (see
tests/test_swiss_pairing.py::TestGreedyLimitation).
"""

from __future__ import annotations

import logging
import math
from typing import Iterable

from leaguecore.tournaments.base import Pairing, PlayerRecord

logger = logging.getLogger(__name__)


def ranking_key(record: PlayerRecord) -> tuple[float, float, float, float]:
    """Sort key shared by pairing and standings: MP, OMW%, GW%, OGW%, all descending."""
    return (
        -record.match_points,
        -record.opponent_match_win_percent,
        -record.game_win_percent,
        -record.opponent_game_win_percent,
    )


def rank_players(players: Iterable[PlayerRecord]) -> list[PlayerRecord]:
    """Stable sort, so fully tied players keep their input (registration) order."""
    return sorted(players, key=ranking_key)


def generate_pairings(players: Iterable[PlayerRecord]) -> list[Pairing]:
    """Produce one round of pairings, tables numbered 1..N in ranking order."""
    ranked = rank_players(players)
    paired: set[int] = set()
    pairings: list[Pairing] = []

    for i, player1 in enumerate(ranked):
        if player1.id in paired:
            continue
        paired.add(player1.id)

        player2: PlayerRecord | None = None
        for candidate in ranked[i + 1:]:
            if candidate.id in paired or candidate.id in player1.opponents:
                continue
            player2 = candidate
            break

        table = len(pairings) + 1
        if player2 is None:
            logger.debug("Table %d: %s receives the bye", table, player1.name)
            pairings.append(Pairing(table, player1.id, player1.name))
        else:
            paired.add(player2.id)
            pairings.append(
                Pairing(table, player1.id, player1.name, player2.id, player2.name)
            )

    return pairings


def recommended_swiss_rounds(player_count: int) -> int:
    """ceil(log2(n)) rounds is enough to separate a single undefeated player."""
    if player_count < 2:
        return 1
    return math.ceil(math.log2(player_count))

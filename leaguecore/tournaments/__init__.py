"""
Tournament engines package.

create_bracket() is the single entry point for instantiating an elimination
bracket for a competition type.  Swiss pairing and standings are plain
functions and need no factory.
"""

from __future__ import annotations

from typing import Iterable

from leaguecore.models import CompetitionType
from leaguecore.tournaments.base import (
    BracketMatch,
    Pairing,
    PlayerRecord,
    Seed,
    StandingEntry,
)
from leaguecore.tournaments.elimination import (
    Bracket,
    DoubleEliminationBracket,
    SingleEliminationBracket,
    calculate_double_elimination_rounds,
    calculate_single_elimination_rounds,
    feed_losers,
    generate_double_elimination_bracket,
    generate_next_single_elimination_round,
    generate_single_elimination_bracket,
    needs_bracket_reset,
)
from leaguecore.tournaments.standings import compute_standings, top_cut_seeds
from leaguecore.tournaments.swiss import generate_pairings, rank_players, recommended_swiss_rounds
from leaguecore.tournaments.tiebreakers import (
    game_win_percent,
    match_points,
    opponent_game_win_percent,
    opponent_match_win_percent,
    recompute_tiebreakers,
)

__all__ = [
    # Base types
    "BracketMatch",
    "Pairing",
    "PlayerRecord",
    "Seed",
    "StandingEntry",
    # Swiss
    "generate_pairings",
    "rank_players",
    "recommended_swiss_rounds",
    # Tiebreakers and standings
    "compute_standings",
    "game_win_percent",
    "match_points",
    "opponent_game_win_percent",
    "opponent_match_win_percent",
    "recompute_tiebreakers",
    "top_cut_seeds",
    # Elimination
    "Bracket",
    "DoubleEliminationBracket",
    "SingleEliminationBracket",
    "calculate_double_elimination_rounds",
    "calculate_single_elimination_rounds",
    "feed_losers",
    "generate_double_elimination_bracket",
    "generate_next_single_elimination_round",
    "generate_single_elimination_bracket",
    "needs_bracket_reset",
    # Factory
    "create_bracket",
]


def create_bracket(competition_type: CompetitionType | str, seeds: Iterable[Seed]) -> Bracket:
    """
    Instantiate the right Bracket subclass.

    Args:
        competition_type: any CompetitionType; SWISS_WITH_TOP_CUT uses a
                          single elimination bracket for its cut
        seeds:            entrants, seed 1 first
    """
    match CompetitionType(competition_type):
        case CompetitionType.DOUBLE_ELIMINATION:
            return DoubleEliminationBracket(seeds)
        case CompetitionType.SINGLE_ELIMINATION | CompetitionType.SWISS_WITH_TOP_CUT:
            return SingleEliminationBracket(seeds)
        case _:
            raise ValueError(
                f"{competition_type!s} has no elimination bracket. "
                "Valid types: SINGLE_ELIMINATION, DOUBLE_ELIMINATION, SWISS_WITH_TOP_CUT"
            )

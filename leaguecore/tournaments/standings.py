"""Ranked standings, re-derived from the full record set on every call."""

from __future__ import annotations

from typing import Iterable

from leaguecore.tournaments.base import PlayerRecord, StandingEntry
from leaguecore.tournaments.swiss import rank_players
from leaguecore.tournaments.tiebreakers import recompute_tiebreakers


def compute_standings(records: Iterable[PlayerRecord], *, refresh: bool = True) -> list[StandingEntry]:
    """
    Rank every record (1..N) using the same order the pairing engine uses.

    With refresh=True the tiebreakers are recomputed first; the records are
    updated in place so the caller can persist them.  Running this twice on
    an unchanged set yields identical output.
    """
    records = list(records)
    if refresh:
        recompute_tiebreakers(records)
    return [
        StandingEntry(
            rank=i,
            player_id=r.id,
            player_name=r.name,
            wins=r.wins,
            losses=r.losses,
            draws=r.draws,
            match_points=r.match_points,
            omw_percent=r.opponent_match_win_percent,
            gw_percent=r.game_win_percent,
            ogw_percent=r.opponent_game_win_percent,
            dropped=r.dropped,
        )
        for i, r in enumerate(rank_players(records), 1)
    ]


def top_cut_seeds(standings: list[StandingEntry], size: int) -> list[StandingEntry]:
    """The leading `size` players still in the event, in rank order."""
    return [s for s in standings if not s.dropped][:size]

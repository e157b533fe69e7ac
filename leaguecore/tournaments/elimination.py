"""
Elimination brackets — single and double elimination.

Rules:
- The field must be a power of two; anything else is rejected with the
  nearest valid sizes suggested.
- Round 1 pairs seed k against seed N+1-k.
- Later winners-bracket rounds pair the winners of adjacent match numbers:
  match 1 winner vs match 2 winner -> next round match 1, and so on.
- Double elimination adds a losers bracket.  Its first round pairs the
  round-1 losers in adjacent pairs.  After that it alternates:
    even losers round -> feed round: newly dropped winners-bracket losers,
                         reversed, against losers-bracket survivors in order
    odd losers round  -> consolidation: survivors in adjacent pairs
- Grand finals start once both brackets are down to one player.  If the
  losers-bracket player wins, a bracket reset decides the title.

A bracket keeps only the list of stages it has generated (one stage per
league round).  Everything else (who is still alive, which losers are
waiting to drop in) is derived by walking those stages, so replaying
persisted matches after a restart needs no bookkeeping of its own.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Iterable, NamedTuple, Sequence

from leaguecore.errors import StateError, ValidationError
from leaguecore.models import Match
from leaguecore.tournaments.base import BracketMatch, BracketTag, Seed, SlotName

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------ #
# Sizing                                                              #
# ------------------------------------------------------------------ #

def is_power_of_two(n: int) -> bool:
    return n > 0 and (n & (n - 1)) == 0


def next_power_of_two(n: int) -> int:
    return 1 << math.ceil(math.log2(max(n, 1)))


def previous_power_of_two(n: int) -> int:
    return 1 << math.floor(math.log2(max(n, 1)))


def require_power_of_two(n: int, kind: str = "Single elimination") -> None:
    """Raise ValidationError unless n is a power of two (and at least 2)."""
    if n >= 2 and is_power_of_two(n):
        return
    if n < 2:
        raise ValidationError(f"{kind} requires at least 2 players. You have {n}.")
    lower, upper = previous_power_of_two(n), next_power_of_two(n)
    raise ValidationError(
        f"{kind} requires a power of 2 players (2, 4, 8, 16, 32, ...). "
        f"You have {n} players; use {lower} or {upper}."
    )


class DoubleEliminationRounds(NamedTuple):
    winners: int
    losers: int
    total: int


def calculate_single_elimination_rounds(num_players: int) -> int:
    require_power_of_two(num_players)
    return int(math.log2(num_players))


def calculate_double_elimination_rounds(num_players: int) -> DoubleEliminationRounds:
    require_power_of_two(num_players, "Double elimination")
    winners = int(math.log2(num_players))
    losers = winners * 2 - 1
    return DoubleEliminationRounds(winners, losers, winners + losers + 1)


def single_elimination_round_name(round_number: int, total_rounds: int) -> str:
    if round_number == total_rounds:
        return "Finals"
    if round_number == total_rounds - 1:
        return "Semifinals"
    if round_number == total_rounds - 2:
        return "Quarterfinals"
    if round_number == 1 and total_rounds > 4:
        return f"Round of {2 ** (total_rounds - round_number + 1)}"
    return f"Round {round_number}"


def double_elimination_round_name(round_number: int, bracket: BracketTag) -> str:
    match bracket:
        case "grand_finals":
            return "Grand Finals"
        case "reset":
            return "Bracket Reset"
        case "losers":
            return f"Losers Bracket Round {round_number}"
        case _:
            return f"Winners Bracket Round {round_number}"


# ------------------------------------------------------------------ #
# Pairing helpers                                                     #
# ------------------------------------------------------------------ #

def _slot(match_number: int) -> SlotName:
    return "player1" if match_number % 2 == 1 else "player2"


def _pair_adjacent(
    players: Sequence[Seed],
    round_number: int,
    bracket: BracketTag,
) -> list[BracketMatch]:
    """Pair players[0] vs players[1], players[2] vs players[3], ..."""
    return [
        BracketMatch(
            round_number=round_number,
            match_number=i // 2 + 1,
            bracket=bracket,
            player1=players[i],
            player2=players[i + 1],
        )
        for i in range(0, len(players) - 1, 2)
    ]


def feed_losers(survivors: Sequence[Seed], dropped: Sequence[Seed]) -> list[tuple[Seed, Seed]]:
    """
    Pair losers-bracket survivors against players dropping in from the
    winners bracket.

    Invariant (seed separation): the dropped players are taken in reverse
    winners-bracket order, so the loser of the top winners-bracket match
    meets the survivor from the bottom of the losers bracket.  Two players
    who met in the winners bracket are therefore never paired again in the
    round immediately after one of them drops.
    """
    return list(zip(survivors, reversed(list(dropped))))


def generate_single_elimination_bracket(players: Iterable[Seed]) -> list[BracketMatch]:
    """Round 1: seed k vs seed N+1-k."""
    ordered = sorted(players, key=lambda p: p.seed)
    n = len(ordered)
    require_power_of_two(n)
    return [
        BracketMatch(
            round_number=1,
            match_number=i + 1,
            player1=ordered[i],
            player2=ordered[n - 1 - i],
        )
        for i in range(n // 2)
    ]


def generate_double_elimination_bracket(players: Iterable[Seed]) -> list[BracketMatch]:
    """Round 1 of a double elimination bracket is the winners bracket only."""
    players = list(players)
    require_power_of_two(len(players), "Double elimination")
    return generate_single_elimination_bracket(players)


def generate_next_single_elimination_round(
    completed: Sequence[BracketMatch],
    round_number: int,
) -> list[BracketMatch]:
    """
    Pair the winners of a completed round.  Returns [] when the round was the
    final (exactly one match), i.e. the champion is decided.
    """
    if len(completed) <= 1:
        return []
    ordered = sorted(completed, key=lambda m: m.match_number)
    winners = [m.winner for m in ordered]
    if any(w is None for w in winners):
        raise ValidationError(f"Round {round_number - 1} still has unreported matches.")
    return _pair_adjacent(winners, round_number, "winners")


def needs_bracket_reset(winners_champion_id: int, grand_finals_winner_id: int) -> bool:
    """True when the losers-bracket player won grand finals."""
    return winners_champion_id != grand_finals_winner_id


def seeds_from_first_round(matches: Sequence[Match], names: dict[int, str]) -> list[Seed]:
    """
    Recover the seed list from persisted round-1 matches: table k holds
    seed k against seed N+1-k.
    """
    ordered = sorted(matches, key=lambda m: m.table_number or 0)
    n = len(ordered) * 2
    seeds: list[Seed] = []
    for i, m in enumerate(ordered):
        if m.player2_id is None:
            raise ValidationError(f"Bracket match {m.id} has no second player.")
        seeds.append(Seed(m.player1_id, names.get(m.player1_id, "Unknown"), i + 1))
        seeds.append(Seed(m.player2_id, names.get(m.player2_id, "Unknown"), n - i))
    return sorted(seeds, key=lambda s: s.seed)


# ------------------------------------------------------------------ #
# Stateful brackets                                                   #
# ------------------------------------------------------------------ #

class Bracket(ABC):
    """
    Abstract base for elimination brackets.

    Each call to next_round() appends one stage (the matches for one league
    round).  Results are recorded against the match label.
    """

    kind = "Elimination"

    def __init__(self, seeds: Iterable[Seed]) -> None:
        self.seeds = sorted(seeds, key=lambda s: s.seed)
        require_power_of_two(len(self.seeds), self.kind)
        self.stages: list[list[BracketMatch]] = []

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    @property
    def num_players(self) -> int:
        return len(self.seeds)

    @property
    def current_stage(self) -> list[BracketMatch]:
        return self.stages[-1] if self.stages else []

    def matches(self) -> list[BracketMatch]:
        return [m for stage in self.stages for m in stage]

    def find(self, label: str) -> BracketMatch:
        for m in self.matches():
            if m.label == label:
                return m
        raise ValidationError(f"No bracket match labelled {label!r}.")

    def next_round(self) -> list[BracketMatch]:
        """
        Generate and store the next stage.  Returns [] once a champion is
        decided.  Raises ValidationError if the current stage is unfinished.
        """
        pending = [m.label for m in self.current_stage if not m.is_complete]
        if pending:
            raise ValidationError(
                f"Bracket stage {len(self.stages)} has unreported matches: {', '.join(pending)}"
            )
        if self.champion is not None:
            return []
        stage = self._build_next_stage()
        if stage:
            self.stages.append(stage)
        return stage

    def record_result(self, label: str, winner_id: int) -> BracketMatch:
        """Set the winner of a current-stage match (overwrites a prior result)."""
        match = next((m for m in self.current_stage if m.label == label), None)
        if match is None:
            self.find(label)  # raises for unknown labels
            raise StateError(f"Bracket match {label} belongs to an earlier round and is locked.")
        ids = {p.id for p in (match.player1, match.player2) if p is not None}
        if winner_id not in ids:
            raise ValidationError(f"Player {winner_id} is not in bracket match {label}.")
        match.winner_id = winner_id
        return match

    @property
    def is_complete(self) -> bool:
        return self.champion is not None

    @property
    @abstractmethod
    def champion(self) -> Seed | None:
        ...  # pragma: no cover

    @abstractmethod
    def _build_next_stage(self) -> list[BracketMatch]:
        ...  # pragma: no cover

    # ------------------------------------------------------------------ #
    # Replay                                                               #
    # ------------------------------------------------------------------ #

    def replay(self, rounds: Sequence[Sequence[Match]]) -> None:
        """
        Rebuild stages from persisted matches, one inner sequence per league
        round in order.  Completed matches have their winners re-applied.
        """
        for persisted in rounds:
            by_label = {m.bracket_position: m for m in persisted}
            stage = self.next_round()
            generated = {m.label for m in stage}
            if generated != set(by_label):
                raise ValidationError(
                    f"Persisted bracket round {sorted(by_label)} does not match "
                    f"regenerated round {sorted(generated)}."
                )
            for m in stage:
                row = by_label[m.label]
                if row.is_completed and row.winner_id is not None:
                    m.winner_id = row.winner_id
        logger.debug("Replayed %d bracket stage(s)", len(self.stages))


class SingleEliminationBracket(Bracket):
    """Lose once and you are out."""

    kind = "Single elimination"

    @property
    def total_rounds(self) -> int:
        return calculate_single_elimination_rounds(self.num_players)

    @property
    def champion(self) -> Seed | None:
        stage = self.current_stage
        if len(stage) == 1 and stage[0].is_complete and len(self.stages) == self.total_rounds:
            return stage[0].winner
        return None

    def _build_next_stage(self) -> list[BracketMatch]:
        if not self.stages:
            stage = generate_single_elimination_bracket(self.seeds)
        else:
            stage = generate_next_single_elimination_round(self.current_stage, len(self.stages) + 1)
        self._link(stage)
        return stage

    def _link(self, stage: list[BracketMatch]) -> None:
        for m in stage:
            if m.round_number < self.total_rounds:
                m.feeds_into_match_number = (m.match_number + 1) // 2
                m.feeds_into_position = _slot(m.match_number)

    def round_name(self, round_number: int) -> str:
        return single_elimination_round_name(round_number, self.total_rounds)


@dataclass
class _DoubleState:
    """Snapshot derived from the generated stages."""

    winners_alive: list[Seed]
    winners_round: int = 0
    losers_alive: list[Seed] = field(default_factory=list)
    losers_round: int = 0
    drops: deque[list[Seed]] = field(default_factory=deque)
    grand_finals: BracketMatch | None = None
    reset: BracketMatch | None = None


class DoubleEliminationBracket(Bracket):
    """Two losses to be eliminated; grand finals with a possible bracket reset."""

    kind = "Double elimination"

    @property
    def winners_rounds(self) -> int:
        return int(math.log2(self.num_players))

    @property
    def losers_rounds(self) -> int:
        """Losers-bracket rounds actually played (0 for a two-player field)."""
        return 2 * (self.winners_rounds - 1)

    @property
    def champion(self) -> Seed | None:
        state = self._derive()
        if state.reset is not None:
            return state.reset.winner
        gf = state.grand_finals
        if gf is not None and gf.is_complete and gf.player1 is not None:
            if not needs_bracket_reset(gf.player1.id, gf.winner_id):
                return gf.winner
        return None

    @property
    def needs_reset(self) -> bool:
        state = self._derive()
        gf = state.grand_finals
        return (
            state.reset is None
            and gf is not None
            and gf.is_complete
            and gf.player1 is not None
            and needs_bracket_reset(gf.player1.id, gf.winner_id)
        )

    def round_name(self, match: BracketMatch) -> str:
        return double_elimination_round_name(match.round_number, match.bracket)

    # ------------------------------------------------------------------ #
    # Internal helpers                                                     #
    # ------------------------------------------------------------------ #

    def _derive(self) -> _DoubleState:
        state = _DoubleState(winners_alive=list(self.seeds))
        for stage in self.stages:
            winners = sorted(
                (m for m in stage if m.bracket == "winners"), key=lambda m: m.match_number
            )
            losers = sorted(
                (m for m in stage if m.bracket == "losers"), key=lambda m: m.match_number
            )
            for m in stage:
                if m.bracket == "grand_finals":
                    state.grand_finals = m
                elif m.bracket == "reset":
                    state.reset = m
            if losers:
                state.losers_round += 1
                k = state.losers_round
                if (k == 1 or k % 2 == 0) and state.drops:
                    state.drops.popleft()
                state.losers_alive = [m.winner for m in losers]
            if winners:
                state.winners_round += 1
                state.winners_alive = [m.winner for m in winners]
                state.drops.append([m.loser for m in winners])
            self._pass_through(state)
        return state

    @staticmethod
    def _pass_through(state: _DoubleState) -> None:
        # A lone round-1 loser (two-player field) enters the losers bracket unopposed.
        if state.losers_round == 0 and state.drops and len(state.drops[0]) == 1:
            state.losers_alive = state.drops.popleft()
            state.losers_round = 1

    def _build_next_stage(self) -> list[BracketMatch]:
        if not self.stages:
            stage = generate_double_elimination_bracket(self.seeds)
            self._link_winners(stage)
            return stage

        state = self._derive()
        if state.grand_finals is not None:
            gf = state.grand_finals
            if state.reset is None and self.needs_reset:
                logger.info("Grand finals won from the losers bracket; bracket reset required")
                return [BracketMatch(1, 1, "reset", gf.player1, gf.player2)]
            return []

        stage: list[BracketMatch] = []
        if len(state.winners_alive) > 1:
            stage += _pair_adjacent(state.winners_alive, state.winners_round + 1, "winners")
            self._link_winners(stage)

        k = state.losers_round + 1
        losers_stage: list[BracketMatch] = []
        if k == 1:
            if state.drops:
                losers_stage = _pair_adjacent(state.drops[0], k, "losers")
        elif k % 2 == 0:
            if state.drops:
                losers_stage = [
                    BracketMatch(k, i + 1, "losers", survivor, dropped)
                    for i, (survivor, dropped) in enumerate(
                        feed_losers(state.losers_alive, state.drops[0])
                    )
                ]
        elif len(state.losers_alive) > 1:
            losers_stage = _pair_adjacent(state.losers_alive, k, "losers")
        self._link_losers(losers_stage)
        stage += losers_stage

        if stage:
            return stage

        if len(state.winners_alive) == 1 and len(state.losers_alive) == 1 and not state.drops:
            return [
                BracketMatch(1, 1, "grand_finals", state.winners_alive[0], state.losers_alive[0])
            ]
        raise StateError("Double elimination bracket cannot advance from its current state.")

    def _link_winners(self, stage: list[BracketMatch]) -> None:
        for m in stage:
            if m.round_number < self.winners_rounds:
                m.feeds_into_match_number = (m.match_number + 1) // 2
                m.feeds_into_position = _slot(m.match_number)
            else:
                m.feeds_into_match_number = 1
                m.feeds_into_position = "player1"

    def _link_losers(self, stage: list[BracketMatch]) -> None:
        for m in stage:
            k = m.round_number
            if k >= self.losers_rounds:
                # losers final feeds grand finals
                m.feeds_into_match_number = 1
                m.feeds_into_position = "player2"
            elif (k + 1) % 2 == 0:
                m.feeds_into_match_number = m.match_number
                m.feeds_into_position = "player1"
            else:
                m.feeds_into_match_number = (m.match_number + 1) // 2
                m.feeds_into_position = _slot(m.match_number)

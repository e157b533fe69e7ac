"""
Rich-based console consumer for league events.

LeagueService emits RoundGeneratedEvent / TournamentCompletedEvent to its
listeners; display_league_event() renders them.  Standings, brackets, and
timer announcements have their own helpers because the demo shows them
outside the event stream.
"""

from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from leaguecore.events import LeagueEvent, RoundGeneratedEvent, TournamentCompletedEvent
from leaguecore.models import League
from leaguecore.notifications import NotificationSink
from leaguecore.tournaments.base import BracketMatch, StandingEntry
from leaguecore.tournaments.elimination import (
    Bracket,
    DoubleEliminationBracket,
    SingleEliminationBracket,
)

console = Console(legacy_windows=False)


def display_league_event(event: LeagueEvent) -> None:
    """Dispatch a LeagueEvent to the appropriate display function."""
    match event:
        case RoundGeneratedEvent():
            _round_generated(event)
        case TournamentCompletedEvent():
            _tournament_completed(event)


class ConsoleSink(NotificationSink):
    """Prints timer announcements to the terminal instead of a chat channel."""

    async def announce(self, scope_id: str, destination_id: str, message: str) -> None:
        title, _, body = message.partition("\n")
        console.print(
            Panel(
                body or title,
                title=f"[bold]{title.replace('**', '')}[/]",
                subtitle=f"[dim]{scope_id}/{destination_id or '-'}[/]",
                border_style="magenta",
                expand=False,
            )
        )


# --------------------------------------------------------------------------- #
# Display functions                                                            #
# --------------------------------------------------------------------------- #

def show_league(league: League, player_count: int) -> None:
    rounds = league.total_rounds if league.total_rounds is not None else "open"
    cut = f"  •  Top cut: {league.top_cut_size}" if league.top_cut_size else ""
    timer = f"  •  Timer: {league.round_timer_minutes} min" if league.round_timer_minutes else ""
    console.print()
    console.print(
        Panel(
            f"[bold]{league.name}[/]  [dim]({league.format})[/]\n\n"
            f"[dim]{league.competition_type.value.replace('_', ' ').title()}  •  "
            f"Players: {player_count}  •  Rounds: {rounds}{cut}{timer}[/]",
            title="[bold green] League [/]",
            border_style="green",
            expand=False,
        )
    )


def show_standings(standings: list[StandingEntry], title: str = "Standings") -> None:
    table = Table(
        title=title,
        show_header=True,
        header_style="bold",
        border_style="dim",
        show_lines=False,
    )
    table.add_column("#", style="dim", width=3, justify="right")
    table.add_column("Name", min_width=18)
    table.add_column("Record", justify="center", width=8)
    table.add_column("Pts", justify="right", width=4)
    table.add_column("OMW%", justify="right", width=7)
    table.add_column("GW%", justify="right", width=7)
    table.add_column("OGW%", justify="right", width=7)

    for entry in standings:
        name = f"[dim]{entry.player_name} (dropped)[/]" if entry.dropped else entry.player_name
        table.add_row(
            str(entry.rank),
            name,
            entry.record,
            str(entry.match_points),
            f"{entry.omw_percent:.1%}",
            f"{entry.gw_percent:.1%}",
            f"{entry.ogw_percent:.1%}",
            style="bold yellow" if entry.rank == 1 else "",
        )

    console.print()
    console.print(table)


def show_bracket(bracket: Bracket) -> None:
    """One table per generated stage, grouped the way players read a bracket."""
    for i, stage in enumerate(bracket.stages, 1):
        table = Table(
            title=f"Bracket stage {i}",
            show_header=True,
            header_style="bold",
            border_style="dim",
        )
        table.add_column("Match", style="dim", width=10)
        table.add_column("Round", min_width=16)
        table.add_column("Player 1", min_width=16)
        table.add_column("", width=3, justify="center")
        table.add_column("Player 2", min_width=16)
        table.add_column("Feeds", style="dim", width=12)

        for m in stage:
            table.add_row(
                m.label,
                _round_label(bracket, m),
                _entrant(m, 1),
                "vs",
                _entrant(m, 2),
                f"M{m.feeds_into_match_number} {m.feeds_into_position}"
                if m.feeds_into_match_number is not None else "",
            )
        console.print()
        console.print(table)

    if bracket.champion is not None:
        console.print(f"\n  [bold yellow]★  {bracket.champion.name}[/] wins the bracket")


def _round_generated(event: RoundGeneratedEvent) -> None:
    label = "Top Cut " if event.is_top_cut else ""
    suffix = "  [yellow](repaired)[/]" if event.repaired else ""
    console.print()
    console.rule(f"[bold]{event.league_name}: {label}Round {event.round_number}[/]{suffix}", style="bright_blue")
    console.print()

    table = Table(show_header=True, header_style="bold", border_style="dim", show_lines=False)
    table.add_column("Table", style="dim", width=6, justify="right")
    table.add_column("Player 1", min_width=18)
    table.add_column("", width=3, justify="center")
    table.add_column("Player 2", min_width=18)
    table.add_column("Bracket", style="dim", width=10)

    for table_number, p1, p2, position in event.tables:
        if p2 == "BYE":
            table.add_row(str(table_number), f"[bold]{p1}[/]", "→", "[dim]BYE[/]", position or "")
        else:
            table.add_row(str(table_number), f"[bold]{p1}[/]", "vs", f"[bold]{p2}[/]", position or "")

    console.print(table)


def _tournament_completed(event: TournamentCompletedEvent) -> None:
    how = "automatically after the final result" if event.automatic else "by the organiser"
    console.print()
    console.print(
        Panel(
            f"[bold yellow]★  {event.champion_name}[/]\n\n"
            f"[dim]{event.league_name}  •  {event.rounds_played} round(s)  •  ended {how}\n"
            f"{event.timestamp.strftime('%Y-%m-%d %H:%M:%S')}[/]",
            title="[bold green] Tournament Champion [/]",
            border_style="yellow",
            expand=False,
        )
    )


# --------------------------------------------------------------------------- #
# Helpers                                                                      #
# --------------------------------------------------------------------------- #

def _round_label(bracket: Bracket, m: BracketMatch) -> str:
    match bracket:
        case DoubleEliminationBracket():
            return bracket.round_name(m)
        case SingleEliminationBracket():
            return bracket.round_name(m.round_number)
    return f"Round {m.round_number}"


def _entrant(m: BracketMatch, slot: int) -> str:
    seed = m.player1 if slot == 1 else m.player2
    if seed is None:
        return "[dim]TBD[/]"
    if m.winner_id == seed.id:
        return f"[green]{seed.name}[/] [dim]({seed.seed})[/]"
    return f"{seed.name} [dim]({seed.seed})[/]"

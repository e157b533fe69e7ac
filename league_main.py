"""
leaguecore — demo entry point.

Usage:
    python league_main.py

Wires together:
    config → format prompt → in-memory storage → timer scheduler →
    LeagueService → simulated results → CLI display

Results are drawn at random (seeded from config.yaml's demo.seed), so the
same config replays the same tournament.
"""

from __future__ import annotations

import asyncio
import logging
import logging.handlers
import random
import signal
import sys
from pathlib import Path

from rich.prompt import IntPrompt

from leaguecore.cli.display import (
    ConsoleSink,
    console,
    display_league_event,
    show_bracket,
    show_league,
    show_standings,
)
from leaguecore.config import Config, load_config
from leaguecore.errors import LeagueError
from leaguecore.league import LeagueService
from leaguecore.models import CompetitionType, CreateLeagueOptions, LeagueStatus, MatchResult
from leaguecore.notifications import LoggingSink
from leaguecore.storage import create_memory_repositories
from leaguecore.timers import RoundTimerScheduler
from leaguecore.tournaments.swiss import recommended_swiss_rounds

logger = logging.getLogger("leaguecore")

ORGANISER = ("demo-organiser", "Organiser")
GUILD = "demo-guild"


def _setup_logging(config: Config) -> None:
    handlers: list[logging.Handler] = []
    log_file = config.log_file_path
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(
                log_file, maxBytes=2 * 1024 * 1024, backupCount=3,  # 2 MB × 3 files
                encoding="utf-8",
            )
        )
    else:
        handlers.append(logging.StreamHandler())
    logging.basicConfig(
        level=config.logging.level,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        handlers=handlers,
    )


def _select_format(default: CompetitionType) -> CompetitionType:
    console.print()
    console.print("[bold]Competition format:[/]")
    options = list(CompetitionType)
    for i, ct in enumerate(options, 1):
        console.print(f"  {i}. {ct.value.replace('_', ' ').title()}")
    choice = IntPrompt.ask(
        "\nSelect format",
        choices=[str(i) for i in range(1, len(options) + 1)],
        default=options.index(default) + 1,
    )
    return options[choice - 1]


def _simulate(rng: random.Random, allow_draws: bool) -> MatchResult:
    """Best-of-three score with an occasional intentional draw in Swiss rounds."""
    if allow_draws and rng.random() < 0.1:
        return MatchResult(1, 1, 1)
    loser_games = rng.choice((0, 1))
    if rng.random() < 0.5:
        return MatchResult(2, loser_games)
    return MatchResult(loser_games, 2)


async def _main(stop_event: asyncio.Event) -> None:
    config_path = Path("config.yaml")
    try:
        config = load_config(config_path)
    except FileNotFoundError as exc:
        console.print(f"[yellow]Note:[/] {exc}\n[dim]Running with built-in defaults.[/]")
        config = Config()
    except ValueError as exc:
        console.print(f"[red]Config error:[/] {exc}")
        sys.exit(1)

    _setup_logging(config)
    demo = config.demo
    rng = random.Random(demo.seed)

    competition_type = _select_format(demo.competition_type)
    top_cut = demo.top_cut_size
    if competition_type == CompetitionType.SWISS_WITH_TOP_CUT:
        top_cut = top_cut or 4
    else:
        top_cut = None
    total_rounds = demo.total_rounds
    if competition_type == CompetitionType.SWISS and total_rounds is None:
        total_rounds = recommended_swiss_rounds(len(demo.players))

    # piped output gets the announcements in the log instead of as panels
    sink = ConsoleSink() if console.is_terminal else LoggingSink()
    scheduler = RoundTimerScheduler(sink, config.timer)
    service = LeagueService(create_memory_repositories(), scheduler, [display_league_event])

    try:
        league = await service.create_league(
            CreateLeagueOptions(
                guild_id=GUILD,
                created_by=ORGANISER[0],
                name=demo.league_name,
                format=demo.format,
                competition_type=competition_type,
                top_cut_size=top_cut,
                total_rounds=total_rounds,
                round_timer_minutes=demo.round_timer_minutes,
                announcement_channel_id="demo-channel",
            )
        )
        for i, name in enumerate(demo.players, 1):
            await service.register_player(league.id, f"user-{i}", name)
        league = await service.start_league(league.id, *ORGANISER)
        show_league(league, len(demo.players))

        while league.status in (LeagueStatus.IN_PROGRESS, LeagueStatus.TOP_CUT):
            if stop_event.is_set():
                await service.end_tournament(league.id, *ORGANISER)
                break

            matches = await service.generate_next_round(league.id)
            bracket = await service.get_bracket(league.id)
            if league.round_timer_minutes:
                # let the start announcement through before the round is played out
                await asyncio.sleep((config.timer.grace_minutes + 1) * config.timer.seconds_per_minute)
            allow_draws = all(m.bracket_position is None for m in matches)
            for m in matches:
                if m.is_completed:
                    continue
                # a completed round ends the tournament automatically
                current = await service.get_match(m.id)
                if current.is_completed:
                    continue
                await service.report_match_result(m.id, _simulate(rng, allow_draws))

            league = await service.get_league(league.id)
            if allow_draws and league.status != LeagueStatus.COMPLETED:
                show_standings(
                    await service.get_standings(league.id),
                    f"Standings after Round {league.current_round}",
                )
            if bracket is not None and league.status == LeagueStatus.COMPLETED:
                show_bracket(bracket)

        show_standings(await service.get_standings(league.id), "Final Standings")
        for entry in await service.get_audit_logs(league.id, limit=10):
            logger.info("audit %s: %s", entry.action, entry.description)

    except LeagueError as exc:
        console.print(f"[red]League error:[/] {exc}")
        sys.exit(1)
    finally:
        await scheduler.shutdown()


def main() -> None:
    async def _run() -> None:
        stop_event = asyncio.Event()
        original_sigint = signal.getsignal(signal.SIGINT)

        def _on_sigint(sig: int, frame: object) -> None:
            if not stop_event.is_set():
                stop_event.set()
                console.print("\n[yellow]Ending the tournament after the current round…[/]")
                signal.signal(signal.SIGINT, original_sigint)
            else:
                sys.exit(1)

        signal.signal(signal.SIGINT, _on_sigint)
        await _main(stop_event)

    asyncio.run(_run())


if __name__ == "__main__":
    main()

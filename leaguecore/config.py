"""
Configuration loading from config.yaml.

Uses typed dataclasses throughout so the rest of the app gets IDE
completion and type-checker support without touching raw dicts.
Every section is optional; a missing key falls back to its default.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml

from leaguecore.models import VALID_TOP_CUT_SIZES, CompetitionType

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class TimerConfig:
    grace_minutes: int = 5
    interval_minutes: int = 15
    warning_minutes: tuple[int, ...] = (15, 10, 5)
    seconds_per_minute: float = 60.0   # shrink for demos; 60 in production


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: str | None = "./logs/leaguecore.log"


@dataclass
class DemoConfig:
    league_name: str = "Friday Night Swiss"
    format: str = "Modern"
    competition_type: CompetitionType = CompetitionType.SWISS
    players: list[str] = field(default_factory=lambda: [
        "Alpha", "Bravo", "Charlie", "Delta", "Echo", "Foxtrot", "Golf", "Hotel",
    ])
    total_rounds: int | None = None
    top_cut_size: int | None = None
    round_timer_minutes: int | None = None
    seed: int | None = None   # RNG seed for simulated results


@dataclass
class Config:
    timer: TimerConfig = field(default_factory=TimerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    demo: DemoConfig = field(default_factory=DemoConfig)

    @property
    def log_file_path(self) -> Path | None:
        return Path(self.logging.file) if self.logging.file else None


def load_config(path: str | Path = "config.yaml") -> Config:
    """
    Load and validate config.yaml.

    Raises:
        FileNotFoundError: config.yaml is missing.
        ValueError: fields are present but invalid.
    """
    cfg_path = Path(path)
    if not cfg_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {cfg_path.resolve()}\n"
            "Copy config.example.yaml to config.yaml and adjust it."
        )

    with cfg_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    try:
        timer_raw = raw.get("timer") or {}
        timer_cfg = TimerConfig(
            grace_minutes=int(timer_raw.get("grace_minutes", 5)),
            interval_minutes=int(timer_raw.get("interval_minutes", 15)),
            warning_minutes=tuple(int(m) for m in timer_raw.get("warning_minutes", (15, 10, 5))),
            seconds_per_minute=float(timer_raw.get("seconds_per_minute", 60.0)),
        )

        log_raw = raw.get("logging") or {}
        log_cfg = LoggingConfig(
            level=str(log_raw.get("level", "INFO")).upper(),
            file=log_raw.get("file", "./logs/leaguecore.log"),
        )

        demo_raw = raw.get("demo") or {}
        defaults = DemoConfig()
        demo_cfg = DemoConfig(
            league_name=str(demo_raw.get("league_name", defaults.league_name)),
            format=str(demo_raw.get("format", defaults.format)),
            competition_type=CompetitionType(
                str(demo_raw.get("competition_type", defaults.competition_type.value)).upper()
            ),
            players=[str(p) for p in demo_raw.get("players", defaults.players)],
            total_rounds=_optional_int(demo_raw.get("total_rounds")),
            top_cut_size=_optional_int(demo_raw.get("top_cut_size")),
            round_timer_minutes=_optional_int(demo_raw.get("round_timer_minutes")),
            seed=_optional_int(demo_raw.get("seed")),
        )

        config = Config(timer=timer_cfg, logging=log_cfg, demo=demo_cfg)
        _validate(config)
        return config

    except (KeyError, TypeError, AttributeError) as exc:
        raise ValueError(f"Invalid config.yaml structure: {exc}") from exc


def _optional_int(value: object) -> int | None:
    if value is None:
        return None
    return int(value)


def _validate(config: Config) -> None:
    t = config.timer
    if t.grace_minutes < 0:
        raise ValueError("timer.grace_minutes must be >= 0")
    if t.interval_minutes < 1:
        raise ValueError("timer.interval_minutes must be >= 1")
    if any(m < 1 for m in t.warning_minutes):
        raise ValueError("timer.warning_minutes entries must be >= 1")
    if t.seconds_per_minute <= 0:
        raise ValueError("timer.seconds_per_minute must be > 0")
    if config.logging.level not in _LOG_LEVELS:
        raise ValueError(
            f"logging.level must be one of {_LOG_LEVELS}, got '{config.logging.level}'"
        )
    d = config.demo
    if d.top_cut_size is not None and d.top_cut_size not in VALID_TOP_CUT_SIZES:
        raise ValueError(f"demo.top_cut_size must be one of {VALID_TOP_CUT_SIZES}")
    if len(d.players) < 2:
        raise ValueError("demo.players needs at least 2 names")

"""Run-time configuration for livetop."""

import argparse
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from livetop.events import QueueDiscipline

DEFAULT_REFRESH_INTERVAL = 1.5
MIN_REFRESH_INTERVAL = 0.1
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass(slots=True, frozen=True)
class MonitorConfig:
    """Settings fixed for the whole run."""

    refresh_interval: float = DEFAULT_REFRESH_INTERVAL
    quit_key: str = "q"
    queue_discipline: QueueDiscipline = QueueDiscipline.FIFO
    log_file: Path | None = None
    log_level: str = "WARNING"

    def __post_init__(self) -> None:
        if self.refresh_interval < MIN_REFRESH_INTERVAL:
            raise ValueError(
                f"refresh interval must be at least {MIN_REFRESH_INTERVAL}s, "
                f"got {self.refresh_interval}"
            )
        if len(self.quit_key) != 1:
            raise ValueError(f"quit key must be a single character, got {self.quit_key!r}")
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"unknown log level {self.log_level!r}")

    @property
    def log_level_number(self) -> int:
        """Get the numeric logging level."""
        return getattr(logging, self.log_level)


def build_parser() -> argparse.ArgumentParser:
    """Create the command-line parser."""
    parser = argparse.ArgumentParser(
        prog="livetop",
        description="Live, sortable process and resource monitor for this host.",
    )
    parser.add_argument(
        "-i",
        "--interval",
        type=float,
        default=DEFAULT_REFRESH_INTERVAL,
        help=f"refresh interval in seconds (default {DEFAULT_REFRESH_INTERVAL}, "
        f"minimum {MIN_REFRESH_INTERVAL})",
    )
    parser.add_argument("--quit-key", default="q", help="key that exits (default q)")
    parser.add_argument(
        "--lifo",
        action="store_true",
        help="serve the most recent event first instead of in arrival order",
    )
    parser.add_argument("--log-file", type=Path, help="write diagnostics to this file")
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        default="WARNING",
        help="log level for --log-file (default WARNING)",
    )
    return parser


def parse_args(argv: Sequence[str] | None = None) -> MonitorConfig:
    """Parse command-line arguments into a MonitorConfig."""
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return MonitorConfig(
            refresh_interval=args.interval,
            quit_key=args.quit_key,
            queue_discipline=QueueDiscipline.LIFO if args.lifo else QueueDiscipline.FIFO,
            log_file=args.log_file,
            log_level=args.log_level,
        )
    except ValueError as exc:
        parser.error(str(exc))

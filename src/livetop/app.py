"""livetop - entry point wiring the engine, the terminal and the renderer."""

import logging
import sys
import threading
from collections.abc import Sequence

from livetop.config import MonitorConfig, parse_args
from livetop.controller import DashboardController, Renderer
from livetop.events import EventBus, InputListener, KeyReader, ResizeWatcher, Ticker
from livetop.render import RichRenderer
from livetop.source import MetricsSource, PsutilMetricsSource
from livetop.table import ProcessTable
from livetop.terminal import TerminalKeyReader, TerminalSetupError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"


def configure_logging(config: MonitorConfig) -> logging.Handler:
    """
    Route livetop logs to the configured file.

    The dashboard owns the terminal, so without a log file the records are
    dropped instead of being written over the screen.
    """
    package_logger = logging.getLogger("livetop")
    package_logger.setLevel(config.log_level_number)
    if config.log_file is not None:
        handler: logging.Handler = logging.FileHandler(config.log_file, encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
    else:
        handler = logging.NullHandler()
    package_logger.addHandler(handler)
    return handler


def build_dashboard(
    config: MonitorConfig,
    renderer: Renderer,
    key_reader: KeyReader,
    source: MetricsSource | None = None,
    resize_watcher: ResizeWatcher | None = None,
) -> DashboardController:
    """Assemble the table, the event bus with its producers and the controller."""
    lock = threading.Lock()
    if source is None:
        source = PsutilMetricsSource(config.refresh_interval)
    table = ProcessTable(source, config.refresh_interval, lock=lock)
    bus = EventBus(config.queue_discipline)
    bus.attach(InputListener(key_reader, config.quit_key))
    bus.attach(Ticker(config.refresh_interval))
    bus.attach(resize_watcher or ResizeWatcher())
    return DashboardController(bus, table, source, renderer, lock=lock)


def _fatal(message: str) -> int:
    logger.error(message)
    print(f"livetop: {message}", file=sys.stderr)
    return 1


def run(config: MonitorConfig) -> int:
    """Run the dashboard until the user quits. Returns the exit status."""
    try:
        key_reader = TerminalKeyReader()
        resize_watcher = ResizeWatcher()
    except TerminalSetupError as exc:
        return _fatal(str(exc))
    except OSError as exc:
        return _fatal(f"cannot create wake channel: {exc}")

    try:
        with key_reader, RichRenderer() as renderer:
            controller = build_dashboard(config, renderer, key_reader, resize_watcher=resize_watcher)
            logger.info("Starting with a %.2fs refresh interval", config.refresh_interval)
            controller.run()
    except TerminalSetupError as exc:
        resize_watcher.close()
        return _fatal(str(exc))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return 0


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for the livetop console script."""
    config = parse_args(argv)
    configure_logging(config)
    sys.exit(run(config))


if __name__ == "__main__":
    main()

"""Terminal rendering for livetop, built on rich."""

import math
import os

from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.table import Table
from rich.text import Text

from livetop.controller import Frame
from livetop.formatting import format_bytes, format_elapsed, format_uptime

BARS_PER_COLUMN = 4
MIN_BAR_WIDTH = 12
# Blank line, three summary lines and the table header
HEADER_EXTRA_LINES = 5

COLUMNS = [
    # header, justify, width
    ("PID", "right", 7),
    ("USER", "left", 8),
    ("PRI", "right", 3),
    ("NI", "right", 3),
    ("VIRT", "right", 6),
    ("RES", "right", 6),
    ("SHR", "right", 6),
    ("S", "center", 1),
    ("CPU%", "right", 6),
    ("MEM%", "right", 5),
    ("TIME+", "right", 9),
]


def usage_style(ratio: float) -> str:
    """Color for a utilization ratio: green below 50%, yellow below 80%, red above."""
    if ratio < 0.5:
        return "green"
    if ratio < 0.8:
        return "yellow"
    return "red"


def render_bar(
    label: str,
    segments: list[tuple[float, str]],
    right_label: str,
    width: int,
) -> Text:
    """
    Render a meter like 'Mem[|||||      1.2G/7.7G]'.

    Each segment is a (ratio, style) pair; segments are drawn left to right
    and never overflow the bar.
    """
    inner = max(0, width - len(label) - 2)
    right_label = right_label[:inner]
    fill_width = inner - len(right_label)

    text = Text()
    text.append(label, style="cyan")
    text.append("[", style="bold white")
    used = 0
    for ratio, style in segments:
        count = min(fill_width - used, int(fill_width * max(0.0, ratio)))
        if count > 0:
            text.append("|" * count, style=style)
            used += count
    text.append(" " * (fill_width - used))
    text.append(right_label, style="bold white")
    text.append("]", style="bold white")
    return text


class RichRenderer:
    """
    Paints frames into the terminal's alternate screen with rich.

    Live runs without its own refresh thread, so the screen only changes when
    the dashboard controller calls render().
    """

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console()
        self._live: Live | None = None
        self._cpu_rows = min(BARS_PER_COLUMN, os.cpu_count() or 1)

    def __enter__(self) -> "RichRenderer":
        self._live = Live(
            console=self._console,
            screen=True,
            auto_refresh=False,
            redirect_stdout=False,
            redirect_stderr=False,
        )
        self._live.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._live is not None:
            self._live.stop()
            self._live = None

    def visible_rows(self) -> int:
        """Number of process rows that fit below the header."""
        height = self._console.size.height
        return max(1, height - self._cpu_rows - HEADER_EXTRA_LINES)

    def render(self, frame: Frame) -> None:
        """Paint a frame."""
        view = self.build(frame)
        if self._live is None:
            self._console.print(view)
        else:
            self._live.update(view, refresh=True)

    def build(self, frame: Frame) -> RenderableType:
        """Build the renderable for a frame."""
        width = self._console.size.width
        return Group(
            self._cpu_section(frame.cpu_ratios, width),
            Text(""),
            self._summary_section(frame, width),
            self._process_table(frame),
        )

    def _cpu_section(self, ratios: tuple[float, ...], width: int) -> RenderableType:
        if len(ratios) <= 2:
            meters = [("CPU", ratios[0] if ratios else 0.0)]
        else:
            meters = [(f"{index:>3}", ratio) for index, ratio in enumerate(ratios[1:])]

        columns = math.ceil(len(meters) / BARS_PER_COLUMN)
        rows = min(BARS_PER_COLUMN, len(meters))
        self._cpu_rows = rows
        bar_width = max(MIN_BAR_WIDTH, (width - 2) // columns - 2)

        grid = Table.grid(expand=True, padding=(0, 2))
        for _ in range(columns):
            grid.add_column(ratio=1, no_wrap=True)
        for row in range(rows):
            cells: list[RenderableType] = []
            for column in range(columns):
                index = column * BARS_PER_COLUMN + row
                if index >= len(meters):
                    cells.append("")
                    continue
                label, ratio = meters[index]
                cells.append(
                    render_bar(label, [(ratio, usage_style(ratio))], f"{ratio * 100:.1f}%", bar_width)
                )
            grid.add_row(*cells)
        return grid

    def _summary_section(self, frame: Frame, width: int) -> RenderableType:
        memory = frame.memory
        bar_width = max(MIN_BAR_WIDTH, width // 2 - 2)
        mem_bar = render_bar(
            "Mem",
            [
                (memory.ratio(memory.used), "green"),
                (memory.ratio(memory.buffers), "blue"),
                (memory.ratio(memory.cache), "yellow"),
            ],
            f"{format_bytes(memory.used)}/{format_bytes(memory.total)}",
            bar_width,
        )
        swap_bar = render_bar(
            "Swp",
            [(memory.swap_ratio, "red")],
            f"{format_bytes(memory.swap_used)}/{format_bytes(memory.swap_total)}",
            bar_width,
        )

        counts = frame.counts
        load_1, load_5, load_15 = frame.load_average
        grid = Table.grid(expand=True, padding=(0, 2))
        grid.add_column(ratio=1, no_wrap=True)
        grid.add_column(ratio=1, no_wrap=True, style="cyan")
        grid.add_row(
            mem_bar,
            f"Tasks: {counts.tasks}, {max(0, counts.threads - counts.tasks)} thr; "
            f"{counts.running} running",
        )
        grid.add_row(swap_bar, f"Load average: {load_1:.2f} {load_5:.2f} {load_15:.2f}")
        grid.add_row("", f"Uptime: {format_uptime(frame.uptime)}")
        return grid

    def _process_table(self, frame: Frame) -> Table:
        table = Table(
            box=None,
            expand=True,
            show_edge=False,
            pad_edge=False,
            padding=(0, 1),
            header_style="black on green",
        )
        for header, justify, width in COLUMNS:
            table.add_column(header, justify=justify, width=width, no_wrap=True)
        table.add_column("COMMAND", ratio=1, no_wrap=True, overflow="ellipsis")

        for offset, proc in enumerate(frame.visible_processes):
            index = frame.scroll_offset + offset
            mem_percent = frame.memory.ratio(proc.resident) * 100
            table.add_row(
                str(proc.pid),
                Text(proc.user[:8]),
                str(proc.priority),
                str(proc.nice),
                format_bytes(proc.virtual, 0),
                format_bytes(proc.resident, 0),
                format_bytes(proc.shared, 0),
                proc.state,
                f"{proc.cpu_percent:.1f}",
                f"{mem_percent:.1f}",
                format_elapsed(proc.cpu_time),
                Text(proc.command),
                style="black on cyan" if index == frame.selected else None,
            )
        return table

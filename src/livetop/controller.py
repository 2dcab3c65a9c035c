"""Dashboard control loop for livetop."""

import logging
import threading
from dataclasses import dataclass, field
from typing import Protocol

from livetop.events import Event, EventBus, KeyPress, Quit, Redraw, Resize
from livetop.models import CpuTotals, MemoryTotals, ProcessSnapshot, TableCounts, cpu_busy_ratio
from livetop.source import MetricsError, MetricsSource
from livetop.table import ProcessTable

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DashboardState:
    """
    Navigation state of the process list.

    Clearing running, under the controller's lock, ends the control loop
    before the next event is taken.
    """

    selected: int = 0
    scroll_offset: int = 0
    visible_rows: int = 1
    processes: list[ProcessSnapshot] = field(default_factory=list)
    running: bool = True

    def _scroll_into_view(self) -> None:
        if self.selected < self.scroll_offset:
            self.scroll_offset = self.selected
        elif self.selected >= self.scroll_offset + self.visible_rows:
            self.scroll_offset = self.selected - self.visible_rows + 1

    def move_selection(self, delta: int) -> bool:
        """
        Move the selection by delta rows, scrolling to keep it visible.

        Returns True if the selection moved.
        """
        if not self.processes:
            return False
        target = min(max(self.selected + delta, 0), len(self.processes) - 1)
        if target == self.selected:
            return False
        self.selected = target
        self._scroll_into_view()
        return True

    def handle_key(self, key: str) -> bool:
        """Apply a navigation key. Returns True if the view changed."""
        deltas = {
            "up": -1,
            "down": 1,
            "pageup": -self.visible_rows,
            "pagedown": self.visible_rows,
            "home": -self.selected,
            "end": len(self.processes),
        }
        if key not in deltas:
            return False
        return self.move_selection(deltas[key])

    def set_visible_rows(self, rows: int) -> None:
        """Change the list capacity, pulling the selection back into view."""
        self.visible_rows = max(1, rows)
        if self.selected >= self.scroll_offset + self.visible_rows:
            self.selected = self.scroll_offset + self.visible_rows - 1

    def set_processes(self, processes: list[ProcessSnapshot]) -> None:
        """Store a new snapshot and clamp the selection to its length."""
        self.processes = processes
        last = max(0, len(processes) - 1)
        self.selected = min(self.selected, last)
        self.scroll_offset = min(self.scroll_offset, self.selected)
        self._scroll_into_view()


@dataclass(slots=True, frozen=True)
class Frame:
    """Everything the renderer needs for one paint."""

    processes: list[ProcessSnapshot]
    counts: TableCounts
    cpu_ratios: tuple[float, ...]  # Index 0 is the aggregate
    memory: MemoryTotals
    load_average: tuple[float, float, float]
    uptime: float
    selected: int
    scroll_offset: int
    visible_rows: int

    @property
    def visible_processes(self) -> list[ProcessSnapshot]:
        """Rows currently inside the viewport."""
        return self.processes[self.scroll_offset : self.scroll_offset + self.visible_rows]


class Renderer(Protocol):
    """Paints frames on the terminal."""

    def visible_rows(self) -> int:
        """Recompute the layout and return how many process rows fit."""
        ...

    def render(self, frame: Frame) -> None:
        """Paint a frame."""
        ...


class DashboardController:
    """
    Single consumer of the event bus.

    Pops events one at a time and turns them into table refreshes,
    navigation changes and paints. Only this object touches the renderer and
    the layout state. The state lock is held for reads and updates of the
    state and never across metric reads or a render call.
    """

    def __init__(
        self,
        bus: EventBus,
        table: ProcessTable,
        source: MetricsSource,
        renderer: Renderer,
        state: DashboardState | None = None,
        lock: "threading.Lock | None" = None,
    ) -> None:
        self._bus = bus
        self._table = table
        self._source = source
        self._renderer = renderer
        self._lock = lock if lock is not None else threading.Lock()
        self.state = state or DashboardState()
        self._last_cpu: list[CpuTotals] | None = None
        self._cpu_ratios: tuple[float, ...] = ()
        self._memory = MemoryTotals()
        self._load_average: tuple[float, float, float] = (0.0, 0.0, 0.0)
        self._uptime = 0.0

    @property
    def lock(self) -> threading.Lock:
        """Get the lock guarding the dashboard state."""
        return self._lock

    def run(self) -> None:
        """Start the producers and consume events until Quit or a stop request."""
        rows = self._renderer.visible_rows()
        with self._lock:
            self.state.set_visible_rows(rows)
        self._bus.start()
        try:
            while self._bus.running and self.is_running():
                if not self.dispatch(self._bus.pop()):
                    break
        finally:
            with self._lock:
                self.state.running = False
            leftover = self._bus.shutdown()
            logger.debug("Stopped with %d unprocessed events", len(leftover))

    def is_running(self) -> bool:
        """Check if the control loop should take another event."""
        with self._lock:
            return self.state.running

    def stop(self) -> None:
        """End the control loop once the current event is handled."""
        with self._lock:
            self.state.running = False

    def dispatch(self, event: Event) -> bool:
        """Handle one event. Returns False when the loop should end."""
        if isinstance(event, Quit):
            return False
        if isinstance(event, KeyPress):
            self._on_key(event.key)
        elif isinstance(event, Resize):
            self._on_resize()
        elif isinstance(event, Redraw):
            self.redraw()
        else:
            logger.warning("Ignoring unknown event %r", event)
        return True

    def _on_key(self, key: str) -> None:
        with self._lock:
            changed = self.state.handle_key(key)
        if changed:
            self.redraw()

    def _on_resize(self) -> None:
        rows = self._renderer.visible_rows()
        with self._lock:
            self.state.set_visible_rows(rows)
        logger.debug("Resized to %d visible rows", rows)
        self.redraw()

    def redraw(self) -> None:
        """Refresh the table if due, then paint the latest snapshot."""
        self._table.refresh()
        processes = self._table.snapshot()
        counts = self._table.counts
        self._read_system()

        with self._lock:
            self.state.set_processes(processes)
            frame = Frame(
                processes=processes,
                counts=counts,
                cpu_ratios=self._cpu_ratios,
                memory=self._memory,
                load_average=self._load_average,
                uptime=self._uptime,
                selected=self.state.selected,
                scroll_offset=self.state.scroll_offset,
                visible_rows=self.state.visible_rows,
            )
        self._renderer.render(frame)

    def _read_system(self) -> None:
        """Read the system-wide metrics, keeping the previous values on failure."""
        try:
            totals = self._source.cpu_totals()
        except MetricsError as exc:
            logger.warning("CPU totals unavailable: %s", exc)
        else:
            if totals is not self._last_cpu:
                previous = self._last_cpu or []
                self._cpu_ratios = tuple(
                    cpu_busy_ratio(current, previous[index] if index < len(previous) else None)
                    for index, current in enumerate(totals)
                )
                self._last_cpu = totals
        try:
            self._memory = self._source.memory()
        except MetricsError as exc:
            logger.warning("Memory totals unavailable: %s", exc)
        try:
            self._load_average = self._source.load_average()
        except MetricsError as exc:
            logger.warning("Load average unavailable: %s", exc)
        try:
            self._uptime = self._source.uptime()
        except MetricsError as exc:
            logger.warning("Uptime unavailable: %s", exc)

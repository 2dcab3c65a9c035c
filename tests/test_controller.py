"""Tests for the dashboard controller and navigation state."""

import threading

import pytest

from livetop.controller import DashboardController, DashboardState, Frame
from livetop.events import EventBus, KeyPress, Quit, Redraw, Resize
from livetop.models import MemoryTotals, ProcessSnapshot, TableCounts
from livetop.source import MetricsUnreadable
from livetop.table import ProcessTable


def make_snapshots(count: int) -> list[ProcessSnapshot]:
    return [
        ProcessSnapshot(
            pid=pid,
            user="user",
            command=f"cmd{pid}",
            state="S",
            nice=0,
            priority=20,
            threads=1,
            virtual=0,
            resident=0,
            shared=0,
            cpu_percent=0.0,
            cpu_time=0.0,
        )
        for pid in range(1, count + 1)
    ]


class FakeRenderer:
    """Records frames and checks the state lock is free while painting."""

    def __init__(self, rows: int = 10) -> None:
        self.rows = rows
        self.frames: list[Frame] = []
        self.lock: threading.Lock | None = None

    def visible_rows(self) -> int:
        return self.rows

    def render(self, frame: Frame) -> None:
        assert self.lock is not None and not self.lock.locked()
        self.frames.append(frame)


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def controller(source, clock, renderer, bus) -> DashboardController:
    for pid in (100, 101, 102, 103):
        source.add(pid)
    lock = threading.Lock()
    table = ProcessTable(source, refresh_interval=1.5, clock=clock, lock=lock)
    controller = DashboardController(bus, table, source, renderer, lock=lock)
    renderer.lock = controller.lock
    controller.state.set_visible_rows(renderer.rows)
    return controller


class TestDashboardState:
    """Tests for selection and scrolling."""

    def test_move_selection_clamped(self):
        """Test the selection stays inside the list."""
        state = DashboardState(visible_rows=5)
        state.set_processes(make_snapshots(3))

        assert not state.move_selection(-1)
        assert state.move_selection(10)
        assert state.selected == 2
        assert not state.move_selection(1)

    def test_empty_list_cannot_move(self):
        """Test navigation on an empty list is a no-op."""
        state = DashboardState()

        assert not state.handle_key("down")
        assert state.selected == 0

    def test_scroll_follows_selection(self):
        """Test moving past the viewport scrolls it."""
        state = DashboardState(visible_rows=3)
        state.set_processes(make_snapshots(10))

        for _ in range(4):
            state.handle_key("down")
        assert state.selected == 4
        assert state.scroll_offset == 2

        for _ in range(3):
            state.handle_key("up")
        assert state.selected == 1
        assert state.scroll_offset == 1

    def test_page_keys(self):
        """Test page keys move by the viewport height."""
        state = DashboardState(visible_rows=4)
        state.set_processes(make_snapshots(10))

        assert state.handle_key("pagedown")
        assert state.selected == 4
        assert state.handle_key("pagedown")
        assert state.selected == 8
        assert state.handle_key("pageup")
        assert state.selected == 4

    def test_home_and_end(self):
        """Test home and end jump to the first and last rows."""
        state = DashboardState(visible_rows=4)
        state.set_processes(make_snapshots(10))

        assert state.handle_key("end")
        assert state.selected == 9
        assert state.scroll_offset == 6
        assert state.handle_key("home")
        assert state.selected == 0
        assert state.scroll_offset == 0

    def test_unknown_key_ignored(self):
        """Test keys without a binding do not change the view."""
        state = DashboardState()
        state.set_processes(make_snapshots(3))

        assert not state.handle_key("x")

    def test_shrinking_viewport_pulls_selection_into_view(self):
        """Test a smaller viewport clamps the selection to its last row."""
        state = DashboardState(visible_rows=10)
        state.set_processes(make_snapshots(20))
        for _ in range(9):
            state.handle_key("down")

        state.set_visible_rows(4)

        assert state.visible_rows == 4
        assert state.selected == 3
        assert state.scroll_offset == 0

    def test_viewport_at_least_one_row(self):
        """Test the viewport never collapses to zero rows."""
        state = DashboardState()
        state.set_visible_rows(-3)

        assert state.visible_rows == 1

    def test_shorter_list_clamps_selection(self):
        """Test a new, shorter snapshot keeps the selection valid."""
        state = DashboardState(visible_rows=5)
        state.set_processes(make_snapshots(20))
        state.handle_key("end")

        state.set_processes(make_snapshots(3))

        assert state.selected == 2
        assert state.scroll_offset <= state.selected < state.scroll_offset + state.visible_rows


class TestRedraw:
    """Tests for building frames."""

    def test_frame_contents(self, controller, renderer, source):
        """Test a redraw paints the table and system metrics."""
        source.running = 2
        controller.redraw()

        frame = renderer.frames[-1]
        assert [snap.pid for snap in frame.processes] == [100, 101, 102, 103]
        assert frame.counts == TableCounts(tasks=4, threads=4, running=2)
        assert len(frame.cpu_ratios) == source.cores + 1
        assert frame.memory == source.memory_totals
        assert frame.load_average == (0.5, 0.25, 0.125)
        assert frame.uptime == 3723.0
        assert frame.visible_rows == 10

    def test_cpu_ratios_between_redraws(self, controller, renderer, source, clock):
        """Test CPU meters cover the interval since the previous redraw."""
        controller.redraw()
        assert renderer.frames[-1].cpu_ratios == (0.0,) * 5

        clock.advance(1.5)
        source.system_ticks += 400
        controller.redraw()

        assert renderer.frames[-1].cpu_ratios == (1.0,) * 5

    def test_metric_failure_keeps_previous_values(self, controller, renderer, source, monkeypatch):
        """Test a failed system read keeps the last value on screen."""
        controller.redraw()

        def unreadable():
            raise MetricsUnreadable("gone")

        monkeypatch.setattr(source, "memory", unreadable)
        monkeypatch.setattr(source, "load_average", unreadable)
        controller.redraw()

        frame = renderer.frames[-1]
        assert frame.memory == source.memory_totals
        assert frame.load_average == (0.5, 0.25, 0.125)

    def test_memory_defaults_before_first_read(self, controller, renderer, source, monkeypatch):
        """Test an unreadable first memory read paints zeros."""
        def unreadable():
            raise MetricsUnreadable("no meminfo")

        monkeypatch.setattr(source, "memory", unreadable)
        controller.redraw()

        assert renderer.frames[-1].memory == MemoryTotals()

    def test_visible_processes(self, controller, renderer):
        """Test the frame exposes only the rows inside the viewport."""
        renderer.rows = 2
        controller.dispatch(Resize())
        controller.dispatch(KeyPress("end"))

        frame = renderer.frames[-1]
        assert frame.selected == 3
        assert frame.scroll_offset == 2
        assert [snap.pid for snap in frame.visible_processes] == [102, 103]


class TestDispatch:
    """Tests for event handling."""

    def test_quit_ends_loop(self, controller, renderer):
        """Test Quit stops dispatching without painting."""
        assert not controller.dispatch(Quit())
        assert renderer.frames == []

    def test_redraw_paints(self, controller, renderer):
        """Test Redraw paints a frame."""
        assert controller.dispatch(Redraw())
        assert len(renderer.frames) == 1

    def test_navigation_key_repaints(self, controller, renderer):
        """Test a key that moves the selection repaints immediately."""
        controller.dispatch(Redraw())
        controller.dispatch(KeyPress("down"))

        assert len(renderer.frames) == 2
        assert renderer.frames[-1].selected == 1

    def test_ignored_key_does_not_repaint(self, controller, renderer):
        """Test keys that change nothing do not repaint."""
        controller.dispatch(Redraw())
        controller.dispatch(KeyPress("up"))
        controller.dispatch(KeyPress("z"))

        assert len(renderer.frames) == 1

    def test_resize_recomputes_layout(self, controller, renderer):
        """Test Resize asks the renderer for the new capacity and repaints."""
        renderer.rows = 3
        controller.dispatch(Resize())

        assert controller.state.visible_rows == 3
        assert renderer.frames[-1].visible_rows == 3


class TestRunLoop:
    """Tests for DashboardController.run."""

    def test_run_until_quit(self, controller, renderer, bus):
        """Test the loop consumes events in order and stops at Quit."""
        bus.push(Redraw())
        bus.push(KeyPress("down"))
        bus.push(Quit())
        bus.push(Redraw())

        controller.run()

        assert len(renderer.frames) == 2
        assert renderer.frames[-1].selected == 1
        assert not controller.state.running
        assert not bus.running

    def test_run_stops_on_request(self, controller, bus):
        """Test an external stop request ends a blocked loop."""
        timer = threading.Timer(0.05, bus.request_stop)
        timer.start()
        try:
            controller.run()
        finally:
            timer.cancel()

        assert not controller.state.running

    def test_stop_ends_loop_after_current_event(self, controller, renderer, bus):
        """Test stop() from inside a handler ends the loop before the next event."""
        paint = renderer.render

        def render_then_stop(frame: Frame) -> None:
            paint(frame)
            controller.stop()

        renderer.render = render_then_stop
        bus.push(Redraw())
        bus.push(Redraw())
        bus.push(Redraw())

        controller.run()

        assert len(renderer.frames) == 1
        assert not controller.is_running()
        assert not bus.running

    def test_cleared_running_flag_skips_loop(self, controller, renderer, bus):
        """Test a state whose running flag is already cleared takes no events."""
        controller.state.running = False
        bus.push(Redraw())

        controller.run()

        assert renderer.frames == []

    def test_run_sets_initial_viewport(self, controller, renderer, bus):
        """Test the loop asks the renderer for its capacity before starting."""
        renderer.rows = 7
        bus.push(Quit())

        controller.run()

        assert controller.state.visible_rows == 7

"""Event pipeline for livetop.

Up to three producer threads (keyboard input, a ticker and a terminal-resize
watcher) push events into one EventQueue that a single consumer drains.
"""

import logging
import os
import selectors
import signal
import threading
from dataclasses import dataclass
from enum import Enum
from queue import Empty, LifoQueue, Queue
from typing import Protocol

logger = logging.getLogger(__name__)

RESIZE_BYTE = b"\x01"
SHUTDOWN_BYTE = b"q"


@dataclass(slots=True, frozen=True)
class Quit:
    """Stop the consumer loop."""


@dataclass(slots=True, frozen=True)
class KeyPress:
    """A decoded key ('up', 'down', 'pageup', ... or a single character)."""

    key: str


@dataclass(slots=True, frozen=True)
class Resize:
    """The terminal changed size."""


@dataclass(slots=True, frozen=True)
class Redraw:
    """Time to refresh and repaint."""


Event = Quit | KeyPress | Resize | Redraw


class QueueDiscipline(Enum):
    """Order in which queued events are served."""

    FIFO = "fifo"
    LIFO = "lifo"


class EventQueue:
    """
    Unbounded, thread-safe event queue.

    push() never blocks, so a slow consumer cannot stall producers; this is
    acceptable while volume is bounded by typing speed and one redraw per tick.
    """

    def __init__(self, discipline: QueueDiscipline = QueueDiscipline.FIFO) -> None:
        self._discipline = discipline
        self._queue: Queue[Event] = LifoQueue() if discipline is QueueDiscipline.LIFO else Queue()

    @property
    def discipline(self) -> QueueDiscipline:
        """Get the queue discipline."""
        return self._discipline

    def __len__(self) -> int:
        return self._queue.qsize()

    def push(self, event: Event) -> None:
        """Add an event."""
        self._queue.put_nowait(event)

    def pop(self, timeout: float | None = None) -> Event:
        """
        Remove and return the next event, blocking until one is available.

        Raises:
            queue.Empty: if timeout elapses first.
        """
        return self._queue.get(timeout=timeout)

    def drain(self) -> list[Event]:
        """Remove and return every pending event in service order."""
        events: list[Event] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except Empty:
                return events


class WakeChannel:
    """
    Self-pipe used to wake a thread blocked in a multiplexed wait.

    notify() only performs a non-blocking os.write, which makes it safe to
    call from a signal handler.
    """

    def __init__(self) -> None:
        self._read_fd, self._write_fd = os.pipe()
        os.set_blocking(self._read_fd, False)
        os.set_blocking(self._write_fd, False)
        self._selector = selectors.DefaultSelector()
        self._selector.register(self._read_fd, selectors.EVENT_READ)
        self._closed = False

    def fileno(self) -> int:
        """Read end of the pipe, for use in selectors."""
        return self._read_fd

    @property
    def closed(self) -> bool:
        """Check whether the channel has been closed."""
        return self._closed

    def notify(self, byte: bytes = RESIZE_BYTE) -> None:
        """Write one byte to the channel."""
        try:
            os.write(self._write_fd, byte)
        except BlockingIOError:
            pass  # Pipe full: the reader has a wake-up pending anyway

    def wait(self, timeout: float | None = None) -> bytes:
        """Block until the channel is readable, then return what was written."""
        self._selector.select(timeout)
        return self.drain()

    def drain(self) -> bytes:
        """Read everything written so far without blocking."""
        chunks = []
        while True:
            try:
                chunk = os.read(self._read_fd, 4096)
            except BlockingIOError:
                break
            if not chunk:
                break
            chunks.append(chunk)
        return b"".join(chunks)

    def close(self) -> None:
        """Close both ends of the pipe."""
        if self._closed:
            return
        self._closed = True
        self._selector.close()
        os.close(self._read_fd)
        os.close(self._write_fd)


class Producer:
    """
    Base class for event producer threads.

    A producer is bound to a bus queue and the bus stop flag, checks the flag
    before every blocking wait and only ever pushes events.
    """

    name = "Producer"

    def __init__(self) -> None:
        self._queue: EventQueue | None = None
        self._stop_requested: threading.Event | None = None
        self._thread: threading.Thread | None = None

    def bind(self, queue: EventQueue, stop_requested: threading.Event) -> None:
        """Attach the producer to a queue and a shared stop flag."""
        self._queue = queue
        self._stop_requested = stop_requested

    @property
    def is_running(self) -> bool:
        """Check if the producer thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the producer thread."""
        if self.is_running:
            return
        if self._queue is None or self._stop_requested is None:
            raise RuntimeError(f"{self.name} is not bound to an event bus")
        self._thread = threading.Thread(target=self._run_guarded, daemon=True, name=self.name)
        self._thread.start()

    def wake(self) -> None:
        """Unblock the thread after a stop request."""

    def join(self, timeout: float | None = None) -> None:
        """Wait for the thread to finish."""
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    def close(self) -> None:
        """Release resources held by the producer."""

    def _should_stop(self) -> bool:
        return self._stop_requested is not None and self._stop_requested.is_set()

    def _emit(self, event: Event) -> None:
        self._queue.push(event)

    def _run_guarded(self) -> None:
        try:
            self.run()
        except Exception:
            logger.exception("%s stopped unexpectedly", self.name)

    def run(self) -> None:
        """Produce events until told to stop."""
        raise NotImplementedError


class Ticker(Producer):
    """Pushes a Redraw every interval."""

    name = "Ticker"

    def __init__(self, interval: float) -> None:
        super().__init__()
        self._interval = interval

    @property
    def interval(self) -> float:
        """Get the tick interval in seconds."""
        return self._interval

    def run(self) -> None:
        while not self._should_stop():
            self._emit(Redraw())
            # Returns early as soon as a stop is requested
            if self._stop_requested.wait(timeout=self._interval):
                break


class KeyReader(Protocol):
    """Blocking keyboard source."""

    def read_keys(self) -> list[str]:
        """Block until keys arrive or wake() is called; [] means woken."""
        ...

    def wake(self) -> None:
        """Unblock a pending read_keys()."""
        ...


class InputListener(Producer):
    """Turns keystrokes into KeyPress events; the quit key ends the session."""

    name = "InputListener"

    def __init__(self, reader: KeyReader, quit_key: str = "q") -> None:
        super().__init__()
        self._reader = reader
        self._quit_key = quit_key

    def run(self) -> None:
        while not self._should_stop():
            try:
                keys = self._reader.read_keys()
            except EOFError:
                logger.info("Input closed, quitting")
                self._emit(Quit())
                return
            for key in keys:
                if key == self._quit_key:
                    self._emit(Quit())
                    return
                self._emit(KeyPress(key))

    def wake(self) -> None:
        self._reader.wake()


class ResizeWatcher(Producer):
    """
    Turns terminal-resize signals into Resize events.

    The signal handler only writes a byte to a dedicated WakeChannel; this
    thread blocks on the channel and does the actual queue push. Writing
    SHUTDOWN_BYTE to the channel ends the thread.
    """

    name = "ResizeWatcher"

    def __init__(self, signum: int = signal.SIGWINCH, channel: WakeChannel | None = None) -> None:
        super().__init__()
        self._signum = signum
        self._channel = channel or WakeChannel()
        self._previous_handler = None
        self._installed = False

    @property
    def channel(self) -> WakeChannel:
        """Get the wake channel the signal handler writes to."""
        return self._channel

    def start(self) -> None:
        """Install the signal handler (main thread only) and start the thread."""
        if not self._installed:
            self._previous_handler = signal.signal(self._signum, self._on_signal)
            self._installed = True
        super().start()

    def _on_signal(self, signum, frame) -> None:
        self._channel.notify(RESIZE_BYTE)

    def run(self) -> None:
        while not self._should_stop():
            data = self._channel.wait()
            if SHUTDOWN_BYTE in data:
                return
            if data:
                # Several signals since the last wake collapse into one event
                self._emit(Resize())

    def wake(self) -> None:
        self._channel.notify(SHUTDOWN_BYTE)

    def close(self) -> None:
        """Restore the previous signal handler and close the channel."""
        if self._installed:
            previous = self._previous_handler
            signal.signal(self._signum, previous if previous is not None else signal.SIG_DFL)
            self._installed = False
        if not self.is_running:
            self._channel.close()


class EventBus:
    """
    One event queue, one consumer, at most three producers.

    Producers share the bus stop flag. shutdown() sets it, wakes every
    producer that may be blocked on a file descriptor, joins them and hands
    back whatever was still queued.
    """

    MAX_PRODUCERS = 3

    def __init__(self, discipline: QueueDiscipline = QueueDiscipline.FIFO) -> None:
        self._queue = EventQueue(discipline)
        self._stop_requested = threading.Event()
        self._producers: list[Producer] = []
        self._started = False
        self._shut_down = False

    @property
    def discipline(self) -> QueueDiscipline:
        """Get the queue discipline."""
        return self._queue.discipline

    @property
    def running(self) -> bool:
        """Check whether no stop has been requested."""
        return not self._stop_requested.is_set()

    @property
    def producers(self) -> tuple[Producer, ...]:
        """Get the attached producers."""
        return tuple(self._producers)

    def pending(self) -> int:
        """Number of queued events."""
        return len(self._queue)

    def attach(self, producer: Producer) -> Producer:
        """Bind a producer to this bus. Must happen before start()."""
        if self._started:
            raise RuntimeError("cannot attach producers to a started bus")
        if len(self._producers) >= self.MAX_PRODUCERS:
            raise ValueError(f"an event bus takes at most {self.MAX_PRODUCERS} producers")
        producer.bind(self._queue, self._stop_requested)
        self._producers.append(producer)
        return producer

    def start(self) -> None:
        """Start every attached producer."""
        if self._started:
            return
        self._started = True
        for producer in self._producers:
            producer.start()
            logger.debug("Started %s", producer.name)

    def push(self, event: Event) -> None:
        """Queue an event."""
        self._queue.push(event)

    def pop(self, timeout: float | None = None) -> Event:
        """Take the next event, blocking until one is available."""
        return self._queue.pop(timeout=timeout)

    def request_stop(self) -> None:
        """Set the shared stop flag and wake the consumer with a Quit."""
        self._stop_requested.set()
        self._queue.push(Quit())

    def shutdown(self, timeout: float | None = 5.0) -> list[Event]:
        """
        Stop and join every producer.

        Args:
            timeout: How long to wait for each producer thread (seconds).

        Returns:
            Events that were still queued, in service order.
        """
        if self._shut_down:
            return self._queue.drain()
        self._shut_down = True
        self._stop_requested.set()
        for producer in self._producers:
            producer.wake()
        for producer in self._producers:
            producer.join(timeout=timeout)
            if producer.is_running:
                logger.warning("%s did not stop within %s seconds", producer.name, timeout)
        for producer in self._producers:
            producer.close()
        return self._queue.drain()

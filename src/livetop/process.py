"""Per-process state and CPU-rate tracking for livetop."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from livetop.models import ProcessSnapshot, ProcessStat, ProcessStatus
from livetop.source import MetricsError, MetricsSource

logger = logging.getLogger(__name__)

UNKNOWN_USER = "?"


@dataclass(slots=True, frozen=True)
class ProcessSample:
    """Result of one full re-read of a process, not yet applied to its record."""

    stat: ProcessStat
    status: ProcessStatus
    system_ticks: int  # Aggregate CPU total at sample time
    core_count: int
    taken_at: float


def _clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


class ProcessRecord:
    """
    Sampled state of one process.

    The pid, owner and command line are fixed at creation. Everything else is
    re-read at most once per refresh interval, and the CPU utilization is the
    share of system ticks the process consumed between two samples, scaled so
    a process saturating every core reads 100 * core_count.
    """

    def __init__(
        self,
        pid: int,
        user: str,
        command: str,
        sample: ProcessSample,
        source: MetricsSource,
        refresh_interval: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.pid = pid
        self.user = user
        self.command = command
        self._source = source
        self._refresh_interval = refresh_interval
        self._clock = clock
        self.cpu_percent = 0.0  # A single sample cannot yield a rate
        self._store(sample)
        self._last_active_ticks = sample.stat.utime + sample.stat.stime
        self._last_system_ticks = sample.system_ticks
        self._last_sample = sample.taken_at

    @classmethod
    def create(
        cls,
        pid: int,
        source: MetricsSource,
        refresh_interval: float,
        clock: Callable[[], float] = time.monotonic,
        taken_at: float | None = None,
    ) -> "ProcessRecord | None":
        """
        Build a record for pid from a first full sample.

        Returns None for kernel-owned processes (empty command line), which
        the caller must discard. taken_at stamps the first sample; a table
        passes its own refresh time so records share its time base.

        Raises:
            MetricsError: if any read fails; the pid may be retried later.
        """
        command = source.command(pid)
        if not command:
            return None
        try:
            user = source.user_name(source.owner_uid(pid))
        except MetricsError:
            user = UNKNOWN_USER
        sample = cls._read(pid, source, clock() if taken_at is None else taken_at)
        return cls(pid, user, command, sample, source, refresh_interval, clock)

    @staticmethod
    def _read(pid: int, source: MetricsSource, now: float) -> ProcessSample:
        stat = source.process_stat(pid)
        status = source.process_status(pid)
        totals = source.cpu_totals()
        return ProcessSample(
            stat=stat,
            status=status,
            system_ticks=totals[0].total,
            core_count=max(1, len(totals) - 1),
            taken_at=now,
        )

    def _store(self, sample: ProcessSample) -> None:
        self.state = sample.stat.state
        self.nice = sample.stat.nice
        self.priority = sample.stat.priority
        self.utime = sample.stat.utime
        self.stime = sample.stat.stime
        self.threads = sample.status.threads
        self.virtual = sample.status.virtual
        self.resident = sample.status.resident
        self.shared = sample.status.shared

    def is_due(self, now: float | None = None) -> bool:
        """Check whether a refresh interval has passed since the last sample."""
        if now is None:
            now = self._clock()
        return now - self._last_sample >= self._refresh_interval

    def sample(self, now: float | None = None) -> ProcessSample | None:
        """
        Re-read the process if a refresh interval has passed.

        Does not modify the record. Returns None when not due yet or when a
        read fails; in the latter case the record keeps its last-known values
        and is retried on the next cycle.
        """
        if now is None:
            now = self._clock()
        if not self.is_due(now):
            return None
        try:
            return self._read(self.pid, self._source, now)
        except MetricsError as exc:
            logger.debug("Keeping last values for pid %d: %s", self.pid, exc)
            return None

    def apply(self, sample: ProcessSample) -> None:
        """Store a sample and recompute the CPU utilization from the deltas."""
        active_ticks = sample.stat.utime + sample.stat.stime
        delta_active = active_ticks - self._last_active_ticks
        delta_system = sample.system_ticks - self._last_system_ticks
        if delta_system != 0:
            usage = delta_active / delta_system * sample.core_count * 100.0
            self.cpu_percent = _clamp(usage, 0.0, 100.0 * sample.core_count)

        self._store(sample)
        self._last_active_ticks = active_ticks
        self._last_system_ticks = sample.system_ticks
        self._last_sample = sample.taken_at

    def refresh(self) -> bool:
        """Re-sample the process if due. Returns True if the record changed."""
        sample = self.sample()
        if sample is None:
            return False
        self.apply(sample)
        return True

    def snapshot(self) -> ProcessSnapshot:
        """Return an immutable copy of the current state."""
        return ProcessSnapshot(
            pid=self.pid,
            user=self.user,
            command=self.command,
            state=self.state,
            nice=self.nice,
            priority=self.priority,
            threads=self.threads,
            virtual=self.virtual,
            resident=self.resident,
            shared=self.shared,
            cpu_percent=self.cpu_percent,
            cpu_time=(self.utime + self.stime) / self._source.ticks_per_second,
        )

    def __repr__(self) -> str:
        return f"ProcessRecord(pid={self.pid}, cpu_percent={self.cpu_percent:.1f})"

"""Process table reconciliation for livetop."""

import logging
import threading
import time
from collections.abc import Callable
from functools import cmp_to_key

from livetop.models import ProcessSnapshot, TableCounts
from livetop.process import ProcessRecord, ProcessSample
from livetop.source import MetricsError, MetricsSource

logger = logging.getLogger(__name__)

CPU_TIE_TOLERANCE = 1e-3


def _by_cpu_then_pid(left: ProcessSnapshot, right: ProcessSnapshot) -> int:
    if abs(left.cpu_percent - right.cpu_percent) >= CPU_TIE_TOLERANCE:
        return -1 if left.cpu_percent > right.cpu_percent else 1
    return left.pid - right.pid


def sort_snapshots(snapshots: list[ProcessSnapshot]) -> list[ProcessSnapshot]:
    """
    Sort by CPU utilization descending, ties broken by ascending pid.

    Utilizations closer than CPU_TIE_TOLERANCE count as equal. The input is
    ordered by pid first so the result only depends on the values.
    """
    ordered = sorted(snapshots, key=lambda snap: snap.pid)
    return sorted(ordered, key=cmp_to_key(_by_cpu_then_pid))


class ProcessTable:
    """
    Owns the ProcessRecords of every live, user-space process.

    refresh() reconciles the table against the live pid set at most once per
    refresh interval. All metric reads happen before the lock is taken; the
    additions, removals and per-record updates are then applied together, so
    snapshot() never sees a half-updated table.
    """

    def __init__(
        self,
        source: MetricsSource,
        refresh_interval: float = 1.5,
        clock: Callable[[], float] = time.monotonic,
        lock: "threading.Lock | threading.RLock | None" = None,
    ) -> None:
        """
        Initialize the ProcessTable.

        Args:
            source: Where process and system metrics come from.
            refresh_interval: Minimum seconds between two full refreshes.
            clock: Monotonic time source shared with the records.
            lock: Lock guarding the table; pass the dashboard state lock to
                guard both with a single lock.
        """
        self._source = source
        self._refresh_interval = refresh_interval
        self._clock = clock
        self._lock = lock if lock is not None else threading.Lock()
        self._records: dict[int, ProcessRecord] = {}
        self._kernel_pids: set[int] = set()
        self._counts = TableCounts()
        self._last_refresh: float | None = None

    @property
    def refresh_interval(self) -> float:
        """Get the refresh interval in seconds."""
        return self._refresh_interval

    @property
    def counts(self) -> TableCounts:
        """Task, thread and running counts from the last refresh."""
        with self._lock:
            return self._counts

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, pid: object) -> bool:
        with self._lock:
            return pid in self._records

    def pids(self) -> set[int]:
        """Pids currently tracked."""
        with self._lock:
            return set(self._records)

    def is_due(self, now: float | None = None) -> bool:
        """Check whether a full refresh would run now."""
        if self._last_refresh is None:
            return True
        if now is None:
            now = self._clock()
        return now - self._last_refresh >= self._refresh_interval

    def refresh(self) -> bool:
        """
        Reconcile the table with the live process set.

        Returns False when skipped because the last refresh is too recent or
        the pid scan failed.
        """
        now = self._clock()
        if not self.is_due(now):
            return False

        try:
            live_pids = self._source.pids()
        except MetricsError as exc:
            logger.warning("Process scan failed: %s", exc)
            return False

        with self._lock:
            tracked = dict(self._records)

        added = self._create_records(live_pids - tracked.keys(), now)
        samples = self._sample_records(
            (record for pid, record in tracked.items() if pid in live_pids), now
        )
        running = self._read_running_count()

        with self._lock:
            for record, sample in samples:
                record.apply(sample)
            records = {pid: record for pid, record in self._records.items() if pid in live_pids}
            records.update(added)
            self._records = records
            self._kernel_pids &= live_pids
            self._counts = TableCounts(
                tasks=len(records),
                threads=sum(record.threads for record in records.values()),
                running=self._counts.running if running is None else running,
            )
            self._last_refresh = now

        logger.debug(
            "Refreshed table: %d tracked, %d added, %d removed",
            len(records),
            len(added),
            len(tracked.keys() - live_pids),
        )
        return True

    def _create_records(self, new_pids: set[int], now: float) -> dict[int, ProcessRecord]:
        added: dict[int, ProcessRecord] = {}
        for pid in sorted(new_pids - self._kernel_pids):
            try:
                record = ProcessRecord.create(
                    pid, self._source, self._refresh_interval, self._clock, taken_at=now
                )
            except MetricsError as exc:
                # Still in the live set, so it is retried next cycle
                logger.debug("Skipping pid %d this cycle: %s", pid, exc)
                continue
            if record is None:
                self._kernel_pids.add(pid)
                continue
            added[pid] = record
        return added

    def _sample_records(self, records, now: float) -> list[tuple[ProcessRecord, ProcessSample]]:
        samples = []
        for record in records:
            sample = record.sample(now)
            if sample is not None:
                samples.append((record, sample))
        return samples

    def _read_running_count(self) -> int | None:
        try:
            return self._source.running_count()
        except MetricsError as exc:
            logger.debug("Run queue length unavailable: %s", exc)
            return None

    def snapshot(self) -> list[ProcessSnapshot]:
        """Return an independent copy of the table, busiest processes first."""
        with self._lock:
            snapshots = [record.snapshot() for record in self._records.values()]
        return sort_snapshots(snapshots)

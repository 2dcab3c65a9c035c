"""Data models for livetop."""

from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class CpuTotals:
    """Cumulative CPU tick counters for one core or for the aggregate row."""

    user: int = 0
    nice: int = 0
    system: int = 0
    idle: int = 0
    iowait: int = 0
    irq: int = 0
    softirq: int = 0
    steal: int = 0
    guest: int = 0
    guest_nice: int = 0

    @property
    def total(self) -> int:
        """All ticks accounted so far (guest time is already part of user/nice)."""
        return (
            self.user
            + self.nice
            + self.system
            + self.idle
            + self.iowait
            + self.irq
            + self.softirq
            + self.steal
        )


def cpu_busy_ratio(current: CpuTotals, previous: CpuTotals | None = None) -> float:
    """
    Fraction of time a CPU was not idle.

    With a previous sample the ratio covers the interval between the two;
    without one it falls back to the cumulative counters since boot.
    """
    total = current.total
    idle = current.idle
    if previous is not None:
        total -= previous.total
        idle -= previous.idle
    if total <= 0:
        return 0.0
    return min(1.0, max(0.0, 1.0 - idle / total))


@dataclass(slots=True, frozen=True)
class MemoryTotals:
    """System memory counters in bytes."""

    total: int = 0
    free: int = 0
    available: int = 0
    buffers: int = 0
    cached: int = 0
    swap_cached: int = 0
    reclaimable: int = 0
    shared: int = 0
    swap_total: int = 0
    swap_free: int = 0

    @property
    def used(self) -> int:
        """Memory used by programs, excluding buffers and page cache."""
        return max(0, self.total - self.free - self.buffers - self.cached)

    @property
    def cache(self) -> int:
        """Reclaimable page cache shown in the cache segment of the memory bar."""
        return max(0, self.cached + self.reclaimable - self.shared)

    @property
    def swap_used(self) -> int:
        """Swap in use."""
        return max(0, self.swap_total - self.swap_free)

    def ratio(self, amount: int) -> float:
        """Return amount as a fraction of total memory."""
        return amount / self.total if self.total else 0.0

    @property
    def swap_ratio(self) -> float:
        """Swap in use as a fraction of total swap."""
        return self.swap_used / self.swap_total if self.swap_total else 0.0


@dataclass(slots=True, frozen=True)
class ProcessStat:
    """Scheduler fields of a process."""

    state: str  # 'R', 'S', 'Z', 'D', etc.
    utime: int  # Ticks
    stime: int  # Ticks
    nice: int
    priority: int


@dataclass(slots=True, frozen=True)
class ProcessStatus:
    """Memory and thread fields of a process."""

    virtual: int  # Bytes
    resident: int  # Bytes
    shared: int  # Bytes
    threads: int


@dataclass(slots=True, frozen=True)
class ProcessSnapshot:
    """Immutable snapshot of a process state."""

    pid: int
    user: str
    command: str
    state: str
    nice: int
    priority: int
    threads: int
    virtual: int  # Bytes
    resident: int  # Bytes
    shared: int  # Bytes
    cpu_percent: float  # 0.0 - 100.0 * core_count
    cpu_time: float  # Seconds of CPU consumed


@dataclass(slots=True, frozen=True)
class TableCounts:
    """Aggregate counts over the process table."""

    tasks: int = 0
    threads: int = 0
    running: int = 0

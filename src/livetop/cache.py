"""Time-bounded value cache for livetop."""

import time
from collections.abc import Callable
from typing import Generic, TypeVar

T = TypeVar("T")


class TTLCache(Generic[T]):
    """
    Holds a single value that expires a fixed duration after it was written.

    Used to bound expensive system-wide reads to one per refresh interval.
    Not synchronized: each instance is expected to have a single writer.
    """

    def __init__(
        self,
        duration: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the cache.

        Args:
            duration: Seconds a written value stays valid.
            clock: Monotonic time source, injectable for tests.
        """
        self._duration = duration
        self._clock = clock
        self._value: T | None = None
        self._last_update: float | None = None

    @property
    def duration(self) -> float:
        """Get the cache duration in seconds."""
        return self._duration

    def is_valid(self) -> bool:
        """Check whether the cached value is still fresh."""
        if self._last_update is None:
            return False
        return self._clock() - self._last_update < self._duration

    def read(self) -> T | None:
        """Return the cached value, or None when empty or stale."""
        if not self.is_valid():
            return None
        return self._value

    def write(self, value: T) -> None:
        """Store a value and restart the expiry clock."""
        self._value = value
        self._last_update = self._clock()

    def get_or_load(self, loader: Callable[[], T]) -> T:
        """
        Return the cached value, loading and storing a new one if stale.

        Exceptions raised by the loader propagate and leave the cache as it was.
        """
        if self.is_valid():
            return self._value  # type: ignore[return-value]
        value = loader()
        self.write(value)
        return value

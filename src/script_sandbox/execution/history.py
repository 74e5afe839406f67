from __future__ import annotations

import threading
from collections import deque

from .types import ExecutionHistoryEntry, ExecutionResult, ExecutionStats, Outcome


class ExecutionHistory:
    """Fixed-capacity ring buffer of past runs, newest first on read.

    Example:
        ```python
        history = ExecutionHistory(capacity=10)
        history.append(entry)
        latest = history.entries()[0]
        ```
    """

    def __init__(self, capacity: int = 10) -> None:
        """Create an empty history.

        Example:
            ```python
            history = ExecutionHistory(capacity=3)
            ```
        """
        if capacity < 1:
            raise ValueError("history capacity must be at least 1")
        self._lock = threading.Lock()
        self._entries: deque[ExecutionHistoryEntry] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        """Return the maximum number of retained entries.

        Example:
            ```python
            assert history.capacity == 10
            ```
        """
        return self._entries.maxlen or 0

    def append(self, entry: ExecutionHistoryEntry) -> None:
        """Add an entry, evicting the oldest one when full.

        Example:
            ```python
            history.append(entry)
            ```
        """
        with self._lock:
            self._entries.append(entry)

    def entries(self) -> tuple[ExecutionHistoryEntry, ...]:
        """Return a snapshot of the entries, newest first.

        Example:
            ```python
            for entry in history.entries(): ...
            ```
        """
        with self._lock:
            return tuple(reversed(self._entries))

    def clear(self) -> None:
        """Drop every entry.

        Example:
            ```python
            history.clear()
            ```
        """
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        """Return the number of retained entries.

        Example:
            ```python
            assert len(history) <= history.capacity
            ```
        """
        with self._lock:
            return len(self._entries)


class StatsTracker:
    """Cumulative run counters; unlike the history these never evict.

    Example:
        ```python
        tracker = StatsTracker()
        tracker.record(result)
        stats = tracker.snapshot()
        ```
    """

    def __init__(self) -> None:
        """Start with all counters at zero.

        Example:
            ```python
            tracker = StatsTracker()
            ```
        """
        self._lock = threading.Lock()
        self._counts = {outcome: 0 for outcome in Outcome}
        self._total_duration_ms = 0.0

    def record(self, result: ExecutionResult) -> None:
        """Count one settled run.

        Example:
            ```python
            tracker.record(result)
            ```
        """
        with self._lock:
            self._counts[result.outcome] += 1
            self._total_duration_ms += result.duration_ms

    def reset(self) -> None:
        """Zero all counters.

        Example:
            ```python
            tracker.reset()
            ```
        """
        with self._lock:
            self._counts = {outcome: 0 for outcome in Outcome}
            self._total_duration_ms = 0.0

    def snapshot(self) -> ExecutionStats:
        """Return the counters as an immutable `ExecutionStats`.

        Example:
            ```python
            stats = tracker.snapshot()
            ```
        """
        with self._lock:
            total = sum(self._counts.values())
            completed = self._counts[Outcome.COMPLETED]
            return ExecutionStats(
                total_runs=total,
                completed=completed,
                threw=self._counts[Outcome.THREW],
                timed_out=self._counts[Outcome.TIMED_OUT],
                average_duration_ms=self._total_duration_ms / total if total else 0.0,
                success_rate=(completed / total) * 100 if total else 0.0,
            )

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from script_sandbox import ExecutionHistoryEntry, ExecutionResult, Outcome
from script_sandbox.execution.history import ExecutionHistory, StatsTracker


def _result(request_id: str, outcome: Outcome = Outcome.COMPLETED, duration: float = 1.0) -> ExecutionResult:
    return ExecutionResult(
        request_id=request_id,
        output=(),
        thrown_errors=() if outcome is Outcome.COMPLETED else ("x",),
        duration_ms=duration,
        outcome=outcome,
    )


def _entry(request_id: str) -> ExecutionHistoryEntry:
    return ExecutionHistoryEntry(
        result=_result(request_id),
        source_snapshot=f"# {request_id}",
        started_at=datetime.now(timezone.utc),
    )


def test_oldest_entry_is_evicted_when_full() -> None:
    history = ExecutionHistory(capacity=10)
    for index in range(11):
        history.append(_entry(f"run-{index}"))

    entries = history.entries()
    assert len(history) == 10
    assert entries[0].result.request_id == "run-10"
    assert entries[-1].result.request_id == "run-1"
    assert all(entry.result.request_id != "run-0" for entry in entries)


def test_entries_is_a_snapshot() -> None:
    history = ExecutionHistory(capacity=3)
    history.append(_entry("a"))
    snapshot = history.entries()
    history.append(_entry("b"))

    assert [entry.result.request_id for entry in snapshot] == ["a"]


def test_clear_empties_history() -> None:
    history = ExecutionHistory()
    history.append(_entry("a"))
    history.clear()

    assert history.entries() == ()
    assert history.capacity == 10


def test_capacity_must_be_positive() -> None:
    with pytest.raises(ValueError):
        ExecutionHistory(capacity=0)


def test_stats_track_outcomes_and_durations() -> None:
    tracker = StatsTracker()
    tracker.record(_result("a", Outcome.COMPLETED, 2.0))
    tracker.record(_result("b", Outcome.THREW, 4.0))
    tracker.record(_result("c", Outcome.TIMED_OUT, 6.0))
    tracker.record(_result("d", Outcome.COMPLETED, 8.0))

    stats = tracker.snapshot()
    assert stats.total_runs == 4
    assert stats.completed == 2
    assert stats.threw == 1
    assert stats.timed_out == 1
    assert stats.average_duration_ms == 5.0
    assert stats.success_rate == 50.0


def test_empty_stats_and_reset() -> None:
    tracker = StatsTracker()
    assert tracker.snapshot().success_rate == 0.0

    tracker.record(_result("a"))
    tracker.reset()
    assert tracker.snapshot().total_runs == 0

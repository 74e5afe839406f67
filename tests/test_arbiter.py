from __future__ import annotations

import asyncio

import pytest

from script_sandbox import ScriptInterrupted
from script_sandbox.execution.arbiter import DeadlineGuard, TimeoutArbiter


def test_value_wins_before_deadline() -> None:
    async def work():
        await asyncio.sleep(0)
        return 5

    verdict = asyncio.run(TimeoutArbiter(1000).race(work()))

    assert verdict.value == 5
    assert not verdict.timed_out
    assert verdict.error is None


def test_error_is_returned_not_raised() -> None:
    async def work():
        raise ValueError("bad")

    verdict = asyncio.run(TimeoutArbiter(1000).race(work()))

    assert isinstance(verdict.error, ValueError)


def test_deadline_wins_over_slow_await() -> None:
    cancelled: list[bool] = []

    async def work():
        try:
            await asyncio.sleep(5)
        except asyncio.CancelledError:
            cancelled.append(True)
            raise

    verdict = asyncio.run(TimeoutArbiter(30).race(work()))

    assert verdict.timed_out
    assert cancelled == [True]


def test_cancel_before_race_reports_stop() -> None:
    arbiter = TimeoutArbiter(1000)
    arbiter.cancel()

    async def work():
        await asyncio.sleep(1)

    verdict = asyncio.run(arbiter.race(work()))

    assert arbiter.stopped
    assert verdict.stopped


def test_cancel_during_race_reports_stop() -> None:
    arbiter = TimeoutArbiter(5000)

    async def scenario():
        asyncio.get_running_loop().call_later(0.02, arbiter.cancel)
        return await arbiter.race(asyncio.sleep(2))

    verdict = asyncio.run(scenario())

    assert verdict.stopped
    assert not verdict.timed_out


def test_guard_interrupts_only_traced_filename() -> None:
    namespace: dict = {}
    exec(compile("def spin():\n    while True:\n        pass\n", "<guard-test>", "exec"), namespace)

    with DeadlineGuard("<guard-test>", timeout_ms=20) as guard:
        with pytest.raises(ScriptInterrupted) as exc:
            namespace["spin"]()

    assert exc.value.reason == "timeout"
    assert guard.fired == "timeout"


def test_guard_stop_request_interrupts_next_call() -> None:
    namespace: dict = {}
    exec(compile("def step():\n    return 1\n", "<guard-stop>", "exec"), namespace)

    with DeadlineGuard("<guard-stop>", timeout_ms=10_000) as guard:
        guard.request_stop()
        with pytest.raises(ScriptInterrupted):
            namespace["step"]()

    assert guard.fired == "stopped"


def test_guard_restores_previous_trace_function() -> None:
    import sys

    before = sys.gettrace()
    with DeadlineGuard("<unused>", timeout_ms=100):
        pass

    assert sys.gettrace() is before

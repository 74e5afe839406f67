from __future__ import annotations

import asyncio
import math

import pytest

from script_sandbox.execution.timers import TimerRegistry, clamp_delay


def _registry(errors: list[BaseException] | None = None) -> TimerRegistry:
    sink = errors if errors is not None else []
    return TimerRegistry(cap_ms=5000, on_error=sink.append)


@pytest.mark.parametrize(
    ("requested", "effective"),
    [(5000, 5000), (5001, 5000), (10_000, 5000), (0, 0), (-20, 0), (12.7, 12)],
)
def test_delays_are_clamped_to_cap(requested: float, effective: int) -> None:
    assert _registry().effective_delay(requested) == effective


def test_clamp_rejects_non_numbers() -> None:
    with pytest.raises(TypeError):
        clamp_delay("10", 5000)
    with pytest.raises(TypeError):
        clamp_delay(True, 5000)
    with pytest.raises(ValueError):
        clamp_delay(math.nan, 5000)


def test_timeouts_fire_in_delay_order_and_drain_waits() -> None:
    fired: list[str] = []

    async def scenario():
        timers = _registry()
        timers.set_timeout(fired.append, 20, "slow")
        timers.set_timeout(fired.append, 0, "fast")
        assert timers.pending() == 2
        await timers.drain()
        return timers.pending()

    assert asyncio.run(scenario()) == 0
    assert fired == ["fast", "slow"]


def test_async_callback_is_awaited_by_drain() -> None:
    fired: list[str] = []

    async def later() -> None:
        await asyncio.sleep(0.01)
        fired.append("async")

    async def scenario():
        timers = _registry()
        timers.set_timeout(later, 0)
        await timers.drain()

    asyncio.run(scenario())
    assert fired == ["async"]


def test_callback_errors_go_to_handler() -> None:
    errors: list[BaseException] = []

    def boom() -> None:
        raise ValueError("bad timer")

    async def scenario():
        timers = _registry(errors)
        timers.set_timeout(boom, 0)
        await timers.drain()

    asyncio.run(scenario())
    assert [str(error) for error in errors] == ["bad timer"]


def test_interval_repeats_until_cleared_and_does_not_block_drain() -> None:
    ticks: list[int] = []

    async def scenario():
        timers = _registry()
        timer_id = timers.set_interval(lambda: ticks.append(1), 1)
        await timers.drain()
        await asyncio.sleep(0.05)
        timers.clear(timer_id)
        count = len(ticks)
        await asyncio.sleep(0.02)
        return count

    count = asyncio.run(scenario())
    assert count >= 2
    assert len(ticks) == count


def test_cancel_all_stops_pending_and_refuses_new_timers() -> None:
    fired: list[str] = []

    async def scenario():
        timers = _registry()
        timers.set_timeout(fired.append, 10, "never")
        timers.cancel_all()
        await asyncio.sleep(0.03)
        with pytest.raises(RuntimeError):
            timers.set_timeout(fired.append, 0, "late")

    asyncio.run(scenario())
    assert fired == []


def test_clear_ignores_unknown_ids() -> None:
    async def scenario():
        timers = _registry()
        timers.clear(999)
        timers.clear("nope")

    asyncio.run(scenario())


def test_non_callable_is_rejected() -> None:
    async def scenario():
        with pytest.raises(TypeError):
            _registry().set_timeout(42, 0)

    asyncio.run(scenario())

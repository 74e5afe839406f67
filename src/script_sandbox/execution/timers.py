from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)

_MIN_INTERVAL_MS = 1


def clamp_delay(delay_ms: Any, cap_ms: int) -> int:
    """Clamp a requested timer delay into `[0, cap_ms]`.

    Example:
        ```python
        assert clamp_delay(10_000, cap_ms=5000) == 5000
        ```
    """
    if isinstance(delay_ms, bool) or not isinstance(delay_ms, (int, float)):
        raise TypeError(f"delay must be a number of milliseconds, not {type(delay_ms).__name__}")
    if delay_ms != delay_ms:
        raise ValueError("delay must not be NaN")
    return int(max(0, min(delay_ms, cap_ms)))


@dataclass(slots=True)
class _Timer:
    """Bookkeeping for one scheduled callback.

    Example:
        ```python
        timer = _Timer(timer_id=1, callback=print, args=(), delay_ms=10, repeat=False)
        ```
    """

    timer_id: int
    callback: Callable[..., Any]
    args: tuple[Any, ...]
    delay_ms: int
    repeat: bool
    handle: asyncio.TimerHandle | None = None
    tasks: set[asyncio.Task[Any]] = field(default_factory=set)


class TimerRegistry:
    """Per-run `set_timeout`/`set_interval` implementation on the running event loop.

    Every delay is clamped to `cap_ms` so nothing a script schedules can be
    pushed past the run's own deadline. Errors raised by callbacks are handed
    to `on_error`; `cancel_all()` drops everything still pending when the run
    settles.

    Example:
        ```python
        timers = TimerRegistry(cap_ms=5000, on_error=errors.append)
        timer_id = timers.set_timeout(callback, 100)
        ```
    """

    def __init__(self, *, cap_ms: int, on_error: Callable[[BaseException], None]) -> None:
        """Create an empty registry.

        Example:
            ```python
            timers = TimerRegistry(cap_ms=5000, on_error=lambda exc: None)
            ```
        """
        self._cap_ms = cap_ms
        self._on_error = on_error
        self._ids = itertools.count(1)
        self._timers: dict[int, _Timer] = {}
        self._idle = asyncio.Event()
        self._idle.set()
        self._closed = False

    @property
    def cap_ms(self) -> int:
        """Return the delay cap in milliseconds.

        Example:
            ```python
            assert timers.cap_ms == 5000
            ```
        """
        return self._cap_ms

    def effective_delay(self, delay_ms: Any) -> int:
        """Return the delay a timer requested with `delay_ms` would actually use.

        Example:
            ```python
            assert timers.effective_delay(5001) == 5000
            ```
        """
        return clamp_delay(delay_ms, self._cap_ms)

    def set_timeout(self, callback: Callable[..., Any], delay_ms: Any = 0, *args: Any) -> int:
        """Schedule `callback(*args)` once after the clamped delay.

        Example:
            ```python
            timer_id = timers.set_timeout(lambda: log("later"), 50)
            ```
        """
        return self._schedule(callback, delay_ms, args, repeat=False)

    def set_interval(self, callback: Callable[..., Any], delay_ms: Any = 0, *args: Any) -> int:
        """Schedule `callback(*args)` repeatedly every clamped delay (at least 1 ms).

        Example:
            ```python
            timer_id = timers.set_interval(tick, 100)
            ```
        """
        return self._schedule(callback, delay_ms, args, repeat=True)

    def clear(self, timer_id: Any) -> None:
        """Cancel a pending timeout or interval; unknown ids are ignored.

        Example:
            ```python
            timers.clear(timer_id)
            ```
        """
        timer = self._timers.pop(timer_id, None) if isinstance(timer_id, int) else None
        if timer is None:
            return
        if timer.handle is not None:
            timer.handle.cancel()
        for task in timer.tasks:
            task.cancel()
        self._update_idle()

    async def sleep(self, delay_ms: Any) -> None:
        """Suspend the calling script for the clamped delay.

        Example:
            ```python
            await timers.sleep(100)
            ```
        """
        await asyncio.sleep(self.effective_delay(delay_ms) / 1000)

    def pending(self) -> int:
        """Return how many one-shot timers are still waiting or running.

        Example:
            ```python
            assert timers.pending() == 0
            ```
        """
        return sum(1 for timer in self._timers.values() if not timer.repeat or timer.tasks)

    async def drain(self) -> None:
        """Wait until no one-shot timer is pending; intervals do not keep the run alive.

        Example:
            ```python
            await timers.drain()
            ```
        """
        while self.pending():
            self._idle.clear()
            await self._idle.wait()

    def cancel_all(self) -> None:
        """Cancel every pending timer and refuse new ones.

        Example:
            ```python
            timers.cancel_all()
            ```
        """
        self._closed = True
        for timer_id in list(self._timers):
            self.clear(timer_id)
        self._idle.set()

    def _schedule(
        self,
        callback: Callable[..., Any],
        delay_ms: Any,
        args: tuple[Any, ...],
        *,
        repeat: bool,
    ) -> int:
        """Register and arm a timer, returning its id.

        Example:
            ```python
            timer_id = timers._schedule(callback, 10, (), repeat=False)
            ```
        """
        if not callable(callback):
            raise TypeError("timer callback must be callable")
        if self._closed:
            raise RuntimeError("cannot schedule timers after the run has settled")
        delay = self.effective_delay(delay_ms)
        if repeat:
            delay = max(delay, _MIN_INTERVAL_MS)
        timer = _Timer(
            timer_id=next(self._ids),
            callback=callback,
            args=args,
            delay_ms=delay,
            repeat=repeat,
        )
        self._timers[timer.timer_id] = timer
        self._arm(timer)
        logger.debug("Scheduled timer %s (delay=%sms, repeat=%s)", timer.timer_id, delay, repeat)
        return timer.timer_id

    def _arm(self, timer: _Timer) -> None:
        """Ask the running loop to fire `timer` after its delay.

        Example:
            ```python
            timers._arm(timer)
            ```
        """
        loop = asyncio.get_running_loop()
        timer.handle = loop.call_later(timer.delay_ms / 1000, self._fire, timer.timer_id)

    def _fire(self, timer_id: int) -> None:
        """Run a due timer's callback and re-arm intervals.

        Example:
            ```python
            timers._fire(timer_id)
            ```
        """
        timer = self._timers.get(timer_id)
        if timer is None:
            return
        timer.handle = None
        try:
            outcome = timer.callback(*timer.args)
            if inspect.isawaitable(outcome):
                task = asyncio.ensure_future(outcome)
                timer.tasks.add(task)
                task.add_done_callback(lambda done: self._task_done(timer_id, done))
        except BaseException as exc:
            self._on_error(exc)
        if timer.repeat and timer_id in self._timers:
            self._arm(timer)
        elif not timer.tasks:
            self._timers.pop(timer_id, None)
        self._update_idle()

    def _task_done(self, timer_id: int, task: asyncio.Task[Any]) -> None:
        """Collect the result of an async timer callback.

        Example:
            ```python
            timers._task_done(timer_id, task)
            ```
        """
        timer = self._timers.get(timer_id)
        if timer is not None:
            timer.tasks.discard(task)
            if not timer.repeat and not timer.tasks:
                self._timers.pop(timer_id, None)
        if not task.cancelled() and task.exception() is not None:
            self._on_error(task.exception())
        self._update_idle()

    def _update_idle(self) -> None:
        """Wake `drain()` waiters once nothing one-shot is pending.

        Example:
            ```python
            timers._update_idle()
            ```
        """
        if not self.pending():
            self._idle.set()

"""Deadline enforcement for sandboxed runs.

Two mechanisms cooperate:

* `TimeoutArbiter` races the run's task against a wall-clock deadline on the
  event loop. It can only win while the script is suspended at an `await`.
* `DeadlineGuard` installs a line-level trace hook limited to code compiled
  from the script itself and raises `ScriptInterrupted` inside script frames
  once the deadline passes, which bounds synchronous busy loops that never
  yield. Long-running native calls are still not interruptible.
"""

from __future__ import annotations

import asyncio
import sys
import threading
import time
from dataclasses import dataclass
from types import FrameType
from typing import Any, Callable, Coroutine

from ..exceptions import ScriptInterrupted

_CANCEL_GRACE_SECONDS = 0.5


@dataclass(frozen=True, slots=True)
class ArbiterVerdict:
    """What settled a race first.

    Exactly one of `timed_out`, `stopped`, an `error`, or a plain value wins.

    Example:
        ```python
        verdict = ArbiterVerdict(value=3)
        ```
    """

    value: Any = None
    error: BaseException | None = None
    timed_out: bool = False
    stopped: bool = False


class DeadlineGuard:
    """Trace hook that interrupts script frames after a deadline or a stop request.

    Only frames whose code was compiled under `filename` are traced, so host
    code sharing the event loop runs untouched.

    Example:
        ```python
        guard = DeadlineGuard("<sandbox:abc>", timeout_ms=100)
        with guard:
            await arbiter.race(main())
        ```
    """

    def __init__(self, filename: str, *, timeout_ms: int) -> None:
        """Prepare a guard; the deadline starts counting on `__enter__`.

        Example:
            ```python
            guard = DeadlineGuard("<sandbox:abc>", timeout_ms=5000)
            ```
        """
        self._filename = filename
        self._timeout_s = timeout_ms / 1000
        self._deadline = float("inf")
        self._stop = threading.Event()
        self._previous: Callable[..., Any] | None = None
        self.fired: str | None = None

    def __enter__(self) -> "DeadlineGuard":
        """Start the deadline clock and install the trace hook.

        Example:
            ```python
            with DeadlineGuard("<sandbox:abc>", timeout_ms=100): ...
            ```
        """
        self._deadline = time.monotonic() + self._timeout_s
        self._previous = sys.gettrace()
        sys.settrace(self._trace_call)
        return self

    def __exit__(self, *exc_info: object) -> None:
        """Restore whatever trace function was active before.

        Example:
            ```python
            guard.__exit__(None, None, None)
            ```
        """
        sys.settrace(self._previous)

    def request_stop(self) -> None:
        """Ask the guard to interrupt the next script line; safe from any thread.

        Example:
            ```python
            guard.request_stop()
            ```
        """
        self._stop.set()

    def _check(self) -> None:
        """Raise `ScriptInterrupted` if the run must not continue.

        Example:
            ```python
            guard._check()
            ```
        """
        if self._stop.is_set():
            self.fired = "stopped"
            raise ScriptInterrupted("stopped")
        if time.monotonic() >= self._deadline:
            self.fired = "timeout"
            raise ScriptInterrupted("timeout")

    def _trace_call(self, frame: FrameType, event: str, arg: Any) -> Callable[..., Any] | None:
        """Global trace function: opt in to script frames only.

        Example:
            ```python
            sys.settrace(guard._trace_call)
            ```
        """
        if frame.f_code.co_filename != self._filename:
            return None
        self._check()
        return self._trace_line

    def _trace_line(self, frame: FrameType, event: str, arg: Any) -> Callable[..., Any] | None:
        """Local trace function: check the deadline on every script line.

        Example:
            ```python
            frame.f_trace = guard._trace_line
            ```
        """
        if event == "line":
            self._check()
        return self._trace_line


class TimeoutArbiter:
    """Race a run's coroutine against its deadline and an optional caller stop.

    Example:
        ```python
        arbiter = TimeoutArbiter(timeout_ms=5000)
        verdict = await arbiter.race(main())
        ```
    """

    def __init__(self, timeout_ms: int, guard: DeadlineGuard | None = None) -> None:
        """Create an arbiter for one run.

        Example:
            ```python
            arbiter = TimeoutArbiter(timeout_ms=100, guard=guard)
            ```
        """
        self._timeout_s = timeout_ms / 1000
        self._guard = guard
        self._task: asyncio.Task[Any] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stopped = threading.Event()

    @property
    def stopped(self) -> bool:
        """Return True once `cancel()` has been called.

        Example:
            ```python
            assert not arbiter.stopped
            ```
        """
        return self._stopped.is_set()

    def cancel(self) -> None:
        """Stop the race early; best effort and safe to call from any thread.

        The pending deadline wait is abandoned right away. The script task is
        cancelled at its next `await`, and the guard interrupts its next line.

        Example:
            ```python
            arbiter.cancel()
            ```
        """
        self._stopped.set()
        if self._guard is not None:
            self._guard.request_stop()
        if self._task is not None and self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._task.cancel)

    async def race(self, coro: Coroutine[Any, Any, Any]) -> ArbiterVerdict:
        """Run `coro` and return whichever of completion, deadline or stop came first.

        Example:
            ```python
            verdict = await arbiter.race(main())
            ```
        """
        self._loop = asyncio.get_running_loop()
        task = asyncio.ensure_future(coro)
        self._task = task
        if self._stopped.is_set():
            task.cancel()
        try:
            done, _ = await asyncio.wait({task}, timeout=self._timeout_s)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task not in done:
            task.cancel()
            await asyncio.wait({task}, timeout=_CANCEL_GRACE_SECONDS)
            if task.done() and not task.cancelled():
                task.exception()
            if self._stopped.is_set():
                return ArbiterVerdict(stopped=True)
            return ArbiterVerdict(timed_out=True)
        return self._verdict_for(task)

    def _verdict_for(self, task: asyncio.Task[Any]) -> ArbiterVerdict:
        """Translate a finished task into a verdict.

        Example:
            ```python
            verdict = arbiter._verdict_for(task)
            ```
        """
        if task.cancelled():
            if self._stopped.is_set():
                return ArbiterVerdict(stopped=True)
            return ArbiterVerdict(error=asyncio.CancelledError())
        error = task.exception()
        if isinstance(error, ScriptInterrupted):
            if error.reason == "stopped":
                return ArbiterVerdict(stopped=True)
            return ArbiterVerdict(timed_out=True)
        if error is not None:
            return ArbiterVerdict(error=error)
        return ArbiterVerdict(value=task.result())

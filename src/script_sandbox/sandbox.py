from __future__ import annotations

import asyncio
import logging
import threading
import time
import traceback
from datetime import datetime, timezone
from typing import Any, Callable, Coroutine

from .exceptions import InterceptorBusyError, ScriptInterrupted
from .execution.aggregator import aggregate
from .execution.arbiter import DeadlineGuard, TimeoutArbiter
from .execution.bindings import build_bindings
from .execution.capabilities import SandboxCapabilities, sandbox_capabilities
from .execution.compiler import (
    CompiledScript,
    compile_script,
    format_syntax_error,
    sandbox_filename,
)
from .execution.history import ExecutionHistory, StatsTracker
from .execution.interceptor import GLOBAL_OUTPUT_INTERCEPTOR, CaptureHandle, OutputInterceptor
from .execution.render import Renderer
from .execution.state import ExecutionState, RunStateMachine
from .execution.timers import TimerRegistry
from .execution.types import (
    ErrorKind,
    ExecutionHistoryEntry,
    ExecutionRequest,
    ExecutionResult,
    ExecutionStats,
    Outcome,
    new_request_id,
)
from .policy import SandboxPolicy

logger = logging.getLogger(__name__)


def _resolve_policy(policy: SandboxPolicy | None, policy_file: str | None) -> SandboxPolicy:
    """Resolve the effective policy object for a sandbox.

    Example:
        ```python
        policy = _resolve_policy(None, "/tmp/policy.toml")
        ```
    """
    if policy is not None and policy_file is not None:
        raise ValueError("Provide either 'policy' or 'policy_file', not both")
    if policy is None and policy_file is not None:
        return SandboxPolicy.from_file(policy_file)
    if policy is None:
        return SandboxPolicy()
    if policy.config_path is not None:
        return SandboxPolicy.from_file(policy.config_path)
    return policy


def _elapsed_ms(start: float) -> float:
    """Return milliseconds since a `time.perf_counter()` reading.

    Example:
        ```python
        duration = _elapsed_ms(start)
        ```
    """
    return (time.perf_counter() - start) * 1000


def _error_text(exc: BaseException) -> str:
    """Return the display text of a raised exception: its message, else its class name.

    Example:
        ```python
        assert _error_text(ValueError("boom")) == "boom"
        ```
    """
    return str(exc) or type(exc).__name__


def _script_traceback(exc: BaseException, filename: str) -> str:
    """Format `exc` keeping only frames that belong to the script.

    Example:
        ```python
        text = _script_traceback(exc, "<sandbox:abc>")
        ```
    """
    root = traceback.TracebackException.from_exception(exc)
    pending = [root]
    seen: set[int] = set()
    while pending:
        current = pending.pop()
        if id(current) in seen:
            continue
        seen.add(id(current))
        current.stack = traceback.StackSummary.from_list(
            [frame for frame in current.stack if frame.filename == filename]
        )
        pending.extend(chained for chained in (current.__cause__, current.__context__) if chained)
    return "".join(root.format())


class Sandbox:
    """Run untrusted script text against an allow-listed scope and keep a bounded history.

    Runs are serialized on the output interceptor; a second `run()` issued
    while one is in flight waits for it instead of sharing its output buffer.

    Example:
        ```python
        sandbox = Sandbox()
        result = await sandbox.run("log(1); log(2); return 3")
        ```
    """

    def __init__(
        self,
        policy: SandboxPolicy | None = None,
        *,
        policy_file: str | None = None,
        interceptor: OutputInterceptor | None = None,
    ) -> None:
        """Create a sandbox with its own history and statistics.

        Example:
            ```python
            sandbox = Sandbox(SandboxPolicy(timeout_ms=1000))
            ```
        """
        self._policy = _resolve_policy(policy, policy_file)
        self._interceptor = interceptor or GLOBAL_OUTPUT_INTERCEPTOR
        self._renderer = Renderer.from_policy(self._policy)
        self._history = ExecutionHistory(capacity=self._policy.history_capacity)
        self._stats = StatsTracker()
        self._active_lock = threading.Lock()
        self._active_arbiter: TimeoutArbiter | None = None
        self._active_machine: RunStateMachine | None = None

    @property
    def policy(self) -> SandboxPolicy:
        """Return the effective policy.

        Example:
            ```python
            timeout = sandbox.policy.timeout_ms
            ```
        """
        return self._policy

    @property
    def capabilities(self) -> SandboxCapabilities:
        """Return what this sandbox can and cannot guarantee.

        Example:
            ```python
            assert not sandbox.capabilities.guaranteed_stop
            ```
        """
        return sandbox_capabilities()

    @property
    def current_state(self) -> ExecutionState | None:
        """Return the state of the run currently holding the interceptor, if any.

        Example:
            ```python
            state = sandbox.current_state
            ```
        """
        with self._active_lock:
            machine = self._active_machine
        return machine.state if machine is not None else None

    async def run(self, source: str, *, timeout_ms: int | None = None) -> ExecutionResult:
        """Execute `source` and return its result; script faults never raise.

        Example:
            ```python
            result = await sandbox.run("raise Exception('boom')")
            assert result.thrown_errors == ("boom",)
            ```
        """
        started_at = datetime.now(timezone.utc)
        try:
            request = ExecutionRequest(
                source=source,
                timeout_ms=self._policy.timeout_ms if timeout_ms is None else timeout_ms,
            )
        except ValueError as exc:
            logger.warning("Rejected run request: %s", exc)
            return aggregate(
                request_id=new_request_id(),
                captured=(),
                thrown=[str(exc)],
                outcome=Outcome.THREW,
                elapsed_ms=0.0,
                error_kind=ErrorKind.REJECTED,
            )

        machine = RunStateMachine(request.request_id)
        try:
            result = await self._execute(request, machine)
        except Exception as exc:
            logger.exception("Sandbox failed internally while running request %s", request.request_id)
            result = aggregate(
                request_id=request.request_id,
                captured=(),
                thrown=[f"Internal sandbox error: {exc}"],
                outcome=Outcome.THREW,
                elapsed_ms=0.0,
                error_kind=ErrorKind.AGGREGATION_FAILURE,
            )
        self._record(request, result, started_at)
        return result

    def stop(self) -> bool:
        """Ask the running script to stop; best effort and safe from any thread.

        Returns False when nothing is running. A script stuck in a long native
        call keeps running until that call returns.

        Example:
            ```python
            sandbox.stop()
            ```
        """
        with self._active_lock:
            arbiter = self._active_arbiter
        if arbiter is None:
            return False
        logger.info("Stop requested for the running script")
        arbiter.cancel()
        return True

    def get_history(self) -> tuple[ExecutionHistoryEntry, ...]:
        """Return recent runs, newest first.

        Example:
            ```python
            latest = sandbox.get_history()[0]
            ```
        """
        return self._history.entries()

    def clear_history(self) -> None:
        """Forget recent runs; cumulative statistics are kept.

        Example:
            ```python
            sandbox.clear_history()
            ```
        """
        self._history.clear()

    def stats(self) -> ExecutionStats:
        """Return cumulative run statistics.

        Example:
            ```python
            rate = sandbox.stats().success_rate
            ```
        """
        return self._stats.snapshot()

    async def _execute(self, request: ExecutionRequest, machine: RunStateMachine) -> ExecutionResult:
        """Compile, wait for the interceptor, then run.

        Example:
            ```python
            result = await sandbox._execute(request, RunStateMachine(request.request_id))
            ```
        """
        filename = sandbox_filename(request.request_id)
        compile_start = time.perf_counter()
        machine.advance(ExecutionState.COMPILING)
        try:
            compiled = compile_script(request.source, filename)
        except SyntaxError as exc:
            machine.advance(ExecutionState.COMPILE_FAILED)
            return aggregate(
                request_id=request.request_id,
                captured=(),
                thrown=[format_syntax_error(exc)],
                outcome=Outcome.THREW,
                elapsed_ms=_elapsed_ms(compile_start),
                error_kind=ErrorKind.COMPILE_ERROR,
            )
        machine.advance(ExecutionState.COMPILED)

        try:
            handle = await self._interceptor.acquire_when_free(
                timeout_seconds=self._policy.queue_timeout_ms / 1000,
                max_lines=self._policy.max_output_lines,
            )
        except InterceptorBusyError as exc:
            machine.advance(ExecutionState.THREW)
            logger.warning("Request %s rejected: %s", request.request_id, exc)
            return aggregate(
                request_id=request.request_id,
                captured=(),
                thrown=[str(exc)],
                outcome=Outcome.THREW,
                elapsed_ms=0.0,
                error_kind=ErrorKind.REJECTED,
            )
        try:
            return await self._run_compiled(request, compiled, handle, machine)
        finally:
            handle.release()

    async def _run_compiled(
        self,
        request: ExecutionRequest,
        compiled: CompiledScript,
        handle: CaptureHandle,
        machine: RunStateMachine,
    ) -> ExecutionResult:
        """Run compiled code inside the acquired capture window and aggregate the outcome.

        Example:
            ```python
            result = await sandbox._run_compiled(request, compiled, handle, machine)
            ```
        """
        errors: list[str] = []
        tracebacks: list[str] = []

        def record_error(exc: BaseException) -> None:
            """Collect an error raised by the script body or a timer callback.

            Example:
                ```python
                record_error(ValueError("boom"))
                ```
            """
            if isinstance(exc, ScriptInterrupted):
                return
            errors.append(_error_text(exc))
            tracebacks.append(_script_traceback(exc, compiled.filename))

        timers = TimerRegistry(cap_ms=self._policy.timer_cap_ms, on_error=record_error)
        bindings = build_bindings(
            self._policy,
            interceptor=self._interceptor,
            timers=timers,
            renderer=self._renderer,
        )
        main = compiled.bind(bindings.namespace())
        guard = DeadlineGuard(compiled.filename, timeout_ms=request.timeout_ms)
        arbiter = TimeoutArbiter(request.timeout_ms, guard=guard)

        compiled.register_source()
        machine.advance(ExecutionState.RUNNING)
        self._set_active(arbiter, machine)
        start = time.perf_counter()
        return_value_rendered: str | None = None
        try:
            with guard:
                verdict = await arbiter.race(self._invoke(main, timers, record_error))
                if verdict.value is not None:
                    return_value_rendered = self._render_return_value(verdict.value)
        finally:
            elapsed = _elapsed_ms(start)
            timers.cancel_all()
            captured = handle.release()
            compiled.forget_source()
            self._set_active(None, None)

        if verdict.error is not None:
            record_error(verdict.error)
        timed_out = verdict.timed_out or guard.fired == "timeout"
        stopped = verdict.stopped or guard.fired == "stopped"
        thrown = list(errors)
        error_kind: ErrorKind | None = None
        if stopped:
            outcome = Outcome.THREW
            error_kind = ErrorKind.CANCELLED
            thrown.append("Execution stopped before completion")
            machine.advance(ExecutionState.THREW)
        elif timed_out:
            outcome = Outcome.TIMED_OUT
            error_kind = ErrorKind.TIMEOUT
            thrown.append(f"Execution timed out after {request.timeout_ms} ms")
            machine.advance(ExecutionState.TIMED_OUT)
            logger.warning("Request %s timed out after %s ms", request.request_id, request.timeout_ms)
        elif thrown:
            outcome = Outcome.THREW
            error_kind = ErrorKind.RUNTIME_THROW
            machine.advance(ExecutionState.THREW)
        else:
            outcome = Outcome.COMPLETED
            machine.advance(ExecutionState.COMPLETED)

        logger.info(
            "Request %s settled as %s in %.1f ms (%d output lines)",
            request.request_id,
            outcome.value,
            elapsed,
            len(captured),
        )
        return aggregate(
            request_id=request.request_id,
            captured=captured,
            thrown=thrown,
            outcome=outcome,
            elapsed_ms=elapsed,
            return_value_rendered=None if thrown else return_value_rendered,
            error_kind=error_kind,
            traceback="\n".join(tracebacks) or None,
            truncated=handle.truncated,
            abandoned=stopped,
        )

    async def _invoke(
        self,
        main: Callable[[], Coroutine[Any, Any, Any]],
        timers: TimerRegistry,
        record_error: Callable[[BaseException], None],
    ) -> Any:
        """Await the script body, then let pending one-shot timers fire.

        An exception from the body ends the run at once; no later timer runs.

        Example:
            ```python
            value = await sandbox._invoke(main, timers, record_error)
            ```
        """
        try:
            value = await main()
        except BaseException as exc:
            timers.cancel_all()
            if isinstance(exc, (ScriptInterrupted, asyncio.CancelledError)):
                raise
            record_error(exc)
            return None
        await timers.drain()
        return value

    def _render_return_value(self, value: Any) -> str | None:
        """Render the script's return value, tolerating an interrupted `__repr__`.

        Example:
            ```python
            text = sandbox._render_return_value(3)
            ```
        """
        try:
            return self._renderer.render(value)
        except ScriptInterrupted:
            return None

    def _set_active(self, arbiter: TimeoutArbiter | None, machine: RunStateMachine | None) -> None:
        """Publish or clear the run that `stop()` and `current_state` refer to.

        Example:
            ```python
            sandbox._set_active(arbiter, machine)
            ```
        """
        with self._active_lock:
            self._active_arbiter = arbiter
            self._active_machine = machine

    def _record(
        self,
        request: ExecutionRequest,
        result: ExecutionResult,
        started_at: datetime,
    ) -> None:
        """Append a settled run to the history and statistics.

        Example:
            ```python
            sandbox._record(request, result, datetime.now(timezone.utc))
            ```
        """
        self._history.append(
            ExecutionHistoryEntry(
                result=result,
                source_snapshot=request.source,
                started_at=started_at,
            )
        )
        self._stats.record(result)


def run_script(
    source: str,
    *,
    timeout_ms: int | None = None,
    policy: SandboxPolicy | None = None,
    policy_file: str | None = None,
) -> ExecutionResult:
    """Run one script synchronously in a fresh sandbox.

    Example:
        ```python
        from script_sandbox import run_script
        result = run_script("log('hi')")
        ```
    """
    sandbox = Sandbox(policy, policy_file=policy_file)
    return asyncio.run(sandbox.run(source, timeout_ms=timeout_ms))

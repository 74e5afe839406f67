from __future__ import annotations

import asyncio
import logging
import threading
import time
from contextlib import contextmanager
from typing import Iterator

from ..exceptions import InterceptorBusyError
from .types import OutputLevel, OutputLine

logger = logging.getLogger(__name__)

_POLL_INTERVAL_SECONDS = 0.01


class CaptureHandle:
    """Buffer owned by one acquisition of the output interceptor.

    Example:
        ```python
        handle = interceptor.acquire()
        lines = handle.release()
        ```
    """

    def __init__(self, interceptor: "OutputInterceptor", max_lines: int | None) -> None:
        """Create an empty capture buffer bound to its interceptor.

        Example:
            ```python
            handle = CaptureHandle(interceptor, max_lines=100)
            ```
        """
        self._interceptor = interceptor
        self._max_lines = max_lines
        self._lines: list[OutputLine] = []
        self._dropped = 0
        self._released = False
        self._captured: tuple[OutputLine, ...] = ()

    @property
    def released(self) -> bool:
        """Return True once `release()` has run.

        Example:
            ```python
            assert not handle.released
            ```
        """
        return self._released

    @property
    def truncated(self) -> bool:
        """Return True when lines were dropped because of the line cap.

        Example:
            ```python
            if handle.truncated: ...
            ```
        """
        return self._dropped > 0

    @property
    def dropped(self) -> int:
        """Return how many lines were dropped past the cap.

        Example:
            ```python
            count = handle.dropped
            ```
        """
        return self._dropped

    def _append(self, level: OutputLevel, rendered: str) -> OutputLine | None:
        """Append one line; called with the interceptor lock held.

        Example:
            ```python
            handle._append(OutputLevel.LOG, "hello")
            ```
        """
        if self._max_lines is not None and len(self._lines) >= self._max_lines:
            self._dropped += 1
            return None
        line = OutputLine(level=level, rendered=rendered, sequence=len(self._lines))
        self._lines.append(line)
        return line

    def release(self) -> tuple[OutputLine, ...]:
        """Stop capturing and return the captured lines; repeated calls are no-ops.

        Example:
            ```python
            lines = handle.release()
            assert handle.release() == lines
            ```
        """
        if not self._released:
            self._interceptor._release(self)
            self._captured = tuple(self._lines)
            self._released = True
        return self._captured


class OutputInterceptor:
    """Process-wide redirect target for the sandbox's diagnostic functions.

    At most one `CaptureHandle` is active at a time. Writes made while no
    handle is active are dropped.

    Example:
        ```python
        interceptor = OutputInterceptor()
        with interceptor.capture() as handle:
            interceptor.write(OutputLevel.LOG, "hi")
        ```
    """

    def __init__(self) -> None:
        """Initialize an idle interceptor.

        Example:
            ```python
            interceptor = OutputInterceptor()
            ```
        """
        self._lock = threading.Lock()
        self._active: CaptureHandle | None = None

    @property
    def busy(self) -> bool:
        """Return True while a capture handle is held.

        Example:
            ```python
            assert not interceptor.busy
            ```
        """
        with self._lock:
            return self._active is not None

    def acquire(self, max_lines: int | None = None) -> CaptureHandle:
        """Start capturing into a fresh buffer, refusing re-entrant acquisition.

        Example:
            ```python
            handle = interceptor.acquire(max_lines=1000)
            ```
        """
        with self._lock:
            if self._active is not None:
                raise InterceptorBusyError("Output interceptor is already acquired by another run")
            handle = CaptureHandle(self, max_lines)
            self._active = handle
            return handle

    async def acquire_when_free(
        self,
        *,
        timeout_seconds: float,
        max_lines: int | None = None,
    ) -> CaptureHandle:
        """Wait until the interceptor is free, then acquire it.

        Example:
            ```python
            handle = await interceptor.acquire_when_free(timeout_seconds=30)
            ```
        """
        deadline = time.monotonic() + timeout_seconds
        while True:
            try:
                return self.acquire(max_lines=max_lines)
            except InterceptorBusyError:
                if time.monotonic() >= deadline:
                    raise InterceptorBusyError(
                        f"Timed out waiting for the output interceptor after {timeout_seconds}s"
                    ) from None
            await asyncio.sleep(_POLL_INTERVAL_SECONDS)

    @contextmanager
    def capture(self, max_lines: int | None = None) -> Iterator[CaptureHandle]:
        """Acquire for the duration of a `with` block and always release.

        Example:
            ```python
            with interceptor.capture() as handle:
                ...
            lines = handle.release()
            ```
        """
        handle = self.acquire(max_lines=max_lines)
        try:
            yield handle
        finally:
            handle.release()

    def write(self, level: OutputLevel, rendered: str) -> OutputLine | None:
        """Record a line into the active capture, if any.

        Example:
            ```python
            interceptor.write(OutputLevel.WARN, "careful")
            ```
        """
        with self._lock:
            handle = self._active
            if handle is None:
                logger.debug("Dropped %s line written outside a capture window", level.value)
                return None
            return handle._append(level, rendered)

    def _release(self, handle: CaptureHandle) -> None:
        """Deactivate `handle` if it is the active one.

        Example:
            ```python
            interceptor._release(handle)
            ```
        """
        with self._lock:
            if self._active is handle:
                self._active = None


GLOBAL_OUTPUT_INTERCEPTOR = OutputInterceptor()

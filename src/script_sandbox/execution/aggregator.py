from __future__ import annotations

import logging
import math
from typing import Any, Iterable

from .types import ErrorKind, ExecutionResult, Outcome, OutputLevel, OutputLine

logger = logging.getLogger(__name__)


def _normalize_line(line: Any, sequence: int) -> OutputLine:
    """Coerce one captured line into an `OutputLine` with a trusted level tag.

    Example:
        ```python
        line = _normalize_line(OutputLine(OutputLevel.LOG, "x", 0), 0)
        ```
    """
    if isinstance(line, OutputLine):
        level, rendered = line.level, line.rendered
    else:
        level, rendered = line
    return OutputLine(level=OutputLevel(level), rendered=str(rendered), sequence=sequence)


def _normalize_duration(elapsed_ms: Any) -> float:
    """Return a finite, non-negative duration.

    Example:
        ```python
        assert _normalize_duration(-1) == 0.0
        ```
    """
    value = float(elapsed_ms)
    if not math.isfinite(value) or value < 0:
        return 0.0
    return value


def aggregate(
    *,
    request_id: str,
    captured: Iterable[Any],
    thrown: Iterable[str],
    outcome: Outcome,
    elapsed_ms: float,
    return_value_rendered: str | None = None,
    error_kind: ErrorKind | None = None,
    traceback: str | None = None,
    truncated: bool = False,
    abandoned: bool = False,
) -> ExecutionResult:
    """Build the single immutable result of a run; never raises.

    Captured lines are renumbered in the order given. A `Completed` outcome
    with recorded errors is promoted to `Threw`. Any failure while building
    the result degrades to a synthetic `Threw` result.

    Example:
        ```python
        result = aggregate(
            request_id="abc",
            captured=handle.release(),
            thrown=[],
            outcome=Outcome.COMPLETED,
            elapsed_ms=1.2,
        )
        ```
    """
    try:
        output = tuple(_normalize_line(line, index) for index, line in enumerate(captured))
        errors = tuple(str(message) for message in thrown)
        final_outcome = Outcome(outcome)
        kind = ErrorKind(error_kind) if error_kind is not None else None
        if final_outcome is Outcome.COMPLETED and errors:
            final_outcome = Outcome.THREW
            kind = kind or ErrorKind.RUNTIME_THROW
        if final_outcome is Outcome.THREW and not errors:
            errors = ("Script raised an error",)
        if final_outcome is Outcome.THREW and kind is None:
            kind = ErrorKind.RUNTIME_THROW
        if final_outcome is Outcome.TIMED_OUT:
            kind = ErrorKind.TIMEOUT
        return ExecutionResult(
            request_id=str(request_id),
            output=output,
            thrown_errors=errors,
            duration_ms=_normalize_duration(elapsed_ms),
            outcome=final_outcome,
            return_value_rendered=(
                None if return_value_rendered is None else str(return_value_rendered)
            ),
            error_kind=kind,
            traceback=traceback,
            truncated=bool(truncated),
            abandoned=bool(abandoned),
        )
    except Exception as exc:
        logger.exception("Result aggregation failed for request %s", request_id)
        return _aggregation_failure(request_id, elapsed_ms, exc)


def _aggregation_failure(request_id: Any, elapsed_ms: Any, exc: Exception) -> ExecutionResult:
    """Return the fallback result used when aggregation itself fails.

    Example:
        ```python
        result = _aggregation_failure("abc", 1.0, ValueError("bad level"))
        ```
    """
    try:
        duration = _normalize_duration(elapsed_ms)
    except (TypeError, ValueError):
        duration = 0.0
    return ExecutionResult(
        request_id=str(request_id),
        output=(),
        thrown_errors=(f"Result aggregation failed: {exc}",),
        duration_ms=duration,
        outcome=Outcome.THREW,
        error_kind=ErrorKind.AGGREGATION_FAILURE,
    )

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..policy import DEFAULT_TIMEOUT_MS


def new_request_id() -> str:
    """Return a short random request identifier.

    Example:
        ```python
        request_id = new_request_id()
        ```
    """
    return uuid.uuid4().hex[:12]


class OutputLevel(str, Enum):
    """Diagnostic level tag carried by each captured output line.

    Example:
        ```python
        level = OutputLevel("warn")
        ```
    """

    LOG = "log"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class Outcome(str, Enum):
    """Terminal classification of one execution.

    Example:
        ```python
        outcome = Outcome.COMPLETED
        ```
    """

    COMPLETED = "Completed"
    THREW = "Threw"
    TIMED_OUT = "TimedOut"


class ErrorKind(str, Enum):
    """Why a run did not complete cleanly.

    Example:
        ```python
        kind = ErrorKind.COMPILE_ERROR
        ```
    """

    COMPILE_ERROR = "CompileError"
    RUNTIME_THROW = "RuntimeThrow"
    TIMEOUT = "TimeoutError"
    AGGREGATION_FAILURE = "AggregationFailure"
    CANCELLED = "Cancelled"
    REJECTED = "Rejected"


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """Script source submitted for one sandboxed run.

    Example:
        ```python
        req = ExecutionRequest(source="log(1)", timeout_ms=1000)
        ```
    """

    source: str
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    request_id: str = field(default_factory=new_request_id)

    def __post_init__(self) -> None:
        """Reject non-string sources and non-positive timeouts.

        Example:
            ```python
            ExecutionRequest(source="pass", timeout_ms=10)
            ```
        """
        if not isinstance(self.source, str):
            raise ValueError("source must be a string")
        if isinstance(self.timeout_ms, bool) or not isinstance(self.timeout_ms, int):
            raise ValueError("timeout_ms must be an integer")
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")


@dataclass(frozen=True, slots=True)
class OutputLine:
    """One captured diagnostic call.

    Example:
        ```python
        line = OutputLine(level=OutputLevel.LOG, rendered="hello", sequence=0)
        ```
    """

    level: OutputLevel
    rendered: str
    sequence: int


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Immutable outcome of one sandboxed run.

    `outcome` and `duration_ms` are fixed together at construction; nothing
    about a result changes after it is handed to the caller.

    Example:
        ```python
        result = ExecutionResult(
            request_id="abc",
            output=(),
            thrown_errors=(),
            duration_ms=1.5,
            outcome=Outcome.COMPLETED,
        )
        ```
    """

    request_id: str
    output: tuple[OutputLine, ...]
    thrown_errors: tuple[str, ...]
    duration_ms: float
    outcome: Outcome
    return_value_rendered: str | None = None
    error_kind: ErrorKind | None = None
    traceback: str | None = None
    truncated: bool = False
    abandoned: bool = False

    @property
    def ok(self) -> bool:
        """Return True when the run completed without errors.

        Example:
            ```python
            assert result.ok
            ```
        """
        return self.outcome is Outcome.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly dictionary of this result.

        Example:
            ```python
            payload = json.dumps(result.to_dict())
            ```
        """
        payload = asdict(self)
        payload["outcome"] = self.outcome.value
        payload["error_kind"] = self.error_kind.value if self.error_kind else None
        payload["output"] = [
            {"level": line.level.value, "rendered": line.rendered, "sequence": line.sequence}
            for line in self.output
        ]
        payload["thrown_errors"] = list(self.thrown_errors)
        return payload


@dataclass(frozen=True, slots=True)
class ExecutionHistoryEntry:
    """History record pairing a result with the source that produced it.

    Example:
        ```python
        entry = ExecutionHistoryEntry(result=result, source_snapshot="log(1)", started_at=datetime.now(timezone.utc))
        ```
    """

    result: ExecutionResult
    source_snapshot: str
    started_at: datetime


@dataclass(frozen=True, slots=True)
class ExecutionStats:
    """Cumulative counters over every run a sandbox has settled.

    Example:
        ```python
        stats = ExecutionStats(total_runs=2, completed=1, threw=1, timed_out=0, average_duration_ms=3.0, success_rate=50.0)
        ```
    """

    total_runs: int
    completed: int
    threw: int
    timed_out: int
    average_duration_ms: float
    success_rate: float

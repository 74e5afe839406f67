from __future__ import annotations

import logging
from enum import Enum

from ..exceptions import InvalidTransitionError

logger = logging.getLogger(__name__)


class ExecutionState(str, Enum):
    """Lifecycle states of one sandboxed request.

    Example:
        ```python
        state = ExecutionState.PENDING
        ```
    """

    PENDING = "Pending"
    COMPILING = "Compiling"
    COMPILED = "Compiled"
    COMPILE_FAILED = "CompileFailed"
    RUNNING = "Running"
    COMPLETED = "Completed"
    THREW = "Threw"
    TIMED_OUT = "TimedOut"


_TRANSITIONS: dict[ExecutionState, frozenset[ExecutionState]] = {
    ExecutionState.PENDING: frozenset({ExecutionState.COMPILING}),
    ExecutionState.COMPILING: frozenset({ExecutionState.COMPILED, ExecutionState.COMPILE_FAILED}),
    # Compiled -> Threw covers requests refused before they start running.
    ExecutionState.COMPILED: frozenset({ExecutionState.RUNNING, ExecutionState.THREW}),
    ExecutionState.RUNNING: frozenset(
        {ExecutionState.COMPLETED, ExecutionState.THREW, ExecutionState.TIMED_OUT}
    ),
}

TERMINAL_STATES = frozenset(
    {
        ExecutionState.COMPILE_FAILED,
        ExecutionState.COMPLETED,
        ExecutionState.THREW,
        ExecutionState.TIMED_OUT,
    }
)


class RunStateMachine:
    """Forward-only state tracker for one request.

    Example:
        ```python
        machine = RunStateMachine("abc123")
        machine.advance(ExecutionState.COMPILING)
        ```
    """

    def __init__(self, request_id: str) -> None:
        """Start in `Pending`.

        Example:
            ```python
            machine = RunStateMachine("abc123")
            ```
        """
        self._request_id = request_id
        self._state = ExecutionState.PENDING
        self._visited = [ExecutionState.PENDING]

    @property
    def state(self) -> ExecutionState:
        """Return the current state.

        Example:
            ```python
            assert machine.state is ExecutionState.PENDING
            ```
        """
        return self._state

    @property
    def visited(self) -> tuple[ExecutionState, ...]:
        """Return every state entered so far, in order.

        Example:
            ```python
            path = machine.visited
            ```
        """
        return tuple(self._visited)

    @property
    def finished(self) -> bool:
        """Return True once a terminal state is reached.

        Example:
            ```python
            assert not machine.finished
            ```
        """
        return self._state in TERMINAL_STATES

    def advance(self, target: ExecutionState) -> None:
        """Move to `target`, raising `InvalidTransitionError` if not allowed.

        Example:
            ```python
            machine.advance(ExecutionState.COMPILING)
            ```
        """
        allowed = _TRANSITIONS.get(self._state, frozenset())
        if target not in allowed:
            raise InvalidTransitionError(
                f"{self._state.value} -> {target.value} is not allowed"
            )
        logger.debug("Request %s: %s -> %s", self._request_id, self._state.value, target.value)
        self._state = target
        self._visited.append(target)

from __future__ import annotations


class SandboxError(Exception):
    """Base class for errors raised by the sandbox library itself.

    Example:
        ```python
        raise SandboxError("sandbox misconfigured")
        ```
    """


class InterceptorBusyError(SandboxError):
    """Raised when the output interceptor is already held by another run.

    Example:
        ```python
        raise InterceptorBusyError("Output interceptor is already acquired")
        ```
    """


class InvalidTransitionError(SandboxError):
    """Raised when a run's state machine is asked to revisit or skip a state.

    Example:
        ```python
        raise InvalidTransitionError("Running -> Compiling is not allowed")
        ```
    """


class ScriptInterrupted(BaseException):
    """Raised inside script frames to abort a run that hit its deadline or was stopped.

    Derives from `BaseException` so `except Exception` in script code cannot
    swallow it.

    Example:
        ```python
        raise ScriptInterrupted("timeout")
        ```
    """

    def __init__(self, reason: str) -> None:
        """Store why the script was interrupted (`"timeout"` or `"stopped"`).

        Example:
            ```python
            exc = ScriptInterrupted("stopped")
            ```
        """
        super().__init__(reason)
        self.reason = reason

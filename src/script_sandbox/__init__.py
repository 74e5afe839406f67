from .exceptions import InterceptorBusyError, SandboxError, ScriptInterrupted
from .execution.capabilities import SandboxCapabilities, sandbox_capabilities
from .execution.state import ExecutionState
from .execution.types import (
    ErrorKind,
    ExecutionHistoryEntry,
    ExecutionRequest,
    ExecutionResult,
    ExecutionStats,
    Outcome,
    OutputLevel,
    OutputLine,
)
from .policy import SandboxPolicy
from .sandbox import Sandbox, run_script

__all__ = [
    "ErrorKind",
    "ExecutionHistoryEntry",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutionState",
    "ExecutionStats",
    "InterceptorBusyError",
    "Outcome",
    "OutputLevel",
    "OutputLine",
    "Sandbox",
    "SandboxCapabilities",
    "SandboxError",
    "SandboxPolicy",
    "ScriptInterrupted",
    "run_script",
    "sandbox_capabilities",
]

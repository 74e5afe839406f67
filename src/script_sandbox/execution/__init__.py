from .aggregator import aggregate
from .bindings import SafeBindingSet, build_bindings
from .capabilities import SandboxCapabilities, sandbox_capabilities
from .history import ExecutionHistory, StatsTracker
from .interceptor import GLOBAL_OUTPUT_INTERCEPTOR, CaptureHandle, OutputInterceptor
from .state import ExecutionState, RunStateMachine
from .types import (
    ErrorKind,
    ExecutionHistoryEntry,
    ExecutionRequest,
    ExecutionResult,
    ExecutionStats,
    Outcome,
    OutputLevel,
    OutputLine,
)

__all__ = [
    "CaptureHandle",
    "ErrorKind",
    "ExecutionHistory",
    "ExecutionHistoryEntry",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutionState",
    "ExecutionStats",
    "GLOBAL_OUTPUT_INTERCEPTOR",
    "Outcome",
    "OutputInterceptor",
    "OutputLevel",
    "OutputLine",
    "RunStateMachine",
    "SafeBindingSet",
    "SandboxCapabilities",
    "StatsTracker",
    "aggregate",
    "build_bindings",
    "sandbox_capabilities",
]

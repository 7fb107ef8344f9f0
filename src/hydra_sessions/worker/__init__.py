"""Worker CLI process management."""

from .process import ProcessProbe, TerminationOutcome, terminate_pid, terminate_process
from .runner import (
    WorkerExecutionResult,
    WorkerLaunchError,
    WorkerNotFoundError,
    WorkerRunner,
    WorkerRunnerError,
)

__all__ = [
    "ProcessProbe",
    "TerminationOutcome",
    "WorkerExecutionResult",
    "WorkerLaunchError",
    "WorkerNotFoundError",
    "WorkerRunner",
    "WorkerRunnerError",
    "terminate_pid",
    "terminate_process",
]

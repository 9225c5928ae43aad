"""Bounded, cancellable execution of external maintenance commands."""

from maintenance_orchestrator.execution.executor import (
    BoundedExecutor,
    CommandSpec,
    ExecutionResult,
    ProcessHandle,
    ProcessLauncher,
    SubprocessLauncher,
)

__all__ = [
    "BoundedExecutor",
    "CommandSpec",
    "ExecutionResult",
    "ProcessHandle",
    "ProcessLauncher",
    "SubprocessLauncher",
]

"""Host-state signals and precondition gating."""

from maintenance_orchestrator.host.preconditions import (
    AlreadyScheduledError,
    PreconditionError,
    PreconditionEvaluator,
    PrivilegeError,
    RestartPendingError,
    TargetUnavailableError,
)
from maintenance_orchestrator.host.signals import HostSignals, LocalHostSignals

__all__ = [
    "AlreadyScheduledError",
    "HostSignals",
    "LocalHostSignals",
    "PreconditionError",
    "PreconditionEvaluator",
    "PrivilegeError",
    "RestartPendingError",
    "TargetUnavailableError",
]

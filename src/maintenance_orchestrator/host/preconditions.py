"""
Precondition gating for maintenance operations.

Gate order is fixed: privilege, then target availability, then the
per-operation restart-pending and already-scheduled policies. No other
host signal is queried until privilege has been confirmed.
"""

from __future__ import annotations

from datetime import UTC, datetime

from maintenance_orchestrator.domain.models import (
    AlreadyScheduledBehavior,
    GateBehavior,
    HostStateSnapshot,
    Operation,
    ResultCode,
)
from maintenance_orchestrator.host.signals import HostSignals


class PreconditionError(RuntimeError):
    """An operation may not run; carries the result code and the partial host snapshot."""

    code: ResultCode = ResultCode.PRECHECK_OR_TIMEOUT_FAILURE

    def __init__(self, reason: str, snapshot: HostStateSnapshot) -> None:
        super().__init__(reason)
        self.reason = reason
        self.snapshot = snapshot


class PrivilegeError(PreconditionError):
    """Caller lacks administrative rights."""


class TargetUnavailableError(PreconditionError):
    """Target volume is not mounted or not reachable."""


class RestartPendingError(PreconditionError):
    """A restart is pending and the operation declares that a hard gate."""


class AlreadyScheduledError(PreconditionError):
    """A deferred boot-time action is already queued and the operation defers to it."""

    code = ResultCode.SCHEDULED_OR_BLOCKED


class PreconditionEvaluator:
    """Evaluate an operation's declared :class:`PreconditionPolicy` against the host signals."""

    def __init__(self, signals: HostSignals) -> None:
        self._signals = signals

    def evaluate(self, operation: Operation, target: str) -> HostStateSnapshot:
        """Return the pre-execution snapshot or raise a :class:`PreconditionError`."""

        policy = operation.policy
        captured_at = datetime.now(UTC)

        privileged = self._signals.is_privileged()
        if policy.requires_privilege and not privileged:
            raise PrivilegeError(
                f"{operation.name} requires administrative privileges",
                HostStateSnapshot(
                    privilege_sufficient=False,
                    restart_pending=False,
                    target_available=False,
                    already_scheduled=False,
                    captured_at=captured_at,
                    unchecked=("target_available", "restart_pending", "already_scheduled"),
                ),
            )

        available = self._signals.is_target_available(target)
        if policy.requires_target and not available:
            raise TargetUnavailableError(
                f"target {target!r} is not available",
                HostStateSnapshot(
                    privilege_sufficient=privileged,
                    restart_pending=False,
                    target_available=False,
                    already_scheduled=False,
                    captured_at=captured_at,
                    unchecked=("restart_pending", "already_scheduled"),
                ),
            )

        reasons = tuple(self._signals.restart_pending_reasons())
        scheduled = self._signals.is_scheduled(target)
        snapshot = HostStateSnapshot(
            privilege_sufficient=privileged,
            restart_pending=bool(reasons),
            target_available=available,
            already_scheduled=scheduled,
            captured_at=captured_at,
            restart_reasons=reasons,
        )

        if (
            snapshot.restart_pending
            and operation.is_write_capable
            and policy.restart_pending is GateBehavior.GATE
        ):
            raise RestartPendingError(
                f"{operation.name} refuses to run while a restart is pending "
                f"({', '.join(reasons)})",
                snapshot,
            )

        if scheduled and policy.already_scheduled is AlreadyScheduledBehavior.SHORT_CIRCUIT:
            raise AlreadyScheduledError(
                f"a boot-time check is already scheduled for {target!r}",
                snapshot,
            )

        return snapshot

    def snapshot(self, target: str) -> HostStateSnapshot:
        """Capture host state without gating (used after an operation ran)."""

        reasons = tuple(self._signals.restart_pending_reasons())
        return HostStateSnapshot(
            privilege_sufficient=self._signals.is_privileged(),
            restart_pending=bool(reasons),
            target_available=self._signals.is_target_available(target),
            already_scheduled=self._signals.is_scheduled(target),
            restart_reasons=reasons,
        )


__all__ = [
    "AlreadyScheduledError",
    "PreconditionError",
    "PreconditionEvaluator",
    "PrivilegeError",
    "RestartPendingError",
    "TargetUnavailableError",
]

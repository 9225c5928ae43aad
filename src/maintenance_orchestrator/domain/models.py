"""Frozen domain models shared by the gating, execution and escalation layers."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum, StrEnum
from typing import NoReturn

from maintenance_orchestrator.constants import TARGET_PLACEHOLDER

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_OPERATION_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9._-]*$")


class ResultCode(IntEnum):
    """Four-value outcome taxonomy; integer order is escalation severity."""

    OK = 0
    ISSUES_OR_REPAIRED = 1
    SCHEDULED_OR_BLOCKED = 2
    PRECHECK_OR_TIMEOUT_FAILURE = 3

    @classmethod
    def worst(cls, *codes: ResultCode) -> ResultCode:
        if not codes:
            return cls.OK
        return cls(max(int(code) for code in codes))

    @classmethod
    def parse(cls, value: object) -> ResultCode:
        """Accept an int, a member, or a case-insensitive member name."""

        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise ValueError(f"invalid result code {value!r}")
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError as exc:
                raise ValueError(f"invalid result code {value!r}") from exc
        if isinstance(value, str):
            normalized = value.strip().upper().replace("-", "_")
            if normalized.isdigit():
                return cls.parse(int(normalized))
            try:
                return cls[normalized]
            except KeyError as exc:
                raise ValueError(f"invalid result code {value!r}") from exc
        raise ValueError(f"invalid result code {value!r}")


class OperationMode(StrEnum):
    READ_ONLY = "read-only"
    WRITE_CAPABLE = "write-capable"


class GateBehavior(StrEnum):
    """How a restart-pending host is treated before an operation runs."""

    GATE = "gate"
    ANNOTATE = "annotate"


class AlreadyScheduledBehavior(StrEnum):
    """How a previously queued boot-time action for the target is treated."""

    SHORT_CIRCUIT = "short-circuit"
    ANNOTATE = "annotate"


@dataclass(frozen=True, slots=True)
class PreconditionPolicy:
    """Per-operation declaration of which host signals are hard gates."""

    requires_privilege: bool = True
    requires_target: bool = True
    restart_pending: GateBehavior = GateBehavior.ANNOTATE
    already_scheduled: AlreadyScheduledBehavior = AlreadyScheduledBehavior.ANNOTATE
    capture_post_state: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "restart_pending", GateBehavior(self.restart_pending))
        object.__setattr__(
            self, "already_scheduled", AlreadyScheduledBehavior(self.already_scheduled)
        )

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "requires_privilege": self.requires_privilege,
            "requires_target": self.requires_target,
            "restart_pending": self.restart_pending.value,
            "already_scheduled": self.already_scheduled.value,
            "capture_post_state": self.capture_post_state,
        }


@dataclass(frozen=True, slots=True)
class HostStateSnapshot:
    """Host signals captured before (and optionally after) an operation.

    Signals named in ``unchecked`` were never queried because an earlier gate
    failed; their boolean fields hold ``False`` as a placeholder only.
    """

    privilege_sufficient: bool
    restart_pending: bool
    target_available: bool
    already_scheduled: bool
    captured_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    restart_reasons: tuple[str, ...] = ()
    unchecked: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "privilege_sufficient": self.privilege_sufficient,
            "restart_pending": self.restart_pending,
            "target_available": self.target_available,
            "already_scheduled": self.already_scheduled,
            "captured_at": iso8601z(self.captured_at),
            "restart_reasons": list(self.restart_reasons),
            "unchecked": list(self.unchecked),
        }


@dataclass(frozen=True, slots=True)
class ClassificationRule:
    """Ordered ``(predicate, code)`` pair; the predicate is a case-insensitive regex."""

    pattern: str
    code: ResultCode
    exit_codes: frozenset[int] | None = None
    label: str | None = None
    _compiled: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.pattern, str) or not self.pattern.strip():
            _fail("ClassificationRule.pattern", "must be a non-empty string")
        try:
            compiled = re.compile(self.pattern, re.IGNORECASE)
        except re.error as exc:
            _fail("ClassificationRule.pattern", f"invalid regular expression: {exc}")
        object.__setattr__(self, "_compiled", compiled)
        object.__setattr__(self, "code", ResultCode.parse(self.code))
        if self.exit_codes is not None:
            object.__setattr__(self, "exit_codes", frozenset(int(c) for c in self.exit_codes))

    def matches(self, text: str, exit_code: int | None = None) -> bool:
        if self.exit_codes is not None and exit_code not in self.exit_codes:
            return False
        return self._compiled.search(text) is not None

    def describe(self) -> str:
        return self.label or self.pattern


@dataclass(frozen=True, slots=True)
class Operation:
    """One gated, time-bounded maintenance command and its classification data."""

    name: str
    command: tuple[str, ...]
    mode: OperationMode
    timeout_seconds: float
    rules: tuple[ClassificationRule, ...] = ()
    default_code: ResultCode = ResultCode.ISSUES_OR_REPAIRED
    policy: PreconditionPolicy = field(default_factory=PreconditionPolicy)
    description: str = ""
    output_encoding: str = "utf-8"
    stdin_text: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not _OPERATION_NAME_RE.fullmatch(self.name):
            _fail("Operation.name", f"invalid operation name {self.name!r}")
        command = tuple(self.command)
        if not command or any(not isinstance(part, str) or not part for part in command):
            _fail(f"Operation[{self.name}].command", "must be a non-empty sequence of strings")
        object.__setattr__(self, "command", command)
        object.__setattr__(self, "mode", OperationMode(self.mode))
        timeout = float(self.timeout_seconds)
        if timeout <= 0:
            _fail(f"Operation[{self.name}].timeout_seconds", "must be > 0")
        object.__setattr__(self, "timeout_seconds", timeout)
        object.__setattr__(self, "rules", tuple(self.rules))
        default_code = ResultCode.parse(self.default_code)
        if default_code is ResultCode.OK:
            # Ambiguous output is never treated as clean.
            _fail(f"Operation[{self.name}].default_code", "must not be OK")
        object.__setattr__(self, "default_code", default_code)
        if (
            self.policy.restart_pending is GateBehavior.GATE
            and self.mode is not OperationMode.WRITE_CAPABLE
        ):
            _fail(
                f"Operation[{self.name}].policy.restart_pending",
                "'gate' is only allowed for write-capable operations",
            )

    @property
    def is_write_capable(self) -> bool:
        return self.mode is OperationMode.WRITE_CAPABLE

    def render_command(self, target: str) -> tuple[str, ...]:
        return tuple(part.replace(TARGET_PLACEHOLDER, target) for part in self.command)


class CampaignProfile(StrEnum):
    """Escalation profile applied to a campaign's step results."""

    VALIDATION = "validation"
    REPAIR = "repair"


@dataclass(frozen=True, slots=True)
class CampaignStep:
    """Reference to an operation plus optional extra halting codes for this step."""

    operation: str
    halt_on: frozenset[ResultCode] = frozenset()

    def __post_init__(self) -> None:
        if not isinstance(self.operation, str) or not self.operation.strip():
            _fail("CampaignStep.operation", "must be a non-empty string")
        object.__setattr__(self, "operation", self.operation.strip())
        object.__setattr__(
            self, "halt_on", frozenset(ResultCode.parse(code) for code in self.halt_on)
        )


@dataclass(frozen=True, slots=True)
class Campaign:
    name: str
    profile: CampaignProfile
    steps: tuple[CampaignStep, ...]
    description: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not _OPERATION_NAME_RE.fullmatch(self.name):
            _fail("Campaign.name", f"invalid campaign name {self.name!r}")
        object.__setattr__(self, "profile", CampaignProfile(self.profile))
        steps = tuple(self.steps)
        if not steps:
            _fail(f"Campaign[{self.name}].steps", "must not be empty")
        object.__setattr__(self, "steps", steps)

    @property
    def operation_names(self) -> tuple[str, ...]:
        return tuple(step.operation for step in self.steps)


def iso8601z(value: datetime) -> str:
    if value.tzinfo is None or value.utcoffset() is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


__all__ = [
    "AlreadyScheduledBehavior",
    "Campaign",
    "CampaignProfile",
    "CampaignStep",
    "ClassificationRule",
    "GateBehavior",
    "HostStateSnapshot",
    "JSONScalar",
    "JSONValue",
    "Operation",
    "OperationMode",
    "PreconditionPolicy",
    "ResultCode",
    "iso8601z",
]

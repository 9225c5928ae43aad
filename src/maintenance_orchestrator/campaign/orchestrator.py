"""
Campaign state machine and escalation policy.

A campaign moves ``PENDING -> RUNNING(i) -> HALTED(code) | DONE(code)``.
Steps run strictly one after another; after each step the profile's
escalation policy decides whether the remaining sequence is abandoned.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Final

import structlog

from maintenance_orchestrator.campaign.step_runner import StepOutcome, StepRunner
from maintenance_orchestrator.domain.ids import generate_campaign_id
from maintenance_orchestrator.domain.models import (
    Campaign,
    CampaignProfile,
    CampaignStep,
    JSONValue,
    ResultCode,
    iso8601z,
)
from maintenance_orchestrator.schedule.registry import normalize_target


class CampaignPhase(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    HALTED = "halted"
    DONE = "done"


_TERMINAL_PHASES: Final[frozenset[CampaignPhase]] = frozenset(
    {CampaignPhase.HALTED, CampaignPhase.DONE}
)
_ALLOWED_TRANSITIONS: Final[dict[CampaignPhase, frozenset[CampaignPhase]]] = {
    CampaignPhase.PENDING: frozenset({CampaignPhase.RUNNING, CampaignPhase.DONE}),
    CampaignPhase.RUNNING: frozenset(
        {CampaignPhase.RUNNING, CampaignPhase.HALTED, CampaignPhase.DONE}
    ),
    CampaignPhase.HALTED: frozenset(),
    CampaignPhase.DONE: frozenset(),
}


class CampaignStateError(RuntimeError):
    """Raised on an illegal state-machine transition."""


@dataclass(frozen=True, slots=True)
class CampaignTransition:
    phase: CampaignPhase
    step_index: int | None = None
    code: ResultCode | None = None
    at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "phase": self.phase.value,
            "step_index": self.step_index,
            "code": int(self.code) if self.code is not None else None,
            "at": iso8601z(self.at),
        }


@dataclass(frozen=True, slots=True)
class EscalationPolicy:
    """Halting set and aggregation rule for one :class:`CampaignProfile`."""

    profile: CampaignProfile
    halting_codes: frozenset[ResultCode]

    @classmethod
    def for_profile(cls, profile: CampaignProfile) -> EscalationPolicy:
        profile = CampaignProfile(profile)
        if profile is CampaignProfile.VALIDATION:
            return cls(profile, frozenset({ResultCode.PRECHECK_OR_TIMEOUT_FAILURE}))
        return cls(
            profile,
            frozenset({ResultCode.SCHEDULED_OR_BLOCKED, ResultCode.PRECHECK_OR_TIMEOUT_FAILURE}),
        )

    def halts(self, step: CampaignStep, code: ResultCode) -> bool:
        if code is ResultCode.PRECHECK_OR_TIMEOUT_FAILURE:
            return True
        return code in self.halting_codes or code in step.halt_on

    def aggregate(self, codes: Sequence[ResultCode]) -> ResultCode:
        """Campaign code for the steps that ran.

        Validation reports the worst severity seen. Repair reports the last
        step's code: remediation that ends in a clean verification is clean,
        and a halting step's code is the campaign's code.
        """

        if not codes:
            return ResultCode.OK
        if self.profile is CampaignProfile.VALIDATION:
            return ResultCode.worst(*codes)
        return codes[-1]


@dataclass(frozen=True, slots=True)
class CampaignResult:
    campaign: str
    profile: CampaignProfile
    target: str
    campaign_id: str
    code: ResultCode
    phase: CampaignPhase
    outcomes: tuple[StepOutcome, ...]
    transitions: tuple[CampaignTransition, ...]
    halted_at: int | None = None
    total_steps: int = 0

    @property
    def halted(self) -> bool:
        return self.phase is CampaignPhase.HALTED

    @property
    def skipped(self) -> int:
        return max(self.total_steps - len(self.outcomes), 0)

    def __post_init__(self) -> None:
        if self.phase not in _TERMINAL_PHASES:
            raise ValueError("CampaignResult.phase must be terminal")

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "campaign": self.campaign,
            "profile": self.profile.value,
            "target": self.target,
            "campaign_id": self.campaign_id,
            "code": int(self.code),
            "result_name": self.code.name,
            "phase": self.phase.value,
            "halted_at": self.halted_at,
            "total_steps": self.total_steps,
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
            "transitions": [transition.to_dict() for transition in self.transitions],
        }


class CampaignOrchestrator:
    """Run a :class:`Campaign` through the step runner under its escalation policy."""

    def __init__(self, step_runner: StepRunner, *, logger: Any | None = None) -> None:
        self._step_runner = step_runner
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    async def run(
        self,
        campaign: Campaign,
        target: str,
        *,
        campaign_id: str | None = None,
    ) -> CampaignResult:
        target = normalize_target(target)
        campaign_id = campaign_id if campaign_id is not None else generate_campaign_id()
        policy = EscalationPolicy.for_profile(campaign.profile)
        machine = _StateMachine(
            campaign_id=campaign_id, campaign=campaign.name, logger=self._logger
        )

        outcomes: list[StepOutcome] = []
        halted_at: int | None = None
        for index, step in enumerate(campaign.steps):
            machine.advance(CampaignPhase.RUNNING, step_index=index)
            outcome = await self._step_runner.run_step(
                index, step, target, campaign_id=campaign_id
            )
            outcomes.append(outcome)
            if policy.halts(step, outcome.code):
                halted_at = index
                break

        codes = [outcome.code for outcome in outcomes]
        final_code = policy.aggregate(codes)
        if halted_at is not None:
            machine.advance(CampaignPhase.HALTED, step_index=halted_at, code=final_code)
        else:
            machine.advance(CampaignPhase.DONE, code=final_code)

        self._logger.info(
            "campaign_finished",
            campaign_id=campaign_id,
            campaign=campaign.name,
            profile=campaign.profile.value,
            target=target,
            code=int(final_code),
            phase=machine.phase.value,
            steps_run=len(outcomes),
            steps_total=len(campaign.steps),
        )
        return CampaignResult(
            campaign=campaign.name,
            profile=campaign.profile,
            target=target,
            campaign_id=campaign_id,
            code=final_code,
            phase=machine.phase,
            outcomes=tuple(outcomes),
            transitions=tuple(machine.history),
            halted_at=halted_at,
            total_steps=len(campaign.steps),
        )


class _StateMachine:
    def __init__(self, *, campaign_id: str, campaign: str, logger: Any) -> None:
        self._campaign_id = campaign_id
        self._campaign = campaign
        self._logger = logger
        self.phase = CampaignPhase.PENDING
        self.history: list[CampaignTransition] = [CampaignTransition(CampaignPhase.PENDING)]

    def advance(
        self,
        phase: CampaignPhase,
        *,
        step_index: int | None = None,
        code: ResultCode | None = None,
    ) -> None:
        if phase not in _ALLOWED_TRANSITIONS[self.phase]:
            raise CampaignStateError(f"illegal transition {self.phase.value} -> {phase.value}")
        self._logger.info(
            "campaign_transition",
            campaign_id=self._campaign_id,
            campaign=self._campaign,
            from_phase=self.phase.value,
            to_phase=phase.value,
            step_index=step_index,
            code=int(code) if code is not None else None,
        )
        self.phase = phase
        self.history.append(CampaignTransition(phase, step_index=step_index, code=code))


__all__ = [
    "CampaignOrchestrator",
    "CampaignPhase",
    "CampaignResult",
    "CampaignStateError",
    "CampaignTransition",
    "EscalationPolicy",
]

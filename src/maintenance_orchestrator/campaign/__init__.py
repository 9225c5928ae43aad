"""Campaign orchestration: per-step pipeline and escalation state machine."""

from maintenance_orchestrator.campaign.orchestrator import (
    CampaignOrchestrator,
    CampaignPhase,
    CampaignResult,
    CampaignStateError,
    CampaignTransition,
    EscalationPolicy,
)
from maintenance_orchestrator.campaign.step_runner import StepOutcome, StepRunner

__all__ = [
    "CampaignOrchestrator",
    "CampaignPhase",
    "CampaignResult",
    "CampaignStateError",
    "CampaignTransition",
    "EscalationPolicy",
    "StepOutcome",
    "StepRunner",
]

"""Domain types shared across components: result codes, operations, host snapshots."""

from maintenance_orchestrator.domain.models import (
    AlreadyScheduledBehavior,
    Campaign,
    CampaignProfile,
    CampaignStep,
    ClassificationRule,
    GateBehavior,
    HostStateSnapshot,
    Operation,
    OperationMode,
    PreconditionPolicy,
    ResultCode,
)

__all__ = [
    "AlreadyScheduledBehavior",
    "Campaign",
    "CampaignProfile",
    "CampaignStep",
    "ClassificationRule",
    "GateBehavior",
    "HostStateSnapshot",
    "Operation",
    "OperationMode",
    "PreconditionPolicy",
    "ResultCode",
]

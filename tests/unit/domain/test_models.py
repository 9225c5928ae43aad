"""Unit tests for core domain models."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from maintenance_orchestrator.domain import models
from maintenance_orchestrator.domain.models import (
    Campaign,
    CampaignProfile,
    CampaignStep,
    ClassificationRule,
    GateBehavior,
    Operation,
    OperationMode,
    PreconditionPolicy,
    ResultCode,
)


def _operation(**overrides: object) -> Operation:
    payload: dict[str, object] = {
        "name": "chkdsk-scan",
        "command": ("chkdsk", "{target}", "/scan"),
        "mode": OperationMode.READ_ONLY,
        "timeout_seconds": 60,
    }
    payload.update(overrides)
    return Operation(**payload)  # type: ignore[arg-type]


def test_result_code_order_is_escalation_severity() -> None:
    assert [int(code) for code in ResultCode] == [0, 1, 2, 3]
    assert ResultCode.worst() is ResultCode.OK
    assert (
        ResultCode.worst(ResultCode.OK, ResultCode.SCHEDULED_OR_BLOCKED, ResultCode.ISSUES_OR_REPAIRED)
        is ResultCode.SCHEDULED_OR_BLOCKED
    )


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (0, ResultCode.OK),
        ("2", ResultCode.SCHEDULED_OR_BLOCKED),
        ("issues-or-repaired", ResultCode.ISSUES_OR_REPAIRED),
        ("precheck_or_timeout_failure", ResultCode.PRECHECK_OR_TIMEOUT_FAILURE),
        (ResultCode.OK, ResultCode.OK),
    ],
)
def test_result_code_parse_accepts_ints_names_and_members(raw: object, expected: ResultCode) -> None:
    assert ResultCode.parse(raw) is expected


@pytest.mark.parametrize("raw", [4, -1, True, "bogus", 1.0, None])
def test_result_code_parse_rejects_unknown_values(raw: object) -> None:
    with pytest.raises(ValueError, match="invalid result code"):
        ResultCode.parse(raw)


def test_operation_normalizes_fields_and_renders_target() -> None:
    operation = _operation(command=["chkdsk", "{target}", "/scan"], timeout_seconds=30)

    assert operation.command == ("chkdsk", "{target}", "/scan")
    assert operation.timeout_seconds == 30.0
    assert operation.default_code is ResultCode.ISSUES_OR_REPAIRED
    assert operation.render_command("D:") == ("chkdsk", "D:", "/scan")
    assert not operation.is_write_capable


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"name": "Bad Name"}, "invalid operation name"),
        ({"command": ()}, "non-empty sequence"),
        ({"command": ("chkdsk", "")}, "non-empty sequence"),
        ({"timeout_seconds": 0}, "must be > 0"),
        ({"default_code": ResultCode.OK}, "must not be OK"),
        ({"mode": "destructive"}, "destructive"),
    ],
)
def test_operation_rejects_invalid_fields(overrides: dict[str, object], message: str) -> None:
    with pytest.raises(ValueError, match=message):
        _operation(**overrides)


def test_restart_gate_requires_write_capable_mode() -> None:
    gate = PreconditionPolicy(restart_pending=GateBehavior.GATE)

    with pytest.raises(ValueError, match="only allowed for write-capable"):
        _operation(policy=gate)

    repair = _operation(name="chkdsk-spotfix", mode=OperationMode.WRITE_CAPABLE, policy=gate)
    assert repair.is_write_capable
    assert repair.policy.restart_pending is GateBehavior.GATE


def test_precondition_policy_coerces_string_values() -> None:
    policy = PreconditionPolicy(restart_pending="gate", already_scheduled="short-circuit")  # type: ignore[arg-type]

    assert policy.to_dict() == {
        "requires_privilege": True,
        "requires_target": True,
        "restart_pending": "gate",
        "already_scheduled": "short-circuit",
        "capture_post_state": False,
    }


def test_classification_rule_is_case_insensitive_and_honors_exit_codes() -> None:
    rule = ClassificationRule(pattern="found no problems", code="OK", exit_codes=[0])  # type: ignore[arg-type]

    assert rule.code is ResultCode.OK
    assert rule.matches("Windows has scanned the file system and FOUND NO PROBLEMS.", 0)
    assert not rule.matches("Windows has scanned the file system and found no problems.", 3)
    assert rule.describe() == "found no problems"


@pytest.mark.parametrize("pattern", ["", "   ", "(unclosed"])
def test_classification_rule_rejects_bad_patterns(pattern: str) -> None:
    with pytest.raises(ValueError, match="ClassificationRule.pattern"):
        ClassificationRule(pattern=pattern, code=ResultCode.OK)


def test_campaign_requires_steps_and_valid_name() -> None:
    with pytest.raises(ValueError, match="must not be empty"):
        Campaign(name="empty", profile=CampaignProfile.VALIDATION, steps=())
    with pytest.raises(ValueError, match="invalid campaign name"):
        Campaign(name="Nightly Run", profile=CampaignProfile.REPAIR, steps=(CampaignStep("x"),))

    campaign = Campaign(
        name="nightly",
        profile="repair",  # type: ignore[arg-type]
        steps=[CampaignStep(" sfc-scannow ", halt_on=frozenset({"1"})), CampaignStep("chkdsk-scan")],  # type: ignore[arg-type]
    )
    assert campaign.profile is CampaignProfile.REPAIR
    assert campaign.operation_names == ("sfc-scannow", "chkdsk-scan")
    assert campaign.steps[0].halt_on == frozenset({ResultCode.ISSUES_OR_REPAIRED})


def test_iso8601z_normalizes_to_utc_milliseconds() -> None:
    aware = datetime(2026, 3, 1, 14, 30, 0, 123456, tzinfo=timezone(timedelta(hours=2)))
    naive = datetime(2026, 3, 1, 12, 30, 0)

    assert models.iso8601z(aware) == "2026-03-01T12:30:00.123Z"
    assert models.iso8601z(naive) == "2026-03-01T12:30:00.000Z"
    assert models.iso8601z(datetime(2026, 3, 1, tzinfo=UTC)).endswith("Z")

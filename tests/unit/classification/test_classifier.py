"""Unit tests for output classification."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from maintenance_orchestrator.classification import load_catalog
from maintenance_orchestrator.classification.classifier import (
    TRANSITION_RULE_INDEX,
    OutcomeClassifier,
    classify_output,
)
from maintenance_orchestrator.domain.models import (
    ClassificationRule,
    HostStateSnapshot,
    ResultCode,
)


def _state(*, scheduled: bool) -> HostStateSnapshot:
    return HostStateSnapshot(
        privilege_sufficient=True,
        restart_pending=False,
        target_available=True,
        already_scheduled=scheduled,
        captured_at=datetime(2026, 1, 1, tzinfo=UTC),
    )


RULES = (
    ClassificationRule(pattern="access denied", code=ResultCode.PRECHECK_OR_TIMEOUT_FAILURE),
    ClassificationRule(pattern="found problems", code=ResultCode.ISSUES_OR_REPAIRED),
    ClassificationRule(pattern="found no problems", code=ResultCode.OK),
)


def test_first_matching_rule_wins() -> None:
    output = "Access denied while reading the volume.\nWindows found no problems."

    verdict = OutcomeClassifier().classify(output, _state(scheduled=False), None, RULES)

    assert verdict.code is ResultCode.PRECHECK_OR_TIMEOUT_FAILURE
    assert verdict.rule_index == 0
    assert "access denied" in verdict.reason


def test_later_rule_matches_when_earlier_ones_do_not() -> None:
    verdict = OutcomeClassifier().classify(
        "Windows has scanned the file system and found no problems.",
        _state(scheduled=False),
        None,
        RULES,
    )

    assert verdict.code is ResultCode.OK
    assert verdict.rule_index == 2
    assert not verdict.used_default


def test_unmatched_output_falls_back_to_declared_default() -> None:
    classifier = OutcomeClassifier()

    implicit = classifier.classify("unexpected banner", None, None, RULES)
    explicit = classifier.classify(
        "unexpected banner", None, None, RULES, default_code=ResultCode.SCHEDULED_OR_BLOCKED
    )

    assert implicit.code is ResultCode.ISSUES_OR_REPAIRED
    assert implicit.used_default
    assert implicit.rule_index is None
    assert explicit.code is ResultCode.SCHEDULED_OR_BLOCKED


def test_default_code_may_never_be_ok() -> None:
    with pytest.raises(ValueError, match="must not be OK"):
        OutcomeClassifier().classify("", None, None, RULES, default_code=ResultCode.OK)


def test_newly_scheduled_work_overrides_rules() -> None:
    verdict = OutcomeClassifier().classify(
        "Windows found no problems.",
        _state(scheduled=False),
        _state(scheduled=True),
        RULES,
    )

    assert verdict.code is ResultCode.SCHEDULED_OR_BLOCKED
    assert verdict.rule_index == TRANSITION_RULE_INDEX


def test_previously_scheduled_work_is_not_a_transition() -> None:
    verdict = OutcomeClassifier().classify(
        "Windows found no problems.",
        _state(scheduled=True),
        _state(scheduled=True),
        RULES,
    )

    assert verdict.code is ResultCode.OK
    assert verdict.rule_index == 2


def test_exit_code_predicate_narrows_rule() -> None:
    rules = (
        ClassificationRule(pattern=".", code=ResultCode.OK, exit_codes=frozenset({0})),
        ClassificationRule(pattern=".", code=ResultCode.ISSUES_OR_REPAIRED),
    )

    assert classify_output("done", None, None, rules, exit_code=0) is ResultCode.OK
    assert classify_output("done", None, None, rules, exit_code=1) is ResultCode.ISSUES_OR_REPAIRED
    assert classify_output("done", None, None, rules) is ResultCode.ISSUES_OR_REPAIRED


@given(output=st.text(max_size=400))
@settings(max_examples=200, deadline=None)
def test_output_without_rules_is_never_ok(output: str) -> None:
    verdict = OutcomeClassifier().classify(output, None, None, ())
    assert verdict.code is ResultCode.ISSUES_OR_REPAIRED
    assert verdict.used_default


@given(output=st.text(alphabet=st.characters(blacklist_categories=("Cs",)), max_size=200))
@settings(max_examples=100, deadline=None)
def test_classification_is_deterministic(output: str) -> None:
    classifier = OutcomeClassifier()
    first = classifier.classify(output, None, None, RULES)
    second = classifier.classify(output, None, None, RULES)
    assert first == second


@pytest.mark.parametrize(
    ("operation", "output", "expected"),
    [
        (
            "chkdsk-scan",
            "Windows has scanned the file system and found no problems.\n"
            "No further action is required.",
            ResultCode.OK,
        ),
        (
            "chkdsk-scan",
            "Windows has scanned the file system and found problems.\n"
            "Please run chkdsk /spotfix to fix the issues.",
            ResultCode.ISSUES_OR_REPAIRED,
        ),
        (
            "chkdsk-scan",
            "Access Denied as you do not have sufficient privileges.",
            ResultCode.PRECHECK_OR_TIMEOUT_FAILURE,
        ),
        (
            "chkdsk-spotfix",
            "Chkdsk cannot run because the volume is in use by another process.\n"
            "Cannot lock current drive.",
            ResultCode.SCHEDULED_OR_BLOCKED,
        ),
        (
            "dism-checkhealth",
            "No component store corruption detected.\nThe operation completed successfully.",
            ResultCode.OK,
        ),
        (
            "dism-restorehealth",
            "Error: 0x800f081f\nThe source files could not be found.",
            ResultCode.SCHEDULED_OR_BLOCKED,
        ),
        (
            "sfc-scannow",
            "Windows Resource Protection found corrupt files but was unable to fix some of them.",
            ResultCode.SCHEDULED_OR_BLOCKED,
        ),
        (
            "sfc-scannow",
            "Windows Resource Protection found corrupt files and successfully repaired them.",
            ResultCode.ISSUES_OR_REPAIRED,
        ),
        (
            "sfc-verifyonly",
            "Windows Resource Protection did not find any integrity violations.",
            ResultCode.OK,
        ),
        ("sfc-verifyonly", "Beginning system scan.", ResultCode.ISSUES_OR_REPAIRED),
    ],
)
def test_builtin_rules_classify_known_tool_wording(
    operation: str, output: str, expected: ResultCode
) -> None:
    defined = load_catalog().get_operation(operation)
    assert defined is not None

    code = classify_output(
        output,
        _state(scheduled=False),
        None,
        defined.rules,
        default_code=defined.default_code,
    )

    assert code is expected

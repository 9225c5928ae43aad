"""Map captured tool output and host-state transitions to a :class:`ResultCode`."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from maintenance_orchestrator.domain.models import (
    ClassificationRule,
    HostStateSnapshot,
    JSONValue,
    ResultCode,
)

TRANSITION_RULE_INDEX = -1


@dataclass(frozen=True, slots=True)
class Classification:
    """Classifier verdict.

    ``rule_index`` is the position of the matching rule, ``-1`` when the
    scheduled-work transition decided, and ``None`` when the default applied.
    """

    code: ResultCode
    rule_index: int | None
    reason: str

    @property
    def used_default(self) -> bool:
        return self.rule_index is None

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "code": int(self.code),
            "rule_index": self.rule_index,
            "reason": self.reason,
        }


class OutcomeClassifier:
    """First-match-wins classification with a scheduled-work transition override."""

    def classify(
        self,
        output: str,
        pre_state: HostStateSnapshot | None,
        post_state: HostStateSnapshot | None,
        rules: Sequence[ClassificationRule],
        *,
        default_code: ResultCode = ResultCode.ISSUES_OR_REPAIRED,
        exit_code: int | None = None,
    ) -> Classification:
        if default_code is ResultCode.OK:
            raise ValueError("default_code must not be OK")

        if (
            post_state is not None
            and post_state.already_scheduled
            and not (pre_state is not None and pre_state.already_scheduled)
        ):
            return Classification(
                code=ResultCode.SCHEDULED_OR_BLOCKED,
                rule_index=TRANSITION_RULE_INDEX,
                reason="operation scheduled deferred work for the next restart",
            )

        for index, rule in enumerate(rules):
            if rule.matches(output, exit_code):
                return Classification(
                    code=rule.code,
                    rule_index=index,
                    reason=f"matched rule {index}: {rule.describe()}",
                )

        return Classification(
            code=default_code,
            rule_index=None,
            reason="no rule matched; applied the declared default",
        )


def classify_output(
    output: str,
    pre_state: HostStateSnapshot | None,
    post_state: HostStateSnapshot | None,
    rules: Sequence[ClassificationRule],
    *,
    default_code: ResultCode = ResultCode.ISSUES_OR_REPAIRED,
    exit_code: int | None = None,
) -> ResultCode:
    """Convenience wrapper returning only the result code."""

    return (
        OutcomeClassifier()
        .classify(
            output,
            pre_state,
            post_state,
            rules,
            default_code=default_code,
            exit_code=exit_code,
        )
        .code
    )


__all__ = [
    "Classification",
    "OutcomeClassifier",
    "TRANSITION_RULE_INDEX",
    "classify_output",
]

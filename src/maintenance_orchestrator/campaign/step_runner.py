"""
Single-step pipeline: resolve, gate, execute, classify, record.

``StepRunner.run_step`` is the translation boundary between components and
the orchestrator. Every failure it meets (unknown operation, unresolvable
command, precondition, launch error, timeout, host signal or recorder error) is
turned into a :class:`ResultCode` here; the orchestrator only ever sees a
:class:`StepOutcome`.
"""

from __future__ import annotations

import shutil
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any

import structlog

from maintenance_orchestrator.classification.catalog import OperationCatalog
from maintenance_orchestrator.classification.classifier import Classification, OutcomeClassifier
from maintenance_orchestrator.domain.models import (
    CampaignStep,
    HostStateSnapshot,
    JSONValue,
    Operation,
    ResultCode,
)
from maintenance_orchestrator.execution.executor import (
    BoundedExecutor,
    CommandSpec,
    ExecutionResult,
)
from maintenance_orchestrator.host.preconditions import PreconditionError, PreconditionEvaluator
from maintenance_orchestrator.recording.recorder import ResultRecorder

CommandResolver = Callable[[str], str | None]


@dataclass(frozen=True, slots=True)
class StepOutcome:
    """Terminal result of one campaign step."""

    step_index: int
    operation: str
    code: ResultCode
    reason: str
    executed: bool = False
    classification: Classification | None = None
    execution: ExecutionResult | None = None
    host_state: HostStateSnapshot | None = None
    post_state: HostStateSnapshot | None = None
    record_error: str | None = None

    @property
    def timed_out(self) -> bool:
        return self.execution is not None and self.execution.timed_out

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "step_index": self.step_index,
            "operation": self.operation,
            "code": int(self.code),
            "result_name": self.code.name,
            "reason": self.reason,
            "executed": self.executed,
            "timed_out": self.timed_out,
            "matched_rule": (
                self.classification.rule_index if self.classification is not None else None
            ),
            "record_error": self.record_error,
        }


class StepRunner:
    """Run one :class:`CampaignStep` end to end without raising."""

    def __init__(
        self,
        *,
        catalog: OperationCatalog,
        evaluator: PreconditionEvaluator,
        executor: BoundedExecutor,
        recorder: ResultRecorder | None = None,
        classifier: OutcomeClassifier | None = None,
        resolve_command: CommandResolver | None = None,
        logger: Any | None = None,
    ) -> None:
        self._catalog = catalog
        self._evaluator = evaluator
        self._executor = executor
        self._recorder = recorder
        self._classifier = classifier if classifier is not None else OutcomeClassifier()
        self._resolve_command = resolve_command if resolve_command is not None else shutil.which
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def catalog(self) -> OperationCatalog:
        return self._catalog

    async def run_step(
        self,
        step_index: int,
        step: CampaignStep,
        target: str,
        *,
        campaign_id: str,
    ) -> StepOutcome:
        operation = self._catalog.get_operation(step.operation)
        if operation is None:
            return self._finish(
                campaign_id,
                target,
                StepOutcome(
                    step_index=step_index,
                    operation=step.operation,
                    code=ResultCode.PRECHECK_OR_TIMEOUT_FAILURE,
                    reason=f"operation {step.operation!r} is not defined",
                ),
                operation=None,
            )

        argv = self._resolve_argv(operation, target)
        if argv is None:
            return self._finish(
                campaign_id,
                target,
                StepOutcome(
                    step_index=step_index,
                    operation=operation.name,
                    code=ResultCode.PRECHECK_OR_TIMEOUT_FAILURE,
                    reason=f"command {operation.command[0]!r} could not be resolved",
                ),
                operation=operation,
            )

        try:
            pre_state = self._evaluator.evaluate(operation, target)
        except PreconditionError as exc:
            return self._finish(
                campaign_id,
                target,
                StepOutcome(
                    step_index=step_index,
                    operation=operation.name,
                    code=exc.code,
                    reason=exc.reason,
                    host_state=exc.snapshot,
                ),
                operation=operation,
            )
        except Exception as exc:  # noqa: BLE001
            return self._finish(
                campaign_id,
                target,
                StepOutcome(
                    step_index=step_index,
                    operation=operation.name,
                    code=ResultCode.PRECHECK_OR_TIMEOUT_FAILURE,
                    reason=f"host signal lookup failed: {type(exc).__name__}: {exc}",
                ),
                operation=operation,
            )

        spec = CommandSpec(
            argv=argv,
            stdin_text=operation.stdin_text,
            output_encoding=operation.output_encoding,
        )
        self._logger.info(
            "step_started",
            campaign_id=campaign_id,
            step_index=step_index,
            operation=operation.name,
            target=target,
            restart_pending=pre_state.restart_pending,
            already_scheduled=pre_state.already_scheduled,
        )
        try:
            execution = await self._executor.run(spec, operation.timeout_seconds)
        except Exception as exc:  # noqa: BLE001
            execution = ExecutionResult(
                output="",
                completed=False,
                error=f"{type(exc).__name__}: {exc}",
                argv=spec.argv,
            )

        if not execution.completed:
            # Timeouts and launch failures are terminal; rules never see them.
            return self._finish(
                campaign_id,
                target,
                StepOutcome(
                    step_index=step_index,
                    operation=operation.name,
                    code=ResultCode.PRECHECK_OR_TIMEOUT_FAILURE,
                    reason=execution.error or "command did not complete",
                    executed=True,
                    execution=execution,
                    host_state=pre_state,
                ),
                operation=operation,
            )

        post_state: HostStateSnapshot | None = None
        if operation.policy.capture_post_state:
            try:
                post_state = self._evaluator.snapshot(target)
            except Exception as exc:  # noqa: BLE001
                self._logger.warning(
                    "post_state_capture_failed",
                    campaign_id=campaign_id,
                    operation=operation.name,
                    error=f"{type(exc).__name__}: {exc}",
                )

        classification = self._classifier.classify(
            execution.output,
            pre_state,
            post_state,
            operation.rules,
            default_code=operation.default_code,
            exit_code=execution.exit_code,
        )
        self._logger.info(
            "step_classified",
            campaign_id=campaign_id,
            step_index=step_index,
            operation=operation.name,
            code=int(classification.code),
            rule_index=classification.rule_index,
            exit_code=execution.exit_code,
        )
        return self._finish(
            campaign_id,
            target,
            StepOutcome(
                step_index=step_index,
                operation=operation.name,
                code=classification.code,
                reason=classification.reason,
                executed=True,
                classification=classification,
                execution=execution,
                host_state=pre_state,
                post_state=post_state,
            ),
            operation=operation,
        )

    def _resolve_argv(self, operation: Operation, target: str) -> tuple[str, ...] | None:
        argv = operation.render_command(target)
        resolved = self._resolve_command(argv[0])
        if not resolved:
            return None
        return (resolved, *argv[1:])

    def _finish(
        self,
        campaign_id: str,
        target: str,
        outcome: StepOutcome,
        *,
        operation: Operation | None,
    ) -> StepOutcome:
        if outcome.code is ResultCode.PRECHECK_OR_TIMEOUT_FAILURE:
            self._logger.error(
                "step_failed",
                campaign_id=campaign_id,
                step_index=outcome.step_index,
                operation=outcome.operation,
                target=target,
                reason=outcome.reason,
                timed_out=outcome.timed_out,
            )
        if self._recorder is None:
            return outcome

        record = self._recorder.build(
            campaign_id=campaign_id,
            step_index=outcome.step_index,
            operation=outcome.operation,
            target=target,
            mode=operation.mode if operation is not None else None,
            code=outcome.code,
            reason=outcome.reason,
            classification=outcome.classification,
            execution=outcome.execution,
            host_state=outcome.host_state,
            post_state=outcome.post_state,
        )
        raw_output = outcome.execution.output if outcome.execution is not None else ""
        try:
            self._recorder.record(record, raw_output)
        except Exception as exc:  # noqa: BLE001
            # Recording is best effort; the step's code stands.
            error = f"{type(exc).__name__}: {exc}"
            self._logger.error(
                "step_record_failed",
                campaign_id=campaign_id,
                step_index=outcome.step_index,
                operation=outcome.operation,
                error=error,
            )
            return replace(outcome, record_error=error)
        return outcome


__all__ = ["CommandResolver", "StepOutcome", "StepRunner"]

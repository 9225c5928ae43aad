"""
maintenance-orchestrator: unit tests for the single-step pipeline

Purpose
- Validate that every component failure becomes a result code at the step boundary.

What this test file should cover
- Gate failures never reach the executor.
- Timeouts and launch failures are fatal without classification.
- Post-execution scheduling transitions override rule matches.
- Recorder failures never change the step's code.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import PurePath

import pytest

from maintenance_orchestrator.campaign.step_runner import StepRunner
from maintenance_orchestrator.classification import parse_catalog
from maintenance_orchestrator.classification.classifier import TRANSITION_RULE_INDEX
from maintenance_orchestrator.domain.models import CampaignStep, OperationMode, ResultCode
from maintenance_orchestrator.execution.executor import CommandSpec, ExecutionResult
from maintenance_orchestrator.host.preconditions import PreconditionEvaluator
from maintenance_orchestrator.recording import MemoryLogSink, ResultRecorder, StepRecord

CAMPAIGN_ID = "cmp-01J0000000000000000000000B"

CATALOG = parse_catalog(
    """
operations:
  - name: scan
    command: ["scan-tool", "{target}", "/scan"]
    mode: read-only
    timeout_seconds: 30
    stdin_text: "N\\n"
    preconditions:
      already_scheduled: short-circuit
    rules:
      - {pattern: "access denied", code: 3}
      - {pattern: "found problems", code: 1}
      - {pattern: "found no problems", code: 0}
  - name: fix
    command: ["fix-tool", "{target}"]
    mode: write-capable
    timeout_seconds: 60
    preconditions:
      restart_pending: gate
      capture_post_state: true
    rules:
      - {pattern: "made corrections", code: 1}
      - {pattern: "no problems", code: 0}
""",
    source="test-catalog",
)


class RecordingLogger:
    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict[str, object]]] = []

    def info(self, event: str, **fields: object) -> None:
        self.events.append(("info", event, fields))

    def warning(self, event: str, **fields: object) -> None:
        self.events.append(("warning", event, fields))

    def error(self, event: str, **fields: object) -> None:
        self.events.append(("error", event, fields))

    def names(self) -> list[str]:
        return [event for _, event, _ in self.events]


@dataclass
class FakeHostSignals:
    privileged: bool = True
    restart_reasons: tuple[str, ...] = ()
    scheduled: bool = False
    fail_with: Exception | None = None
    calls: int = 0

    def is_privileged(self) -> bool:
        self.calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        return self.privileged

    def restart_pending_reasons(self) -> tuple[str, ...]:
        return self.restart_reasons

    def is_target_available(self, target: str) -> bool:
        return True

    def is_scheduled(self, target: str) -> bool:
        return self.scheduled


@dataclass
class ScriptedExecutor:
    results: dict[str, ExecutionResult | Exception]
    on_run: Callable[[], None] | None = None
    calls: list[tuple[CommandSpec, float]] = field(default_factory=list)

    async def run(self, spec: CommandSpec, timeout_seconds: float) -> ExecutionResult:
        self.calls.append((spec, timeout_seconds))
        if self.on_run is not None:
            self.on_run()
        scripted = self.results[PurePath(spec.argv[0]).name]
        if isinstance(scripted, Exception):
            raise scripted
        return scripted


class FailingSink:
    def append(self, record: StepRecord, raw_output: str) -> None:
        raise PermissionError("log directory is read-only")


def _completed(output: str, exit_code: int = 0) -> ExecutionResult:
    return ExecutionResult(output=output, completed=True, exit_code=exit_code, duration_ms=5)


def _runner(
    executor: ScriptedExecutor,
    signals: FakeHostSignals,
    *,
    sink: object | None = None,
    resolve: Callable[[str], str | None] | None = None,
    logger: RecordingLogger | None = None,
) -> tuple[StepRunner, MemoryLogSink | object]:
    used_sink = sink if sink is not None else MemoryLogSink()
    runner = StepRunner(
        catalog=CATALOG,
        evaluator=PreconditionEvaluator(signals),
        executor=executor,  # type: ignore[arg-type]
        recorder=ResultRecorder(used_sink, logger=RecordingLogger()),  # type: ignore[arg-type]
        resolve_command=resolve if resolve is not None else (lambda name: f"/opt/tools/{name}"),
        logger=logger if logger is not None else RecordingLogger(),
    )
    return runner, used_sink


@pytest.mark.asyncio
async def test_clean_run_is_classified_and_recorded() -> None:
    executor = ScriptedExecutor({"scan-tool": _completed("Windows found no problems.")})
    logger = RecordingLogger()
    runner, sink = _runner(executor, FakeHostSignals(), logger=logger)

    outcome = await runner.run_step(0, CampaignStep("scan"), "D:", campaign_id=CAMPAIGN_ID)

    assert outcome.code is ResultCode.OK
    assert outcome.executed
    assert outcome.classification is not None and outcome.classification.rule_index == 2
    assert outcome.record_error is None

    spec, timeout = executor.calls[0]
    assert spec.argv == ("/opt/tools/scan-tool", "D:", "/scan")
    assert spec.stdin_text == "N\n"
    assert timeout == 30.0

    assert isinstance(sink, MemoryLogSink)
    record, raw = sink.entries[0]
    assert record.campaign_id == CAMPAIGN_ID
    assert record.mode is OperationMode.READ_ONLY
    assert record.matched_rule == 2
    assert record.host_state is not None and record.host_state.privilege_sufficient
    assert raw == "Windows found no problems."
    assert logger.names() == ["step_started", "step_classified"]


@pytest.mark.asyncio
async def test_undefined_operation_is_fatal_and_recorded() -> None:
    executor = ScriptedExecutor({})
    signals = FakeHostSignals()
    runner, sink = _runner(executor, signals)

    outcome = await runner.run_step(4, CampaignStep("defrag"), "C:", campaign_id=CAMPAIGN_ID)

    assert outcome.code is ResultCode.PRECHECK_OR_TIMEOUT_FAILURE
    assert "not defined" in outcome.reason
    assert not outcome.executed
    assert executor.calls == []
    assert signals.calls == 0
    assert isinstance(sink, MemoryLogSink)
    assert sink.records[0].step_index == 4
    assert sink.records[0].mode is None


@pytest.mark.asyncio
async def test_unresolvable_command_is_fatal_before_gating() -> None:
    executor = ScriptedExecutor({})
    signals = FakeHostSignals()
    runner, _ = _runner(executor, signals, resolve=lambda name: None)

    outcome = await runner.run_step(0, CampaignStep("scan"), "C:", campaign_id=CAMPAIGN_ID)

    assert outcome.code is ResultCode.PRECHECK_OR_TIMEOUT_FAILURE
    assert "could not be resolved" in outcome.reason
    assert executor.calls == []
    assert signals.calls == 0


@pytest.mark.asyncio
async def test_privilege_gate_means_zero_executor_calls() -> None:
    executor = ScriptedExecutor({"scan-tool": _completed("found no problems")})
    logger = RecordingLogger()
    runner, sink = _runner(executor, FakeHostSignals(privileged=False), logger=logger)

    outcome = await runner.run_step(0, CampaignStep("scan"), "C:", campaign_id=CAMPAIGN_ID)

    assert outcome.code is ResultCode.PRECHECK_OR_TIMEOUT_FAILURE
    assert "administrative privileges" in outcome.reason
    assert executor.calls == []
    assert outcome.host_state is not None and not outcome.host_state.privilege_sufficient
    assert logger.names() == ["step_failed"]
    assert isinstance(sink, MemoryLogSink)
    assert sink.records[0].result_code is ResultCode.PRECHECK_OR_TIMEOUT_FAILURE


@pytest.mark.asyncio
async def test_restart_gate_blocks_write_capable_operation() -> None:
    executor = ScriptedExecutor({"fix-tool": _completed("no problems")})
    runner, _ = _runner(executor, FakeHostSignals(restart_reasons=("component-servicing",)))

    outcome = await runner.run_step(0, CampaignStep("fix"), "C:", campaign_id=CAMPAIGN_ID)

    assert outcome.code is ResultCode.PRECHECK_OR_TIMEOUT_FAILURE
    assert "restart is pending" in outcome.reason
    assert executor.calls == []


@pytest.mark.asyncio
async def test_already_scheduled_short_circuit_yields_scheduled_code() -> None:
    executor = ScriptedExecutor({"scan-tool": _completed("found problems")})
    runner, _ = _runner(executor, FakeHostSignals(scheduled=True))

    outcome = await runner.run_step(0, CampaignStep("scan"), "C:", campaign_id=CAMPAIGN_ID)

    assert outcome.code is ResultCode.SCHEDULED_OR_BLOCKED
    assert executor.calls == []


@pytest.mark.asyncio
async def test_host_signal_failure_is_fatal() -> None:
    executor = ScriptedExecutor({})
    runner, _ = _runner(executor, FakeHostSignals(fail_with=OSError("WMI unavailable")))

    outcome = await runner.run_step(0, CampaignStep("scan"), "C:", campaign_id=CAMPAIGN_ID)

    assert outcome.code is ResultCode.PRECHECK_OR_TIMEOUT_FAILURE
    assert "host signal lookup failed: OSError: WMI unavailable" == outcome.reason


@pytest.mark.asyncio
async def test_timeout_is_fatal_without_classification() -> None:
    timed_out = ExecutionResult(
        output="Stage 1: Examining basic file system structure ...",
        completed=False,
        timed_out=True,
        error="command timed out after 30.000s",
        duration_ms=30_000,
    )
    executor = ScriptedExecutor({"scan-tool": timed_out})
    runner, sink = _runner(executor, FakeHostSignals())

    outcome = await runner.run_step(0, CampaignStep("scan"), "C:", campaign_id=CAMPAIGN_ID)

    assert outcome.code is ResultCode.PRECHECK_OR_TIMEOUT_FAILURE
    assert outcome.timed_out
    assert outcome.classification is None
    assert outcome.reason == "command timed out after 30.000s"
    assert isinstance(sink, MemoryLogSink)
    record, raw = sink.entries[0]
    assert record.timed_out
    assert record.matched_rule is None
    assert raw.startswith("Stage 1")


@pytest.mark.asyncio
async def test_executor_exception_is_translated() -> None:
    executor = ScriptedExecutor({"scan-tool": RuntimeError("event loop closed")})
    runner, _ = _runner(executor, FakeHostSignals())

    outcome = await runner.run_step(0, CampaignStep("scan"), "C:", campaign_id=CAMPAIGN_ID)

    assert outcome.code is ResultCode.PRECHECK_OR_TIMEOUT_FAILURE
    assert outcome.executed
    assert "RuntimeError: event loop closed" in outcome.reason


@pytest.mark.asyncio
async def test_new_boot_schedule_after_run_overrides_rules() -> None:
    signals = FakeHostSignals()

    def schedule_during_run() -> None:
        signals.scheduled = True

    executor = ScriptedExecutor(
        {"fix-tool": _completed("Windows found no problems.")}, on_run=schedule_during_run
    )
    runner, sink = _runner(executor, signals)

    outcome = await runner.run_step(0, CampaignStep("fix"), "C:", campaign_id=CAMPAIGN_ID)

    assert outcome.code is ResultCode.SCHEDULED_OR_BLOCKED
    assert outcome.classification is not None
    assert outcome.classification.rule_index == TRANSITION_RULE_INDEX
    assert outcome.host_state is not None and not outcome.host_state.already_scheduled
    assert outcome.post_state is not None and outcome.post_state.already_scheduled
    assert isinstance(sink, MemoryLogSink)
    assert sink.records[0].post_state == outcome.post_state


@pytest.mark.asyncio
async def test_recorder_failure_keeps_step_code() -> None:
    executor = ScriptedExecutor(
        {"fix-tool": _completed("Chkdsk made corrections to the file system.")}
    )
    logger = RecordingLogger()
    runner, _ = _runner(executor, FakeHostSignals(), sink=FailingSink(), logger=logger)

    outcome = await runner.run_step(2, CampaignStep("fix"), "C:", campaign_id=CAMPAIGN_ID)

    assert outcome.code is ResultCode.ISSUES_OR_REPAIRED
    assert outcome.record_error == "PermissionError: log directory is read-only"
    assert "step_record_failed" in logger.names()


@pytest.mark.asyncio
async def test_runner_without_recorder_still_returns_outcome() -> None:
    executor = ScriptedExecutor({"scan-tool": _completed("found problems")})
    runner = StepRunner(
        catalog=CATALOG,
        evaluator=PreconditionEvaluator(FakeHostSignals()),
        executor=executor,  # type: ignore[arg-type]
        resolve_command=lambda name: name,
        logger=RecordingLogger(),
    )

    outcome = await runner.run_step(0, CampaignStep("scan"), "C:", campaign_id=CAMPAIGN_ID)

    assert outcome.code is ResultCode.ISSUES_OR_REPAIRED
    assert outcome.to_dict()["matched_rule"] == 1
    assert runner.catalog is CATALOG

"""Structured per-step records and the append-only sinks that persist them."""

from __future__ import annotations

import json
import re
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final, Protocol, runtime_checkable

import structlog

from maintenance_orchestrator.constants import STEP_RECORD_SCHEMA_VERSION
from maintenance_orchestrator.domain.models import (
    HostStateSnapshot,
    JSONValue,
    OperationMode,
    ResultCode,
    iso8601z,
)

if TYPE_CHECKING:
    from maintenance_orchestrator.classification.classifier import Classification
    from maintenance_orchestrator.execution.executor import ExecutionResult

RECORDS_FILENAME: Final[str] = "records.jsonl"
RAW_OUTPUT_DIRNAME: Final[str] = "raw"

_UNSAFE_FILENAME_CHARS: Final[re.Pattern[str]] = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True, slots=True)
class StepRecord:
    """One campaign step as handed to the log sink."""

    campaign_id: str
    step_index: int
    operation: str
    target: str
    mode: OperationMode | None
    result_code: ResultCode
    reason: str
    matched_rule: int | None = None
    timed_out: bool = False
    exit_code: int | None = None
    duration_ms: int = 0
    host_state: HostStateSnapshot | None = None
    post_state: HostStateSnapshot | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        if self.step_index < 0:
            raise ValueError("StepRecord.step_index must be >= 0")
        object.__setattr__(self, "result_code", ResultCode.parse(self.result_code))

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "schema_version": STEP_RECORD_SCHEMA_VERSION,
            "timestamp": iso8601z(self.timestamp),
            "campaign_id": self.campaign_id,
            "step_index": self.step_index,
            "operation": self.operation,
            "target": self.target,
            "mode": self.mode.value if self.mode is not None else None,
            "result_code": int(self.result_code),
            "result_name": self.result_code.name,
            "reason": self.reason,
            "matched_rule": self.matched_rule,
            "timed_out": self.timed_out,
            "exit_code": self.exit_code,
            "duration_ms": self.duration_ms,
            "host_state": self.host_state.to_dict() if self.host_state is not None else None,
            "post_state": self.post_state.to_dict() if self.post_state is not None else None,
        }


@runtime_checkable
class LogSink(Protocol):
    """Append-only destination for step records plus their raw output."""

    def append(self, record: StepRecord, raw_output: str) -> None: ...


class MemoryLogSink(LogSink):
    """Keeps records in memory; used by dry runs and tests."""

    def __init__(self) -> None:
        self.entries: list[tuple[StepRecord, str]] = []

    def append(self, record: StepRecord, raw_output: str) -> None:
        self.entries.append((record, raw_output))

    @property
    def records(self) -> list[StepRecord]:
        return [record for record, _ in self.entries]


class JsonlLogSink(LogSink):
    """Writes ``records.jsonl`` and ``raw/<NN>-<operation>.log`` under one run directory."""

    def __init__(self, run_dir: Path | str) -> None:
        self._run_dir = Path(run_dir)
        self._lock = threading.Lock()

    @property
    def run_dir(self) -> Path:
        return self._run_dir

    @property
    def records_path(self) -> Path:
        return self._run_dir / RECORDS_FILENAME

    def append(self, record: StepRecord, raw_output: str) -> None:
        payload = record.to_dict()
        raw_path = self._raw_output_path(record)
        payload["raw_output_path"] = raw_path.relative_to(self._run_dir).as_posix()
        line = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
        with self._lock:
            raw_path.parent.mkdir(parents=True, exist_ok=True)
            raw_path.write_text(raw_output, encoding="utf-8", newline="")
            with self.records_path.open("a", encoding="utf-8", newline="\n") as handle:
                handle.write(line + "\n")

    def read_records(self) -> list[dict[str, object]]:
        if not self.records_path.exists():
            return []
        with self.records_path.open("r", encoding="utf-8") as handle:
            return [json.loads(line) for line in handle if line.strip()]

    def _raw_output_path(self, record: StepRecord) -> Path:
        safe_name = _UNSAFE_FILENAME_CHARS.sub("_", record.operation) or "operation"
        return self._run_dir / RAW_OUTPUT_DIRNAME / f"{record.step_index:02d}-{safe_name}.log"


class ResultRecorder:
    """Assemble :class:`StepRecord` values and hand them to the sink."""

    def __init__(self, sink: LogSink, *, logger: Any | None = None) -> None:
        self._sink = sink
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def build(
        self,
        *,
        campaign_id: str,
        step_index: int,
        operation: str,
        target: str,
        mode: OperationMode | None,
        code: ResultCode,
        reason: str,
        classification: Classification | None = None,
        execution: ExecutionResult | None = None,
        host_state: HostStateSnapshot | None = None,
        post_state: HostStateSnapshot | None = None,
    ) -> StepRecord:
        return StepRecord(
            campaign_id=campaign_id,
            step_index=step_index,
            operation=operation,
            target=target,
            mode=mode,
            result_code=code,
            reason=reason,
            matched_rule=classification.rule_index if classification is not None else None,
            timed_out=execution.timed_out if execution is not None else False,
            exit_code=execution.exit_code if execution is not None else None,
            duration_ms=execution.duration_ms if execution is not None else 0,
            host_state=host_state,
            post_state=post_state,
        )

    def record(self, record: StepRecord, raw_output: str = "") -> StepRecord:
        """Append ``record``; sink failures propagate to the caller."""

        self._sink.append(record, raw_output)
        self._logger.info(
            "step_recorded",
            campaign_id=record.campaign_id,
            step_index=record.step_index,
            operation=record.operation,
            result_code=int(record.result_code),
        )
        return record


__all__ = [
    "JsonlLogSink",
    "LogSink",
    "MemoryLogSink",
    "RAW_OUTPUT_DIRNAME",
    "RECORDS_FILENAME",
    "ResultRecorder",
    "StepRecord",
]

"""Result recording: step record schema and log sinks."""

from maintenance_orchestrator.recording.recorder import (
    JsonlLogSink,
    LogSink,
    MemoryLogSink,
    ResultRecorder,
    StepRecord,
)

__all__ = [
    "JsonlLogSink",
    "LogSink",
    "MemoryLogSink",
    "ResultRecorder",
    "StepRecord",
]

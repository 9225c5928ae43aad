"""
Per-run structured logging.

structlog owns event rendering: component events (``step_classified``,
``campaign_transition``, ``registry_add`` ...) and plain stdlib records are
both rendered by one ``structlog.stdlib.ProcessorFormatter`` into canonical
JSON lines at ``<log_dir>/<run_id>/maintenance.jsonl``. Emitting threads only
enqueue records; a ``QueueListener`` thread formats them and writes the file.

Correlation fields (``run_id``, ``campaign_id``, ``target``) live in
structlog's contextvars and are captured on the emitting thread.
"""

from __future__ import annotations

import atexit
import copy
import json
import logging
import logging.handlers
import math
import queue
import threading
import time
from collections.abc import Iterator, Mapping, MutableMapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final

import structlog

from maintenance_orchestrator.constants import LOG_DIR
from maintenance_orchestrator.domain.models import JSONValue

LOG_FILENAME: Final[str] = "maintenance.jsonl"
ROOT_LOGGER_NAME: Final[str] = "maintenance_orchestrator"
_QUEUE_SIZE: Final[int] = 4096
_CAPTURED_CONTEXT_ATTR: Final[str] = "_maint_context"

# LogRecord attributes that never become event fields.
_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
    | {"message", "asctime", "taskName"}
)

EventDict = MutableMapping[str, Any]

_active_lock = threading.Lock()
_active_handle: RunLogHandle | None = None
_atexit_registered = False


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Where and how verbosely one run logs."""

    run_id: str
    base_log_dir: Path | str = Path(LOG_DIR)
    level: int | str = "INFO"
    log_to_stdout: bool = False
    queue_size: int = _QUEUE_SIZE
    log_filename: str = LOG_FILENAME

    @classmethod
    def from_section(
        cls,
        section: Mapping[str, object] | None,
        *,
        run_id: str,
        log_dir: Path | str | None = None,
    ) -> LoggingConfig:
        """Build from the ``[observability]`` config section."""

        values = dict(section or {})
        level = values.get("log_level", "INFO")
        return cls(
            run_id=run_id,
            base_log_dir=log_dir if log_dir is not None else Path(LOG_DIR),
            level=level if isinstance(level, (int, str)) else "INFO",
            log_to_stdout=bool(values.get("log_to_stdout", False)),
        )


class _ContextQueueHandler(logging.handlers.QueueHandler):
    """Enqueue records unformatted, tagged with the emitting thread's context.

    The stock ``prepare`` pre-formats the record, which would flatten
    structlog's event dict before the ``ProcessorFormatter`` sees it.
    """

    def __init__(self, log_queue: queue.Queue[logging.LogRecord]) -> None:
        super().__init__(log_queue)
        self.dropped = 0
        self._dropped_lock = threading.Lock()

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        prepared = copy.copy(record)
        setattr(prepared, _CAPTURED_CONTEXT_ATTR, structlog.contextvars.get_contextvars())
        return prepared

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._dropped_lock:
                self.dropped += 1


class RunLogHandle:
    """Live logging setup for one run; ``shutdown`` drains and closes it."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        run_id: str,
        log_path: Path,
        log_queue: queue.Queue[logging.LogRecord],
        queue_handler: _ContextQueueHandler,
        sinks: tuple[logging.Handler, ...],
        listener: logging.handlers.QueueListener,
    ) -> None:
        self.logger = logger
        self.run_id = run_id
        self.log_path = log_path
        self._queue = log_queue
        self._queue_handler = queue_handler
        self._sinks = sinks
        self._listener = listener
        self._lock = threading.Lock()
        self._closed = False

    @property
    def run_log_dir(self) -> Path:
        return self.log_path.parent

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def flush(self, *, timeout_seconds: float = 2.0) -> None:
        deadline = time.monotonic() + max(timeout_seconds, 0.0)
        while self._queue.unfinished_tasks and time.monotonic() < deadline:
            time.sleep(0.01)
        for sink in self._sinks:
            sink.flush()

    def shutdown(self, *, timeout_seconds: float = 2.0) -> None:
        with self._lock:
            if self._closed:
                return
            self.flush(timeout_seconds=timeout_seconds)
            self._listener.stop()
            self.logger.removeHandler(self._queue_handler)
            self._queue_handler.close()
            for sink in self._sinks:
                sink.close()
            self._closed = True
        _clear_active(self)


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    run_id: str,
    log_dir: Path | str | None = None,
) -> RunLogHandle:
    """Start logging for ``run_id`` from an ``[observability]`` config section."""

    return start_run_logging(
        LoggingConfig.from_section(observability_config, run_id=run_id, log_dir=log_dir)
    )


def start_run_logging(config: LoggingConfig) -> RunLogHandle:
    """Route the package logger and structlog into a fresh per-run JSON-lines file.

    Any previously active run is shut down first; one run logs at a time.
    """

    run_id = _non_empty(config.run_id, "run_id")
    filename = _non_empty(config.log_filename, "log_filename")
    if Path(filename).name != filename:
        raise ValueError("log_filename must not include path separators")
    if config.queue_size <= 0:
        raise ValueError("queue_size must be > 0")
    level = _level_number(config.level)

    previous = get_active_logging_handle()
    if previous is not None:
        previous.shutdown()

    log_path = Path(config.base_log_dir) / run_id / filename
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = _json_formatter(run_id)
    sinks: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if config.log_to_stdout:
        sinks.append(logging.StreamHandler())
    for sink in sinks:
        sink.setLevel(level)
        sink.setFormatter(formatter)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()

    log_queue: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=config.queue_size)
    queue_handler = _ContextQueueHandler(log_queue)
    listener = logging.handlers.QueueListener(log_queue, *sinks, respect_handler_level=True)
    listener.start()
    logger.addHandler(queue_handler)
    configure_structlog()

    handle = RunLogHandle(
        logger=logger,
        run_id=run_id,
        log_path=log_path,
        log_queue=log_queue,
        queue_handler=queue_handler,
        sinks=tuple(sinks),
        listener=listener,
    )
    global _active_handle, _atexit_registered
    with _active_lock:
        _active_handle = handle
        if not _atexit_registered:
            atexit.register(shutdown_logging)
            _atexit_registered = True
    return handle


def configure_structlog() -> None:
    """Send structlog events through stdlib logging for the ``ProcessorFormatter``."""

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def shutdown_logging(
    handle: RunLogHandle | None = None,
    *,
    timeout_seconds: float = 2.0,
) -> None:
    """Drain and close ``handle`` (default: the active run)."""

    resolved = handle if handle is not None else get_active_logging_handle()
    if resolved is not None:
        resolved.shutdown(timeout_seconds=timeout_seconds)


def flush_logging(handle: RunLogHandle | None = None, *, timeout_seconds: float = 2.0) -> None:
    resolved = handle if handle is not None else get_active_logging_handle()
    if resolved is not None:
        resolved.flush(timeout_seconds=timeout_seconds)


def get_active_logging_handle() -> RunLogHandle | None:
    with _active_lock:
        return _active_handle


def current_correlation() -> dict[str, Any]:
    """Correlation fields bound in the current context."""

    return structlog.contextvars.get_contextvars()


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields for the block; a ``None`` value hides an outer binding."""

    outer = structlog.contextvars.get_contextvars()
    hidden = [key for key, value in fields.items() if value is None and key in outer]
    bound = {key: _non_empty(value, key) for key, value in fields.items() if value is not None}
    tokens = structlog.contextvars.bind_contextvars(**bound)
    structlog.contextvars.unbind_contextvars(*hidden)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)
        if hidden:
            structlog.contextvars.bind_contextvars(**{key: outer[key] for key in hidden})


def _json_formatter(run_id: str) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[_add_record_extras, structlog.processors.format_exc_info],
        processors=[
            _add_record_metadata,
            _add_captured_context,
            _default_run_id(run_id),
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _to_json_values,
            structlog.processors.JSONRenderer(sort_keys=True, separators=(",", ":")),
        ],
    )


def _add_record_extras(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Copy ``extra={...}`` attributes of a plain stdlib record into the event."""

    record = event_dict.get("_record")
    if record is None:
        return event_dict
    for key, value in vars(record).items():
        if key in _RECORD_ATTRIBUTES or key.startswith("_"):
            continue
        event_dict.setdefault(key, value)
    return event_dict


def _add_record_metadata(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    record: logging.LogRecord | None = event_dict.get("_record")
    if record is None:
        return event_dict
    event_dict["level"] = record.levelname
    event_dict["logger"] = record.name
    event_dict["timestamp"] = (
        datetime.fromtimestamp(record.created, tz=UTC)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )
    return event_dict


def _add_captured_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    captured = getattr(event_dict.get("_record"), _CAPTURED_CONTEXT_ATTR, None)
    if isinstance(captured, Mapping):
        for key, value in captured.items():
            event_dict.setdefault(key, value)
    return event_dict


def _default_run_id(run_id: str) -> structlog.typing.Processor:
    def _processor(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("run_id", run_id)
        return event_dict

    return _processor


def _to_json_values(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    return {str(key): _json_value(value) for key, value in event_dict.items()}


def _json_value(value: object) -> JSONValue:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, datetime):
        aware = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return aware.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _json_value(item) for key, item in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted((_json_value(item) for item in value), key=json.dumps)
    if isinstance(value, (list, tuple)):
        return [_json_value(item) for item in value]
    return repr(value)


def _clear_active(handle: RunLogHandle) -> None:
    global _active_handle
    with _active_lock:
        if _active_handle is handle:
            _active_handle = None


def _non_empty(value: object, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} must not be empty")
    return value.strip()


def _level_number(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"unsupported logging level {level!r}")
    return resolved


__all__ = [
    "LOG_FILENAME",
    "ROOT_LOGGER_NAME",
    "LoggingConfig",
    "RunLogHandle",
    "configure_structlog",
    "correlation_scope",
    "current_correlation",
    "flush_logging",
    "get_active_logging_handle",
    "setup_logging",
    "shutdown_logging",
    "start_run_logging",
]
